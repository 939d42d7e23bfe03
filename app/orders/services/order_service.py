"""
Order creation from cart items and a shipping address.

Prices come from Product rows, never from the client. The delivery fee is
quoted from the shipping address and the commission rate from settings, so
a new order already satisfies total == subtotal + shipping_fee and
payout_amount == total - commission_amount.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import TYPE_CHECKING

from core.money import ZERO, to_money
from core.services import BaseService, ServiceResult
from orders.models import Order, OrderItem, Product, ShippingAddress
from orders.pricing import DeliveryZoneTable, commission_rate

if TYPE_CHECKING:
    from authentication.models import User


@dataclass(frozen=True)
class CartLine:
    product_id: str
    quantity: int


class OrderService(BaseService):
    """Builds orders."""

    @classmethod
    def create_order(cls, buyer: User, lines: list[CartLine], shipping: dict) -> ServiceResult[Order]:
        """
        Create a PENDING_PAYMENT order for one vendor's products.

        Args:
            buyer: Purchasing user
            lines: Cart lines; repeated products are merged
            shipping: ShippingAddress field values

        Returns:
            ServiceResult with the Order, or a failure with EMPTY_CART,
            PRODUCT_NOT_FOUND, PRODUCT_UNAVAILABLE, MULTIPLE_VENDORS,
            OWN_PRODUCT, or OUT_OF_STOCK
        """
        if not lines:
            return ServiceResult.failure("Cart is empty", error_code="EMPTY_CART")

        quantities: OrderedDict[str, int] = OrderedDict()
        for line in lines:
            key = str(line.product_id)
            quantities[key] = quantities.get(key, 0) + int(line.quantity)

        products = {str(p.pk): p for p in Product.objects.filter(pk__in=list(quantities))}
        missing = [pid for pid in quantities if pid not in products]
        if missing:
            return ServiceResult.failure(
                "Some products no longer exist",
                error_code="PRODUCT_NOT_FOUND",
                errors={"items": [f"Unknown product {pid}" for pid in missing]},
            )

        vendors = {product.vendor_id for product in products.values()}
        if len(vendors) > 1:
            return ServiceResult.failure(
                "An order can only contain products from one vendor",
                error_code="MULTIPLE_VENDORS",
            )
        vendor_id = vendors.pop()
        if vendor_id == buyer.pk:
            return ServiceResult.failure("You cannot buy your own products", error_code="OWN_PRODUCT")

        for pid, quantity in quantities.items():
            product = products[pid]
            if not product.is_active:
                return ServiceResult.failure(
                    f"{product.name} is no longer available",
                    error_code="PRODUCT_UNAVAILABLE",
                )
            if not product.has_stock_for(quantity):
                return ServiceResult.failure(
                    f"Only {product.stock} of {product.name} left in stock",
                    error_code="OUT_OF_STOCK",
                )

        subtotal = sum(
            (to_money(products[pid].price) * quantity for pid, quantity in quantities.items()),
            ZERO,
        )
        address = ShippingAddress(**shipping)
        quote = DeliveryZoneTable().quote(address)

        with cls.atomic():
            order = Order(
                buyer=buyer,
                vendor_id=vendor_id,
                subtotal=subtotal,
                delivery_zone=quote.zone,
            )
            order.apply_pricing(quote.fee, commission_rate=commission_rate())
            order.save()

            OrderItem.objects.bulk_create(
                [
                    OrderItem(
                        order=order,
                        product=products[pid],
                        product_name=products[pid].name,
                        unit_price=products[pid].price,
                        quantity=quantity,
                        line_total=to_money(products[pid].price) * quantity,
                    )
                    for pid, quantity in quantities.items()
                ]
            )
            address.order = order
            address.save()

        cls.get_logger().info(
            "Order created",
            extra={
                "order_id": str(order.pk),
                "buyer_id": str(buyer.pk),
                "vendor_id": str(vendor_id),
                "total": str(order.total),
                "delivery_zone": quote.zone,
            },
        )
        return ServiceResult.success(order)
