"""
Tests for OrderService.create_order().
"""

import uuid
from decimal import Decimal

import pytest

from orders.models import Order
from orders.services import CartLine, OrderService
from orders.state_machines import OrderStatus
from orders.tests.factories import ProductFactory

NAKURU = {
    "recipient_name": "Wanjiku Kamau",
    "phone": "0712345678",
    "address_line1": "Plot 12, Moi Avenue",
    "city": "Nakuru",
    "county": "Nakuru",
}

NAIROBI = {**NAKURU, "address_line1": "Kenyatta Avenue", "city": "Nairobi", "county": "Nairobi"}


@pytest.mark.django_db
class TestCreateOrder:
    """Tests for OrderService.create_order()."""

    def test_prices_order_from_products(self, buyer, vendor):
        """Should compute totals from stored prices and the delivery zone."""
        product = ProductFactory(vendor=vendor, price=Decimal("2500.00"))

        result = OrderService.create_order(buyer, [CartLine(str(product.pk), 2)], NAKURU)

        assert result.success
        order = result.data
        assert order.status == OrderStatus.PENDING_PAYMENT
        assert order.vendor == vendor
        assert order.subtotal == Decimal("5000.00")
        assert order.shipping_fee == Decimal("400.00")
        assert order.total == Decimal("5400.00")
        assert order.commission_rate == Decimal("10.00")
        assert order.commission_amount == Decimal("540.00")
        assert order.payout_amount == Decimal("4860.00")
        assert order.delivery_zone == "standard"

    def test_snapshots_items_and_address(self, buyer, vendor):
        """Should copy product name and price onto the line items."""
        product = ProductFactory(vendor=vendor, name="Maasai Shuka", price=Decimal("1200.00"))

        order = OrderService.create_order(buyer, [CartLine(str(product.pk), 3)], NAIROBI).data

        item = order.items.get()
        assert item.product_name == "Maasai Shuka"
        assert item.unit_price == Decimal("1200.00")
        assert item.line_total == Decimal("3600.00")
        assert order.shipping_address.city == "Nairobi"
        assert order.shipping_fee == Decimal("200.00")
        assert order.delivery_zone == "metro"

    def test_merges_repeated_lines(self, buyer, vendor):
        """Should combine quantities for the same product."""
        product = ProductFactory(vendor=vendor, price=Decimal("100.00"))
        lines = [CartLine(str(product.pk), 1), CartLine(str(product.pk), 2)]

        order = OrderService.create_order(buyer, lines, NAKURU).data

        assert order.items.count() == 1
        assert order.items.get().quantity == 3
        assert order.subtotal == Decimal("300.00")

    def test_empty_cart(self, buyer):
        result = OrderService.create_order(buyer, [], NAKURU)

        assert not result.success
        assert result.error_code == "EMPTY_CART"

    def test_unknown_product(self, buyer):
        """Should report which products are missing."""
        missing = str(uuid.uuid4())

        result = OrderService.create_order(buyer, [CartLine(missing, 1)], NAKURU)

        assert result.error_code == "PRODUCT_NOT_FOUND"
        assert missing in result.errors["items"][0]

    def test_multiple_vendors(self, buyer, vendor):
        """Should refuse carts spanning more than one vendor."""
        first = ProductFactory(vendor=vendor)
        second = ProductFactory()

        result = OrderService.create_order(
            buyer, [CartLine(str(first.pk), 1), CartLine(str(second.pk), 1)], NAKURU
        )

        assert result.error_code == "MULTIPLE_VENDORS"
        assert Order.objects.count() == 0

    def test_own_product(self, vendor):
        """Should stop a vendor from buying from themselves."""
        product = ProductFactory(vendor=vendor)

        result = OrderService.create_order(vendor, [CartLine(str(product.pk), 1)], NAKURU)

        assert result.error_code == "OWN_PRODUCT"

    def test_inactive_product(self, buyer, vendor):
        product = ProductFactory(vendor=vendor, is_active=False)

        result = OrderService.create_order(buyer, [CartLine(str(product.pk), 1)], NAKURU)

        assert result.error_code == "PRODUCT_UNAVAILABLE"

    def test_out_of_stock(self, buyer, vendor):
        """Should check merged quantities against stock."""
        product = ProductFactory(vendor=vendor, stock=2)
        lines = [CartLine(str(product.pk), 2), CartLine(str(product.pk), 1)]

        result = OrderService.create_order(buyer, lines, NAKURU)

        assert result.error_code == "OUT_OF_STOCK"

    def test_untracked_stock_is_unlimited(self, buyer, vendor):
        product = ProductFactory(vendor=vendor, stock=None)

        result = OrderService.create_order(buyer, [CartLine(str(product.pk), 500)], NAKURU)

        assert result.success

    def test_stock_is_not_reserved_at_creation(self, buyer, vendor):
        """Should only decrement stock when the order completes."""
        product = ProductFactory(vendor=vendor, stock=5)

        OrderService.create_order(buyer, [CartLine(str(product.pk), 2)], NAKURU)

        product.refresh_from_db()
        assert product.stock == 5
