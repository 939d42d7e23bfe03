"""
DRF serializers for orders app.

Request serializers validate shape only; prices, fees, and ownership are
decided by the order services.

Related files:
    - views.py: Order API views
    - services/: OrderService, OrderCompletionService, OrderLifecycleService
"""

from __future__ import annotations

from rest_framework import serializers

from orders.models import Order, OrderItem, ShippingAddress
from orders.services import CartLine
from orders.state_machines import DisputeResolution


# =============================================================================
# Nested
# =============================================================================


class ShippingAddressSerializer(serializers.ModelSerializer):
    class Meta:
        model = ShippingAddress
        fields = [
            "recipient_name",
            "phone",
            "email",
            "address_line1",
            "address_line2",
            "city",
            "county",
            "postal_code",
            "country",
            "delivery_notes",
        ]


class OrderItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderItem
        fields = ["product", "product_name", "unit_price", "quantity", "line_total"]
        read_only_fields = fields


# =============================================================================
# Requests
# =============================================================================


class CartLineSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1, max_value=1000)


class CreateOrderSerializer(serializers.Serializer):
    """
    Create an order from cart items.

    Prices are never accepted from the client.
    """

    items = CartLineSerializer(many=True, allow_empty=False)
    shipping_address = ShippingAddressSerializer()

    def cart_lines(self) -> list[CartLine]:
        return [
            CartLine(product_id=str(line["product_id"]), quantity=line["quantity"])
            for line in self.validated_data["items"]
        ]


class ConfirmOrderSerializer(serializers.Serializer):
    rating = serializers.IntegerField(min_value=1, max_value=5, required=False, allow_null=True, default=None)
    review = serializers.CharField(required=False, allow_blank=True, default="", max_length=2000)


class DisputeOrderSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=2000)


class VendorActionSerializer(serializers.Serializer):
    tracking_number = serializers.CharField(required=False, allow_blank=True, default="", max_length=100)
    reason = serializers.CharField(required=False, allow_blank=True, default="", max_length=2000)


class ResolveDisputeSerializer(serializers.Serializer):
    resolution = serializers.ChoiceField(choices=DisputeResolution.choices)
    notes = serializers.CharField(required=False, allow_blank=True, default="", max_length=2000)


# =============================================================================
# Responses
# =============================================================================


class OrderSerializer(serializers.ModelSerializer):
    items = OrderItemSerializer(many=True, read_only=True)
    shipping_address = ShippingAddressSerializer(read_only=True)

    class Meta:
        model = Order
        fields = [
            "id",
            "reference",
            "buyer",
            "vendor",
            "status",
            "subtotal",
            "shipping_fee",
            "total",
            "commission_rate",
            "commission_amount",
            "payout_amount",
            "delivery_zone",
            "tracking_number",
            "buyer_confirmed",
            "paid_at",
            "confirmed_at",
            "shipped_at",
            "delivered_at",
            "completed_at",
            "auto_release_at",
            "items",
            "shipping_address",
            "created_at",
        ]
        read_only_fields = fields


class CompletionSerializer(serializers.Serializer):
    """Completed order plus any ancillary steps that did not go through."""

    order = OrderSerializer()
    payout_id = serializers.UUIDField(source="payout.pk")
    warnings = serializers.ListField(child=serializers.CharField())
