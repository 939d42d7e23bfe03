"""
Order admin configuration.

Orders are read-only here: status changes go through the order services
so escrow and balances move with them.
"""

from django.contrib import admin

from orders.models import Order, OrderItem, Product, ShippingAddress, VendorRating


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ["name", "vendor", "price", "stock", "is_active", "updated_at"]
    list_filter = ["is_active"]
    search_fields = ["name", "vendor__email"]
    readonly_fields = ["id", "created_at", "updated_at"]


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ["product", "product_name", "unit_price", "quantity", "line_total"]

    def has_add_permission(self, request, obj=None) -> bool:
        return False


class ShippingAddressInline(admin.StackedInline):
    model = ShippingAddress
    extra = 0

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    """
    Admin configuration for Order.

    Provides visibility into order status, money split, and timestamps.
    """

    list_display = [
        "reference",
        "buyer",
        "vendor",
        "total",
        "payout_amount",
        "status",
        "paid_at",
        "auto_release_at",
        "created_at",
    ]
    list_filter = ["status", "delivery_zone", "buyer_confirmed", "created_at"]
    search_fields = ["id", "reference", "buyer__email", "vendor__email", "tracking_number"]
    readonly_fields = [
        "id",
        "reference",
        "buyer",
        "vendor",
        "subtotal",
        "shipping_fee",
        "total",
        "commission_rate",
        "commission_amount",
        "payout_amount",
        "delivery_zone",
        "status",
        "paid_at",
        "confirmed_at",
        "shipped_at",
        "delivered_at",
        "completed_at",
        "cancelled_at",
        "disputed_at",
        "refunded_at",
        "auto_release_at",
        "buyer_confirmed",
        "dispute_reason",
        "status_notes",
        "tracking_number",
        "version",
        "created_at",
        "updated_at",
    ]
    inlines = [OrderItemInline, ShippingAddressInline]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for orders (audit trail)."""
        return False


@admin.register(VendorRating)
class VendorRatingAdmin(admin.ModelAdmin):
    list_display = ["order", "vendor", "buyer", "rating", "created_at"]
    list_filter = ["rating"]
    search_fields = ["vendor__email", "buyer__email", "order__reference"]
