"""
Order models for the marketplace.

- Order: One buyer, one vendor, one escrow. Status is a django-fsm field.
- OrderItem: Line items with the product name and price at checkout time
- ShippingAddress: Where the order goes; drives the delivery fee
- VendorRating: Optional buyer rating left when confirming delivery

Usage:
    from orders.models import Order
    from orders.state_machines import OrderStatus

    order.mark_paid()          # pending_payment -> pending_vendor_confirmation
    order.save()

    order.confirm_by_vendor()  # -> vendor_confirmed
    order.ship()               # -> shipped, schedules auto-release
    order.save()
"""

from __future__ import annotations

import secrets
from datetime import timedelta

from django.conf import settings
from django.db import models
from django.utils import timezone
from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel
from core.money import ZERO, percent_of, to_money
from orders.state_machines import OrderStatus


def generate_order_reference() -> str:
    """Short human-facing reference, e.g. ORD-7F3A9C21B0."""
    return f"ORD-{secrets.token_hex(5).upper()}"


class Order(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    A buyer's purchase from a single vendor.

    Money invariants (enforced by apply_pricing()):
        total == subtotal + shipping_fee
        payout_amount == total - commission_amount

    State Flow:
        PENDING_PAYMENT -> PENDING_VENDOR_CONFIRMATION -> VENDOR_CONFIRMED
        -> SHIPPED -> DELIVERED -> COMPLETED

    No transition skips vendor confirmation or shipment: COMPLETED is
    only reachable from SHIPPED, DELIVERED, or DISPUTED.

    Fields:
        reference: Short unique reference sent to gateways and shown to users
        buyer / vendor: The two parties
        subtotal: Sum of line totals
        shipping_fee: Server-computed delivery fee
        total: Amount charged to the buyer
        commission_rate: Platform commission percent at checkout
        commission_amount: Platform share of the total
        payout_amount: Vendor share of the total
        status: Current FSM state
        auto_release_at: When escrow auto-releases if the buyer stays silent
    """

    # ==========================================================================
    # Identity & Parties
    # ==========================================================================

    reference = models.CharField(
        max_length=20,
        unique=True,
        default=generate_order_reference,
        editable=False,
        help_text="Short unique reference sent to gateways (e.g. ORD-7F3A9C21B0)",
    )

    buyer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="purchases",
        help_text="User paying for the order",
    )

    vendor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="sales",
        help_text="User fulfilling the order and receiving the payout",
    )

    # ==========================================================================
    # Money
    # ==========================================================================

    subtotal = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Sum of line totals in KES",
    )

    shipping_fee = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=ZERO,
        help_text="Delivery fee in KES (server-computed)",
    )

    total = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Amount charged to the buyer: subtotal + shipping_fee",
    )

    commission_rate = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        help_text="Platform commission percent applied to the total",
    )

    commission_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Platform commission in KES",
    )

    payout_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Vendor share in KES: total - commission_amount",
    )

    delivery_zone = models.CharField(
        max_length=20,
        blank=True,
        default="",
        help_text="Delivery zone the shipping fee was computed for",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=OrderStatus.PENDING_PAYMENT,
        choices=OrderStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the order (managed by FSM)",
    )

    # ==========================================================================
    # Lifecycle Timestamps
    # ==========================================================================

    paid_at = models.DateTimeField(null=True, blank=True, help_text="When payment was verified")
    confirmed_at = models.DateTimeField(
        null=True, blank=True, help_text="When the vendor accepted the order"
    )
    shipped_at = models.DateTimeField(null=True, blank=True, help_text="When the vendor shipped")
    delivered_at = models.DateTimeField(null=True, blank=True, help_text="When delivery was recorded")
    completed_at = models.DateTimeField(null=True, blank=True, help_text="When escrow was released")
    cancelled_at = models.DateTimeField(null=True, blank=True, help_text="When the order was cancelled")
    disputed_at = models.DateTimeField(null=True, blank=True, help_text="When the buyer opened a dispute")
    refunded_at = models.DateTimeField(null=True, blank=True, help_text="When the buyer was refunded")

    auto_release_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Escrow auto-releases after this time unless disputed",
    )

    # ==========================================================================
    # Buyer Confirmation & Disputes
    # ==========================================================================

    buyer_confirmed = models.BooleanField(
        default=False,
        help_text="Whether the buyer confirmed receipt (vs. auto-release)",
    )

    dispute_reason = models.TextField(
        blank=True,
        default="",
        help_text="Buyer's reason for disputing the order",
    )

    status_notes = models.TextField(
        blank=True,
        default="",
        help_text="Why the order was cancelled, refunded, or resolved",
    )

    tracking_number = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Courier tracking number provided when shipping",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Order"
        verbose_name_plural = "Orders"
        indexes = [
            models.Index(fields=["buyer", "status"], name="order_buyer_status_idx"),
            models.Index(fields=["vendor", "status"], name="order_vendor_status_idx"),
            models.Index(fields=["status", "auto_release_at"], name="order_status_release_idx"),
            models.Index(fields=["status", "paid_at"], name="order_status_paid_idx"),
            models.Index(fields=["status", "confirmed_at"], name="order_status_confirmed_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(subtotal__gt=0),
                name="order_subtotal_positive",
            ),
            models.CheckConstraint(
                condition=models.Q(shipping_fee__gte=0),
                name="order_shipping_fee_non_negative",
            ),
            models.CheckConstraint(
                condition=models.Q(payout_amount__gte=0),
                name="order_payout_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"Order({self.reference}, {self.status}, {self.total} KES)"

    # ==========================================================================
    # Pricing
    # ==========================================================================

    def apply_pricing(self, shipping_fee, commission_rate=None) -> None:
        """
        Recompute total, commission, and payout from subtotal and fee.

        Does not save - caller must save after calling.
        """
        if commission_rate is not None:
            self.commission_rate = to_money(commission_rate)
        self.shipping_fee = to_money(shipping_fee)
        self.total = to_money(self.subtotal) + self.shipping_fee
        self.commission_amount = percent_of(self.total, self.commission_rate)
        self.payout_amount = self.total - self.commission_amount

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=[OrderStatus.PENDING_PAYMENT, OrderStatus.PAYMENT_FAILED],
        target=OrderStatus.PENDING_VENDOR_CONFIRMATION,
    )
    def mark_paid(self):
        """
        Record a gateway-verified payment.

        Transition: PENDING_PAYMENT/PAYMENT_FAILED -> PENDING_VENDOR_CONFIRMATION

        PAYMENT_FAILED is a valid source because mobile-money customers
        often retry after a failed prompt and the later attempt succeeds.
        """
        self.paid_at = timezone.now()

    @transition(
        field=status,
        source=OrderStatus.PENDING_PAYMENT,
        target=OrderStatus.PAYMENT_FAILED,
    )
    def mark_payment_failed(self):
        """Transition: PENDING_PAYMENT -> PAYMENT_FAILED"""

    @transition(
        field=status,
        source=OrderStatus.PENDING_VENDOR_CONFIRMATION,
        target=OrderStatus.VENDOR_CONFIRMED,
    )
    def confirm_by_vendor(self):
        """Transition: PENDING_VENDOR_CONFIRMATION -> VENDOR_CONFIRMED"""
        self.confirmed_at = timezone.now()

    @transition(
        field=status,
        source=OrderStatus.VENDOR_CONFIRMED,
        target=OrderStatus.SHIPPED,
    )
    def ship(self, tracking_number: str = ""):
        """
        Record shipment and schedule escrow auto-release.

        Transition: VENDOR_CONFIRMED -> SHIPPED
        """
        now = timezone.now()
        self.shipped_at = now
        self.tracking_number = tracking_number or ""
        self.auto_release_at = now + timedelta(days=settings.ESCROW_AUTO_RELEASE_DAYS)

    @transition(
        field=status,
        source=OrderStatus.SHIPPED,
        target=OrderStatus.DELIVERED,
    )
    def mark_delivered(self):
        """Transition: SHIPPED -> DELIVERED"""
        self.delivered_at = timezone.now()

    @transition(
        field=status,
        source=[OrderStatus.SHIPPED, OrderStatus.DELIVERED],
        target=OrderStatus.COMPLETED,
    )
    def complete(self, buyer_confirmed: bool = True):
        """
        Complete the order after buyer confirmation or auto-release.

        Transition: SHIPPED/DELIVERED -> COMPLETED
        """
        self.completed_at = timezone.now()
        self.buyer_confirmed = buyer_confirmed
        if self.delivered_at is None:
            self.delivered_at = self.completed_at

    @transition(
        field=status,
        source=[OrderStatus.SHIPPED, OrderStatus.DELIVERED],
        target=OrderStatus.DISPUTED,
    )
    def dispute(self, reason: str):
        """
        Open a dispute, which freezes escrow release.

        Transition: SHIPPED/DELIVERED -> DISPUTED
        """
        self.disputed_at = timezone.now()
        self.dispute_reason = reason

    @transition(
        field=status,
        source=OrderStatus.DISPUTED,
        target=OrderStatus.COMPLETED,
    )
    def resolve_release(self, notes: str = ""):
        """Transition: DISPUTED -> COMPLETED (funds go to the vendor)"""
        self.completed_at = timezone.now()
        self.status_notes = notes

    @transition(
        field=status,
        source=OrderStatus.DISPUTED,
        target=OrderStatus.REFUNDED,
    )
    def resolve_refund(self, notes: str = ""):
        """Transition: DISPUTED -> REFUNDED (funds go back to the buyer)"""
        self.refunded_at = timezone.now()
        self.status_notes = notes

    @transition(
        field=status,
        source=[
            OrderStatus.PENDING_PAYMENT,
            OrderStatus.PENDING_VENDOR_CONFIRMATION,
            OrderStatus.VENDOR_CONFIRMED,
        ],
        target=OrderStatus.CANCELLED,
    )
    def cancel(self, reason: str = ""):
        """
        Cancel before shipment.

        Transition: PENDING_PAYMENT/PENDING_VENDOR_CONFIRMATION/VENDOR_CONFIRMED -> CANCELLED
        """
        self.cancelled_at = timezone.now()
        self.status_notes = reason

    @transition(
        field=status,
        source=OrderStatus.CANCELLED,
        target=OrderStatus.REFUNDED,
    )
    def refund(self):
        """
        Record that a cancelled, paid order was refunded.

        Transition: CANCELLED -> REFUNDED
        """
        self.refunded_at = timezone.now()

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_paid(self) -> bool:
        return self.paid_at is not None

    @property
    def is_awaiting_payment(self) -> bool:
        return self.status in (OrderStatus.PENDING_PAYMENT, OrderStatus.PAYMENT_FAILED)

    @property
    def is_auto_release_due(self) -> bool:
        """Whether the auto-release window has passed for a shipped order."""
        return (
            self.status in (OrderStatus.SHIPPED, OrderStatus.DELIVERED)
            and self.auto_release_at is not None
            and self.auto_release_at <= timezone.now()
        )


class OrderItem(BaseModel):
    """
    A line item, snapshotting the product name and price at checkout.
    """

    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name="items",
        help_text="Order this line belongs to",
    )

    product = models.ForeignKey(
        "orders.Product",
        on_delete=models.SET_NULL,
        null=True,
        related_name="order_items",
        help_text="Product sold (null if the product was later removed)",
    )

    product_name = models.CharField(max_length=255, help_text="Product name at checkout")
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, help_text="Unit price at checkout")
    quantity = models.PositiveIntegerField(help_text="Units ordered")
    line_total = models.DecimalField(max_digits=12, decimal_places=2, help_text="unit_price * quantity")

    class Meta:
        ordering = ["created_at"]
        verbose_name = "Order Item"
        verbose_name_plural = "Order Items"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gt=0),
                name="order_item_quantity_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"OrderItem({self.product_name} x{self.quantity})"


class ShippingAddress(BaseModel):
    """Delivery details captured at checkout."""

    order = models.OneToOneField(
        Order,
        on_delete=models.CASCADE,
        related_name="shipping_address",
        help_text="Order being delivered",
    )

    recipient_name = models.CharField(max_length=150, help_text="Who receives the parcel")
    phone = models.CharField(max_length=20, help_text="Recipient phone number")
    email = models.EmailField(blank=True, default="", help_text="Recipient email")
    address_line1 = models.CharField(max_length=255, help_text="Street / building")
    address_line2 = models.CharField(max_length=255, blank=True, default="", help_text="Apartment, floor, landmark")
    city = models.CharField(max_length=100, help_text="City or town")
    county = models.CharField(max_length=100, blank=True, default="", help_text="County")
    postal_code = models.CharField(max_length=20, blank=True, default="", help_text="Postal code")
    country = models.CharField(max_length=100, default="Kenya", help_text="Country")
    delivery_notes = models.TextField(blank=True, default="", help_text="Instructions for the courier")

    class Meta:
        verbose_name = "Shipping Address"
        verbose_name_plural = "Shipping Addresses"

    def __str__(self) -> str:
        return f"ShippingAddress({self.recipient_name}, {self.city})"


class VendorRating(BaseModel):
    """A buyer's 1-5 rating of the vendor for one completed order."""

    order = models.OneToOneField(
        Order,
        on_delete=models.CASCADE,
        related_name="rating",
        help_text="Order being rated",
    )
    vendor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="ratings_received",
        help_text="Vendor being rated",
    )
    buyer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="ratings_given",
        help_text="Buyer leaving the rating",
    )
    rating = models.PositiveSmallIntegerField(help_text="Stars, 1 to 5")
    review = models.TextField(blank=True, default="", help_text="Optional review text")

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Vendor Rating"
        verbose_name_plural = "Vendor Ratings"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(rating__gte=1) & models.Q(rating__lte=5),
                name="vendor_rating_between_1_and_5",
            ),
        ]

    def __str__(self) -> str:
        return f"VendorRating({self.vendor_id}, {self.rating})"
