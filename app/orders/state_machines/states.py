"""
State enums for order models.

Order States:
    pending_payment → pending_vendor_confirmation → vendor_confirmed
        → shipped → delivered → completed

    pending_payment → payment_failed → pending_vendor_confirmation (late success)
    pending_payment/pending_vendor_confirmation/vendor_confirmed → cancelled → refunded
    shipped/delivered → disputed → completed (release) | refunded
"""

from django.db import models


class OrderStatus(models.TextChoices):
    """
    States for the Order lifecycle.

    Terminal states: COMPLETED, REFUNDED, CANCELLED (when nothing was paid)

    Happy Path:
        PENDING_PAYMENT → PENDING_VENDOR_CONFIRMATION → VENDOR_CONFIRMED
        → SHIPPED → DELIVERED → COMPLETED

    Auto-release:
        SHIPPED/DELIVERED → COMPLETED once auto_release_at passes

    Dispute Flow:
        SHIPPED/DELIVERED → DISPUTED → COMPLETED | REFUNDED
    """

    PENDING_PAYMENT = "pending_payment", "Pending Payment"
    PAYMENT_FAILED = "payment_failed", "Payment Failed"
    PENDING_VENDOR_CONFIRMATION = "pending_vendor_confirmation", "Pending Vendor Confirmation"
    VENDOR_CONFIRMED = "vendor_confirmed", "Vendor Confirmed"
    SHIPPED = "shipped", "Shipped"
    DELIVERED = "delivered", "Delivered"
    COMPLETED = "completed", "Completed"
    DISPUTED = "disputed", "Disputed"
    CANCELLED = "cancelled", "Cancelled"
    REFUNDED = "refunded", "Refunded"


class VendorAction(models.TextChoices):
    """Actions a vendor can take on one of its orders."""

    CONFIRM = "confirm", "Confirm"
    SHIP = "ship", "Ship"
    DELIVER = "deliver", "Mark Delivered"
    DECLINE = "decline", "Decline"


class DisputeResolution(models.TextChoices):
    """Admin outcomes for a disputed order."""

    RELEASE = "release", "Release to Vendor"
    REFUND = "refund", "Refund Buyer"


# Orders whose payment has been captured and whose escrow is still held.
PAID_ORDER_STATES = (
    OrderStatus.PENDING_VENDOR_CONFIRMATION,
    OrderStatus.VENDOR_CONFIRMED,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
    OrderStatus.DISPUTED,
)

# Orders that may still be paid for.
AWAITING_PAYMENT_STATES = (
    OrderStatus.PENDING_PAYMENT,
    OrderStatus.PAYMENT_FAILED,
)
