"""
State enums for payment models.

These are Django TextChoices for database storage and admin integration.

State Machines Overview:

Payment States (guarded updates, not FSM):
    pending → captured → refunded
    pending → failed → captured (late success after a retry)

Escrow States:
    held → released
    held → refunded

Payout States (django-fsm):
    pending → processing → paid
    pending → paid (entitlement settled by a disbursement)
    pending/processing → failed

WebhookEvent States:
    pending → processing → processed | failed | ignored
"""

from django.db import models


class Gateway(models.TextChoices):
    """Supported payment rails."""

    MPESA = "mpesa", "M-Pesa"
    PESAPAL = "pesapal", "Pesapal"
    INTASEND = "intasend", "IntaSend"
    PAYSTACK = "paystack", "Paystack"
    STRIPE = "stripe", "Stripe"


class PaymentKind(models.TextChoices):
    """What a payment is collecting for."""

    ORDER = "order", "Order"
    DELIVERY_FEE = "delivery_fee", "Delivery Fee"


class PaymentStatus(models.TextChoices):
    """
    States for a collection attempt.

    Transitions are status-filtered update() calls so duplicate
    callbacks cannot apply the same change twice.
    """

    PENDING = "pending", "Pending"
    CAPTURED = "captured", "Captured"
    FAILED = "failed", "Failed"
    REFUNDED = "refunded", "Refunded"


class EscrowStatus(models.TextChoices):
    """
    States for funds held against an order.

    HELD leaves exactly once, to RELEASED or REFUNDED.
    """

    HELD = "held", "Held"
    RELEASED = "released", "Released"
    REFUNDED = "refunded", "Refunded"


class PayoutState(models.TextChoices):
    """
    States for the Payout model lifecycle.

    Terminal states: PAID, FAILED

    State Flow (disbursement):
        PENDING → PROCESSING → PAID

    State Flow (order-release entitlement):
        PENDING → PAID (settled by the disbursement that moved the money)

    Failure Flow:
        PENDING/PROCESSING → FAILED
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PAID = "paid", "Paid"
    FAILED = "failed", "Failed"


class PayoutTrigger(models.TextChoices):
    """Why a payout row exists."""

    ORDER_RELEASE = "order_release", "Order Release"
    AUTOMATIC = "automatic", "Automatic Sweep"
    MANUAL = "manual", "Manual Withdrawal"


class PayoutMethod(models.TextChoices):
    """Where a vendor receives money."""

    MPESA = "mpesa", "M-Pesa"
    STRIPE = "stripe", "Stripe"


class FeeBearer(models.TextChoices):
    """Who pays the disbursement fee."""

    PLATFORM = "platform", "Platform"
    VENDOR = "vendor", "Vendor"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for webhook deliveries.

    IGNORED marks deliveries we recognised but had nothing to do for
    (no reference, unknown shape, bad signature, unknown payment).
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"
    IGNORED = "ignored", "Ignored"
