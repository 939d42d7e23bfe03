"""
Payment model for collection attempts against an order.

One row per (order, gateway, kind): re-initiating checkout on the same
rail reuses the row, which is what makes collection idempotent.

Usage:
    from payments.models import Payment

    payment = Payment.objects.for_reference(Gateway.MPESA, checkout_request_id)

    # Guarded capture - only one caller wins
    captured = Payment.objects.filter(
        pk=payment.pk, status__in=[PaymentStatus.PENDING, PaymentStatus.FAILED]
    ).update(status=PaymentStatus.CAPTURED, captured_at=timezone.now())
"""

from __future__ import annotations

from django.db import models
from django.db.models import Q

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import Gateway, PaymentKind, PaymentStatus


class PaymentQuerySet(models.QuerySet):
    def for_reference(self, gateway: str, reference: str):
        """
        Find the payment a gateway is talking about.

        Gateways echo either our merchant reference or their own
        transaction id, so both columns are searched.
        """
        if not reference:
            return None
        return (
            self.select_related("order")
            .filter(gateway=gateway)
            .filter(Q(merchant_reference=reference) | Q(transaction_reference=reference))
            .first()
        )

    def pending(self):
        return self.filter(status=PaymentStatus.PENDING)


class Payment(UUIDPrimaryKeyMixin, BaseModel):
    """
    A collection attempt on one gateway.

    Status is not an FSM field: every change is a status-filtered
    update() so concurrent callbacks and reconciliation runs apply it once.

    Fields:
        order: Order being paid for
        gateway: Rail used (mpesa, pesapal, intasend, paystack, stripe)
        kind: ORDER for the order total, DELIVERY_FEE for a top-up
        status: pending, captured, failed, refunded
        amount: Amount requested from the buyer in KES
        merchant_reference: Reference we sent to the gateway
        transaction_reference: Gateway-assigned id (CheckoutRequestID,
            OrderTrackingId, invoice_id, Paystack reference, PaymentIntent id)
        collect_response: Stored collect() result, returned on repeat checkout
        attempts: Number of collect() calls made for this row
    """

    # ==========================================================================
    # Relationships & Identity
    # ==========================================================================

    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.PROTECT,
        related_name="payments",
        help_text="Order this payment is for",
    )

    gateway = models.CharField(
        max_length=20,
        choices=Gateway.choices,
        help_text="Payment rail used for collection",
    )

    kind = models.CharField(
        max_length=20,
        choices=PaymentKind.choices,
        default=PaymentKind.ORDER,
        help_text="Whether this collects the order total or a delivery-fee top-up",
    )

    status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
        db_index=True,
        help_text="Current payment status (changed only by guarded updates)",
    )

    # ==========================================================================
    # Money
    # ==========================================================================

    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Amount requested in KES",
    )

    currency = models.CharField(
        max_length=3,
        default="KES",
        help_text="ISO currency code",
    )

    # ==========================================================================
    # Gateway References
    # ==========================================================================

    merchant_reference = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Reference sent to the gateway",
    )

    transaction_reference = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
        help_text="Gateway-assigned transaction id",
    )

    collect_response = models.JSONField(
        default=dict,
        blank=True,
        help_text="Stored collect() result (redirect URL or prompt details)",
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Raw provider responses and flags (outcome_unknown, amount_mismatch)",
    )

    attempts = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of collect() calls for this payment",
    )

    # ==========================================================================
    # Timestamps
    # ==========================================================================

    captured_at = models.DateTimeField(null=True, blank=True, help_text="When capture was verified")
    failed_at = models.DateTimeField(null=True, blank=True, help_text="When failure was verified")
    refunded_at = models.DateTimeField(null=True, blank=True, help_text="When the payment was refunded")
    last_verified_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last time verify_status() was called for this payment",
    )

    objects = PaymentQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment"
        verbose_name_plural = "Payments"
        indexes = [
            models.Index(fields=["status", "created_at"], name="payment_status_created_idx"),
            models.Index(fields=["gateway", "transaction_reference"], name="payment_gateway_txref_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["order", "gateway", "kind"],
                name="unique_payment_per_order_gateway_kind",
            ),
            models.UniqueConstraint(
                fields=["gateway", "merchant_reference"],
                name="unique_payment_merchant_reference",
            ),
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="payment_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"Payment({self.gateway}, {self.merchant_reference}, {self.status})"

    @property
    def is_captured(self) -> bool:
        return self.status == PaymentStatus.CAPTURED

    @property
    def is_pending(self) -> bool:
        return self.status == PaymentStatus.PENDING

    @property
    def reference(self) -> str:
        """The reference verify_status() expects for this gateway."""
        return self.transaction_reference or self.merchant_reference
