"""
Vendor payouts.

One table holds two kinds of row. An entitlement (trigger=order_release) is
written when an order completes and records what the vendor is owed for it;
no money moves. A disbursement (trigger=automatic or manual) sends a claimed
balance to the vendor's payout account and, once it is created, settles the
entitlements accrued up to the claim.

    payout.process(tracking_reference="AG_20191219_00005797af5d7d75f652")
    payout.save()
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone
from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel
from core.money import ZERO
from payments.state_machines import FeeBearer, PayoutMethod, PayoutState, PayoutTrigger

_OPEN = [PayoutState.PENDING, PayoutState.PROCESSING]


def _money(help_text: str, **kwargs) -> models.DecimalField:
    return models.DecimalField(max_digits=12, decimal_places=2, help_text=help_text, **kwargs)


class Payout(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    Money owed to, or sent to, a vendor.

        PENDING -> PROCESSING -> PAID      disbursement
        PENDING -> PAID                    entitlement settled
        PENDING | PROCESSING -> FAILED

    ``metadata`` keeps raw provider responses and the ``outcome_unknown``
    flag set when a disburse call timed out without a tracking id.
    """

    vendor = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="payouts",
        help_text="Vendor receiving the payout",
    )
    order = models.ForeignKey(
        "orders.Order", on_delete=models.PROTECT, related_name="payouts", null=True, blank=True,
        help_text="Order this entitlement is for. Null for disbursements.",
    )
    settled_by = models.ForeignKey(
        "self", on_delete=models.SET_NULL, related_name="settled_entitlements", null=True, blank=True,
        help_text="Disbursement that paid this entitlement",
    )

    amount = _money("Amount the vendor receives in KES")
    transfer_fee = _money("Disbursement fee in KES", default=ZERO)
    fee_paid_by = models.CharField(
        max_length=20, choices=FeeBearer.choices, default=FeeBearer.PLATFORM,
        help_text="Who absorbed the transfer fee",
    )
    balance_before = _money("Vendor balance claimed for this disbursement", default=ZERO)

    status = FSMField(
        default=PayoutState.PENDING, choices=PayoutState.choices, db_index=True, protected=True,
        help_text="Current state of the payout (managed by FSM)",
    )
    trigger = models.CharField(max_length=20, choices=PayoutTrigger.choices, help_text="Why this payout was created")

    method = models.CharField(
        max_length=20, choices=PayoutMethod.choices, default=PayoutMethod.MPESA, help_text="Payout method"
    )
    gateway = models.CharField(max_length=20, blank=True, default="", help_text="Gateway used to disburse")
    destination_account = models.CharField(
        max_length=255, blank=True, default="", help_text="Normalized phone number or connected account id"
    )
    tracking_reference = models.CharField(
        max_length=255, blank=True, default="", db_index=True, help_text="Gateway disbursement id"
    )

    paid_at = models.DateTimeField(null=True, blank=True, help_text="When payout completed")
    failed_at = models.DateTimeField(null=True, blank=True, help_text="When payout failed")
    failure_reason = models.TextField(blank=True, default="", help_text="Provider error if the payout failed")
    metadata = models.JSONField(
        default=dict, blank=True, help_text="Provider responses and flags such as outcome_unknown"
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payout"
        verbose_name_plural = "Payouts"
        indexes = [
            models.Index(fields=["vendor", "status"], name="payout_vendor_status_idx"),
            models.Index(fields=["trigger", "status"], name="payout_trigger_status_idx"),
            models.Index(fields=["status", "created_at"], name="payout_status_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(amount__gt=0), name="payout_amount_positive"),
            # At most one entitlement per order, so a retried release cannot pay twice
            models.UniqueConstraint(
                fields=["order"],
                condition=models.Q(trigger=PayoutTrigger.ORDER_RELEASE),
                name="unique_entitlement_per_order",
            ),
        ]

    def __str__(self) -> str:
        return f"Payout({self.id}, {self.status}, {self.amount} KES)"

    @transition(field=status, source=PayoutState.PENDING, target=PayoutState.PROCESSING)
    def process(self, tracking_reference: str = ""):
        """Gateway accepted the disbursement; the final result comes later."""
        if tracking_reference:
            self.tracking_reference = tracking_reference

    @transition(field=status, source=_OPEN, target=PayoutState.PAID)
    def complete(self):
        self.paid_at = timezone.now()

    @transition(field=status, source=PayoutState.PENDING, target=PayoutState.PAID)
    def settle(self, disbursement: Payout):
        """Entitlement paid by ``disbursement``."""
        self.settled_by = disbursement
        self.paid_at = timezone.now()

    @transition(field=status, source=_OPEN, target=PayoutState.FAILED)
    def fail(self, reason: str = ""):
        self.failed_at = timezone.now()
        self.failure_reason = reason

    @property
    def is_entitlement(self) -> bool:
        return self.trigger == PayoutTrigger.ORDER_RELEASE

    @property
    def outcome_unknown(self) -> bool:
        return bool(self.metadata.get("outcome_unknown"))

    @property
    def balance_claimed(self):
        """Amount debited from the vendor balance; includes the fee when the vendor bears it."""
        if self.fee_paid_by == FeeBearer.VENDOR:
            return self.amount + self.transfer_fee
        return self.amount
