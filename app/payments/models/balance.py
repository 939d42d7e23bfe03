"""
Vendor balance and commission ledger models.

VendorBalance is mutated only through single UPDATE statements (F()
increments or compare-and-swap filters) in BalanceService. It never goes
through read-modify-write in Python.

CommissionLedgerEntry is append-only.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from core.money import ZERO


class VendorBalance(UUIDPrimaryKeyMixin, BaseModel):
    """
    Money released to a vendor but not yet paid out.

    Fields:
        vendor: Vendor owning the balance
        pending_balance: Released and not yet disbursed (never negative)
        total_earned: Lifetime released amount
        total_paid_out: Lifetime amount claimed for disbursement
        last_payout_at: When the balance was last claimed
    """

    vendor = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="vendor_balance",
        help_text="Vendor owning this balance",
    )

    pending_balance = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=ZERO,
        help_text="Released funds awaiting disbursement in KES",
    )

    total_earned = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=ZERO,
        help_text="Lifetime released funds in KES",
    )

    total_paid_out = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=ZERO,
        help_text="Lifetime disbursed funds in KES",
    )

    last_payout_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the balance was last claimed for a payout",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Vendor Balance"
        verbose_name_plural = "Vendor Balances"
        indexes = [
            models.Index(fields=["pending_balance"], name="vendor_balance_pending_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(pending_balance__gte=0),
                name="vendor_balance_pending_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"VendorBalance({self.vendor_id}, {self.pending_balance} KES)"


class CommissionLedgerEntry(UUIDPrimaryKeyMixin, BaseModel):
    """
    Append-only record of commission earned on a completed order.

    One entry per order, so replayed completions never double-record.
    """

    vendor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="commission_entries",
        help_text="Vendor the commission was taken from",
    )

    order = models.OneToOneField(
        "orders.Order",
        on_delete=models.PROTECT,
        related_name="commission_entry",
        help_text="Order the commission was earned on",
    )

    commission_rate = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        help_text="Commission percent applied",
    )

    commission_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Commission in KES",
    )

    notes = models.TextField(blank=True, default="", help_text="Free-form notes")

    recorded_at = models.DateTimeField(auto_now_add=True, help_text="When the entry was recorded")

    class Meta:
        ordering = ["-recorded_at"]
        verbose_name = "Commission Ledger Entry"
        verbose_name_plural = "Commission Ledger Entries"

    def __str__(self) -> str:
        return f"CommissionLedgerEntry({self.order_id}, {self.commission_amount} KES)"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Commission ledger entries are immutable")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Commission ledger entries cannot be deleted")
