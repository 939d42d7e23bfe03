"""
PayoutAccount model: where a vendor receives money.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import PayoutMethod


class PayoutAccount(UUIDPrimaryKeyMixin, BaseModel):
    """
    A vendor's payout destination.

    Fields:
        vendor: Vendor owning the account
        method: mpesa or stripe
        account_number: Phone number for mobile money
        account_name: Registered name on the account
        stripe_account_id: Connected account id (acct_xxx) for Stripe payouts
        is_active: Inactive accounts are treated as missing
    """

    vendor = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="payout_account",
        help_text="Vendor owning this payout account",
    )

    method = models.CharField(
        max_length=20,
        choices=PayoutMethod.choices,
        default=PayoutMethod.MPESA,
        help_text="How the vendor is paid",
    )

    account_number = models.CharField(
        max_length=50,
        blank=True,
        default="",
        help_text="Phone number for mobile-money payouts",
    )

    account_name = models.CharField(
        max_length=150,
        blank=True,
        default="",
        help_text="Registered account holder name",
    )

    stripe_account_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Stripe connected account id (acct_xxx)",
    )

    is_active = models.BooleanField(
        default=True,
        help_text="Whether payouts may be sent to this account",
    )

    class Meta:
        verbose_name = "Payout Account"
        verbose_name_plural = "Payout Accounts"

    def __str__(self) -> str:
        return f"PayoutAccount({self.vendor_id}, {self.method})"

    @property
    def destination(self) -> str:
        """Identifier passed to disburse()."""
        if self.method == PayoutMethod.STRIPE:
            return self.stripe_account_id
        return self.account_number
