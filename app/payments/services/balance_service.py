"""
Vendor balance service.

Every mutation is a single UPDATE: F() increments for credits and restores,
and a compare-and-swap on pending_balance for claims. Nothing here reads a
balance and writes it back.

Usage:
    from payments.services import BalanceService

    BalanceService.credit(vendor, Decimal("4860.00"))

    claimed = BalanceService.claim_full_balance(vendor, minimum=Decimal("500"))
    if claimed:
        ...  # disburse, and on refusal:
        BalanceService.restore(vendor, claimed)
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from django.db.models import F
from django.utils import timezone

from core.money import ZERO, to_money
from core.services import BaseService
from payments.exceptions import StaleRecordError
from payments.models import VendorBalance

if TYPE_CHECKING:
    from authentication.models import User


# Compare-and-swap attempts before giving up on a contended balance
CLAIM_ATTEMPTS = 3


class BalanceService(BaseService):
    """Atomic operations on VendorBalance rows."""

    @classmethod
    def get_or_create(cls, vendor: User) -> VendorBalance:
        balance, _ = VendorBalance.objects.get_or_create(vendor=vendor)
        return balance

    @classmethod
    def credit(cls, vendor: User, amount) -> None:
        """Add released escrow funds to the vendor's pending balance."""
        amount = to_money(amount)
        if amount <= ZERO:
            return

        cls.get_or_create(vendor)
        VendorBalance.objects.filter(vendor=vendor).update(
            pending_balance=F("pending_balance") + amount,
            total_earned=F("total_earned") + amount,
            updated_at=timezone.now(),
        )
        cls.get_logger().info(
            "Vendor balance credited",
            extra={"vendor_id": str(vendor.pk), "amount": str(amount)},
        )

    @classmethod
    def claim_balance(cls, vendor: User, expected) -> bool:
        """
        Zero the balance if it still equals expected.

        Returns True if this caller won the claim. total_paid_out is
        credited in the same statement.
        """
        expected = to_money(expected)
        now = timezone.now()
        updated = VendorBalance.objects.filter(vendor=vendor, pending_balance=expected).update(
            pending_balance=ZERO,
            total_paid_out=F("total_paid_out") + expected,
            last_payout_at=now,
            updated_at=now,
        )
        return updated == 1

    @classmethod
    def claim_full_balance(cls, vendor: User, minimum=ZERO) -> Decimal:
        """
        Claim the vendor's whole pending balance.

        Reads the balance and compare-and-swaps it to zero. A concurrent
        credit between read and write makes the swap miss, so it re-reads
        and tries again.

        Returns:
            The claimed amount, or ZERO if the balance is empty or below
            minimum.

        Raises:
            StaleRecordError: Every attempt lost to a concurrent writer
        """
        minimum = to_money(minimum)
        for attempt in range(1, CLAIM_ATTEMPTS + 1):
            observed = (
                VendorBalance.objects.filter(vendor=vendor).values_list("pending_balance", flat=True).first()
            )
            if observed is None:
                return ZERO
            observed = to_money(observed)
            if observed <= ZERO or observed < minimum:
                return ZERO

            if cls.claim_balance(vendor, observed):
                cls.get_logger().info(
                    "Vendor balance claimed",
                    extra={"vendor_id": str(vendor.pk), "amount": str(observed), "attempt": attempt},
                )
                return observed

            cls.get_logger().debug(
                "Balance claim lost a race, retrying",
                extra={"vendor_id": str(vendor.pk), "attempt": attempt},
            )

        raise StaleRecordError(
            "Vendor balance changed during every claim attempt",
            details={"vendor_id": str(vendor.pk), "attempts": CLAIM_ATTEMPTS},
        )

    @classmethod
    def restore(cls, vendor: User, amount) -> None:
        """Give back a claimed amount after a refused disbursement."""
        amount = to_money(amount)
        if amount <= ZERO:
            return

        VendorBalance.objects.filter(vendor=vendor).update(
            pending_balance=F("pending_balance") + amount,
            total_paid_out=F("total_paid_out") - amount,
            updated_at=timezone.now(),
        )
        cls.get_logger().warning(
            "Vendor balance restored after failed disbursement",
            extra={"vendor_id": str(vendor.pk), "amount": str(amount)},
        )
