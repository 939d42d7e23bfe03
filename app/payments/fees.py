"""
Disbursement fee schedules and payout fee policies.

FeeSchedule is an ordered band table: the first band whose inclusive upper
bound is >= amount gives the fee. A None bound catches everything above.

Usage:
    from payments.fees import auto_payout_policy

    policy = auto_payout_policy()
    fee = policy.fee_for(Decimal("1600"))  # 100 with the default bands
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from django.conf import settings

from core.money import ZERO, to_money
from payments.state_machines import FeeBearer


@dataclass(frozen=True)
class FeeBand:
    upper_bound: Decimal | None
    fee: Decimal

    def covers(self, amount: Decimal) -> bool:
        return self.upper_bound is None or amount <= self.upper_bound


class FeeSchedule:
    """
    Ordered fee bands with inclusive upper bounds.

    Example:
        FeeSchedule.from_config([[100, 10], [1000, 20], [None, 100]])
        # 100 -> 10, 101 -> 20, 1000 -> 20, 2000 -> 100
    """

    def __init__(self, bands: list[FeeBand]):
        if not bands:
            raise ValueError("A fee schedule needs at least one band")
        bounded = [band.upper_bound for band in bands if band.upper_bound is not None]
        if bounded != sorted(bounded):
            raise ValueError("Fee bands must be ordered by upper bound")
        if any(band.upper_bound is None for band in bands[:-1]):
            raise ValueError("Only the last fee band may be unbounded")
        self.bands = list(bands)

    @classmethod
    def from_config(cls, rows) -> FeeSchedule:
        return cls(
            [
                FeeBand(
                    upper_bound=None if bound is None else to_money(bound),
                    fee=to_money(fee),
                )
                for bound, fee in rows
            ]
        )

    def fee_for(self, amount) -> Decimal:
        amount = to_money(amount)
        for band in self.bands:
            if band.covers(amount):
                return band.fee
        # Amount above the last bounded band with no catch-all
        return self.bands[-1].fee


@dataclass(frozen=True)
class PayoutQuote:
    """
    What a payout of a given balance looks like under a policy.

    Attributes:
        balance: Amount claimed from the vendor balance
        fee: Transfer fee
        amount: Amount the vendor receives
        fee_paid_by: platform or vendor
    """

    balance: Decimal
    fee: Decimal
    amount: Decimal
    fee_paid_by: str


@dataclass(frozen=True)
class FeePolicy:
    """Ties a fee schedule to whoever pays the fee, plus a minimum balance."""

    schedule: FeeSchedule
    fee_paid_by: str
    threshold: Decimal

    def fee_for(self, amount) -> Decimal:
        return self.schedule.fee_for(amount)

    def quote(self, balance) -> PayoutQuote:
        balance = to_money(balance)
        fee = self.fee_for(balance)
        if self.fee_paid_by == FeeBearer.VENDOR:
            amount = max(balance - fee, ZERO)
        else:
            amount = balance
        return PayoutQuote(balance=balance, fee=fee, amount=amount, fee_paid_by=self.fee_paid_by)


def auto_payout_policy() -> FeePolicy:
    return FeePolicy(
        schedule=FeeSchedule.from_config(settings.AUTO_PAYOUT_FEE_BANDS),
        fee_paid_by=settings.AUTO_PAYOUT_FEE_BEARER,
        threshold=to_money(settings.AUTO_PAYOUT_THRESHOLD),
    )


def manual_payout_policy() -> FeePolicy:
    return FeePolicy(
        schedule=FeeSchedule.from_config(settings.MANUAL_PAYOUT_FEE_BANDS),
        fee_paid_by=settings.MANUAL_PAYOUT_FEE_BEARER,
        threshold=to_money(settings.MANUAL_PAYOUT_THRESHOLD),
    )
