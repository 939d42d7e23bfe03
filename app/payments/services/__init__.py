"""
Payment services for collection, reconciliation, escrow, and payouts.

This module provides:
- CheckoutService: Starts (or resumes) collection for an order
- ReconciliationService: Applies gateway-verified status to payments,
  orders, and escrow
- EscrowService: Holds, releases, freezes, and refunds order funds
- BalanceService: Atomic vendor balance credits, claims, and restores
- PayoutService: Entitlements, balance disbursements, and their follow-up

Usage:
    from payments.services import CheckoutService, PayoutService

    result = CheckoutService.start_checkout(order_id, "paystack", billing, user)

    stats = PayoutService.run_auto_payout_sweep()
"""

from payments.services.balance_service import BalanceService
from payments.services.checkout_service import CheckoutResult, CheckoutService
from payments.services.escrow_service import EscrowService
from payments.services.payout_service import PayoutService, SettlementResult
from payments.services.reconciliation_service import (
    ALREADY_FINAL,
    AMOUNT_MISMATCH,
    CAPTURED,
    FAILED,
    NOT_FOUND,
    STILL_PENDING,
    ReconcileResult,
    ReconciliationService,
)

__all__ = [
    "ALREADY_FINAL",
    "AMOUNT_MISMATCH",
    "CAPTURED",
    "FAILED",
    "NOT_FOUND",
    "STILL_PENDING",
    "BalanceService",
    "CheckoutResult",
    "CheckoutService",
    "EscrowService",
    "PayoutService",
    "ReconcileResult",
    "ReconciliationService",
    "SettlementResult",
]
