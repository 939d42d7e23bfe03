"""
Payment models.

- Payment: Collection attempt, one per (order, gateway, kind)
- EscrowTransaction: Funds held against an order
- VendorBalance: Released funds awaiting payout
- CommissionLedgerEntry: Append-only commission record
- Payout: Order-release entitlements and disbursements
- PayoutAccount: Vendor payout destination
- GatewayConfig: Shared provider token and IPN state
- WebhookEvent: Gateway delivery audit trail
"""

from payments.models.balance import CommissionLedgerEntry, VendorBalance
from payments.models.escrow import EscrowTransaction
from payments.models.gateway_config import GatewayConfig
from payments.models.payment import Payment
from payments.models.payout import Payout
from payments.models.payout_account import PayoutAccount
from payments.models.webhook_event import WebhookEvent

__all__ = [
    "CommissionLedgerEntry",
    "EscrowTransaction",
    "GatewayConfig",
    "Payment",
    "Payout",
    "PayoutAccount",
    "VendorBalance",
    "WebhookEvent",
]
