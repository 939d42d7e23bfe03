"""
State machine enums for payment models.
"""

from payments.state_machines.states import (
    EscrowStatus,
    FeeBearer,
    Gateway,
    PaymentKind,
    PaymentStatus,
    PayoutMethod,
    PayoutState,
    PayoutTrigger,
    WebhookEventStatus,
)

__all__ = [
    "EscrowStatus",
    "FeeBearer",
    "Gateway",
    "PaymentKind",
    "PaymentStatus",
    "PayoutMethod",
    "PayoutState",
    "PayoutTrigger",
    "WebhookEventStatus",
]
