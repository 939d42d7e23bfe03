"""
State machine enums for order models.
"""

from orders.state_machines.states import (
    AWAITING_PAYMENT_STATES,
    PAID_ORDER_STATES,
    DisputeResolution,
    OrderStatus,
    VendorAction,
)

__all__ = [
    "AWAITING_PAYMENT_STATES",
    "PAID_ORDER_STATES",
    "DisputeResolution",
    "OrderStatus",
    "VendorAction",
]
