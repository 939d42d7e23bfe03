"""
Order services.

- OrderService: Builds orders from cart lines
- OrderCompletionService: Buyer confirmation, escrow release, auto-release
- OrderLifecycleService: Vendor actions, disputes, stale-order sweeps
"""

from orders.services.completion_service import CompletionResult, OrderCompletionService
from orders.services.lifecycle_service import OrderLifecycleService
from orders.services.order_service import CartLine, OrderService

__all__ = [
    "CartLine",
    "CompletionResult",
    "OrderCompletionService",
    "OrderLifecycleService",
    "OrderService",
]
