"""
Celery tasks for orders.

This module provides periodic tasks for:
- Auto-releasing escrow on shipped orders the buyer never confirmed
- Cancelling orders nobody paid or the vendor never confirmed
- Refunding confirmed orders that were never shipped

Each runs under a non-blocking sweep lock and returns its stats dict.
The same tasks back the /api/v1/payments/jobs/ HTTP triggers.

Usage:
    from orders.tasks import run_auto_release_sweep

    stats = run_auto_release_sweep()
"""

from __future__ import annotations

import logging

from celery import shared_task

from orders.services import OrderCompletionService, OrderLifecycleService
from payments.locks import run_exclusive

logger = logging.getLogger(__name__)


@shared_task(acks_late=True)
def run_auto_release_sweep() -> dict:
    """Complete orders whose ESCROW_AUTO_RELEASE_DAYS window has passed."""
    return run_exclusive("auto-release", OrderCompletionService.run_auto_release_sweep)


@shared_task(acks_late=True)
def cancel_stale_orders() -> dict:
    return run_exclusive("cancel-stale-orders", OrderLifecycleService.cancel_stale_orders)


@shared_task(acks_late=True)
def refund_unshipped_orders() -> dict:
    return run_exclusive("refund-unshipped-orders", OrderLifecycleService.refund_unshipped_orders)
