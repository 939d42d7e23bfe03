"""
Celery tasks for payments.

Three settlement sweeps (automatic payouts, stale pending payments, open
disbursements) plus webhook upkeep: re-running failed deliveries and
pruning finished ones. Sweeps go through run_exclusive, so a beat run and
an HTTP-triggered run of the same sweep never overlap; the second returns
{"skipped": True, ...}. Every task can also be called synchronously.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from celery import shared_task
from django.conf import settings
from django.utils import timezone

from payments.locks import run_exclusive
from payments.models import WebhookEvent
from payments.services import PayoutService, ReconciliationService
from payments.state_machines import WebhookEventStatus
from payments.webhooks.handlers import RETRYABLE_ERRORS, reprocess_event

logger = logging.getLogger(__name__)

MAX_TASK_RETRIES = 3
STUCK_PROCESSING_THRESHOLD_MINUTES = 30
WEBHOOK_RETRY_BATCH_SIZE = 100


# =============================================================================
# Sweeps
# =============================================================================


@shared_task(acks_late=True)
def run_auto_payout_sweep() -> dict:
    """Pay out every vendor whose balance reached AUTO_PAYOUT_THRESHOLD."""
    return run_exclusive("auto-payout", PayoutService.run_auto_payout_sweep)


@shared_task(acks_late=True)
def reconcile_pending_payments() -> dict:
    """
    Re-verify payments left pending longer than PAYMENT_RECONCILE_AFTER_MINUTES.

    Covers lost callbacks and collect calls that timed out.
    """
    return run_exclusive("reconcile-payments", ReconciliationService.reconcile_pending_payments)


@shared_task(acks_late=True)
def refresh_processing_payouts() -> dict:
    """Ask the gateway about payouts still PROCESSING."""
    return run_exclusive("refresh-payouts", PayoutService.refresh_processing_payouts)


# =============================================================================
# Webhook Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=RETRYABLE_ERRORS,
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": MAX_TASK_RETRIES},
    acks_late=True,
)
def process_webhook_event(self, webhook_event_id: str) -> dict:
    """
    Re-run a stored delivery from its saved payload.

    Gateway and database errors propagate so Celery retries with backoff;
    the row is already marked FAILED by then.
    """
    event_id = str(webhook_event_id)
    webhook_event = WebhookEvent.objects.filter(pk=UUID(event_id)).first()
    if webhook_event is None:
        logger.error("WebhookEvent not found", extra={"webhook_event_id": event_id})
        return {"status": "not_found", "webhook_event_id": event_id}
    if webhook_event.is_done:
        return {"status": "already_processed", "webhook_event_id": event_id}

    return {"status": "processed", "outcome": reprocess_event(webhook_event), "webhook_event_id": event_id}


@shared_task
def retry_failed_webhooks() -> dict:
    """
    Queue failed webhook deliveries that still have retries left.

    Deliveries stuck in PROCESSING (the worker died mid-way) are reset to
    FAILED first so they are picked up too.
    """
    now = timezone.now()
    reset_count = WebhookEvent.objects.filter(
        status=WebhookEventStatus.PROCESSING,
        updated_at__lt=now - timedelta(minutes=STUCK_PROCESSING_THRESHOLD_MINUTES),
    ).update(
        status=WebhookEventStatus.FAILED,
        error_message="Processing timed out - reset for retry",
        updated_at=now,
    )
    if reset_count:
        logger.warning("Reset stuck webhooks", extra={"reset_count": reset_count})

    retryable = (
        WebhookEvent.objects.filter(
            status=WebhookEventStatus.FAILED,
            retry_count__lt=settings.WEBHOOK_MAX_RETRIES,
        )
        .order_by("created_at")
        .values_list("pk", "gateway", "retry_count")[:WEBHOOK_RETRY_BATCH_SIZE]
    )
    queued = 0
    for pk, gateway, retry_count in retryable:
        process_webhook_event.delay(str(pk))
        queued += 1
        logger.info(
            "Queued webhook retry",
            extra={"webhook_event_id": str(pk), "gateway": gateway, "retry_count": retry_count},
        )

    return {"queued_count": queued, "reset_count": reset_count}


@shared_task
def cleanup_old_webhooks(days: int | None = None) -> dict:
    """Delete processed and ignored deliveries past retention; failed ones stay for investigation."""
    cutoff = timezone.now() - timedelta(days=settings.WEBHOOK_RETENTION_DAYS if days is None else days)
    deleted_count, _ = WebhookEvent.objects.filter(
        status__in=[WebhookEventStatus.PROCESSED, WebhookEventStatus.IGNORED],
        processed_at__lt=cutoff,
    ).delete()
    if deleted_count:
        logger.info("Pruned webhook events", extra={"deleted_count": deleted_count, "cutoff": cutoff.isoformat()})
    return {"deleted_count": deleted_count}
