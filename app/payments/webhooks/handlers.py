"""
Webhook handlers and the delivery processing pipeline.

Each payload variant from payments.webhooks.schemas maps to one handler.
Collection callbacks all go through ReconciliationService, which asks the
gateway for the authoritative status; M-Pesa B2C results settle or fail
the matching payout.

Usage:
    from payments.webhooks.handlers import process_event, record_delivery

    event, created = record_delivery(Gateway.MPESA, request.body, data, payload)
    if created or not event.is_done:
        process_event(event, payload, data)
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from django.db import DatabaseError

from payments.exceptions import GatewayConfigurationError, GatewayError
from payments.models import WebhookEvent
from payments.services import NOT_FOUND, PayoutService, ReconciliationService
from payments.webhooks.schemas import (
    IgnoredPayload,
    IntaSendInvoiceEvent,
    MpesaB2CResult,
    MpesaStkCallback,
    PaystackChargeEvent,
    PesapalNotification,
    StripePaymentIntentEvent,
    WebhookPayload,
    parse_payload,
)

logger = logging.getLogger(__name__)

# Failures the sender should retry: answered with 503 and kept as FAILED.
RETRYABLE_ERRORS = (GatewayError, GatewayConfigurationError, DatabaseError)

APPLIED = "applied"


# =============================================================================
# Handler Registry
# =============================================================================

# Maps payload variant -> handler(payload, data) returning an outcome string
WEBHOOK_HANDLERS: dict[type, Callable[[Any, dict], str]] = {}


def register_handler(*payload_types: type) -> Callable:
    """
    Decorator to register a handler for one or more payload variants.

    Usage:
        @register_handler(PaystackChargeEvent)
        def handle_charge(payload: PaystackChargeEvent, data: dict) -> str:
            ...
    """

    def decorator(func: Callable[[Any, dict], str]) -> Callable:
        for payload_type in payload_types:
            WEBHOOK_HANDLERS[payload_type] = func
        return func

    return decorator


def dispatch_webhook(payload: WebhookPayload, data: dict) -> str:
    handler = WEBHOOK_HANDLERS.get(type(payload))
    if handler is None:
        logger.info(
            f"No handler registered for payload {type(payload).__name__}",
            extra={"gateway": payload.gateway},
        )
        return NOT_FOUND
    return handler(payload, data)


# =============================================================================
# Handlers
# =============================================================================


@register_handler(
    MpesaStkCallback,
    PesapalNotification,
    IntaSendInvoiceEvent,
    PaystackChargeEvent,
    StripePaymentIntentEvent,
)
def handle_collection_callback(payload, data: dict) -> str:
    """Re-derive the payment's status from the gateway and apply it."""
    result = ReconciliationService.reconcile(
        payload.gateway,
        payload.reference,
        verify_reference=payload.verify_reference,
    )
    return result.action


@register_handler(MpesaB2CResult)
def handle_b2c_result(payload: MpesaB2CResult, data: dict) -> str:
    applied = PayoutService.handle_mpesa_b2c_result(
        payload.conversation_id,
        payload.result_code,
        data.get("Result") or {},
    )
    return APPLIED if applied else NOT_FOUND


# =============================================================================
# Processing
# =============================================================================


def record_delivery(gateway: str, raw: bytes | str, data: dict, payload: WebhookPayload):
    """
    Store a delivery once per (gateway, sha256(raw)).

    Returns:
        (WebhookEvent, created)
    """
    return WebhookEvent.objects.get_or_create(
        gateway=gateway,
        delivery_key=WebhookEvent.key_for(raw),
        defaults={
            "event_type": payload.event_type[:100],
            "reference": payload.reference[:255],
            "payload": data,
        },
    )


def process_event(webhook_event: WebhookEvent, payload: WebhookPayload, data: dict) -> str:
    """
    Run the handler for a recorded delivery and store the outcome.

    Raises:
        GatewayError, GatewayConfigurationError, DatabaseError: after the
            event has been marked FAILED; the view answers 503
    """
    log_context = {
        "webhook_event_id": str(webhook_event.pk),
        "gateway": webhook_event.gateway,
        "reference": payload.reference,
    }

    webhook_event.mark_processing()
    webhook_event.save(update_fields=["status", "retry_count", "updated_at"])

    try:
        outcome = dispatch_webhook(payload, data)
    except Exception as e:
        webhook_event.mark_failed(f"{type(e).__name__}: {e}"[:2000])
        webhook_event.save(update_fields=["status", "error_message", "updated_at"])
        if isinstance(e, RETRYABLE_ERRORS):
            logger.warning("Webhook processing failed, sender will retry", extra={**log_context, "error": str(e)})
        else:
            logger.exception("Webhook processing crashed", extra=log_context)
        raise

    if outcome == NOT_FOUND:
        webhook_event.mark_ignored("No matching payment or payout")
    else:
        webhook_event.mark_processed()
    webhook_event.save(update_fields=["status", "processed_at", "error_message", "updated_at"])

    logger.info("Webhook processed", extra={**log_context, "outcome": outcome})
    return outcome


def reprocess_event(webhook_event: WebhookEvent) -> str:
    """Re-run a stored delivery from its saved payload (retry task)."""
    payload = parse_payload(webhook_event.gateway, webhook_event.payload)
    if isinstance(payload, IgnoredPayload):
        webhook_event.mark_ignored(payload.reason)
        webhook_event.save(update_fields=["status", "processed_at", "error_message", "updated_at"])
        return NOT_FOUND
    return process_event(webhook_event, payload, webhook_event.payload)
