"""
Webhook endpoint views, one per gateway.

Each view:
1. Decodes the body (or query string) defensively - garbage gets a 200 no-op
2. Checks the sender's signature where the rail signs deliveries
3. Parses the payload into a WebhookPayload variant
4. Records a WebhookEvent (idempotent on the delivery's sha256)
5. Re-derives the truth from the gateway and applies it
6. Returns 200, or 503 when the gateway or database failed and the
   sender should retry

Usage:
    # In payments/urls.py
    from payments.webhooks import views as webhook_views

    urlpatterns = [
        path("webhooks/mpesa/", webhook_views.mpesa_webhook, name="mpesa_webhook"),
    ]
"""

from __future__ import annotations

import hmac
import json
import logging
from functools import wraps
from typing import Any
from urllib.parse import urlencode

import stripe
from django.conf import settings
from django.http import HttpRequest, HttpResponse, HttpResponseRedirect, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from payments.gateways.paystack import verify_paystack_signature
from payments.gateways.stripe_gateway import construct_stripe_event
from payments.services import CAPTURED, FAILED, ReconciliationService
from payments.state_machines import Gateway
from payments.webhooks.handlers import RETRYABLE_ERRORS, process_event, record_delivery
from payments.webhooks.schemas import (
    IgnoredPayload,
    IntaSendInvoiceEvent,
    PesapalNotification,
    parse_payload,
)

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": (
        "Content-Type, Stripe-Signature, X-Paystack-Signature"
    ),
    "Access-Control-Max-Age": "86400",
}


# =============================================================================
# Helpers
# =============================================================================


def webhook_endpoint(*methods: str):
    """
    Make a view a gateway endpoint.

    Exempts it from CSRF, restricts it to the given methods plus OPTIONS,
    answers OPTIONS with an empty 200, and adds CORS headers to every
    response.
    """
    allowed = [*methods, "OPTIONS"]

    def decorator(view):
        @wraps(view)
        def wrapper(request: HttpRequest, *args, **kwargs) -> HttpResponse:
            if request.method == "OPTIONS":
                response = HttpResponse(status=200)
            else:
                response = view(request, *args, **kwargs)
            for header, value in CORS_HEADERS.items():
                response[header] = value
            response["Access-Control-Allow-Methods"] = ", ".join(allowed)
            return response

        return csrf_exempt(require_http_methods(allowed)(wrapper))

    return decorator


def decode_json(raw: bytes) -> Any | None:
    """Decode a JSON body; None for empty or malformed input."""
    if not raw or not raw.strip():
        return None
    try:
        return json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        return None


def _accepted(body: dict | None = None) -> HttpResponse:
    if body is None:
        return HttpResponse("Accepted", status=200)
    return JsonResponse(body, status=200)


def _retry_later(body: dict | None = None) -> HttpResponse:
    if body is None:
        return HttpResponse("Temporarily unavailable", status=503)
    return JsonResponse(body, status=503)


def handle_delivery(
    gateway: str,
    raw: bytes | str,
    data: Any,
    ack_body: dict | None = None,
    retry_body: dict | None = None,
) -> HttpResponse:
    """Parse, record, and process one delivery."""
    payload = parse_payload(gateway, data)
    if isinstance(payload, IgnoredPayload):
        logger.info("Webhook ignored", extra={"gateway": gateway, "reason": payload.reason})
        return _accepted(ack_body)

    return process_payload(gateway, raw, data, payload, ack_body, retry_body)


def process_payload(gateway, raw, data, payload, ack_body=None, retry_body=None) -> HttpResponse:
    log_context = {"gateway": gateway, "reference": payload.reference, "event_type": payload.event_type}

    try:
        webhook_event, created = record_delivery(gateway, raw, data, payload)

        # Replays of a finished delivery are acknowledged without reprocessing
        if not created and webhook_event.is_done:
            logger.info("Webhook already processed, returning success", extra=log_context)
            return _accepted(ack_body)

        outcome = process_event(webhook_event, payload, data)
    except RETRYABLE_ERRORS:
        return _retry_later(retry_body)

    logger.info("Webhook accepted", extra={**log_context, "outcome": outcome})
    return _accepted(ack_body)


# =============================================================================
# M-Pesa (Daraja)
# =============================================================================

MPESA_ACCEPTED = {"ResultCode": 0, "ResultDesc": "Accepted"}
MPESA_RETRY = {"ResultCode": 1, "ResultDesc": "Temporarily unavailable"}


@webhook_endpoint("POST")
def mpesa_webhook(request: HttpRequest) -> HttpResponse:
    """
    STK push callback.

    The callback's ResultCode is only a trigger; the status is re-queried
    with STK Push Query before anything changes.
    """
    data = decode_json(request.body)
    return handle_delivery(Gateway.MPESA, request.body, data, MPESA_ACCEPTED, MPESA_RETRY)


@webhook_endpoint("POST")
def mpesa_b2c_result(request: HttpRequest) -> HttpResponse:
    """B2C disbursement result: settles or fails the matching payout."""
    data = decode_json(request.body)
    return handle_delivery(Gateway.MPESA, request.body, data, MPESA_ACCEPTED, MPESA_RETRY)


@webhook_endpoint("POST")
def mpesa_b2c_timeout(request: HttpRequest) -> HttpResponse:
    """
    B2C queue timeout.

    The payout keeps its PROCESSING state; the outcome arrives later on the
    result URL or is resolved by hand.
    """
    data = decode_json(request.body)
    result = data.get("Result") if isinstance(data, dict) else None
    logger.warning(
        "M-Pesa B2C request timed out in queue",
        extra={
            "gateway": Gateway.MPESA,
            "reference": (result or {}).get("ConversationID", ""),
        },
    )
    return _accepted(MPESA_ACCEPTED)


# =============================================================================
# Pesapal
# =============================================================================


def _pesapal_echo(payload: Any, data: Any, status: int) -> dict:
    if isinstance(payload, PesapalNotification):
        return {
            "orderNotificationType": payload.notification_type,
            "orderTrackingId": payload.order_tracking_id,
            "orderMerchantReference": payload.merchant_reference,
            "status": status,
        }
    data = data if isinstance(data, dict) else {}
    return {
        "orderNotificationType": data.get("OrderNotificationType", ""),
        "orderTrackingId": data.get("OrderTrackingId", ""),
        "orderMerchantReference": data.get("OrderMerchantReference", ""),
        "status": status,
    }


@webhook_endpoint("GET", "POST")
def pesapal_ipn(request: HttpRequest) -> HttpResponse:
    """
    Pesapal IPN, registered as GET or POST.

    Pesapal expects the notification echoed back with status 200; anything
    else makes it retry.
    """
    if request.method == "GET":
        data = request.GET.dict()
        raw = request.META.get("QUERY_STRING", "")
    else:
        data = decode_json(request.body)
        raw = request.body

    payload = parse_payload(Gateway.PESAPAL, data)
    if isinstance(payload, IgnoredPayload):
        logger.info("Webhook ignored", extra={"gateway": Gateway.PESAPAL, "reason": payload.reason})
        return _accepted(_pesapal_echo(payload, data, 200))

    return process_payload(
        Gateway.PESAPAL,
        raw,
        data,
        payload,
        ack_body=_pesapal_echo(payload, data, 200),
        retry_body=_pesapal_echo(payload, data, 500),
    )


@webhook_endpoint("GET")
def pesapal_callback(request: HttpRequest) -> HttpResponse:
    """
    Browser redirect after the hosted Pesapal page.

    Verifies the payment and sends the buyer to the frontend success or
    failure page.
    """
    payload = parse_payload(Gateway.PESAPAL, request.GET.dict())
    if isinstance(payload, IgnoredPayload):
        return HttpResponseRedirect(f"{settings.FRONTEND_PAYMENT_FAILURE_URL}?{urlencode({'status': 'invalid'})}")

    try:
        result = ReconciliationService.reconcile(
            Gateway.PESAPAL,
            payload.reference,
            verify_reference=payload.verify_reference,
        )
    except RETRYABLE_ERRORS as e:
        logger.warning(
            "Pesapal callback could not verify payment",
            extra={"gateway": Gateway.PESAPAL, "reference": payload.reference, "error": str(e)},
        )
        state = "pending"
    else:
        if result.action in (CAPTURED, FAILED):
            state = result.action
        elif result.payment is not None:
            state = result.payment.status
        else:
            state = "not_found"

    target = settings.FRONTEND_PAYMENT_SUCCESS_URL if state == CAPTURED else settings.FRONTEND_PAYMENT_FAILURE_URL
    query = urlencode(
        {
            "order_tracking_id": payload.order_tracking_id,
            "merchant_reference": payload.merchant_reference,
            "status": state,
        }
    )
    return HttpResponseRedirect(f"{target}?{query}")


# =============================================================================
# IntaSend
# =============================================================================


@webhook_endpoint("POST")
def intasend_webhook(request: HttpRequest) -> HttpResponse:
    """Collection webhook; the shared challenge must match when configured."""
    data = decode_json(request.body)
    payload = parse_payload(Gateway.INTASEND, data)
    if isinstance(payload, IgnoredPayload):
        logger.info("Webhook ignored", extra={"gateway": Gateway.INTASEND, "reason": payload.reason})
        return _accepted()

    expected = settings.INTASEND_WEBHOOK_CHALLENGE
    if expected and not (
        isinstance(payload, IntaSendInvoiceEvent) and hmac.compare_digest(payload.challenge, expected)
    ):
        logger.warning(
            "IntaSend webhook challenge mismatch",
            extra={"gateway": Gateway.INTASEND, "reference": payload.reference},
        )
        return _accepted()

    return process_payload(Gateway.INTASEND, request.body, data, payload)


# =============================================================================
# Paystack
# =============================================================================


@webhook_endpoint("POST")
def paystack_webhook(request: HttpRequest) -> HttpResponse:
    signature = request.headers.get("X-Paystack-Signature", "")
    if not verify_paystack_signature(request.body, signature):
        logger.warning("Paystack webhook signature verification failed", extra={"gateway": Gateway.PAYSTACK})
        return _accepted()

    data = decode_json(request.body)
    return handle_delivery(Gateway.PAYSTACK, request.body, data)


# =============================================================================
# Stripe
# =============================================================================


@webhook_endpoint("POST")
def stripe_webhook(request: HttpRequest) -> HttpResponse:
    """
    Stripe events, verified with the endpoint secret.

    Example Stripe-Signature header:
        t=1614556800,v1=xxx,v0=yyy
    """
    signature = request.headers.get("Stripe-Signature", "")
    if not signature:
        logger.warning("Webhook received without Stripe-Signature header", extra={"gateway": Gateway.STRIPE})
        return _accepted()

    try:
        event_data = construct_stripe_event(request.body, signature)
    except (stripe.SignatureVerificationError, ValueError) as e:
        logger.warning(
            "Webhook signature verification failed",
            extra={"gateway": Gateway.STRIPE, "error": str(e)},
        )
        return _accepted()

    return handle_delivery(Gateway.STRIPE, request.body, event_data)
