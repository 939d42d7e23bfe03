"""
Stripe adapter: PaymentIntents, Connect transfers, refunds.

The only rail that uses a provider SDK. Stripe SDK errors are translated
into GatewayError so services never import stripe.

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_WEBHOOK_SECRET: Webhook signing secret
- STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)
- STRIPE_CURRENCY: Lowercase ISO currency (default: kes)
"""

from __future__ import annotations

from typing import Any, NoReturn

import stripe
from django.conf import settings

from core.money import from_minor_units, to_minor_units
from payments.exceptions import GatewayConfigurationError, GatewayError, GatewayTimeoutError
from payments.gateways.base import (
    COMPLETED,
    FAILED,
    PENDING,
    BillingInfo,
    CollectResult,
    DisburseResult,
    PaymentGateway,
    PaymentStatusResult,
    RefundResult,
)

INTENT_FAILED = {"canceled"}
REFUND_STATES = {"succeeded": COMPLETED, "failed": FAILED, "canceled": FAILED}


def construct_stripe_event(payload: bytes, signature: str) -> dict[str, Any]:
    """
    Verify and parse a Stripe webhook event.

    Raises:
        stripe.SignatureVerificationError: Bad or missing signature
        ValueError: Payload is not valid JSON
    """
    event = stripe.Webhook.construct_event(payload, signature, settings.STRIPE_WEBHOOK_SECRET)
    return event.to_dict()


class StripeGateway(PaymentGateway):
    """Stripe PaymentIntent collection and Connect transfers."""

    name = "stripe"

    def __init__(self):
        self.secret_key = settings.STRIPE_SECRET_KEY
        if not self.secret_key:
            raise GatewayConfigurationError(
                "Stripe is not configured",
                details={"missing": ["STRIPE_SECRET_KEY"]},
            )
        self.currency = settings.STRIPE_CURRENCY

    def _configure_stripe(self) -> None:
        stripe.api_key = self.secret_key
        stripe.default_http_client = stripe.RequestsClient(timeout=settings.STRIPE_API_TIMEOUT_SECONDS)

    # =========================================================================
    # Collection
    # =========================================================================

    def collect(self, order, billing: BillingInfo, merchant_reference: str, amount=None) -> CollectResult:
        self._configure_stripe()
        amount = amount if amount is not None else order.total

        with self._timed("collect", reference=merchant_reference) as log_context:
            try:
                intent = stripe.PaymentIntent.create(
                    amount=to_minor_units(amount),
                    currency=self.currency,
                    receipt_email=billing.email or None,
                    automatic_payment_methods={"enabled": True},
                    metadata={
                        "merchant_reference": merchant_reference,
                        "order_id": str(order.pk),
                        "order_reference": order.reference,
                    },
                    idempotency_key=f"collect:{merchant_reference}",
                )
            except stripe.StripeError as e:
                self._raise_gateway_error(e)
            log_context["payment_intent_id"] = intent.id

        return CollectResult(
            reference=intent.id,
            client_secret=intent.client_secret or "",
            raw_response=intent.to_dict(),
        )

    def verify_status(self, reference: str) -> PaymentStatusResult:
        self._configure_stripe()
        with self._timed("verify_status", reference=reference):
            try:
                intent = stripe.PaymentIntent.retrieve(reference)
            except stripe.StripeError as e:
                self._raise_gateway_error(e)

        status = intent.status
        if status == "succeeded":
            state = COMPLETED
        elif status in INTENT_FAILED:
            state = FAILED
        else:
            state = PENDING

        received = intent.get("amount_received") or intent.get("amount")
        return PaymentStatusResult(
            state=state,
            amount=from_minor_units(received) if received else None,
            merchant_reference=(intent.get("metadata") or {}).get("merchant_reference", ""),
            provider_status=status,
            raw_response=intent.to_dict(),
        )

    # =========================================================================
    # Transfers
    # =========================================================================

    def disburse(self, destination, amount, narrative, reference="", account_name="") -> DisburseResult:
        self._configure_stripe()
        params: dict[str, Any] = {
            "amount": to_minor_units(amount),
            "currency": self.currency,
            "destination": destination,
            "description": narrative,
            "metadata": {"payout_reference": reference},
        }
        if reference:
            params["idempotency_key"] = f"disburse:{reference}"

        with self._timed("disburse", reference=reference) as log_context:
            try:
                transfer = stripe.Transfer.create(**params)
            except stripe.StripeError as e:
                self._raise_gateway_error(e)
            log_context["transfer_id"] = transfer.id

        # Connect transfers land in the connected balance immediately
        return DisburseResult(tracking_id=transfer.id, status=COMPLETED, raw_response=transfer.to_dict())

    def disbursement_status(self, tracking_id: str) -> DisburseResult:
        self._configure_stripe()
        try:
            transfer = stripe.Transfer.retrieve(tracking_id)
        except stripe.StripeError as e:
            self._raise_gateway_error(e)
        status = FAILED if transfer.get("reversed") else COMPLETED
        return DisburseResult(tracking_id=tracking_id, status=status, raw_response=transfer.to_dict())

    # =========================================================================
    # Refunds
    # =========================================================================

    def refund(self, payment, amount, reason: str) -> RefundResult:
        self._configure_stripe()
        with self._timed("refund", reference=payment.transaction_reference):
            try:
                refund = stripe.Refund.create(
                    payment_intent=payment.transaction_reference,
                    amount=to_minor_units(amount),
                    reason="requested_by_customer",
                    metadata={"note": reason[:500], "payment_id": str(payment.pk)},
                    idempotency_key=f"refund:{payment.pk}",
                )
            except stripe.StripeError as e:
                self._raise_gateway_error(e)
        return RefundResult(
            refund_id=refund.id,
            status=REFUND_STATES.get(refund.status, PENDING),
            raw_response=refund.to_dict(),
        )

    # =========================================================================
    # Error Handling
    # =========================================================================

    def _raise_gateway_error(self, error: stripe.StripeError) -> NoReturn:
        """
        Translate a Stripe SDK error into GatewayError.

        APIConnectionError on a money-moving call means the request may
        have reached Stripe, so it becomes GatewayTimeoutError.
        """
        body = getattr(error, "json_body", None)
        status_code = getattr(error, "http_status", None)
        code = getattr(error, "code", None)

        if isinstance(error, stripe.APIConnectionError):
            raise GatewayTimeoutError(
                "Could not reach Stripe",
                gateway=self.name,
                raw_response=body,
            ) from error

        if isinstance(error, stripe.CardError):
            message = error.user_message or str(error)
            retryable = False
        elif isinstance(error, stripe.RateLimitError):
            message = "Stripe rate limit exceeded"
            retryable = True
        elif isinstance(error, stripe.APIError):
            message = "Stripe API error"
            retryable = True
        elif isinstance(error, stripe.AuthenticationError):
            message = "Stripe authentication failed"
            retryable = False
        else:
            message = str(error) or error.__class__.__name__
            retryable = False

        raise GatewayError(
            message,
            gateway=self.name,
            raw_response=body,
            status_code=status_code,
            is_retryable=retryable,
            error_code=f"STRIPE_{code.upper()}" if code else None,
        ) from error
