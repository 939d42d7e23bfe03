"""
IntaSend adapter: hosted checkout, M-Pesa B2C send-money, and chargebacks.

IntaSend is the default payout rail (PAYOUT_GATEWAY=intasend).

Configuration (via settings):
- INTASEND_ENVIRONMENT: sandbox or production
- INTASEND_PUBLISHABLE_KEY / INTASEND_SECRET_KEY
- INTASEND_REDIRECT_URL: Browser redirect after checkout
- INTASEND_WEBHOOK_CHALLENGE: Shared challenge echoed in webhooks
"""

from __future__ import annotations

from django.conf import settings

from core.money import to_money
from payments.exceptions import GatewayConfigurationError, GatewayError
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
from payments.gateways.http import GatewayHttpClient
from payments.gateways.phone import normalize_phone

BASE_URLS = {
    "sandbox": "https://sandbox.intasend.com",
    "production": "https://payment.intasend.com",
}

INVOICE_COMPLETED = {"COMPLETE"}
INVOICE_FAILED = {"FAILED"}

SEND_MONEY_COMPLETED = {"completed", "successful", "ts100"}
SEND_MONEY_FAILED = {"failed", "cancelled", "canceled", "reversed", "tf103"}


class IntaSendGateway(PaymentGateway):
    """IntaSend checkout and send-money (MPESA-B2C)."""

    name = "intasend"

    def __init__(self, http: GatewayHttpClient | None = None):
        self.publishable_key = settings.INTASEND_PUBLISHABLE_KEY
        self.secret_key = settings.INTASEND_SECRET_KEY
        if not (self.publishable_key and self.secret_key):
            raise GatewayConfigurationError(
                "IntaSend is not configured",
                details={"missing": ["INTASEND_PUBLISHABLE_KEY", "INTASEND_SECRET_KEY"]},
            )
        base_url = BASE_URLS.get(settings.INTASEND_ENVIRONMENT, BASE_URLS["sandbox"])
        self.http = http or GatewayHttpClient(self.name, base_url)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    # =========================================================================
    # Collection
    # =========================================================================

    def collect(self, order, billing: BillingInfo, merchant_reference: str, amount=None) -> CollectResult:
        amount = to_money(amount if amount is not None else order.total)
        payload = {
            "public_key": self.publishable_key,
            "amount": str(amount),
            "currency": settings.PAYMENT_CURRENCY,
            "api_ref": merchant_reference,
            "email": billing.email,
            "phone_number": normalize_phone(billing.phone) if billing.phone else "",
            "first_name": billing.first_name,
            "last_name": billing.last_name,
            "redirect_url": billing.callback_url or settings.INTASEND_REDIRECT_URL,
        }

        with self._timed("collect", reference=merchant_reference) as log_context:
            body = self.http.post("/api/v1/checkout/", json=payload, headers=self._headers())
            if not body.get("url"):
                raise GatewayError("IntaSend checkout response missing url", gateway=self.name, raw_response=body)
            log_context["checkout_id"] = body.get("id")

        # Invoices are created when the customer pays, so until then the
        # webhook/status lookup goes through api_ref (our merchant reference).
        return CollectResult(
            reference=merchant_reference,
            redirect_url=body["url"],
            raw_response=body,
        )

    def verify_status(self, reference: str) -> PaymentStatusResult:
        """Query by IntaSend invoice id."""
        with self._timed("verify_status", reference=reference):
            body = self.http.post(
                "/api/v1/payment/status/",
                json={"invoice_id": reference, "public_key": self.publishable_key},
                headers=self._headers(),
                idempotent=True,
            )

        invoice = body.get("invoice")
        if not isinstance(invoice, dict) or "state" not in invoice:
            raise GatewayError("IntaSend status response missing invoice state", gateway=self.name, raw_response=body)

        state_name = str(invoice["state"]).upper()
        if state_name in INVOICE_COMPLETED:
            state = COMPLETED
        elif state_name in INVOICE_FAILED:
            state = FAILED
        else:
            state = PENDING

        value = invoice.get("value")
        return PaymentStatusResult(
            state=state,
            amount=to_money(value) if value not in (None, "") else None,
            merchant_reference=invoice.get("api_ref") or "",
            provider_status=state_name,
            raw_response=body,
        )

    # =========================================================================
    # Disbursement
    # =========================================================================

    def disburse(self, destination, amount, narrative, reference="", account_name="") -> DisburseResult:
        payload = {
            "provider": "MPESA-B2C",
            "currency": settings.PAYMENT_CURRENCY,
            "requires_approval": "NO",
            "transactions": [
                {
                    "name": account_name,
                    "account": normalize_phone(destination),
                    "amount": str(to_money(amount)),
                    "narrative": narrative,
                }
            ],
        }

        with self._timed("disburse", reference=reference) as log_context:
            body = self.http.post("/api/v1/send-money/initiate/", json=payload, headers=self._headers())
            tracking_id = body.get("tracking_id")
            if not tracking_id:
                raise GatewayError("IntaSend send-money response missing tracking_id", gateway=self.name, raw_response=body)
            log_context["tracking_id"] = tracking_id

        return DisburseResult(
            tracking_id=tracking_id,
            status=self._send_money_state(body),
            raw_response=body,
        )

    def disbursement_status(self, tracking_id: str) -> DisburseResult:
        with self._timed("disbursement_status", reference=tracking_id):
            body = self.http.post(
                "/api/v1/send-money/status/",
                json={"tracking_id": tracking_id},
                headers=self._headers(),
                idempotent=True,
            )
        return DisburseResult(
            tracking_id=tracking_id,
            status=self._send_money_state(body),
            raw_response=body,
        )

    @staticmethod
    def _send_money_state(body: dict) -> str:
        statuses = [str(body.get("status") or "").lower()]
        for transaction in body.get("transactions") or []:
            if isinstance(transaction, dict):
                statuses.append(str(transaction.get("status") or "").lower())
                statuses.append(str(transaction.get("status_code") or "").lower())

        if any(status in SEND_MONEY_FAILED for status in statuses):
            return FAILED
        if statuses[0] in SEND_MONEY_COMPLETED:
            return COMPLETED
        return PENDING

    # =========================================================================
    # Refunds
    # =========================================================================

    def refund(self, payment, amount, reason: str) -> RefundResult:
        payload = {
            "invoice": payment.transaction_reference,
            "amount": str(to_money(amount)),
            "reason": "Unavailable service",
            "reason_details": reason[:255],
        }
        with self._timed("refund", reference=payment.transaction_reference):
            body = self.http.post("/api/v1/chargebacks/", json=payload, headers=self._headers())
        refund_id = body.get("chargeback_id") or body.get("id")
        if not refund_id:
            raise GatewayError("IntaSend chargeback response missing id", gateway=self.name, raw_response=body)
        return RefundResult(refund_id=str(refund_id), raw_response=body)
