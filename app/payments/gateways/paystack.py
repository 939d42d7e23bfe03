"""
Paystack adapter: transaction initialize/verify, transfers, refunds.

Amounts go over the wire in the currency's minor unit (x100).

Configuration (via settings):
- PAYSTACK_SECRET_KEY: API secret, also the webhook HMAC key
- PAYSTACK_CALLBACK_URL: Browser redirect after checkout
"""

from __future__ import annotations

import hashlib
import hmac
from urllib.parse import quote

from django.conf import settings

from core.money import from_minor_units, to_minor_units
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

BASE_URL = "https://api.paystack.co"

TRANSACTION_COMPLETED = {"success"}
TRANSACTION_FAILED = {"failed", "abandoned", "reversed"}

TRANSFER_COMPLETED = {"success"}
TRANSFER_FAILED = {"failed", "reversed", "rejected"}


def verify_paystack_signature(raw_body: bytes, signature: str, secret: str | None = None) -> bool:
    """Check the x-paystack-signature header (HMAC-SHA512 of the raw body)."""
    secret = secret if secret is not None else settings.PAYSTACK_SECRET_KEY
    if not secret or not signature:
        return False
    expected = hmac.new(secret.encode(), raw_body, hashlib.sha512).hexdigest()
    return hmac.compare_digest(expected, signature)


class PaystackGateway(PaymentGateway):
    """Paystack card/mobile-money checkout and transfers."""

    name = "paystack"
    verifies_merchant_reference = True

    def __init__(self, http: GatewayHttpClient | None = None):
        self.secret_key = settings.PAYSTACK_SECRET_KEY
        if not self.secret_key:
            raise GatewayConfigurationError(
                "Paystack is not configured",
                details={"missing": ["PAYSTACK_SECRET_KEY"]},
            )
        self.http = http or GatewayHttpClient(self.name, BASE_URL)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    def _data(self, body: dict) -> dict:
        if not body.get("status") or not isinstance(body.get("data"), dict):
            raise GatewayError(
                body.get("message") or "Paystack request failed",
                gateway=self.name,
                raw_response=body,
            )
        return body["data"]

    # =========================================================================
    # Collection
    # =========================================================================

    def collect(self, order, billing: BillingInfo, merchant_reference: str, amount=None) -> CollectResult:
        if not billing.email:
            raise GatewayError("Paystack requires a customer email", gateway=self.name, error_code="EMAIL_REQUIRED")

        amount = amount if amount is not None else order.total
        payload = {
            "email": billing.email,
            "amount": to_minor_units(amount),
            "currency": settings.PAYMENT_CURRENCY,
            "reference": merchant_reference,
            "callback_url": billing.callback_url or settings.PAYSTACK_CALLBACK_URL,
            "metadata": {"order_id": str(order.pk), "order_reference": order.reference},
        }

        with self._timed("collect", reference=merchant_reference):
            data = self._data(self.http.post("/transaction/initialize", json=payload, headers=self._headers()))
            if not data.get("authorization_url"):
                raise GatewayError("Paystack response missing authorization_url", gateway=self.name, raw_response=data)

        return CollectResult(
            reference=data.get("reference") or merchant_reference,
            redirect_url=data["authorization_url"],
            raw_response=data,
        )

    def verify_status(self, reference: str) -> PaymentStatusResult:
        with self._timed("verify_status", reference=reference):
            body = self.http.get(
                f"/transaction/verify/{quote(reference, safe='')}",
                headers=self._headers(),
                idempotent=True,
            )
        data = self._data(body)

        status = str(data.get("status") or "").lower()
        if status in TRANSACTION_COMPLETED:
            state = COMPLETED
        elif status in TRANSACTION_FAILED:
            state = FAILED
        else:
            state = PENDING

        amount = data.get("amount")
        return PaymentStatusResult(
            state=state,
            amount=from_minor_units(amount) if amount is not None else None,
            merchant_reference=data.get("reference") or reference,
            provider_status=status,
            raw_response=body,
        )

    # =========================================================================
    # Transfers
    # =========================================================================

    def _create_recipient(self, phone: str, account_name: str) -> str:
        payload = {
            "type": "mobile_money",
            "name": account_name or phone,
            "account_number": phone,
            "bank_code": "MPESA",
            "currency": settings.PAYMENT_CURRENCY,
        }
        data = self._data(
            self.http.post("/transferrecipient", json=payload, headers=self._headers(), idempotent=True)
        )
        code = data.get("recipient_code")
        if not code:
            raise GatewayError("Paystack recipient response missing recipient_code", gateway=self.name, raw_response=data)
        return code

    def disburse(self, destination, amount, narrative, reference="", account_name="") -> DisburseResult:
        phone = normalize_phone(destination)
        with self._timed("disburse", reference=reference) as log_context:
            recipient = self._create_recipient(phone, account_name)
            payload = {
                "source": "balance",
                "amount": to_minor_units(amount),
                "recipient": recipient,
                "reason": narrative,
                "currency": settings.PAYMENT_CURRENCY,
            }
            if reference:
                payload["reference"] = reference
            data = self._data(self.http.post("/transfer", json=payload, headers=self._headers()))
            tracking_id = data.get("transfer_code") or data.get("reference")
            if not tracking_id:
                raise GatewayError("Paystack transfer response missing transfer_code", gateway=self.name, raw_response=data)
            log_context["transfer_code"] = tracking_id

        return DisburseResult(
            tracking_id=tracking_id,
            status=self._transfer_state(data),
            raw_response=data,
        )

    def disbursement_status(self, tracking_id: str) -> DisburseResult:
        with self._timed("disbursement_status", reference=tracking_id):
            data = self._data(
                self.http.get(
                    f"/transfer/{quote(tracking_id, safe='')}",
                    headers=self._headers(),
                    idempotent=True,
                )
            )
        return DisburseResult(tracking_id=tracking_id, status=self._transfer_state(data), raw_response=data)

    @staticmethod
    def _transfer_state(data: dict) -> str:
        status = str(data.get("status") or "").lower()
        if status in TRANSFER_COMPLETED:
            return COMPLETED
        if status in TRANSFER_FAILED:
            return FAILED
        return PENDING

    # =========================================================================
    # Refunds
    # =========================================================================

    def refund(self, payment, amount, reason: str) -> RefundResult:
        payload = {
            "transaction": payment.transaction_reference or payment.merchant_reference,
            "amount": to_minor_units(amount),
            "merchant_note": reason[:255],
        }
        with self._timed("refund", reference=payload["transaction"]):
            data = self._data(self.http.post("/refund", json=payload, headers=self._headers()))
        return RefundResult(
            refund_id=str(data.get("id") or ""),
            status=PENDING,
            raw_response=data,
        )
