"""
M-Pesa Daraja adapter: STK push collection and B2C disbursement.

Configuration (via settings):
- MPESA_ENVIRONMENT: sandbox or production
- MPESA_CONSUMER_KEY / MPESA_CONSUMER_SECRET: OAuth app credentials
- MPESA_SHORTCODE / MPESA_PASSKEY: Lipa na M-Pesa Online till and passkey
- MPESA_CALLBACK_URL: STK callback (our /webhooks/mpesa/ endpoint)
- MPESA_B2C_*: B2C initiator credentials and result URLs
"""

from __future__ import annotations

import base64
from datetime import datetime
from decimal import ROUND_CEILING, Decimal
from typing import Any
from zoneinfo import ZoneInfo

from django.conf import settings
from django.utils import timezone

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
)
from payments.gateways.http import GatewayHttpClient
from payments.gateways.phone import normalize_phone
from payments.gateways.tokens import GatewayConfigTokenStore, TokenCache

BASE_URLS = {
    "sandbox": "https://sandbox.safaricom.co.ke",
    "production": "https://api.safaricom.co.ke",
}

# stkpushquery answers with this errorCode while the customer has not yet acted
STK_STILL_PROCESSING_CODES = frozenset({"500.001.1001"})

NAIROBI = ZoneInfo("Africa/Nairobi")


def stk_timestamp(now: datetime | None = None) -> str:
    """Daraja timestamp, YYYYMMDDHHMMSS in East Africa Time."""
    now = now or timezone.now()
    return timezone.localtime(now, timezone=NAIROBI).strftime("%Y%m%d%H%M%S")


def stk_password(shortcode: str, passkey: str, timestamp: str) -> str:
    return base64.b64encode(f"{shortcode}{passkey}{timestamp}".encode()).decode()


class MpesaGateway(PaymentGateway):
    """
    Safaricom Daraja STK push (Lipa na M-Pesa Online) and B2C.

    STK amounts must be whole shillings, so amounts are rounded up.
    """

    name = "mpesa"

    def __init__(self, http: GatewayHttpClient | None = None, token_cache: TokenCache | None = None):
        self.consumer_key = settings.MPESA_CONSUMER_KEY
        self.consumer_secret = settings.MPESA_CONSUMER_SECRET
        self.shortcode = settings.MPESA_SHORTCODE
        self.passkey = settings.MPESA_PASSKEY
        self.callback_url = settings.MPESA_CALLBACK_URL

        missing = [
            name
            for name, value in (
                ("MPESA_CONSUMER_KEY", self.consumer_key),
                ("MPESA_CONSUMER_SECRET", self.consumer_secret),
                ("MPESA_SHORTCODE", self.shortcode),
                ("MPESA_PASSKEY", self.passkey),
                ("MPESA_CALLBACK_URL", self.callback_url),
            )
            if not value
        ]
        if missing:
            raise GatewayConfigurationError(
                "M-Pesa is not configured",
                details={"missing": missing},
            )

        base_url = BASE_URLS.get(settings.MPESA_ENVIRONMENT, BASE_URLS["sandbox"])
        self.http = http or GatewayHttpClient(self.name, base_url)
        self.tokens = token_cache or TokenCache(self._fetch_token, GatewayConfigTokenStore(self.name))

    # =========================================================================
    # Auth
    # =========================================================================

    def _fetch_token(self) -> tuple[str, int]:
        body = self.http.get(
            "/oauth/v1/generate",
            params={"grant_type": "client_credentials"},
            auth=(self.consumer_key, self.consumer_secret),
            idempotent=True,
        )
        token = body.get("access_token")
        if not token:
            raise GatewayError("M-Pesa token response missing access_token", gateway=self.name, raw_response=body)
        return token, int(body.get("expires_in") or 3599)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.tokens.get()}"}

    # =========================================================================
    # Collection
    # =========================================================================

    def collect(self, order, billing: BillingInfo, merchant_reference: str, amount=None) -> CollectResult:
        amount = Decimal(amount if amount is not None else order.total)
        phone = normalize_phone(billing.phone)
        timestamp = stk_timestamp()
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": stk_password(self.shortcode, self.passkey, timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": int(amount.to_integral_value(rounding=ROUND_CEILING)),
            "PartyA": phone,
            "PartyB": self.shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.callback_url,
            "AccountReference": merchant_reference[:12],
            "TransactionDesc": f"Order {order.reference}"[:13],
        }

        with self._timed("collect", reference=merchant_reference) as log_context:
            body = self.http.post("/mpesa/stkpush/v1/processrequest", json=payload, headers=self._headers())
            if str(body.get("ResponseCode")) != "0" or not body.get("CheckoutRequestID"):
                raise GatewayError(
                    body.get("errorMessage") or body.get("ResponseDescription") or "STK push rejected",
                    gateway=self.name,
                    raw_response=body,
                )
            log_context["checkout_request_id"] = body["CheckoutRequestID"]

        return CollectResult(
            reference=body["CheckoutRequestID"],
            prompt=body.get("CustomerMessage", ""),
            raw_response=body,
        )

    def verify_status(self, reference: str) -> PaymentStatusResult:
        timestamp = stk_timestamp()
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": stk_password(self.shortcode, self.passkey, timestamp),
            "Timestamp": timestamp,
            "CheckoutRequestID": reference,
        }

        with self._timed("verify_status", reference=reference):
            try:
                body = self.http.post(
                    "/mpesa/stkpushquery/v1/query",
                    json=payload,
                    headers=self._headers(),
                    idempotent=True,
                )
            except GatewayError as e:
                raw = e.raw_response if isinstance(e.raw_response, dict) else {}
                if str(raw.get("errorCode")) in STK_STILL_PROCESSING_CODES:
                    return PaymentStatusResult(state=PENDING, provider_status=raw["errorCode"], raw_response=raw)
                raise

        return self._status_from_result_code(body)

    def _status_from_result_code(self, body: dict[str, Any]) -> PaymentStatusResult:
        if "ResultCode" not in body:
            raise GatewayError("M-Pesa status response missing ResultCode", gateway=self.name, raw_response=body)
        code = str(body["ResultCode"])
        state = COMPLETED if code == "0" else FAILED
        return PaymentStatusResult(state=state, provider_status=code, raw_response=body)

    # =========================================================================
    # Disbursement (B2C)
    # =========================================================================

    def disburse(self, destination, amount, narrative, reference="", account_name="") -> DisburseResult:
        b2c = {
            "InitiatorName": settings.MPESA_B2C_INITIATOR_NAME,
            "SecurityCredential": settings.MPESA_B2C_SECURITY_CREDENTIAL,
            "PartyA": settings.MPESA_B2C_SHORTCODE,
            "ResultURL": settings.MPESA_B2C_RESULT_URL,
            "QueueTimeOutURL": settings.MPESA_B2C_TIMEOUT_URL,
        }
        missing = [key for key, value in b2c.items() if not value]
        if missing:
            raise GatewayConfigurationError("M-Pesa B2C is not configured", details={"missing": missing})

        payload = {
            **b2c,
            "CommandID": "BusinessPayment",
            "Amount": int(Decimal(amount).to_integral_value(rounding=ROUND_CEILING)),
            "PartyB": normalize_phone(destination),
            "Remarks": narrative[:100],
            "Occasion": reference[:100],
        }

        with self._timed("disburse", reference=reference) as log_context:
            body = self.http.post("/mpesa/b2c/v1/paymentrequest", json=payload, headers=self._headers())
            if str(body.get("ResponseCode")) != "0" or not body.get("ConversationID"):
                raise GatewayError(
                    body.get("errorMessage") or body.get("ResponseDescription") or "B2C request rejected",
                    gateway=self.name,
                    raw_response=body,
                )
            log_context["conversation_id"] = body["ConversationID"]

        # Final result arrives on MPESA_B2C_RESULT_URL
        return DisburseResult(tracking_id=body["ConversationID"], status=PENDING, raw_response=body)
