"""
Pesapal API 3.0 adapter: hosted redirect checkout.

Pesapal has no disbursement or refund API; those operations raise
GatewayOperationNotSupported from the base class.

Configuration (via settings):
- PESAPAL_ENVIRONMENT: sandbox or production
- PESAPAL_CONSUMER_KEY / PESAPAL_CONSUMER_SECRET
- PESAPAL_IPN_URL: Our /webhooks/pesapal/ipn/ endpoint
- PESAPAL_CALLBACK_URL: Browser redirect after payment
- PESAPAL_CANCELLATION_URL: Browser redirect on cancel
"""

from __future__ import annotations

from datetime import timezone as dt_timezone

from django.conf import settings
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from core.money import to_money
from payments.exceptions import GatewayConfigurationError, GatewayError
from payments.gateways.base import (
    COMPLETED,
    FAILED,
    PENDING,
    BillingInfo,
    CollectResult,
    PaymentGateway,
    PaymentStatusResult,
)
from payments.gateways.http import GatewayHttpClient
from payments.gateways.phone import normalize_phone
from payments.gateways.tokens import GatewayConfigTokenStore, TokenCache

BASE_URLS = {
    "sandbox": "https://cybqa.pesapal.com/pesapalv3",
    "production": "https://pay.pesapal.com/v3",
}

# GetTransactionStatus status_code -> our state.
# 0 (INVALID) means Pesapal has no final answer yet; leave it pending.
STATUS_CODE_MAP = {
    1: COMPLETED,
    2: FAILED,
    3: FAILED,
    0: PENDING,
}


class PesapalGateway(PaymentGateway):
    """Pesapal v3 SubmitOrderRequest / GetTransactionStatus."""

    name = "pesapal"

    def __init__(self, http: GatewayHttpClient | None = None, token_cache: TokenCache | None = None):
        self.consumer_key = settings.PESAPAL_CONSUMER_KEY
        self.consumer_secret = settings.PESAPAL_CONSUMER_SECRET
        if not (self.consumer_key and self.consumer_secret):
            raise GatewayConfigurationError(
                "Pesapal is not configured",
                details={"missing": ["PESAPAL_CONSUMER_KEY", "PESAPAL_CONSUMER_SECRET"]},
            )

        base_url = BASE_URLS.get(settings.PESAPAL_ENVIRONMENT, BASE_URLS["sandbox"])
        self.http = http or GatewayHttpClient(self.name, base_url)
        self.tokens = token_cache or TokenCache(self._fetch_token, GatewayConfigTokenStore(self.name))

    # =========================================================================
    # Auth
    # =========================================================================

    def _fetch_token(self) -> tuple[str, int]:
        body = self.http.post(
            "/api/Auth/RequestToken",
            json={"consumer_key": self.consumer_key, "consumer_secret": self.consumer_secret},
            headers={"Accept": "application/json"},
            idempotent=True,
        )
        token = body.get("token")
        if not token:
            raise GatewayError(
                "Pesapal token response missing token",
                gateway=self.name,
                raw_response=body,
            )
        expires_in = 300
        expiry = parse_datetime(body.get("expiryDate") or "")
        if expiry is not None:
            if timezone.is_naive(expiry):
                expiry = timezone.make_aware(expiry, dt_timezone.utc)
            expires_in = max(int((expiry - timezone.now()).total_seconds()), 0)
        return token, expires_in

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.tokens.get()}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def _check_error(self, body: dict) -> None:
        error = body.get("error")
        if isinstance(error, str) and error:
            error = {"message": error}
        if isinstance(error, dict) and (error.get("code") or error.get("message")):
            raise GatewayError(
                error.get("message") or error.get("code"),
                gateway=self.name,
                raw_response=body,
                error_code=str(error.get("code") or "PESAPAL_ERROR").upper(),
            )

    # =========================================================================
    # IPN registration
    # =========================================================================

    def register_ipn(self, url: str | None = None, notification_type: str = "GET") -> str:
        """
        Register our IPN URL and remember the notification id.

        Returns:
            The ipn_id Pesapal assigned
        """
        from payments.models import GatewayConfig

        url = url or settings.PESAPAL_IPN_URL
        if not url:
            raise GatewayConfigurationError("PESAPAL_IPN_URL is not set")

        with self._timed("register_ipn", url=url) as log_context:
            body = self.http.post(
                "/api/URLSetup/RegisterIPN",
                json={"url": url, "ipn_notification_type": notification_type},
                headers=self._headers(),
                idempotent=True,
            )
            self._check_error(body)
            ipn_id = body.get("ipn_id")
            if not ipn_id:
                raise GatewayError("Pesapal RegisterIPN returned no ipn_id", gateway=self.name, raw_response=body)
            log_context["ipn_id"] = ipn_id

        GatewayConfig.objects.update_or_create(
            gateway=self.name,
            defaults={"ipn_id": ipn_id, "ipn_notification_type": notification_type},
        )
        return ipn_id

    def _ipn_id(self) -> str:
        from payments.models import GatewayConfig

        config = GatewayConfig.objects.filter(gateway=self.name).exclude(ipn_id="").first()
        if config is not None:
            return config.ipn_id
        return self.register_ipn()

    # =========================================================================
    # Collection
    # =========================================================================

    def collect(self, order, billing: BillingInfo, merchant_reference: str, amount=None) -> CollectResult:
        amount = to_money(amount if amount is not None else order.total)
        payload = {
            "id": merchant_reference,
            "currency": settings.PAYMENT_CURRENCY,
            "amount": float(amount),
            "description": f"Order {order.reference}"[:100],
            "callback_url": billing.callback_url or settings.PESAPAL_CALLBACK_URL,
            "cancellation_url": settings.PESAPAL_CANCELLATION_URL,
            "notification_id": self._ipn_id(),
            "billing_address": {
                "email_address": billing.email,
                "phone_number": normalize_phone(billing.phone) if billing.phone else "",
                "country_code": "KE",
                "first_name": billing.first_name,
                "last_name": billing.last_name,
            },
        }

        with self._timed("collect", reference=merchant_reference) as log_context:
            body = self.http.post("/api/Transactions/SubmitOrderRequest", json=payload, headers=self._headers())
            self._check_error(body)
            if not body.get("order_tracking_id") or not body.get("redirect_url"):
                raise GatewayError("Pesapal order response incomplete", gateway=self.name, raw_response=body)
            log_context["order_tracking_id"] = body["order_tracking_id"]

        return CollectResult(
            reference=body["order_tracking_id"],
            redirect_url=body["redirect_url"],
            raw_response=body,
        )

    def verify_status(self, reference: str) -> PaymentStatusResult:
        with self._timed("verify_status", reference=reference):
            body = self.http.get(
                "/api/Transactions/GetTransactionStatus",
                params={"orderTrackingId": reference},
                headers=self._headers(),
                idempotent=True,
            )

        if "status_code" not in body:
            self._check_error(body)
            raise GatewayError("Pesapal status response missing status_code", gateway=self.name, raw_response=body)

        try:
            code = int(body["status_code"])
        except (TypeError, ValueError):
            code = 0
        amount = body.get("amount")
        return PaymentStatusResult(
            state=STATUS_CODE_MAP.get(code, PENDING),
            amount=to_money(amount) if amount not in (None, "") else None,
            merchant_reference=body.get("merchant_reference") or "",
            provider_status=body.get("payment_status_description") or str(code),
            raw_response=body,
        )
