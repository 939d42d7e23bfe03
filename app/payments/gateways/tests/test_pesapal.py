"""
Tests for the Pesapal v3 adapter.
"""

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from freezegun import freeze_time

from payments.exceptions import GatewayConfigurationError, GatewayError, GatewayOperationNotSupported
from payments.gateways import COMPLETED, FAILED, PENDING, BillingInfo
from payments.gateways.pesapal import PesapalGateway
from payments.models import GatewayConfig

IPN_ID = "e2a6f7c4-8a6b-4d7e-9b44-dd9a51cf6c1e"


@pytest.fixture(autouse=True)
def pesapal_settings(settings):
    settings.PESAPAL_CONSUMER_KEY = "qkio1BGGYAXTu2JOfm7XSXNruoZsrqEW"
    settings.PESAPAL_CONSUMER_SECRET = "osGQ364R49cXKeOYSpaOnT++rHs="
    settings.PESAPAL_IPN_URL = "https://api.example.com/api/v1/payments/webhooks/pesapal/ipn/"
    settings.PESAPAL_CALLBACK_URL = "https://api.example.com/api/v1/payments/webhooks/pesapal/callback/"
    return settings


@pytest.fixture
def http():
    return MagicMock()


@pytest.fixture
def gateway(http):
    tokens = MagicMock()
    tokens.get.return_value = "pesapal-token"
    return PesapalGateway(http=http, token_cache=tokens)


class TestConfiguration:
    def test_missing_credentials(self, settings):
        settings.PESAPAL_CONSUMER_SECRET = ""

        with pytest.raises(GatewayConfigurationError):
            PesapalGateway(http=MagicMock(), token_cache=MagicMock())

    @freeze_time("2026-03-02 09:55:00")
    def test_token_lifetime_from_expiry_date(self, gateway, http):
        http.post.return_value = {"token": "eyJhbGciOi", "expiryDate": "2026-03-02T09:59:00.000Z", "status": "200"}

        assert gateway._fetch_token() == ("eyJhbGciOi", 240)

    def test_token_error(self, gateway, http):
        http.post.return_value = {"error": {"code": "invalid_consumer_key_or_secret_provided", "message": ""}}

        with pytest.raises(GatewayError):
            gateway._fetch_token()


@pytest.mark.django_db
class TestRegisterIpn:
    def test_registers_and_stores_ipn_id(self, gateway, http):
        http.post.return_value = {"url": "https://api.example.com/ipn", "ipn_id": IPN_ID, "status": "200"}

        ipn_id = gateway.register_ipn()

        assert ipn_id == IPN_ID
        payload = http.post.call_args.kwargs["json"]
        assert payload == {
            "url": "https://api.example.com/api/v1/payments/webhooks/pesapal/ipn/",
            "ipn_notification_type": "GET",
        }
        config = GatewayConfig.objects.get(gateway="pesapal")
        assert config.ipn_id == IPN_ID
        assert config.ipn_notification_type == "GET"

    def test_requires_url(self, gateway, settings):
        settings.PESAPAL_IPN_URL = ""

        with pytest.raises(GatewayConfigurationError):
            gateway.register_ipn()

    def test_error_body(self, gateway, http):
        http.post.return_value = {"error": {"code": "invalid_url", "message": "Invalid url"}, "status": "500"}

        with pytest.raises(GatewayError) as exc_info:
            gateway.register_ipn()

        assert exc_info.value.error_code == "INVALID_URL"
        assert not GatewayConfig.objects.filter(gateway="pesapal").exists()


@pytest.mark.django_db
class TestCollect:
    @pytest.fixture
    def order(self):
        return SimpleNamespace(pk="3f1c", reference="ORD-1A2B3C4D5E", total=Decimal("5400.00"))

    def test_submits_order_with_stored_ipn(self, gateway, http, order):
        GatewayConfig.objects.create(gateway="pesapal", ipn_id=IPN_ID)
        http.post.return_value = {
            "order_tracking_id": "b945e4af-80a5-4ec1-8706-e03f8332fb04",
            "merchant_reference": "ORD-1A2B3C4D5E-1",
            "redirect_url": "https://cybqa.pesapal.com/pesapaliframe/PesapalIframe3/Index?OrderTrackingId=b945e4af",
            "status": "200",
        }

        result = gateway.collect(
            order,
            BillingInfo(phone="0712345678", email="wanjiku@example.com", first_name="Wanjiku"),
            "ORD-1A2B3C4D5E-1",
        )

        assert result.reference == "b945e4af-80a5-4ec1-8706-e03f8332fb04"
        assert result.redirect_url.startswith("https://cybqa.pesapal.com/")
        payload = http.post.call_args.kwargs["json"]
        assert payload["id"] == "ORD-1A2B3C4D5E-1"
        assert payload["amount"] == 5400.0
        assert payload["currency"] == "KES"
        assert payload["notification_id"] == IPN_ID
        assert payload["billing_address"]["phone_number"] == "254712345678"

    def test_registers_ipn_when_missing(self, gateway, http, order):
        http.post.side_effect = [
            {"ipn_id": IPN_ID, "status": "200"},
            {"order_tracking_id": "b945e4af", "redirect_url": "https://pay.pesapal.com/iframe/b945e4af"},
        ]

        gateway.collect(order, BillingInfo(email="wanjiku@example.com"), "ORD-1A2B3C4D5E-1")

        assert http.post.call_args_list[0][0][0] == "/api/URLSetup/RegisterIPN"
        assert http.post.call_args.kwargs["json"]["notification_id"] == IPN_ID

    def test_incomplete_response(self, gateway, http, order):
        GatewayConfig.objects.create(gateway="pesapal", ipn_id=IPN_ID)
        http.post.return_value = {"order_tracking_id": "b945e4af", "status": "200"}

        with pytest.raises(GatewayError, match="incomplete"):
            gateway.collect(order, BillingInfo(), "ORD-1A2B3C4D5E-1")


class TestVerifyStatus:
    @pytest.mark.parametrize(
        "status_code,expected",
        [
            (1, COMPLETED),
            (2, FAILED),
            (3, FAILED),
            (0, PENDING),
            ("garbage", PENDING),
        ],
    )
    def test_status_codes(self, gateway, http, status_code, expected):
        http.get.return_value = {
            "payment_method": "MpesaKE",
            "amount": 5400,
            "payment_status_description": "Completed",
            "merchant_reference": "ORD-1A2B3C4D5E-1",
            "status_code": status_code,
            "status": "200",
        }

        result = gateway.verify_status("b945e4af")

        assert result.state == expected
        assert result.amount == Decimal("5400.00")
        assert result.merchant_reference == "ORD-1A2B3C4D5E-1"
        assert http.get.call_args.kwargs["params"] == {"orderTrackingId": "b945e4af"}

    def test_error_without_status(self, gateway, http):
        http.get.return_value = {"error": {"code": "invalid_order_tracking_id", "message": "Not found"}}

        with pytest.raises(GatewayError) as exc_info:
            gateway.verify_status("b945e4af")

        assert exc_info.value.error_code == "INVALID_ORDER_TRACKING_ID"


class TestUnsupported:
    def test_disburse(self, gateway):
        with pytest.raises(GatewayOperationNotSupported):
            gateway.disburse("0722000111", Decimal("1600.00"), "Vendor payout")

    def test_refund(self, gateway):
        with pytest.raises(GatewayOperationNotSupported):
            gateway.refund(SimpleNamespace(pk="p1"), Decimal("5400.00"), "Vendor declined")
