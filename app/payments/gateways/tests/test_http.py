"""
Tests for GatewayHttpClient.

The session is a MagicMock, so nothing leaves the process.
"""

from unittest.mock import MagicMock

import pytest
import requests

from payments.exceptions import GatewayError, GatewayTimeoutError
from payments.gateways.http import GatewayHttpClient, backoff_delay


def make_response(status_code=200, body=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    if body is None:
        response.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        response.json.return_value = body
    response.text = text
    return response


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def client(session):
    return GatewayHttpClient("mpesa", "https://sandbox.safaricom.co.ke/", timeout=5, max_retries=2, session=session)


@pytest.fixture
def no_sleep(mocker):
    return mocker.patch("payments.gateways.http.time.sleep")


class TestRequest:
    def test_returns_json_body(self, client, session):
        session.request.return_value = make_response(body={"ResponseCode": "0"})

        body = client.post("/mpesa/stkpush/v1/processrequest", json={"Amount": 1})

        assert body == {"ResponseCode": "0"}
        session.request.assert_called_once_with(
            "POST",
            "https://sandbox.safaricom.co.ke/mpesa/stkpush/v1/processrequest",
            timeout=5,
            json={"Amount": 1},
        )

    def test_absolute_url_is_used_as_is(self, client, session):
        session.request.return_value = make_response(body={})

        client.get("https://api.example.com/status")

        assert session.request.call_args[0][1] == "https://api.example.com/status"

    def test_client_error_carries_body(self, client, session):
        """Should keep the provider body for the audit trail."""
        session.request.return_value = make_response(400, body={"errorMessage": "Invalid Access Token"})

        with pytest.raises(GatewayError) as exc_info:
            client.get("/status")

        error = exc_info.value
        assert error.status_code == 400
        assert error.raw_response == {"errorMessage": "Invalid Access Token"}
        assert error.is_retryable is False
        assert session.request.call_count == 1

    def test_non_json_error_keeps_text(self, client, session):
        session.request.return_value = make_response(502, text="<html>Bad Gateway</html>")

        with pytest.raises(GatewayError) as exc_info:
            client.post("/transfer")

        assert exc_info.value.raw_response == "<html>Bad Gateway</html>"
        assert exc_info.value.is_retryable is True

    def test_non_object_body_is_malformed(self, client, session):
        session.request.return_value = make_response(200, body=["unexpected"], text='["unexpected"]')

        with pytest.raises(GatewayError, match="malformed"):
            client.get("/status")


class TestTimeouts:
    def test_read_timeout_is_outcome_unknown(self, client, session):
        """Should raise GatewayTimeoutError and send a money-moving call once."""
        session.request.side_effect = requests.exceptions.ReadTimeout()

        with pytest.raises(GatewayTimeoutError):
            client.post("/mpesa/b2c/v1/paymentrequest")

        assert session.request.call_count == 1

    def test_connect_timeout_is_retryable_error(self, client, session):
        session.request.side_effect = requests.exceptions.ConnectTimeout()

        with pytest.raises(GatewayError) as exc_info:
            client.post("/transfer")

        assert not isinstance(exc_info.value, GatewayTimeoutError)
        assert exc_info.value.is_retryable is True


class TestRetries:
    def test_idempotent_call_retries_transient_failure(self, client, session, no_sleep):
        session.request.side_effect = [
            make_response(503, body={"message": "busy"}),
            requests.exceptions.ConnectionError(),
            make_response(body={"status": True}),
        ]

        body = client.get("/transaction/verify/ref")

        assert body == {"status": True}
        assert session.request.call_count == 3
        assert no_sleep.call_count == 2

    def test_gives_up_after_max_retries(self, client, session, no_sleep):
        session.request.return_value = make_response(503, body={"message": "busy"})

        with pytest.raises(GatewayError):
            client.get("/status")

        assert session.request.call_count == 3

    def test_non_idempotent_call_is_sent_once(self, client, session, no_sleep):
        """Should never resend a call that moves money."""
        session.request.return_value = make_response(503, body={"message": "busy"})

        with pytest.raises(GatewayError):
            client.post("/transfer")

        assert session.request.call_count == 1
        no_sleep.assert_not_called()

    def test_idempotent_post_is_retried(self, client, session, no_sleep):
        session.request.side_effect = [
            requests.exceptions.ReadTimeout(),
            make_response(body={"ResultCode": "0"}),
        ]

        body = client.post("/mpesa/stkpushquery/v1/query", idempotent=True)

        assert body == {"ResultCode": "0"}

    def test_client_errors_are_not_retried(self, client, session, no_sleep):
        session.request.return_value = make_response(401, body={"message": "Unauthorized"})

        with pytest.raises(GatewayError):
            client.get("/status")

        assert session.request.call_count == 1


class TestBackoffDelay:
    @pytest.mark.parametrize("attempt,base_delay", [(0, 0.5), (1, 1.0), (2, 2.0), (10, 8.0)])
    def test_delay_is_capped_with_jitter(self, attempt, base_delay):
        delay = backoff_delay(attempt)

        assert base_delay <= delay <= base_delay * 1.25
