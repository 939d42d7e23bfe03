"""
Shared HTTP client for the requests-based rails.

Every call has a bounded timeout. Idempotent calls (token requests,
status queries) are retried on transient failures with exponential
backoff and jitter; calls that move money are sent exactly once.

Usage:
    client = GatewayHttpClient("mpesa", base_url="https://sandbox.safaricom.co.ke")

    body = client.get("/oauth/v1/generate", params=..., auth=..., idempotent=True)
    body = client.post("/mpesa/stkpush/v1/processrequest", json=payload, headers=headers)
"""

from __future__ import annotations

import logging
import random
import time
from typing import Any

import requests
from django.conf import settings

from payments.exceptions import GatewayError, GatewayTimeoutError

logger = logging.getLogger(__name__)

# Statuses worth retrying on an idempotent call
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def backoff_delay(attempt: int, base: float = 0.5, max_delay: float = 8.0) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        base: Base delay in seconds
        max_delay: Maximum delay in seconds

    Returns:
        Delay in seconds with jitter (0-25% of calculated delay)
    """
    delay = min(base * (2**attempt), max_delay)
    jitter = delay * random.uniform(0, 0.25)
    return delay + jitter


class GatewayHttpClient:
    """
    requests.Session wrapper that turns transport problems into GatewayErrors.

    - ConnectTimeout / connection refused: the request never reached the
      provider, so it is retryable even for money-moving calls (but only
      retried automatically when idempotent=True).
    - ReadTimeout: the provider may have acted. Raised as
      GatewayTimeoutError, never retried for non-idempotent calls.
    - Non-2xx or non-JSON bodies: GatewayError carrying the raw body.
    """

    def __init__(
        self,
        gateway: str,
        base_url: str,
        timeout: float | None = None,
        max_retries: int | None = None,
        session: requests.Session | None = None,
    ):
        self.gateway = gateway
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout if timeout is not None else settings.GATEWAY_TIMEOUT_SECONDS
        self.max_retries = max_retries if max_retries is not None else settings.GATEWAY_MAX_RETRIES
        self.session = session or requests.Session()

    def get(self, path: str, idempotent: bool = True, **kwargs) -> dict[str, Any]:
        return self.request("GET", path, idempotent=idempotent, **kwargs)

    def post(self, path: str, idempotent: bool = False, **kwargs) -> dict[str, Any]:
        return self.request("POST", path, idempotent=idempotent, **kwargs)

    def request(self, method: str, path: str, idempotent: bool = False, **kwargs) -> dict[str, Any]:
        """
        Send a request and return the parsed JSON body.

        Raises:
            GatewayTimeoutError: Read timed out (outcome unknown)
            GatewayError: Connection failure, non-2xx, or non-JSON body
        """
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        attempts = 1 + (self.max_retries if idempotent else 0)

        for attempt in range(attempts):
            try:
                return self._send(method, url, **kwargs)
            except GatewayError as e:
                if not (idempotent and e.is_retryable) or attempt == attempts - 1:
                    raise
                delay = backoff_delay(attempt)
                logger.warning(
                    "Retrying gateway request",
                    extra={
                        "gateway": self.gateway,
                        "url": url,
                        "attempt": attempt + 1,
                        "delay": delay,
                        "error": str(e),
                    },
                )
                time.sleep(delay)

        raise AssertionError("unreachable")

    def _send(self, method: str, url: str, **kwargs) -> dict[str, Any]:
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.ConnectTimeout as e:
            raise GatewayError(
                f"{self.gateway}: connection timed out",
                gateway=self.gateway,
                is_retryable=True,
            ) from e
        except requests.exceptions.ReadTimeout as e:
            raise GatewayTimeoutError(
                f"{self.gateway}: no response within {self.timeout}s",
                gateway=self.gateway,
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise GatewayError(
                f"{self.gateway}: connection failed",
                gateway=self.gateway,
                is_retryable=True,
            ) from e
        except requests.exceptions.RequestException as e:
            raise GatewayError(
                f"{self.gateway}: request failed: {e}",
                gateway=self.gateway,
            ) from e

        try:
            body = response.json()
        except ValueError:
            body = None

        if not 200 <= response.status_code < 300:
            raise GatewayError(
                f"{self.gateway}: HTTP {response.status_code}",
                gateway=self.gateway,
                raw_response=body if body is not None else response.text,
                status_code=response.status_code,
                is_retryable=response.status_code in RETRYABLE_STATUS_CODES,
            )

        if not isinstance(body, dict):
            raise GatewayError(
                f"{self.gateway}: malformed response body",
                gateway=self.gateway,
                raw_response=response.text,
                status_code=response.status_code,
            )

        return body
