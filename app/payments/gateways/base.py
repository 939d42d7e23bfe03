"""
Payment gateway contract.

Every rail implements PaymentGateway. Services only ever talk to this
interface, so a rail can be swapped or mocked without touching the
reconciliation or payout code.

Usage:
    from payments.gateways import get_gateway

    gateway = get_gateway("mpesa")
    result = gateway.collect(order, billing, merchant_reference="ORD-1A2B3C4D5E-1")
    status = gateway.verify_status(result.reference)
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from payments.exceptions import GatewayOperationNotSupported

# =============================================================================
# Data Types
# =============================================================================


PENDING = "pending"
COMPLETED = "completed"
FAILED = "failed"

PAYMENT_STATES = (PENDING, COMPLETED, FAILED)


@dataclass
class BillingInfo:
    """
    Customer details passed to collect().

    Attributes:
        phone: Customer phone (push-payment rails prompt this number)
        email: Customer email (card rails require it)
        first_name / last_name: Shown on hosted checkout pages
        callback_url: Overrides the rail's configured redirect URL
    """

    phone: str = ""
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    callback_url: str = ""


@dataclass
class CollectResult:
    """
    Result of initiating a charge.

    Attributes:
        reference: Gateway reference to verify against later
        redirect_url: Hosted checkout URL for redirect rails
        prompt: Customer-facing message for push-payment rails
        client_secret: Card-rail client secret (Stripe)
        raw_response: Provider body, kept for the audit trail
    """

    reference: str
    redirect_url: str = ""
    prompt: str = ""
    client_secret: str = ""
    raw_response: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.reference:
            raise ValueError("reference is required")

    def to_dict(self) -> dict[str, Any]:
        return {
            "reference": self.reference,
            "redirect_url": self.redirect_url,
            "prompt": self.prompt,
            "client_secret": self.client_secret,
        }


@dataclass
class PaymentStatusResult:
    """
    Authoritative payment state from the gateway.

    Attributes:
        state: pending, completed, or failed
        amount: Amount the gateway reports, when it reports one
        merchant_reference: Our reference as echoed by the gateway
        provider_status: The gateway's own status string or code
        raw_response: Provider body
    """

    state: str
    amount: Decimal | None = None
    merchant_reference: str = ""
    provider_status: str = ""
    raw_response: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.state not in PAYMENT_STATES:
            raise ValueError(f"state must be one of {PAYMENT_STATES}")

    @property
    def is_completed(self) -> bool:
        return self.state == COMPLETED

    @property
    def is_failed(self) -> bool:
        return self.state == FAILED


@dataclass
class DisburseResult:
    """
    Result of sending money out.

    Attributes:
        tracking_id: Gateway disbursement id
        status: pending (accepted, final result later) or completed
        raw_response: Provider body
    """

    tracking_id: str
    status: str = PENDING
    raw_response: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.status not in PAYMENT_STATES:
            raise ValueError(f"status must be one of {PAYMENT_STATES}")

    @property
    def is_completed(self) -> bool:
        return self.status == COMPLETED


@dataclass
class RefundResult:
    refund_id: str
    status: str = PENDING
    raw_response: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Gateway Contract
# =============================================================================


class PaymentGateway(ABC):
    """
    Uniform contract for all payment rails.

    collect() and disburse() move money and are never retried by the
    adapter. verify_status() is the only source of truth for whether a
    payment happened; callbacks are just a trigger to ask.
    """

    name: str = ""
    # verify_status() accepts our merchant reference before the provider
    # has returned its own id (e.g. after a collect timeout)
    verifies_merchant_reference: bool = False

    @abstractmethod
    def collect(
        self,
        order,
        billing: BillingInfo,
        merchant_reference: str,
        amount: Decimal | None = None,
    ) -> CollectResult:
        """
        Initiate a charge for order.total (or amount, for top-ups).

        Raises:
            GatewayError: Provider refused or returned garbage
            GatewayTimeoutError: Outcome unknown
        """

    @abstractmethod
    def verify_status(self, reference: str) -> PaymentStatusResult:
        """Ask the gateway for the authoritative state of a payment."""

    def disburse(
        self,
        destination: str,
        amount: Decimal,
        narrative: str,
        reference: str = "",
        account_name: str = "",
    ) -> DisburseResult:
        """Send amount to destination (phone number or connected account)."""
        raise GatewayOperationNotSupported(
            f"{self.name} does not support disbursements",
            gateway=self.name,
        )

    def disbursement_status(self, tracking_id: str) -> DisburseResult:
        """Final state of an earlier disbursement."""
        raise GatewayOperationNotSupported(
            f"{self.name} does not support disbursement status queries",
            gateway=self.name,
        )

    def refund(self, payment, amount: Decimal, reason: str) -> RefundResult:
        """Return money for a captured payment."""
        raise GatewayOperationNotSupported(
            f"{self.name} does not support refunds",
            gateway=self.name,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    def _timed(self, operation: str, **context) -> _TimedOperation:
        """
        Log start and finish of a gateway operation with timing.

        Example:
            with self._timed("collect", reference=ref) as log_context:
                ...
                log_context["checkout_request_id"] = body["CheckoutRequestID"]
        """
        return _TimedOperation(self.get_logger(), {"gateway": self.name, "operation": operation, **context})


class _TimedOperation:
    def __init__(self, logger: logging.Logger, log_context: dict[str, Any]):
        self.logger = logger
        self.log_context = log_context
        self.start_time = 0.0

    def __enter__(self) -> dict[str, Any]:
        self.start_time = time.time()
        self.logger.info("Starting gateway operation", extra=self.log_context)
        return self.log_context

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        duration_ms = (time.time() - self.start_time) * 1000
        if exc_type is None:
            self.logger.info(
                "Gateway operation completed",
                extra={**self.log_context, "duration_ms": duration_ms},
            )
        else:
            self.logger.warning(
                f"Gateway operation failed: {exc_type.__name__}",
                extra={**self.log_context, "duration_ms": duration_ms, "error": str(exc_val)},
            )
        return False
