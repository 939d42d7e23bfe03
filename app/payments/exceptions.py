"""
Payment errors.

    GatewayError (ExternalServiceError)   provider call failed
        GatewayTimeoutError               no answer in time; outcome unknown
        GatewayOperationNotSupported      the rail has no API for it
    GatewayConfigurationError             adapter built without credentials
    PayoutRejectedError (ValidationError) refused before any money moved
    StaleRecordError (ConflictError)      compare-and-swap kept losing
    LockAcquisitionError (ConflictError)  sweep already running

A timeout is never a failure: money may have moved, so callers keep state
as it is and re-verify later.

    try:
        result = gateway.disburse(phone, amount, narrative, reference)
    except GatewayTimeoutError:
        ...  # keep the balance debited, flag outcome_unknown
    except GatewayError:
        ...  # provider refused: restore the balance
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError, ConflictError, ExternalServiceError, ValidationError

if TYPE_CHECKING:
    from typing import Any


class GatewayError(ExternalServiceError):
    """
    A provider call failed or returned something unusable.

    ``raw_response`` keeps the provider body for the audit trail;
    ``is_retryable`` says whether the same call may succeed later (webhook
    views answer 503 so the provider redelivers).
    """

    default_error_code = "GATEWAY_ERROR"

    def __init__(
        self,
        message: str,
        *,
        gateway: str = "",
        raw_response: Any = None,
        status_code: int | None = None,
        is_retryable: bool = False,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = {**(details or {})}
        if gateway:
            details["gateway"] = gateway
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, error_code=error_code, details=details)
        self.gateway = gateway
        self.raw_response = raw_response
        self.status_code = status_code
        self.is_retryable = is_retryable


class GatewayTimeoutError(GatewayError):
    default_error_code = "GATEWAY_TIMEOUT"

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("is_retryable", True)
        super().__init__(message, **kwargs)


class GatewayOperationNotSupported(GatewayError):
    """E.g. disbursing or refunding through Pesapal."""

    default_error_code = "GATEWAY_OPERATION_NOT_SUPPORTED"


class GatewayConfigurationError(BaseApplicationError):
    """Only the misconfigured rail fails; the others keep working."""

    default_error_code = "GATEWAY_NOT_CONFIGURED"


class PayoutRejectedError(ValidationError):
    """
    A payout was refused before any money moved.

    ``error_code`` is BELOW_THRESHOLD, FEE_EXCEEDS_BALANCE, NO_PAYOUT_ACCOUNT
    or NOTHING_TO_PAY, and the message is safe to show the vendor.
    """

    default_error_code = "PAYOUT_REJECTED"


class StaleRecordError(ConflictError):
    default_error_code = "STALE_RECORD"


class LockAcquisitionError(ConflictError):
    default_error_code = "LOCK_ACQUISITION_FAILED"


__all__ = [
    "GatewayError",
    "GatewayTimeoutError",
    "GatewayOperationNotSupported",
    "GatewayConfigurationError",
    "PayoutRejectedError",
    "StaleRecordError",
    "LockAcquisitionError",
]
