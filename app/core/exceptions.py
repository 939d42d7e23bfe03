"""
Application error hierarchy.

Domain errors in orders and payments subclass one of these so services can
convert any of them into a ServiceResult, and views can map ``error_code``
onto an HTTP status (see core.views.failure_status).

    BaseApplicationError
        ValidationError        bad input or a broken business rule
        ConflictError          wrong state, stale row, duplicate operation
        ExternalServiceError   gateway or other third-party failure
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """JSON error body: ``error``, ``error_code`` and, when present, ``details``."""
        body: dict[str, Any] = {"error": self.message, "error_code": self.error_code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(BaseApplicationError):
    default_error_code = "VALIDATION_ERROR"


class ConflictError(BaseApplicationError):
    default_error_code = "CONFLICT"


class ExternalServiceError(BaseApplicationError):
    """
    A provider call failed.

    Provider internals stay in ``details`` and the logs; clients only see
    the message and code.
    """

    default_error_code = "EXTERNAL_SERVICE_ERROR"
