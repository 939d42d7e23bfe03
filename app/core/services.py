"""
Service-layer base classes.

Services return a ServiceResult for refusals a caller is expected to handle
(an order in the wrong state, a balance below the payout minimum, a price
mismatch). Anything else, such as a database error or a bug, propagates.

    result = CheckoutService.start_checkout(order_id, gateway, billing, request.user)
    if not result:
        return failure_response(result)
    return Response(CheckoutResponseSerializer(result.data).data, status=201)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Iterator
    from typing import Any

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Outcome of a service call.

    ``errors`` carries per-field messages for validation refusals;
    ``error_code`` is the stable identifier clients switch on.
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = None

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
    ) -> ServiceResult[T]:
        return cls(success=False, error=error, error_code=error_code, errors=errors)

    @classmethod
    def from_exception(cls, exc: Exception) -> ServiceResult[T]:
        """Refusal built from an exception, keeping an application error's own code."""
        code = getattr(exc, "error_code", None) or type(exc).__name__.upper()
        return cls.failure(getattr(exc, "message", None) or str(exc), code)

    def to_response(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data}
        body: dict[str, Any] = {"success": False, "error": self.error}
        if self.error_code:
            body["error_code"] = self.error_code
        if self.errors:
            body["errors"] = self.errors
        return body


class BaseService:
    """
    Stateless service base.

    Subclasses expose classmethods; collaborators such as gateways are
    looked up through the registry at call time so tests can swap them.
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Iterator[None]:
        with transaction.atomic():
            yield

    @classmethod
    def handle_exception(
        cls,
        exc: Exception,
        context: str = "",
        log_level: int = logging.ERROR,
    ) -> ServiceResult:
        """Log ``exc`` with its traceback and turn it into a refusal."""
        cls.get_logger().log(log_level, f"{context}: {exc}" if context else str(exc), exc_info=True)
        return ServiceResult.from_exception(exc)
