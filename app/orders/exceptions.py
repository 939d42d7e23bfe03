"""
Order errors: cart validation while building or pricing an order, and
lifecycle actions the order status does not allow (HTTP 409).
"""

from __future__ import annotations

from core.exceptions import ConflictError, ValidationError


class OrderValidationError(ValidationError):
    """
    The cart cannot become an order: unknown or inactive product, stock,
    mixed vendors, or a client total outside the price tolerance.

        raise OrderValidationError(
            "Product is out of stock",
            error_code="OUT_OF_STOCK",
            details={"product_id": str(product.id)},
        )
    """

    default_error_code = "ORDER_VALIDATION_ERROR"


class InvalidStateTransitionError(ConflictError):
    """An order action that its current status does not allow, e.g. confirming a completed order."""

    default_error_code = "INVALID_STATE_TRANSITION"

    @classmethod
    def for_order(cls, order, action: str, status: str | None = None) -> InvalidStateTransitionError:
        status = status or order.status
        return cls(
            f"Cannot {action} order in '{status}' state",
            details={"order_id": str(order.pk), "status": status, "action": action},
        )
