"""
Core views providing infrastructure endpoints and the shared mapping from
ServiceResult failures to HTTP responses.

Usage:
    result = OrderCompletionService.complete_order(order_id, buyer=request.user)
    if not result.success:
        return failure_response(result)
"""

import logging

from django.core.cache import cache
from django.db import DatabaseError, connection
from django.http import JsonResponse
from rest_framework import status
from rest_framework.response import Response

logger = logging.getLogger(__name__)


def health_check(request):
    """
    Health check endpoint for load balancers and the external scheduler.

    Returns 200 when the database is reachable and 503 otherwise. Redis
    is reported but not required: sweeps only use it to skip overlapping
    runs.

    Example Response:
        {"status": "healthy", "database": "connected", "cache": "connected"}
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "cache": "unknown",
    }
    is_healthy = True

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        health_status["database"] = "connected"
    except DatabaseError:
        logger.exception("Health check could not reach the database")
        health_status["database"] = "disconnected"
        health_status["status"] = "unhealthy"
        is_healthy = False

    # The cache backend ignores connection errors, so a failed round-trip
    # shows up as a missing value rather than an exception.
    cache.set("health_check", "ok", timeout=1)
    health_status["cache"] = "connected" if cache.get("health_check") == "ok" else "disconnected"

    return JsonResponse(health_status, status=200 if is_healthy else 503)


# =============================================================================
# ServiceResult -> HTTP
# =============================================================================

NOT_FOUND_CODES = frozenset({"NOT_FOUND", "ORDER_NOT_FOUND", "PAYMENT_NOT_FOUND"})

FORBIDDEN_CODES = frozenset({"PERMISSION_DENIED", "NOT_ORDER_PARTICIPANT"})

CONFLICT_CODES = frozenset(
    {
        "CONFLICT",
        "INVALID_STATE_TRANSITION",
        "STALE_RECORD",
        "LOCK_ACQUISITION_FAILED",
        "ESCROW_NOT_FOUND",
        "ESCROW_FROZEN",
        "ESCROW_NOT_HELD",
        "ORDER_NOT_PAYABLE",
        "PAYMENT_ALREADY_CAPTURED",
        "CHECKOUT_IN_PROGRESS",
        "PAYMENT_VERIFICATION_PENDING",
    }
)

UPSTREAM_CODES = frozenset(
    {
        "EXTERNAL_SERVICE_ERROR",
        "GATEWAY_ERROR",
        "GATEWAY_TIMEOUT",
        "GATEWAY_NOT_CONFIGURED",
        "GATEWAY_OPERATION_NOT_SUPPORTED",
        "PAYOUT_FAILED",
    }
)


def failure_status(error_code: str | None) -> int:
    """HTTP status for a failed ServiceResult; validation failures are 400."""
    if error_code in NOT_FOUND_CODES:
        return status.HTTP_404_NOT_FOUND
    if error_code in FORBIDDEN_CODES:
        return status.HTTP_403_FORBIDDEN
    if error_code in CONFLICT_CODES:
        return status.HTTP_409_CONFLICT
    if error_code in UPSTREAM_CODES:
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_400_BAD_REQUEST


def failure_response(result) -> Response:
    return Response(result.to_response(), status=failure_status(result.error_code))
