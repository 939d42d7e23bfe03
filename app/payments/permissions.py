"""
Permission classes for payments API.

- HasSchedulerToken: External scheduler calling the job trigger endpoints

Design Decisions:
    - Job triggers carry no user; the scheduler proves itself with the
      X-Scheduler-Token header compared in constant time
    - An unset SCHEDULED_JOB_TOKEN denies every call
"""

from __future__ import annotations

import hmac
from typing import TYPE_CHECKING

from django.conf import settings
from rest_framework import permissions

if TYPE_CHECKING:
    from rest_framework.request import Request
    from rest_framework.views import APIView


class HasSchedulerToken(permissions.BasePermission):
    """Allows access only when X-Scheduler-Token matches SCHEDULED_JOB_TOKEN."""

    message = "Invalid or missing scheduler token."

    def has_permission(self, request: Request, view: APIView) -> bool:
        expected = settings.SCHEDULED_JOB_TOKEN
        if not expected:
            return False
        provided = request.headers.get("X-Scheduler-Token", "")
        return hmac.compare_digest(provided.encode(), expected.encode())

