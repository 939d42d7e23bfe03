"""
Tests for ServiceResult and BaseService helpers.
"""

from __future__ import annotations

import logging

import pytest

from authentication.models import User
from core.exceptions import ConflictError, ValidationError
from core.services import BaseService, ServiceResult


class TestServiceResult:
    def test_success_is_truthy(self):
        result = ServiceResult.success({"id": 1})

        assert result
        assert result.to_response() == {"success": True, "data": {"id": 1}}

    def test_failure_body(self):
        result = ServiceResult.failure(
            "Order not found", "ORDER_NOT_FOUND", errors={"order_id": ["Unknown order."]}
        )

        assert not result
        assert result.to_response() == {
            "success": False,
            "error": "Order not found",
            "error_code": "ORDER_NOT_FOUND",
            "errors": {"order_id": ["Unknown order."]},
        }

    def test_failure_without_code_omits_it(self):
        assert ServiceResult.failure("nope").to_response() == {"success": False, "error": "nope"}

    def test_from_application_exception_keeps_code(self):
        """Should keep message and code of application errors."""
        exc = ConflictError("Order already completed", error_code="INVALID_STATE_TRANSITION")

        result = ServiceResult.from_exception(exc)

        assert result.error == "Order already completed"
        assert result.error_code == "INVALID_STATE_TRANSITION"

    def test_from_plain_exception_uses_class_name(self):
        assert ServiceResult.from_exception(KeyError("x")).error_code == "KEYERROR"


class TestBaseService:
    def test_logger_is_named_after_service(self):
        class ExampleService(BaseService):
            pass

        assert ExampleService.get_logger().name.endswith(".ExampleService")

    def test_handle_exception_logs_and_converts(self, caplog):
        """Should log the error with context and return a refusal."""
        with caplog.at_level(logging.WARNING):
            result = BaseService.handle_exception(
                ValidationError("bad input", error_code="BAD"), "checkout", log_level=logging.WARNING
            )

        assert not result
        assert result.error_code == "BAD"
        assert "checkout: [BAD] bad input" in caplog.text

    @pytest.mark.django_db
    def test_atomic_rolls_back_on_error(self):
        with pytest.raises(RuntimeError):
            with BaseService.atomic():
                User.objects.create_user(email="rollback@example.com", password="x")
                raise RuntimeError("boom")

        assert not User.objects.filter(email="rollback@example.com").exists()
