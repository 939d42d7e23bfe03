"""Tests for the payment admin."""

import pytest
from django.contrib import admin

from payments.admin import PaymentAdmin, WebhookEventAdmin
from payments.models import Payment, WebhookEvent
from payments.state_machines import WebhookEventStatus
from payments.tests.factories import WebhookEventFactory


class TestLedgerAdmin:
    def test_money_rows_are_view_only(self, rf):
        model_admin = PaymentAdmin(Payment, admin.site)
        request = rf.get("/admin/payments/payment/")

        assert not model_admin.has_add_permission(request)
        assert not model_admin.has_delete_permission(request)
        assert {"amount", "status", "merchant_reference"} <= set(model_admin.get_readonly_fields(request))


@pytest.mark.django_db
class TestRetryDeliveriesAction:
    def test_queues_only_failed_events(self, rf, mocker):
        mock_delay = mocker.patch("payments.tasks.process_webhook_event.delay")
        model_admin = WebhookEventAdmin(WebhookEvent, admin.site)
        message_user = mocker.patch.object(model_admin, "message_user")
        failed = WebhookEventFactory(status=WebhookEventStatus.FAILED, retry_count=1)
        WebhookEventFactory(status=WebhookEventStatus.PROCESSED)

        model_admin.retry_deliveries(rf.post("/admin/"), WebhookEvent.objects.all())

        mock_delay.assert_called_once_with(str(failed.pk))
        assert message_user.call_count == 2
        assert "Queued 1" in message_user.call_args_list[0][0][1]
