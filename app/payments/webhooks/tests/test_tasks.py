"""
Tests for the webhook Celery tasks.

Tests cover:
- process_webhook_event task
- retry_failed_webhooks task (including stuck PROCESSING rows)
- cleanup_old_webhooks task
"""

from datetime import timedelta
from uuid import uuid4

import pytest
from django.utils import timezone

from orders.tests.factories import OrderFactory
from payments.models import Payment, WebhookEvent
from payments.state_machines import PaymentStatus, WebhookEventStatus
from payments.tasks import (
    STUCK_PROCESSING_THRESHOLD_MINUTES,
    cleanup_old_webhooks,
    process_webhook_event,
    retry_failed_webhooks,
)
from payments.tests.factories import PaymentFactory, WebhookEventFactory

CHECKOUT_REQUEST_ID = "ws_CO_191220191020363925"

STK_CALLBACK = {
    "Body": {
        "stkCallback": {
            "MerchantRequestID": "29115-34620561-1",
            "CheckoutRequestID": CHECKOUT_REQUEST_ID,
            "ResultCode": 0,
            "ResultDesc": "The service request is processed successfully.",
        }
    }
}


@pytest.fixture
def failed_webhook_event(db):
    return WebhookEventFactory(
        reference=CHECKOUT_REQUEST_ID,
        payload=STK_CALLBACK,
        status=WebhookEventStatus.FAILED,
        retry_count=1,
        error_message="GatewayError: mpesa: HTTP 503",
    )


# =============================================================================
# process_webhook_event Tests
# =============================================================================


@pytest.mark.django_db
class TestProcessWebhookEvent:
    def test_reprocesses_failed_delivery(self, gateways, buyer, vendor, failed_webhook_event):
        payment = PaymentFactory(
            order=OrderFactory(buyer=buyer, vendor=vendor),
            transaction_reference=CHECKOUT_REQUEST_ID,
        )
        gateways["mpesa"].complete()

        result = process_webhook_event(str(failed_webhook_event.pk))

        assert result["status"] == "processed"
        assert result["outcome"] == "captured"
        assert WebhookEvent.objects.get(pk=failed_webhook_event.pk).status == WebhookEventStatus.PROCESSED
        assert Payment.objects.get(pk=payment.pk).status == PaymentStatus.CAPTURED

    def test_already_processed(self, gateways):
        event = WebhookEventFactory(status=WebhookEventStatus.PROCESSED, processed_at=timezone.now())

        result = process_webhook_event(str(event.pk))

        assert result["status"] == "already_processed"
        assert gateways["mpesa"].verify_calls == []

    def test_ignored_counts_as_done(self, gateways):
        event = WebhookEventFactory(status=WebhookEventStatus.IGNORED, processed_at=timezone.now())

        assert process_webhook_event(str(event.pk))["status"] == "already_processed"

    def test_not_found(self):
        missing_id = uuid4()

        result = process_webhook_event(str(missing_id))

        assert result == {"status": "not_found", "webhook_event_id": str(missing_id)}


# =============================================================================
# retry_failed_webhooks Tests
# =============================================================================


@pytest.mark.django_db
class TestRetryFailedWebhooks:
    @pytest.fixture
    def mock_delay(self, mocker):
        return mocker.patch("payments.tasks.process_webhook_event.delay")

    def test_queues_failed_events_with_retries_left(self, mock_delay, failed_webhook_event):
        exhausted = WebhookEventFactory(status=WebhookEventStatus.FAILED, retry_count=5)

        result = retry_failed_webhooks()

        assert result == {"queued_count": 1, "reset_count": 0}
        mock_delay.assert_called_once_with(str(failed_webhook_event.pk))
        assert WebhookEvent.objects.get(pk=exhausted.pk).status == WebhookEventStatus.FAILED

    def test_resets_stuck_processing_events(self, mock_delay):
        """Should treat a delivery left PROCESSING by a dead worker as failed."""
        stuck = WebhookEventFactory(status=WebhookEventStatus.PROCESSING, retry_count=1)
        recent = WebhookEventFactory(status=WebhookEventStatus.PROCESSING, retry_count=1)
        WebhookEvent.objects.filter(pk=stuck.pk).update(
            updated_at=timezone.now() - timedelta(minutes=STUCK_PROCESSING_THRESHOLD_MINUTES + 5)
        )

        result = retry_failed_webhooks()

        assert result == {"queued_count": 1, "reset_count": 1}
        stuck = WebhookEvent.objects.get(pk=stuck.pk)
        assert stuck.status == WebhookEventStatus.FAILED
        assert "timed out" in stuck.error_message
        assert WebhookEvent.objects.get(pk=recent.pk).status == WebhookEventStatus.PROCESSING
        mock_delay.assert_called_once_with(str(stuck.pk))

    def test_nothing_to_do(self, mock_delay):
        assert retry_failed_webhooks() == {"queued_count": 0, "reset_count": 0}
        mock_delay.assert_not_called()


# =============================================================================
# cleanup_old_webhooks Tests
# =============================================================================


@pytest.mark.django_db
class TestCleanupOldWebhooks:
    def test_deletes_old_finished_events(self):
        old = timezone.now() - timedelta(days=100)
        processed = WebhookEventFactory(status=WebhookEventStatus.PROCESSED, processed_at=old)
        ignored = WebhookEventFactory(status=WebhookEventStatus.IGNORED, processed_at=old)
        recent = WebhookEventFactory(status=WebhookEventStatus.PROCESSED, processed_at=timezone.now())
        failed = WebhookEventFactory(status=WebhookEventStatus.FAILED)

        result = cleanup_old_webhooks()

        assert result == {"deleted_count": 2}
        remaining = set(WebhookEvent.objects.values_list("pk", flat=True))
        assert remaining == {recent.pk, failed.pk}
        assert processed.pk not in remaining
        assert ignored.pk not in remaining

    def test_custom_retention(self):
        WebhookEventFactory(
            status=WebhookEventStatus.PROCESSED,
            processed_at=timezone.now() - timedelta(days=10),
        )

        assert cleanup_old_webhooks(days=30) == {"deleted_count": 0}
        assert cleanup_old_webhooks(days=7) == {"deleted_count": 1}
