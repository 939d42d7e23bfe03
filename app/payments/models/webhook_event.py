"""
Stored gateway deliveries.

Each delivery is recorded once per gateway, keyed on the sha256 of its raw
body (the query string for GET IPNs). The row is an audit trail and lets a
replay short-circuit; the guarded writes in ReconciliationService are what
keep money movements exactly-once.
"""

from __future__ import annotations

import hashlib

from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import Gateway, WebhookEventStatus


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    One delivery from a gateway.

    PENDING -> PROCESSING -> PROCESSED | IGNORED | FAILED. FAILED rows are
    picked up again by retry_failed_webhooks until WEBHOOK_MAX_RETRIES
    attempts have been made. The mark_* helpers only set fields; callers save.
    """

    gateway = models.CharField(max_length=20, choices=Gateway.choices, help_text="Gateway that sent the delivery")
    delivery_key = models.CharField(max_length=64, help_text="sha256 of the raw delivery - unique per gateway")
    event_type = models.CharField(
        max_length=100, blank=True, default="", db_index=True, help_text="Payload variant or provider event type"
    )
    reference = models.CharField(
        max_length=255, blank=True, default="", db_index=True, help_text="Reference extracted from the payload"
    )
    payload = models.JSONField(default=dict, blank=True, help_text="Parsed delivery body or query parameters")

    status = models.CharField(
        max_length=20, choices=WebhookEventStatus.choices, default=WebhookEventStatus.PENDING, db_index=True,
        help_text="Current processing status",
    )
    processed_at = models.DateTimeField(
        null=True, blank=True, help_text="When the delivery was successfully processed"
    )
    error_message = models.TextField(blank=True, default="", help_text="Error message if processing failed")
    retry_count = models.PositiveSmallIntegerField(default=0, help_text="Number of processing attempts")

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(fields=["status", "created_at"], name="webhook_status_created_idx"),
            models.Index(fields=["status", "retry_count"], name="webhook_status_retry_idx"),
        ]
        constraints = [
            models.UniqueConstraint(fields=["gateway", "delivery_key"], name="unique_webhook_delivery_per_gateway"),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.gateway}, {self.event_type}, {self.status})"

    @staticmethod
    def key_for(raw: bytes | str) -> str:
        if isinstance(raw, str):
            raw = raw.encode("utf-8")
        return hashlib.sha256(raw).hexdigest()

    @property
    def is_done(self) -> bool:
        """Processed or deliberately ignored; a replay of either is acknowledged untouched."""
        return self.status in (WebhookEventStatus.PROCESSED, WebhookEventStatus.IGNORED)

    def mark_processing(self) -> None:
        self.status = WebhookEventStatus.PROCESSING
        self.retry_count += 1

    def mark_processed(self) -> None:
        self.status = WebhookEventStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error_message = ""

    def mark_ignored(self, reason: str) -> None:
        self.status = WebhookEventStatus.IGNORED
        self.processed_at = timezone.now()
        self.error_message = reason

    def mark_failed(self, error_message: str) -> None:
        self.status = WebhookEventStatus.FAILED
        self.error_message = error_message
