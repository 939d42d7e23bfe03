"""
Inbound gateway webhooks.

Deliveries from M-Pesa, Pesapal, IntaSend, Paystack and Stripe are parsed
into typed payloads, stored idempotently as WebhookEvent rows, and applied
synchronously through the reconciliation service.

Usage:
    # In urls.py
    from payments.webhooks import views as webhook_views

    urlpatterns = [
        path("webhooks/paystack/", webhook_views.paystack_webhook, name="paystack_webhook"),
    ]
"""

from payments.webhooks.handlers import dispatch_webhook, register_handler
from payments.webhooks.schemas import IgnoredPayload, WebhookPayload, parse_payload

__all__ = [
    "IgnoredPayload",
    "WebhookPayload",
    "dispatch_webhook",
    "parse_payload",
    "register_handler",
]
