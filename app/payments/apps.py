"""
Payments app configuration.

This app provides the settlement side of the marketplace:
- Payment collection through five gateways
- Escrow and vendor balance bookkeeping
- Webhook handling and scheduled reconciliation
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"
