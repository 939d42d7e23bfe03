"""
GatewayConfig model: per-gateway provider state shared across workers.

Holds the cached OAuth token (so every worker does not fetch its own)
and the Pesapal IPN registration id.
"""

from __future__ import annotations

from django.db import models

from core.models import BaseModel
from payments.state_machines import Gateway


class GatewayConfig(BaseModel):
    """
    Provider-side configuration for one gateway.

    Fields:
        gateway: Gateway name (unique)
        auth_token: Last access token issued by the provider
        token_expires_at: When auth_token stops being valid
        ipn_id: Registered IPN notification id (Pesapal)
        ipn_notification_type: GET or POST, as registered
    """

    gateway = models.CharField(
        max_length=20,
        choices=Gateway.choices,
        unique=True,
        help_text="Gateway this configuration belongs to",
    )

    auth_token = models.TextField(
        blank=True,
        default="",
        help_text="Cached provider access token",
    )

    token_expires_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the cached token expires",
    )

    ipn_id = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Registered IPN id (Pesapal notification_id)",
    )

    ipn_notification_type = models.CharField(
        max_length=10,
        blank=True,
        default="GET",
        help_text="HTTP method the provider uses for IPN calls",
    )

    class Meta:
        verbose_name = "Gateway Config"
        verbose_name_plural = "Gateway Configs"

    def __str__(self) -> str:
        return f"GatewayConfig({self.gateway})"
