"""
Access-token caching for OAuth-style rails (M-Pesa, Pesapal).

Each adapter instance owns a TokenCache. When a GatewayConfig row exists
for the rail, fresh tokens are written there too so other worker
processes can reuse them instead of requesting their own.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from django.conf import settings
from django.db import DatabaseError
from django.utils import timezone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessToken:
    value: str
    expires_at: datetime

    def is_fresh(self, margin_seconds: int, now: datetime | None = None) -> bool:
        now = now or timezone.now()
        return bool(self.value) and self.expires_at - now > timedelta(seconds=margin_seconds)


class GatewayConfigTokenStore:
    """Reads and writes the shared token on the rail's GatewayConfig row."""

    def __init__(self, gateway: str):
        self.gateway = gateway

    def load(self) -> AccessToken | None:
        from payments.models import GatewayConfig

        config = GatewayConfig.objects.filter(gateway=self.gateway).first()
        if config is None or not config.auth_token or config.token_expires_at is None:
            return None
        return AccessToken(config.auth_token, config.token_expires_at)

    def save(self, token: AccessToken) -> None:
        from payments.models import GatewayConfig

        GatewayConfig.objects.filter(gateway=self.gateway).update(
            auth_token=token.value,
            token_expires_at=token.expires_at,
            updated_at=timezone.now(),
        )


class TokenCache:
    """
    Caches one access token and refreshes it shortly before expiry.

    The lock only guards the in-memory token; provider and database calls
    run outside it.

    Args:
        fetch: Callable returning (token, expires_in_seconds) from the provider
        store: Optional shared store (GatewayConfigTokenStore)
        margin_seconds: Refresh when fewer than this many seconds remain
    """

    def __init__(
        self,
        fetch: Callable[[], tuple[str, int]],
        store: GatewayConfigTokenStore | None = None,
        margin_seconds: int | None = None,
    ):
        self._fetch = fetch
        self._store = store
        self._margin = (
            margin_seconds
            if margin_seconds is not None
            else settings.GATEWAY_TOKEN_SAFETY_MARGIN_SECONDS
        )
        self._token: AccessToken | None = None
        self._lock = threading.Lock()

    def get(self) -> str:
        with self._lock:
            cached = self._token
        if cached and cached.is_fresh(self._margin):
            return cached.value

        shared = self._load_shared()
        if shared and shared.is_fresh(self._margin):
            self._install(shared)
            return shared.value

        # Fetched without the lock; concurrent refreshes may each fetch once
        value, expires_in = self._fetch()
        token = AccessToken(value, timezone.now() + timedelta(seconds=int(expires_in)))
        self._install(token)
        self._save_shared(token)
        return value

    def invalidate(self) -> None:
        with self._lock:
            self._token = None

    def _install(self, token: AccessToken) -> None:
        with self._lock:
            self._token = token

    def _load_shared(self) -> AccessToken | None:
        if self._store is None:
            return None
        try:
            return self._store.load()
        except DatabaseError:
            logger.warning("Could not read shared gateway token", exc_info=True)
            return None

    def _save_shared(self, token: AccessToken) -> None:
        if self._store is None:
            return
        try:
            self._store.save(token)
        except DatabaseError:
            logger.warning("Could not persist shared gateway token", exc_info=True)
