"""
Tests for TokenCache and the shared GatewayConfig token store.
"""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from django.db import DatabaseError
from django.utils import timezone
from freezegun import freeze_time

from payments.gateways.tokens import AccessToken, GatewayConfigTokenStore, TokenCache
from payments.models import GatewayConfig


@pytest.fixture
def fetch():
    return MagicMock(return_value=("token-1", 3600))


class TestAccessToken:
    def test_fresh_outside_margin(self):
        now = timezone.now()
        token = AccessToken("abc", now + timedelta(minutes=5))

        assert token.is_fresh(60, now=now) is True
        assert token.is_fresh(300, now=now) is False

    def test_blank_token_is_never_fresh(self):
        now = timezone.now()

        assert AccessToken("", now + timedelta(hours=1)).is_fresh(60, now=now) is False


class TestTokenCache:
    def test_fetches_once_while_fresh(self, fetch):
        cache = TokenCache(fetch, margin_seconds=60)

        assert cache.get() == "token-1"
        assert cache.get() == "token-1"
        assert fetch.call_count == 1

    def test_refreshes_inside_safety_margin(self, fetch):
        """Should fetch a new token shortly before the old one expires."""
        with freeze_time("2026-03-02 09:00:00") as frozen:
            cache = TokenCache(fetch, margin_seconds=60)
            cache.get()

            frozen.tick(timedelta(seconds=3541))
            fetch.return_value = ("token-2", 3600)

            assert cache.get() == "token-2"
            assert fetch.call_count == 2

    def test_invalidate_forces_fetch(self, fetch):
        cache = TokenCache(fetch, margin_seconds=60)
        cache.get()

        cache.invalidate()
        cache.get()

        assert fetch.call_count == 2

    def test_fetch_runs_without_lock_held(self):
        """Should not hold the cache lock across the provider token request."""
        lock_held_during_fetch = []

        def fetch_token():
            lock_held_during_fetch.append(cache._lock.locked())
            return "token-1", 3600

        cache = TokenCache(fetch_token, margin_seconds=60)

        assert cache.get() == "token-1"
        assert lock_held_during_fetch == [False]

    def test_store_read_error_falls_back_to_fetch(self, fetch):
        store = MagicMock()
        store.load.side_effect = DatabaseError("connection lost")

        cache = TokenCache(fetch, store=store, margin_seconds=60)

        assert cache.get() == "token-1"
        store.save.assert_called_once()

    def test_store_write_error_keeps_token(self, fetch):
        store = MagicMock()
        store.load.return_value = None
        store.save.side_effect = DatabaseError("read-only replica")

        cache = TokenCache(fetch, store=store, margin_seconds=60)

        assert cache.get() == "token-1"


@pytest.mark.django_db
class TestGatewayConfigTokenStore:
    def test_reuses_token_from_another_worker(self, fetch):
        """Should use a fresh token stored on the GatewayConfig row."""
        GatewayConfig.objects.create(
            gateway="mpesa",
            auth_token="shared-token",
            token_expires_at=timezone.now() + timedelta(minutes=30),
        )

        cache = TokenCache(fetch, store=GatewayConfigTokenStore("mpesa"), margin_seconds=60)

        assert cache.get() == "shared-token"
        fetch.assert_not_called()

    def test_expired_shared_token_is_replaced(self, fetch):
        GatewayConfig.objects.create(
            gateway="mpesa",
            auth_token="stale-token",
            token_expires_at=timezone.now() + timedelta(seconds=30),
        )

        cache = TokenCache(fetch, store=GatewayConfigTokenStore("mpesa"), margin_seconds=60)

        assert cache.get() == "token-1"
        assert GatewayConfig.objects.get(gateway="mpesa").auth_token == "token-1"

    def test_no_row_means_no_shared_token(self, fetch):
        store = GatewayConfigTokenStore("pesapal")

        assert store.load() is None

        cache = TokenCache(fetch, store=store, margin_seconds=60)
        assert cache.get() == "token-1"
        assert not GatewayConfig.objects.filter(gateway="pesapal").exists()
