"""
Redis locks that keep scheduled sweeps from overlapping.

Balance claims, escrow releases and captures are already protected by
guarded database writes. The lock only stops a beat-scheduled run and an
HTTP-triggered run of the same sweep from doing the work twice, so it never
waits: a second run reports itself as skipped.

    stats = run_exclusive("auto-payout", PayoutService.run_auto_payout_sweep)
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Callable

from django_redis import get_redis_connection

from payments.exceptions import LockAcquisitionError

if TYPE_CHECKING:
    from redis import Redis

logger = logging.getLogger(__name__)

# Longest a sweep may hold its lock before another run can start
SWEEP_LOCK_TTL = 15 * 60

# Compare-and-delete so a worker whose lock expired cannot free a newer holder's
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class DistributedLock:
    """
    Non-blocking lock on ``lock:sweep:<name>``.

    The TTL frees locks left behind by crashed workers; the owner token
    makes release a no-op once someone else holds the key.
    """

    def __init__(self, name: str, ttl: int = SWEEP_LOCK_TTL) -> None:
        self.key = f"lock:sweep:{name}"
        self.ttl = ttl
        self._token: str | None = None
        self._redis: Redis | None = None

    @property
    def redis(self) -> Redis:
        if self._redis is None:
            self._redis = get_redis_connection("default")
        return self._redis

    @property
    def is_held(self) -> bool:
        return self._token is not None

    def acquire(self) -> None:
        token = uuid.uuid4().hex
        if not self.redis.set(self.key, token, nx=True, ex=self.ttl):
            raise LockAcquisitionError(f"Lock '{self.key}' is already held", details={"key": self.key})
        self._token = token

    def release(self) -> bool:
        if self._token is None:
            return False
        released = self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        return bool(released)

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()


def run_exclusive(name: str, sweep: Callable[[], dict], ttl: int = SWEEP_LOCK_TTL) -> dict:
    """Run ``sweep`` under its lock and return its stats, or a skip marker if it is already running."""
    lock = DistributedLock(name, ttl=ttl)
    try:
        lock.acquire()
    except LockAcquisitionError:
        logger.info("Sweep already running, skipping", extra={"sweep": name})
        return {"skipped": True, "reason": "already_running"}

    try:
        return sweep()
    finally:
        lock.release()
