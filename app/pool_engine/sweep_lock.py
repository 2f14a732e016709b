"""
Distributed locks for the periodic pool sweeps.

One non-blocking Redis lock per sweep kind (match, judge, expire) keeps
two beat-triggered runs of the same sweep from overlapping.  The lock is
an efficiency guard only: every state change the sweeps make is already
a conditional write, so an expired lock or a lock-free run stays correct.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from redis.exceptions import LockError

if TYPE_CHECKING:
    import redis.asyncio as aioredis
    from redis.asyncio.lock import Lock

logger = logging.getLogger(__name__)

# Celery's hard time limit for a sweep is pinned to this value
LOCK_TIMEOUT_SECONDS = 300


class SweepLockManager:
    """Hands out the ``pool:lock:<kind>`` locks; one instance per Redis client."""

    def __init__(self, redis_client: "aioredis.Redis | None" = None):
        self._client = redis_client

    @property
    def client(self) -> "aioredis.Redis":
        if self._client is None:
            from app.redis_client import redis
            self._client = redis
        return self._client

    async def acquire(self, key: str) -> "Lock | None":
        """
        Try once to take the lock at *key*.

        ``None`` means another worker is mid-sweep and this run should be
        skipped.  The lock auto-expires after ``LOCK_TIMEOUT_SECONDS`` so a
        crashed worker cannot wedge the sweep.
        """
        lock = self.client.lock(key, timeout=LOCK_TIMEOUT_SECONDS, blocking=False)
        if await lock.acquire():
            logger.debug("Took sweep lock %s", key)
            return lock
        return None

    async def release(self, lock: "Lock") -> None:
        try:
            await lock.release()
        except LockError:
            logger.warning(
                "Sweep lock %s expired before release; sweep outran the TTL", lock.name,
            )


sweep_locks = SweepLockManager()
