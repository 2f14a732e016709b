"""
Pool state-change events on Redis pub/sub.

Published after the transaction that made the change has committed, so
a subscriber (chat, leaderboard, notifications, live UI) never sees an
event for a change that was rolled back.  Publishing is fire-and-forget:
a Redis failure is logged and the engine carries on.

Payload::

    {"event": "challenge.created", "entity_id": "...",
     "user_ids": ["...", "..."], "at": "2026-01-01T00:00:00+00:00", ...}
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Iterable

from app.pool_engine.config import EVENTS_CHANNEL

if TYPE_CHECKING:
    import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

ENTRY_MATCHED = "entry.matched"
ENTRY_CANCELLED = "entry.cancelled"
ENTRY_EXPIRED = "entry.expired"
CHALLENGE_CREATED = "challenge.created"
CHALLENGE_COMPLETED = "challenge.completed"


class PoolEventPublisher:
    """Publishes JSON events to the pool events channel."""

    def __init__(
        self,
        redis_client: "aioredis.Redis | None" = None,
        channel: str = EVENTS_CHANNEL,
    ):
        self._redis = redis_client
        self.channel = channel

    @property
    def redis(self) -> "aioredis.Redis":
        if self._redis is not None:
            return self._redis
        from app.redis_client import redis as _default
        return _default

    async def publish(
        self,
        event: str,
        entity_id: uuid.UUID,
        user_ids: Iterable[uuid.UUID] = (),
        **data,
    ) -> None:
        payload = {
            "event": event,
            "entity_id": str(entity_id),
            "user_ids": [str(u) for u in user_ids],
            "at": datetime.now(timezone.utc).isoformat(),
            **data,
        }
        try:
            await self.redis.publish(self.channel, json.dumps(payload, default=str))
        except Exception:
            logger.exception("Failed to publish %s for %s", event, entity_id)


# Module-level singleton (uses the default redis client)
event_publisher = PoolEventPublisher()
