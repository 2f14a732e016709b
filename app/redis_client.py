"""
Redis connection setup using redis-py async client.

One shared client backs the sweep locks (``pool:lock:*``) and the pool
event channel.  Neither is needed for correctness: a dead Redis skips
sweeps and drops events, but entries and challenges keep their state.
"""

import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.config import settings

logger = logging.getLogger(__name__)

redis = aioredis.from_url(
    settings.REDIS_URL,
    decode_responses=True,
    ssl=settings.REDIS_SSL,
    health_check_interval=30,
)


async def get_redis() -> aioredis.Redis:
    """FastAPI dependency that provides the Redis client."""
    return redis


async def redis_available(client: aioredis.Redis | None = None) -> bool:
    """True when Redis answers PING; failures are logged, not raised."""
    try:
        return bool(await (client or redis).ping())
    except (RedisError, OSError) as exc:
        logger.warning("Redis unavailable: %s", exc)
        return False
