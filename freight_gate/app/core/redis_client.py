"""
Redis connection for the checkpoint event broker.

Only used when ``EVENT_BROKER=redis``: every worker publishes checkpoint
events to Redis pub/sub so a carrier connected to any worker receives them.
"""

import logging
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError
from freight_gate.app.core.config import settings

logger = logging.getLogger("freight_gate.redis")

_client: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
    """Shared client, created on first use so the in-memory broker never connects."""
    global _client
    if _client is None:
        _client = redis.from_url(
            settings.redis_url,
            decode_responses=settings.redis_decode_responses,
        )
    return _client


async def broker_reachable() -> Optional[bool]:
    """
    Ping the broker for the health endpoint.

    Returns:
        None when the in-memory broker is configured, otherwise whether
        Redis answered.
    """
    if settings.event_broker != "redis":
        return None
    try:
        return bool(await get_redis().ping())
    except (RedisError, OSError) as exc:
        logger.warning("Event broker ping failed: %s", exc)
        return False
