"""Redis pub/sub — admin activity events for dashboards.

Learn: Redis pub/sub is fire-and-forget. If no one is listening, the message
is lost. That's fine for the admin activity feed (the dashboard can always
query the API to catch up). Events are also stored in PostgreSQL.

Unread badges do NOT go through Redis: they follow the admin_messages
table itself via LISTEN/NOTIFY (see change_feed.py).

Channel naming: spinearn:events:{scope}
"""

import json
from typing import Any, Optional

import redis.asyncio as aioredis
import structlog

from spinearn.config import settings

logger = structlog.get_logger()

ADMIN_SCOPE = "admin"

# Global Redis connection pool (initialized in lifespan)
_redis: Optional[aioredis.Redis] = None


def channel_for(scope: str) -> str:
    return f"spinearn:events:{scope}"


async def init_redis() -> aioredis.Redis:
    """Initialize the Redis connection pool."""
    global _redis
    client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    # Verify connection before publishing it to the rest of the app
    try:
        await client.ping()
    except Exception:
        await client.aclose()
        raise
    _redis = client
    return _redis


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    """Get the Redis connection (must be initialized first)."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


async def publish_event(
    scope: str,
    event_type: str,
    data: dict[str, Any],
) -> bool:
    """Publish an event to a scope's channel.

    Returns False (and logs) when Redis is unavailable — publishing is
    best-effort and must never fail the write that triggered it.
    """
    try:
        r = get_redis()
        payload = json.dumps({"type": event_type, **data}, default=str)
        await r.publish(channel_for(scope), payload)
        return True
    except Exception as e:
        logger.warning("pubsub.publish_failed", scope=scope, event_type=event_type, error=str(e))
        return False
