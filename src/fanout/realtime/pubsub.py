"""Redis pub/sub — carries published events to the dispatcher.

Learn: Producers PUBLISH application events on one channel; every
EventWorker SUBSCRIBEs to it and runs the dispatcher. Redis pub/sub is
fire-and-forget — an event published while no worker listens is lost,
which matches the no-exactly-once contract of the fanout.

Redis is optional: without it, the HTTP API dispatches in-process.
"""

from typing import Optional

import redis.asyncio as aioredis

from fanout.schemas.subscription import SubscriptionEvent

# Connection pool for the app process (initialized in lifespan)
_redis: Optional[aioredis.Redis] = None


async def init_redis(url: str) -> aioredis.Redis:
    """Initialize the Redis connection pool and verify it answers."""
    global _redis
    client = aioredis.from_url(
        url,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=2,
    )
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


def redis_ready() -> bool:
    return _redis is not None


async def publish_event(event: SubscriptionEvent, channel: str) -> int:
    """Publish an event on the events channel. Returns the receiver count."""
    r = get_redis()
    return await r.publish(channel, event.model_dump_json())
