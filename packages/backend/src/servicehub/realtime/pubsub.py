"""Redis connection for the change feed.

Learn: Redis pub/sub is fire-and-forget. A view that isn't subscribed when
a change is published never sees it, which is why every aggregate does a
full fetch on load and treats events only as "something changed" hints.

One pool per process, created in the app lifespan. Each view's feed
subscriptions open their own pubsub connections from it.
"""

from typing import Optional

import redis.asyncio as aioredis

from servicehub.config import settings

# Initialized in lifespan
_redis: Optional[aioredis.Redis] = None


async def init_redis(url: Optional[str] = None) -> aioredis.Redis:
    """Create the pool and verify the server answers."""
    global _redis
    _redis = aioredis.from_url(
        url or settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    await _redis.ping()
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    """The shared pool (init_redis() must have run)."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis
