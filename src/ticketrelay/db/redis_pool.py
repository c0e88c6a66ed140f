"""Redis connection pool — used for per-IP rate limiting.

Learn: Room membership and fan-out live in process memory (see
realtime/rooms.py); Redis only backs the rate limiter. Redis is optional:
if it is unreachable at startup the pool stays unset and the rate limit
middleware lets every request through.
"""

from typing import Optional

import redis.asyncio as aioredis

from ticketrelay.config import settings

# Global Redis connection pool (initialized in lifespan)
_redis: Optional[aioredis.Redis] = None


async def init_redis() -> aioredis.Redis:
    """Connect and verify. The pool is only published once PING succeeds."""
    global _redis
    client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    try:
        await client.ping()
    except Exception:
        await client.aclose()
        raise
    _redis = client
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    """Get the Redis connection (must be initialized first)."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis
