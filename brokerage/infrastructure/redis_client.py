"""Redis async client construction."""

from __future__ import annotations

from typing import Optional

import redis.asyncio as aioredis

from brokerage.config import settings


def build_redis(redis_url: Optional[str] = None) -> aioredis.Redis:
    """Return a Redis client backed by its own connection pool."""
    pool = aioredis.ConnectionPool.from_url(
        redis_url or settings.redis_url, decode_responses=True
    )
    return aioredis.Redis(connection_pool=pool)
