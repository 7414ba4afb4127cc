"""
Redis connection — shared async client for the Redis-backed weather store.

Usage:
    from backend.app.core.cache import get_redis

    client = get_redis()
    await client.hgetall("weather:<location_id>:readings")
"""

from __future__ import annotations

import logging
from typing import Optional

import redis.asyncio as aioredis

from backend.app.core.config import settings

logger = logging.getLogger(__name__)

_redis_client: Optional[aioredis.Redis] = None


def get_redis() -> aioredis.Redis:
    """Get or create the async Redis client (connects lazily on first command)."""
    global _redis_client
    if _redis_client is None:
        _redis_client = aioredis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        )
        logger.info("Redis client created: %s", settings.REDIS_URL)
    return _redis_client


async def ping_redis() -> None:
    """Raises if Redis is unreachable."""
    await get_redis().ping()


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")
