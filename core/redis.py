import logging

from redis import asyncio as aioredis

from core.config import get_settings

logger = logging.getLogger(__name__)

_redis: aioredis.Redis | None = None


def get_redis_connection() -> aioredis.Redis:
    """Return the shared Redis client (created lazily on first use)."""
    global _redis
    if _redis is None:
        settings = get_settings()
        logger.info("Connecting to Redis at %s:%s", settings.redis_host, settings.redis_port)
        _redis = aioredis.from_url(settings.redis_url, decode_responses=True)
    return _redis


async def close_redis_connection() -> None:
    """Close the shared Redis client if it was opened."""
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None
