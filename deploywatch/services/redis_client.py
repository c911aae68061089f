"""Shared Redis connection for the event log and the resource registry."""

from redis.asyncio import Redis

from deploywatch.config import settings
from deploywatch.utils.logging import get_logger

logger = get_logger(__name__)

_redis: Redis | None = None


def get_redis() -> Redis | None:
    """Get the shared Redis client, or None when Redis is not configured."""
    global _redis
    if not settings.redis_url:
        return None
    if _redis is None:
        _redis = Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=5,
            socket_connect_timeout=5,
        )
        logger.info("redis.client_created")
    return _redis


async def close_redis() -> None:
    """Close the shared Redis client if one was created."""
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None
