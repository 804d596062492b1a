"""Redis connection configuration."""

import redis.asyncio as redis

from adaptive_media.core.config import settings


def create_redis(url: str = settings.REDIS_URL) -> redis.Redis:
    """Create a Redis client. Connections are opened lazily on first command."""
    return redis.from_url(url, decode_responses=True)
