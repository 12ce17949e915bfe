"""
Redis connection management.

Provides the Redis client the usage store is built on.
"""

from typing import Optional

import redis

from novylist_governance.config.settings import Settings, get_settings

from .store import UsageStore


def get_redis_client(url: str) -> redis.Redis:
    """Create a Redis client that returns str values.

    Args:
        url: Redis connection URL, e.g. ``redis://localhost:6379/0``

    Returns:
        Redis client; no connection is made until the first command
    """
    return redis.Redis.from_url(
        url,
        decode_responses=True,
        socket_connect_timeout=2,
        socket_timeout=2,
    )


def get_store(settings: Optional[Settings] = None) -> UsageStore:
    """Build a UsageStore from environment settings."""
    settings = settings or get_settings()
    return UsageStore(get_redis_client(settings.redis_url), key_prefix=settings.key_prefix)
