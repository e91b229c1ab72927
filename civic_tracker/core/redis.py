"""
Redis cache client configuration.
"""

import json
from typing import Any, Awaitable, Callable, Optional

from redis.asyncio import Redis, from_url

from civic_tracker.core.config import settings
from civic_tracker.core.metrics import record_cache_operation

redis_client: Optional[Redis] = None

CACHE_NAMESPACE = "civic"


def cache_key(*parts: Any) -> str:
    """Build a namespaced cache key, e.g. ``civic:issues:stats``."""
    return ":".join([CACHE_NAMESPACE, *(str(part) for part in parts)])


async def get_redis() -> Redis:
    """Get Redis client instance."""
    global redis_client
    if redis_client is None:
        redis_client = from_url(
            str(settings.REDIS_URL),
            encoding="utf-8",
            decode_responses=True,
        )
    return redis_client


async def close_redis():
    """Close Redis connection."""
    global redis_client
    if redis_client:
        await redis_client.close()
        redis_client = None


class CacheService:
    """Redis caching service with JSON serialization."""

    def __init__(self, redis: Redis):
        self.redis = redis

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache."""
        value = await self.redis.get(key)
        if value is not None:
            record_cache_operation("hit")
            return json.loads(value)
        record_cache_operation("miss")
        return None

    async def set(
        self, key: str, value: Any, ttl: int = settings.REDIS_CACHE_TTL
    ) -> bool:
        """Set value in cache with TTL."""
        serialized = json.dumps(value, default=str)
        success = await self.redis.setex(key, ttl, serialized)
        if success:
            record_cache_operation("set")
        return success

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[Any]],
        ttl: int = settings.REDIS_CACHE_TTL,
    ) -> Any:
        """Return the cached value, computing and storing it on a miss."""
        cached = await self.get(key)
        if cached is not None:
            return cached
        value = await factory()
        await self.set(key, value, ttl=ttl)
        return value

    async def delete(self, key: str) -> bool:
        """Delete key from cache."""
        deleted = bool(await self.redis.delete(key))
        if deleted:
            record_cache_operation("delete")
        return deleted

    async def exists(self, key: str) -> bool:
        """Check if key exists in cache."""
        exists = bool(await self.redis.exists(key))
        record_cache_operation("exists")
        return exists

    async def invalidate_pattern(self, pattern: str) -> int:
        """Invalidate all keys matching pattern."""
        keys = []
        async for key in self.redis.scan_iter(match=pattern):
            keys.append(key)
        if keys:
            deleted = await self.redis.delete(*keys)
            if deleted:
                record_cache_operation("invalidate")
            return deleted
        return 0
