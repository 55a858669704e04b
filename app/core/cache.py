"""
Redis cache management.
Provides connection pooling and helper functions for caching operations.
"""
import json
import logging
from typing import Any, Iterable, Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from app.config import settings

logger = logging.getLogger(__name__)


class RedisCache:
    """Redis cache manager with connection pooling."""

    def __init__(self):
        """Initialize Redis connection pool."""
        self.redis: Optional[aioredis.Redis] = None

    async def connect(self) -> None:
        """Establish connection to Redis."""
        if not settings.redis_url:
            logger.info("No Redis URL provided - running without Redis cache")
            self.redis = None
            return

        try:
            self.redis = aioredis.from_url(
                settings.redis_url,
                password=settings.redis_password if settings.redis_password else None,
                encoding="utf-8",
                decode_responses=True,
                max_connections=50,
            )
            # Test the connection
            await self.redis.ping()
            logger.info("Connected to Redis successfully")
        except (RedisError, OSError) as e:
            logger.warning(f"Could not connect to Redis, running without cache: {e}")
            self.redis = None

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self.redis:
            await self.redis.aclose()
            self.redis = None

    async def ping(self) -> bool:
        """Check Redis connectivity (False when running without Redis)."""
        if not self.redis:
            return False

        try:
            return bool(await self.redis.ping())
        except RedisError:
            return False

    async def get(self, key: str) -> Optional[Any]:
        """
        Get value from cache.

        Args:
            key: Cache key

        Returns:
            Cached value or None if not found
        """
        if not self.redis:
            return None

        value = await self.redis.get(key)
        if value:
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                return value
        return None

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None
    ) -> bool:
        """
        Set value in cache with optional TTL.

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time to live in seconds

        Returns:
            True if successful
        """
        if not self.redis:
            return False

        if isinstance(value, (dict, list)):
            value = json.dumps(value)

        if ttl:
            return await self.redis.setex(key, ttl, value)
        else:
            return await self.redis.set(key, value)

    async def delete(self, key: str) -> bool:
        """
        Delete key from cache.

        Args:
            key: Cache key

        Returns:
            True if key was deleted
        """
        if not self.redis:
            return False

        return bool(await self.redis.delete(key))


# Global cache instance
cache = RedisCache()


# Helper functions for common cache patterns
async def set_user_presence(user_id: str, status: str) -> bool:
    """Set user presence status (online/offline)."""
    key = f"presence:{user_id}"
    return await cache.set(key, {"status": status}, ttl=settings.cache_presence_ttl)


async def cache_unread_count(user_id: str, conversation_id: str, count: int, counter: int) -> bool:
    """
    Cache a viewer's visible unread count for a conversation.

    The entry is tagged with the member's unread counter at write time.
    Short TTL (60s); invalidated whenever a deletion changes what the
    viewer can see.
    """
    key = f"unread:{user_id}:{conversation_id}"
    return await cache.set(key, {"counter": counter, "visible": count}, ttl=60)


async def get_cached_unread_count(user_id: str, conversation_id: str, counter: int) -> Optional[int]:
    """
    Get cached unread count for a user in a conversation.

    New messages and read receipts move the member counter without
    touching this cache, so an entry written under another counter value
    is treated as a miss.

    Returns:
        Cached count or None if cache miss
    """
    key = f"unread:{user_id}:{conversation_id}"
    data = await cache.get(key)
    if not isinstance(data, dict) or data.get("counter") != counter:
        return None
    return int(data["visible"])


async def invalidate_unread_count_cache(user_id: str, conversation_id: str) -> bool:
    """Invalidate cached unread count (called when the visible set changes)."""
    key = f"unread:{user_id}:{conversation_id}"
    return await cache.delete(key)


async def invalidate_total_unread_count_cache(user_id: str) -> bool:
    """Invalidate cached total unread count across conversations."""
    key = f"unread:total:{user_id}"
    return await cache.delete(key)


async def invalidate_unread_for_users(conversation_id: str, user_ids: Iterable[str]) -> None:
    """
    Invalidate per-conversation and total unread caches for several users.

    Cache failures are logged and never propagated: the cache only
    shortens reads and a stale entry expires on its own.
    """
    for user_id in user_ids:
        try:
            await invalidate_unread_count_cache(user_id, conversation_id)
            await invalidate_total_unread_count_cache(user_id)
        except RedisError as e:
            logger.warning(
                f"Failed to invalidate unread cache for user {user_id}: {e}",
                extra={"conversation_id": conversation_id},
            )
