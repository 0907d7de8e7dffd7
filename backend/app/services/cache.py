"""
Redis Cache Service.
Caches the admin dashboard aggregates; every ledger-changing flow invalidates them.
"""
import json
from typing import Optional, Any
from redis.asyncio import Redis

from backend.app.core.settings import get_settings


class CacheService:
    """Service for caching operations using Redis."""

    _redis: Optional[Redis] = None

    # Default TTL values (in seconds)
    TTL_DASHBOARD = 60
    TTL_DEFAULT = 300

    # Cache key prefixes
    KEY_DASHBOARD_STATS = "dashboard:stats"

    @classmethod
    async def get_redis(cls) -> Redis:
        """Get or create Redis connection."""
        if cls._redis is None:
            settings = get_settings()
            cls._redis = Redis(
                host=settings.REDIS_HOST,
                port=settings.REDIS_PORT,
                db=settings.REDIS_DB,
                decode_responses=True
            )
        return cls._redis

    @classmethod
    async def close(cls):
        """Close Redis connection."""
        if cls._redis:
            await cls._redis.close()
            cls._redis = None

    def __init__(self, redis: Redis):
        self.redis = redis

    async def get(self, key: str) -> Optional[Any]:
        data = await self.redis.get(key)
        if data:
            return json.loads(data)
        return None

    async def set(self, key: str, value: Any, ttl: int = TTL_DEFAULT):
        """Set value in cache with TTL. Decimals are stored as strings."""
        await self.redis.set(key, json.dumps(value, ensure_ascii=False, default=str), ex=ttl)

    async def delete(self, key: str):
        await self.redis.delete(key)

    async def delete_pattern(self, pattern: str):
        """Delete all keys matching pattern."""
        keys = await self.redis.keys(pattern)
        if keys:
            await self.redis.delete(*keys)

    # ----- Dashboard -----

    async def get_dashboard_stats(self) -> Optional[dict]:
        return await self.get(self.KEY_DASHBOARD_STATS)

    async def set_dashboard_stats(self, stats: dict):
        await self.set(self.KEY_DASHBOARD_STATS, stats, self.TTL_DASHBOARD)

    async def invalidate_dashboard(self):
        """Drop all dashboard aggregates after orders, commissions or balances change."""
        await self.delete_pattern("dashboard:*")
