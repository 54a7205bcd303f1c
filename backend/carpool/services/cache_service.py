"""
Redis cache for mapping-service route lookups.

CACHING STRATEGY
================

What we cache:
  - Distance Matrix results (distance in metres, duration in seconds)
  - Key pattern: "carpool:route:{mode}:{origin}:{destination}"

Why:
  - Drivers create and edit rides between the same handful of places
  - A mapping call costs ~100-300ms and is billed per element;
    a Redis hit is ~1ms and free

Invalidation strategy:
  - TTL-based expiry only (ROUTE_CACHE_TTL, default 5 minutes); road
    distances do not change on any event we observe
  - invalidate() drops every key under the prefix (SCAN + DEL) for
    operational resets

Why NOT cache seat availability:
  - Booking needs real-time seat counts (stale data = overbooking)

The cache is built once in the application lifespan and handed to the
LocationService; it fails open: any Redis error is logged and treated
as a miss.
"""

import json
from typing import Optional

import redis.asyncio as redis

from carpool.core.config import get_settings
from carpool.core.logging import get_logger
from carpool.core.metrics import record_cache_operation

logger = get_logger(__name__)


async def connect_redis() -> Optional[redis.Redis]:
    """Create and ping a Redis client. Returns None if Redis is disabled or unreachable."""
    settings = get_settings()
    if not settings.REDIS_ENABLED:
        return None

    client = redis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
        retry_on_timeout=True,
    )
    try:
        await client.ping()
    except redis.RedisError as e:
        logger.error("redis_connection_failed", error=str(e))
        await client.aclose()
        return None

    logger.info("redis_connected", url=settings.REDIS_URL)
    return client


class RouteCache:
    def __init__(self, client: Optional[redis.Redis], ttl: int, prefix: str = "carpool:route"):
        self.client = client
        self.ttl = ttl
        self.prefix = prefix

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def make_key(self, origin: str, destination: str, mode: str) -> str:
        return f"{self.prefix}:{mode}:{origin}:{destination}"

    async def get(self, key: str) -> Optional[dict]:
        if not self.client:
            return None
        try:
            data = await self.client.get(key)
        except redis.RedisError as e:
            record_cache_operation("get", "error")
            logger.error("cache_get_error", key=key, error=str(e))
            return None

        if data is None:
            record_cache_operation("get", "miss")
            logger.debug("cache_miss", key=key)
            return None

        record_cache_operation("get", "hit")
        logger.debug("cache_hit", key=key)
        return json.loads(data)

    async def set(self, key: str, value: dict) -> None:
        if not self.client:
            return
        try:
            await self.client.setex(key, self.ttl, json.dumps(value, default=str))
            record_cache_operation("set", "ok")
            logger.debug("cache_set", key=key, ttl=self.ttl)
        except redis.RedisError as e:
            record_cache_operation("set", "error")
            logger.error("cache_set_error", key=key, error=str(e))

    async def invalidate(self) -> int:
        """Delete every key under this cache's prefix."""
        if not self.client:
            return 0
        deleted = 0
        try:
            async for key in self.client.scan_iter(match=f"{self.prefix}:*", count=100):
                await self.client.delete(key)
                deleted += 1
        except redis.RedisError as e:
            logger.error("cache_invalidation_error", error=str(e))
        logger.info("cache_invalidated", keys_deleted=deleted)
        return deleted

    async def stats(self) -> dict:
        """Redis cache statistics for monitoring."""
        if not self.client:
            return {"status": "disabled"}

        try:
            info = await self.client.info("stats")
        except redis.RedisError as e:
            return {"status": "error", "error": str(e)}

        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        return {
            "status": "connected",
            "ttl": self.ttl,
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
        }

    async def close(self) -> None:
        if self.client:
            await self.client.aclose()
            self.client = None
