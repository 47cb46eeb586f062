"""
Redis cache for the public event listing.

CACHING STRATEGY
================

What we cache:
  - The public listing (/events/public), the only unauthenticated and
    audience-independent read. Every other listing depends on who asks.
  - Key pattern: "events:public:page={page}&size={size}&facility={id}&search={term}"

Invalidation:
  - Any create, update or delete drops every "events:public:" key (SCAN by
    prefix). Lifecycle transitions go through update, so publishing,
    completing and cancelling are covered.
  - TTL (REDIS_CACHE_TTL) as a safety net.

Failure mode:
  - Redis is optional. Connection or command errors are logged and the
    caller falls back to the database; nothing here raises.
"""

import json
from typing import Optional

import redis.asyncio as redis

from sems.core.config import get_settings
from sems.core.logging import get_logger
from sems.core.metrics import record_cache_operation

logger = get_logger(__name__)
settings = get_settings()

PUBLIC_LISTING_PREFIX = "events:public:"

_redis_client: Optional[redis.Redis] = None


async def get_redis() -> Optional[redis.Redis]:
    """Get or create the Redis connection. Returns None if Redis is disabled or down."""
    global _redis_client

    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None:
        try:
            _redis_client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
            await _redis_client.ping()
            logger.info("redis_connected", url=settings.REDIS_URL)
        except Exception as e:
            logger.error("redis_connection_failed", error=str(e))
            _redis_client = None
            return None

    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def make_public_listing_key(
    page: int, page_size: int, facility_id: Optional[str] = None, search_term: Optional[str] = None
) -> str:
    return (
        f"{PUBLIC_LISTING_PREFIX}page={page}&size={page_size}"
        f"&facility={facility_id or ''}&search={(search_term or '').lower()}"
    )


async def get_cached_listing(key: str) -> Optional[dict]:
    client = await get_redis()
    if not client:
        return None

    try:
        data = await client.get(key)
        if data:
            record_cache_operation("get", "hit")
            logger.debug("cache_hit", key=key)
            return json.loads(data)
        record_cache_operation("get", "miss")
        logger.debug("cache_miss", key=key)
    except Exception as e:
        record_cache_operation("get", "error")
        logger.error("cache_get_error", key=key, error=str(e))

    return None


async def set_cached_listing(key: str, data: dict) -> None:
    """Cache a serialized listing with TTL."""
    client = await get_redis()
    if not client:
        return

    try:
        await client.setex(key, settings.REDIS_CACHE_TTL, json.dumps(data, default=str))
        record_cache_operation("set", "ok")
        logger.debug("cache_set", key=key, ttl=settings.REDIS_CACHE_TTL)
    except Exception as e:
        record_cache_operation("set", "error")
        logger.error("cache_set_error", key=key, error=str(e))


async def invalidate_public_listings() -> None:
    """Drop every cached public listing page."""
    client = await get_redis()
    if not client:
        return

    try:
        deleted = 0
        async for key in client.scan_iter(match=f"{PUBLIC_LISTING_PREFIX}*", count=100):
            await client.delete(key)
            deleted += 1
        record_cache_operation("invalidate", "ok")
        logger.info("cache_invalidated", keys_deleted=deleted)
    except Exception as e:
        record_cache_operation("invalidate", "error")
        logger.error("cache_invalidation_error", error=str(e))


async def get_cache_stats() -> dict:
    """Redis cache statistics for the health endpoint."""
    client = await get_redis()
    if not client:
        return {"status": "disabled"}

    try:
        info = await client.info("stats")
        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        return {
            "status": "connected",
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
        }
    except Exception as e:
        return {"status": "error", "error": str(e)}
