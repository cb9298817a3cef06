"""
Redis caching service for event rosters.

CACHING STRATEGY
================

What we cache:
  - The roster snapshot of one event (JSON-serialized, camelCase)
  - Cache key pattern: "roster:event:{event_id}"

Why:
  - Every scanner and guest-list screen polls the roster
  - Dozens of devices at one door poll the same event
  - Serving from Redis: ~1ms vs building the snapshot in PostgreSQL: ~15-50ms

Invalidation strategy:
  - Every write endpoint (registration, cancel, OTP verify, check-in, undo,
    arrival toggle, walk-in) deletes the event's key after committing
  - The snapshot carries rosterVersion, so a stale hit is never mistaken
    for a newer roster by the synchronizer
  - TTL-based expiry as safety net (REDIS_CACHE_TTL)

Capacity is never read from the cache: the registration path goes straight
to the slot row.
"""

import json
from typing import Optional

from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.metrics import record_cache_operation
from app.infrastructure.redis_client import get_redis

logger = get_logger(__name__)
settings = get_settings()


def _make_roster_key(event_id: int) -> str:
    return f"roster:event:{event_id}"


async def get_cached_roster(event_id: int) -> Optional[dict]:
    """Retrieve the cached roster snapshot."""
    client = await get_redis()
    if not client:
        return None

    key = _make_roster_key(event_id)
    try:
        data = await client.get(key)
        if data:
            record_cache_operation("get", hit=True)
            logger.debug("cache_hit", key=key)
            return json.loads(data)
        record_cache_operation("get", hit=False)
        logger.debug("cache_miss", key=key)
    except Exception as e:
        logger.error("cache_get_error", key=key, error=str(e))

    return None


async def set_cached_roster(event_id: int, data: dict) -> None:
    """Cache a roster snapshot with TTL."""
    client = await get_redis()
    if not client:
        return

    key = _make_roster_key(event_id)
    try:
        await client.setex(key, settings.REDIS_CACHE_TTL, json.dumps(data, default=str))
        logger.debug("cache_set", key=key, ttl=settings.REDIS_CACHE_TTL)
    except Exception as e:
        logger.error("cache_set_error", key=key, error=str(e))


async def invalidate_roster(event_id: int) -> None:
    """Drop the cached roster of one event."""
    client = await get_redis()
    if not client:
        return

    key = _make_roster_key(event_id)
    try:
        await client.delete(key)
        logger.debug("cache_invalidated", key=key)
    except Exception as e:
        logger.error("cache_invalidation_error", key=key, error=str(e))


async def get_cache_stats() -> dict:
    """Get Redis cache statistics for monitoring."""
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
