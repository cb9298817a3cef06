"""
Fixed-window rate limiters implementing RateLimiter.

DatabaseRateLimiter
  Counter rows in `rate_limit_windows`, mutated only through conditional
  statements so two concurrent hits can never both take the last slot:
    1. increment inside a live window that still has room
    2. otherwise restart an expired window
    3. otherwise insert the first window (ON CONFLICT DO NOTHING)
  If none of the three statements matched, the window is live and full.
  Hits are committed immediately so they survive a later failure in the
  same request.

RedisRateLimiter
  INCR + EXPIRE. On Redis failure it fails open (admits) and records a
  metric: an outage must not block registrations.
"""

from datetime import timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.core.metrics import rate_limit_rejections, redis_connection_errors
from app.db.base import as_utc, dialect_insert, utcnow
from app.infrastructure.redis_client import get_redis
from app.models.rate_limit import RateLimitWindow
from app.services.interfaces.rate_limit import RateLimiter, RateLimitResult

logger = get_logger(__name__)

MAX_ATTEMPTS = 3


def _scope(key: str) -> str:
    return key.split(":", 1)[0]


class DatabaseRateLimiter(RateLimiter):
    def __init__(self, db: AsyncSession):
        self.db = db

    async def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        for _ in range(MAX_ATTEMPTS):
            now = utcnow()

            bumped = await self.db.execute(
                update(RateLimitWindow)
                .where(
                    RateLimitWindow.key == key,
                    RateLimitWindow.reset_at > now,
                    RateLimitWindow.count < limit,
                )
                .values(count=RateLimitWindow.count + 1)
                .execution_options(synchronize_session=False)
            )
            if bumped.rowcount == 1:
                return await self._allowed(key, limit)

            restarted = await self.db.execute(
                update(RateLimitWindow)
                .where(RateLimitWindow.key == key, RateLimitWindow.reset_at <= now)
                .values(count=1, reset_at=now + timedelta(seconds=window_seconds))
                .execution_options(synchronize_session=False)
            )
            if restarted.rowcount == 1:
                return await self._allowed(key, limit)

            inserted = await self.db.execute(
                dialect_insert(self.db, RateLimitWindow)
                .values(key=key, count=1, reset_at=now + timedelta(seconds=window_seconds))
                .on_conflict_do_nothing(index_elements=["key"])
            )
            if inserted.rowcount == 1:
                return await self._allowed(key, limit)

            window = await self._read(key)
            if window is not None and as_utc(window.reset_at) > now and window.count >= limit:
                await self.db.commit()
                rate_limit_rejections.labels(scope=_scope(key)).inc()
                logger.warning("rate_limited", key=_scope(key), count=window.count, limit=limit)
                return RateLimitResult(allowed=False, remaining=0, reset_at=as_utc(window.reset_at))
            # window changed between statements; go again

        logger.error("rate_limit_contention", key=_scope(key))
        rate_limit_rejections.labels(scope=_scope(key)).inc()
        return RateLimitResult(allowed=False, remaining=0, reset_at=utcnow())

    async def _read(self, key: str) -> RateLimitWindow | None:
        result = await self.db.execute(
            select(RateLimitWindow)
            .where(RateLimitWindow.key == key)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _allowed(self, key: str, limit: int) -> RateLimitResult:
        window = await self._read(key)
        await self.db.commit()
        return RateLimitResult(
            allowed=True,
            remaining=max(0, limit - window.count),
            reset_at=as_utc(window.reset_at),
        )


class RedisRateLimiter(RateLimiter):
    async def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        reset_at = utcnow() + timedelta(seconds=window_seconds)
        client = await get_redis()
        if client is None:
            return RateLimitResult(allowed=True, remaining=limit, reset_at=reset_at)

        redis_key = f"ratelimit:{key}"
        try:
            count = await client.incr(redis_key)
            if count == 1:
                await client.expire(redis_key, window_seconds)
            ttl = await client.ttl(redis_key)
        except Exception as e:
            # Fail open: an outage must not block registrations
            redis_connection_errors.inc()
            logger.error("rate_limit_redis_error", error=str(e))
            return RateLimitResult(allowed=True, remaining=limit, reset_at=reset_at)

        if ttl and ttl > 0:
            reset_at = utcnow() + timedelta(seconds=ttl)

        if count > limit:
            rate_limit_rejections.labels(scope=_scope(key)).inc()
            logger.warning("rate_limited", key=_scope(key), count=count, limit=limit)
            return RateLimitResult(allowed=False, remaining=0, reset_at=reset_at)
        return RateLimitResult(allowed=True, remaining=limit - count, reset_at=reset_at)
