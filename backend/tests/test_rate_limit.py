"""
Tests for the database-backed fixed-window rate limiter.
"""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import update

from app.db.base import utcnow
from app.models.rate_limit import RateLimitWindow
from app.services.rate_limit_service import DatabaseRateLimiter


@pytest.mark.asyncio
async def test_window_fills_then_rejects(db_session):
    limiter = DatabaseRateLimiter(db_session)

    results = [await limiter.hit("otp:+972501234567", 3, 300) for _ in range(4)]

    assert [r.allowed for r in results] == [True, True, True, False]
    assert [r.remaining for r in results] == [2, 1, 0, 0]


@pytest.mark.asyncio
async def test_keys_are_independent(db_session):
    limiter = DatabaseRateLimiter(db_session)
    await limiter.hit("otp:a", 1, 300)

    assert (await limiter.hit("otp:a", 1, 300)).allowed is False
    assert (await limiter.hit("otp:b", 1, 300)).allowed is True


@pytest.mark.asyncio
async def test_expired_window_restarts(db_session):
    limiter = DatabaseRateLimiter(db_session)
    await limiter.hit("otp:a", 1, 300)
    await db_session.execute(
        update(RateLimitWindow)
        .where(RateLimitWindow.key == "otp:a")
        .values(reset_at=utcnow() - timedelta(seconds=1))
    )
    await db_session.commit()

    result = await limiter.hit("otp:a", 1, 300)
    assert result.allowed is True
    assert result.remaining == 0


@pytest.mark.asyncio
async def test_concurrent_hits_never_exceed_limit(session_factory):
    async def hit():
        async with session_factory() as session:
            return await DatabaseRateLimiter(session).hit("otp:race", 3, 300)

    results = await asyncio.gather(*[hit() for _ in range(8)])
    assert [r.allowed for r in results].count(True) == 3
