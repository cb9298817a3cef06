"""
Rate limiter factory.
Configures which counter backend guards OTP sends.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.db.session import get_db
from app.services.interfaces.rate_limit import RateLimiter
from app.services.rate_limit_service import DatabaseRateLimiter, RedisRateLimiter


def build_rate_limiter(db: AsyncSession) -> RateLimiter:
    """
    Strategy selection via RATE_LIMIT_BACKEND:
    - database (default): exact, transactional, no extra infrastructure
    - redis: cheaper under heavy load, fails open on outages
    """
    backend = get_settings().RATE_LIMIT_BACKEND

    if backend == "redis":
        return RedisRateLimiter()
    return DatabaseRateLimiter(db)


async def get_rate_limiter(db: AsyncSession = Depends(get_db)) -> RateLimiter:
    """FastAPI dependency sharing the request's session."""
    return build_rate_limiter(db)
