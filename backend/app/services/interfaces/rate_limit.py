"""
Rate limiter strategy interface.
Allows swapping between counter backends without touching the OTP flow.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: datetime


class RateLimiter(ABC):
    """
    Interface for fixed-window rate limiters.

    Implementations:
    - DatabaseRateLimiter: counter rows updated with conditional statements
    - RedisRateLimiter: INCR + EXPIRE, fails open when Redis is down
    """

    @abstractmethod
    async def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        """
        Count one request against `key`.

        Args:
            key: Counter identity (e.g. "otp:+972501234567")
            limit: Requests allowed per window
            window_seconds: Window length

        Returns:
            RateLimitResult; allowed is False once the window is exhausted
        """
        pass
