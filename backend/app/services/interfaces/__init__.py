"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .rate_limit import RateLimiter, RateLimitResult

__all__ = ['RateLimiter', 'RateLimitResult']
