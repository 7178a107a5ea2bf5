"""Boundary protection for the device loan service.

This module provides:
- Fixed-window rate limiting keyed by caller and endpoint
"""

from .rate_limiter import (
    FixedWindowRateLimiter,
    RateLimitConfig,
    RateLimitDecision,
    RateLimitExceeded,
    RequestOutcome,
    make_key,
)

__all__ = [
    "FixedWindowRateLimiter",
    "RateLimitConfig",
    "RateLimitDecision",
    "RateLimitExceeded",
    "RequestOutcome",
    "make_key",
]
