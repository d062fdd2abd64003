"""Rate limiting data models.

This module contains dataclasses for rate limit policies, state and results,
plus the named policies used by the API routes.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RateLimitPolicy:
    """At most ``max_requests`` per identifier per ``window_ms`` milliseconds.

    Policies are independent: the same identifier has a separate counter
    under each policy.
    """
    name: str
    max_requests: int
    window_ms: int

    def __post_init__(self):
        if self.max_requests < 1:
            raise ValueError(f"max_requests must be at least 1, got {self.max_requests}")
        if self.window_ms < 1:
            raise ValueError(f"window_ms must be at least 1, got {self.window_ms}")


@dataclass
class RateLimitResult:
    """Result of a rate limit check.

    ``reset_time`` is an epoch timestamp in milliseconds. ``retry_after`` is
    only set on rejection and is expressed in whole seconds, rounded up.
    """
    success: bool
    remaining: int
    reset_time: int
    retry_after: Optional[int] = None


@dataclass
class RateLimitEntry:
    """Fixed window state for one identifier under one policy."""
    count: int
    window_start: int


# Default policy: 10 requests per minute
DEFAULT_RATE_LIMIT = RateLimitPolicy(name="default", max_requests=10, window_ms=60 * 1000)

# Grading endpoints: 5 requests per minute
GRADING_RATE_LIMIT = RateLimitPolicy(name="grading", max_requests=5, window_ms=60 * 1000)

# Grading burst protection: 2 requests per 10 seconds
GRADING_BURST_RATE_LIMIT = RateLimitPolicy(name="grading_burst", max_requests=2, window_ms=10 * 1000)

# Auth-sensitive endpoints (brute force protection): 5 requests per 5 minutes
AUTH_RATE_LIMIT = RateLimitPolicy(name="auth", max_requests=5, window_ms=5 * 60 * 1000)
