"""In-memory fixed window rate limiter.

Counters live in process memory only. That is fine for a single process, but
limits are not shared across independently scaled instances.

The fixed window allows a client to send ``max_requests`` at the very end of
one window and ``max_requests`` more at the start of the next, so up to twice
the configured rate can pass in a short span. Callers rely on the exact
thresholds, so this stays a fixed window.
"""

import math
import time
from typing import Callable, Dict, Optional

from gradegate.app.core.logging import get_logger
from gradegate.app.middleware.rate_limit.models import (
    DEFAULT_RATE_LIMIT,
    RateLimitEntry,
    RateLimitPolicy,
    RateLimitResult,
)

logger = get_logger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class FixedWindowRateLimiter:
    """Fixed window request counter keyed by identifier and policy.

    All operations are synchronous, so on a single event loop no two checks
    can interleave and no lock is needed.

    Memory is bounded by an opportunistic sweep: at most once per
    ``cleanup_interval_ms``, a check removes entries whose window is stale by
    more than twice their policy's window.
    """

    DEFAULT_CLEANUP_INTERVAL_MS = 60 * 1000

    def __init__(
        self,
        cleanup_interval_ms: int = DEFAULT_CLEANUP_INTERVAL_MS,
        clock: Optional[Callable[[], int]] = None,
    ):
        """Initialize rate limiter.

        Args:
            cleanup_interval_ms: Minimum time between stale entry sweeps
            clock: Callable returning the current epoch time in milliseconds
        """
        if cleanup_interval_ms < 1:
            raise ValueError("cleanup_interval_ms must be at least 1")
        self.cleanup_interval_ms = cleanup_interval_ms
        self._clock = clock or _now_ms
        self._storage: Dict[RateLimitPolicy, Dict[str, RateLimitEntry]] = {}
        self._last_cleanup = self._clock()

    def check(
        self,
        identifier: str,
        policy: RateLimitPolicy = DEFAULT_RATE_LIMIT,
    ) -> RateLimitResult:
        """Count a request for ``identifier`` and decide whether it is allowed.

        Args:
            identifier: User id, hashed IP or any other client key
            policy: Policy to count the request against

        Returns:
            RateLimitResult with allowed status and metadata
        """
        now = self._clock()
        self._cleanup_stale_entries(now)

        entries = self._storage.setdefault(policy, {})
        entry = entries.get(identifier)

        if entry is None or now - entry.window_start > policy.window_ms:
            entries[identifier] = RateLimitEntry(count=1, window_start=now)
            return RateLimitResult(
                success=True,
                remaining=policy.max_requests - 1,
                reset_time=now + policy.window_ms,
            )

        reset_time = entry.window_start + policy.window_ms

        if entry.count >= policy.max_requests:
            retry_after = math.ceil((reset_time - now) / 1000)
            logger.info(
                "Rate limit exceeded",
                extra={"policy": policy.name, "retry_after": retry_after},
            )
            return RateLimitResult(
                success=False,
                remaining=0,
                reset_time=reset_time,
                retry_after=retry_after,
            )

        entry.count += 1
        return RateLimitResult(
            success=True,
            remaining=policy.max_requests - entry.count,
            reset_time=reset_time,
        )

    def _cleanup_stale_entries(self, now: int) -> None:
        """Sweep stale entries if the cleanup interval has elapsed."""
        if now - self._last_cleanup < self.cleanup_interval_ms:
            return
        self._last_cleanup = now

        removed = 0
        for policy, entries in list(self._storage.items()):
            stale = [
                key for key, entry in entries.items()
                if now - entry.window_start > policy.window_ms * 2
            ]
            for key in stale:
                del entries[key]
            removed += len(stale)
            if not entries:
                del self._storage[policy]

        if removed:
            logger.debug(f"Removed {removed} stale rate limit entries")

    def reset(self, identifier: str) -> None:
        """Forget ``identifier`` under every policy (admin and test use)."""
        for entries in self._storage.values():
            entries.pop(identifier, None)

    def clear_all(self) -> None:
        """Remove all counters (test use)."""
        self._storage.clear()

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._storage.values())
