"""Rate limiting for GradeGate.

This module provides the in-memory fixed window rate limiter, the named
policies used by the API routes, a helper for handlers that need several
policies on one request, and a middleware applying a blanket policy per
client.
"""

import hashlib
import math
from typing import Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from gradegate.app.core.config import settings
from gradegate.app.core.logging import get_log_context, get_logger
from gradegate.app.exceptions import RateLimitExceededError

# Re-export models
from gradegate.app.middleware.rate_limit.models import (
    AUTH_RATE_LIMIT,
    DEFAULT_RATE_LIMIT,
    GRADING_BURST_RATE_LIMIT,
    GRADING_RATE_LIMIT,
    RateLimitEntry,
    RateLimitPolicy,
    RateLimitResult,
)

# Re-export limiter
from gradegate.app.middleware.rate_limit.limiter import FixedWindowRateLimiter

logger = get_logger(__name__)

__all__ = [
    # Models
    "RateLimitPolicy",
    "RateLimitResult",
    "RateLimitEntry",
    # Policies
    "DEFAULT_RATE_LIMIT",
    "GRADING_RATE_LIMIT",
    "GRADING_BURST_RATE_LIMIT",
    "AUTH_RATE_LIMIT",
    # Limiter
    "FixedWindowRateLimiter",
    # Helpers
    "get_client_key",
    "enforce_rate_limit",
    "rate_limit_headers",
    "RateLimitMiddleware",
]

MAX_FORWARDED_FOR_LENGTH = 512


def get_client_key(request: Request, trust_forwarded_for: Optional[bool] = None) -> str:
    """Get a rate limit key for the client that sent the request.

    Uses the first hop of X-Forwarded-For when trusted, otherwise the socket
    peer. The address is hashed so raw IPs are never stored or logged.

    Args:
        request: FastAPI request object
        trust_forwarded_for: Override for settings.trust_forwarded_for

    Returns:
        Rate limit key string (hashed, no raw address exposed)
    """
    if trust_forwarded_for is None:
        trust_forwarded_for = settings.trust_forwarded_for

    client_ip = ""
    if trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For", "")[:MAX_FORWARDED_FOR_LENGTH]
        client_ip = forwarded.split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"

    # 32 hex chars (128 bits) for collision resistance
    ip_hash = hashlib.sha256(client_ip.encode()).hexdigest()[:32]
    return f"client:ip:{ip_hash}"


def rate_limit_headers(policy: RateLimitPolicy, result: RateLimitResult) -> dict[str, str]:
    """Build X-RateLimit-* response headers for a check result."""
    headers = {
        "X-RateLimit-Limit": str(policy.max_requests),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(math.ceil(result.reset_time / 1000)),
    }
    if result.retry_after is not None:
        # a rejection at the very end of a window computes 0
        headers["Retry-After"] = str(max(1, result.retry_after))
    return headers


def enforce_rate_limit(
    limiter: FixedWindowRateLimiter,
    identifier: str,
    policy: RateLimitPolicy,
) -> RateLimitResult:
    """Check a policy and raise RateLimitExceededError on rejection.

    Handlers wanting both a coarse and a burst limit call this twice with two
    policies and, usually, two keys.
    """
    result = limiter.check(identifier, policy)
    if not result.success:
        raise RateLimitExceededError(
            retry_after=result.retry_after or 1,
            policy=policy.name,
            reset_time=result.reset_time,
        )
    return result


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce a blanket rate limit per client.

    Only paths under ``path_prefix`` are counted. Rejections are answered
    directly with a JSON 429 body, since exceptions raised inside
    BaseHTTPMiddleware bypass the app's exception handlers.
    """

    def __init__(
        self,
        app,
        limiter: FixedWindowRateLimiter,
        policy: RateLimitPolicy = DEFAULT_RATE_LIMIT,
        path_prefix: str = "/api/",
    ):
        super().__init__(app)
        self.limiter = limiter
        self.policy = policy
        self.path_prefix = path_prefix

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with rate limiting."""
        if not request.url.path.startswith(self.path_prefix):
            return await call_next(request)

        key = get_client_key(request)
        result = self.limiter.check(key, self.policy)
        headers = rate_limit_headers(self.policy, result)

        if not result.success:
            retry_after = max(1, result.retry_after or 0)
            logger.warning(
                "Blanket rate limit exceeded",
                extra=get_log_context(
                    client_key=key,
                    path=request.url.path,
                    policy=self.policy.name,
                ),
            )
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": f"Too many requests. Please retry in {retry_after} seconds.",
                    "retry_after": retry_after,
                },
                headers=headers,
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response
