"""Middleware package for GradeGate."""

from gradegate.app.middleware.rate_limit import RateLimitMiddleware
from gradegate.app.middleware.request_id import RequestIdMiddleware, get_request_id

__all__ = [
    "RateLimitMiddleware",
    "RequestIdMiddleware",
    "get_request_id",
]
