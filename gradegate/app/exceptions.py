"""Custom exceptions for the GradeGate application."""

from typing import Optional


class GradeGateException(Exception):
    """Base class for GradeGate exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str = "GradeGate error"):
        self.message = message
        super().__init__(message)


class QueueFullError(GradeGateException):
    """Raised when the grading queue backlog is at capacity.

    The job was never accepted and will never run. Callers should retry later.
    Maps to HTTP 503 Service Unavailable.
    """
    status_code = 503
    error_code = "queue_full"

    def __init__(self, message: str = "Queue is full", retry_after: int = 5):
        self.retry_after = retry_after
        super().__init__(message)


class RateLimitExceededError(GradeGateException):
    """Raised by HTTP handlers when a rate limit check fails.

    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429
    error_code = "rate_limit_exceeded"

    def __init__(
        self,
        retry_after: int,
        policy: Optional[str] = None,
        reset_time: Optional[int] = None,
    ):
        self.retry_after = retry_after
        self.policy = policy
        self.reset_time = reset_time
        super().__init__(
            f"Too many requests. Please retry in {retry_after} seconds."
        )


class InvalidRegradeTokenError(GradeGateException):
    """Raised when a regrade token fails verification.

    A new token must be issued, so this is not retryable.
    Maps to HTTP 400 Bad Request.
    """
    status_code = 400
    error_code = "invalid_regrade_token"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(
            "Regrade token is not valid. Please restart grading from the beginning."
        )


class RegradeNotAllowedError(GradeGateException):
    """Raised when a verified regrade token does not authorize this request.

    Maps to HTTP 403 Forbidden.
    """
    status_code = 403
    error_code = "regrade_not_allowed"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Regrade is not allowed: {reason}")


class GradingError(GradeGateException):
    """Raised when the grading backend fails to produce a result.

    Maps to HTTP 502 Bad Gateway.
    """
    status_code = 502
    error_code = "grading_failed"

    def __init__(self, message: str = "Grading failed"):
        super().__init__(message)
