from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gradegate.app.api.grade import router as grade_router
from gradegate.app.core.config import Settings, settings as default_settings
from gradegate.app.core.logging import get_logger, setup_logging
from gradegate.app.exceptions import (
    GradeGateException,
    InvalidRegradeTokenError,
    QueueFullError,
    RateLimitExceededError,
    RegradeNotAllowedError,
)
from gradegate.app.middleware.rate_limit import DEFAULT_RATE_LIMIT, FixedWindowRateLimiter, RateLimitMiddleware
from gradegate.app.middleware.request_id import RequestIdMiddleware, get_request_id
from gradegate.app.services.grader import Grader, MockGrader
from gradegate.app.services.grading_queue import GradingQueue


def create_app(
    app_settings: Optional[Settings] = None,
    grader: Optional[Grader] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    The grading queue, rate limiter and grader are created here, once per
    application, and attached to ``app.state`` for handlers to use.

    Args:
        app_settings: Settings to use (defaults to the environment settings)
        grader: Grading backend (defaults to MockGrader)

    Returns:
        Configured FastAPI application instance
    """
    app_settings = app_settings or default_settings

    setup_logging()
    logger = get_logger(__name__)

    grading_queue = GradingQueue.from_settings(app_settings)
    rate_limiter = FixedWindowRateLimiter(
        cleanup_interval_ms=app_settings.rate_limit_cleanup_interval_ms
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Log startup configuration and drain running jobs on shutdown."""
        if not app_settings.regrade_token_secret:
            logger.warning("REGRADE_TOKEN_SECRET is not set; regrade tokens are disabled")
        logger.info(
            "Application startup complete",
            extra={
                "queue": grading_queue.get_stats(),
                "debug_mode": app_settings.debug,
            },
        )
        yield
        try:
            await grading_queue.join(timeout=app_settings.grading_queue_shutdown_timeout)
        except TimeoutError:
            logger.warning(
                "Grading jobs still running at shutdown",
                extra={"queue": grading_queue.get_stats()},
            )
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="GradeGate",
        description="Rate limiting, back-pressure and regrade tokens for an AI grading endpoint",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.settings = app_settings
    app.state.grading_queue = grading_queue
    app.state.rate_limiter = rate_limiter
    app.state.grader = grader or MockGrader.from_settings(app_settings)

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(
        RateLimitMiddleware,
        limiter=rate_limiter,
        policy=DEFAULT_RATE_LIMIT,
    )
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
        max_age=600,
    )

    app.include_router(grade_router)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Health check with grading queue status."""
        stats = grading_queue.get_stats()
        status = "busy" if stats["queued"] >= stats["max_queue_length"] else "ok"
        return {
            "status": status,
            "components": {
                "grading_queue": stats,
                "regrade_tokens": {"enabled": bool(app_settings.regrade_token_secret)},
            },
        }

    def _error_body(request: Request, exc: GradeGateException, **extra: Any) -> dict[str, Any]:
        body = {
            "error": exc.error_code,
            "message": exc.message,
            "request_id": get_request_id(request),
        }
        body.update(extra)
        return body

    @app.exception_handler(RateLimitExceededError)
    async def rate_limit_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
        """Handle RateLimitExceededError and return a retryable HTTP 429."""
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(request, exc, retry_after=exc.retry_after, policy=exc.policy),
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(QueueFullError)
    async def queue_full_handler(request: Request, exc: QueueFullError) -> JSONResponse:
        """Handle QueueFullError and return a retryable HTTP 503."""
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(request, exc, retry_after=exc.retry_after),
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(InvalidRegradeTokenError)
    async def invalid_token_handler(request: Request, exc: InvalidRegradeTokenError) -> JSONResponse:
        """Handle InvalidRegradeTokenError; the client must restart the flow."""
        logger.info(
            "Rejected regrade token",
            extra={"request_id": get_request_id(request), "reason": exc.reason},
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(request, exc, reason=exc.reason),
        )

    @app.exception_handler(RegradeNotAllowedError)
    async def regrade_not_allowed_handler(request: Request, exc: RegradeNotAllowedError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(request, exc, reason=exc.reason),
        )

    @app.exception_handler(GradeGateException)
    async def gradegate_exception_handler(request: Request, exc: GradeGateException) -> JSONResponse:
        """Handle remaining GradeGate exceptions (e.g. grading failures)."""
        logger.warning(
            f"{type(exc).__name__}: {exc.message}",
            extra={"request_id": get_request_id(request)},
        )
        return JSONResponse(status_code=exc.status_code, content=_error_body(request, exc))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        Never returns a traceback to the client. Debug mode returns the
        exception message, production a generic one.
        """
        request_id = get_request_id(request)
        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={
                "request_id": request_id,
                "exception_type": type(exc).__name__,
            },
        )

        if app_settings.debug:
            return JSONResponse(
                status_code=500,
                content={
                    "error": "internal_error",
                    "message": str(exc),
                    "exception_type": type(exc).__name__,
                    "request_id": request_id,
                },
            )

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_error",
                "message": "Internal server error",
                "request_id": request_id,
            },
        )

    return app


# Create the application instance
app = create_app()
