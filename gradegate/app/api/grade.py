"""Grading API endpoints.

The grading endpoint composes the three protection layers in order:
per-user rate limits, regrade token verification, then the bounded grading
queue. A fresh regrade token is returned with every successful result.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field, field_validator

from gradegate.app.core.config import Settings
from gradegate.app.core.logging import get_log_context, get_logger
from gradegate.app.core.security import (
    RegradeTokenPayload,
    create_regrade_token,
    verify_regrade_token,
)
from gradegate.app.exceptions import InvalidRegradeTokenError, RegradeNotAllowedError
from gradegate.app.middleware.rate_limit import (
    GRADING_BURST_RATE_LIMIT,
    GRADING_RATE_LIMIT,
    FixedWindowRateLimiter,
    enforce_rate_limit,
)
from gradegate.app.middleware.request_id import get_request_id
from gradegate.app.services.grader import Grader
from gradegate.app.services.grading_queue import GradingQueue

router = APIRouter(prefix="/api/grade", tags=["grading"])
logger = get_logger(__name__)


class GradeRequest(BaseModel):
    """Request model for a grading submission."""
    user_id: str = Field(..., min_length=1, max_length=128)
    label: str = Field(..., min_length=1, max_length=200)
    fingerprint: str = Field(..., min_length=1, max_length=256)
    answer: str = Field(..., min_length=1, max_length=20000)
    regrade_token: Optional[str] = Field(default=None, max_length=4096)

    @field_validator("user_id", "label", "fingerprint")
    @classmethod
    def strip_identifiers(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("value cannot be blank")
        return v


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_grading_queue(request: Request) -> GradingQueue:
    return request.app.state.grading_queue


def get_rate_limiter(request: Request) -> FixedWindowRateLimiter:
    return request.app.state.rate_limiter


def get_grader(request: Request) -> Grader:
    return request.app.state.grader


def authorize_regrade(
    body: GradeRequest,
    secret: str,
) -> RegradeTokenPayload:
    """Verify the regrade token and check it covers this submission.

    Raises:
        InvalidRegradeTokenError: If the token fails verification
        RegradeNotAllowedError: If the token belongs to another user, label or
            device, or has no remaining uses
    """
    if not secret:
        raise RegradeNotAllowedError("regrade tokens are disabled")

    verification = verify_regrade_token(secret, body.regrade_token or "")
    if not verification.ok:
        raise InvalidRegradeTokenError(verification.reason.value)

    payload = verification.payload
    if payload.sub != body.user_id:
        raise RegradeNotAllowedError("token was issued to another user")
    if payload.label != body.label:
        raise RegradeNotAllowedError("token was issued for another question")
    if payload.fp != body.fingerprint:
        raise RegradeNotAllowedError("token was issued to another device")
    if payload.remaining <= 0:
        raise RegradeNotAllowedError("no regrades remaining")
    return payload


@router.post("")
async def grade(
    body: GradeRequest,
    request: Request,
    app_settings: Settings = Depends(get_app_settings),
    queue: GradingQueue = Depends(get_grading_queue),
    limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
    grader: Grader = Depends(get_grader),
) -> Dict[str, Any]:
    """Grade an answer.

    1. Applies the grading and burst rate limits to the user
    2. Verifies the regrade token, if one is supplied
    3. Runs the grading job through the bounded queue
    4. Returns the result with a fresh regrade token
    """
    request_id = get_request_id(request)

    enforce_rate_limit(limiter, body.user_id, GRADING_RATE_LIMIT)
    enforce_rate_limit(limiter, f"{body.user_id}:burst", GRADING_BURST_RATE_LIMIT)

    secret = app_settings.regrade_token_secret
    remaining_uses = app_settings.regrade_max_uses
    if body.regrade_token is not None:
        payload = authorize_regrade(body, secret)
        remaining_uses = payload.remaining - 1

    handle = queue.submit(lambda: grader.grade(body.label, body.answer))
    logger.info(
        "Grading job accepted",
        extra=get_log_context(
            request_id=request_id,
            user_id=body.user_id,
            queue_position=handle.position,
        ),
    )

    result = await handle

    regrade_token = None
    if secret:
        regrade_token = create_regrade_token(
            secret=secret,
            user_id=body.user_id,
            label=body.label,
            fingerprint=body.fingerprint,
            remaining=remaining_uses,
            ttl_seconds=app_settings.regrade_token_ttl_seconds,
        )

    return {
        "status": "success",
        "result": result,
        "queue_position": handle.position,
        "regrade_token": regrade_token,
        "regrades_remaining": remaining_uses if secret else 0,
    }


@router.get("/queue")
async def queue_state(queue: GradingQueue = Depends(get_grading_queue)) -> Dict[str, Any]:
    """Current grading queue state."""
    snapshot = queue.snapshot()
    return {
        "active_count": snapshot.active_count,
        "queued_count": snapshot.queued_count,
        "max_concurrency": snapshot.max_concurrency,
        "max_queue_length": snapshot.max_queue_length,
    }
