"""Signed regrade tokens.

A regrade token is a compact HS256 JWT (``header.payload.signature``) issued
and checked with PyJWT. It lets a client re-grade the same answer a bounded
number of times without server-side storage. Payload fields are readable by the
holder; only integrity and authenticity are guaranteed.

There is no revocation: expiry is the only invalidation mechanism, and the
``remaining`` counter is advisory. Callers enforce usage themselves.
"""

import json
import math
import secrets
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

import jwt

from gradegate.app.core.logging import get_logger

logger = get_logger(__name__)

TOKEN_VERSION = 1
TOKEN_ALGORITHM = "HS256"

# Verifies the signature only; claims are checked by _parse_payload
_jws = jwt.PyJWS()


class TokenRejectReason(str, Enum):
    """Reasons a regrade token can be rejected."""
    INVALID_FORMAT = "invalid_format"
    BAD_SIGNATURE = "bad_signature"
    EXPIRED = "expired"
    INVALID_PAYLOAD = "invalid_payload"


@dataclass(frozen=True)
class RegradeTokenPayload:
    """Claims carried by a version 1 regrade token."""
    v: int
    sub: str
    label: str
    fp: str
    remaining: int
    iat: int
    exp: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TokenVerification:
    """Outcome of verify_regrade_token.

    Exactly one of ``payload`` (when ok) or ``reason`` (when not ok) is set.
    """
    ok: bool
    payload: Optional[RegradeTokenPayload] = None
    reason: Optional[TokenRejectReason] = None

    @classmethod
    def accept(cls, payload: RegradeTokenPayload) -> "TokenVerification":
        return cls(ok=True, payload=payload)

    @classmethod
    def reject(cls, reason: TokenRejectReason) -> "TokenVerification":
        return cls(ok=False, reason=reason)


def _require_secret(secret: str) -> None:
    if not isinstance(secret, str) or not secret:
        raise ValueError("A non-empty signing secret is required")


def _epoch_seconds(now: Optional[datetime]) -> int:
    if now is None:
        now = datetime.now(timezone.utc)
    return math.floor(now.timestamp())


def create_regrade_token(
    secret: str,
    user_id: str,
    label: str,
    fingerprint: str,
    remaining: float,
    ttl_seconds: float,
    now: Optional[datetime] = None,
) -> str:
    """Issue a signed regrade token.

    Args:
        secret: HMAC secret held by the server
        user_id: Subject the token is issued to
        label: Application label (e.g. question label) the token is bound to
        fingerprint: Client fingerprint the token is bound to
        remaining: Remaining regrade uses, floored and clamped at 0
        ttl_seconds: Lifetime in seconds, floored and clamped at 1
        now: Issue time (defaults to the current UTC time)

    Returns:
        The token string ``header.payload.signature``

    Raises:
        ValueError: If ``secret`` is empty
    """
    _require_secret(secret)

    iat = _epoch_seconds(now)
    exp = iat + max(1, math.floor(ttl_seconds))

    payload = {
        "v": TOKEN_VERSION,
        "sub": user_id,
        "label": label,
        "fp": fingerprint,
        "remaining": max(0, math.floor(remaining)),
        "iat": iat,
        "exp": exp,
    }

    return jwt.encode(payload, secret, algorithm=TOKEN_ALGORITHM)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _parse_payload(raw: bytes) -> Optional[RegradeTokenPayload]:
    try:
        data = json.loads(raw.decode("utf-8"))
    except ValueError:
        return None

    if not isinstance(data, dict):
        return None
    if not _is_int(data.get("v")) or data["v"] != TOKEN_VERSION:
        return None
    if not all(isinstance(data.get(k), str) for k in ("sub", "label", "fp")):
        return None
    if not all(_is_int(data.get(k)) for k in ("remaining", "iat", "exp")):
        return None

    return RegradeTokenPayload(
        v=data["v"],
        sub=data["sub"],
        label=data["label"],
        fp=data["fp"],
        remaining=data["remaining"],
        iat=data["iat"],
        exp=data["exp"],
    )


def verify_regrade_token(
    secret: str,
    token: str,
    now: Optional[datetime] = None,
) -> TokenVerification:
    """Verify a regrade token.

    The signature is checked before the payload is parsed, so unauthenticated
    payloads are never read. Any token PyJWT refuses at that stage (corrupt
    header or signature segment, disallowed algorithm, wrong signature) is
    reported as ``bad_signature``. Expiry is checked here rather than by
    PyJWT so that ``now`` can be injected.

    Args:
        secret: HMAC secret the token was issued with
        token: Token string to verify
        now: Verification time (defaults to the current UTC time)

    Returns:
        TokenVerification with the payload, or the rejection reason

    Raises:
        ValueError: If ``secret`` is empty
    """
    _require_secret(secret)

    parts = token.split(".") if isinstance(token, str) else []
    if len(parts) != 3 or not all(parts):
        return _rejected(TokenRejectReason.INVALID_FORMAT)

    try:
        raw_payload = _jws.decode(token, secret, algorithms=[TOKEN_ALGORITHM])
    except jwt.InvalidTokenError:
        return _rejected(TokenRejectReason.BAD_SIGNATURE)

    payload = _parse_payload(raw_payload)
    if payload is None:
        return _rejected(TokenRejectReason.INVALID_PAYLOAD)

    if _epoch_seconds(now) >= payload.exp:
        return _rejected(TokenRejectReason.EXPIRED)

    return TokenVerification.accept(payload)


def _rejected(reason: TokenRejectReason) -> TokenVerification:
    logger.info("Regrade token rejected", extra={"reason": reason.value})
    return TokenVerification.reject(reason)


def generate_token_secret(nbytes: int = 32) -> str:
    """Generate a new random secret for REGRADE_TOKEN_SECRET.

    Run: python -c "from gradegate.app.core.security import generate_token_secret; print(generate_token_secret())"
    """
    return secrets.token_urlsafe(nbytes)
