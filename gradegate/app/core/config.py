import json
import math
import re
from typing import Annotated, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_GRADING_QUEUE_CONCURRENCY = 2
DEFAULT_GRADING_QUEUE_MAX_LENGTH = 3


def _parse_cors_origins(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, list):
        items = [str(v).strip() for v in raw]
        return [v for v in items if v]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []
    if raw == "*":
        return ["*"]

    # Prefer JSON, but tolerate comma or space separated values.
    if raw.startswith(("[", '"')):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items = [str(v).strip() for v in parsed]
            return [v for v in items if v]
        if isinstance(parsed, str):
            raw = parsed.strip()

    origins: list[str] = []
    for part in re.split(r"[,\s]+", raw):
        if not part:
            continue
        if part == "*":
            return ["*"]
        if part not in origins:
            origins.append(part)
    return origins


def _positive_int_or_default(raw: Any, default: int) -> int:
    """Coerce an environment value to a positive int, falling back to ``default``.

    Whole numbers written as floats ("4.0") are accepted; fractions are not.
    """
    if raw is None or isinstance(raw, bool):
        return default
    try:
        value = float(str(raw).strip())
    except ValueError:
        return default
    if not math.isfinite(value) or value < 1 or not value.is_integer():
        return default
    return int(value)


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - enables detailed error responses and unmasked logs
    debug: bool = False

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Grading queue settings (back-pressure for the grading endpoint)
    grading_queue_concurrency: int = DEFAULT_GRADING_QUEUE_CONCURRENCY
    grading_queue_max_length: int = DEFAULT_GRADING_QUEUE_MAX_LENGTH
    # Seconds to wait for running and pending jobs on shutdown
    grading_queue_shutdown_timeout: float = 30.0

    # Rate limiting settings
    rate_limit_cleanup_interval_ms: int = 60 * 1000
    trust_forwarded_for: bool = True

    # Regrade token settings. The secret has no default on purpose:
    # when it is empty, regrade tokens are neither issued nor accepted.
    regrade_token_secret: str = Field(default="", repr=False)
    regrade_token_ttl_seconds: int = 600
    regrade_max_uses: int = 3

    # Mock grader settings
    mock_grader_min_delay: float = 0.0
    mock_grader_max_delay: float = 0.0

    # CORS settings
    cors_origins: Annotated[list[str], NoDecode] = ["*"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def decode_cors_origins(cls, v: Any) -> list[str]:
        return _parse_cors_origins(v)

    @field_validator("grading_queue_concurrency", mode="before")
    @classmethod
    def fallback_queue_concurrency(cls, v: Any) -> int:
        """Fall back to the default concurrency for invalid values."""
        return _positive_int_or_default(v, DEFAULT_GRADING_QUEUE_CONCURRENCY)

    @field_validator("grading_queue_max_length", mode="before")
    @classmethod
    def fallback_queue_max_length(cls, v: Any) -> int:
        """Fall back to the default backlog length for invalid values."""
        return _positive_int_or_default(v, DEFAULT_GRADING_QUEUE_MAX_LENGTH)

    @field_validator(
        "rate_limit_cleanup_interval_ms",
        "regrade_token_ttl_seconds",
        "regrade_max_uses",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate values are positive."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("mock_grader_min_delay", "mock_grader_max_delay", "grading_queue_shutdown_timeout")
    @classmethod
    def validate_delay(cls, v: float) -> float:
        if v < 0:
            raise ValueError("delay must not be negative")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
