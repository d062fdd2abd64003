"""Structured logging configuration for GradeGate.

This module provides a structured logging setup using Python's standard
logging module with JSON formatting for production environments. Outside
of debug mode, a masking filter keeps secrets and tokens out of the logs.
"""

import json
import logging
import logging.config
import re
import sys
import traceback
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from gradegate.app.core.config import settings

MASK = "[MASKED]"

# Keys whose values never reach a log sink outside debug mode
SENSITIVE_KEY_PATTERN = re.compile(
    r"api[_-]?key|password|secret|token|authorization|bearer|credential",
    re.IGNORECASE,
)

# Query parameters carrying credentials inside free-form strings
SENSITIVE_QUERY_PATTERN = re.compile(
    r"([?&](?:token|key|secret|password)=)[^&\s]*",
    re.IGNORECASE,
)

_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}

# Bound by RequestIdMiddleware for the lifetime of a request
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def mask_sensitive_data(value: Any, depth: int = 0) -> Any:
    """Return a copy of ``value`` with sensitive keys and query params masked."""
    if depth > 10:
        return "[Max depth reached]"
    if value is None:
        return value
    if isinstance(value, str):
        return SENSITIVE_QUERY_PATTERN.sub(r"\1" + MASK, value)
    if isinstance(value, (list, tuple)):
        return [mask_sensitive_data(item, depth + 1) for item in value]
    if isinstance(value, dict):
        return {
            key: MASK
            if SENSITIVE_KEY_PATTERN.search(str(key))
            else mask_sensitive_data(item, depth + 1)
            for key, item in value.items()
        }
    return value


class JSONFormatter(logging.Formatter):
    """Render each record as a single-line JSON object.

    Known context fields are lifted to the top level, any other ``extra``
    attributes are grouped under ``"extra"``.
    """

    CONTEXT_FIELDS = [
        "request_id",      # Request ID from X-Request-ID header
        "user_id",         # Grading user identifier
        "client_key",      # Hashed client key used for rate limiting
        "queue_position",  # Position in the grading queue at submission
        "path",            # Request path
        "method",          # HTTP method
        "status_code",     # HTTP response status
    ]

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "source": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        entry.update(
            (name, getattr(record, name))
            for name in self.CONTEXT_FIELDS
            if getattr(record, name, None) is not None
        )

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and key not in self.CONTEXT_FIELDS
        }
        if extra:
            entry["extra"] = extra

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = traceback.format_exception(*record.exc_info)

        return json.dumps(entry, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Make every context field present on the record.

    ``request_id`` falls back to the ID bound by RequestIdMiddleware, the
    other fields to None, so format strings referencing them never fail.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = request_id_var.get()
        for name in JSONFormatter.CONTEXT_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, None)
        return True


class SensitiveDataFilter(logging.Filter):
    """Logging filter that masks credentials before a record is emitted.

    Masks values of ``extra`` attributes whose names look like credentials,
    and credential query parameters inside the rendered message.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = mask_sensitive_data(record.getMessage())
        record.args = None
        for key in list(record.__dict__):
            if key in _RESERVED_ATTRS:
                continue
            if SENSITIVE_KEY_PATTERN.search(key):
                setattr(record, key, MASK)
            else:
                setattr(record, key, mask_sensitive_data(record.__dict__[key]))
        return True


def get_logging_config() -> Dict[str, Any]:
    """Build the dictConfig for the current settings.

    ``log_format`` picks the console formatter (text, structured or json).
    Credential masking is attached to both handlers unless ``debug`` is on.
    """
    log_format = getattr(settings, "log_format", "text").lower()
    log_level = getattr(settings, "log_level", "INFO").upper()
    debug = getattr(settings, "debug", False)

    formatters: Dict[str, Any] = {
        "standard": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        },
        "structured": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s - request_id=%(request_id)s - user_id=%(user_id)s"
        },
    }

    if log_format == "json":
        formatters["json"] = {
            "()": "gradegate.app.core.logging.JSONFormatter",
        }
        default_formatter = "json"
    else:
        default_formatter = "structured" if log_format == "structured" else "standard"

    handler_filters = ["context"] if debug else ["context", "sensitive"]

    def stream_handler(level: str, stream: Any) -> Dict[str, Any]:
        return {
            "class": "logging.StreamHandler",
            "level": level,
            "formatter": default_formatter,
            "stream": stream,
            "filters": handler_filters,
        }

    handlers = {
        "console": stream_handler(log_level, sys.stdout),
        "error_console": stream_handler("ERROR", sys.stderr),
    }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": {
            "context": {
                "()": "gradegate.app.core.logging.ContextFilter",
            },
            "sensitive": {
                "()": "gradegate.app.core.logging.SensitiveDataFilter",
            },
        },
        "handlers": handlers,
        "loggers": {
            "gradegate": {
                "level": log_level,
                "handlers": ["console", "error_console"],
                "propagate": False,
            },
            "uvicorn": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False,
            },
        },
        "root": {
            "level": log_level,
            "handlers": ["console"],
        },
    }


def setup_logging() -> None:
    """Configure logging for the application."""
    logging.config.dictConfig(get_logging_config())

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str = "gradegate") -> logging.Logger:
    """Return a logger under the ``gradegate`` hierarchy."""
    return logging.getLogger(name)


def get_log_context(
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
    client_key: Optional[str] = None,
    **extra
) -> Dict[str, Any]:
    """Build an ``extra`` mapping for a log call, dropping unset fields.

    Example:
        >>> logger.info(
        ...     "Grading request accepted",
        ...     extra=get_log_context(request_id="abc123", user_id="u1")
        ... )
    """
    context = dict(request_id=request_id, user_id=user_id, client_key=client_key, **extra)
    return {key: value for key, value in context.items() if value is not None}
