"""Core utilities for GradeGate."""

from gradegate.app.core.config import Settings, settings
from gradegate.app.core.logging import get_logger, setup_logging

__all__ = [
    "Settings",
    "settings",
    "get_logger",
    "setup_logging",
]
