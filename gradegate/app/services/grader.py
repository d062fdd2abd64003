"""Grader backends.

The real grader calls a hosted generative model, which is outside this
service. Handlers only depend on the Grader protocol; MockGrader simulates a
model call for development, load testing and tests.
"""

import asyncio
import hashlib
import random
from typing import Any, Dict, Optional, Protocol

from gradegate.app.core.config import Settings
from gradegate.app.exceptions import GradingError


class Grader(Protocol):
    """Anything that can grade an answer."""

    async def grade(self, label: str, answer: str) -> Dict[str, Any]:
        """Grade ``answer`` for the question identified by ``label``."""
        ...


class MockGrader:
    """Grader that returns simulated results without external calls.

    Features:
    - Simulates response delays (configurable)
    - Returns consistent scores for identical inputs
    - Configurable failure rate for testing error handling
    """

    def __init__(
        self,
        min_delay: float = 0.0,
        max_delay: float = 0.0,
        failure_rate: float = 0.0,
        rng: Optional[random.Random] = None,
    ):
        """Initialize the mock grader.

        Args:
            min_delay: Minimum response delay in seconds
            max_delay: Maximum response delay in seconds
            failure_rate: Probability of raising GradingError (0-1)
            rng: Random source, injectable for deterministic tests
        """
        if max_delay < min_delay:
            raise ValueError("max_delay must not be smaller than min_delay")
        if not 0.0 <= failure_rate <= 1.0:
            raise ValueError("failure_rate must be between 0 and 1")
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.failure_rate = failure_rate
        self._rng = rng or random.Random()
        self.calls = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> "MockGrader":
        return cls(
            min_delay=settings.mock_grader_min_delay,
            max_delay=settings.mock_grader_max_delay,
        )

    async def grade(self, label: str, answer: str) -> Dict[str, Any]:
        self.calls += 1

        delay = self._rng.uniform(self.min_delay, self.max_delay)
        if delay > 0:
            await asyncio.sleep(delay)

        if self.failure_rate and self._rng.random() < self.failure_rate:
            raise GradingError("Simulated grading failure")

        digest = hashlib.sha256(f"{label}\n{answer}".encode("utf-8")).digest()
        score = digest[0] % 101
        return {
            "label": label,
            "score": score,
            "max_score": 100,
            "feedback": "Mock grading result" if score >= 60 else "Mock grading result: review this answer",
        }
