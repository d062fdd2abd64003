"""Tests for the mock grading backend."""

import random

import pytest

from gradegate.app.core.config import Settings
from gradegate.app.exceptions import GradingError
from gradegate.app.services.grader import MockGrader


class TestMockGrader:

    @pytest.mark.asyncio
    async def test_result_shape(self):
        result = await MockGrader().grade("Q1", "answer")

        assert result["label"] == "Q1"
        assert result["max_score"] == 100
        assert 0 <= result["score"] <= 100
        assert result["feedback"]

    @pytest.mark.asyncio
    async def test_same_input_same_score(self):
        grader = MockGrader()
        first = await grader.grade("Q1", "answer")
        second = await grader.grade("Q1", "answer")

        assert first == second
        assert grader.calls == 2

    @pytest.mark.asyncio
    async def test_failure_rate(self):
        grader = MockGrader(failure_rate=1.0)
        with pytest.raises(GradingError):
            await grader.grade("Q1", "answer")

    @pytest.mark.asyncio
    async def test_partial_failure_rate_is_seeded(self):
        outcomes = []
        for seed in (1, 1):
            grader = MockGrader(failure_rate=0.5, rng=random.Random(seed))
            run = []
            for _ in range(10):
                try:
                    await grader.grade("Q1", "answer")
                    run.append(True)
                except GradingError:
                    run.append(False)
            outcomes.append(run)

        assert outcomes[0] == outcomes[1]

    @pytest.mark.parametrize("kwargs", [
        {"min_delay": 1.0, "max_delay": 0.5},
        {"failure_rate": -0.1},
        {"failure_rate": 1.5},
    ])
    def test_rejects_invalid_arguments(self, kwargs):
        with pytest.raises(ValueError):
            MockGrader(**kwargs)

    def test_from_settings(self):
        settings = Settings(_env_file=None, mock_grader_min_delay=0.1, mock_grader_max_delay=0.2)
        grader = MockGrader.from_settings(settings)
        assert grader.min_delay == 0.1
        assert grader.max_delay == 0.2
