"""Shared fixtures for GradeGate tests."""

import pytest
from fastapi.testclient import TestClient

from gradegate.app.core.config import Settings
from gradegate.app.main import create_app
from gradegate.app.services.grader import MockGrader

TEST_SECRET = "test-regrade-secret"


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, now: int = 0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        regrade_token_secret=TEST_SECRET,
        grading_queue_concurrency=2,
        grading_queue_max_length=3,
    )


@pytest.fixture
def app(test_settings):
    return create_app(test_settings, grader=MockGrader())


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def secret(test_settings):
    return test_settings.regrade_token_secret
