"""Tests for the grading API and application wiring."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from gradegate.app.core.config import Settings
from gradegate.app.core.security import create_regrade_token, verify_regrade_token
from gradegate.app.exceptions import QueueFullError
from gradegate.app.main import create_app
from gradegate.app.services.grader import MockGrader


def _submission(**overrides):
    body = {
        "user_id": "student-1",
        "label": "Q1",
        "fingerprint": "device-1",
        "answer": "The mitochondria is the powerhouse of the cell.",
    }
    body.update(overrides)
    return body


class _FullQueue:
    """Queue stand-in whose backlog is always at capacity."""

    def submit(self, job):
        raise QueueFullError(retry_after=7)


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["components"]["grading_queue"]["max_concurrency"] == 2
        assert data["components"]["grading_queue"]["max_queue_length"] == 3
        assert data["components"]["regrade_tokens"]["enabled"] is True

    def test_health_is_not_rate_limited(self, client):
        for _ in range(15):
            assert client.get("/health").status_code == 200


class TestGrade:
    """POST /api/grade."""

    def test_success_returns_result_and_token(self, client, secret):
        response = client.post("/api/grade", json=_submission())

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "success"
        assert data["result"]["label"] == "Q1"
        assert 0 <= data["result"]["score"] <= 100
        assert data["queue_position"] == 1
        assert data["regrades_remaining"] == 3

        verification = verify_regrade_token(secret, data["regrade_token"])
        assert verification.ok is True
        assert verification.payload.sub == "student-1"
        assert verification.payload.label == "Q1"
        assert verification.payload.fp == "device-1"
        assert verification.payload.remaining == 3

    def test_rate_limit_headers_on_success(self, client):
        response = client.post("/api/grade", json=_submission())
        assert response.headers["X-RateLimit-Limit"] == "10"
        assert response.headers["X-RateLimit-Remaining"] == "9"

    def test_regrade_consumes_one_use(self, client, secret):
        first = client.post("/api/grade", json=_submission()).json()
        second = client.post(
            "/api/grade",
            json=_submission(regrade_token=first["regrade_token"]),
        )

        assert second.status_code == 200
        data = second.json()
        assert data["regrades_remaining"] == 2
        assert verify_regrade_token(secret, data["regrade_token"]).payload.remaining == 2

    def test_burst_limit(self, client):
        assert client.post("/api/grade", json=_submission()).status_code == 200
        assert client.post("/api/grade", json=_submission()).status_code == 200

        response = client.post("/api/grade", json=_submission())

        assert response.status_code == 429
        data = response.json()
        assert data["error"] == "rate_limit_exceeded"
        assert data["policy"] == "grading_burst"
        assert 1 <= data["retry_after"] <= 10
        assert response.headers["Retry-After"] == str(data["retry_after"])

    def test_burst_limit_is_per_user(self, client):
        for _ in range(2):
            client.post("/api/grade", json=_submission())

        response = client.post("/api/grade", json=_submission(user_id="student-2"))
        assert response.status_code == 200

    def test_garbage_token_is_rejected(self, client):
        response = client.post("/api/grade", json=_submission(regrade_token="garbage"))

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "invalid_regrade_token"
        assert data["reason"] == "invalid_format"

    def test_token_signed_with_other_secret(self, client):
        token = create_regrade_token("other-secret", "student-1", "Q1", "device-1", 3, 600)
        response = client.post("/api/grade", json=_submission(regrade_token=token))

        assert response.status_code == 400
        assert response.json()["reason"] == "bad_signature"

    def test_expired_token(self, client, secret):
        issued = datetime.now(timezone.utc) - timedelta(hours=1)
        token = create_regrade_token(secret, "student-1", "Q1", "device-1", 3, 60, now=issued)
        response = client.post("/api/grade", json=_submission(regrade_token=token))

        assert response.status_code == 400
        assert response.json()["reason"] == "expired"

    @pytest.mark.parametrize("claims", [
        {"user_id": "student-2"},
        {"label": "Q2"},
        {"fingerprint": "device-2"},
    ])
    def test_token_for_another_submission(self, client, secret, claims):
        issue = {"user_id": "student-1", "label": "Q1", "fingerprint": "device-1"}
        issue.update(claims)
        token = create_regrade_token(secret, remaining=3, ttl_seconds=600, **issue)

        response = client.post("/api/grade", json=_submission(regrade_token=token))

        assert response.status_code == 403
        assert response.json()["error"] == "regrade_not_allowed"

    def test_exhausted_token(self, client, secret):
        token = create_regrade_token(secret, "student-1", "Q1", "device-1", 0, 600)
        response = client.post("/api/grade", json=_submission(regrade_token=token))

        assert response.status_code == 403
        assert response.json()["reason"] == "no regrades remaining"

    def test_queue_full(self, app, client):
        app.state.grading_queue = _FullQueue()

        response = client.post("/api/grade", json=_submission())

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "7"
        data = response.json()
        assert data["error"] == "queue_full"
        assert data["retry_after"] == 7

    def test_grading_failure(self, test_settings):
        app = create_app(test_settings, grader=MockGrader(failure_rate=1.0))
        with TestClient(app) as client:
            response = client.post("/api/grade", json=_submission())

        assert response.status_code == 502
        assert response.json()["error"] == "grading_failed"

    @pytest.mark.parametrize("field,value", [
        ("user_id", "   "),
        ("label", ""),
        ("answer", ""),
    ])
    def test_invalid_body(self, client, field, value):
        response = client.post("/api/grade", json=_submission(**{field: value}))
        assert response.status_code == 422

    def test_missing_field(self, client):
        body = _submission()
        del body["fingerprint"]
        assert client.post("/api/grade", json=body).status_code == 422


class TestRegradeTokensDisabled:
    """Behaviour when no signing secret is configured."""

    @pytest.fixture
    def client(self):
        app = create_app(Settings(_env_file=None, regrade_token_secret=""), grader=MockGrader())
        with TestClient(app) as test_client:
            yield test_client

    def test_no_token_issued(self, client):
        data = client.post("/api/grade", json=_submission()).json()
        assert data["regrade_token"] is None
        assert data["regrades_remaining"] == 0

    def test_supplied_token_is_refused(self, client):
        token = create_regrade_token("whatever", "student-1", "Q1", "device-1", 3, 600)
        response = client.post("/api/grade", json=_submission(regrade_token=token))

        assert response.status_code == 403
        assert response.json()["reason"] == "regrade tokens are disabled"

    def test_health_reports_disabled(self, client):
        data = client.get("/health").json()
        assert data["components"]["regrade_tokens"]["enabled"] is False


class TestQueueEndpoint:

    def test_queue_state(self, client):
        response = client.get("/api/grade/queue")

        assert response.status_code == 200
        assert response.json() == {
            "active_count": 0,
            "queued_count": 0,
            "max_concurrency": 2,
            "max_queue_length": 3,
        }


class TestMiddleware:
    """Request IDs and the blanket per-client limit."""

    def test_request_id_is_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "abc-123"})
        assert response.headers["X-Request-ID"] == "abc-123"

    def test_malformed_request_id_is_replaced(self, client):
        response = client.get("/health", headers={"X-Request-ID": "bad id with spaces"})
        assert response.headers["X-Request-ID"] != "bad id with spaces"
        assert len(response.headers["X-Request-ID"]) == 36

    def test_error_body_carries_request_id(self, client):
        response = client.post(
            "/api/grade",
            json=_submission(regrade_token="garbage"),
            headers={"X-Request-ID": "req-42"},
        )
        assert response.json()["request_id"] == "req-42"

    def test_blanket_limit(self, client):
        for _ in range(10):
            assert client.get("/api/grade/queue").status_code == 200

        response = client.get("/api/grade/queue")

        assert response.status_code == 429
        assert response.json()["error"] == "rate_limit_exceeded"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert "Retry-After" in response.headers


class TestShutdown:
    """Draining the grading queue when the application stops."""

    @pytest.mark.asyncio
    async def test_hung_job_does_not_fail_shutdown(self):
        app = create_app(
            Settings(_env_file=None, grading_queue_shutdown_timeout=0.05),
            grader=MockGrader(),
        )
        queue = app.state.grading_queue
        gate = asyncio.Event()

        async with app.router.lifespan_context(app):
            handle = queue.submit(gate.wait)

        assert queue.snapshot().active_count == 1

        gate.set()
        await handle
        assert queue.snapshot().active_count == 0

    @pytest.mark.asyncio
    async def test_finished_jobs_drain_on_shutdown(self):
        app = create_app(Settings(_env_file=None), grader=MockGrader())
        queue = app.state.grading_queue

        async with app.router.lifespan_context(app):
            handle = queue.submit(lambda: asyncio.sleep(0.01, result="graded"))

        assert handle.done()
        assert await handle == "graded"
