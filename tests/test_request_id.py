"""Tests for request ID assignment."""

import logging

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from gradegate.app.core.logging import ContextFilter, request_id_var
from gradegate.app.middleware.request_id import RequestIdMiddleware, get_request_id, resolve_request_id


@pytest.fixture
def client():
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)

    @app.get("/echo")
    async def echo(request: Request):
        record = logging.LogRecord("test", logging.INFO, "test.py", 1, "msg", (), None)
        ContextFilter().filter(record)
        return {"state": get_request_id(request), "logged": record.request_id}

    return TestClient(app)


class TestResolveRequestId:

    @pytest.mark.parametrize("incoming", ["abc-123", "A.b_c-9", "x" * 128])
    def test_keeps_well_formed_ids(self, incoming):
        assert resolve_request_id(incoming) == incoming

    @pytest.mark.parametrize("incoming", [None, "", "has space", "x" * 129, "semi;colon", "new\nline"])
    def test_replaces_malformed_ids(self, incoming):
        resolved = resolve_request_id(incoming)
        assert resolved != incoming
        assert len(resolved) == 36


class TestRequestIdMiddleware:

    def test_id_is_available_to_handlers_and_logs(self, client):
        response = client.get("/echo", headers={"X-Request-ID": "req-7"})

        assert response.headers["X-Request-ID"] == "req-7"
        assert response.json() == {"state": "req-7", "logged": "req-7"}

    def test_generated_id_is_echoed(self, client):
        response = client.get("/echo")

        generated = response.headers["X-Request-ID"]
        assert response.json()["state"] == generated

    def test_binding_is_released_after_request(self, client):
        client.get("/echo", headers={"X-Request-ID": "req-8"})
        assert request_id_var.get() is None
