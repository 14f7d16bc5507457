"""
Error Envelope Tests

Tests that every failure path produces the same JSON body:
    {error, message, status, details, timestamp, request_id}

Covers AppError, HTTPException (including routing 404/405),
request validation (400 VALIDATION_ERROR) and unhandled exceptions
(500 INTERNAL_ERROR).

Run with: pytest tests/test_errors.py -v
"""

import pytest
from fastapi import FastAPI, HTTPException, Query
from fastapi.testclient import TestClient

from app.core.errors import SUBSCRIPTION_ERRORS, AppError, register_exception_handlers
from app.main import app

ENVELOPE_KEYS = {"error", "message", "status", "details", "timestamp", "request_id"}


@pytest.fixture
def error_app():
    """A bare app with only the error handlers, plus routes that fail on purpose."""
    test_app = FastAPI()
    register_exception_handlers(test_app)

    @test_app.get("/app-error")
    async def raise_app_error():
        raise AppError.from_catalog(SUBSCRIPTION_ERRORS["NOT_FOUND"], 404, {"id": "x"})

    @test_app.get("/unauthorized")
    async def raise_unauthorized():
        raise AppError("INVALID_TOKEN", "Invalid authentication token", 401)

    @test_app.get("/http-error")
    async def raise_http_error():
        raise HTTPException(status_code=409, detail="Already exists")

    @test_app.get("/validated")
    async def validated(limit: int = Query(..., ge=1)):
        return {"limit": limit}

    @test_app.get("/boom")
    async def boom():
        raise RuntimeError("kaboom")

    return TestClient(test_app, raise_server_exceptions=False)


class TestAppError:
    """AppError construction and serialization."""

    def test_from_catalog(self):
        err = AppError.from_catalog(SUBSCRIPTION_ERRORS["NOT_FOUND"], 404)
        assert err.code == "SUBSCRIPTION_NOT_FOUND"
        assert err.message == "Subscription not found"
        assert err.status_code == 404
        assert err.details == {}

    def test_message_override(self):
        err = AppError.from_catalog(
            SUBSCRIPTION_ERRORS["UPDATE_ERROR"], 500, message="Failed to share subscription"
        )
        assert err.message == "Failed to share subscription"
        assert str(err) == "Failed to share subscription"

    def test_to_dict(self):
        body = AppError("X", "y", 418, {"k": 1}).to_dict()
        assert body["error"] == "X"
        assert body["status"] == 418
        assert body["details"] == {"k": 1}
        assert "timestamp" in body


class TestHandlers:
    """Registered exception handlers."""

    def test_app_error(self, error_app):
        resp = error_app.get("/app-error")
        assert resp.status_code == 404
        body = resp.json()
        assert set(body) == ENVELOPE_KEYS
        assert body["error"] == "SUBSCRIPTION_NOT_FOUND"
        assert body["details"] == {"id": "x"}
        assert body["request_id"] == "unknown"
        print("  AppError → envelope")

    def test_unauthorized_sets_www_authenticate(self, error_app):
        resp = error_app.get("/unauthorized")
        assert resp.status_code == 401
        assert resp.headers["WWW-Authenticate"] == "Bearer"

    def test_http_exception(self, error_app):
        resp = error_app.get("/http-error")
        assert resp.status_code == 409
        body = resp.json()
        assert body["error"] == "CONFLICT"
        assert body["message"] == "Already exists"

    def test_validation_error(self, error_app):
        resp = error_app.get("/validated?limit=0")
        assert resp.status_code == 400
        body = resp.json()
        assert body["error"] == "VALIDATION_ERROR"
        fields = body["details"]["errors"]
        assert fields[0]["field"] == "query.limit"
        assert fields[0]["type"]
        print("  Validation error → 400 with field details")

    def test_unhandled_exception(self, error_app):
        resp = error_app.get("/boom")
        assert resp.status_code == 500
        body = resp.json()
        assert body["error"] == "INTERNAL_ERROR"
        assert "kaboom" not in body["message"]
        print("  Unhandled exception → 500 INTERNAL_ERROR")


class TestRoutingErrors:
    """Routing failures on the real app use the envelope too."""

    def test_unknown_route(self):
        resp = TestClient(app).get("/api/v1/nope")
        assert resp.status_code == 404
        body = resp.json()
        assert body["error"] == "NOT_FOUND"
        assert set(body) == ENVELOPE_KEYS

    def test_wrong_method(self):
        resp = TestClient(app).put("/health")
        assert resp.status_code == 405
        assert resp.json()["error"] == "METHOD_NOT_ALLOWED"
