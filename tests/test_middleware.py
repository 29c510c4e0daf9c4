# tests/test_middleware.py
"""Tests for relaybot/transport/middleware.py - request ID, logging, error handling."""
from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from relaybot.infra.metrics import get_metrics_collector
from relaybot.transport.middleware import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    ErrorHandlingMiddleware,
)


def _build_app(raise_for: set[str] | None = None, log_requests: bool = True):
    """Build a minimal FastAPI app with middleware for testing."""
    app = FastAPI()
    # Order matters: ErrorHandling is innermost, RequestID outermost
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestLoggingMiddleware, enabled=log_requests)
    app.add_middleware(RequestIDMiddleware)

    raise_for = raise_for or set()

    @app.get("/health")
    def health():
        return {"status": "healthy"}

    @app.get("/missing")
    def missing():
        raise HTTPException(status_code=404, detail="nope")

    @app.get("/test")
    def test_endpoint():
        if "/test" in raise_for:
            raise RuntimeError("boom")
        return {"ok": True}

    @app.post("/webhooks/telegram")
    def telegram_endpoint():
        if "/webhooks/telegram" in raise_for:
            raise RuntimeError("telegram boom")
        return {"ok": True, "processed": 1}

    return app


# ============================================================================
# RequestIDMiddleware
# ============================================================================

class TestRequestIDMiddleware:
    def test_generates_request_id(self):
        client = TestClient(_build_app())
        resp = client.get("/test")
        assert resp.status_code == 200
        assert len(resp.headers["X-Request-ID"]) >= 32

    def test_preserves_existing_request_id(self):
        client = TestClient(_build_app())
        resp = client.get("/test", headers={"X-Request-ID": "req-abc-123"})
        assert resp.headers["X-Request-ID"] == "req-abc-123"

    def test_replaces_unsafe_request_id(self):
        client = TestClient(_build_app())
        resp = client.get("/test", headers={"X-Request-ID": "bad id with spaces"})
        assert resp.headers["X-Request-ID"] != "bad id with spaces"
        assert len(resp.headers["X-Request-ID"]) == 32


# ============================================================================
# RequestLoggingMiddleware
# ============================================================================

class TestRequestLoggingMiddleware:
    def test_logs_completed_request(self, caplog):
        client = TestClient(_build_app())
        with caplog.at_level(logging.INFO, logger="relaybot.transport.middleware"):
            client.get("/test", headers={"X-Request-ID": "req-1"})

        messages = [r.getMessage() for r in caplog.records if r.name == "relaybot.transport.middleware"]
        assert any("Request completed: GET /test status=200" in m for m in messages)

    def test_disabled(self, caplog):
        client = TestClient(_build_app(log_requests=False))
        with caplog.at_level(logging.INFO, logger="relaybot.transport.middleware"):
            client.get("/test")

        assert not any("Request completed" in r.getMessage() for r in caplog.records)

    def test_health_is_not_logged(self, caplog):
        client = TestClient(_build_app())
        with caplog.at_level(logging.INFO, logger="relaybot.transport.middleware"):
            client.get("/health")

        assert not any("Request completed" in r.getMessage() for r in caplog.records)

    def test_client_errors_log_as_warning(self, caplog):
        client = TestClient(_build_app())
        with caplog.at_level(logging.INFO, logger="relaybot.transport.middleware"):
            client.get("/missing")

        [record] = [r for r in caplog.records if "Request completed" in r.getMessage()]
        assert record.levelno == logging.WARNING
        assert "status=404" in record.getMessage()


# ============================================================================
# ErrorHandlingMiddleware
# ============================================================================

class TestErrorHandlingMiddleware:
    def test_normal_request_passes_through(self):
        client = TestClient(_build_app(), raise_server_exceptions=False)
        resp = client.get("/test")
        assert resp.status_code == 200
        assert resp.json() == {"ok": True}

    def test_telegram_error_still_returns_200(self):
        client = TestClient(_build_app(raise_for={"/webhooks/telegram"}), raise_server_exceptions=False)
        resp = client.post("/webhooks/telegram")
        assert resp.status_code == 200
        assert resp.json() == {"ok": False}

    def test_generic_error_returns_500(self):
        client = TestClient(_build_app(raise_for={"/test"}), raise_server_exceptions=False)
        resp = client.get("/test", headers={"X-Request-ID": "req-500"})
        assert resp.status_code == 500
        data = resp.json()
        assert data["error"] == "Internal server error"
        assert data["request_id"] == "req-500"

        counters = get_metrics_collector().get_metrics()["counters"]
        assert counters["http_unhandled_errors_total{path=/test}"] == 1
