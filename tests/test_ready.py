"""
Tests for /ready, /health and /version.
"""
from __future__ import annotations

from unittest.mock import patch


def test_ready_ok(app_client):
    """Test /ready returns ok when all services are healthy."""
    _app, client = app_client

    with patch("app.routes.core._ping_redis", return_value=True):
        res = client.get("/ready")
        assert res.status_code == 200

        body = res.get_json()
        assert body["status"] == "ok"
        assert body["checks"] == {"db": "ok", "redis": "ok"}


def test_ready_redis_down(app_client):
    """Test /ready reports degraded with 503 when Redis is unreachable."""
    _app, client = app_client

    with patch("app.routes.core._ping_redis", return_value=False):
        res = client.get("/ready")
        assert res.status_code == 503

        body = res.get_json()
        assert body["status"] == "degraded"
        assert body["checks"]["redis"] == "error"
        assert body["checks"]["db"] == "ok"


def test_health_and_version(app_client):
    _app, client = app_client

    health = client.get("/health").get_json()
    assert health["ok"] is True
    assert health["data"]["db_pool"]["initialized"] is True

    version = client.get("/version").get_json()
    assert version["env"] == "test"


def test_request_id_is_echoed(app_client):
    _app, client = app_client
    res = client.get("/health", headers={"X-Request-ID": "req-abc-123"})
    assert res.headers["X-Request-ID"] == "req-abc-123"
