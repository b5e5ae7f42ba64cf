"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok' against a reachable database
  - Degraded status (still 200) when the database cannot be reached
  - No authentication required
"""

from __future__ import annotations

from sqlalchemy.exc import OperationalError

from api.main import API_VERSION, app


class _UnreachableEngine:
    """Stands in for app.state.engine when the database is down."""

    def connect(self):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))


def test_health_returns_200_with_components(api_env):
    """Health endpoint returns 200 with status, version, and components."""
    resp = api_env.client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"] == API_VERSION
    assert data["components"]["app"] == "ok"
    assert data["components"]["database"] == "ok"


def test_health_degraded_when_database_unreachable(api_env, monkeypatch):
    """A failing database flips status to degraded without failing the request."""
    monkeypatch.setattr(app.state, "engine", _UnreachableEngine())
    resp = api_env.client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "degraded"
    assert data["components"] == {"app": "ok", "database": "error"}


def test_health_no_auth_required(api_env):
    """Health endpoint is accessible without any authentication headers."""
    api_env.client.cookies.clear()
    resp = api_env.client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"
