"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports the credential store probe
  - A failing probe degrades the status instead of erroring
  - No authentication required
"""

from __future__ import annotations

from types import SimpleNamespace

from sqlalchemy.exc import OperationalError

from api.main import VERSION


class _BrokenEngine:
    def connect(self):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))


def test_health_returns_200_with_components(api_client):
    """Health endpoint returns 200 with status, version, and components."""
    client, _token, _http = api_client
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"] == VERSION
    assert data["components"] == {"app": "ok", "database": "ok"}


def test_health_reports_degraded_database(api_client, monkeypatch):
    """An unreachable credential store is reported, not raised."""
    client, _token, _http = api_client
    monkeypatch.setattr(client.app.state, "user_store", SimpleNamespace(engine=_BrokenEngine()))
    data = client.get("/api/v1/health").json()
    assert data["status"] == "degraded"
    assert data["components"]["database"] == "error"


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers."""
    client, _token, _http = api_client
    resp = client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
