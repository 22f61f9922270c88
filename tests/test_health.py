"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok' after a real round-trip
  - 503 'degraded' when the database cannot be reached
  - No authentication required
"""

from __future__ import annotations

from core.errors import Transient


def test_health_returns_200_with_components(api_client):
    """Health endpoint returns 200 with status, version, and components."""
    client, _ = api_client
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert data["components"]["app"] == "ok"
    assert data["components"]["database"] == "ok"


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers."""
    client, _ = api_client
    resp = client.get("/api/v1/health", headers={})
    assert resp.status_code == 200


def test_health_reports_unreachable_database(api_client, monkeypatch):
    client, _ = api_client

    def broken_ping() -> bool:
        raise Transient()

    monkeypatch.setattr(client.app.state.store, "ping", broken_ping)
    resp = client.get("/api/v1/health")
    assert resp.status_code == 503
    data = resp.json()
    assert data["status"] == "degraded"
    assert data["components"]["database"] == "unavailable"


def test_unknown_host_rejected(api_client):
    """TrustedHostMiddleware turns away requests for hosts not in ALLOWED_HOSTS."""
    client, _ = api_client
    resp = client.get("/api/v1/health", headers={"Host": "evil.example.com"})
    assert resp.status_code == 400
