"""
tests/test_health.py -- Integration tests for GET /api/v1/health and the error envelope.

Covers:
  - 200 response with status and version, no authentication required
  - Unknown routes still answer in the ErrorResponse envelope
  - /docs is not public
  - middleware order, outermost first
"""

from __future__ import annotations

from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.sessions import SessionMiddleware

from api.main import API_VERSION, app


def test_health_returns_status_and_version(api):
    resp = api.client.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "version": API_VERSION}


def test_health_no_auth_required(api):
    """Health endpoint is accessible without any authentication headers."""
    resp = api.client.get("/api/v1/health", headers={})
    assert resp.status_code == 200


def test_unknown_route_uses_error_envelope(api):
    resp = api.client.get("/api/v1/does-not-exist")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "http_404"


def test_docs_require_authentication(api):
    resp = api.client.get("/docs")
    assert resp.status_code == 401
    assert resp.headers["WWW-Authenticate"] == "Bearer"
    assert resp.json()["error"]["code"] == "unauthorized"


def test_docs_served_to_authenticated_user(api):
    resp = api.client.get("/docs", headers=api.auth(api.admin_id))
    assert resp.status_code == 200
    assert "swagger" in resp.text.lower()


def test_middleware_runs_outermost_first():
    """Trusted-host filtering sees the request before CORS, rate limiting and the session."""
    # user_middleware[0] is the outermost layer.
    assert [m.cls for m in app.user_middleware] == [
        BaseHTTPMiddleware,
        TrustedHostMiddleware,
        CORSMiddleware,
        SlowAPIMiddleware,
        SessionMiddleware,
    ]
