"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two credential carriers are checked in priority order:
  1. "access_token" cookie -- set by login, register, refresh and the Google callback.
  2. Authorization: Bearer <token> header -- API clients that keep tokens themselves.

Both converge on a User through SessionManager.authenticate().

get_current_user() raises 401 if unauthenticated.
require_admin() wraps get_current_user() and raises 403 if not admin.
get_refresh_token() reads the refresh credential for /auth/refresh.
enforce_login_rate_limit() counts the request against the per-address login window.

Errors are core.errors.AppError subclasses; api/main.py renders them.

Layer rule: no imports from api/, mail/, or storage/.
  auth/dependencies.py may import from fastapi (for Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request
from slowapi.util import get_remote_address

from auth.models import User
from auth.tokens import ACCESS_COOKIE, REFRESH_COOKIE
from core.errors import Forbidden, Unauthorized


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def get_current_user(request: Request) -> User:
    """Require authentication. Raises Unauthorized if the request carries no valid access token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    token = request.cookies.get(ACCESS_COOKIE) or _bearer_token(request)
    if not token:
        raise Unauthorized()
    return request.app.state.session_manager.authenticate(token)


def require_admin(request: Request) -> User:
    """Require the ADMIN role. Unauthorized if unauthenticated, Forbidden if not admin."""
    user = get_current_user(request)
    if not user.is_admin:
        raise Forbidden("Admin access required.")
    return user


def get_refresh_token(request: Request) -> str:
    """Return the refresh credential from its cookie, falling back to a Bearer header."""
    token = request.cookies.get(REFRESH_COOKIE) or _bearer_token(request)
    if not token:
        raise Unauthorized("Refresh token required.")
    return token


def enforce_login_rate_limit(request: Request) -> None:
    """Count this request against the caller's login window; raises TooManyRequests."""
    request.app.state.login_limiter.hit(get_remote_address(request))
