"""
api/routes/v1/auth.py -- Session endpoints.

Routes:
  POST /api/v1/auth/register         -- create a USER account; sets token cookies
  POST /api/v1/auth/login            -- password login; sets token cookies
  POST /api/v1/auth/refresh          -- rotate the session; sets new token cookies
  POST /api/v1/auth/logout           -- end the session; clears cookies (requires auth)
  GET  /api/v1/auth/profile          -- current user (requires auth)
  POST /api/v1/auth/forgot-password  -- email a reset link; always the same answer
  POST /api/v1/auth/reset-password   -- set a new password with a reset token
  GET  /api/v1/auth/google           -- redirect to Google
  GET  /api/v1/auth/google/callback  -- finish Google login; redirect to the frontend

Security:
  [H2] Login passes enforce_login_rate_limit before the body is even read;
       register and forgot-password carry slowapi limits.
  [C1] Credential checks live in SessionManager.login() -- never inline them.
  [C2] forgot-password answers identically whether or not the email exists.
  [M5] Cache-Control: no-store on every response that carries tokens.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, RedirectResponse

from api.limiter import limiter
from api.models import (
    AuthResponse,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    ResetPasswordRequest,
    UserResponse,
    to_user_response,
)
from auth.dependencies import enforce_login_rate_limit, get_current_user, get_refresh_token
from auth.models import NewUser, TokenPair, User
from auth.oauth import extract_google_identity
from auth.session import SessionManager
from auth.tokens import clear_auth_cookies, set_auth_cookies
from core.config import get_settings
from core.errors import NotFound, Unauthorized

logger = logging.getLogger("shopgate.api.auth")

_cfg = get_settings()

FORGOT_PASSWORD_MESSAGE = "If an account with that email exists, a password reset link has been sent."

# Auth policy:
# - POST /auth/register, /auth/login, /auth/refresh:  public (refresh needs a refresh token)
# - POST /auth/forgot-password, /auth/reset-password: public
# - GET  /auth/google, /auth/google/callback:         public
# - POST /auth/logout, GET /auth/profile:             requires auth (get_current_user)
router = APIRouter()


def _sessions(request: Request) -> SessionManager:
    return request.app.state.session_manager


def _session_response(pair: TokenPair, user: User | None, status_code: int = 200) -> JSONResponse:
    settings = get_settings()
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse(
            user=to_user_response(user) if user is not None else None,
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=settings.access_token_expire_seconds,
        ).model_dump(mode="json"),
    )
    set_auth_cookies(resp, pair.access_token, pair.refresh_token, settings)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Password sessions
# ---------------------------------------------------------------------------


@limiter.limit(_cfg.register_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account and log it in. Any role in the body is ignored."""
    user, pair = _sessions(request).register(
        NewUser(
            email=body.email,
            first_name=body.first_name,
            last_name=body.last_name,
            password=body.password,
        )
    )
    return _session_response(pair, user, status_code=201)


@router.post("/auth/login", response_model=AuthResponse, dependencies=[Depends(enforce_login_rate_limit)])
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set both token cookies.

    Wrong email, wrong password and disabled account all produce the same
    401 bad_credentials [C1].
    """
    sessions = _sessions(request)
    pair = sessions.login(body.email, body.password)
    return _session_response(pair, sessions.get_profile(pair.user_id))


@router.post("/auth/refresh", response_model=AuthResponse)
def refresh(request: Request, refresh_token: str = Depends(get_refresh_token)) -> JSONResponse:
    """Exchange the current refresh token for a new pair. The old token stops working."""
    sessions = _sessions(request)
    pair = sessions.refresh(refresh_token)
    return _session_response(pair, sessions.get_profile(pair.user_id))


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, current_user: User = Depends(get_current_user)) -> JSONResponse:
    """Revoke the stored refresh token and clear both cookies."""
    _sessions(request).logout(current_user.id)
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    clear_auth_cookies(resp)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/auth/profile", response_model=UserResponse)
async def profile(current_user: User = Depends(get_current_user)) -> UserResponse:
    return to_user_response(current_user)


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@limiter.limit(_cfg.forgot_password_rate_limit)
@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Queue a reset email when the account exists. The answer never says which [C2]."""
    _sessions(request).request_password_reset(body.email)
    return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    """Set a new password. Does not log the user in."""
    _sessions(request).reset_password(body.token, body.new_password)
    return MessageResponse(message="Password has been reset successfully.")


# ---------------------------------------------------------------------------
# Google login
# ---------------------------------------------------------------------------


def _google(request: Request):
    client = request.app.state.oauth.create_client("google")
    if client is None:
        raise NotFound("Google login is not configured.")
    return client


@router.get("/auth/google")
async def google_login(request: Request):
    """Redirect the browser to Google. authlib stores the state in the session [H1]."""
    client = _google(request)
    redirect_uri = str(request.url_for("google_callback"))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/google/callback", name="google_callback")
async def google_callback(request: Request) -> RedirectResponse:
    """Finish Google login and hand the browser back to the frontend.

    Every failure (state mismatch, provider error, unverified email, disabled
    account) lands on the same /login?error=oauth_failed page.
    """
    frontend = get_settings().frontend_url.rstrip("/")
    failure = RedirectResponse(f"{frontend}/login?error=oauth_failed", status_code=302)
    client = _google(request)

    try:
        token = await client.authorize_access_token(request)
        identity = extract_google_identity(token)
    except (OAuthError, ValueError) as exc:
        logger.warning("Google login failed: %s", exc)
        return failure

    try:
        user, pair = await run_in_threadpool(_sessions(request).oauth_login, identity)
    except Unauthorized:
        logger.warning("Google login refused for a disabled account")
        return failure

    logger.info("Google login for user %s", user.id)
    resp = RedirectResponse(f"{frontend}/auth/google/success", status_code=302)
    set_auth_cookies(resp, pair.access_token, pair.refresh_token)
    resp.headers["Cache-Control"] = "no-store"
    return resp
