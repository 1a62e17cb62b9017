"""
tests/test_api_auth.py -- Integration tests for the /api/v1/auth routes.

Runs the real app through TestClient with the lifespan patched in conftest.
Emails are a MagicMock queue and Google is a MagicMock OAuth registry, so
nothing leaves the process.
"""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock

from authlib.integrations.starlette_client import OAuthError
from fastapi.responses import RedirectResponse

from auth.models import Role
from auth.tokens import TokenKind
from core.config import get_settings
from tests.factories import USER_PASSWORD, make_user

FORGOT_MESSAGE = "If an account with that email exists, a password reset link has been sent."


def _email(prefix: str = "user") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}@shop.test"


def _register_body(email: str, **overrides) -> dict:
    body = {"email": email, "first_name": "Ana", "last_name": "Lopez", "password": USER_PASSWORD}
    body.update(overrides)
    return body


def _login(api, email: str, password: str = USER_PASSWORD):
    return api.client.post("/api/v1/auth/login", json={"email": email, "password": password})


def _error_code(resp) -> str:
    return resp.json()["error"]["code"]


# ---------------------------------------------------------------------------
# Register
# ---------------------------------------------------------------------------


class TestRegister:
    def test_register_creates_user_and_session(self, api) -> None:
        email = _email()
        resp = api.client.post("/api/v1/auth/register", json=_register_body(email))

        assert resp.status_code == 201
        data = resp.json()
        assert data["user"]["email"] == email
        assert data["user"]["role"] == "USER"
        assert data["token_type"] == "bearer"
        assert data["expires_in"] == get_settings().access_token_expire_seconds
        assert resp.cookies.get("access_token") == data["access_token"]
        assert resp.cookies.get("refresh_token") == data["refresh_token"]
        assert resp.headers["cache-control"] == "no-store"
        api.email_queue.add_welcome_email.assert_called_once_with(email, "Ana")

    def test_requested_role_is_ignored(self, api) -> None:
        email = _email()
        resp = api.client.post("/api/v1/auth/register", json=_register_body(email, role="ADMIN"))

        assert resp.status_code == 201
        assert resp.json()["user"]["role"] == "USER"
        assert api.store.get_by_email(email).role == Role.USER

    def test_response_never_leaks_credentials(self, api) -> None:
        resp = api.client.post("/api/v1/auth/register", json=_register_body(_email()))
        user = resp.json()["user"]
        assert "hashed_password" not in user
        assert "hashed_refresh_token" not in user
        assert "avatar_key" not in user

    def test_duplicate_email_is_conflict(self, api) -> None:
        email = _email()
        make_user(api.store, email)
        resp = api.client.post("/api/v1/auth/register", json=_register_body(email.upper()))
        assert resp.status_code == 409
        assert _error_code(resp) == "user_exists"

    def test_weak_password_is_rejected(self, api) -> None:
        resp = api.client.post("/api/v1/auth/register", json=_register_body(_email(), password="alllowercase"))
        assert resp.status_code == 422
        assert _error_code(resp) == "validation_error"

    def test_bad_email_is_rejected(self, api) -> None:
        resp = api.client.post("/api/v1/auth/register", json=_register_body("not-an-email"))
        assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


class TestLogin:
    def test_login_success(self, api) -> None:
        user = make_user(api.store, _email())
        resp = _login(api, user.email)

        assert resp.status_code == 200
        data = resp.json()
        assert data["user"]["id"] == user.id
        assert resp.cookies.get("access_token")
        assert resp.headers["cache-control"] == "no-store"

    def test_wrong_password_and_unknown_email_look_the_same(self, api) -> None:
        user = make_user(api.store, _email())
        wrong = _login(api, user.email, "WrongPass1!")
        unknown = _login(api, _email("ghost"))

        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert _error_code(wrong) == "bad_credentials"
        assert wrong.headers["www-authenticate"] == "Bearer"

    def test_disabled_account_gets_generic_error(self, api) -> None:
        user = make_user(api.store, _email(), is_active=False)
        resp = _login(api, user.email)
        assert resp.status_code == 401
        assert _error_code(resp) == "bad_credentials"

    def test_sixth_attempt_is_rate_limited(self, api) -> None:
        email = _email("ghost")
        for _ in range(5):
            assert _login(api, email, "WrongPass1!").status_code == 401

        resp = _login(api, email, "WrongPass1!")
        assert resp.status_code == 429
        assert _error_code(resp) == "rate_limited"
        assert int(resp.headers["retry-after"]) > 0

    def test_rate_limit_applies_to_correct_password_too(self, api) -> None:
        user = make_user(api.store, _email())
        for _ in range(5):
            _login(api, user.email, "WrongPass1!")
        assert _login(api, user.email).status_code == 429


# ---------------------------------------------------------------------------
# Refresh / logout / profile
# ---------------------------------------------------------------------------


class TestSessionRoutes:
    def test_refresh_with_cookie_rotates_tokens(self, api) -> None:
        user = make_user(api.store, _email())
        first = _login(api, user.email).json()

        resp = api.client.post("/api/v1/auth/refresh")
        assert resp.status_code == 200
        second = resp.json()
        assert second["refresh_token"] != first["refresh_token"]
        assert resp.cookies.get("refresh_token") == second["refresh_token"]

    def test_replayed_refresh_token_is_rejected(self, api) -> None:
        user = make_user(api.store, _email())
        old = _login(api, user.email).json()["refresh_token"]
        assert api.client.post("/api/v1/auth/refresh").status_code == 200

        api.client.cookies.clear()
        resp = api.client.post("/api/v1/auth/refresh", headers={"Authorization": f"Bearer {old}"})
        assert resp.status_code == 401
        assert _error_code(resp) == "invalid_refresh_token"

    def test_access_token_cannot_refresh(self, api) -> None:
        user = make_user(api.store, _email())
        access = _login(api, user.email).json()["access_token"]

        api.client.cookies.clear()
        resp = api.client.post("/api/v1/auth/refresh", headers={"Authorization": f"Bearer {access}"})
        assert resp.status_code == 401
        assert _error_code(resp) == "invalid_token"

    def test_refresh_without_token(self, api) -> None:
        resp = api.client.post("/api/v1/auth/refresh")
        assert resp.status_code == 401

    def test_logout_revokes_refresh_token(self, api) -> None:
        user = make_user(api.store, _email())
        tokens = _login(api, user.email).json()

        resp = api.client.post("/api/v1/auth/logout")
        assert resp.status_code == 200
        assert api.store.get_by_id(user.id).hashed_refresh_token is None
        assert "access_token" in resp.headers.get("set-cookie", "")

        api.client.cookies.clear()
        replay = api.client.post(
            "/api/v1/auth/refresh", headers={"Authorization": f"Bearer {tokens['refresh_token']}"}
        )
        assert replay.status_code == 401

    def test_logout_requires_auth(self, api) -> None:
        assert api.client.post("/api/v1/auth/logout").status_code == 401

    def test_profile_with_bearer(self, api) -> None:
        user = make_user(api.store, _email())
        resp = api.client.get("/api/v1/auth/profile", headers=api.auth(user.id))
        assert resp.status_code == 200
        assert resp.json()["email"] == user.email
        assert resp.json()["avatar_url"] is None

    def test_profile_with_cookie(self, api) -> None:
        user = make_user(api.store, _email())
        _login(api, user.email)
        assert api.client.get("/api/v1/auth/profile").json()["id"] == user.id

    def test_profile_rejects_garbage_token(self, api) -> None:
        resp = api.client.get("/api/v1/auth/profile", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401
        assert _error_code(resp) == "invalid_token"

    def test_profile_rejects_deleted_user(self, api) -> None:
        user = make_user(api.store, _email())
        headers = api.auth(user.id)
        api.store.delete_user(user.id)
        assert api.client.get("/api/v1/auth/profile", headers=headers).status_code == 401


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


class TestPasswordReset:
    def test_forgot_password_is_identical_for_known_and_unknown(self, api) -> None:
        user = make_user(api.store, _email())
        known = api.client.post("/api/v1/auth/forgot-password", json={"email": user.email})
        unknown = api.client.post("/api/v1/auth/forgot-password", json={"email": _email("ghost")})

        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json() == {"message": FORGOT_MESSAGE}
        api.email_queue.add_password_reset_email.assert_called_once()
        to, name, link = api.email_queue.add_password_reset_email.call_args.args
        assert to == user.email
        assert name == user.first_name
        assert link.startswith(f"{get_settings().reset_password_url}?token=")

    def test_reset_password_sets_new_credential(self, api) -> None:
        user = make_user(api.store, _email())
        token = api.tokens.issue(TokenKind.RESET, user.id)

        resp = api.client.post(
            "/api/v1/auth/reset-password", json={"token": token, "new_password": "BrandNew1!"}
        )
        assert resp.status_code == 200
        assert resp.cookies.get("access_token") is None
        assert _login(api, user.email, "BrandNew1!").status_code == 200
        api.email_queue.add_password_changed_email.assert_called_once_with(user.email, user.first_name)

    def test_reset_rejects_access_token(self, api) -> None:
        user = make_user(api.store, _email())
        resp = api.client.post(
            "/api/v1/auth/reset-password",
            json={"token": api.token_for(user.id), "new_password": "BrandNew1!"},
        )
        assert resp.status_code == 401
        assert _error_code(resp) == "invalid_token"

    def test_reset_for_deleted_user_is_not_found(self, api) -> None:
        user = make_user(api.store, _email())
        token = api.tokens.issue(TokenKind.RESET, user.id)
        api.store.delete_user(user.id)
        resp = api.client.post(
            "/api/v1/auth/reset-password", json={"token": token, "new_password": "BrandNew1!"}
        )
        assert resp.status_code == 404

    def test_reset_rejects_weak_password(self, api) -> None:
        user = make_user(api.store, _email())
        token = api.tokens.issue(TokenKind.RESET, user.id)
        resp = api.client.post("/api/v1/auth/reset-password", json={"token": token, "new_password": "short"})
        assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Google
# ---------------------------------------------------------------------------


def _google_client(api):
    return api.oauth.create_client.return_value


class TestGoogle:
    def test_not_configured_is_404(self, api) -> None:
        api.oauth.create_client.return_value = None
        resp = api.client.get("/api/v1/auth/google", follow_redirects=False)
        assert resp.status_code == 404

    def test_login_redirects_to_provider(self, api) -> None:
        client = _google_client(api)
        client.authorize_redirect = AsyncMock(
            return_value=RedirectResponse("https://accounts.google.com/o/oauth2/v2/auth?state=s", status_code=302)
        )

        resp = api.client.get("/api/v1/auth/google", follow_redirects=False)

        assert resp.status_code == 302
        assert resp.headers["location"].startswith("https://accounts.google.com/")
        redirect_uri = client.authorize_redirect.call_args.args[1]
        assert redirect_uri.endswith("/api/v1/auth/google/callback")

    def test_callback_creates_oauth_user_and_sets_cookies(self, api) -> None:
        email = _email("google")
        _google_client(api).authorize_access_token = AsyncMock(
            return_value={
                "userinfo": {
                    "email": email,
                    "email_verified": True,
                    "given_name": "Gia",
                    "family_name": "Goo",
                    "picture": "https://lh3.googleusercontent.com/a/pic",
                }
            }
        )

        resp = api.client.get("/api/v1/auth/google/callback", follow_redirects=False)

        assert resp.status_code == 302
        assert resp.headers["location"].endswith("/auth/google/success")
        assert resp.cookies.get("access_token")
        assert resp.cookies.get("refresh_token")
        user = api.store.get_by_email(email)
        assert user.is_oauth_user is True
        assert user.role == Role.USER
        assert user.avatar_url == "https://lh3.googleusercontent.com/a/pic"
        api.email_queue.add_welcome_email.assert_called_once_with(email, "Gia")

    def test_callback_logs_in_existing_account(self, api) -> None:
        user = make_user(api.store, _email())
        _google_client(api).authorize_access_token = AsyncMock(
            return_value={"userinfo": {"email": user.email, "email_verified": True}}
        )

        resp = api.client.get("/api/v1/auth/google/callback", follow_redirects=False)

        assert resp.headers["location"].endswith("/auth/google/success")
        assert api.store.get_by_id(user.id).hashed_refresh_token is not None
        api.email_queue.add_welcome_email.assert_not_called()

    def test_callback_state_error_redirects_to_failure(self, api) -> None:
        _google_client(api).authorize_access_token = AsyncMock(side_effect=OAuthError(error="mismatching_state"))
        resp = api.client.get("/api/v1/auth/google/callback", follow_redirects=False)
        assert resp.status_code == 302
        assert resp.headers["location"].endswith("/login?error=oauth_failed")
        assert resp.cookies.get("access_token") is None

    def test_callback_unverified_email_redirects_to_failure(self, api) -> None:
        email = _email("unverified")
        _google_client(api).authorize_access_token = AsyncMock(
            return_value={"userinfo": {"email": email, "email_verified": False}}
        )
        resp = api.client.get("/api/v1/auth/google/callback", follow_redirects=False)
        assert resp.headers["location"].endswith("/login?error=oauth_failed")
        assert api.store.get_by_email(email) is None

    def test_callback_disabled_account_redirects_to_failure(self, api) -> None:
        user = make_user(api.store, _email(), is_active=False)
        _google_client(api).authorize_access_token = AsyncMock(
            return_value={"userinfo": {"email": user.email, "email_verified": True}}
        )
        resp = api.client.get("/api/v1/auth/google/callback", follow_redirects=False)
        assert resp.headers["location"].endswith("/login?error=oauth_failed")
