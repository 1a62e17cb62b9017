"""
tests/test_tokens.py -- Unit tests for auth/tokens.py.

Coverage:
  - issue/verify round trip per kind; tokens are unique even when issued together
  - cross-kind rejection: an access token is not a refresh token and vice versa
  - expiry is strict, tampering and garbage are InvalidToken
  - password hashing and the timing-equalization dummy check
  - refresh-token HMAC matching
  - cookie attributes
"""

from __future__ import annotations

import time

import pytest
from fastapi.responses import JSONResponse
from jose import jwt

from auth.tokens import (
    ACCESS_COOKIE,
    REFRESH_COOKIE,
    TokenKind,
    TokenService,
    burn_password_check,
    clear_auth_cookies,
    hash_password,
    hash_refresh_token,
    refresh_token_matches,
    set_auth_cookies,
    verify_password,
)
from core.errors import InvalidToken, TokenExpired


class TestTokenService:
    @pytest.mark.parametrize("kind", list(TokenKind))
    def test_verify_returns_subject(self, tokens: TokenService, kind: TokenKind) -> None:
        assert tokens.verify(kind, tokens.issue(kind, 42)) == 42

    def test_tokens_issued_together_are_distinct(self, tokens: TokenService) -> None:
        assert tokens.issue(TokenKind.REFRESH, 1) != tokens.issue(TokenKind.REFRESH, 1)

    def test_access_token_rejected_as_refresh(self, tokens: TokenService) -> None:
        with pytest.raises(InvalidToken):
            tokens.verify(TokenKind.REFRESH, tokens.issue(TokenKind.ACCESS, 1))

    def test_refresh_token_rejected_as_access(self, tokens: TokenService) -> None:
        with pytest.raises(InvalidToken):
            tokens.verify(TokenKind.ACCESS, tokens.issue(TokenKind.REFRESH, 1))

    def test_reset_token_rejected_as_access(self, tokens: TokenService) -> None:
        with pytest.raises(InvalidToken):
            tokens.verify(TokenKind.ACCESS, tokens.issue(TokenKind.RESET, 1))

    def test_kind_claim_checked_even_with_shared_secret(self, settings) -> None:
        """A token signed with the right key but the wrong typ claim is still rejected."""
        forged = jwt.encode(
            {"sub": "1", "typ": "refresh", "exp": int(time.time()) + 60},
            settings.access_token_secret,
            algorithm="HS256",
        )
        with pytest.raises(InvalidToken):
            TokenService(settings).verify(TokenKind.ACCESS, forged)

    def test_expired_token(self, settings) -> None:
        short = settings.model_copy(update={"access_token_expire_seconds": -1})
        service = TokenService(short)
        with pytest.raises(TokenExpired):
            service.verify(TokenKind.ACCESS, service.issue(TokenKind.ACCESS, 1))

    def test_expired_is_an_invalid_token(self) -> None:
        assert issubclass(TokenExpired, InvalidToken)

    def test_tampered_token(self, tokens: TokenService) -> None:
        token = tokens.issue(TokenKind.ACCESS, 1)
        head, payload, sig = token.split(".")
        tampered = f"{head}.{payload}.{sig[:-2]}{'A' if sig[-2] != 'A' else 'B'}{sig[-1]}"
        with pytest.raises(InvalidToken):
            tokens.verify(TokenKind.ACCESS, tampered)

    def test_garbage_token(self, tokens: TokenService) -> None:
        with pytest.raises(InvalidToken):
            tokens.verify(TokenKind.ACCESS, "not-a-jwt")

    def test_non_numeric_subject(self, settings) -> None:
        token = jwt.encode(
            {"sub": "alice", "typ": "access", "exp": int(time.time()) + 60},
            settings.access_token_secret,
            algorithm="HS256",
        )
        with pytest.raises(InvalidToken):
            TokenService(settings).verify(TokenKind.ACCESS, token)

    def test_lifetimes_follow_settings(self, tokens: TokenService, settings) -> None:
        assert tokens.lifetime(TokenKind.ACCESS) == settings.access_token_expire_seconds == 900
        assert tokens.lifetime(TokenKind.REFRESH) == settings.refresh_token_expire_seconds == 604800


class TestPasswords:
    def test_hash_and_verify(self) -> None:
        hashed = hash_password("Correct1!")
        assert hashed != "Correct1!"
        assert verify_password("Correct1!", hashed)
        assert not verify_password("Wrong1!", hashed)

    def test_verify_against_malformed_hash_is_false(self) -> None:
        assert verify_password("anything", "not-a-bcrypt-hash") is False

    def test_burn_password_check_does_not_raise(self) -> None:
        burn_password_check("whatever")


class TestRefreshHash:
    def test_matches_only_the_hashed_token(self, tokens: TokenService) -> None:
        first = tokens.issue(TokenKind.REFRESH, 1)
        second = tokens.issue(TokenKind.REFRESH, 1)
        stored = hash_refresh_token(first)
        assert refresh_token_matches(first, stored)
        assert not refresh_token_matches(second, stored)

    def test_no_stored_hash_never_matches(self, tokens: TokenService) -> None:
        assert not refresh_token_matches(tokens.issue(TokenKind.REFRESH, 1), None)


class TestCookies:
    def test_set_auth_cookies(self, settings) -> None:
        resp = JSONResponse({})
        set_auth_cookies(resp, "acc", "ref", settings)
        cookies = resp.headers.getlist("set-cookie")
        access = next(c for c in cookies if c.startswith(f"{ACCESS_COOKIE}="))
        refresh = next(c for c in cookies if c.startswith(f"{REFRESH_COOKIE}="))
        for cookie in (access, refresh):
            assert "HttpOnly" in cookie
            assert "SameSite=lax" in cookie
            assert "Path=/" in cookie
        assert "Max-Age=900" in access
        assert "Max-Age=604800" in refresh

    def test_clear_auth_cookies(self, settings) -> None:
        resp = JSONResponse({})
        clear_auth_cookies(resp, settings)
        cookies = resp.headers.getlist("set-cookie")
        assert len(cookies) == 2
        assert all("Max-Age=0" in c for c in cookies)
