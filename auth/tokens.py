"""
auth/tokens.py -- Password hashing, the token service, and cookie transport.

Security design decisions:
  JWT: python-jose with HS256. One TokenService handles all three token kinds
       (access, refresh, password-reset) so verification logic is shared, but
       each kind is signed with its own secret and carries its own lifetime.
       Every token also carries a "typ" claim naming its kind; verify() rejects
       a token whose claim does not match the kind it was asked to verify, even
       if someone configured two kinds with the same secret [T1].
       Expiry is checked against wall-clock time at verification with zero
       leeway. A random "jti" claim makes every token unique, so two logins in
       the same second never produce identical refresh tokens.

  Passwords: bcrypt directly (no passlib wrapper). The _dummy_hash() value
       enables timing equalization in SessionManager.login() so response time
       does not reveal whether an email exists [C1].

  Refresh-token hashes: HMAC-SHA256(SECRET_KEY, token). A refresh token is a
       long random JWT, not a low-entropy secret, so bcrypt's slowness buys
       nothing -- and bcrypt's 72-byte input limit would only see the JWT
       header and the start of the payload, which are identical for every
       token of a user. The deterministic HMAC is compared in constant time.

Layer rule: no imports from api/, mail/, or storage/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from enum import Enum
from functools import lru_cache

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from core.config import Settings, get_settings
from core.errors import InvalidToken, TokenExpired

logger = logging.getLogger("shopgate.auth")

_ALGORITHM = "HS256"

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"
    RESET = "reset"


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only looks at the first 72 bytes. The API layer caps passwords at
    128 characters; the truncation is explicit here so bcrypt 4.x never
    raises on long multi-byte input.
    """
    rounds = get_settings().bcrypt_rounds
    return bcrypt.hashpw(plain.encode("utf-8")[:72], bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8")[:72], hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    # Computed once, lazily, with the configured cost so a dummy check takes
    # as long as a real one [C1].
    return hash_password("shopgate_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Run a bcrypt check against a dummy hash to equalize timing [C1]."""
    verify_password(plain, _dummy_hash())


def hash_refresh_token(token: str, settings: Settings | None = None) -> str:
    """Return HMAC-SHA256(SECRET_KEY, token) as a hex string."""
    key = (settings or get_settings()).secret_key
    return hmac.new(key.encode(), token.encode(), hashlib.sha256).hexdigest()


def refresh_token_matches(token: str, stored_hash: str | None, settings: Settings | None = None) -> bool:
    if not stored_hash:
        return False
    return hmac.compare_digest(hash_refresh_token(token, settings), stored_hash)


# ---------------------------------------------------------------------------
# Token service
# ---------------------------------------------------------------------------


class TokenService:
    """Issues and verifies signed, expiring tokens for one of three kinds.

    Usage:
        tokens = TokenService(get_settings())
        raw = tokens.issue(TokenKind.ACCESS, user_id)
        user_id = tokens.verify(TokenKind.ACCESS, raw)   # raises InvalidToken
    """

    def __init__(self, settings: Settings) -> None:
        self._keys: dict[TokenKind, tuple[str, int]] = {
            TokenKind.ACCESS: (settings.access_token_secret, settings.access_token_expire_seconds),
            TokenKind.REFRESH: (settings.refresh_token_secret, settings.refresh_token_expire_seconds),
            TokenKind.RESET: (settings.reset_token_secret, settings.reset_token_expire_seconds),
        }

    def lifetime(self, kind: TokenKind) -> int:
        return self._keys[kind][1]

    def issue(self, kind: TokenKind, subject_id: int) -> str:
        secret, lifetime = self._keys[kind]
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(subject_id),
            "typ": kind.value,
            "jti": secrets.token_urlsafe(16),
            "iat": now,
            "exp": now + timedelta(seconds=lifetime),
        }
        return jwt.encode(payload, secret, algorithm=_ALGORITHM)

    def verify(self, kind: TokenKind, token: str) -> int:
        """Verify a token of the given kind and return its subject id.

        Raises TokenExpired for an expired token and InvalidToken for a bad
        signature, a malformed token, a wrong kind, or a bad subject claim.
        """
        secret, _ = self._keys[kind]
        try:
            payload = jwt.decode(token, secret, algorithms=[_ALGORITHM])
        except ExpiredSignatureError as exc:
            raise TokenExpired() from exc
        except JWTError as exc:
            raise InvalidToken() from exc

        if payload.get("typ") != kind.value:
            raise InvalidToken(detail="token kind mismatch")
        try:
            return int(payload["sub"])
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidToken(detail="invalid subject claim") from exc


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookies(response, access_token: str, refresh_token: str, settings: Settings | None = None) -> None:
    """Write both tokens as httpOnly cookies on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches each token's expiry so cookie and token expire together.
    path="/": both cookies are visible to every route.
    """
    cfg = settings or get_settings()
    response.set_cookie(
        ACCESS_COOKIE,
        value=access_token,
        httponly=True,
        samesite="lax",
        secure=cfg.secure_cookies,
        max_age=cfg.access_token_expire_seconds,
        path="/",
    )
    response.set_cookie(
        REFRESH_COOKIE,
        value=refresh_token,
        httponly=True,
        samesite="lax",
        secure=cfg.secure_cookies,
        max_age=cfg.refresh_token_expire_seconds,
        path="/",
    )


def clear_auth_cookies(response, settings: Settings | None = None) -> None:
    cfg = settings or get_settings()
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(name, path="/", secure=cfg.secure_cookies, httponly=True, samesite="lax")
