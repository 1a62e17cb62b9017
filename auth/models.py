"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these classes only own the shape of the domain.

Layer rule: no imports from api/, mail/, or storage/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


@dataclass
class User:
    """Represents an account in shopgate.

    email is stored lower-cased; the store enforces uniqueness on it.

    hashed_password is always set. Accounts created through third-party login
    get a random placeholder that is hashed and never communicated, so they
    cannot sign in with a password until they complete a password reset.

    avatar_key is the private storage key of an uploaded avatar
    (e.g. "avatars/user-12-1700000000000.jpg"). It is never sent to clients.
    avatar_url is the provider-hosted picture from third-party login, if any.

    hashed_refresh_token is None exactly when no session is active.
    """

    email: str
    first_name: str
    last_name: str
    hashed_password: str
    role: Role = Role.USER
    id: int | None = None
    is_active: bool = True
    avatar_key: str | None = None
    avatar_url: str | None = None
    hashed_refresh_token: str | None = None
    is_oauth_user: bool = False
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


@dataclass
class TokenPair:
    """An access + refresh token pair issued for one subject."""

    user_id: int
    access_token: str
    refresh_token: str


@dataclass
class ExternalIdentity:
    """A verified identity assertion from the third-party provider.

    The provider has already confirmed email ownership by the time one of
    these exists; auth/oauth.py refuses to build one otherwise.
    """

    email: str
    first_name: str
    last_name: str = ""
    avatar_url: str | None = None


@dataclass
class NewUser:
    """Profile + plaintext credential for registration and admin creation."""

    email: str
    first_name: str
    last_name: str
    password: str
    role: Role | None = None
