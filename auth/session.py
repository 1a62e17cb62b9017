"""
auth/session.py -- Session lifecycle: login, refresh, logout, password reset,
registration, admin provisioning, and third-party identity login.

State per user is a single stored refresh-token hash:

    no session  --login/register/oauth-->  active(hash=H1)
    active(H1)  --refresh with T1-->       active(H2)      T1 is now dead
    active(Hn)  --login again-->           active(Hm)      previous session dead
    active(Hn)  --logout-->                no session      every refresh token dead

Security:
  [C1] Login runs bcrypt whether or not the email exists, and returns the
       same InvalidCredentials for "no such user", "wrong password" and
       "disabled account", so neither the response nor its timing reveals
       which accounts exist.

  [C2] Password-reset requests for unknown emails return exactly like known
       ones and dispatch nothing.

  [C4] Refresh is rotation-on-use: the presented token must match the stored
       hash, and the new hash is written with a compare-and-swap, so replaying
       a token (or racing two refreshes with one token) succeeds at most once.
       This gives one active session per user, not per device.

  [R1] Public registration always creates a USER. Only provision_user(),
       reachable from an authenticated ADMIN, may assign ADMIN.

Notifications go through the email queue and never block or fail the
request: tokens already issued and users already committed stay as they are
if an email cannot be queued.

Layer rule: no imports from api/ or storage/. The notifier is duck-typed
(mail.queue.EmailQueue in production, a mock in tests).
"""

from __future__ import annotations

import logging
import secrets
from typing import Protocol

from auth.models import ExternalIdentity, NewUser, Role, TokenPair, User
from auth.store import UserStore
from auth.tokens import (
    TokenKind,
    TokenService,
    burn_password_check,
    hash_password,
    hash_refresh_token,
    refresh_token_matches,
    verify_password,
)
from core.config import Settings
from core.errors import (
    Forbidden,
    InvalidCredentials,
    InvalidRefreshToken,
    Unauthorized,
    UserAlreadyExists,
    UserNotFound,
)

logger = logging.getLogger("shopgate.auth.session")


class Notifier(Protocol):
    def add_welcome_email(self, to: str, username: str): ...

    def add_password_reset_email(self, to: str, username: str, reset_link: str): ...

    def add_password_changed_email(self, to: str, username: str): ...


class SessionManager:
    """Orchestrates the token state machine over the user store."""

    def __init__(self, store: UserStore, tokens: TokenService, notifier: Notifier, settings: Settings) -> None:
        self.store = store
        self.tokens = tokens
        self.notifier = notifier
        self.settings = settings

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> TokenPair:
        """Verify credentials and start a fresh session [C1]."""
        user = self.store.get_by_email(email)
        if user is None:
            burn_password_check(password)
            logger.info("Login failed: unknown account")
            raise InvalidCredentials()
        if not verify_password(password, user.hashed_password):
            logger.info("Login failed: bad password for user %s", user.id)
            raise InvalidCredentials()
        if not user.is_active:
            logger.info("Login failed: user %s is disabled", user.id)
            raise InvalidCredentials()
        return self.start_session(user.id)

    def start_session(self, user_id: int) -> TokenPair:
        """Issue a new pair and overwrite the stored refresh hash.

        Any refresh token issued before this call stops working.
        """
        pair = self._issue_pair(user_id)
        self.store.set_refresh_token_hash(user_id, hash_refresh_token(pair.refresh_token, self.settings))
        return pair

    def refresh(self, refresh_token: str) -> TokenPair:
        """Rotate a session: verify the presented token and replace it [C4].

        Raises InvalidToken for a bad signature, wrong kind or expiry, and
        InvalidRefreshToken when the token is not the current one for its user.
        """
        user_id = self.tokens.verify(TokenKind.REFRESH, refresh_token)
        user = self.store.get_by_id(user_id)
        if user is None or not user.is_active:
            raise InvalidRefreshToken()
        if not refresh_token_matches(refresh_token, user.hashed_refresh_token, self.settings):
            logger.warning("Rejected stale or replayed refresh token for user %s", user_id)
            raise InvalidRefreshToken()

        pair = self._issue_pair(user_id)
        rotated = self.store.rotate_refresh_token_hash(
            user_id,
            expected_hash=user.hashed_refresh_token,
            new_hash=hash_refresh_token(pair.refresh_token, self.settings),
        )
        if not rotated:
            logger.warning("Concurrent refresh lost the rotation race for user %s", user_id)
            raise InvalidRefreshToken()
        return pair

    def logout(self, user_id: int) -> None:
        self.store.set_refresh_token_hash(user_id, None)

    def authenticate(self, access_token: str) -> User:
        """Resolve an access token to an active user, or raise."""
        user_id = self.tokens.verify(TokenKind.ACCESS, access_token)
        user = self.store.get_by_id(user_id)
        if user is None or not user.is_active:
            raise Unauthorized("User not found.")
        return user

    def get_profile(self, user_id: int) -> User:
        user = self.store.get_by_id(user_id)
        if user is None:
            raise Unauthorized("User not found.")
        return user

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def request_password_reset(self, email: str) -> None:
        """Email a reset link if the account exists; do nothing otherwise [C2]."""
        user = self.store.get_by_email(email)
        if user is None:
            logger.info("Password reset requested for unknown account")
            return
        token = self.tokens.issue(TokenKind.RESET, user.id)
        reset_link = f"{self.settings.reset_password_url}?token={token}"
        self._notify(self.notifier.add_password_reset_email, user.email, user.first_name, reset_link)

    def reset_password(self, token: str, new_password: str) -> None:
        """Replace the credential of the token's subject.

        Does not log the user in and leaves any active session untouched.
        """
        user_id = self.tokens.verify(TokenKind.RESET, token)
        user = self.store.get_by_id(user_id)
        if user is None:
            raise UserNotFound()
        self.store.set_password_hash(user.id, hash_password(new_password))
        logger.info("Password reset completed for user %s", user.id)
        self._notify(self.notifier.add_password_changed_email, user.email, user.first_name)

    # ------------------------------------------------------------------
    # Account creation
    # ------------------------------------------------------------------

    def register(self, new_user: NewUser) -> tuple[User, TokenPair]:
        """Public self-registration. The role is always USER [R1]."""
        user = self._create(new_user, role=Role.USER)
        self._notify(self.notifier.add_welcome_email, user.email, user.first_name)
        return user, self.start_session(user.id)

    def provision_user(self, new_user: NewUser, creator: User) -> User:
        """Admin creation path. Only an ADMIN creator may assign ADMIN [R1]."""
        role = new_user.role or Role.USER
        if role == Role.ADMIN and not creator.is_admin:
            raise Forbidden("Only administrators can create privileged users.")
        return self._create(new_user, role=role)

    def oauth_login(self, identity: ExternalIdentity) -> tuple[User, TokenPair]:
        """Log in the account matching a verified third-party identity.

        Unknown emails get a new USER account with a random placeholder
        password that is never communicated. If a concurrent request created
        the same email first, that account is the one logged in.
        """
        user = self.store.get_by_email(identity.email)
        if user is None:
            placeholder = NewUser(
                email=identity.email,
                first_name=identity.first_name,
                last_name=identity.last_name,
                password=secrets.token_urlsafe(32),
            )
            try:
                user = self._create(placeholder, role=Role.USER, is_oauth_user=True, avatar_url=identity.avatar_url)
            except UserAlreadyExists:
                user = self.store.get_by_email(identity.email)
                if user is None:
                    raise
            else:
                self._notify(self.notifier.add_welcome_email, user.email, user.first_name)
        if not user.is_active:
            raise Unauthorized("Account is disabled.")
        return user, self.start_session(user.id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _create(self, new_user: NewUser, role: Role, is_oauth_user: bool = False, avatar_url: str | None = None) -> User:
        user_id = self.store.create_user(
            User(
                email=new_user.email,
                first_name=new_user.first_name,
                last_name=new_user.last_name,
                hashed_password=hash_password(new_user.password),
                role=role,
                is_oauth_user=is_oauth_user,
                avatar_url=avatar_url,
            )
        )
        created = self.store.get_by_id(user_id)
        if created is None:
            raise UserNotFound("User vanished after creation.")
        logger.info("Created user %s with role %s", created.id, created.role.value)
        return created

    def _issue_pair(self, user_id: int) -> TokenPair:
        return TokenPair(
            user_id=user_id,
            access_token=self.tokens.issue(TokenKind.ACCESS, user_id),
            refresh_token=self.tokens.issue(TokenKind.REFRESH, user_id),
        )

    def _notify(self, enqueue, *args) -> None:
        # The queue rejects work only once it is shutting down.
        try:
            enqueue(*args)
        except RuntimeError:
            logger.exception("Could not queue notification")
