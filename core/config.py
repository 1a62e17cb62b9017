"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for shopgate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. access_token_secret -> ACCESS_TOKEN_SECRET).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Dev mode (DEBUG=true) generates missing secrets with a warning;
      production mode refuses to start without them.

Security notes:
  [M6] Secrets shorter than 32 chars are rejected outright. HMAC-SHA256 and
       JWT signing both rely on key entropy.

  [M7] Outside debug mode a missing secret is a hard startup failure.

  [T1] The access, refresh and reset secrets must differ from each other. The
       token service also stamps a kind claim, but distinct keys mean a token of
       one kind can never even pass signature verification as another kind.

  [M8] SECURE_COOKIES defaults to "not DEBUG", so a production deployment
       never sends token cookies without the Secure flag unless told to.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
mail/, or storage/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("shopgate.config")

_SECRET_FIELDS = ("secret_key", "access_token_secret", "refresh_token_secret", "reset_token_secret")
_TOKEN_SECRET_FIELDS = ("access_token_secret", "refresh_token_secret", "reset_token_secret")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (with DEBUG=true).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = "sqlite:///./shopgate.db"
    cors_origins: list[str] = ["http://localhost:3000"]
    allowed_hosts: list[str] = ["*"]

    # Signs the OAuth state session cookie and keys the refresh-token HMAC.
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Tokens -- one secret and lifetime per kind
    # ------------------------------------------------------------------

    access_token_secret: str = ""
    refresh_token_secret: str = ""
    reset_token_secret: str = ""
    access_token_expire_seconds: int = 15 * 60
    refresh_token_expire_seconds: int = 7 * 24 * 60 * 60
    reset_token_expire_seconds: int = 15 * 60

    # Unset means "on outside debug mode"; an explicit SECURE_COOKIES wins.
    secure_cookies: bool | None = None
    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    # Login uses the in-process sliding window in auth/ratelimit.py.
    login_rate_limit_attempts: int = 5
    login_rate_limit_window_seconds: int = 15 * 60
    # Other public endpoints use the shared slowapi limiter.
    register_rate_limit: str = "20/minute"
    forgot_password_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    frontend_url: str = "http://localhost:5000"
    reset_password_url: str = "https://localhost:5050/reset-password"

    # ------------------------------------------------------------------
    # Google OAuth (optional -- empty string means provider is disabled)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""

    # ------------------------------------------------------------------
    # Object storage (S3 or an S3-compatible edge store)
    # ------------------------------------------------------------------

    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""
    aws_region: str = ""
    aws_s3_bucket_name: str = ""
    aws_s3_public_bucket: str = ""
    aws_s3_private_bucket: str = ""
    aws_s3_endpoint: str = ""
    aws_s3_public_domain: str = ""
    storage_connect_timeout_seconds: float = 5.0
    storage_read_timeout_seconds: float = 30.0
    storage_max_attempts: int = 3

    # ------------------------------------------------------------------
    # Mail (Mailjet)
    # ------------------------------------------------------------------

    mailjet_api_key: str = ""
    mailjet_secret_key: str = ""
    mail_from: str = ""
    mail_from_name: str = "Shopgate"
    mail_max_attempts: int = 3
    mail_backoff_seconds: float = 2.0
    mail_workers: int = 2

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def public_bucket(self) -> str:
        return self.aws_s3_public_bucket or self.aws_s3_bucket_name

    @property
    def private_bucket(self) -> str:
        return self.aws_s3_private_bucket or self.aws_s3_bucket_name

    @property
    def storage_configured(self) -> bool:
        return bool(
            self.public_bucket
            and self.private_bucket
            and self.aws_region
            and self.aws_access_key_id
            and self.aws_secret_access_key
        )

    @property
    def google_configured(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the secret policy [M6] [M7] [T1].

        Dev mode (DEBUG=true): auto-generate each missing secret with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if any secret is missing.
        """
        for name in _SECRET_FIELDS:
            value = getattr(self, name)
            if not value:
                if self.debug:
                    setattr(self, name, secrets.token_hex(32))
                    logger.warning(
                        "Using auto-generated %s. Sessions will not persist across restarts.", name.upper()
                    )
                else:
                    raise ValueError(
                        f"{name.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
            elif len(value) < 32:
                raise ValueError(f"{name.upper()} must be at least 32 characters.")

        token_secrets = [getattr(self, name) for name in _TOKEN_SECRET_FIELDS]
        if len(set(token_secrets)) != len(token_secrets):
            raise ValueError("ACCESS_TOKEN_SECRET, REFRESH_TOKEN_SECRET and RESET_TOKEN_SECRET must be distinct.")
        return self

    @model_validator(mode="after")
    def resolve_cookie_security(self) -> "Settings":
        """[M8] Token cookies carry the Secure flag everywhere but local development."""
        if self.secure_cookies is None:
            self.secure_cookies = not self.debug
        elif not self.secure_cookies and not self.debug:
            logger.warning("SECURE_COOKIES=false outside debug mode; token cookies will be sent over plain HTTP.")
        return self

    @model_validator(mode="after")
    def validate_limits(self) -> "Settings":
        if self.login_rate_limit_attempts < 1:
            raise ValueError("LOGIN_RATE_LIMIT_ATTEMPTS must be at least 1.")
        if self.login_rate_limit_window_seconds < 1:
            raise ValueError("LOGIN_RATE_LIMIT_WINDOW_SECONDS must be at least 1.")
        for name in ("access_token_expire_seconds", "refresh_token_expire_seconds", "reset_token_expire_seconds"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name.upper()} must be a positive number of seconds.")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        if self.mail_max_attempts < 1:
            raise ValueError("MAIL_MAX_ATTEMPTS must be at least 1.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
