"""
auth/oauth.py -- Authlib Google OAuth/OIDC configuration.

Reads configuration from core.config.get_settings() at module load. Google is
registered only when both client ID and secret are configured; the auth
routes answer 404 for the Google endpoints otherwise.

Security notes:
  [H1] Email verification is mandatory. extract_google_identity() raises
       ValueError if Google does not confirm the email is verified. An
       unverified address could belong to someone who never proved ownership,
       and the email is the key that links to an existing account.

  OAuth state parameter (CSRF protection) is handled by authlib automatically
  via Starlette SessionMiddleware. The session stores the state between the
  authorization redirect and the callback.

Layer rule: no imports from api/, mail/, or storage/. Import from core/ is
allowed -- core/ is the kernel layer.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuth

from auth.models import ExternalIdentity
from core.config import get_settings

logger = logging.getLogger("shopgate.auth.oauth")

GOOGLE_DISCOVERY_URL = "https://accounts.google.com/.well-known/openid-configuration"

# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------

oauth = OAuth()

_cfg = get_settings()

if _cfg.google_configured:
    oauth.register(
        name="google",
        client_id=_cfg.google_client_id,
        client_secret=_cfg.google_client_secret,
        server_metadata_url=GOOGLE_DISCOVERY_URL,
        client_kwargs={"scope": "openid email profile"},
    )
    logger.info("Google OAuth provider registered")


# ---------------------------------------------------------------------------
# Identity extraction [H1]
# ---------------------------------------------------------------------------


def extract_google_identity(token: dict) -> ExternalIdentity:
    """Build an ExternalIdentity from the token dict authlib returns after code exchange.

    Google's id_token claims carry email, email_verified, given_name,
    family_name and picture. Only given_name is optional beyond the email:
    when Google omits it, the local part of the email stands in.

    Raises:
        ValueError: no userinfo, no email, or an unverified email.
    """
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError("google OAuth: no userinfo in token response")

    if not userinfo.get("email_verified", False):
        raise ValueError(
            "google OAuth: email is not verified. "
            "The provider must confirm email ownership before login is allowed."
        )

    email = userinfo.get("email")
    if not email:
        raise ValueError("google OAuth: missing email claim in userinfo")

    return ExternalIdentity(
        email=email,
        first_name=userinfo.get("given_name") or email.split("@", 1)[0],
        last_name=userinfo.get("family_name") or "",
        avatar_url=userinfo.get("picture"),
    )
