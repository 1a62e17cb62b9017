"""
mail/service.py -- Transactional email over the Mailjet v3.1 send API.

Templates are Jinja2 files in mail/templates/ with HTML autoescaping, so a
user-controlled first name can never inject markup into a message.

When Mailjet credentials are not configured (local development) messages are
logged with a redacted recipient instead of being sent.

Delivery failures raise MailDeliveryError. Callers never call MailService
directly from a request path -- they enqueue through mail.queue.EmailQueue,
which owns the retry policy.
"""

from __future__ import annotations

import logging
from pathlib import Path

import requests
from jinja2 import Environment, FileSystemLoader, select_autoescape

from core.config import Settings
from core.errors import MailDeliveryError

logger = logging.getLogger("shopgate.mail")

MAILJET_SEND_URL = "https://api.mailjet.com/v3.1/send"

_templates = Environment(
    loader=FileSystemLoader(str(Path(__file__).parent / "templates")),
    autoescape=select_autoescape(["html"]),
)


def redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


def render(template_name: str, **context) -> str:
    return _templates.get_template(f"{template_name}.html").render(**context)


class MailService:
    """Renders and sends the three account emails."""

    def __init__(self, settings: Settings, session: requests.Session | None = None) -> None:
        self._api_key = settings.mailjet_api_key
        self._api_secret = settings.mailjet_secret_key
        self._from_email = settings.mail_from
        self._from_name = settings.mail_from_name
        self._reset_expires_minutes = max(1, settings.reset_token_expire_seconds // 60)
        self._session = session or requests.Session()

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key and self._api_secret and self._from_email)

    def send_welcome_email(self, to: str, username: str) -> None:
        html = render("welcome", username=username)
        self._send(to, "Welcome to our platform", html)

    def send_password_reset_email(self, to: str, username: str, reset_link: str) -> None:
        html = render(
            "forgot-password",
            username=username,
            reset_link=reset_link,
            expires_minutes=self._reset_expires_minutes,
        )
        self._send(to, "Reset your password", html)

    def send_password_changed_email(self, to: str, username: str) -> None:
        html = render("password-changed", username=username)
        self._send(to, "Your password has been changed", html)

    def _send(self, to: str, subject: str, html: str) -> None:
        if not self.is_configured:
            logger.info("Mail not configured; would send %r to %s", subject, redact_email(to))
            return

        body = {
            "Messages": [
                {
                    "From": {"Email": self._from_email, "Name": self._from_name},
                    "To": [{"Email": to}],
                    "Subject": subject,
                    "HTMLPart": html,
                }
            ]
        }
        try:
            resp = self._session.post(
                MAILJET_SEND_URL,
                json=body,
                auth=(self._api_key, self._api_secret),
                timeout=10,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise MailDeliveryError(f"Mailjet send failed for {redact_email(to)}: {exc}") from exc
        logger.info("Sent %r to %s", subject, redact_email(to))
