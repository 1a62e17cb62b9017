"""
mail/queue.py -- Fire-and-forget email dispatch with bounded retries.

Login, registration and password reset must never wait on the mail provider,
and a failed welcome email must never roll back an account or a session.
EmailQueue hands each job to a small thread pool and returns immediately.
The worker retries a failing job up to max_attempts times with exponential
backoff (backoff_seconds * 2 ** (attempt - 1): 2 s, 4 s with the defaults),
then logs the final failure and drops the job.

Jobs live in process memory only; anything still queued at shutdown is
drained by close(), anything queued when the process dies is lost.

Usage:
    queue = EmailQueue(MailService(settings), max_attempts=3, backoff_seconds=2.0)
    queue.add_welcome_email("ana@example.com", "Ana")
    ...
    queue.close()
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor

from core.errors import MailDeliveryError
from mail.service import MailService, redact_email

logger = logging.getLogger("shopgate.mail.queue")


class EmailQueue:
    def __init__(
        self,
        mail: MailService,
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        workers: int = 2,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._mail = mail
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="email")

    # ------------------------------------------------------------------
    # Job types
    # ------------------------------------------------------------------

    def add_welcome_email(self, to: str, username: str) -> Future:
        return self._submit("welcome-email", to, lambda: self._mail.send_welcome_email(to, username))

    def add_password_reset_email(self, to: str, username: str, reset_link: str) -> Future:
        return self._submit(
            "password-reset-email",
            to,
            lambda: self._mail.send_password_reset_email(to, username, reset_link),
        )

    def add_password_changed_email(self, to: str, username: str) -> Future:
        return self._submit(
            "password-changed-email",
            to,
            lambda: self._mail.send_password_changed_email(to, username),
        )

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _submit(self, job_name: str, to: str, send: Callable[[], None]) -> Future:
        logger.debug("Queued %s for %s", job_name, redact_email(to))
        future = self._executor.submit(self._deliver, job_name, to, send)
        future.add_done_callback(_log_crash)
        return future

    def _deliver(self, job_name: str, to: str, send: Callable[[], None]) -> bool:
        """Run one job with retries. Returns True on delivery, False when dropped."""
        for attempt in range(1, self.max_attempts + 1):
            try:
                send()
                return True
            except MailDeliveryError as exc:
                if attempt == self.max_attempts:
                    logger.error(
                        "Dropping %s for %s after %d attempts: %s",
                        job_name,
                        redact_email(to),
                        attempt,
                        exc,
                    )
                    return False
                delay = self.backoff_seconds * 2 ** (attempt - 1)
                logger.warning(
                    "%s for %s failed (attempt %d/%d), retrying in %.1fs",
                    job_name,
                    redact_email(to),
                    attempt,
                    self.max_attempts,
                    delay,
                )
                self._sleep(delay)
        return False

    def close(self) -> None:
        """Wait for queued jobs to finish and stop the workers."""
        self._executor.shutdown(wait=True)


def _log_crash(future: Future) -> None:
    # Anything other than MailDeliveryError (e.g. a missing template) is a bug.
    exc = future.exception()
    if exc is not None:
        logger.error("Email job crashed", exc_info=exc)
