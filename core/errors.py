"""
core/errors.py -- Error taxonomy shared by auth/, storage/, mail/ and api/.

Every error a request can terminate with is an AppError subclass carrying a
stable HTTP status and a machine-readable code. The API layer renders them
all through one exception handler into the ErrorResponse envelope, so route
handlers and services raise domain errors and never build HTTP responses.

Status mapping:
  401  unauthorized         Unauthorized, InvalidCredentials, InvalidRefreshToken
  401  invalid_token        InvalidToken, TokenExpired
  403  forbidden            Forbidden
  404  not_found            NotFound, UserNotFound
  409  user_exists          UserAlreadyExists
  429  rate_limited         TooManyRequests (carries retry_after seconds)
  503  storage_unavailable  StorageUnavailable

MailDeliveryError is internal to mail/: it drives the retry loop and is
never surfaced to a caller.

Layer rule: core/ is the kernel. No imports from other project packages.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for errors that terminate a request with a stable status."""

    status_code: int = 400
    code: str = "bad_request"
    message: str = "Bad request."

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        if message is not None:
            self.message = message
        self.detail = detail
        super().__init__(self.message)


class Unauthorized(AppError):
    status_code = 401
    code = "unauthorized"
    message = "Authentication required."


class InvalidCredentials(Unauthorized):
    """Wrong email or wrong password -- deliberately indistinguishable."""

    code = "bad_credentials"
    message = "Invalid email or password."


class InvalidRefreshToken(Unauthorized):
    code = "invalid_refresh_token"
    message = "Invalid refresh token."


class InvalidToken(AppError):
    """Malformed token, bad signature, or a token of the wrong kind."""

    status_code = 401
    code = "invalid_token"
    message = "Invalid or expired token."


class TokenExpired(InvalidToken):
    code = "token_expired"
    message = "Token has expired."


class Forbidden(AppError):
    status_code = 403
    code = "forbidden"
    message = "You do not have permission to perform this action."


class NotFound(AppError):
    status_code = 404
    code = "not_found"
    message = "Resource not found."


class UserNotFound(NotFound):
    message = "User not found."


class UserAlreadyExists(AppError):
    status_code = 409
    code = "user_exists"
    message = "A user with that email already exists."


class TooManyRequests(AppError):
    status_code = 429
    code = "rate_limited"

    def __init__(self, retry_after: int) -> None:
        self.retry_after = retry_after
        super().__init__(f"Too many attempts. Try again in {retry_after} seconds.")


class StorageUnavailable(AppError):
    status_code = 503
    code = "storage_unavailable"
    message = "Asset storage is unavailable."


class MailDeliveryError(Exception):
    """Raised by the mail sender when the provider rejects or is unreachable."""
