"""
core/errors.py -- Application error taxonomy.

Every expected, user-facing failure is an AppError subclass carrying its own
HTTP status and machine-readable code. api/main.py turns them into the JSON
error envelope (for /api/*) or the rendered error page (everything else).

is_operational separates failures the caller caused (bad input, bad token)
from failures of a collaborator (store, SMTP, Stripe). Only operational
errors show their message to the client; the rest are logged and replaced
with a generic message.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for errors that map to an HTTP response."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "Something went wrong."
    is_operational: bool = True

    def __init__(self, message: str | None = None, detail: str | None = None) -> None:
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class Unauthenticated(AppError):
    status_code = 401
    code = "unauthenticated"
    default_message = "You are not logged in! Please log in to get access."


class InvalidToken(AppError):
    status_code = 401
    code = "invalid_token"
    default_message = "Invalid token. Please log in again!"


class ExpiredToken(AppError):
    status_code = 401
    code = "expired_token"
    default_message = "Your token has expired! Please log in again."


class UnknownSubject(AppError):
    status_code = 401
    code = "unknown_subject"
    default_message = "The user belonging to this token no longer exists."


class StalePassword(AppError):
    status_code = 401
    code = "stale_password"
    default_message = "User recently changed password! Please log in again."


class AccountFrozen(AppError):
    status_code = 401
    code = "account_frozen"
    default_message = "Maximum login attempts reached. Your account has been frozen!"


class InvalidCredentials(AppError):
    status_code = 401
    code = "invalid_credentials"
    default_message = "Incorrect email or password."


class InvalidOrExpiredToken(AppError):
    status_code = 400
    code = "invalid_or_expired_token"
    default_message = "Token is invalid or has expired."


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class Forbidden(AppError):
    status_code = 403
    code = "forbidden"
    default_message = "You do not have permission to perform this action."


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------


class ValidationFailure(AppError):
    status_code = 400
    code = "validation_error"
    default_message = "Invalid input data."


class NotFound(AppError):
    status_code = 404
    code = "not_found"
    default_message = "No document found with that ID."


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


class DownstreamUnavailable(AppError):
    status_code = 503
    code = "downstream_unavailable"
    default_message = "A required service is unavailable. Try again later!"
    is_operational = False
