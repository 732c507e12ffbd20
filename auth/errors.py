"""
auth/errors.py -- Typed failures raised by the authentication engine.

Every engine operation either returns a result or raises one of these. The
message is always safe to show to the caller; the reason that distinguishes,
say, an expired token from an unknown one goes to the log, not the message.

Persistence errors (sqlalchemy.exc.*) are deliberately NOT wrapped. They are
infrastructure failures and propagate unchanged so the transport layer can
report them separately from domain failures.

Layer rule: stdlib only.
"""

from __future__ import annotations


class AuthEngineError(Exception):
    """Base class for every domain failure raised by auth/."""

    default_message = "Request failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AuthEngineError):
    """Malformed input. The message names the offending field and is safe to show."""

    default_message = "Invalid input."


class ConflictError(AuthEngineError):
    """The email address is already registered."""

    default_message = "An account with that email already exists."


class AuthError(AuthEngineError):
    """Bad credentials, an invalid or expired bearer token, or an unverified email.

    Messages stay generic so that responses do not reveal which accounts exist.
    """

    default_message = "Authentication failed."


class ForbiddenError(AuthEngineError):
    """Authenticated, but not allowed to perform the operation."""

    default_message = "You do not have permission to perform this action."


class TokenError(AuthEngineError):
    """An email-verification or password-reset token is unknown, expired or already used."""

    default_message = "Invalid or expired token."


class ReuseDetectedError(AuthEngineError):
    """A superseded refresh token was presented again; its session has been revoked.

    Not a subclass of AuthError: callers and log sinks must be able to tell a
    probable token theft apart from an ordinary authentication failure.
    """

    default_message = "Refresh token reuse detected. Please sign in again."


class NotFoundError(AuthEngineError):
    """An admin lookup by id found nothing."""

    default_message = "Not found."
