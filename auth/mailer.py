"""
auth/mailer.py -- Interface to the mail collaborator.

The engine only needs two messages: the email-verification link and the
password-reset link. Delivery belongs to whatever implements Mailer.
LoggingMailer is the default wiring in api/main.py; it records at INFO that a
message would be sent, and writes the link itself only at DEBUG.

Mail is fire-and-observe: CredentialVerifier catches and logs delivery
failures rather than failing the request, because the token already exists
and the user can ask for it to be resent.
"""

from __future__ import annotations

import logging
from typing import Protocol
from urllib.parse import urlencode

from auth.models import User

logger = logging.getLogger("authgate.auth.mailer")


class Mailer(Protocol):
    def send_verification_email(self, user: User, raw_token: str) -> None: ...

    def send_password_reset_email(self, user: User, raw_token: str) -> None: ...


def build_link(base_url: str, path: str, raw_token: str) -> str:
    """Return base_url + path with the token as a query parameter."""
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}?{urlencode({'token': raw_token})}"


class LoggingMailer:
    """Mailer that only logs. The link itself (which carries the raw token)
    is logged at DEBUG so a developer can complete the flow locally; run
    production at INFO or above, or plug in a real Mailer."""

    def __init__(self, public_base_url: str) -> None:
        self.public_base_url = public_base_url

    def send_verification_email(self, user: User, raw_token: str) -> None:
        logger.info("Verification email queued for user %s", user.id)
        logger.debug("Verification link: %s", build_link(self.public_base_url, "/verify-email", raw_token))

    def send_password_reset_email(self, user: User, raw_token: str) -> None:
        logger.info("Password reset email queued for user %s", user.id)
        logger.debug("Password reset link: %s", build_link(self.public_base_url, "/reset-password", raw_token))
