"""
auth/credentials.py -- Credential verification and the one-time token workflows.

CredentialVerifier owns everything that starts from something the user knows
or received by mail: signup, password checks, email verification, resending
the verification mail, and the forgot/reset password pair.

Security design decisions:
  One-time tokens: secrets.token_urlsafe(32) gives 256 bits of entropy. Only
       HMAC-SHA256(token_secret, raw) is stored, so a copy of the database is
       not a set of usable links. The hash is deterministic, which makes the
       lookup a single indexed read.

  Failure reporting: unknown, consumed and expired tokens all raise the same
       TokenError. The reason is logged so operators can tell them apart.

  Enumeration: resend_verification() and forgot_password() return normally
       whether or not the account exists, is verified or is active.
       authenticate() runs bcrypt against a dummy hash for unknown emails so
       response time does not reveal which addresses are registered.

  Mail: delivery failures are logged with traceback and never fail the
       request; the token is already stored and can be resent.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
import secrets
from collections.abc import Callable
from datetime import timedelta

from sqlalchemy.exc import IntegrityError

from auth.clock import Clock, system_clock
from auth.errors import AuthError, ConflictError, TokenError, ValidationError
from auth.mailer import Mailer
from auth.models import PURPOSE_EMAIL_VERIFY, PURPOSE_PASSWORD_RESET, OneTimeToken, User
from auth.passwords import PasswordHasher, validate_password
from auth.store import CredentialStore

logger = logging.getLogger("authgate.auth.credentials")

INVALID_CREDENTIALS = "Invalid email or password."

MAX_EMAIL_LENGTH = 254
MAX_NAME_LENGTH = 100
MAX_RESET_TTL = timedelta(hours=1)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


# ---------------------------------------------------------------------------
# Input normalization
# ---------------------------------------------------------------------------


def normalize_email(email: str) -> str:
    """Trim and lower-case an email address, raising ValidationError if malformed."""
    value = (email or "").strip().lower()
    if not value or len(value) > MAX_EMAIL_LENGTH or not _EMAIL_RE.match(value):
        raise ValidationError("Please provide a valid email address.")
    return value


def normalize_name(name: str) -> str:
    value = (name or "").strip()
    if not value:
        raise ValidationError("Name must not be empty.")
    if len(value) > MAX_NAME_LENGTH:
        raise ValidationError(f"Name must not exceed {MAX_NAME_LENGTH} characters.")
    return value


# ---------------------------------------------------------------------------
# Verifier
# ---------------------------------------------------------------------------


class CredentialVerifier:
    """Signup, password authentication and the verification / reset token flows."""

    def __init__(
        self,
        store: CredentialStore,
        hasher: PasswordHasher,
        mailer: Mailer,
        token_secret: str,
        *,
        default_role: str = "user",
        verification_ttl: timedelta = timedelta(hours=24),
        reset_ttl: timedelta = timedelta(hours=1),
        clock: Clock = system_clock,
    ) -> None:
        if not token_secret:
            raise ValueError("token_secret is required")
        if reset_ttl > MAX_RESET_TTL:
            raise ValueError("password reset tokens may live at most one hour")
        self.store = store
        self.hasher = hasher
        self.mailer = mailer
        self._token_secret = token_secret.encode("utf-8")
        self.default_role = default_role
        self.verification_ttl = verification_ttl
        self.reset_ttl = reset_ttl
        self.clock = clock

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def hash_password(self, plain: str) -> str:
        return self.hasher.hash(plain)

    def verify_password(self, plain: str, hashed: str) -> bool:
        return self.hasher.verify(plain, hashed)

    def authenticate(self, email: str, password: str) -> User:
        """Return the user if the password matches and the account may sign in.

        Raises AuthError with one generic message for unknown email, wrong
        password, inactive and soft-deleted accounts. Always runs exactly one
        bcrypt check.
        """
        try:
            user = self.store.get_user_by_email(normalize_email(email))
        except ValidationError:
            user = None
        if user is None:
            self.hasher.burn(password)
            logger.info("Login rejected: unknown email")
            raise AuthError(INVALID_CREDENTIALS)
        if not self.hasher.verify(password, user.hashed_password):
            logger.info("Login rejected for user %s: wrong password", user.id)
            raise AuthError(INVALID_CREDENTIALS)
        if not user.can_authenticate:
            logger.info("Login rejected for user %s: account inactive or deleted", user.id)
            raise AuthError(INVALID_CREDENTIALS)
        return user

    # ------------------------------------------------------------------
    # Signup and email verification
    # ------------------------------------------------------------------

    def signup(self, email: str, password: str, name: str) -> User:
        """Create an unverified user plus its verification token and mail the link.

        Raises ValidationError for malformed input or a weak password and
        ConflictError if the email is already registered (any letter case).
        """
        email = normalize_email(email)
        name = normalize_name(name)
        validate_password(password)
        if self.store.get_user_by_email(email) is not None:
            raise ConflictError()

        role = self.store.get_role_by_name(self.default_role)
        if role is None:
            raise RuntimeError(f"Default role {self.default_role!r} has not been seeded")

        raw_token, token = self._new_token(PURPOSE_EMAIL_VERIFY, self.verification_ttl)
        user = User(email=email, hashed_password=self.hasher.hash(password), name=name, role_id=role.id)
        try:
            user_id = self.store.create_user(user, token)
        except IntegrityError as exc:
            # Lost a race with a concurrent signup for the same address.
            raise ConflictError() from exc

        created = self.store.get_user(user_id)
        logger.info("User %s signed up", user_id)
        self._deliver(self.mailer.send_verification_email, created, raw_token)
        return created

    def verify_email(self, raw_token: str) -> User:
        """Consume a verification token and mark the owner's email verified.

        Single use: a second call with the same token raises TokenError.
        """
        token = self._live_token(raw_token, PURPOSE_EMAIL_VERIFY)
        user = self.store.get_user(token.user_id)
        if user is None or user.is_deleted:
            logger.info("Verification token %s rejected: owner gone", token.id)
            raise TokenError()
        if not self.store.consume_verification_token(token.id, user.id, self.clock()):
            logger.info("Verification token %s rejected: consumed concurrently", token.id)
            raise TokenError()
        logger.info("Email verified for user %s", user.id)
        return self.store.get_user(user.id)

    def resend_verification(self, email: str) -> None:
        """Replace any live verification token with a new one and mail it.

        Returns normally whether or not anything was sent.
        """
        user = self.store.get_user_by_email(normalize_email(email))
        if user is None or not user.can_authenticate or user.is_email_verified:
            logger.info("Verification resend skipped: no eligible account")
            return
        raw_token, token = self._new_token(PURPOSE_EMAIL_VERIFY, self.verification_ttl, user.id)
        self.store.replace_one_time_token(token)
        self._deliver(self.mailer.send_verification_email, user, raw_token)

    # ------------------------------------------------------------------
    # Password recovery
    # ------------------------------------------------------------------

    def forgot_password(self, email: str) -> None:
        """Issue a short-lived reset token and mail it. Returns normally either way."""
        user = self.store.get_user_by_email(normalize_email(email))
        if user is None or not user.can_authenticate:
            logger.info("Password reset skipped: no eligible account")
            return
        raw_token, token = self._new_token(PURPOSE_PASSWORD_RESET, self.reset_ttl, user.id)
        self.store.replace_one_time_token(token)
        self._deliver(self.mailer.send_password_reset_email, user, raw_token)

    def reset_password(self, raw_token: str, new_password: str) -> User:
        """Set a new password from a reset token.

        Consuming the token, replacing the hash and revoking every session of
        the user happen in one transaction.
        """
        validate_password(new_password)
        token = self._live_token(raw_token, PURPOSE_PASSWORD_RESET)
        user = self.store.get_user(token.user_id)
        if user is None or not user.can_authenticate:
            logger.info("Reset token %s rejected: owner inactive or gone", token.id)
            raise TokenError()
        hashed = self.hasher.hash(new_password)
        if not self.store.consume_reset_token(token.id, user.id, hashed, self.clock()):
            logger.info("Reset token %s rejected: consumed concurrently", token.id)
            raise TokenError()
        logger.info("Password reset for user %s; all sessions revoked", user.id)
        return self.store.get_user(user.id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def hash_token(self, raw_token: str) -> str:
        """HMAC-SHA256(token_secret, raw_token) as hex."""
        return hmac.new(self._token_secret, raw_token.encode("utf-8"), hashlib.sha256).hexdigest()

    def _new_token(self, purpose: str, ttl: timedelta, user_id: str = "") -> tuple[str, OneTimeToken]:
        raw_token = secrets.token_urlsafe(32)
        token = OneTimeToken(
            user_id=user_id,
            purpose=purpose,
            token_hash=self.hash_token(raw_token),
            expires_at=self.clock() + ttl,
        )
        return raw_token, token

    def _live_token(self, raw_token: str, purpose: str) -> OneTimeToken:
        if not raw_token:
            raise TokenError()
        token = self.store.get_one_time_token(self.hash_token(raw_token))
        if token is None or token.purpose != purpose:
            logger.info("%s token rejected: unknown", purpose)
            raise TokenError()
        if token.consumed_at is not None:
            logger.info("%s token %s rejected: already consumed", purpose, token.id)
            raise TokenError()
        if token.expires_at <= self.clock():
            logger.info("%s token %s rejected: expired", purpose, token.id)
            raise TokenError()
        return token

    def _deliver(self, send: Callable[[User, str], None], user: User, raw_token: str) -> None:
        try:
            send(user, raw_token)
        except Exception:
            logger.exception("Mail delivery failed for user %s", user.id)
