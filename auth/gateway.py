"""
auth/gateway.py -- The single entry point the transport layer calls.

AuthGateway composes CredentialVerifier, TokenService and RBACEngine into the
inbound operations: signup, login, refresh, logout, logout-all, the
verification and recovery flows, profile lookup, and authorization.

Protected operations go through an explicit two-step pipeline:

    authenticate(access_token) -> Claims     stateless signature/expiry check
    authorize(access_token, permission)      authenticate, load user, RBAC check

Nothing is attached to routes through metadata; api/ calls these methods
directly (see auth/dependencies.py).

Every method returns plain data or raises an auth.errors type. No method
retries anything.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from auth.clock import Clock, system_clock
from auth.credentials import CredentialVerifier
from auth.errors import AuthError, NotFoundError
from auth.models import Claims, Decision, DeviceMeta, LoginResult, PublicUser, TokenPair
from auth.rbac import RBACEngine
from auth.store import CredentialStore
from auth.tokens import TokenService

logger = logging.getLogger("authgate.auth.gateway")

EMAIL_NOT_VERIFIED = "Email address has not been verified."


class AuthGateway:
    def __init__(
        self,
        store: CredentialStore,
        credentials: CredentialVerifier,
        tokens: TokenService,
        rbac: RBACEngine,
        clock: Clock = system_clock,
    ) -> None:
        self.store = store
        self.credentials = credentials
        self.tokens = tokens
        self.rbac = rbac
        self.clock = clock

    # ------------------------------------------------------------------
    # Account lifecycle
    # ------------------------------------------------------------------

    def signup(self, email: str, password: str, name: str) -> PublicUser:
        return PublicUser.from_user(self.credentials.signup(email, password, name))

    def verify_email(self, raw_token: str) -> PublicUser:
        return PublicUser.from_user(self.credentials.verify_email(raw_token))

    def resend_verification(self, email: str) -> None:
        self.credentials.resend_verification(email)

    def forgot_password(self, email: str) -> None:
        self.credentials.forgot_password(email)

    def reset_password(self, raw_token: str, new_password: str) -> None:
        self.credentials.reset_password(raw_token, new_password)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def login(self, email: str, password: str, device: DeviceMeta | None = None) -> LoginResult:
        """Check credentials, open a session and return its first token pair.

        The "not verified" message is only reachable with the right password,
        so it does not reveal anything about accounts the caller cannot
        already sign in to.
        """
        user = self.credentials.authenticate(email, password)
        if not user.is_email_verified:
            logger.info("Login rejected for user %s: email not verified", user.id)
            raise AuthError(EMAIL_NOT_VERIFIED)
        tokens = self.tokens.issue_token_pair(user, device)
        now = self.clock()
        self.store.update_last_login(user.id, now)
        user.last_login = now
        logger.info("User %s logged in", user.id)
        return LoginResult(tokens=tokens, user=PublicUser.from_user(user))

    def refresh(self, refresh_token: str) -> TokenPair:
        return self.tokens.rotate_refresh_token(refresh_token)

    def logout(self, access_token: str) -> None:
        """Revoke the session behind the access token.

        The access token itself stays valid until it expires; only refreshes
        stop working immediately.
        """
        claims = self.tokens.verify_access_token(access_token)
        self.tokens.revoke_session(claims.session_id)

    def logout_all(self, user_id: str) -> int:
        """Revoke every session of the user. Returns how many were live."""
        return self.tokens.revoke_all_sessions(user_id)

    # ------------------------------------------------------------------
    # Identity and authorization
    # ------------------------------------------------------------------

    def get_profile(self, user_id: str) -> PublicUser:
        user = self.store.get_user(user_id)
        if user is None or user.is_deleted:
            raise NotFoundError("User not found.")
        return PublicUser.from_user(user)

    def authenticate(self, access_token: str) -> Claims:
        return self.tokens.verify_access_token(access_token)

    def authorize(self, access_token: str, required_permission: str) -> Decision:
        claims = self.authenticate(access_token)
        return self.rbac.authorize(self.store.get_user(claims.user_id), required_permission)

    def authorize_roles(self, access_token: str, role_names: Iterable[str]) -> Decision:
        claims = self.authenticate(access_token)
        return self.rbac.authorize_any(self.store.get_user(claims.user_id), role_names)
