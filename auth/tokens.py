"""
auth/tokens.py -- Access / refresh token issuance, validation and rotation.

Security design decisions:
  JWT: python-jose with HS256. Every token carries a "kid" header naming the
       key that signed it. KeyRing signs with the active key and verifies
       against the active key plus any previous keys still configured, so a
       key rotation does not log everybody out. An unknown kid is rejected.

  Token types: a "typ" claim ("access" | "refresh") is checked on every
       verification, so a refresh token is never accepted where an access
       token is expected, or the other way round.

  Expiry: python-jose's own exp check is switched off and expiry is compared
       against the injected Clock, the same clock that stamps sessions.

  Access tokens are stateless. verify_access_token() never touches storage,
       so an access token keeps working after its session is revoked until
       its own short expiry (ACCESS_TOKEN_TTL_SECONDS, 15 minutes by default).
       That window is the price of a storage-free hot path.

  Refresh tokens are bound to a Session row and its rotation counter. A
       refresh token is valid only while the counter inside it equals the
       stored counter. rotate_refresh_token() advances the counter with a
       conditional update, so of two concurrent rotations exactly one wins.
       Presenting a token whose counter no longer matches means a superseded
       token is being replayed: the whole session is revoked and
       ReuseDetectedError is raised. A stolen refresh token is therefore
       good for at most one rotation before the legitimate client's next
       refresh exposes it.

  Session lifetime is absolute: rotated refresh tokens expire when the
       session does, not REFRESH_TOKEN_TTL_SECONDS after the rotation.

Layer rule: no imports from api/ or core/. Keys and lifetimes are passed in.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import NoReturn

from jose import JWTError, jwt

from auth.clock import Clock, system_clock
from auth.errors import AuthError, ReuseDetectedError
from auth.models import TOKEN_TYPE_ACCESS, TOKEN_TYPE_REFRESH, Claims, DeviceMeta, Session, TokenPair, User
from auth.store import CredentialStore

logger = logging.getLogger("authgate.auth.tokens")

_ALGORITHM = "HS256"
_MIN_KEY_LENGTH = 32

INVALID_TOKEN = "Invalid or expired token."
SESSION_ENDED = "Session is no longer valid. Please sign in again."


# ---------------------------------------------------------------------------
# Key ring
# ---------------------------------------------------------------------------


class KeyRing:
    """The signing key plus every key whose signatures are still accepted."""

    def __init__(self, active_kid: str, keys: dict[str, str]) -> None:
        if active_kid not in keys:
            raise ValueError(f"active key {active_kid!r} missing from key ring")
        for kid, key in keys.items():
            if len(key) < _MIN_KEY_LENGTH:
                raise ValueError(f"key {kid!r} must be at least {_MIN_KEY_LENGTH} characters")
        self.active_kid = active_kid
        self._keys = dict(keys)

    def sign(self, payload: dict) -> str:
        return jwt.encode(payload, self._keys[self.active_kid], algorithm=_ALGORITHM, headers={"kid": self.active_kid})

    def verify(self, token: str) -> dict:
        """Check the signature against the key named by the token's kid header.

        Raises JWTError for malformed tokens, unknown kids and bad signatures.
        Does not check expiry.
        """
        kid = jwt.get_unverified_header(token).get("kid")
        key = self._keys.get(kid) if isinstance(kid, str) else None
        if key is None:
            raise JWTError(f"unknown key id {kid!r}")
        return jwt.decode(token, key, algorithms=[_ALGORITHM], options={"verify_exp": False})


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _timestamp(value: datetime) -> int:
    return int(value.timestamp())


def _from_timestamp(value) -> datetime:
    return datetime.fromtimestamp(int(value), timezone.utc)


def _claims_from_payload(payload: dict) -> Claims:
    return Claims(
        token_type=payload["typ"],
        user_id=str(payload["sub"]),
        session_id=str(payload["sid"]),
        counter=int(payload["ctr"]),
        issued_at=_from_timestamp(payload["iat"]),
        expires_at=_from_timestamp(payload["exp"]),
        role=payload.get("role"),
        family_id=payload.get("fam"),
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class TokenService:
    """Mints and validates token pairs and owns the session revocation protocol."""

    def __init__(
        self,
        store: CredentialStore,
        keys: KeyRing,
        *,
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=14),
        clock: Clock = system_clock,
    ) -> None:
        if refresh_ttl <= access_ttl:
            raise ValueError("refresh tokens must outlive access tokens")
        self.store = store
        self.keys = keys
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.clock = clock

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def issue_token_pair(self, user: User, device: DeviceMeta | None = None) -> TokenPair:
        """Open a new session (counter 0) for the user and sign a pair bound to it."""
        device = device or DeviceMeta()
        now = self.clock()
        session = Session(
            id=str(uuid.uuid4()),
            user_id=user.id,
            family_id=str(uuid.uuid4()),
            issued_at=now,
            expires_at=now + self.refresh_ttl,
            counter=0,
            ip_address=device.ip_address,
            user_agent=(device.user_agent or "")[:512] or None,
        )
        self.store.create_session(session)
        logger.info("Session %s opened for user %s", session.id, user.id)
        return self._mint(user, session, 0, now)

    def _mint(self, user: User, session: Session, counter: int, now: datetime) -> TokenPair:
        access_token = self.keys.sign(
            {
                "typ": TOKEN_TYPE_ACCESS,
                "sub": user.id,
                "role": user.role_name,
                "sid": session.id,
                "ctr": counter,
                "iat": _timestamp(now),
                "exp": _timestamp(now + self.access_ttl),
                "jti": uuid.uuid4().hex,
            }
        )
        refresh_token = self.keys.sign(
            {
                "typ": TOKEN_TYPE_REFRESH,
                "sub": user.id,
                "sid": session.id,
                "fam": session.family_id,
                "ctr": counter,
                "iat": _timestamp(now),
                "exp": _timestamp(session.expires_at),
                "jti": uuid.uuid4().hex,
            }
        )
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=int(self.access_ttl.total_seconds()),
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def verify_access_token(self, token: str) -> Claims:
        """Check signature, type and expiry. Never reads storage."""
        return self._verify(token, TOKEN_TYPE_ACCESS)

    def verify_refresh_token(self, token: str) -> Claims:
        """Check signature, type and expiry. Session state is checked by rotate_refresh_token()."""
        return self._verify(token, TOKEN_TYPE_REFRESH)

    def _verify(self, token: str, expected_type: str) -> Claims:
        if not token or not isinstance(token, str):
            raise AuthError(INVALID_TOKEN)
        try:
            payload = self.keys.verify(token)
        except JWTError as exc:
            logger.info("Rejected %s token: %s", expected_type, exc)
            raise AuthError(INVALID_TOKEN) from exc
        if payload.get("typ") != expected_type:
            logger.info("Rejected %s token: wrong type %r", expected_type, payload.get("typ"))
            raise AuthError(INVALID_TOKEN)
        try:
            claims = _claims_from_payload(payload)
        except (KeyError, TypeError, ValueError) as exc:
            logger.info("Rejected %s token: malformed claims", expected_type)
            raise AuthError(INVALID_TOKEN) from exc
        if claims.expires_at <= self.clock():
            logger.info("Rejected %s token for session %s: expired", expected_type, claims.session_id)
            raise AuthError(INVALID_TOKEN)
        return claims

    # ------------------------------------------------------------------
    # Rotation
    # ------------------------------------------------------------------

    def rotate_refresh_token(self, refresh_token: str) -> TokenPair:
        """Exchange a current refresh token for a new pair, advancing the session counter.

        Raises AuthError for invalid tokens and for revoked, expired or unknown
        sessions, and ReuseDetectedError (after revoking the session) when a
        superseded token is replayed or a concurrent rotation won the race.
        """
        claims = self.verify_refresh_token(refresh_token)
        now = self.clock()
        session = self.store.get_session(claims.session_id)
        if session is None or session.user_id != claims.user_id or session.family_id != claims.family_id:
            logger.info("Refresh rejected: unknown session %s", claims.session_id)
            raise AuthError(INVALID_TOKEN)
        if session.revoked:
            logger.info("Refresh rejected: session %s is revoked", session.id)
            raise AuthError(SESSION_ENDED)
        if session.is_expired(now):
            logger.info("Refresh rejected: session %s has expired", session.id)
            raise AuthError(SESSION_ENDED)
        if claims.counter != session.counter:
            self._reuse_detected(session, claims.counter, now)

        user = self.store.get_user(session.user_id)
        if user is None or not user.can_authenticate:
            logger.info("Refresh rejected: user %s can no longer sign in", session.user_id)
            raise AuthError(SESSION_ENDED)

        next_counter = session.counter + 1
        if not self.store.update_session_if_counter(session.id, session.counter, next_counter, now):
            current = self.store.get_session(session.id)
            if current is None or current.revoked:
                logger.info("Refresh rejected: session %s revoked during rotation", session.id)
                raise AuthError(SESSION_ENDED)
            self._reuse_detected(current, claims.counter, now)

        logger.debug("Session %s rotated to counter %d", session.id, next_counter)
        return self._mint(user, session, next_counter, now)

    def _reuse_detected(self, session: Session, presented_counter: int, now: datetime) -> NoReturn:
        self.store.revoke_session(session.id, now)
        logger.warning(
            "security: refresh token reuse on session %s (user %s, presented counter %d, current %d); session revoked",
            session.id,
            session.user_id,
            presented_counter,
            session.counter,
        )
        raise ReuseDetectedError()

    # ------------------------------------------------------------------
    # Revocation
    # ------------------------------------------------------------------

    def revoke_session(self, session_id: str) -> bool:
        revoked = self.store.revoke_session(session_id, self.clock())
        if revoked:
            logger.info("Session %s revoked", session_id)
        return revoked

    def revoke_all_sessions(self, user_id: str) -> int:
        count = self.store.revoke_all_sessions(user_id, self.clock())
        logger.info("Revoked %d session(s) for user %s", count, user_id)
        return count
