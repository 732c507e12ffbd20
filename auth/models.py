"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic beyond trivial
projections). Stores and services do the work.

Secrets never leave the engine through these types: PublicUser is the only
user shape handed to the transport layer, and it has no hash fields.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

PURPOSE_EMAIL_VERIFY = "email-verify"
PURPOSE_PASSWORD_RESET = "password-reset"

TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_REFRESH = "refresh"


@dataclass(frozen=True)
class Permission:
    """A single grant, named "resource:action" (e.g. "user:read"). Hashable."""

    name: str
    resource: str
    action: str
    id: int | None = None
    description: str | None = None


@dataclass
class Role:
    """A flat set of permissions. System roles are protected from deletion."""

    name: str
    id: int | None = None
    description: str | None = None
    is_system: bool = False
    permissions: set[str] = field(default_factory=set)


@dataclass
class User:
    """An account. email is stored lower-cased and is unique.

    deleted_at is None while the account is alive. A soft-deleted user fails
    every authentication attempt; rows are never hard-deleted.
    role_name is filled in by the store from the roles table.
    """

    email: str
    hashed_password: str
    name: str
    role_id: int | None = None
    role_name: str | None = None
    id: str | None = None
    is_email_verified: bool = False
    is_active: bool = True
    two_factor_enabled: bool = False
    deleted_at: datetime | None = None
    last_login: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def can_authenticate(self) -> bool:
        return self.is_active and not self.is_deleted


@dataclass
class PublicUser:
    """The projection of a User that may cross the engine boundary."""

    id: str
    email: str
    name: str
    role: str | None
    is_email_verified: bool
    is_active: bool
    two_factor_enabled: bool
    last_login: datetime | None = None
    created_at: datetime | None = None

    @classmethod
    def from_user(cls, user: User) -> PublicUser:
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role_name,
            is_email_verified=user.is_email_verified,
            is_active=user.is_active,
            two_factor_enabled=user.two_factor_enabled,
            last_login=user.last_login,
            created_at=user.created_at,
        )


@dataclass
class DeviceMeta:
    """Where a login came from. Both fields are informational only."""

    ip_address: str | None = None
    user_agent: str | None = None


@dataclass
class Session:
    """Server-held record backing one refresh-token family.

    counter is the rotation counter: a refresh token is valid only while the
    counter embedded in it equals this value. Rotation bumps it in place.
    Revoked and expired are terminal states.
    """

    id: str
    user_id: str
    family_id: str
    issued_at: datetime
    expires_at: datetime
    counter: int = 0
    revoked: bool = False
    revoked_at: datetime | None = None
    last_used_at: datetime | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass
class OneTimeToken:
    """An email-verification or password-reset token.

    Only the HMAC of the raw value is stored. consumed_at is stamped exactly
    once; a consumed or expired token is dead.
    """

    user_id: str
    purpose: str  # PURPOSE_EMAIL_VERIFY or PURPOSE_PASSWORD_RESET
    token_hash: str
    expires_at: datetime
    id: int | None = None
    consumed_at: datetime | None = None
    created_at: datetime | None = None


@dataclass
class Claims:
    """Verified contents of an access or refresh token."""

    token_type: str
    user_id: str
    session_id: str
    counter: int
    issued_at: datetime
    expires_at: datetime
    role: str | None = None  # access tokens only
    family_id: str | None = None  # refresh tokens only


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime in seconds
    token_type: str = "bearer"


@dataclass
class LoginResult:
    tokens: TokenPair
    user: PublicUser


@dataclass
class Decision:
    """A positive authorization decision. Denials are raised as ForbiddenError."""

    user_id: str
    role: str | None
    granted: str  # the permission or role that satisfied the check


@dataclass
class UserPage:
    """One page of an admin user listing."""

    users: list[PublicUser]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1
