"""
API request and response models for AuthGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request models only bound sizes and shapes. Business rules (email format,
password policy, name length) are enforced by the engine and reported as
400 validation_error, so the rules live in one place.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import PublicUser, TokenPair, UserPage

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SortFieldEnum(str, Enum):
    name = "name"
    email = "email"
    created_at = "created_at"
    last_login = "last_login"


class SortOrderEnum(str, Enum):
    asc = "asc"
    desc = "desc"


# ---------------------------------------------------------------------------
# Request models -- authentication
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup."""

    email: str = Field(max_length=254)
    password: str = Field(max_length=128)
    name: str = Field(max_length=100)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    email: str = Field(max_length=254)
    password: str = Field(max_length=128)


class TokenRequest(BaseModel):
    """Request body for POST /api/v1/auth/verify-email."""

    token: str = Field(min_length=1, max_length=256)


class EmailRequest(BaseModel):
    """Request body for resend-verification and forgot-password."""

    email: str = Field(max_length=254)


class ResetPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/reset-password."""

    token: str = Field(min_length=1, max_length=256)
    password: str = Field(max_length=128)


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh-token."""

    refresh_token: str = Field(min_length=1, max_length=4096)


# ---------------------------------------------------------------------------
# Request models -- users
# ---------------------------------------------------------------------------


class ProfileUpdate(BaseModel):
    """Request body for PUT /api/v1/users/profile. Omitted fields are unchanged."""

    name: Optional[str] = Field(default=None, max_length=100)
    two_factor_enabled: Optional[bool] = None


class ChangePasswordRequest(BaseModel):
    """Request body for POST /api/v1/users/change-password."""

    current_password: str = Field(max_length=128)
    new_password: str = Field(max_length=128)


class AdminUserPatch(BaseModel):
    """Request body for PUT /api/v1/users/{id}. Omitted fields are unchanged."""

    name: Optional[str] = Field(default=None, max_length=100)
    role: Optional[str] = Field(default=None, max_length=50)
    is_active: Optional[bool] = None
    two_factor_enabled: Optional[bool] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a user. Never carries the password hash."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: str
    role: Optional[str]
    is_email_verified: bool
    is_active: bool
    two_factor_enabled: bool
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_public(cls, user: PublicUser) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            is_email_verified=user.is_email_verified,
            is_active=user.is_active,
            two_factor_enabled=user.two_factor_enabled,
            last_login=user.last_login,
            created_at=user.created_at,
        )


class TokenPairResponse(BaseModel):
    """Response for POST /api/v1/auth/refresh-token."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokenPairResponse":
        return cls(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type=pair.token_type,
            expires_in=pair.expires_in,
        )


class LoginResponse(TokenPairResponse):
    """Response for POST /api/v1/auth/login: the token pair plus the user."""

    user: UserResponse


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class LogoutAllResponse(MessageResponse):
    sessions_revoked: int


class PageMeta(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int
    page: int
    limit: int
    total_pages: int
    has_next: bool
    has_prev: bool


class UserListResponse(BaseModel):
    """Response for GET /api/v1/users."""

    model_config = ConfigDict(frozen=True)

    data: list[UserResponse]
    meta: PageMeta

    @classmethod
    def from_page(cls, page: UserPage) -> "UserListResponse":
        return cls(
            data=[UserResponse.from_public(u) for u in page.users],
            meta=PageMeta(
                total=page.total,
                page=page.page,
                limit=page.limit,
                total_pages=page.total_pages,
                has_next=page.has_next,
                has_prev=page.has_prev,
            ),
        )


class UserStatsResponse(BaseModel):
    """Response for GET /api/v1/users/stats/overview."""

    model_config = ConfigDict(frozen=True)

    total_users: int
    active_users: int
    verified_users: int
    new_users_this_month: int
    users_by_role: dict[str, int]


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
