"""
api/routes/v1/users.py -- Profile self-service and admin user management.

Routes:
  GET    /api/v1/users/profile            -- own profile (requires auth)
  PUT    /api/v1/users/profile            -- update own name / 2FA flag (requires auth)
  DELETE /api/v1/users/profile            -- soft-delete own account (requires auth)
  POST   /api/v1/users/change-password    -- change own password (requires auth)
  GET    /api/v1/users/stats/overview     -- user counts (admin role)
  GET    /api/v1/users                    -- paginated list (user:read)
  GET    /api/v1/users/{id}               -- one user (user:read)
  PUT    /api/v1/users/{id}               -- update name/role/flags (admin role)
  POST   /api/v1/users/{id}/activate      -- reactivate (admin role)
  POST   /api/v1/users/{id}/deactivate    -- deactivate, revoking sessions (admin role)
  DELETE /api/v1/users/{id}               -- soft-delete (admin role)

Static paths are registered before /users/{user_id} so "profile" and
"stats" are never captured as ids.

PUT /users/{id}, activate, deactivate and delete are admin-only even though
moderators hold user:update. Self-role changes, self-deactivation,
self-deletion and removing the last active admin are refused by
AccountService (400 validation_error).
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from api.models import (
    AdminUserPatch,
    ChangePasswordRequest,
    MessageResponse,
    ProfileUpdate,
    SortFieldEnum,
    SortOrderEnum,
    UserListResponse,
    UserResponse,
    UserStatsResponse,
)
from auth.accounts import ADMIN_ROLE, AccountService
from auth.dependencies import get_current_claims, require_permission, require_roles
from auth.gateway import AuthGateway
from auth.models import Claims, Decision

# Auth policy:
# - /users/profile, /users/change-password:  requires auth (get_current_claims)
# - GET /users/stats/overview:                requires role admin (require_roles)
# - GET /users, GET /users/{id}:              requires user:read
# - PUT /users/{id}, activate, deactivate:    requires role admin (require_roles)
# - DELETE /users/{id}:                       requires role admin (require_roles)
router = APIRouter()


def _accounts(request: Request) -> AccountService:
    return request.app.state.accounts


def _gateway(request: Request) -> AuthGateway:
    return request.app.state.gateway


# ---------------------------------------------------------------------------
# Self-service
# ---------------------------------------------------------------------------


@router.get("/users/profile", response_model=UserResponse)
def get_own_profile(request: Request, claims: Claims = Depends(get_current_claims)) -> UserResponse:
    return UserResponse.from_public(_gateway(request).get_profile(claims.user_id))


@router.put("/users/profile", response_model=UserResponse)
def update_own_profile(
    request: Request,
    body: ProfileUpdate,
    claims: Claims = Depends(get_current_claims),
) -> UserResponse:
    user = _accounts(request).update_profile(
        claims.user_id,
        name=body.name,
        two_factor_enabled=body.two_factor_enabled,
    )
    return UserResponse.from_public(user)


@router.delete("/users/profile", status_code=204)
def delete_own_account(request: Request, claims: Claims = Depends(get_current_claims)) -> Response:
    """Soft-delete the caller's account and revoke all of its sessions."""
    _accounts(request).delete_account(claims.user_id)
    return Response(status_code=204)


@router.post("/users/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    claims: Claims = Depends(get_current_claims),
) -> MessageResponse:
    """Change the caller's password. Every session is revoked, this one included."""
    _accounts(request).change_password(claims.user_id, body.current_password, body.new_password)
    return MessageResponse(message="Password changed. Please sign in again.")


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@router.get("/users/stats/overview", response_model=UserStatsResponse)
def user_stats(request: Request, decision: Decision = Depends(require_roles(ADMIN_ROLE))) -> UserStatsResponse:
    return UserStatsResponse(**_accounts(request).user_stats())


@router.get("/users", response_model=UserListResponse)
def list_users(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    search: Optional[str] = Query(default=None, max_length=100),
    is_active: Optional[bool] = None,
    is_email_verified: Optional[bool] = None,
    role: Optional[str] = Query(default=None, max_length=50),
    sort_by: SortFieldEnum = SortFieldEnum.created_at,
    sort_order: SortOrderEnum = SortOrderEnum.desc,
    decision: Decision = Depends(require_permission("user:read")),
) -> UserListResponse:
    result = _accounts(request).list_users(
        page=page,
        limit=limit,
        search=search,
        is_active=is_active,
        is_email_verified=is_email_verified,
        role=role,
        sort_by=sort_by.value,
        sort_order=sort_order.value,
    )
    return UserListResponse.from_page(result)


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(
    request: Request,
    user_id: str,
    decision: Decision = Depends(require_permission("user:read")),
) -> UserResponse:
    return UserResponse.from_public(_accounts(request).get_user(user_id))


@router.put("/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: str,
    body: AdminUserPatch,
    decision: Decision = Depends(require_roles(ADMIN_ROLE)),
) -> UserResponse:
    user = _accounts(request).admin_update_user(
        decision.user_id,
        user_id,
        name=body.name,
        role=body.role,
        is_active=body.is_active,
        two_factor_enabled=body.two_factor_enabled,
    )
    return UserResponse.from_public(user)


@router.post("/users/{user_id}/activate", response_model=UserResponse)
def activate_user(
    request: Request,
    user_id: str,
    decision: Decision = Depends(require_roles(ADMIN_ROLE)),
) -> UserResponse:
    return UserResponse.from_public(_accounts(request).set_active(decision.user_id, user_id, True))


@router.post("/users/{user_id}/deactivate", response_model=UserResponse)
def deactivate_user(
    request: Request,
    user_id: str,
    decision: Decision = Depends(require_roles(ADMIN_ROLE)),
) -> UserResponse:
    """Deactivate a user. Their sessions are revoked immediately."""
    return UserResponse.from_public(_accounts(request).set_active(decision.user_id, user_id, False))


@router.delete("/users/{user_id}", status_code=204)
def delete_user(
    request: Request,
    user_id: str,
    decision: Decision = Depends(require_roles(ADMIN_ROLE)),
) -> Response:
    _accounts(request).delete_user(decision.user_id, user_id)
    return Response(status_code=204)
