"""
auth/dependencies.py -- FastAPI Depends() helpers for protected routes.

Each helper is a thin adapter from the HTTP request to one step of the
gateway pipeline:

  get_current_claims()        -- authenticate: Bearer header -> Claims
  require_permission("x:y")   -- authenticate + RBAC permission check -> Decision
  require_roles("admin", ...) -- authenticate + RBAC role gate -> Decision

Only the Authorization: Bearer header is accepted. There are no cookies and
no API keys.

Failures are raised as auth.errors types (AuthError, ForbiddenError); the
exception handlers in api/main.py turn them into 401 / 403 responses. These
helpers never build HTTP responses themselves.

Layer rule: no imports from api/ or core/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.errors import AuthError
from auth.gateway import AuthGateway
from auth.models import Claims, Decision


def bearer_token(request: Request) -> str:
    """Return the raw token from the Authorization header or raise AuthError."""
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise AuthError("Authentication required.")
    return token


def _gateway(request: Request) -> AuthGateway:
    return request.app.state.gateway


def get_current_claims(request: Request) -> Claims:
    """Require a valid access token. Stateless: no storage lookup.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(claims: Claims = Depends(get_current_claims)): ...
    """
    return _gateway(request).authenticate(bearer_token(request))


def require_permission(permission: str) -> Callable[[Request], Decision]:
    """Build a dependency that requires the caller's role to grant permission.

    Use as a FastAPI dependency:
        @router.get("/users")
        def route(decision: Decision = Depends(require_permission("user:read"))): ...
    """

    def dependency(request: Request) -> Decision:
        return _gateway(request).authorize(bearer_token(request), permission)

    return dependency


def require_roles(*role_names: str) -> Callable[[Request], Decision]:
    """Build a dependency that requires the caller to hold one of role_names."""

    def dependency(request: Request) -> Decision:
        return _gateway(request).authorize_roles(bearer_token(request), role_names)

    return dependency
