"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/signup               -- create an unverified account; 201
  POST /api/v1/auth/login                -- password login; returns token pair + user
  POST /api/v1/auth/verify-email         -- consume an email-verification token
  POST /api/v1/auth/resend-verification  -- always 200 (no account enumeration)
  POST /api/v1/auth/forgot-password      -- always 200 (no account enumeration)
  POST /api/v1/auth/reset-password       -- consume a reset token; revokes every session
  POST /api/v1/auth/refresh-token        -- rotate a refresh token
  GET  /api/v1/auth/profile              -- current user (requires auth)
  POST /api/v1/auth/logout               -- revoke the current session (requires auth)
  POST /api/v1/auth/logout-all           -- revoke every session of the user (requires auth)

Handlers are plain def functions: the engine is synchronous (bcrypt, SQLAlchemy
Core), so FastAPI runs them in its thread pool. Handlers never build error
responses; engine errors propagate to the handlers in api/main.py.

Security:
  Login, signup and the recovery routes are rate-limited per client IP.
  Cache-Control: no-store on every response that carries a token.
  Logout keeps the access token valid until it expires; only refreshes stop.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter
from api.models import (
    EmailRequest,
    LoginRequest,
    LoginResponse,
    LogoutAllResponse,
    MessageResponse,
    RefreshRequest,
    ResetPasswordRequest,
    SignupRequest,
    TokenPairResponse,
    TokenRequest,
    UserResponse,
)
from auth.dependencies import bearer_token, get_current_claims
from auth.gateway import AuthGateway
from auth.models import Claims, DeviceMeta
from core.config import get_settings

_settings = get_settings()

# Auth policy:
# - POST /auth/signup, /auth/login, /auth/verify-email:        public
# - POST /auth/resend-verification, /auth/forgot-password:     public
# - POST /auth/reset-password, /auth/refresh-token:            public (the token is the credential)
# - GET  /auth/profile, POST /auth/logout, /auth/logout-all:   requires auth (get_current_claims)
router = APIRouter()

_ENUMERATION_SAFE_MESSAGE = "If an eligible account exists for that address, an email has been sent."


def _gateway(request: Request) -> AuthGateway:
    return request.app.state.gateway


def _no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"
    response.headers["Pragma"] = "no-cache"


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.signup_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/signup", response_model=UserResponse, status_code=201)
def signup(request: Request, body: SignupRequest) -> UserResponse:
    """Create an account. The user must verify their email before logging in."""
    user = _gateway(request).signup(body.email, body.password, body.name)
    return UserResponse.from_public(user)


@limiter.limit(_settings.login_rate_limit)  # brute-force mitigation
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, response: Response, body: LoginRequest) -> LoginResponse:
    """Authenticate with email and password and open a new session.

    Wrong email, wrong password, inactive and deleted accounts all produce the
    same 401 message.
    """
    device = DeviceMeta(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
    )
    result = _gateway(request).login(body.email, body.password, device)
    _no_store(response)
    pair = TokenPairResponse.from_pair(result.tokens)
    return LoginResponse(**pair.model_dump(), user=UserResponse.from_public(result.user))


@router.post("/auth/verify-email", response_model=UserResponse)
def verify_email(request: Request, body: TokenRequest) -> UserResponse:
    """Consume an email-verification token. A token works exactly once."""
    return UserResponse.from_public(_gateway(request).verify_email(body.token))


@limiter.limit(_settings.recovery_rate_limit)
@router.post("/auth/resend-verification", response_model=MessageResponse)
def resend_verification(request: Request, body: EmailRequest) -> MessageResponse:
    """Issue a fresh verification token. Same response whether or not the account exists."""
    _gateway(request).resend_verification(body.email)
    return MessageResponse(message=_ENUMERATION_SAFE_MESSAGE)


@limiter.limit(_settings.recovery_rate_limit)
@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(request: Request, body: EmailRequest) -> MessageResponse:
    """Issue a password-reset token. Same response whether or not the account exists."""
    _gateway(request).forgot_password(body.email)
    return MessageResponse(message=_ENUMERATION_SAFE_MESSAGE)


@limiter.limit(_settings.recovery_rate_limit)
@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    """Set a new password from a reset token. Signs the user out everywhere."""
    _gateway(request).reset_password(body.token, body.password)
    return MessageResponse(message="Password has been reset. Please sign in again.")


@router.post("/auth/refresh-token", response_model=TokenPairResponse)
def refresh_token(request: Request, response: Response, body: RefreshRequest) -> TokenPairResponse:
    """Exchange a refresh token for a new pair.

    Replaying a refresh token that was already rotated revokes the whole
    session and returns 401 token_reuse_detected.
    """
    pair = _gateway(request).refresh(body.refresh_token)
    _no_store(response)
    return TokenPairResponse.from_pair(pair)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/profile", response_model=UserResponse)
def profile(request: Request, claims: Claims = Depends(get_current_claims)) -> UserResponse:
    """Return the public profile of the authenticated user."""
    return UserResponse.from_public(_gateway(request).get_profile(claims.user_id))


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, claims: Claims = Depends(get_current_claims)) -> MessageResponse:
    """Revoke the session behind the presented access token."""
    _gateway(request).logout(bearer_token(request))
    return MessageResponse(message="Logged out.")


@router.post("/auth/logout-all", response_model=LogoutAllResponse)
def logout_all(request: Request, claims: Claims = Depends(get_current_claims)) -> LogoutAllResponse:
    """Revoke every session of the authenticated user, on every device."""
    count = _gateway(request).logout_all(claims.user_id)
    return LogoutAllResponse(message="Logged out from all devices.", sessions_revoked=count)
