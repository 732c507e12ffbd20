"""
api/main.py -- FastAPI application entry point for AuthGate.

Exposes the auth engine (auth/) over HTTP. The engine itself knows nothing
about HTTP; this module wires it together from settings, maps its typed
errors onto status codes, and mounts the routers.

Run with:      uvicorn asgi:app --reload
Seed / admin:  python -m auth.seed --admin-email you@example.com

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- only when CORS_ORIGINS is non-empty
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (store, reference data, services, purge task) and
shutdown (cancel purge task, dispose the engine) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.accounts import AccountService
from auth.clock import Clock, system_clock
from auth.credentials import CredentialVerifier
from auth.errors import (
    AuthEngineError,
    AuthError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ReuseDetectedError,
    TokenError,
    ValidationError,
)
from auth.gateway import AuthGateway
from auth.mailer import LoggingMailer, Mailer
from auth.passwords import PasswordHasher
from auth.rbac import RBACEngine
from auth.seed import seed_reference_data
from auth.store import CredentialStore
from auth.tokens import KeyRing, TokenService
from core.config import Settings, get_settings

__version__ = "0.1.0"

_PURGE_INTERVAL_SECONDS = 60 * 60

settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authgate.api")

# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def build_services(
    settings: Settings,
    store: CredentialStore,
    mailer: Mailer | None = None,
    clock: Clock = system_clock,
) -> tuple[AuthGateway, AccountService]:
    """Construct the engine components from settings.

    Every secret and lifetime is passed in explicitly here; nothing under
    auth/ reads configuration on its own. Tests call this with a fake clock
    and a recording mailer.
    """
    hasher = PasswordHasher(settings.bcrypt_rounds)
    credentials = CredentialVerifier(
        store,
        hasher,
        mailer or LoggingMailer(settings.public_base_url),
        settings.secret_key,
        default_role=settings.default_role,
        verification_ttl=timedelta(seconds=settings.verification_token_ttl_seconds),
        reset_ttl=timedelta(seconds=settings.reset_token_ttl_seconds),
        clock=clock,
    )
    tokens = TokenService(
        store,
        KeyRing(settings.jwt_key_id, settings.verification_keys),
        access_ttl=timedelta(seconds=settings.access_token_ttl_seconds),
        refresh_ttl=timedelta(seconds=settings.refresh_token_ttl_seconds),
        clock=clock,
    )
    gateway = AuthGateway(store, credentials, tokens, RBACEngine(store), clock=clock)
    return gateway, AccountService(store, hasher, clock=clock)


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired one-time tokens and sessions every hour.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly. A database error skips
    one round; the next round tries again.
    """
    while True:
        await asyncio.sleep(_PURGE_INTERVAL_SECONDS)
        try:
            tokens, sessions = app.state.store.purge_expired(system_clock())
        except SQLAlchemyError:
            logger.exception("Purge of expired tokens and sessions failed")
            continue
        if tokens or sessions:
            logger.info("Purged %d expired token(s) and %d expired session(s)", tokens, sessions)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.

    Startup order matters:
      1. Store first -- creates the schema.
      2. Reference data second -- signup needs the default role to exist.
      3. Services third -- they hold the store.
      4. Purge task last -- references app.state.store.
    """
    logger.info("AuthGate API starting up")
    store = CredentialStore(settings.database_url)
    seed_reference_data(store)
    app.state.store = store
    app.state.gateway, app.state.accounts = build_services(settings, store)
    logger.info("Auth engine initialized (key id %s)", settings.jwt_key_id)
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.store.close()
    logger.info("AuthGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AuthGate API",
    description="Authentication and authorization: signup, login, rotating refresh tokens, RBAC.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

if settings.cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=3600,
    )

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------

# Most specific class first; the first isinstance() match wins.
_ENGINE_ERRORS: tuple[tuple[type[AuthEngineError], int, str], ...] = (
    (ReuseDetectedError, 401, "token_reuse_detected"),
    (AuthError, 401, "unauthorized"),
    (ForbiddenError, 403, "forbidden"),
    (ValidationError, 400, "validation_error"),
    (ConflictError, 409, "conflict"),
    (TokenError, 400, "invalid_token"),
    (NotFoundError, 404, "not_found"),
)


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthEngineError)
async def engine_error_handler(request: Request, exc: AuthEngineError) -> JSONResponse:
    """Map a typed engine failure onto its status code and stable error code."""
    status_code, code = 400, "bad_request"
    for error_type, mapped_status, mapped_code in _ENGINE_ERRORS:
        if isinstance(exc, error_type):
            status_code, code = mapped_status, mapped_code
            break
    response = _error_response(status_code, code, exc.message)
    if status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Infrastructure failures are reported as 503, never as an auth failure."""
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return _error_response(503, "infrastructure_error", "A backing service is unavailable. Try again later.")


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error_response(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return _error_response(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for FastAPI/Starlette HTTP exceptions (404, 405, ...)."""
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit and no auth -- load balancers must be able to poll it.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    database = "ok"
    try:
        request.app.state.store.ping()
    except SQLAlchemyError:
        logger.warning("Health check: database unreachable", exc_info=True)
        database = "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=__version__,
        components={"app": "ok", "database": database},
    )
