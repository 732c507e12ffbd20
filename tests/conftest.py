"""
tests/conftest.py -- Shared test fixtures for the AuthGate test suite.

This module provides:
  - store: a seeded in-memory CredentialStore per test
  - clock / mailer / hasher: controllable collaborators (see tests/helpers.py)
  - services: the fully wired engine (gateway, accounts, ...) on that store
  - api_client: TestClient on the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the API fixture because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to each
worker thread. Engine tests run in a single thread and use plain :memory:.

SECRET_KEY, ALLOWED_HOSTS, RATE_LIMIT_ENABLED and BCRYPT_ROUNDS must be set
before any project import: get_settings() is read at import time by
api/main.py and api/limiter.py.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set required settings before any auth/api/core import.
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-the-authgate-suite-0123456789")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver"]')
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.main import app, build_services
from auth.accounts import AccountService
from auth.gateway import AuthGateway
from auth.passwords import PasswordHasher
from auth.seed import create_admin, seed_reference_data
from auth.store import CredentialStore
from core.config import get_settings
from tests.helpers import ADMIN_EMAIL, ADMIN_PASSWORD, ApiContext, FakeClock, RecordingMailer, Services

# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[CredentialStore, None, None]:
    s = CredentialStore("sqlite:///:memory:")
    seed_reference_data(s)
    yield s
    s.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def services(store: CredentialStore, clock: FakeClock, mailer: RecordingMailer) -> Services:
    gateway, accounts = build_services(get_settings(), store, mailer=mailer, clock=clock)
    return Services(store=store, clock=clock, mailer=mailer, gateway=gateway, accounts=accounts)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(store: CredentialStore, gateway: AuthGateway, accounts: AccountService):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine so shutdown can cancel a real
    asyncio.Task, as it does in production.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = store
        app.state.gateway = gateway
        app.state.accounts = accounts
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for API integration tests.

    Each test module gets its own shared-memory database, seeded with the
    default roles and one verified admin (ADMIN_EMAIL / ADMIN_PASSWORD).
    The engine runs on the real clock.
    """
    url = f"sqlite:///file:authgate_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    s = CredentialStore(url)
    seed_reference_data(s)
    admin_id = create_admin(s, PasswordHasher(rounds=4), ADMIN_EMAIL, ADMIN_PASSWORD, "Admin")
    recorder = RecordingMailer()
    gateway, accounts = build_services(get_settings(), s, mailer=recorder)

    app.router.lifespan_context = _patch_lifespan(s, gateway, accounts)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(client=client, store=s, mailer=recorder, admin_id=admin_id)

    s.close()
