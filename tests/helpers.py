"""
tests/helpers.py -- Test doubles and helpers shared by the test modules.

Kept out of conftest.py so test modules can import them by name; fixtures
that build them live in conftest.py.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from auth.accounts import AccountService
from auth.gateway import AuthGateway
from auth.models import User
from auth.store import CredentialStore

PASSWORD = "Abc12345!"
ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "Admin123!"


class FakeClock:
    """Callable clock that only moves when a test tells it to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@dataclass
class RecordingMailer:
    """Mailer that keeps every message so tests can pull out the raw tokens."""

    verifications: list[tuple[User, str]] = field(default_factory=list)
    resets: list[tuple[User, str]] = field(default_factory=list)

    def send_verification_email(self, user: User, raw_token: str) -> None:
        self.verifications.append((user, raw_token))

    def send_password_reset_email(self, user: User, raw_token: str) -> None:
        self.resets.append((user, raw_token))

    def last_verification(self, email: str) -> str:
        return [token for user, token in self.verifications if user.email == email.lower()][-1]

    def last_reset(self, email: str) -> str:
        return [token for user, token in self.resets if user.email == email.lower()][-1]


@dataclass
class Services:
    """The wired engine on one store, plus the doubles it was built with."""

    store: CredentialStore
    clock: FakeClock
    mailer: RecordingMailer
    gateway: AuthGateway
    accounts: AccountService

    @property
    def credentials(self):
        return self.gateway.credentials

    @property
    def tokens(self):
        return self.gateway.tokens

    @property
    def rbac(self):
        return self.gateway.rbac


def make_user(
    services: Services,
    email: str,
    password: str = PASSWORD,
    name: str = "Test User",
    role: str | None = None,
    verified: bool = True,
) -> User:
    """Sign up (and by default verify) an account, optionally moving it to another role."""
    public = services.gateway.signup(email, password, name)
    if verified:
        services.gateway.verify_email(services.mailer.last_verification(email))
    if role is not None:
        services.store.update_user(public.id, role_id=services.store.get_role_by_name(role).id)
    return services.store.get_user(public.id)


@dataclass
class ApiContext:
    """What the api_client fixture yields: the client plus handles on its store and mailer."""

    client: TestClient
    store: CredentialStore
    mailer: RecordingMailer
    admin_id: str

    def login(self, email: str, password: str = PASSWORD) -> dict:
        resp = self.client.post("/api/v1/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, f"Login failed: {resp.status_code} {resp.text}"
        return resp.json()

    def admin_headers(self) -> dict[str, str]:
        return bearer(self.login(ADMIN_EMAIL, ADMIN_PASSWORD)["access_token"])

    def register(self, email: str, password: str = PASSWORD, name: str = "Api User") -> dict:
        """Sign up and verify through the HTTP API; return the login response."""
        resp = self.client.post("/api/v1/auth/signup", json={"email": email, "password": password, "name": name})
        assert resp.status_code == 201, f"Signup failed: {resp.status_code} {resp.text}"
        token = self.mailer.last_verification(email)
        assert self.client.post("/api/v1/auth/verify-email", json={"token": token}).status_code == 200
        return self.login(email, password)


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
