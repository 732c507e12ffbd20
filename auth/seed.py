#!/usr/bin/env python3
"""
auth/seed.py -- Reference data (permissions, roles) and first-admin bootstrap.

seed_reference_data() is idempotent and runs on every API startup, so a
fresh database always has the default role that signup assigns.

Usage:
  python -m auth.seed
  python -m auth.seed --admin-email admin@example.com --admin-name "Site Admin"

The admin password is read with getpass, never from the command line. The
admin account is created already verified; nobody can send it a verification
mail before the first login.

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the credential store (default sqlite:///authgate.db)
  SECRET_KEY     Required by the settings loader even though seeding does not sign anything.
"""

from __future__ import annotations

import argparse
import getpass
import logging

from auth.credentials import normalize_email, normalize_name
from auth.errors import ConflictError, ValidationError
from auth.models import Permission, Role, User
from auth.passwords import PasswordHasher, validate_password
from auth.store import CredentialStore

logger = logging.getLogger("authgate.auth.seed")

DEFAULT_PERMISSIONS: tuple[tuple[str, str], ...] = (
    ("user:create", "Create user accounts"),
    ("user:read", "View user accounts"),
    ("user:update", "Edit user accounts"),
    ("user:delete", "Delete user accounts"),
    ("role:create", "Create roles"),
    ("role:read", "View roles"),
    ("role:update", "Edit roles"),
    ("role:delete", "Delete roles"),
    ("file:upload", "Upload files"),
    ("file:read", "Read files"),
    ("file:delete", "Delete files"),
    ("system:analytics", "View system analytics"),
    ("system:logs", "Read system logs"),
)

DEFAULT_ROLES: dict[str, tuple[str, tuple[str, ...]]] = {
    "admin": (
        "Full access to every resource",
        tuple(name for name, _ in DEFAULT_PERMISSIONS),
    ),
    "moderator": (
        "Manages users and content",
        ("user:read", "user:update", "file:read", "file:delete", "system:logs"),
    ),
    "user": (
        "Regular account",
        ("file:upload", "file:read"),
    ),
}


def seed_reference_data(store: CredentialStore) -> None:
    """Insert the default permissions and system roles, skipping whatever exists."""
    permission_ids: dict[str, int] = {}
    for name, description in DEFAULT_PERMISSIONS:
        resource, _, action = name.partition(":")
        permission_ids[name] = store.ensure_permission(
            Permission(name=name, resource=resource, action=action, description=description)
        )

    granted = 0
    for role_name, (description, permission_names) in DEFAULT_ROLES.items():
        role_id = store.ensure_role(Role(name=role_name, description=description, is_system=True))
        for permission_name in permission_names:
            if store.grant_permission(role_id, permission_ids[permission_name]):
                granted += 1
    if granted:
        logger.info("Seeded reference data (%d new role grants)", granted)


def create_admin(store: CredentialStore, hasher: PasswordHasher, email: str, password: str, name: str) -> str:
    """Create a verified, active admin account and return its id.

    Raises ValidationError for bad input and ConflictError if the email is taken.
    """
    email = normalize_email(email)
    name = normalize_name(name)
    validate_password(password)
    if store.get_user_by_email(email) is not None:
        raise ConflictError()
    role = store.get_role_by_name("admin")
    if role is None:
        raise RuntimeError("Reference data has not been seeded")
    user_id = store.create_user(
        User(
            email=email,
            hashed_password=hasher.hash(password),
            name=name,
            role_id=role.id,
            is_email_verified=True,
        )
    )
    logger.info("Admin account %s created", user_id)
    return user_id


def main(argv: list[str] | None = None) -> int:
    # CLI only; the functions above take everything as arguments.
    from core.config import get_settings

    parser = argparse.ArgumentParser(
        prog="python -m auth.seed",
        description="Seed default roles and permissions, optionally creating an admin account.",
    )
    parser.add_argument("--admin-email", help="Create an admin account with this email.")
    parser.add_argument("--admin-name", default="Administrator", help="Display name for the admin account.")
    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(level=settings.log_level, format="%(levelname)-5s %(name)s %(message)s")
    store = CredentialStore(settings.database_url)
    try:
        seed_reference_data(store)
        print("Reference data seeded.")
        if not args.admin_email:
            return 0
        password = getpass.getpass("Admin password: ")
        if password != getpass.getpass("Repeat password: "):
            print("  [!] Passwords do not match.")
            return 1
        try:
            user_id = create_admin(store, PasswordHasher(settings.bcrypt_rounds), args.admin_email, password, args.admin_name)
        except (ValidationError, ConflictError) as exc:
            print(f"  [!] {exc.message}")
            return 1
        print(f"Admin account created (id {user_id}).")
        return 0
    finally:
        store.close()


if __name__ == "__main__":
    raise SystemExit(main())
