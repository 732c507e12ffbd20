"""
auth/accounts.py -- Profile self-service and admin user management.

Everything here works on user ids that the caller has already authenticated
and authorized (see auth/gateway.py and auth/dependencies.py). Route-level
permission checks live there; this module enforces the account invariants:

  - Users are never hard-deleted. delete_account() / delete_user() stamp
    deleted_at, revoke every session and drop live one-time tokens in one
    transaction.
  - Changing a password revokes every session, as a reset does.
  - Deactivating a user revokes every session.
  - Only an active admin may change a user's role, and nobody may change
    their own role.
  - An admin cannot deactivate or delete their own account, and the last
    active admin cannot be deactivated, deleted or demoted. Without these
    guards there would be no recovery path short of editing the database.
    The last-admin check is part of the store's UPDATE (keep_admin=True),
    not a separate count.
  - An admin edit is validated in full before the single write that applies it.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

from auth.clock import Clock, system_clock
from auth.credentials import normalize_name
from auth.errors import AuthError, ForbiddenError, NotFoundError, ValidationError
from auth.models import PublicUser, User, UserPage
from auth.passwords import PasswordHasher, validate_password
from auth.store import CredentialStore

logger = logging.getLogger("authgate.auth.accounts")

ADMIN_ROLE = "admin"
SORT_FIELDS = ("name", "email", "created_at", "last_login")
MAX_PAGE_SIZE = 100

_SELF_REMOVAL = "You cannot deactivate or delete your own account."
_LAST_ADMIN_REMOVAL = "Cannot remove the last active admin account."
_LAST_ADMIN_DEMOTE = "Cannot demote the last active admin account."


class AccountService:
    def __init__(self, store: CredentialStore, hasher: PasswordHasher, clock: Clock = system_clock) -> None:
        self.store = store
        self.hasher = hasher
        self.clock = clock

    # ------------------------------------------------------------------
    # Self-service
    # ------------------------------------------------------------------

    def update_profile(
        self,
        user_id: str,
        *,
        name: str | None = None,
        two_factor_enabled: bool | None = None,
    ) -> PublicUser:
        self._live_user(user_id)
        updates: dict = {}
        if name is not None:
            updates["name"] = normalize_name(name)
        if two_factor_enabled is not None:
            updates["two_factor_enabled"] = two_factor_enabled
        if not updates:
            raise ValidationError("No fields to update.")
        self.store.update_user(user_id, **updates)
        return PublicUser.from_user(self._live_user(user_id))

    def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        """Replace the password after re-checking the current one. Revokes every session."""
        user = self._live_user(user_id)
        if not self.hasher.verify(current_password, user.hashed_password):
            logger.info("Password change rejected for user %s: wrong current password", user_id)
            raise AuthError("Current password is incorrect.")
        validate_password(new_password)
        if current_password == new_password:
            raise ValidationError("New password must differ from the current password.")
        self.store.change_password(user_id, self.hasher.hash(new_password), self.clock())
        logger.info("Password changed for user %s; all sessions revoked", user_id)

    def delete_account(self, user_id: str) -> None:
        self._live_user(user_id)
        if not self.store.soft_delete_user(user_id, self.clock(), keep_admin=True):
            raise ValidationError(_LAST_ADMIN_REMOVAL)
        logger.info("User %s deleted their account", user_id)

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    def get_user(self, user_id: str) -> PublicUser:
        return PublicUser.from_user(self._live_user(user_id))

    def list_users(
        self,
        *,
        page: int = 1,
        limit: int = 10,
        search: str | None = None,
        is_active: bool | None = None,
        is_email_verified: bool | None = None,
        role: str | None = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> UserPage:
        if page < 1:
            raise ValidationError("page must be at least 1.")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}.")
        if sort_by not in SORT_FIELDS:
            raise ValidationError(f"sort_by must be one of {', '.join(SORT_FIELDS)}.")
        if sort_order not in ("asc", "desc"):
            raise ValidationError("sort_order must be 'asc' or 'desc'.")
        users, total = self.store.list_users(
            offset=(page - 1) * limit,
            limit=limit,
            search=search,
            is_active=is_active,
            is_email_verified=is_email_verified,
            role_name=role,
            sort_by=sort_by,
            sort_order=sort_order,
        )
        return UserPage(users=[PublicUser.from_user(u) for u in users], total=total, page=page, limit=limit)

    def admin_update_user(
        self,
        actor_id: str,
        user_id: str,
        *,
        name: str | None = None,
        role: str | None = None,
        is_active: bool | None = None,
        two_factor_enabled: bool | None = None,
    ) -> PublicUser:
        """Apply an admin edit in one write. Every guard runs before anything is stored."""
        if name is None and role is None and is_active is None and two_factor_enabled is None:
            raise ValidationError("No fields to update.")
        target = self._live_user(user_id)
        updates: dict = {}
        if name is not None:
            updates["name"] = normalize_name(name)
        if two_factor_enabled is not None:
            updates["two_factor_enabled"] = two_factor_enabled
        if role is not None and role != target.role_name:
            if target.id == actor_id:
                raise ValidationError("You cannot change your own role.")
            self._require_admin(actor_id)
            new_role = self.store.get_role_by_name(role)
            if new_role is None:
                raise ValidationError(f"Unknown role {role!r}.")
            updates["role_id"] = new_role.id
        if is_active is not None and is_active != target.is_active:
            if not is_active and target.id == actor_id:
                raise ValidationError(_SELF_REMOVAL)
            updates["is_active"] = is_active
        if not updates:
            return PublicUser.from_user(target)

        demotes = "role_id" in updates and role != ADMIN_ROLE
        deactivates = updates.get("is_active") is False
        if not self.store.update_user(user_id, when=self.clock(), keep_admin=demotes or deactivates, **updates):
            raise ValidationError(_LAST_ADMIN_DEMOTE if demotes else _LAST_ADMIN_REMOVAL)
        logger.info("Admin %s updated user %s (%s)", actor_id, user_id, ", ".join(sorted(updates)))
        return PublicUser.from_user(self._live_user(user_id))

    def set_active(self, actor_id: str, user_id: str, active: bool) -> PublicUser:
        """Activate or deactivate a user. Deactivation revokes every session."""
        target = self._live_user(user_id)
        if not active and target.id == actor_id:
            raise ValidationError(_SELF_REMOVAL)
        if not self.store.set_user_active(user_id, active, self.clock(), keep_admin=not active):
            raise ValidationError(_LAST_ADMIN_REMOVAL)
        logger.info("Admin %s set user %s active=%s", actor_id, user_id, active)
        return PublicUser.from_user(self._live_user(user_id))

    def delete_user(self, actor_id: str, user_id: str) -> None:
        target = self._live_user(user_id)
        if target.id == actor_id:
            raise ValidationError(_SELF_REMOVAL)
        if not self.store.soft_delete_user(user_id, self.clock(), keep_admin=True):
            raise ValidationError(_LAST_ADMIN_REMOVAL)
        logger.info("Admin %s deleted user %s", actor_id, user_id)

    def user_stats(self) -> dict:
        now = self.clock()
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        counts = self.store.user_counts(since=month_start)
        return {
            "total_users": counts["total"],
            "active_users": counts["active"],
            "verified_users": counts["verified"],
            "new_users_this_month": counts["new_since"],
            "users_by_role": counts["by_role"],
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _live_user(self, user_id: str) -> User:
        user = self.store.get_user(user_id)
        if user is None or user.is_deleted:
            raise NotFoundError("User not found.")
        return user

    def _require_admin(self, actor_id: str) -> None:
        actor = self.store.get_user(actor_id)
        if actor is None or actor.is_deleted or not actor.is_active or actor.role_name != ADMIN_ROLE:
            raise ForbiddenError("Only an admin can change a user's role.")
