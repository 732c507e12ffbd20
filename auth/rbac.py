"""
auth/rbac.py -- Role/permission access decisions.

Roles are flat: a role is exactly the set of permissions granted to it, with
no inheritance between roles. Permissions are named "resource:action".

Two checking modes, mirroring the two kinds of protected operation:
  authorize(user, "user:read")           -- fine-grained permission check
  authorize_any(user, ["admin", ...])    -- coarse role gate

Both deny (ForbiddenError) when the user is missing, inactive or soft-deleted,
before looking at the role at all.

The engine only reads role data. Creating roles and changing grants happens
in auth/seed.py (or an admin tool), never here.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from auth.errors import ForbiddenError
from auth.models import Decision, Permission, Role, User
from auth.store import CredentialStore

logger = logging.getLogger("authgate.auth.rbac")


def _check_permission_name(name: str) -> None:
    resource, sep, action = name.partition(":")
    if not (resource and sep and action):
        raise ValueError(f"permission names look like 'resource:action', got {name!r}")


class RBACEngine:
    def __init__(self, store: CredentialStore) -> None:
        self.store = store

    def permissions_for(self, role: Role | None) -> frozenset[Permission]:
        """Every permission granted to the role. An absent role grants nothing."""
        if role is None or role.id is None:
            return frozenset()
        return frozenset(self.store.get_role_permissions(role.id))

    def permission_names_for(self, role: Role | None) -> frozenset[str]:
        return frozenset(p.name for p in self.permissions_for(role))

    def authorize(self, user: User | None, required_permission: str) -> Decision:
        """Allow if the user is in good standing and their role grants the permission."""
        _check_permission_name(required_permission)
        self._require_standing(user, required_permission)
        role = Role(id=user.role_id, name=user.role_name or "") if user.role_id is not None else None
        if required_permission not in self.permission_names_for(role):
            logger.info("Denied %s to user %s (role %s)", required_permission, user.id, user.role_name)
            raise ForbiddenError()
        return Decision(user_id=user.id, role=user.role_name, granted=required_permission)

    def authorize_any(self, user: User | None, role_names: Iterable[str]) -> Decision:
        """Allow if the user is in good standing and holds one of the named roles."""
        allowed = set(role_names)
        self._require_standing(user, "role in " + ",".join(sorted(allowed)))
        if user.role_name not in allowed:
            logger.info("Denied role gate %s to user %s (role %s)", sorted(allowed), user.id, user.role_name)
            raise ForbiddenError()
        return Decision(user_id=user.id, role=user.role_name, granted=user.role_name)

    def _require_standing(self, user: User | None, wanted: str) -> None:
        if user is None or not user.can_authenticate:
            logger.info("Denied %s: user missing, inactive or deleted", wanted)
            raise ForbiddenError()
