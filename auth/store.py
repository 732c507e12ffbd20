"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. CredentialStore is the repository; the
_row_to_* functions are the mappers. Services never touch SQL directly, and
the store holds no business rules: it reads and writes rows, and it offers a
handful of multi-row operations that must be atomic.

Atomicity:
  Each public method is either a single statement or one engine.begin()
  transaction. Nothing in auth/ strings several store calls together where a
  partial failure would leave sessions or tokens inconsistent:

    create_user()                -- user row + first verification token
    replace_one_time_token()     -- drop live tokens of a purpose + insert new
    consume_verification_token() -- conditional consume + set verified flag
    consume_reset_token()        -- conditional consume + new hash + revoke sessions
    soft_delete_user()           -- stamp deleted_at + revoke sessions + drop tokens

  update_session_if_counter() is the compare-and-increment behind refresh
  rotation. It is a single conditional UPDATE keyed on the expected counter,
  so of several concurrent rotations of one session exactly one matches.

  update_user(), set_user_active() and soft_delete_user() take keep_admin.
  When set, the UPDATE also requires that another live, active admin exists
  (or that the row is not an active admin at all), so the last admin cannot
  be removed by concurrent requests that each counted two.

Timestamps are stored as UTC ISO-8601 strings with fixed microsecond precision,
so string comparison in SQL equals chronological comparison.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Emails are lower-cased on write and on lookup; the UNIQUE constraint on the
  stored form makes uniqueness case-insensitive.

Errors: sqlalchemy.exc.* propagate unchanged. create_user() raises
IntegrityError for a duplicate email; the caller decides what that means.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    or_,
    select,
    text,
)
from sqlalchemy.engine import Connection, Engine

from auth.models import OneTimeToken, Permission, Role, Session, User

_DEFAULT_DB_URL = "sqlite:///authgate.db"
_ADMIN_ROLE = "admin"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False, unique=True),
    Column("description", Text),
    Column("is_system", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

_permissions = Table(
    "permissions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),  # "resource:action"
    Column("resource", String(50), nullable=False),
    Column("action", String(50), nullable=False),
    Column("description", Text),
)

_role_permissions = Table(
    "role_permissions",
    _metadata,
    Column("role_id", Integer, nullable=False),
    Column("permission_id", Integer, nullable=False),
    UniqueConstraint("role_id", "permission_id"),
)

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(254), nullable=False, unique=True),  # lower-cased
    Column("hashed_password", Text, nullable=False),
    Column("name", String(100), nullable=False),
    Column("role_id", Integer),
    Column("is_email_verified", Integer, nullable=False, server_default="0"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("two_factor_enabled", Integer, nullable=False, server_default="0"),
    Column("deleted_at", String(32)),  # NULL = alive
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32)),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("family_id", String(36), nullable=False),
    Column("counter", Integer, nullable=False, server_default="0"),
    Column("issued_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("revoked", Integer, nullable=False, server_default="0"),
    Column("revoked_at", String(32)),
    Column("last_used_at", String(32)),
    Column("ip_address", String(45)),
    Column("user_agent", String(512)),
)

_one_time_tokens = Table(
    "one_time_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("purpose", String(20), nullable=False),  # "email-verify" | "password-reset"
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("expires_at", String(32), nullable=False),
    Column("consumed_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

_USER_FIELDS = {"name", "hashed_password", "role_id", "is_email_verified", "is_active", "two_factor_enabled"}
_BOOL_FIELDS = {"is_email_verified", "is_active", "two_factor_enabled"}

_SORT_COLUMNS = {
    "name": _users.c.name,
    "email": _users.c.email,
    "created_at": _users.c.created_at,
    "last_login": _users.c.last_login,
}


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _now_iso() -> str:
    return _iso(datetime.now(timezone.utc))


def _user_query():
    return select(_users, _roles.c.name.label("role_name")).select_from(
        _users.outerjoin(_roles, _users.c.role_id == _roles.c.id)
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for users, roles, permissions, sessions and one-time tokens.

    Usage:
        store = CredentialStore("sqlite:///:memory:")
        role_id = store.ensure_role(Role(name="user"))
        user_id = store.create_user(User(email="a@x.com", hashed_password=h, name="A", role_id=role_id))
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def ping(self) -> None:
        """Round-trip a trivial query. Raises on any connectivity problem."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User, token: OneTimeToken | None = None) -> str:
        """Insert a user (and optionally its first one-time token) atomically.

        Returns the new user id. Raises sqlalchemy.exc.IntegrityError if the
        email is already registered.
        """
        user_id = user.id or str(uuid.uuid4())
        now = _now_iso()
        with self.engine.begin() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=user.email.lower(),
                    hashed_password=user.hashed_password,
                    name=user.name,
                    role_id=user.role_id,
                    is_email_verified=1 if user.is_email_verified else 0,
                    is_active=1 if user.is_active else 0,
                    two_factor_enabled=1 if user.two_factor_enabled else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            if token is not None:
                token.user_id = user_id
                _insert_token(conn, token)
        return user_id

    def get_user(self, user_id: str) -> User | None:
        """Look up a user by id, soft-deleted rows included."""
        with self.engine.connect() as conn:
            row = conn.execute(_user_query().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_email(self, email: str) -> User | None:
        """Case-insensitive lookup by email, soft-deleted rows included."""
        with self.engine.connect() as conn:
            row = conn.execute(_user_query().where(_users.c.email == email.strip().lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: str, *, when: datetime | None = None, keep_admin: bool = False, **fields) -> bool:
        """Update mutable columns on a live user.

        Accepted fields: name, hashed_password, role_id, is_email_verified,
        is_active, two_factor_enabled. Unknown keys raise ValueError.
        Setting is_active to False revokes every session in the same transaction.
        With keep_admin=True the UPDATE only matches while the user is not the
        last live, active admin (see _keeps_an_admin).
        Returns True if a row was updated.
        """
        unknown = set(fields) - _USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        now = when or datetime.now(timezone.utc)
        values = {k: (1 if v else 0) if k in _BOOL_FIELDS else v for k, v in fields.items()}
        values["updated_at"] = _iso(now)
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_live_user(user_id, keep_admin)).values(**values))
            if result.rowcount and "is_active" in fields and not fields["is_active"]:
                _revoke_user_sessions(conn, user_id, now)
        return result.rowcount > 0

    def update_last_login(self, user_id: str, when: datetime) -> None:
        with self.engine.begin() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_iso(when)))

    def set_user_active(self, user_id: str, active: bool, when: datetime, keep_admin: bool = False) -> bool:
        """Flip is_active. Deactivation revokes every session in the same transaction."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(_live_user(user_id, keep_admin))
                .values(is_active=1 if active else 0, updated_at=_iso(when))
            )
            if result.rowcount and not active:
                _revoke_user_sessions(conn, user_id, when)
        return result.rowcount > 0

    def soft_delete_user(self, user_id: str, when: datetime, keep_admin: bool = False) -> bool:
        """Stamp deleted_at, revoke all sessions and drop live one-time tokens.

        Returns False if the user does not exist, is already deleted, or
        keep_admin is set and the user is the last active admin.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(_live_user(user_id, keep_admin))
                .values(deleted_at=_iso(when), updated_at=_iso(when))
            )
            if result.rowcount == 0:
                return False
            _revoke_user_sessions(conn, user_id, when)
            conn.execute(
                _one_time_tokens.delete().where(
                    (_one_time_tokens.c.user_id == user_id) & _one_time_tokens.c.consumed_at.is_(None)
                )
            )
        return True

    def list_users(
        self,
        *,
        offset: int = 0,
        limit: int = 10,
        search: str | None = None,
        is_active: bool | None = None,
        is_email_verified: bool | None = None,
        role_name: str | None = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> tuple[list[User], int]:
        """Return one page of live users plus the total number of matches.

        sort_by must be a key of _SORT_COLUMNS; anything else raises ValueError.
        """
        if sort_by not in _SORT_COLUMNS:
            raise ValueError(f"Unsupported sort column: {sort_by!r}")
        query = _user_query().where(_users.c.deleted_at.is_(None))
        if search:
            needle = search.strip().lower()
            query = query.where(
                or_(
                    func.lower(_users.c.email).contains(needle, autoescape=True),
                    func.lower(_users.c.name).contains(needle, autoescape=True),
                )
            )
        if is_active is not None:
            query = query.where(_users.c.is_active == (1 if is_active else 0))
        if is_email_verified is not None:
            query = query.where(_users.c.is_email_verified == (1 if is_email_verified else 0))
        if role_name is not None:
            query = query.where(_roles.c.name == role_name)

        column = _SORT_COLUMNS[sort_by]
        ordered = query.order_by(column.desc() if sort_order == "desc" else column.asc(), _users.c.id)
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(query.subquery())).scalar() or 0
            rows = conn.execute(ordered.offset(offset).limit(limit)).fetchall()
        return [_row_to_user(r) for r in rows], total

    def user_counts(self, since: datetime) -> dict:
        """Aggregate counts over live users for the admin overview."""
        alive = _users.c.deleted_at.is_(None)
        with self.engine.connect() as conn:

            def count(*conditions) -> int:
                query = select(func.count()).select_from(_users).where(alive, *conditions)
                return conn.execute(query).scalar() or 0

            by_role_rows = conn.execute(
                select(_roles.c.name, func.count(_users.c.id))
                .select_from(_users.outerjoin(_roles, _users.c.role_id == _roles.c.id))
                .where(alive)
                .group_by(_roles.c.name)
            ).fetchall()
            return {
                "total": count(),
                "active": count(_users.c.is_active == 1),
                "verified": count(_users.c.is_email_verified == 1),
                "new_since": count(_users.c.created_at >= _iso(since)),
                "by_role": {(name or "none"): n for name, n in by_role_rows},
            }

    # ------------------------------------------------------------------
    # Roles and permissions (reference data)
    # ------------------------------------------------------------------

    def ensure_permission(self, permission: Permission) -> int:
        """Return the id of the named permission, inserting it if missing."""
        with self.engine.begin() as conn:
            existing = conn.execute(
                select(_permissions.c.id).where(_permissions.c.name == permission.name)
            ).scalar()
            if existing is not None:
                return existing
            result = conn.execute(
                _permissions.insert().values(
                    name=permission.name,
                    resource=permission.resource,
                    action=permission.action,
                    description=permission.description,
                )
            )
            return result.inserted_primary_key[0]

    def ensure_role(self, role: Role) -> int:
        """Return the id of the named role, inserting it if missing."""
        with self.engine.begin() as conn:
            existing = conn.execute(select(_roles.c.id).where(_roles.c.name == role.name)).scalar()
            if existing is not None:
                return existing
            result = conn.execute(
                _roles.insert().values(
                    name=role.name,
                    description=role.description,
                    is_system=1 if role.is_system else 0,
                    created_at=_now_iso(),
                )
            )
            return result.inserted_primary_key[0]

    def grant_permission(self, role_id: int, permission_id: int) -> bool:
        """Link a permission to a role. Returns False if the link already existed."""
        with self.engine.begin() as conn:
            existing = conn.execute(
                select(_role_permissions.c.role_id).where(
                    (_role_permissions.c.role_id == role_id) & (_role_permissions.c.permission_id == permission_id)
                )
            ).first()
            if existing is not None:
                return False
            conn.execute(_role_permissions.insert().values(role_id=role_id, permission_id=permission_id))
        return True

    def get_role(self, role_id: int) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.id == role_id)).fetchone()
            return _row_to_role(row, _permission_names(conn, row.id)) if row is not None else None

    def get_role_by_name(self, name: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.name == name)).fetchone()
            return _row_to_role(row, _permission_names(conn, row.id)) if row is not None else None

    def list_roles(self) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(_roles.select().order_by(_roles.c.name)).fetchall()
            return [_row_to_role(r, _permission_names(conn, r.id)) for r in rows]

    def get_role_permissions(self, role_id: int) -> list[Permission]:
        """Every permission granted to the role, ordered by name."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_permissions)
                .select_from(_permissions.join(_role_permissions, _role_permissions.c.permission_id == _permissions.c.id))
                .where(_role_permissions.c.role_id == role_id)
                .order_by(_permissions.c.name)
            ).fetchall()
        return [_row_to_permission(r) for r in rows]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session.id,
                    user_id=session.user_id,
                    family_id=session.family_id,
                    counter=session.counter,
                    issued_at=_iso(session.issued_at),
                    expires_at=_iso(session.expires_at),
                    revoked=1 if session.revoked else 0,
                    ip_address=session.ip_address,
                    user_agent=session.user_agent,
                )
            )

    def get_session(self, session_id: str) -> Session | None:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def list_sessions(self, user_id: str, include_revoked: bool = False) -> list[Session]:
        """Sessions of a user, newest first."""
        query = _sessions.select().where(_sessions.c.user_id == user_id)
        if not include_revoked:
            query = query.where(_sessions.c.revoked == 0)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_sessions.c.issued_at.desc())).fetchall()
        return [_row_to_session(r) for r in rows]

    def update_session_if_counter(self, session_id: str, expected_counter: int, new_counter: int, when: datetime) -> bool:
        """Advance the rotation counter only if it still equals expected_counter.

        Single conditional UPDATE: concurrent callers holding the same
        expected value race on the row, and exactly one sees rowcount == 1.
        A revoked session never matches.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.update()
                .where(
                    (_sessions.c.id == session_id)
                    & (_sessions.c.counter == expected_counter)
                    & (_sessions.c.revoked == 0)
                )
                .values(counter=new_counter, last_used_at=_iso(when))
            )
        return result.rowcount == 1

    def revoke_session(self, session_id: str, when: datetime) -> bool:
        """Mark one session revoked. Returns False if missing or already revoked."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.id == session_id) & (_sessions.c.revoked == 0))
                .values(revoked=1, revoked_at=_iso(when))
            )
        return result.rowcount > 0

    def revoke_all_sessions(self, user_id: str, when: datetime) -> int:
        """Mark every live session of the user revoked. Returns how many changed."""
        with self.engine.begin() as conn:
            return _revoke_user_sessions(conn, user_id, when)

    # ------------------------------------------------------------------
    # One-time tokens
    # ------------------------------------------------------------------

    def replace_one_time_token(self, token: OneTimeToken) -> int:
        """Drop the user's unconsumed tokens of token.purpose, then insert token."""
        with self.engine.begin() as conn:
            conn.execute(
                _one_time_tokens.delete().where(
                    (_one_time_tokens.c.user_id == token.user_id)
                    & (_one_time_tokens.c.purpose == token.purpose)
                    & _one_time_tokens.c.consumed_at.is_(None)
                )
            )
            return _insert_token(conn, token)

    def get_one_time_token(self, token_hash: str) -> OneTimeToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(_one_time_tokens.select().where(_one_time_tokens.c.token_hash == token_hash)).fetchone()
        return _row_to_token(row) if row is not None else None

    def list_one_time_tokens(self, user_id: str, purpose: str) -> list[OneTimeToken]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _one_time_tokens.select()
                .where((_one_time_tokens.c.user_id == user_id) & (_one_time_tokens.c.purpose == purpose))
                .order_by(_one_time_tokens.c.id)
            ).fetchall()
        return [_row_to_token(r) for r in rows]

    def consume_verification_token(self, token_id: int, user_id: str, when: datetime) -> bool:
        """Consume the token and mark the user's email verified, atomically.

        Returns False (and changes nothing) if the token was already consumed.
        """
        with self.engine.begin() as conn:
            if not _consume_token(conn, token_id, when):
                return False
            conn.execute(
                _users.update().where(_users.c.id == user_id).values(is_email_verified=1, updated_at=_iso(when))
            )
        return True

    def consume_reset_token(self, token_id: int, user_id: str, hashed_password: str, when: datetime) -> bool:
        """Consume the token, replace the password hash and revoke every session, atomically.

        Returns False (and changes nothing) if the token was already consumed.
        """
        with self.engine.begin() as conn:
            if not _consume_token(conn, token_id, when):
                return False
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(hashed_password=hashed_password, updated_at=_iso(when))
            )
            _revoke_user_sessions(conn, user_id, when)
        return True

    def change_password(self, user_id: str, hashed_password: str, when: datetime) -> bool:
        """Replace the password hash and revoke every session, atomically."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & _users.c.deleted_at.is_(None))
                .values(hashed_password=hashed_password, updated_at=_iso(when))
            )
            if result.rowcount:
                _revoke_user_sessions(conn, user_id, when)
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def purge_expired(self, now: datetime) -> tuple[int, int]:
        """Delete expired one-time tokens and expired sessions.

        Returns (tokens_removed, sessions_removed).
        """
        cutoff = _iso(now)
        with self.engine.begin() as conn:
            tokens = conn.execute(_one_time_tokens.delete().where(_one_time_tokens.c.expires_at < cutoff))
            sessions = conn.execute(_sessions.delete().where(_sessions.c.expires_at < cutoff))
        return tokens.rowcount, sessions.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Statement helpers shared by transactional methods
# ---------------------------------------------------------------------------


def _insert_token(conn: Connection, token: OneTimeToken) -> int:
    result = conn.execute(
        _one_time_tokens.insert().values(
            user_id=token.user_id,
            purpose=token.purpose,
            token_hash=token.token_hash,
            expires_at=_iso(token.expires_at),
            created_at=_now_iso(),
        )
    )
    token.id = result.inserted_primary_key[0]
    return token.id


def _consume_token(conn: Connection, token_id: int, when: datetime) -> bool:
    result = conn.execute(
        _one_time_tokens.update()
        .where((_one_time_tokens.c.id == token_id) & _one_time_tokens.c.consumed_at.is_(None))
        .values(consumed_at=_iso(when))
    )
    return result.rowcount == 1


def _keeps_an_admin(user_id: str):
    """Row condition: this user is not the last live, active admin.

    Evaluated inside the guarded UPDATE, so the count and the write are one
    statement.
    """
    admin_role_id = select(_roles.c.id).where(_roles.c.name == _ADMIN_ROLE).scalar_subquery()
    others = _users.alias("others")
    other_admins = (
        select(func.count())
        .select_from(others)
        .where(
            (others.c.id != user_id)
            & (others.c.role_id == admin_role_id)
            & (others.c.is_active == 1)
            & others.c.deleted_at.is_(None)
        )
        .scalar_subquery()
    )
    return or_(
        _users.c.is_active == 0,
        _users.c.role_id.is_(None),
        _users.c.role_id != admin_role_id,
        other_admins > 0,
    )


def _live_user(user_id: str, keep_admin: bool = False):
    condition = (_users.c.id == user_id) & _users.c.deleted_at.is_(None)
    if keep_admin:
        condition = condition & _keeps_an_admin(user_id)
    return condition


def _revoke_user_sessions(conn: Connection, user_id: str, when: datetime) -> int:
    result = conn.execute(
        _sessions.update()
        .where((_sessions.c.user_id == user_id) & (_sessions.c.revoked == 0))
        .values(revoked=1, revoked_at=_iso(when))
    )
    return result.rowcount


def _permission_names(conn: Connection, role_id: int) -> set[str]:
    rows = conn.execute(
        select(_permissions.c.name)
        .select_from(_permissions.join(_role_permissions, _role_permissions.c.permission_id == _permissions.c.id))
        .where(_role_permissions.c.role_id == role_id)
    ).fetchall()
    return {r[0] for r in rows}


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        name=row.name,
        role_id=row.role_id,
        role_name=row.role_name,
        is_email_verified=bool(row.is_email_verified),
        is_active=bool(row.is_active),
        two_factor_enabled=bool(row.two_factor_enabled),
        deleted_at=_parse(row.deleted_at),
        last_login=_parse(row.last_login),
        created_at=_parse(row.created_at),
        updated_at=_parse(row.updated_at),
    )


def _row_to_role(row, permission_names: set[str]) -> Role:
    return Role(
        id=row.id,
        name=row.name,
        description=row.description,
        is_system=bool(row.is_system),
        permissions=permission_names,
    )


def _row_to_permission(row) -> Permission:
    return Permission(
        id=row.id,
        name=row.name,
        resource=row.resource,
        action=row.action,
        description=row.description,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        family_id=row.family_id,
        counter=row.counter,
        issued_at=_parse(row.issued_at),
        expires_at=_parse(row.expires_at),
        revoked=bool(row.revoked),
        revoked_at=_parse(row.revoked_at),
        last_used_at=_parse(row.last_used_at),
        ip_address=row.ip_address,
        user_agent=row.user_agent,
    )


def _row_to_token(row) -> OneTimeToken:
    return OneTimeToken(
        id=row.id,
        user_id=row.user_id,
        purpose=row.purpose,
        token_hash=row.token_hash,
        expires_at=_parse(row.expires_at),
        consumed_at=_parse(row.consumed_at),
        created_at=_parse(row.created_at),
    )
