"""Unit tests for auth/store.py (CredentialStore on in-memory SQLite).

Covers:
- Case-insensitive email uniqueness (IntegrityError on duplicates)
- Reference data seeding is idempotent and grants the documented permissions
- update_session_if_counter: compare-and-increment, exactly one winner
- Atomic multi-row operations: reset consume, soft delete, deactivation
- list_users filtering / sorting / pagination, user_counts
- purge_expired removes only expired rows
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import PURPOSE_EMAIL_VERIFY, PURPOSE_PASSWORD_RESET, OneTimeToken, Session, User
from auth.seed import DEFAULT_PERMISSIONS, seed_reference_data
from auth.store import CredentialStore

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _user(store: CredentialStore, email: str, name: str = "User", role: str = "user", **kwargs) -> str:
    role_id = store.get_role_by_name(role).id
    return store.create_user(User(email=email, hashed_password="x", name=name, role_id=role_id, **kwargs))


def _session(store: CredentialStore, user_id: str, sid: str = "s1", expires_in: timedelta = timedelta(days=1)) -> Session:
    session = Session(id=sid, user_id=user_id, family_id=f"fam-{sid}", issued_at=NOW, expires_at=NOW + expires_in)
    store.create_session(session)
    return session


def _token(user_id: str, token_hash: str, purpose: str = PURPOSE_PASSWORD_RESET, expires_in=timedelta(hours=1)):
    return OneTimeToken(user_id=user_id, purpose=purpose, token_hash=token_hash, expires_at=NOW + expires_in)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class TestUsers:
    def test_email_stored_lower_case_and_found_any_case(self, store: CredentialStore) -> None:
        uid = _user(store, "Mixed@Example.COM")
        assert store.get_user(uid).email == "mixed@example.com"
        assert store.get_user_by_email("MIXED@example.com").id == uid

    def test_duplicate_email_differing_in_case_is_rejected(self, store: CredentialStore) -> None:
        _user(store, "dup@example.com")
        with pytest.raises(IntegrityError):
            _user(store, "DUP@example.com")

    def test_create_user_with_token_is_atomic(self, store: CredentialStore) -> None:
        _user(store, "taken@example.com")
        token = _token("", "hash-atomic", PURPOSE_EMAIL_VERIFY)
        with pytest.raises(IntegrityError):
            store.create_user(User(email="taken@example.com", hashed_password="x", name="X"), token)
        assert store.get_one_time_token("hash-atomic") is None, "Token must not survive a failed signup"

    def test_role_name_is_joined(self, store: CredentialStore) -> None:
        uid = _user(store, "mod@example.com", role="moderator")
        assert store.get_user(uid).role_name == "moderator"

    def test_update_user_rejects_unknown_fields(self, store: CredentialStore) -> None:
        uid = _user(store, "u@example.com")
        with pytest.raises(ValueError):
            store.update_user(uid, email="other@example.com")

    def test_soft_delete_revokes_sessions_and_drops_live_tokens(self, store: CredentialStore) -> None:
        uid = _user(store, "gone@example.com")
        _session(store, uid)
        store.replace_one_time_token(_token(uid, "hash-gone"))
        assert store.soft_delete_user(uid, NOW)
        assert store.get_user(uid).is_deleted
        assert store.get_session("s1").revoked
        assert store.get_one_time_token("hash-gone") is None
        assert not store.soft_delete_user(uid, NOW), "Second delete is a no-op"

    def test_deactivation_revokes_sessions(self, store: CredentialStore) -> None:
        uid = _user(store, "off@example.com")
        _session(store, uid)
        store.set_user_active(uid, False, NOW)
        assert not store.get_user(uid).is_active
        assert store.get_session("s1").revoked


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------


class TestReferenceData:
    def test_seed_is_idempotent(self, store: CredentialStore) -> None:
        before = {r.name: r.permissions for r in store.list_roles()}
        seed_reference_data(store)
        after = {r.name: r.permissions for r in store.list_roles()}
        assert before == after

    def test_admin_holds_every_permission(self, store: CredentialStore) -> None:
        admin = store.get_role_by_name("admin")
        assert admin.permissions == {name for name, _ in DEFAULT_PERMISSIONS}
        assert admin.is_system

    def test_user_role_grants(self, store: CredentialStore) -> None:
        assert store.get_role_by_name("user").permissions == {"file:upload", "file:read"}

    def test_role_permissions_carry_resource_and_action(self, store: CredentialStore) -> None:
        perms = store.get_role_permissions(store.get_role_by_name("moderator").id)
        by_name = {p.name: p for p in perms}
        assert by_name["user:update"].resource == "user"
        assert by_name["user:update"].action == "update"


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class TestSessions:
    def test_conditional_update_has_exactly_one_winner(self, store: CredentialStore) -> None:
        uid = _user(store, "race@example.com")
        _session(store, uid)
        assert store.update_session_if_counter("s1", 0, 1, NOW) is True
        assert store.update_session_if_counter("s1", 0, 1, NOW) is False, "Stale expected counter must lose"
        session = store.get_session("s1")
        assert session.counter == 1
        assert session.last_used_at == NOW

    def test_conditional_update_never_matches_revoked_session(self, store: CredentialStore) -> None:
        uid = _user(store, "rev@example.com")
        _session(store, uid)
        store.revoke_session("s1", NOW)
        assert store.update_session_if_counter("s1", 0, 1, NOW) is False

    def test_revoke_all_counts_only_live_sessions(self, store: CredentialStore) -> None:
        uid = _user(store, "many@example.com")
        for sid in ("a", "b", "c"):
            _session(store, uid, sid)
        store.revoke_session("a", NOW)
        assert store.revoke_all_sessions(uid, NOW) == 2
        assert store.list_sessions(uid) == []
        assert len(store.list_sessions(uid, include_revoked=True)) == 3


# ---------------------------------------------------------------------------
# One-time tokens
# ---------------------------------------------------------------------------


class TestOneTimeTokens:
    def test_replace_drops_only_same_purpose(self, store: CredentialStore) -> None:
        uid = _user(store, "tok@example.com")
        store.replace_one_time_token(_token(uid, "verify-1", PURPOSE_EMAIL_VERIFY))
        store.replace_one_time_token(_token(uid, "reset-1"))
        store.replace_one_time_token(_token(uid, "reset-2"))
        assert [t.token_hash for t in store.list_one_time_tokens(uid, PURPOSE_PASSWORD_RESET)] == ["reset-2"]
        assert [t.token_hash for t in store.list_one_time_tokens(uid, PURPOSE_EMAIL_VERIFY)] == ["verify-1"]

    def test_consume_reset_is_single_use_and_revokes_sessions(self, store: CredentialStore) -> None:
        uid = _user(store, "reset@example.com")
        _session(store, uid)
        token = _token(uid, "reset-once")
        store.replace_one_time_token(token)
        assert store.consume_reset_token(token.id, uid, "new-hash", NOW)
        assert store.get_user(uid).hashed_password == "new-hash"
        assert store.get_session("s1").revoked
        assert not store.consume_reset_token(token.id, uid, "other-hash", NOW)
        assert store.get_user(uid).hashed_password == "new-hash", "Second consume must change nothing"

    def test_consume_verification_sets_flag(self, store: CredentialStore) -> None:
        uid = _user(store, "ver@example.com")
        token = _token(uid, "verify-once", PURPOSE_EMAIL_VERIFY)
        store.replace_one_time_token(token)
        assert store.consume_verification_token(token.id, uid, NOW)
        assert store.get_user(uid).is_email_verified
        assert store.get_one_time_token("verify-once").consumed_at == NOW

    def test_purge_removes_only_expired_rows(self, store: CredentialStore) -> None:
        uid = _user(store, "purge@example.com")
        store.replace_one_time_token(_token(uid, "old", expires_in=timedelta(minutes=5)))
        store.replace_one_time_token(_token(uid, "fresh", PURPOSE_EMAIL_VERIFY, expires_in=timedelta(days=1)))
        _session(store, uid, "short", expires_in=timedelta(minutes=5))
        _session(store, uid, "long", expires_in=timedelta(days=7))
        assert store.purge_expired(NOW + timedelta(hours=1)) == (1, 1)
        assert store.get_one_time_token("fresh") is not None
        assert store.get_session("long") is not None
        assert store.get_session("short") is None


# ---------------------------------------------------------------------------
# Listing and counts
# ---------------------------------------------------------------------------


class TestListing:
    @pytest.fixture
    def populated(self, store: CredentialStore) -> CredentialStore:
        _user(store, "alice@example.com", name="Alice", is_email_verified=True)
        _user(store, "bob@example.com", name="Bob", role="moderator")
        _user(store, "carol@example.com", name="Carol", role="admin", is_email_verified=True)
        dead = _user(store, "dave@example.com", name="Dave")
        store.soft_delete_user(dead, NOW)
        return store

    def test_excludes_deleted_users(self, populated: CredentialStore) -> None:
        users, total = populated.list_users(limit=50)
        assert total == 3
        assert "dave@example.com" not in {u.email for u in users}

    def test_search_matches_name_or_email(self, populated: CredentialStore) -> None:
        users, total = populated.list_users(search="BOB")
        assert total == 1 and users[0].name == "Bob"

    def test_filters_and_sorting(self, populated: CredentialStore) -> None:
        users, total = populated.list_users(is_email_verified=True, sort_by="name", sort_order="asc")
        assert total == 2
        assert [u.name for u in users] == ["Alice", "Carol"]
        users, _ = populated.list_users(role_name="moderator")
        assert [u.email for u in users] == ["bob@example.com"]

    def test_pagination(self, populated: CredentialStore) -> None:
        users, total = populated.list_users(offset=2, limit=2, sort_by="email", sort_order="asc")
        assert total == 3
        assert [u.email for u in users] == ["carol@example.com"]

    def test_search_wildcards_are_literal(self, populated: CredentialStore) -> None:
        _, total = populated.list_users(search="%")
        assert total == 0

    def test_user_counts(self, populated: CredentialStore) -> None:
        counts = populated.user_counts(since=NOW - timedelta(days=3650))
        assert counts["total"] == 3
        assert counts["verified"] == 2
        assert counts["by_role"] == {"user": 1, "moderator": 1, "admin": 1}

    def test_last_admin_guard(self, populated: CredentialStore) -> None:
        carol = populated.get_user_by_email("carol@example.com").id
        user_role = populated.get_role_by_name("user").id
        assert not populated.set_user_active(carol, False, NOW, keep_admin=True)
        assert not populated.soft_delete_user(carol, NOW, keep_admin=True)
        assert not populated.update_user(carol, keep_admin=True, role_id=user_role, name="Demoted")
        still = populated.get_user(carol)
        assert still.is_active and not still.is_deleted
        assert still.role_name == "admin" and still.name == "Carol", "A guarded write that fails changes nothing"

    def test_last_admin_guard_allows_removal_with_a_second_admin(self, populated: CredentialStore) -> None:
        carol = populated.get_user_by_email("carol@example.com").id
        _user(populated, "erin@example.com", name="Erin", role="admin")
        assert populated.set_user_active(carol, False, NOW, keep_admin=True)
        erin = populated.get_user_by_email("erin@example.com").id
        assert not populated.set_user_active(erin, False, NOW, keep_admin=True), "Erin is now the last active admin"

    def test_last_admin_guard_ignores_non_admins(self, populated: CredentialStore) -> None:
        bob = populated.get_user_by_email("bob@example.com").id
        assert populated.soft_delete_user(bob, NOW, keep_admin=True)

    def test_update_user_deactivation_revokes_sessions(self, populated: CredentialStore) -> None:
        alice = populated.get_user_by_email("alice@example.com").id
        _session(populated, alice)
        assert populated.update_user(alice, when=NOW, name="Alice B", is_active=False)
        assert populated.get_session("s1").revoked
