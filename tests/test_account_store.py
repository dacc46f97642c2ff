"""
tests/test_account_store.py -- Unit tests for AccountStore (SQLAlchemy Core).

Each test gets its own shared-memory SQLite database via the store fixture.

Coverage:
  - create / find_by_id / find_by_username / find_by_username_or_email
  - Email normalization: stored lower-cased, looked up case-insensitively
  - UNIQUE violations surface as DuplicateAccountError naming the field
  - Credential, last_login and admin-field updates; delete
  - Absence is None / False, database failures are StoreError
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from auth.models import AccountCreate, Role
from auth.store import AccountStore, DuplicateAccountError, StoreError


def _create(store: AccountStore, username: str = "alice", email: str = "a@x.com", **extra):
    return store.create(AccountCreate(username=username, email=email, hashed_password="$2b$04$hash", **extra))


class TestCreateAndFind:
    def test_create_returns_stored_record(self, store: AccountStore) -> None:
        account = _create(store, first_name="Alice", age=30)
        assert account.id
        assert account.username == "alice"
        assert account.role is Role.user
        assert account.is_active is True
        assert account.first_name == "Alice"
        assert account.age == 30
        assert account.password_changed_at is None
        assert account.last_login is None
        assert account.created_at is not None and account.created_at.tzinfo is not None

    def test_ids_are_unique_opaque_strings(self, store: AccountStore) -> None:
        a = _create(store, "a1", "a1@x.com")
        b = _create(store, "b1", "b1@x.com")
        assert a.id != b.id
        assert isinstance(a.id, str)

    def test_find_by_id_and_username(self, store: AccountStore) -> None:
        account = _create(store)
        assert store.find_by_id(account.id).username == "alice"
        assert store.find_by_username("alice").id == account.id

    def test_username_lookup_is_case_sensitive(self, store: AccountStore) -> None:
        _create(store)
        assert store.find_by_username("Alice") is None

    def test_email_normalized_to_lower_case(self, store: AccountStore) -> None:
        account = _create(store, email="  Alice@Example.COM ")
        assert account.email == "alice@example.com"
        assert store.find_by_username_or_email(None, "ALICE@example.com").id == account.id

    def test_find_by_username_or_email_matches_either(self, store: AccountStore) -> None:
        account = _create(store)
        assert store.find_by_username_or_email("alice", "other@x.com").id == account.id
        assert store.find_by_username_or_email("someone", "a@x.com").id == account.id
        assert store.find_by_username_or_email("someone", "other@x.com") is None
        assert store.find_by_username_or_email(None, None) is None

    def test_absent_is_none_not_error(self, store: AccountStore) -> None:
        assert store.find_by_id("missing") is None
        assert store.find_by_username("missing") is None

    def test_admin_role_persisted(self, store: AccountStore) -> None:
        account = _create(store, role=Role.admin)
        assert store.find_by_id(account.id).role is Role.admin


class TestUniqueness:
    def test_duplicate_username(self, store: AccountStore) -> None:
        _create(store)
        with pytest.raises(DuplicateAccountError) as excinfo:
            _create(store, "alice", "different@x.com")
        assert excinfo.value.field == "username"

    def test_duplicate_email_differing_only_in_case(self, store: AccountStore) -> None:
        _create(store)
        with pytest.raises(DuplicateAccountError) as excinfo:
            _create(store, "bob", "A@X.COM")
        assert excinfo.value.field == "email"

    def test_duplicate_is_a_store_error(self) -> None:
        assert issubclass(DuplicateAccountError, StoreError)


class TestUpdates:
    def test_update_credential(self, store: AccountStore) -> None:
        account = _create(store)
        changed_at = datetime.now(timezone.utc)
        assert store.update_credential(account.id, "$2b$04$newhash", changed_at) is True
        updated = store.find_by_id(account.id)
        assert updated.hashed_password == "$2b$04$newhash"
        assert updated.password_changed_at == changed_at

    def test_timestamps_keep_microseconds(self, store: AccountStore) -> None:
        account = _create(store)
        at = datetime(2026, 3, 1, 8, 30, 15, 123456, tzinfo=timezone.utc)
        store.update_last_login(account.id, at)
        assert store.find_by_id(account.id).last_login == at

    def test_non_utc_timestamps_normalized(self, store: AccountStore) -> None:
        account = _create(store)
        at = datetime(2026, 3, 1, 10, 0, tzinfo=timezone(timedelta(hours=2)))
        store.update_last_login(account.id, at)
        assert store.find_by_id(account.id).last_login == at

    def test_update_account_role_and_active(self, store: AccountStore) -> None:
        account = _create(store)
        assert store.update_account(account.id, role=Role.admin, is_active=False) is True
        updated = store.find_by_id(account.id)
        assert updated.role is Role.admin
        assert updated.is_active is False
        assert updated.updated_at >= account.updated_at

    def test_updates_on_missing_account_return_false(self, store: AccountStore) -> None:
        now = datetime.now(timezone.utc)
        assert store.update_credential("missing", "h", now) is False
        assert store.update_last_login("missing", now) is False
        assert store.update_account("missing", is_active=False) is False

    def test_delete(self, store: AccountStore) -> None:
        account = _create(store)
        assert store.delete(account.id) is True
        assert store.find_by_id(account.id) is None
        assert store.delete(account.id) is False

    def test_list_and_count_admins(self, store: AccountStore) -> None:
        _create(store, "zed", "z@x.com", role=Role.admin)
        _create(store, "amy", "amy@x.com", role=Role.admin, is_active=False)
        _create(store, "bob", "b@x.com")
        assert [a.username for a in store.list_accounts()] == ["amy", "bob", "zed"]
        assert store.count_active_admins() == 1


class TestFailures:
    def test_database_failure_is_store_error(self, store: AccountStore, monkeypatch: pytest.MonkeyPatch) -> None:
        def broken_connect(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(store.engine, "connect", broken_connect)
        with pytest.raises(StoreError):
            store.find_by_id("anything")
        with pytest.raises(StoreError):
            _create(store)
