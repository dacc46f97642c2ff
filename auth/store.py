"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts.

Pattern: Repository + Data Mapper.
AccountStore is the repository; _row_to_account is the mapper. Service and
dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Uniqueness of username and email is enforced by UNIQUE constraints, not
  only by the service's pre-check. Two concurrent signups can both pass the
  pre-check; the second INSERT then fails here and surfaces as
  DuplicateAccountError naming the column.

  Emails are lower-cased on the way in and on every lookup, so the UNIQUE
  constraint is effectively case-insensitive. Usernames are case-sensitive.

Failure contract:
  "Not found" is None / False -- never an exception.
  Unique violations raise DuplicateAccountError(field).
  Any other database failure raises StoreError. The core maps these onto
  ConflictError and InternalError respectively.

Timestamps are stored as ISO 8601 UTC strings with microsecond precision and
mapped back to aware datetimes.

DB path: auth/gatekeeper_accounts.db by default (Settings.database_url).

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import Account, AccountCreate, Role

logger = logging.getLogger("gatekeeper.store")

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class StoreError(Exception):
    """The database could not complete the operation."""


class DuplicateAccountError(StoreError):
    """A UNIQUE constraint rejected the write. field is "username" or "email"."""

    def __init__(self, field: str) -> None:
        super().__init__(f"duplicate {field}")
        self.field = field


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(320), nullable=False, unique=True),  # lower-cased
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("age", Integer),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default=Role.user.value),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("password_changed_at", String(32)),  # NULL until the first change after signup
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.astimezone(timezone.utc).isoformat() if value is not None else None


def _parse(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=timezone.utc)


def _duplicate_field(exc: IntegrityError) -> str:
    # SQLite: "UNIQUE constraint failed: accounts.email"
    # Postgres: 'duplicate key value violates unique constraint ... Key (email)=...'
    return "email" if "email" in str(exc.orig).lower() else "username"


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account records.

    Usage:
        store = AccountStore(get_settings().database_url)
        account = store.create(AccountCreate(username="alice", email="a@x.com", hashed_password=h))
        same = store.find_by_id(account.id)
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_username_or_email(self, username: str | None, email: str | None) -> Account | None:
        """Return the first account whose username OR email matches, or None.

        Used by the signup uniqueness pre-check. Either argument may be None.
        """
        clauses = []
        if username:
            clauses.append(_accounts.c.username == username)
        if email:
            clauses.append(_accounts.c.email == email.strip().lower())
        if not clauses:
            return None
        return self._fetch_one(select(_accounts).where(or_(*clauses)))

    def find_by_username(self, username: str) -> Account | None:
        """Look up an account by exact username (case-sensitive). Returns None if not found."""
        return self._fetch_one(select(_accounts).where(_accounts.c.username == username))

    def find_by_id(self, account_id: str) -> Account | None:
        """Look up an account by primary key. Returns None if not found."""
        return self._fetch_one(select(_accounts).where(_accounts.c.id == account_id))

    def list_accounts(self) -> list[Account]:
        """Return all accounts ordered by username. Admin-only operation."""
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(select(_accounts).order_by(_accounts.c.username)).fetchall()
        except SQLAlchemyError as exc:
            logger.error("list_accounts failed: %s", exc)
            raise StoreError("list_accounts failed") from exc
        return [_row_to_account(r) for r in rows]

    def count_active_admins(self) -> int:
        """Return the number of active Admin accounts (last-admin guard)."""
        stmt = (
            select(func.count())
            .select_from(_accounts)
            .where((_accounts.c.role == Role.admin.value) & (_accounts.c.is_active == 1))
        )
        try:
            with self.engine.connect() as conn:
                result = conn.execute(stmt).scalar()
        except SQLAlchemyError as exc:
            logger.error("count_active_admins failed: %s", exc)
            raise StoreError("count_active_admins failed") from exc
        return result or 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, fields: AccountCreate) -> Account:
        """Insert a new account and return the stored record.

        Raises DuplicateAccountError if the username or email is taken --
        including when a concurrent request inserted it after the caller's
        pre-check.
        """
        now = _iso(_now())
        account_id = str(uuid.uuid4())
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _accounts.insert().values(
                        id=account_id,
                        username=fields.username,
                        email=fields.email.strip().lower(),
                        first_name=fields.first_name,
                        last_name=fields.last_name,
                        age=fields.age,
                        hashed_password=fields.hashed_password,
                        role=Role(fields.role).value,
                        is_active=1 if fields.is_active else 0,
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise DuplicateAccountError(_duplicate_field(exc)) from exc
        except SQLAlchemyError as exc:
            logger.error("create failed: %s", exc)
            raise StoreError("create failed") from exc

        created = self.find_by_id(account_id)
        if created is None:
            raise StoreError("account missing after insert")
        return created

    def update_credential(self, account_id: str, hashed_password: str, changed_at: datetime) -> bool:
        """Replace the password hash and stamp password_changed_at. Returns False if not found."""
        return self._update(
            account_id,
            hashed_password=hashed_password,
            password_changed_at=_iso(changed_at),
        )

    def update_last_login(self, account_id: str, at: datetime) -> bool:
        """Stamp last_login for the given account. Returns False if not found."""
        return self._update(account_id, last_login=_iso(at))

    def update_account(self, account_id: str, role: Role | None = None, is_active: bool | None = None) -> bool:
        """Update the admin-mutable fields (role, is_active). Returns False if not found."""
        fields: dict = {}
        if role is not None:
            fields["role"] = Role(role).value
        if is_active is not None:
            fields["is_active"] = 1 if is_active else 0
        return self._update(account_id, **fields)

    def delete(self, account_id: str) -> bool:
        """Permanently delete an account. Returns True if deleted, False if not found.

        Callers must check last-admin invariants before calling this method.
        Outstanding tokens for the account stop working on their next request
        because AccessGate re-resolves the account every time.
        """
        try:
            with self.engine.connect() as conn:
                result = conn.execute(_accounts.delete().where(_accounts.c.id == account_id))
                conn.commit()
        except SQLAlchemyError as exc:
            logger.error("delete failed: %s", exc)
            raise StoreError("delete failed") from exc
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fetch_one(self, stmt) -> Account | None:
        try:
            with self.engine.connect() as conn:
                row = conn.execute(stmt).fetchone()
        except SQLAlchemyError as exc:
            logger.error("query failed: %s", exc)
            raise StoreError("query failed") from exc
        return _row_to_account(row) if row is not None else None

    def _update(self, account_id: str, **fields) -> bool:
        fields["updated_at"] = _iso(_now())
        try:
            with self.engine.connect() as conn:
                result = conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(**fields))
                conn.commit()
        except SQLAlchemyError as exc:
            logger.error("update failed: %s", exc)
            raise StoreError("update failed") from exc
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        role=Role(row.role),
        first_name=row.first_name,
        last_name=row.last_name,
        age=row.age,
        is_active=bool(row.is_active),
        password_changed_at=_parse(row.password_changed_at),
        last_login=_parse(row.last_login),
        created_at=_parse(row.created_at),
        updated_at=_parse(row.updated_at),
    )
