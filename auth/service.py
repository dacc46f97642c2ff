"""
auth/service.py -- Signup, login, password change and admin account workflows.

AuthService orchestrates the pieces: AccountStore for records, CredentialHasher
and PasswordPolicy for credentials, TokenService for bearer tokens. It never
builds an HTTP response -- every failure is a ServiceError tagged with an
ErrorKind and the route layer does the rest.

Security:
  [C1] Login runs bcrypt whether or not the username exists. Unknown usernames
       are verified against a dummy hash so response time does not reveal
       which usernames are registered. Unknown username and wrong password
       both raise the same "invalid credentials" error.

  Signup always creates Role.user. Admin accounts only come from
  provision_admin() (operator CLI) or an admin promoting an existing account.

  Uniqueness is pre-checked AND enforced by the store's UNIQUE constraints.
  A DuplicateAccountError from a concurrent insert maps onto the same
  ConflictError as the pre-check.

  change_password() stamps password_changed_at. AccessGate rejects every
  token issued before that instant on its next use.

  [M4] Admin updates block self-deactivation, self-demotion, self-deletion and
  removing the last active admin.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone

from auth.models import Account, AccountCreate, AccountProfile, AuthResult, ResolvedIdentity, Role, SignupInput
from auth.passwords import CredentialHasher, PasswordPolicy
from auth.store import AccountStore, DuplicateAccountError, StoreError
from auth.tokens import TokenService
from core.errors import (
    authentication_error,
    conflict_error,
    internal_error,
    not_found_error,
    validation_error,
)

logger = logging.getLogger("gatekeeper.auth")
audit = logging.getLogger("gatekeeper.audit")

INVALID_CREDENTIALS = "invalid credentials"
ACCOUNT_DEACTIVATED = "account deactivated"

_NAME_RE = re.compile(r"^[A-Za-z ]*$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_profile(account: Account) -> AccountProfile:
    """Strip credential material from a stored account."""
    return AccountProfile(
        id=account.id,
        username=account.username,
        email=account.email,
        role=account.role,
        first_name=account.first_name,
        last_name=account.last_name,
        age=account.age,
        is_active=account.is_active,
        last_login=account.last_login,
        created_at=account.created_at,
        updated_at=account.updated_at,
    )


@contextmanager
def _store_errors() -> Iterator[None]:
    """Translate AccountStore failures into the core error taxonomy."""
    try:
        yield
    except DuplicateAccountError as exc:
        raise conflict_error(exc.field) from exc
    except StoreError as exc:
        raise internal_error() from exc


class AuthService:
    """Authentication workflows over an AccountStore.

    Usage:
        service = AuthService(store, CredentialHasher(), TokenService(settings), PasswordPolicy())
        result = service.signup(SignupInput(username="alice", email="a@x.com", password="Str0ngPass!"))
        result = service.login("alice", "Str0ngPass!")
    """

    def __init__(
        self,
        store: AccountStore,
        hasher: CredentialHasher,
        tokens: TokenService,
        policy: PasswordPolicy,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._tokens = tokens
        self._policy = policy
        # Timing equalization dummy hash [C1]. Same cost factor as real hashes.
        self._dummy_hash = hasher.hash("gatekeeper_timing_dummy")

    # ------------------------------------------------------------------
    # Signup
    # ------------------------------------------------------------------

    def signup(self, data: SignupInput) -> AuthResult:
        """Register a new User account and issue its first token."""
        account = self._register(data, Role.user)
        token = self._tokens.issue(account.id, account.role, account.username)
        audit.info("signup account=%s username=%s", account.id, account.username)
        return AuthResult(account=to_profile(account), token=token, expires_in=self._tokens.default_ttl)

    def provision_admin(self, data: SignupInput) -> AccountProfile:
        """Create an Admin account. Operator-only; never reachable from signup."""
        account = self._register(data, Role.admin)
        audit.info("admin provisioned account=%s username=%s", account.id, account.username)
        return to_profile(account)

    def _register(self, data: SignupInput, role: Role) -> Account:
        fields = _validated_fields(data)

        # Username is checked on its own first so a request colliding with two
        # different accounts always names "username".
        with _store_errors():
            if self._store.find_by_username(fields.username) is not None:
                raise conflict_error("username")
            if self._store.find_by_username_or_email(None, fields.email) is not None:
                raise conflict_error("email")

        self._policy.check(data.password)
        fields.hashed_password = self._hasher.hash(data.password)
        fields.role = role

        with _store_errors():
            return self._store.create(fields)

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, username: str, password: str) -> AuthResult:
        """Authenticate a username/password pair with timing equalization [C1].

        The username is stripped the same way signup strips it. The password is not.
        """
        username = (username or "").strip()
        if not username or not password:
            raise validation_error("Username and password are required")

        with _store_errors():
            account = self._store.find_by_username(username)
        if account is None:
            # Equalize timing -- do NOT return early before running bcrypt [C1]
            self._hasher.verify(password, self._dummy_hash)
            audit.warning("login failed username=%s", username)
            raise authentication_error(INVALID_CREDENTIALS)
        if not account.is_active:
            audit.warning("login refused (inactive) account=%s", account.id)
            raise authentication_error(ACCOUNT_DEACTIVATED)
        if not self._hasher.verify(password, account.hashed_password):
            audit.warning("login failed username=%s", username)
            raise authentication_error(INVALID_CREDENTIALS)

        now = _utcnow()
        try:
            self._store.update_last_login(account.id, now)
            account = replace(account, last_login=now)
        except StoreError as exc:
            # Bookkeeping only -- the login itself has succeeded.
            logger.warning("Could not record last_login for account %s: %s", account.id, exc)

        token = self._tokens.issue(account.id, account.role, account.username)
        audit.info("login account=%s username=%s", account.id, account.username)
        return AuthResult(account=to_profile(account), token=token, expires_in=self._tokens.default_ttl)

    # ------------------------------------------------------------------
    # Password change
    # ------------------------------------------------------------------

    def change_password(self, account_id: str, current_password: str, new_password: str) -> None:
        """Replace the account's password after re-verifying the current one.

        Sets password_changed_at, which revokes every token issued earlier.
        """
        if not current_password or not new_password:
            raise validation_error("Current and new password are required")

        account = self._get(account_id)
        if not self._hasher.verify(current_password, account.hashed_password):
            audit.warning("password change refused account=%s", account.id)
            raise authentication_error("current password is incorrect")
        if new_password == current_password:
            raise validation_error("New password must differ from the current password", "new_password")
        self._policy.check(new_password, "new_password")

        hashed = self._hasher.hash(new_password)
        with _store_errors():
            updated = self._store.update_credential(account.id, hashed, _utcnow())
        if not updated:
            raise not_found_error("Account not found")
        audit.info("password changed account=%s", account.id)

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    def list_accounts(self) -> list[AccountProfile]:
        with _store_errors():
            accounts = self._store.list_accounts()
        return [to_profile(a) for a in accounts]

    def update_account(
        self,
        actor: ResolvedIdentity,
        account_id: str,
        role: Role | None = None,
        is_active: bool | None = None,
    ) -> AccountProfile:
        """Change an account's role or active flag on behalf of an admin [M4]."""
        if role is None and is_active is None:
            raise validation_error("No fields to update.")

        target = self._get(account_id)
        removes_admin = target.role == Role.admin and target.is_active and (role == Role.user or is_active is False)
        if target.id == actor.account_id:
            if is_active is False:
                raise validation_error("You cannot deactivate your own account.", "is_active")
            if role is not None and role != target.role:
                raise validation_error("You cannot change your own role.", "role")
        if removes_admin:
            self._ensure_not_last_admin()

        with _store_errors():
            self._store.update_account(target.id, role=role, is_active=is_active)
            updated = self._store.find_by_id(target.id)
        if updated is None:
            raise not_found_error("Account not found")
        audit.info(
            "account updated account=%s by=%s role=%s is_active=%s",
            target.id,
            actor.account_id,
            role.value if role is not None else "-",
            is_active if is_active is not None else "-",
        )
        return to_profile(updated)

    def delete_account(self, actor: ResolvedIdentity, account_id: str) -> None:
        """Permanently delete an account on behalf of an admin [M4]."""
        target = self._get(account_id)
        if target.id == actor.account_id:
            raise validation_error("You cannot delete your own account.")
        if target.role == Role.admin and target.is_active:
            self._ensure_not_last_admin()
        with _store_errors():
            deleted = self._store.delete(target.id)
        if not deleted:
            raise not_found_error("Account not found")
        audit.info("account deleted account=%s by=%s", target.id, actor.account_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get(self, account_id: str) -> Account:
        with _store_errors():
            account = self._store.find_by_id(account_id)
        if account is None:
            raise not_found_error("Account not found")
        return account

    def _ensure_not_last_admin(self) -> None:
        with _store_errors():
            admins = self._store.count_active_admins()
        if admins <= 1:
            raise validation_error("Cannot remove the last active admin account.")


def _validated_fields(data: SignupInput) -> AccountCreate:
    """Check and normalise signup fields. Raises ServiceError(validation)."""
    username = (data.username or "").strip()
    email = (data.email or "").strip().lower()
    if not username:
        raise validation_error("Username is required", "username")
    if not email:
        raise validation_error("Email is required", "email")
    if not _EMAIL_RE.match(email):
        raise validation_error("Email address is invalid", "email")
    if not data.password:
        raise validation_error("Password is required", "password")
    for name, value in (("first_name", data.first_name), ("last_name", data.last_name)):
        if value is not None and not _NAME_RE.match(value):
            raise validation_error(f"{name} should only contain alphabetic characters and spaces", name)
    if data.age is not None and data.age < 0:
        raise validation_error("Age must be a non-negative integer", "age")
    return AccountCreate(
        username=username,
        email=email,
        hashed_password="",
        first_name=data.first_name,
        last_name=data.last_name,
        age=data.age,
    )
