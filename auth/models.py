"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; the store, services and routes do the work.

Account is the full stored record, including the password hash. It never
leaves the core: every outward-facing result carries an AccountProfile, which
has no credential field at all.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    """Closed set of roles. RBAC decisions compare against these values only."""

    user = "User"
    admin = "Admin"


@dataclass
class Account:
    """A stored account record as returned by AccountStore.

    password_changed_at is None until the first credential change after
    signup. AccessGate rejects tokens issued before it.
    """

    id: str
    username: str
    email: str  # always lower-cased
    hashed_password: str
    role: Role = Role.user
    first_name: str | None = None
    last_name: str | None = None
    age: int | None = None
    is_active: bool = True
    password_changed_at: datetime | None = None
    last_login: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class AccountProfile:
    """Account projection safe to hand to callers -- no credential material."""

    id: str
    username: str
    email: str
    role: Role
    first_name: str | None
    last_name: str | None
    age: int | None
    is_active: bool
    last_login: datetime | None
    created_at: datetime | None
    updated_at: datetime | None


@dataclass
class AccountCreate:
    """Fields AccountStore.create() persists. hashed_password is already hashed."""

    username: str
    email: str
    hashed_password: str
    role: Role = Role.user
    first_name: str | None = None
    last_name: str | None = None
    age: int | None = None
    is_active: bool = True


@dataclass
class SignupInput:
    """Raw signup request as received from the boundary layer. Not yet validated."""

    username: str
    email: str
    password: str
    first_name: str | None = None
    last_name: str | None = None
    age: int | None = None


@dataclass(frozen=True)
class TokenClaims:
    """Verified identity claims carried inside a bearer token."""

    account_id: str
    role: Role
    username: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class AuthResult:
    """Outcome of a successful signup or login."""

    account: AccountProfile
    token: str
    expires_in: int


@dataclass(frozen=True)
class ResolvedIdentity:
    """Per-request identity attached by AccessGate. Never cached across requests."""

    account_id: str
    role: Role
    username: str
    email: str
