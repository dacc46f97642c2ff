"""
tests/conftest.py -- Shared test fixtures for Gatekeeper tests.

This module provides:
  - make_store(): an isolated named shared-memory SQLite AccountStore
  - settings / hasher / tokens / policy / service / gate: the auth core wired
    exactly as api.main.init_services() wires it, with bcrypt at its minimum
    cost (rounds=4) so the suite stays fast
  - api_client: TestClient over the real FastAPI app with a patched lifespan
    and a provisioned admin account

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.

Environment variables must be set before any api/auth/core import: api.main
and api.limiter read get_settings() at import time.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from typing import NamedTuple

# CRITICAL: Set before any project import so the cached Settings see them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ALLOWED_HOSTS", '["*"]')

import pytest
from fastapi.testclient import TestClient

from api.main import app, init_services
from auth.dependencies import AccessGate
from auth.models import SignupInput
from auth.passwords import CredentialHasher, PasswordPolicy
from auth.service import AuthService
from auth.store import AccountStore
from auth.tokens import TokenService
from core.config import Settings

TEST_SECRET = "test-secret-key-0123456789abcdef0123456789"
ADMIN_PASSWORD = "Adm1nPassw0rd!"


def make_store() -> AccountStore:
    """Create an isolated named shared-memory SQLite store."""
    return AccountStore(db_url=f"sqlite:///file:test_accounts_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(secret_key=TEST_SECRET, debug=False, bcrypt_rounds=4)


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    s = make_store()
    yield s
    s.close()


@pytest.fixture
def hasher() -> CredentialHasher:
    return CredentialHasher(rounds=4)


@pytest.fixture
def tokens(settings: Settings) -> TokenService:
    return TokenService(settings)


@pytest.fixture
def policy() -> PasswordPolicy:
    return PasswordPolicy()


@pytest.fixture
def service(
    store: AccountStore,
    hasher: CredentialHasher,
    tokens: TokenService,
    policy: PasswordPolicy,
) -> AuthService:
    return AuthService(store, hasher, tokens, policy)


@pytest.fixture
def gate(store: AccountStore, tokens: TokenService) -> AccessGate:
    return AccessGate(store, tokens)


def signup_input(username: str = "alice", email: str = "a@x.com", password: str = "Str0ngPass!") -> SignupInput:
    return SignupInput(
        username=username,
        email=email,
        password=password,
        first_name="Alice",
        last_name="Liddell",
        age=30,
    )


def bearer(token: str) -> str:
    return f"Bearer {token}"


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


class ApiContext(NamedTuple):
    client: TestClient
    admin_token: str
    admin_id: str
    store: AccountStore


def _patch_lifespan(settings: Settings, store: AccountStore):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store into app.state through the same init_services()
    the production lifespan uses.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        init_services(app, settings, store)
        yield

    return test_lifespan


@pytest.fixture
def api_client(settings: Settings) -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for HTTP integration tests.

    A fresh store per test keeps signups from leaking between tests. The
    admin account is provisioned before the client starts (signup can never
    create one) and logged in for its token.
    """
    store = make_store()
    app.router.lifespan_context = _patch_lifespan(settings, store)

    with TestClient(app, raise_server_exceptions=True) as client:
        auth_service: AuthService = app.state.auth_service
        admin = auth_service.provision_admin(signup_input("root", "root@example.com", ADMIN_PASSWORD))
        token = auth_service.login("root", ADMIN_PASSWORD).token
        yield ApiContext(client=client, admin_token=token, admin_id=admin.id, store=store)

    store.close()
