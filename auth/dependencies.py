"""
auth/dependencies.py -- AccessGate and its FastAPI Depends() adapters.

Every protected request walks the same chain, and the first failing step ends
the request with a ServiceError:

  1. Extract   -- "Authorization: Bearer <token>" must be present.
  2. Verify    -- TokenService checks signature, expiry and claim shape.
  3. Resolve   -- the account is re-read by the token's sub claim. A deleted
                  account loses access immediately, even with a live token.
  4. Liveness  -- deactivated accounts are rejected.
  5. Freshness -- tokens issued before password_changed_at are rejected. This
                  is the only revocation mechanism for stateless tokens, so it
                  runs on every request in both modes.
  6. Role      -- authorize_roles() only: the token's role claim and the
                  stored role must both be in the allowed set. A denial is
                  written to the audit log with the actor and resource; the
                  caller only sees a generic 403.

Nothing is cached between requests. The resolved identity is attached to
request.state.identity for the lifetime of the request only.

require_auth() raises 401 (authentication) on any failure in steps 1-5.
authorize_roles(*roles) additionally raises 403 (authorization) in step 6.
require_admin is authorize_roles(Role.admin).

Layer rule: auth/dependencies.py may import from fastapi (for Request) because
it is part of the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from fastapi import Request

from auth.models import Account, ResolvedIdentity, Role, TokenClaims
from auth.store import AccountStore, StoreError
from auth.tokens import TokenService
from core.errors import authentication_error, authorization_error, internal_error

audit = logging.getLogger("gatekeeper.audit")

ACCESS_TOKEN_REQUIRED = "access token required"
ACCOUNT_GONE = "account no longer exists"
ACCOUNT_DEACTIVATED = "account deactivated"
PASSWORD_CHANGED = "password changed, please log in again"


def extract_bearer_token(authorization: str | None) -> str:
    """Return the token from an "Authorization: Bearer <token>" header value.

    The scheme is matched case-insensitively (RFC 7235). Anything else --
    missing header, other scheme, empty token, extra segments -- is rejected.
    """
    if not authorization:
        raise authentication_error(ACCESS_TOKEN_REQUIRED)
    parts = authorization.strip().split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1]:
        raise authentication_error(ACCESS_TOKEN_REQUIRED)
    return parts[1]


class AccessGate:
    """Turns an Authorization header into a ResolvedIdentity, or refuses.

    Usage:
        gate = AccessGate(store, tokens)
        identity = gate.require_auth(request.headers.get("Authorization"))
        identity = gate.authorize_roles(header, {Role.admin}, resource="DELETE /api/v1/users/42")
    """

    def __init__(self, store: AccountStore, tokens: TokenService) -> None:
        self._store = store
        self._tokens = tokens

    def require_auth(self, authorization: str | None) -> ResolvedIdentity:
        """Authenticate the request (steps 1-5). Any role is accepted."""
        _claims, account = self._authenticate(authorization)
        return _identity(account)

    def authorize_roles(
        self,
        authorization: str | None,
        allowed_roles: Iterable[Role | str],
        resource: str = "",
    ) -> ResolvedIdentity:
        """Authenticate the request and require one of allowed_roles (steps 1-6)."""
        allowed = frozenset(Role(r) for r in allowed_roles)
        claims, account = self._authenticate(authorization)
        if claims.role not in allowed or account.role not in allowed:
            audit.warning(
                "authorization denied account=%s username=%s role=%s required=%s resource=%s",
                account.id,
                claims.username,
                claims.role.value,
                ",".join(sorted(r.value for r in allowed)),
                resource or "-",
            )
            raise authorization_error()
        return _identity(account)

    def _authenticate(self, authorization: str | None) -> tuple[TokenClaims, Account]:
        token = extract_bearer_token(authorization)
        claims = self._tokens.verify(token)

        try:
            account = self._store.find_by_id(claims.account_id)
        except StoreError as exc:
            raise internal_error() from exc
        if account is None:
            raise authentication_error(ACCOUNT_GONE)
        if not account.is_active:
            raise authentication_error(ACCOUNT_DEACTIVATED)
        if account.password_changed_at is not None and account.password_changed_at > claims.issued_at:
            raise authentication_error(PASSWORD_CHANGED)
        return claims, account


def _identity(account: Account) -> ResolvedIdentity:
    return ResolvedIdentity(
        account_id=account.id,
        role=account.role,
        username=account.username,
        email=account.email,
    )


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------


def require_auth(request: Request) -> ResolvedIdentity:
    """Require authentication. Raises ServiceError(authentication) -> HTTP 401.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: ResolvedIdentity = Depends(require_auth)): ...
    """
    gate: AccessGate = request.app.state.gate
    identity = gate.require_auth(request.headers.get("Authorization"))
    request.state.identity = identity
    return identity


def authorize_roles(*roles: Role) -> Callable[[Request], ResolvedIdentity]:
    """Build a dependency requiring one of roles. 401 if unauthenticated, 403 if the role is wrong.

    Use as a FastAPI dependency:
        @router.delete("/users/{account_id}")
        def route(identity: ResolvedIdentity = Depends(authorize_roles(Role.admin))): ...
    """
    allowed = frozenset(roles)

    def dependency(request: Request) -> ResolvedIdentity:
        gate: AccessGate = request.app.state.gate
        identity = gate.authorize_roles(
            request.headers.get("Authorization"),
            allowed,
            resource=f"{request.method} {request.url.path}",
        )
        request.state.identity = identity
        return identity

    return dependency


require_admin = authorize_roles(Role.admin)
