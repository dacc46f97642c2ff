"""
api/routes/v1/users.py -- Account administration endpoints (Admin only).

Routes:
  GET    /api/v1/users               -- list all accounts
  PATCH  /api/v1/users/{account_id}  -- change role and/or is_active
  DELETE /api/v1/users/{account_id}  -- permanently delete an account (204)

Every route depends on require_admin, so a User-role token gets 403 and the
denial is written to the audit log by AccessGate.

[M4] Self-deactivation, self-demotion, self-deletion and removal of the last
active admin are refused by AuthService with a 400.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.models import AccountPatch, AccountResponse
from auth.dependencies import require_admin
from auth.models import ResolvedIdentity
from auth.service import AuthService

router = APIRouter()


@router.get("/users", response_model=list[AccountResponse])
def list_users(
    request: Request,
    identity: ResolvedIdentity = Depends(require_admin),
) -> list[AccountResponse]:
    """List all accounts. Admin only."""
    service: AuthService = request.app.state.auth_service
    return [AccountResponse.from_profile(p) for p in service.list_accounts()]


@router.patch("/users/{account_id}", response_model=AccountResponse)
def update_user(
    request: Request,
    account_id: str,
    body: AccountPatch,
    identity: ResolvedIdentity = Depends(require_admin),
) -> AccountResponse:
    """Update an account's role or active status. Admin only.

    Deactivation takes effect on the target's next request: AccessGate
    re-reads is_active every time.
    """
    service: AuthService = request.app.state.auth_service
    profile = service.update_account(identity, account_id, role=body.role, is_active=body.is_active)
    return AccountResponse.from_profile(profile)


@router.delete("/users/{account_id}", status_code=204)
def delete_user(
    request: Request,
    account_id: str,
    identity: ResolvedIdentity = Depends(require_admin),
) -> Response:
    """Delete an account. Admin only. Its outstanding tokens stop working immediately."""
    service: AuthService = request.app.state.auth_service
    service.delete_account(identity, account_id)
    return Response(status_code=204)
