"""
api/routes/v1/auth.py -- Signup, login and self-service credential endpoints.

Routes:
  POST /api/v1/auth/signup           -- create a User account; returns account + token (201)
  POST /api/v1/auth/login            -- password login; returns account + token
  GET  /api/v1/auth/me               -- identity resolved from the bearer token (requires auth)
  POST /api/v1/auth/change-password  -- re-verify and replace password (requires auth)

Security:
  [H2] POST /signup and POST /login are rate-limited per IP (Settings).
  [C1] AuthService.login() provides timing equalization -- never inline the
       store lookup + verify in a route.
  [M5] Cache-Control: no-store on every response that carries a token.
  Route handlers never build error responses themselves: AuthService and
  AccessGate raise ServiceError and api/main.py maps the kind to a status.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit, signup_limit
from api.models import (
    AccountResponse,
    AuthResponse,
    ChangePasswordRequest,
    IdentityResponse,
    LoginRequest,
    MessageResponse,
    SignupRequest,
)
from auth.dependencies import require_auth
from auth.models import AuthResult, ResolvedIdentity, SignupInput
from auth.service import AuthService

# Auth policy:
# - POST /api/v1/auth/signup:           public
# - POST /api/v1/auth/login:            public
# - GET  /api/v1/auth/me:               requires auth (require_auth)
# - POST /api/v1/auth/change-password:  requires auth (require_auth)
router = APIRouter()


def _token_response(result: AuthResult, status_code: int) -> JSONResponse:
    body = AuthResponse(
        account=AccountResponse.from_profile(result.account),
        access_token=result.token,
        token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
        expires_in=result.expires_in,
    )
    resp = JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(signup_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/signup", response_model=AuthResponse, status_code=201)
def signup(request: Request, body: SignupRequest) -> JSONResponse:
    """Register a new account with role User and return its first token.

    Conflicting username or email -> 409 naming the field. Weak password -> 400.
    """
    service: AuthService = request.app.state.auth_service
    result = service.signup(
        SignupInput(
            username=body.username,
            email=body.email,
            password=body.password,
            first_name=body.first_name,
            last_name=body.last_name,
            age=body.age,
        )
    )
    return _token_response(result, 201)


@limiter.limit(login_limit)  # [H2] brute-force mitigation
@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password.

    Unknown username and wrong password return the identical 401
    "invalid credentials" to avoid leaking which usernames exist.
    """
    service: AuthService = request.app.state.auth_service
    result = service.login(body.username, body.password)
    return _token_response(result, 200)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=IdentityResponse)
def me(identity: ResolvedIdentity = Depends(require_auth)) -> IdentityResponse:
    """Return the identity resolved for the presented bearer token."""
    return IdentityResponse.from_identity(identity)


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    identity: ResolvedIdentity = Depends(require_auth),
) -> MessageResponse:
    """Replace the caller's password. Every previously issued token stops working."""
    service: AuthService = request.app.state.auth_service
    service.change_password(identity.account_id, body.current_password, body.new_password)
    return MessageResponse(message="Password changed. Please log in again.")
