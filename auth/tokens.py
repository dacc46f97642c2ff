"""
auth/tokens.py -- Bearer token issuance and verification (JWT, HS256).

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with Settings.secret_key and
       carry the account id (sub), username, role, issue time (iat) and expiry
       (exp). Nothing is stored server-side.

  Timestamps: iat and exp are NumericDate values with sub-second precision
       (RFC 7519 allows non-integer values). AccessGate compares iat against
       the account's password_changed_at, and whole seconds would let a token
       minted in the same second as a password change survive it.

  Verification: signature first (jose refuses to hand back claims from a
       token whose MAC does not match), then expiry, then claim shape. Every
       failure except expiry surfaces as the same "invalid token" message so a
       caller cannot probe which part was wrong.

  SECRET_KEY: passed in through Settings at construction. A missing or short
       key is a ConfigurationError raised from the constructor, which runs
       during app startup -- never inside a request.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import Role, TokenClaims
from core.config import Settings
from core.errors import authentication_error, configuration_error, validation_error

logger = logging.getLogger("gatekeeper.auth")

ALGORITHM = "HS256"
_MIN_SECRET_LENGTH = 32

INVALID_TOKEN = "invalid token"
TOKEN_EXPIRED = "token expired"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """Issues and verifies signed, time-bounded identity tokens.

    Holds only the immutable secret, default ttl and clock, so a single
    instance is safe to share across concurrent requests.

    Usage:
        tokens = TokenService(get_settings())
        token = tokens.issue(account.id, account.role, account.username)
        claims = tokens.verify(token)
    """

    def __init__(self, settings: Settings, clock: Callable[[], datetime] | None = None) -> None:
        if not settings.secret_key:
            raise configuration_error(
                "SECRET_KEY is required in production mode. "
                "Set SECRET_KEY in your environment or .env file. "
                "To run in development mode, set DEBUG=true."
            )
        if len(settings.secret_key) < _MIN_SECRET_LENGTH:
            raise configuration_error(f"SECRET_KEY must be at least {_MIN_SECRET_LENGTH} characters.")
        self._secret = settings.secret_key
        self.default_ttl = settings.token_expire_seconds
        self._clock = clock or _utcnow

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue(self, account_id: str, role: Role, username: str, ttl: int | None = None) -> str:
        """Encode a signed JWT for the given identity.

        Args:
            account_id: Opaque account id, stored as the sub claim.
            role:       Account role at issue time.
            username:   Username at issue time.
            ttl:        Lifetime in seconds. None uses Settings.token_expire_seconds.
        """
        duration = self.default_ttl if ttl is None else ttl
        if duration <= 0:
            raise validation_error("Token lifetime must be positive.", "ttl")
        issued_at = self._clock()
        expires_at = issued_at + timedelta(seconds=duration)
        payload = {
            "sub": account_id,
            "username": username,
            "role": Role(role).value,
            "iat": issued_at.timestamp(),
            "exp": expires_at.timestamp(),
        }
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify(self, token: str) -> TokenClaims:
        """Verify a JWT and return its claims.

        Raises ServiceError(authentication) with "token expired" when the
        signature is good but exp has passed, and "invalid token" for any
        other defect (bad signature, malformed structure, missing claims).
        """
        try:
            payload = jwt.decode(token, self._secret, algorithms=[ALGORITHM])
        except ExpiredSignatureError as exc:
            raise authentication_error(TOKEN_EXPIRED) from exc
        except JWTError as exc:
            logger.debug("Token rejected: %s", exc)
            raise authentication_error(INVALID_TOKEN) from exc

        claims = _claims_from_payload(payload)
        if claims is None:
            raise authentication_error(INVALID_TOKEN)
        # jose compares exp at whole-second granularity; enforce exp > now exactly.
        if claims.expires_at <= self._clock():
            raise authentication_error(TOKEN_EXPIRED)
        return claims


def _claims_from_payload(payload: dict) -> TokenClaims | None:
    """Map a verified payload onto TokenClaims. Returns None if any claim is missing or malformed."""
    try:
        account_id = payload["sub"]
        username = payload["username"]
        role = Role(payload["role"])
        issued_at = datetime.fromtimestamp(float(payload["iat"]), tz=timezone.utc)
        expires_at = datetime.fromtimestamp(float(payload["exp"]), tz=timezone.utc)
    except (KeyError, ValueError, TypeError, OverflowError):
        return None
    if not isinstance(account_id, str) or not account_id or not isinstance(username, str):
        return None
    return TokenClaims(
        account_id=account_id,
        role=role,
        username=username,
        issued_at=issued_at,
        expires_at=expires_at,
    )
