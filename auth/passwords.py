"""
auth/passwords.py -- Password hashing (bcrypt) and the password strength policy.

Security design decisions:
  Hashing: bcrypt used directly, no passlib wrapper. bcrypt salts every hash
       (gensalt) so hashing the same password twice yields different strings,
       and its cost factor makes offline brute force expensive. The cost is
       configuration (Settings.bcrypt_rounds), default 12.

  Verification: bcrypt.checkpw compares digests in constant time. verify()
       never raises -- a corrupt stored hash and a wrong password both come
       back as False so callers cannot tell them apart.

  72-byte limit: bcrypt only reads the first 72 bytes of input and recent
       bcrypt releases reject longer input outright. PasswordPolicy refuses
       such passwords up front with a ValidationError, before any hashing.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import re

import bcrypt

from core.config import Settings
from core.errors import configuration_error, internal_error, validation_error

logger = logging.getLogger("gatekeeper.auth")

BCRYPT_MAX_BYTES = 72
_MIN_ROUNDS = 4
_MAX_ROUNDS = 31
_ABSOLUTE_MIN_LENGTH = 8


class CredentialHasher:
    """Salted one-way password hashing with a fixed, configured cost factor.

    Stateless apart from the immutable cost, so one instance is shared by all
    concurrent requests without locking.
    """

    def __init__(self, rounds: int = 12) -> None:
        if not _MIN_ROUNDS <= rounds <= _MAX_ROUNDS:
            raise configuration_error(f"bcrypt rounds must be between {_MIN_ROUNDS} and {_MAX_ROUNDS}.")
        self.rounds = rounds

    @classmethod
    def from_settings(cls, settings: Settings) -> CredentialHasher:
        return cls(rounds=settings.bcrypt_rounds)

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of the given plaintext password.

        Raises ServiceError(internal) if bcrypt cannot produce a hash (e.g.
        the input is over the 72-byte limit because a caller skipped the
        policy check).
        """
        try:
            return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")
        except (ValueError, TypeError) as exc:
            logger.error("Password hashing failed: %s", type(exc).__name__)
            raise internal_error() from exc

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if the plaintext password matches the bcrypt hash.

        Malformed hashes, oversize input and type errors all return False.
        """
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except (ValueError, TypeError, AttributeError):
            return False


class PasswordPolicy:
    """Minimum-strength rules applied to a plaintext password before hashing.

    Length >= 8 always holds. Longer minimums and character-class requirements
    come from Settings.
    """

    def __init__(
        self,
        min_length: int = _ABSOLUTE_MIN_LENGTH,
        require_digit: bool = False,
        require_uppercase: bool = False,
        require_symbol: bool = False,
    ) -> None:
        self.min_length = max(min_length, _ABSOLUTE_MIN_LENGTH)
        self.require_digit = require_digit
        self.require_uppercase = require_uppercase
        self.require_symbol = require_symbol

    @classmethod
    def from_settings(cls, settings: Settings) -> PasswordPolicy:
        return cls(
            min_length=settings.password_min_length,
            require_digit=settings.password_require_digit,
            require_uppercase=settings.password_require_uppercase,
            require_symbol=settings.password_require_symbol,
        )

    def check(self, password: str, field: str = "password") -> None:
        """Raise ServiceError(validation) if the password does not meet the policy."""
        if len(password) < self.min_length:
            raise validation_error(f"Password must be at least {self.min_length} characters long", field)
        if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
            raise validation_error(f"Password must be at most {BCRYPT_MAX_BYTES} bytes long", field)
        if self.require_digit and not re.search(r"\d", password):
            raise validation_error("Password must contain at least one digit", field)
        if self.require_uppercase and not re.search(r"[A-Z]", password):
            raise validation_error("Password must contain at least one uppercase letter", field)
        if self.require_symbol and not re.search(r"[^A-Za-z0-9]", password):
            raise validation_error("Password must contain at least one symbol", field)
