"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Gatekeeper happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead,
or better, accept a Settings instance in the constructor.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. Lifespan
      startup reads it once and hands it to TokenService, CredentialHasher and
      AccessGate. Request-handling code never reaches back into the environment.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs after all fields are resolved. Used for
      the DEBUG-conditional SECRET_KEY generation: dev mode generates a key with
      a warning. Production mode leaves the key empty and TokenService refuses
      to start with a ConfigurationError.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected by TokenService. HS256
       signing relies on key entropy -- a short key weakens every token.

  [M7] Outside DEBUG a missing SECRET_KEY is a hard startup failure, never a
       per-request one.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("gatekeeper.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'gatekeeper_accounts.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.

    Environment variable name mapping: field names are uppercased automatically.
    E.g. `secret_key` reads from SECRET_KEY, `bcrypt_rounds` from BCRYPT_ROUNDS.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". TokenService turns it
    # into a ConfigurationError at startup.
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # One day. Tokens are stateless; revocation before expiry happens only
    # through the password_changed_at freshness check.
    token_expire_seconds: int = 86400

    # ------------------------------------------------------------------
    # Password hashing and policy
    # ------------------------------------------------------------------

    # bcrypt cost factor. 12 is roughly 200-300ms per hash on current hardware.
    bcrypt_rounds: int = 12
    password_min_length: int = 8
    password_require_digit: bool = False
    password_require_uppercase: bool = False
    password_require_symbol: bool = False

    # ------------------------------------------------------------------
    # HTTP boundary
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    signup_rate_limit: str = "5/minute"
    rate_limit_enabled: bool = True
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    allowed_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def generate_dev_secret(self) -> "Settings":
        """Auto-generate SECRET_KEY in dev mode [M7].

        Dev mode (DEBUG=true): a random key is generated with a warning.
            Tokens will not survive a restart -- acceptable for local dev.

        Production mode: the key is left as configured. An empty or short key
            is rejected by TokenService when the app starts.
        """
        if not self.secret_key and self.debug:
            self.secret_key = secrets.token_hex(32)
            logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
