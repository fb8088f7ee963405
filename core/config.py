"""
core/config.py -- Centralized configuration for authcore via pydantic-settings.

All environment variable reads happen here. No module should call os.getenv()
directly -- build a Settings() (or call get_settings()) and inject it.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call. Only the assembly helper (auth.service.build_auth_service) uses it;
      every component receives its settings by constructor injection so tests
      can hand in their own instance.

  BaseSettings (pydantic-settings): field names map to env var names
      (e.g. secret_key -> SECRET_KEY, bcrypt_rounds -> BCRYPT_ROUNDS).

  @model_validator(mode="after"): cross-field rules that depend on the
      environment flag (secret key policy, bcrypt cost floor).

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. HS256 signing
       relies on key entropy -- a short key weakens every issued token.

  [M7] Outside debug mode a missing SECRET_KEY is a hard startup failure.

  [M8] bcrypt cost below 10 is only accepted when ENVIRONMENT=test. Test
       suites hash hundreds of passwords; production hashes must stay slow.

Layer rule: core/ is the kernel. This module may not import from auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authcore.config")

DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'authcore.db'}"

# bcrypt refuses anything below 4 rounds
_MIN_TEST_ROUNDS = 4
_MIN_PRODUCTION_ROUNDS = 10


class Settings(BaseSettings):
    """Settings loaded from environment variables and an optional .env file.

    All fields have defaults except the secret key policy, which is enforced
    by the validator below. Settings() can therefore be instantiated in tests
    by passing debug=True or an explicit secret_key.
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
    environment: str = "production"  # "production", "development", "test"
    # Empty string is the sentinel for "not configured".
    secret_key: str = ""
    database_url: str = DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    access_token_expire_minutes: int = 15
    refresh_token_expire_days: int = 30

    # ------------------------------------------------------------------
    # Password hashing
    # ------------------------------------------------------------------

    bcrypt_rounds: int = _MIN_PRODUCTION_ROUNDS
    test_bcrypt_rounds: int = _MIN_TEST_ROUNDS

    # ------------------------------------------------------------------
    # OAuth providers (empty string means the provider is disabled)
    # ------------------------------------------------------------------

    github_client_id: str = ""
    github_client_secret: str = ""
    google_client_id: str = ""
    google_client_secret: str = ""

    @property
    def is_test(self) -> bool:
        return self.environment == "test"

    @property
    def password_hash_rounds(self) -> int:
        """The bcrypt cost factor in effect: reduced only in test mode."""
        return self.test_bcrypt_rounds if self.is_test else self.bcrypt_rounds

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M6] [M7].

        Debug mode: auto-generate a random key with a warning. Tokens will
        not survive a restart -- acceptable for local development and tests.

        Otherwise: refuse to start without a key.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_token_lifetimes(self) -> "Settings":
        if self.access_token_expire_minutes <= 0:
            raise ValueError("ACCESS_TOKEN_EXPIRE_MINUTES must be a positive integer.")
        if self.refresh_token_expire_days <= 0:
            raise ValueError("REFRESH_TOKEN_EXPIRE_DAYS must be a positive integer.")
        return self

    @model_validator(mode="after")
    def validate_bcrypt_rounds(self) -> "Settings":
        """Enforce the bcrypt cost floor [M8]."""
        if self.bcrypt_rounds < _MIN_PRODUCTION_ROUNDS:
            raise ValueError(f"BCRYPT_ROUNDS must be at least {_MIN_PRODUCTION_ROUNDS}.")
        if self.test_bcrypt_rounds < _MIN_TEST_ROUNDS:
            raise ValueError(f"TEST_BCRYPT_ROUNDS must be at least {_MIN_TEST_ROUNDS}.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
