"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for FacilityOps happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, refresh_secret_key -> REFRESH_SECRET_KEY).

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Dev mode generates missing signing keys
      with a warning, production mode refuses to start without them.

Security notes:
  Access and refresh tokens are signed with two different secrets so a leaked
  refresh secret cannot mint access tokens and vice versa. Identical values
  are rejected at startup.

  Secrets shorter than 32 chars are rejected outright. HS256 signing relies
  on key entropy -- a short key weakens it.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("facilityops.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'facilityops_accounts.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
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
    database_url: str = _DEFAULT_DB_URL
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    refresh_secret_key: str = ""
    access_token_expire_seconds: int = Field(default=24 * 3600, gt=0)
    remember_me_expire_seconds: int = Field(default=7 * 24 * 3600, gt=0)
    refresh_token_expire_seconds: int = Field(default=30 * 24 * 3600, gt=0)

    # ------------------------------------------------------------------
    # Credentials and lockout
    # ------------------------------------------------------------------

    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    lockout_threshold: int = Field(default=5, ge=1)
    lockout_minutes: int = Field(default=30, ge=1)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    session_capacity: int = Field(default=5, ge=1)
    session_ttl_seconds: int = Field(default=7 * 24 * 3600, gt=0)

    # ------------------------------------------------------------------
    # Account flows
    # ------------------------------------------------------------------

    password_reset_expire_seconds: int = 3600
    email_verification_expire_seconds: int = 24 * 3600
    # Return reset / verification tokens in the HTTP response. Only for local
    # development where no mail transport is configured.
    expose_reset_tokens: bool = False

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_signing_keys(self) -> "Settings":
        """Enforce the signing-key policy for both token kinds.

        Dev mode (DEBUG=true): auto-generate random keys with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if either
            key is missing.

        Both modes: reject keys shorter than 32 characters and reject the
            same value being used for access and refresh tokens.
        """
        for name in ("secret_key", "refresh_secret_key"):
            if getattr(self, name):
                continue
            if self.debug:
                setattr(self, name, secrets.token_hex(32))
                logger.warning(
                    "WARNING: Using auto-generated %s. Sessions will not persist across restarts.",
                    name.upper(),
                )
            else:
                raise ValueError(
                    f"{name.upper()} is required in production mode. "
                    "Set it in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32 or len(self.refresh_secret_key) < 32:
            raise ValueError("SECRET_KEY and REFRESH_SECRET_KEY must be at least 32 characters.")
        if self.secret_key == self.refresh_secret_key:
            raise ValueError("SECRET_KEY and REFRESH_SECRET_KEY must differ.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    All modules should call get_settings() rather than constructing Settings()
    directly. In tests: call get_settings.cache_clear() between test cases if
    you need to inject different environment variables.
    """
    return Settings()
