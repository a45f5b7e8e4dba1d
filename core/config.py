"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for AniVault happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, jikan_cache_ttl -> JIKAN_CACHE_TTL).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Dev mode generates a SECRET_KEY with a warning; production mode
      refuses to start without one.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing
       relies on key entropy -- a short key weakens every access token.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or cache/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("anivault.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (given DEBUG=true).
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
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = "sqlite:///anivault.db"
    # Host header allowlist for TrustedHostMiddleware (JSON list in the env var).
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = Field(default=3600, ge=1)
    refresh_token_expire_seconds: int = Field(default=2_592_000, ge=1)  # 30 days
    email_verification_required: bool = False
    verification_code_ttl_seconds: int = Field(default=600, ge=1)
    login_rate_limit: str = "10/minute"
    # Applies to both verification endpoints (send code, confirm code), per client IP.
    verification_rate_limit: str = "5/minute"
    # Housekeeping: how often the API sweeps dead refresh tokens and stale cache rows.
    sweep_interval_seconds: int = Field(default=6 * 60 * 60, ge=1)

    # ------------------------------------------------------------------
    # Jikan gateway
    # ------------------------------------------------------------------

    jikan_base_url: str = "https://api.jikan.moe/v4"
    jikan_cache_db: str = "anivault_cache.db"
    jikan_cache_ttl: int = Field(default=3600, ge=1)
    jikan_timeout_seconds: float = Field(default=30.0, gt=0)
    jikan_max_per_second: int = Field(default=3, ge=1)
    jikan_max_per_minute: int = Field(default=60, ge=1)
    jikan_throttle_backoff_seconds: float = Field(default=1.0, ge=0)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Access tokens will not survive a restart -- acceptable locally.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Access tokens will not persist across restarts.")
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
    def validate_rate_windows(self) -> "Settings":
        """A per-second ceiling above the per-minute ceiling can never be reached."""
        if self.jikan_max_per_second > self.jikan_max_per_minute:
            raise ValueError("JIKAN_MAX_PER_SECOND must not exceed JIKAN_MAX_PER_MINUTE.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
