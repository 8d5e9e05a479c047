"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Homebase happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. The
      environment is never re-read for the lifetime of the process.

  Fail fast: a Settings instance either validates completely or the process
      exits. Misconfiguration is an operator error, so get_settings() reports
      it on stderr and raises SystemExit(1) instead of returning a partially
      valid object or retrying.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. database_url -> DATABASE_URL). Type coercion and validation are
      built in: PORT=abc is a validation error, never an undefined port.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. It keys both the
  session token HMAC and the session cache JWT.

  In production a missing SECRET_KEY is a hard startup failure. Development
  and test runs get a random key with a warning (sessions do not survive a
  restart).

Layer rule: core/ is the kernel. This module may not import from api/, web/,
or auth/.
"""

import logging
import secrets
import sys
from functools import lru_cache
from typing import Literal

from pydantic import Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("homebase.config")

# LOG_LEVEL uses the short names operators type; stdlib logging wants these.
_LOG_LEVEL_NAMES = {
    "debug": "DEBUG",
    "info": "INFO",
    "warn": "WARNING",
    "error": "ERROR",
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    DATABASE_URL is the only required value. Everything else has a default
    suitable for local development.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # ------------------------------------------------------------------
    # Runtime
    # ------------------------------------------------------------------

    node_env: Literal["development", "production", "test"] = "development"
    host: str = "0.0.0.0"  # nosec B104 -- bind address, container default
    port: int = 5000
    log_level: Literal["debug", "info", "warn", "error"] = "info"

    # ------------------------------------------------------------------
    # Database
    # ------------------------------------------------------------------

    database_url: str = Field(min_length=1)

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    session_expire_seconds: int = Field(default=7 * 24 * 3600, gt=0)
    session_update_age_seconds: int = Field(default=24 * 3600, ge=0)
    # Cookie cache TTL: a session is revalidated against the DB at most
    # this often per browser.
    session_cache_max_age: int = Field(default=5 * 60, gt=0)

    # ------------------------------------------------------------------
    # Rate limiting (POST /api/auth/*)
    # ------------------------------------------------------------------

    auth_rate_limit_window: int = Field(default=60, gt=0)
    auth_rate_limit_max: int = Field(default=10, gt=0)

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def is_development(self) -> bool:
        return self.node_env == "development"

    @property
    def is_production(self) -> bool:
        return self.node_env == "production"

    @property
    def is_test(self) -> bool:
        return self.node_env == "test"

    @property
    def secure_cookies(self) -> bool:
        return self.is_production

    @property
    def log_level_name(self) -> str:
        return _LOG_LEVEL_NAMES[self.log_level]

    @property
    def auth_rate_limit(self) -> str:
        """slowapi limit string, e.g. '10/60 seconds'."""
        return f"{self.auth_rate_limit_max}/{self.auth_rate_limit_window} seconds"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="before")
    @classmethod
    def fill_secret_key(cls, data):
        """Generate a throwaway SECRET_KEY outside production.

        Runs before field validation because the model is frozen. Production
        keeps the empty value so validate_secret_key() can reject it.
        """
        if not isinstance(data, dict):
            return data
        lowered = {str(k).lower(): v for k, v in data.items()}
        if lowered.get("secret_key"):
            return data
        if lowered.get("node_env", "development") == "production":
            return data
        logger.warning("Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
        return {**data, "secret_key": secrets.token_hex(32)}

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        if not self.secret_key:
            raise ValueError(
                "SECRET_KEY is required in production. "
                "Set SECRET_KEY in your environment or .env file."
            )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton, or terminate the process.

    On a validation failure the full pydantic report is written to stderr
    and SystemExit(1) is raised. Logging is not configured yet at this point
    (it depends on these settings), so the report goes straight to stderr.

    In tests: call get_settings.cache_clear() after changing the environment.
    """
    try:
        return Settings()
    except ValidationError as exc:
        print(f"Invalid environment variables:\n{exc}", file=sys.stderr)
        raise SystemExit(1) from exc
