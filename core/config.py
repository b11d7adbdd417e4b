"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the back office happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, database_url -> DATABASE_URL).

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Dev mode generates a session signing key with a warning,
      production mode refuses to start without one.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("backoffice.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'backoffice.db'}"

# Module directories shipped with a stock install. The registry only trusts an
# in-progress install_module request when it names one of these.
_DEFAULT_MODULES = [
    "Core",
    "Authentication",
    "Dashboard",
    "Error",
    "Extensions",
    "Groups",
    "Locale",
    "Pages",
    "Settings",
    "Users",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
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
    # Signs the transport session cookie. "" means not configured; the
    # validator below either generates a dev key or raises.
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL
    site_url: str = "http://localhost:8000"

    # ------------------------------------------------------------------
    # Session transport
    # ------------------------------------------------------------------

    session_cookie_name: str = "backoffice_session"
    secure_cookies: bool = False
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    reset_password_ttl_seconds: int = 2 * 60 * 60

    # ------------------------------------------------------------------
    # Modules
    # ------------------------------------------------------------------

    available_modules: list[str] = _DEFAULT_MODULES

    @field_validator("reset_password_ttl_seconds")
    @classmethod
    def validate_reset_ttl(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("RESET_PASSWORD_TTL_SECONDS must be positive.")
        return value

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Transport sessions will not survive a restart.

        Production mode: refuse to start if SECRET_KEY is missing. Without a
            stable key every restart would silently log out all users.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
