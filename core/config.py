"""
core/config.py -- BlogAuth runtime settings (pydantic-settings).

Every knob lives on Settings and is read from the environment or a .env file:
token lifetimes, the bcrypt work factor, the login throttle window, the SMTP
relay used for reset mail and the frontend URL reset links point at. Modules
ask get_settings() for values and never read os.environ themselves.

get_settings() is cached, so the environment is parsed once per process.
Tests that need different values build Settings(...) directly or clear the
cache.

Signing key policy:
  [M6] SECRET_KEY must be at least 32 characters. Every token is HS256-signed
       with it, so a short key makes tokens forgeable.

  [M7] Outside DEBUG a missing SECRET_KEY stops startup. In DEBUG a random
       key is generated, which means all tokens die with the process.

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("blogauth.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'blogauth.db'}"


class Settings(BaseSettings):
    """Environment-backed configuration for the API, the session service and the mailer.

    Field names map to upper-case env vars (access_token_ttl_seconds ->
    ACCESS_TOKEN_TTL_SECONDS). Only SECRET_KEY lacks a usable default.
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
    jwt_algorithm: str = "HS256"
    database_url: str = _DEFAULT_DB_URL
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # ------------------------------------------------------------------
    # Token lifetimes (seconds)
    # ------------------------------------------------------------------

    access_token_ttl_seconds: int = Field(default=15 * 60, gt=0)
    refresh_token_ttl_seconds: int = Field(default=7 * 24 * 3600, gt=0)
    reset_token_ttl_seconds: int = Field(default=3600, gt=0)

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    # bcrypt accepts 4..31. Tests drop this to 4; production keeps the default.
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    # ------------------------------------------------------------------
    # Rate limiting (login only)
    # ------------------------------------------------------------------

    login_throttle_window_seconds: int = Field(default=60, gt=0)
    login_throttle_max_attempts: int = Field(default=5, gt=0)

    # ------------------------------------------------------------------
    # Password reset email
    # ------------------------------------------------------------------

    frontend_url: str = "http://localhost:3000"
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    smtp_timeout_seconds: float = 30.0
    email_from: str = ""
    email_from_name: str = "Blog App"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Generate a dev key under DEBUG, otherwise require one; always enforce length [M6][M7]."""
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @property
    def login_rate_limit(self) -> str:
        """Login throttle in the limits-library string format, e.g. '5 per 60 second'."""
        return f"{self.login_throttle_max_attempts} per {self.login_throttle_window_seconds} second"

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.email_from)


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings, parsing the environment on first use."""
    return Settings()
