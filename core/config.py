"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for WorkBridge Accounts happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead, or receive the values through a constructor.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Dev mode generates a SECRET_KEY with a warning, production mode
      refuses to start without one.

Security notes:
  SECRET_KEY keys every token digest (sessions, verification tokens, OTP codes)
  and signs reset grants. Shorter than 32 chars is rejected outright.

  BCRYPT_ROUNDS below 4 or above 31 is rejected by bcrypt itself; the field
  bounds make that a startup error instead of a first-signup error.

Layer rule: core/ is the kernel. This module may not import from api/ or
accounts/.
"""

import logging
import secrets
from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("workbridge.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (DEBUG=true supplies the key).
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
    public_base_url: str = "http://localhost:8000"

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    database_url: str = "sqlite:///workbridge_accounts.db"
    # Upper bound on waiting for a lock or a pooled connection. Exceeding it
    # surfaces as a Transient error, never as a hung request.
    db_timeout_seconds: float = 5.0

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    password_min_length: int = Field(default=8, ge=1)
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    password_change_session_policy: Literal["revoke_all", "keep_current"] = "revoke_all"

    # ------------------------------------------------------------------
    # One-time artifacts
    # ------------------------------------------------------------------

    otp_length: int = Field(default=6, ge=4, le=10)
    otp_ttl_seconds: int = Field(default=300, gt=0)
    otp_max_attempts: int = Field(default=5, ge=1)
    # 0 disables expiry of email confirmation links.
    verification_token_ttl_seconds: int = Field(default=86400, ge=0)
    reset_grant_ttl_seconds: int = Field(default=600, gt=0)
    # 0 disables the background purge task.
    purge_interval_seconds: int = Field(default=3600, ge=0)

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    otp_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Notifications (external collaborator)
    # ------------------------------------------------------------------

    notifier_backend: Literal["log", "smtp", "webhook"] = "log"
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = ""
    notify_webhook_url: str = ""
    notify_webhook_token: str = ""

    # ------------------------------------------------------------------
    # Chat service (external collaborator -- empty disables chat tokens)
    # ------------------------------------------------------------------

    chat_secret_key: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Outstanding sessions stop validating after a restart because token
            digests are keyed with it -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Sessions will not persist across restarts."
                )
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
