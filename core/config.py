"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Wayfarer happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY).

  AuthConfig: an immutable snapshot of the auth-relevant settings, built once
      in the lifespan hook and stored on app.state.auth_config. Token, cookie
      and login-throttle code receive it explicitly and never read settings
      on their own.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright.
  [M7] Outside DEBUG mode a missing SECRET_KEY is a hard startup failure.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
auth/, tours/, mail/, media/, or payments/.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("wayfarer.config")


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
    environment: str = "development"  # "development" | "production"
    secret_key: str = ""
    database_url: str = "sqlite:///wayfarer.db"
    public_url: str = "http://localhost:8000"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    token_expire_seconds: int = 90 * 24 * 3600
    cookie_expire_days: int = 90
    max_login_attempts: int = 10
    password_reset_expire_minutes: int = 10
    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    api_rate_limit: str = "100/hour"
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Email
    # ------------------------------------------------------------------

    email_backend: str = "console"  # "console" | "smtp"
    email_from: str = "Wayfarer <hello@wayfarer.local>"
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True

    # ------------------------------------------------------------------
    # Payments and media
    # ------------------------------------------------------------------

    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    media_root: str = "web/static/img"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
        Otherwise: refuse to start when SECRET_KEY is missing.
        Both modes: reject keys shorter than 32 characters [M6].
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

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@dataclass(frozen=True)
class AuthConfig:
    """Immutable auth configuration shared by every request.

    Built once at startup. Frozen so no request can alter the signing
    secret, token lifetime, or lockout threshold seen by the others.
    """

    secret_key: str
    token_expire_seconds: int
    cookie_max_age: int
    secure_cookies: bool
    max_login_attempts: int
    password_reset_expire_minutes: int
    bcrypt_rounds: int
    algorithm: str = "HS256"
    cookie_name: str = "jwt"

    @classmethod
    def from_settings(cls, settings: Settings) -> "AuthConfig":
        return cls(
            secret_key=settings.secret_key,
            token_expire_seconds=settings.token_expire_seconds,
            cookie_max_age=settings.cookie_expire_days * 24 * 3600,
            secure_cookies=settings.is_production,
            max_login_attempts=settings.max_login_attempts,
            password_reset_expire_minutes=settings.password_reset_expire_minutes,
            bcrypt_rounds=settings.bcrypt_rounds,
        )


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
