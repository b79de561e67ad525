"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for AuthStarter happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_access_secret -> JWT_ACCESS_SECRET).

  @model_validator(mode="after"): Cross-field validation of the signing
      secrets. Dev mode generates missing secrets with a warning; production
      mode refuses to start without them. Signing therefore never fails
      per-request because of a missing key.

Security notes:
  [S1] Secrets shorter than 32 chars are rejected outright.
  [S2] Access and refresh tokens must be signed with different secrets, so a
       refresh token can never be replayed as an access token.
  [S3] RESET_TOKEN_SECRET is optional. When empty, reset tokens share the
       access secret and rely on the purpose claim for separation.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/ or mailer/.
"""

import logging
import secrets
from functools import lru_cache
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authstarter.config")

_MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file, as long as DEBUG=true.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    app_name: str = "AuthStarter"
    environment: Literal["development", "test", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"
    docs_enabled: bool = True

    database_url: str = "sqlite:///authstarter.db"

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    jwt_access_secret: str = ""
    jwt_refresh_secret: str = ""
    reset_token_secret: str = ""

    access_token_expire_seconds: int = 3600
    refresh_token_expire_seconds: int = 365 * 24 * 3600
    reset_token_expire_seconds: int = 15 * 60

    # ------------------------------------------------------------------
    # Passwords and OTP
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12
    otp_expire_minutes: int = 10

    # ------------------------------------------------------------------
    # Email (SMTP)
    # ------------------------------------------------------------------

    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    smtp_use_ssl: bool = False
    smtp_timeout_seconds: float = 15.0
    email_from: str = ""
    support_email: str = ""

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    cors_origins: list[str] = ["http://localhost:3000"]
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "testserver", "*.localhost"]

    # ------------------------------------------------------------------
    # Rate limiting (slowapi limit strings)
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    api_rate_limit: str = "300/15minutes"
    auth_rate_limit: str = "30/10minutes"
    sensitive_rate_limit: str = "10/15minutes"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_bcrypt_rounds(cls, value: int) -> int:
        # bcrypt accepts cost factors 4..31
        if not 4 <= value <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return value

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing-secret policy [S1] [S2] [S3].

        Dev mode (DEBUG=true): auto-generate missing secrets with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if either
            JWT secret is missing.
        """
        for name in ("jwt_access_secret", "jwt_refresh_secret"):
            if not getattr(self, name):
                if self.debug:
                    setattr(self, name, secrets.token_hex(32))
                    logger.warning(
                        "Using auto-generated %s. Sessions will not persist across restarts.", name.upper()
                    )
                else:
                    raise ValueError(
                        f"{name.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
        for name in ("jwt_access_secret", "jwt_refresh_secret", "reset_token_secret"):
            value = getattr(self, name)
            if value and len(value) < _MIN_SECRET_LENGTH:
                raise ValueError(f"{name.upper()} must be at least {_MIN_SECRET_LENGTH} characters.")
        if self.jwt_access_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_ACCESS_SECRET and JWT_REFRESH_SECRET must differ.")
        return self

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def effective_reset_secret(self) -> str:
        """Secret used to sign reset tokens; the access secret when none is configured [S3]."""
        return self.reset_token_secret or self.jwt_access_secret

    @property
    def sender_address(self) -> str:
        return self.email_from or self.smtp_user


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
