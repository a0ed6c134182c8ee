"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for AuthGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() at the
composition root (api/main.py, main.py) and pass the Settings instance down.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Dev mode generates a session key with a
      warning, production mode refuses to start without one.

Environments:
  APP_ENV=test switches three behaviors on, mirroring the test configuration
  the auth flows were designed against:
    - role removal hard-deletes instead of soft-deleting
    - the configured test user's fixed TOTP secret/code pair is accepted
    - completed 2FA returns MOCK_PROVIDER_DATA instead of calling the provider

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authgate.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'authgate.db'}"


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
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    app_env: str = "production"  # "production" | "development" | "test"
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Public address of this service (used in provider round-trips)
    # ------------------------------------------------------------------

    app_domain: str = "localhost"
    app_url: str = "http://localhost:3010"

    # ------------------------------------------------------------------
    # External OAuth-style provider
    # ------------------------------------------------------------------

    provider_url: str = "http://localhost:3000"
    provider_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Two-factor and password reset
    # ------------------------------------------------------------------

    totp_issuer: str = "AuthGate"
    test_user_username: str = "testuser"
    test_user_secret: str = "JBSWY3DPEHPK3PXP"
    test_user_code: str = "123456"
    reset_token_ttl_ms: int = 3_600_000  # 1 hour

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    login_rate_limit: str = "10/minute"
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]

    # ------------------------------------------------------------------
    # Derived
    # ------------------------------------------------------------------

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def callback_url(self) -> str:
        """Redirect URI registered with the provider's authorization endpoint."""
        return f"{self.app_url.rstrip('/')}/api/v1/auth/callback"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """The session cookie is signed with secret_key.

        With DEBUG a missing key is replaced by a random one, so every restart
        logs everyone out. Without DEBUG a missing key is a startup error.
        """
        if not self.secret_key:
            if not self.debug:
                raise ValueError("SECRET_KEY must be set when DEBUG is off.")
            self.secret_key = secrets.token_hex(32)
            logger.warning("SECRET_KEY not set; using a random key, sessions end on restart.")
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    This is the official FastAPI pattern for config (see FastAPI docs /advanced/settings/).

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables, or construct Settings(...)
    directly and hand it to the services.
    """
    return Settings()
