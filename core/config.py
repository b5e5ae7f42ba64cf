"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for TenantGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, token_ttl_seconds -> TOKEN_TTL_SECONDS).

  @model_validator(mode="after"): Cross-field validation once every field is
      resolved. Dev mode generates a SECRET_KEY with a warning; production
      refuses to start without one.

Security notes:
  SECRET_KEY is the HMAC key for access tokens at rest. A short key weakens
  that hash, so anything under 32 characters is rejected.

  Tokens are opaque and live server side. Changing SECRET_KEY invalidates every
  issued session because stored hashes no longer match.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or directory/.
"""

import logging
import secrets
from functools import lru_cache
from typing import Annotated

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

logger = logging.getLogger("tenantgate.config")

_ISOLATION_LEVELS = {"SERIALIZABLE", "REPEATABLE READ", "READ COMMITTED"}
# SQLite only distinguishes SERIALIZABLE and READ UNCOMMITTED.
_BACKEND_ISOLATION_LEVELS = {"sqlite": {"SERIALIZABLE"}}


def supported_isolation_levels(backend: str) -> set[str]:
    """Return the assignment isolation levels usable on a SQLAlchemy backend name."""
    return _BACKEND_ISOLATION_LEVELS.get(backend, _ISOLATION_LEVELS)


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
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    log_level: str = "INFO"
    database_url: str = "sqlite:///tenantgate.db"

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    token_ttl_seconds: int = 24 * 60 * 60
    # 0 disables the background sweep; expired rows are still ignored by verify.
    token_cleanup_interval_seconds: int = 60 * 60

    auth_cookie_name: str = "mt_auth"
    auth_cookie_domain: str | None = None
    auth_cookie_samesite: str = "lax"
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Directory
    # ------------------------------------------------------------------

    default_page_limit: int = 20
    max_page_limit: int = 100
    # Applied to the connection that replaces a user's role or company set.
    assignment_isolation_level: str = "SERIALIZABLE"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    # Comma-separated in the environment, e.g. ALLOWED_HOSTS=api.example.com,admin.example.com
    allowed_hosts: Annotated[list[str], NoDecode] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: Annotated[list[str], NoDecode] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("allowed_hosts", "cors_origins", mode="before")
    @classmethod
    def _split_csv(cls, v: object) -> object:
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @field_validator("auth_cookie_samesite")
    @classmethod
    def _check_samesite(cls, v: str) -> str:
        v = v.lower()
        if v not in {"lax", "strict", "none"}:
            raise ValueError("AUTH_COOKIE_SAMESITE must be one of: lax, strict, none.")
        return v

    @field_validator("assignment_isolation_level")
    @classmethod
    def _check_isolation(cls, v: str) -> str:
        v = v.upper()
        if v not in _ISOLATION_LEVELS:
            raise ValueError(f"ASSIGNMENT_ISOLATION_LEVEL must be one of: {sorted(_ISOLATION_LEVELS)}")
        return v

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy and the cross-field limits.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.

        Also checks the page limits and that ASSIGNMENT_ISOLATION_LEVEL is one
        the DATABASE_URL backend accepts.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if self.max_page_limit < 1:
            raise ValueError("MAX_PAGE_LIMIT must be at least 1.")
        if not 1 <= self.default_page_limit <= self.max_page_limit:
            raise ValueError("DEFAULT_PAGE_LIMIT must be between 1 and MAX_PAGE_LIMIT.")
        try:
            backend = make_url(self.database_url).get_backend_name()
        except ArgumentError as exc:
            raise ValueError(f"DATABASE_URL is not a valid database URL: {exc}") from exc
        if self.assignment_isolation_level not in supported_isolation_levels(backend):
            raise ValueError(
                f"ASSIGNMENT_ISOLATION_LEVEL {self.assignment_isolation_level} is not supported by {backend}. "
                f"Use one of: {sorted(supported_isolation_levels(backend))}"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
