"""Application configuration via Pydantic BaseSettings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache
from urllib.parse import urlparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import ValidationError as PydanticValidationError
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.salesboard.core.errors import ConfigurationError

_PLACEHOLDER_KEYS = {"changeme", "change-me", "your-anon-key", "your-supabase-anon-key"}


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    SUPABASE_URL and SUPABASE_ANON_KEY have no defaults: the service refuses
    to start without them.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Hosted platform (auth, tables, realtime)
    SUPABASE_URL: str
    SUPABASE_ANON_KEY: str

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ALLOWED_ORIGINS: str = "*"

    # Monitoring
    SENTRY_DSN: str = ""

    # Dashboard
    DASHBOARD_TIMEZONE: str = "UTC"  # Calendar used for quarter boundaries
    DASHBOARD_INCLUDE_ZERO_TOTALS: bool = False

    # Live feed and store
    FEED_SUBSCRIBE_TIMEOUT_SECONDS: float = 10.0
    STORE_MAX_RETRIES: int = 3

    # Sessions
    SESSION_COOKIE_NAME: str = "salesboard_session"  # holds the opaque SessionManager id
    SIGNIN_PATH: str = "/signin"

    @field_validator("SUPABASE_URL")
    @classmethod
    def _check_url(cls, value: str) -> str:
        parsed = urlparse(value.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("must be an http(s) URL with a host, e.g. https://xyz.supabase.co")
        return value.strip().rstrip("/")

    @field_validator("SUPABASE_ANON_KEY")
    @classmethod
    def _check_key(cls, value: str) -> str:
        key = value.strip()
        if not key:
            raise ValueError("must not be empty")
        if key.lower() in _PLACEHOLDER_KEYS:
            raise ValueError("is still a placeholder value")
        return key

    @field_validator("DASHBOARD_TIMEZONE")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown IANA timezone {value!r}") from exc
        return value

    @property
    def timezone(self) -> ZoneInfo:
        return ZoneInfo(self.DASHBOARD_TIMEZONE)


def load_settings() -> Settings:
    """Build settings, converting validation failures into one clear diagnostic.

    Raises:
        ConfigurationError: Naming every missing or invalid variable.
    """
    try:
        return Settings()
    except PydanticValidationError as exc:
        problems = []
        for err in exc.errors():
            name = ".".join(str(part) for part in err.get("loc", ())) or "settings"
            if err.get("type") == "missing":
                problems.append(f"{name} is required but not set")
            else:
                problems.append(f"{name} {err.get('msg', 'is invalid')}")
        raise ConfigurationError(
            "Invalid configuration: " + "; ".join(problems)
        ) from exc


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return load_settings()
