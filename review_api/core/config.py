"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

Settings are read once at startup. The rate limit tier table is derived from
them in ``review_api.ratelimit.tiers`` and injected into the limiter registry,
so nothing in the request path reads these values again.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file and not os.getenv("TESTING"):
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment.

    Pydantic Settings (v2) can populate values from environment variables.
    However, static type checkers often treat required fields as required
    constructor arguments, which is not how BaseSettings is intended to be used.
    """

    return AppSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    return LogSettings()  # type: ignore[call-arg]


def _build_counter_store_settings() -> "CounterStoreSettings":
    return CounterStoreSettings()  # type: ignore[call-arg]


def _build_rate_limit_settings() -> "RateLimitSettings":
    return RateLimitSettings()  # type: ignore[call-arg]


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    admin_key_required: bool = Field(
        True,
        description="Whether admin endpoints require the X-Admin-Key header",
    )
    admin_keys: str | None = Field(
        None,
        description="Comma-separated list of valid admin keys",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field(
        "json",
        description="Log format: 'json' (structured) or 'plain'",
    )
    output: str = Field(
        "stdout",
        description="Log destination: 'stdout' or 'file'",
    )
    file_path: str | None = Field(
        None,
        description="Log file path when output=file (default logs/app.log)",
    )
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file at this size (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(5, description="Rotated files to keep", ge=0)
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to accept and propagate the request id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class CounterStoreSettings(BaseSettings):
    """Connection parameters for the shared request counter store."""

    backend: str = Field(
        "redis",
        description="Counter store backend: 'redis' (shared) or 'memory' (single process)",
    )
    redis_url: str = Field(
        "redis://localhost:6379/0",
        description="Redis connection URL used when backend=redis",
    )
    timeout_seconds: float = Field(
        0.5,
        description="Upper bound for a single counter store call",
        gt=0,
    )
    key_prefix: str = Field(
        "ratelimit",
        description="Namespace prepended to every counter key",
    )

    model_config = SettingsConfigDict(
        env_prefix="COUNTER_STORE_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Rate limit policy per tier.

    Every tier needs both ``<tier>_requests`` and ``<tier>_window_seconds``.
    Authentication, seeding and external proxy tiers are stricter than the
    read-only data tier.
    """

    enabled: bool = Field(True, description="Enable rate limiting")
    include_headers: bool = Field(
        True,
        description="Attach X-RateLimit-* headers to admitted responses",
    )
    trust_forwarded_headers: bool = Field(
        True,
        description="Identify clients by X-Forwarded-For / X-Real-IP (behind a trusted proxy)",
    )
    protected_prefixes: str = Field(
        "/api",
        description="Comma-separated path prefixes guarded by the rate limit middleware",
    )

    api_requests: int = Field(100, ge=1, description="General API endpoints")
    api_window_seconds: int = Field(3600, ge=1)
    data_requests: int = Field(200, ge=1, description="Data fetching endpoints")
    data_window_seconds: int = Field(3600, ge=1)
    auth_requests: int = Field(5, ge=1, description="Authentication endpoints")
    auth_window_seconds: int = Field(900, ge=1)
    mutation_requests: int = Field(50, ge=1, description="Data mutation endpoints")
    mutation_window_seconds: int = Field(3600, ge=1)
    external_requests: int = Field(20, ge=1, description="External API proxy endpoints")
    external_window_seconds: int = Field(3600, ge=1)
    admin_requests: int = Field(30, ge=1, description="Admin operation endpoints")
    admin_window_seconds: int = Field(3600, ge=1)
    seed_requests: int = Field(10, ge=1, description="Database seeding endpoints")
    seed_window_seconds: int = Field(3600, ge=1)

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )

    def prefixes(self) -> tuple[str, ...]:
        """Return the protected path prefixes as a tuple."""
        return tuple(p.strip() for p in self.protected_prefixes.split(",") if p.strip())


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)
    counter_store: CounterStoreSettings = Field(default_factory=_build_counter_store_settings)
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
