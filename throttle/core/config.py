"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
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
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


DEFAULT_REQUEST_LIMIT = 5000
DEFAULT_PERIOD_SECONDS = 3600
DEFAULT_COOKIE_NAME = "sid"
DEFAULT_SESSION_KEY = "rate-api-id"


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
        description="Log file path when output is 'file'",
    )
    max_bytes: int = Field(
        10_485_760,
        description="Rotate the log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(
        5,
        description="Number of rotated log files to keep",
        ge=0,
    )
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to read and echo the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class RedisSettings(BaseSettings):
    """Connection settings for the shared counter store.

    Pool acquisition and script execution carry independent timeouts so a
    saturated pool and a slow server are reported separately.
    """

    url: str = Field(
        "redis://localhost:6379/0",
        description="Redis connection URL",
    )
    max_connections: int = Field(
        20,
        description="Maximum pooled connections per process",
        ge=1,
    )
    pool_timeout_seconds: float = Field(
        1.0,
        description="Maximum wait for a free pooled connection",
        gt=0,
    )
    operation_timeout_seconds: float = Field(
        0.5,
        description="Maximum duration of one counter script call",
        gt=0,
    )
    socket_timeout_seconds: float | None = Field(
        None,
        description="Socket read/write timeout passed to redis-py",
    )

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Fixed-window rate limit configuration."""

    enabled: bool = Field(
        True,
        description="Enable the rate limiting middleware",
    )
    requests: int = Field(
        DEFAULT_REQUEST_LIMIT,
        description="Maximum number of requests allowed per window (per key)",
        ge=1,
    )
    period_seconds: float = Field(
        DEFAULT_PERIOD_SECONDS,
        description="Window length in seconds",
        gt=0,
    )
    key_strategy: str = Field(
        "api_key_or_ip",
        description="How clients are identified: ip, api_key, api_key_or_ip, cookie, session",
    )
    trust_forwarded_for: bool = Field(
        False,
        description="Use the first X-Forwarded-For entry as client address",
    )
    cookie_name: str = Field(
        DEFAULT_COOKIE_NAME,
        description="Cookie read by the 'cookie' key strategy",
    )
    session_key: str = Field(
        DEFAULT_SESSION_KEY,
        description="Session entry read by the 'session' key strategy",
    )
    key_prefix: str = Field(
        "ratelimit:",
        description="Namespace prepended to every counter key in the store",
    )
    failure_policy: str = Field(
        "open",
        description=(
            "Decision when the counter store is unreachable: 'open' lets the "
            "request through, 'closed' rejects it with 429"
        ),
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers",
    )
    backend: str = Field(
        "redis",
        description="Counter store backend: 'redis' (shared) or 'memory' (single process)",
    )
    exempt_paths: list[str] = Field(
        default_factory=lambda: ["/health", "/health/ready"],
        description="Exact request paths that bypass rate limiting",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


def _build_log_settings() -> LogSettings:
    return LogSettings()


def _build_redis_settings() -> RedisSettings:
    return RedisSettings()


def _build_rate_limit_settings() -> RateLimitSettings:
    return RateLimitSettings()


class Settings(BaseSettings):
    """Main application settings container.
    
    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.
    
    Environments:
    - development: Local development
    - testing: Automated tests (uses .env.testing)
    - staging: Pre-production (uses .env.staging)
    - production: Production deployment (uses .env.production)
    """

    app_env: str = APP_ENV
    log: LogSettings = Field(default_factory=_build_log_settings)
    redis: RedisSettings = Field(default_factory=_build_redis_settings)
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
