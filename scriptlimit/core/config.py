"""Process configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

Only process-wide switches live here (enable flag, global log level, Redis
URL, log output). Limiter and script registries are Python objects and are
registered with ``scriptlimit.core.limiter_config.configure_limits``.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None

# Nested BaseSettings don't inherit env_file, so populate os.environ first
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=False)


LOG_LEVEL_NAMES = ("debug", "info", "warning", "error", "critical")

_TRUE_LITERALS = {"true"}
_FALSE_LITERALS = {"false"}


def parse_enabled_flag(value: bool | str) -> bool:
    """Interpret the limiter enable flag.

    Accepts booleans and their string literals ("true"/"false", any case,
    surrounding whitespace ignored).

    Args:
        value: Raw flag value from settings.

    Returns:
        bool: Whether rate limiting is switched on.

    Raises:
        ValueError: If the value is neither a boolean nor a boolean literal.

    Examples:
        >>> parse_enabled_flag("true")
        True
        >>> parse_enabled_flag(False)
        False
    """
    if value is True or value is False:
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in _TRUE_LITERALS:
            return True
        if normalized in _FALSE_LITERALS:
            return False
    raise ValueError(f"enabled flag must be true/false or 'true'/'false', got {value!r}")


def normalize_log_level(value: bool | str | None) -> str | bool | None:
    """Normalize a log level option.

    ``False`` and the literal ``"false"`` disable logging, ``None`` means
    "not set", anything else must be a standard level name.
    """
    if value is None or value is False:
        return value
    if value is True:
        raise ValueError("log level must be a level name or false")
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in _FALSE_LITERALS:
            return False
        if normalized in LOG_LEVEL_NAMES:
            return normalized
    raise ValueError(f"log level must be one of {', '.join(LOG_LEVEL_NAMES)} or false, got {value!r}")


def _build_limit_settings() -> "LimitSettings":
    """Build limiter settings from environment.

    Pydantic Settings (v2) populates values from environment variables, so
    the constructor is called without arguments.
    """

    return LimitSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    """Build logging settings from environment."""

    return LogSettings()  # type: ignore[call-arg]


class LimitSettings(BaseSettings):
    """Process-wide rate limiter switches."""

    enabled: bool | str = Field(
        False,
        description="Enable rate limiting; evaluated on every request (true/false or 'true'/'false')",
    )
    log_level: str | bool = Field(
        "error",
        description="Default log level for limiter failures, or false to disable logging",
    )
    redis_url: str | None = Field(
        None,
        description="Redis URL used to build the default command executor",
    )
    redis_socket_timeout_seconds: float | None = Field(
        1.0,
        description="Socket timeout for the default Redis command executor",
        ge=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="SCRIPTLIMIT_",
        case_sensitive=False,
    )

    @field_validator("enabled", mode="before")
    @classmethod
    def validate_enabled(cls, value: bool | str) -> bool | str:
        parse_enabled_flag(value)
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, value: bool | str) -> str | bool:
        normalized = normalize_log_level(value)
        if normalized is None:
            raise ValueError("log level cannot be empty")
        return normalized


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field(
        "INFO",
        description="Root logger level",
    )
    format: str = Field(
        "json",
        description="Log format: json or plain",
    )
    output: str = Field(
        "stdout",
        description="Log destination: stdout or file",
    )
    file_path: str | None = Field(
        None,
        description="Log file path when output=file",
    )
    max_bytes: int = Field(
        0,
        description="Rotate the log file at this size (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(
        5,
        description="Number of rotated log files to keep",
        ge=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if a setting is malformed.
    """

    app_env: str = APP_ENV
    limit: LimitSettings = Field(default_factory=_build_limit_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance; nested settings are created via default_factory so env loading works.
settings = Settings()
