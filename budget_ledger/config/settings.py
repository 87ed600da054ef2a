"""
Configuration Management for Budget Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see which knobs the ledger exposes and
ensures all configuration is validated at startup.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreSettings(BaseSettings):
    """Ledger store backend configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_STORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    backend: str = Field(
        default="memory",
        pattern="^(memory|sql)$",
        description="Which store implementation to use"
    )
    database_url: Optional[str] = Field(
        default=None,
        description="SQLAlchemy database URL (required for the sql backend)"
    )
    echo_sql: bool = Field(
        default=False,
        description="Log every SQL statement"
    )

    # Bounded waits
    timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=120,
        description="How long an operation waits for its user's unit of work"
    )

    # Retry policy for transient store failures
    retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Total attempts for a top-level operation on retryable errors"
    )
    retry_wait_min_seconds: float = Field(
        default=0.1,
        ge=0,
        description="Minimum backoff between attempts"
    )
    retry_wait_max_seconds: float = Field(
        default=2.0,
        ge=0,
        description="Maximum backoff between attempts"
    )

    @model_validator(mode='after')
    def validate_backend(self) -> 'StoreSettings':
        """The sql backend cannot start without a database URL."""
        if self.backend == "sql" and not self.database_url:
            raise ValueError("LEDGER_STORE_DATABASE_URL is required for the sql backend")
        if self.retry_wait_max_seconds < self.retry_wait_min_seconds:
            raise ValueError("retry_wait_max_seconds cannot be below retry_wait_min_seconds")
        return self


class LedgerSettings(BaseSettings):
    """Ledger behaviour limits."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    default_page_size: int = Field(
        default=10,
        ge=1,
        le=500,
        description="Page size used when the caller does not pass one"
    )
    max_page_size: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Largest page a caller may request"
    )
    max_description_length: int = Field(
        default=500,
        ge=20,
        le=5000,
        description="Longest allowed transaction description"
    )

    @model_validator(mode='after')
    def validate_page_sizes(self) -> 'LedgerSettings':
        if self.default_page_size > self.max_page_size:
            raise ValueError("default_page_size cannot exceed max_page_size")
        return self


class LoggingSettings(BaseSettings):
    """Structured logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    level: str = Field(
        default="INFO",
        description="Minimum log level"
    )
    json_output: bool = Field(
        default=True,
        description="Render logs as JSON (False renders for a console)"
    )

    @field_validator('level')
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )

    @property
    def store(self) -> StoreSettings:
        return StoreSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def logging(self) -> LoggingSettings:
        return LoggingSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, object]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid} plus an
    `<name>_error` entry for every section that failed.
    Useful for startup checks.
    """
    results: dict[str, object] = {}
    settings = get_settings()

    for name in ("store", "ledger", "logging"):
        try:
            getattr(settings, name)
            results[name] = True
        except ValueError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
