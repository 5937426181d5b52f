"""
Centralized configuration management using Pydantic Settings.

This module provides type-safe configuration management with validation,
loading settings from environment variables (prefix ``REPOKIT_``) and .env files.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


SUPPORTED_SCHEMES = ("sqlite", "postgresql", "mysql", "mariadb")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    """
    Repository layer settings loaded from environment variables.

    All settings can be overridden via environment variables, e.g.
    ``REPOKIT_DATABASE_URL`` or ``REPOKIT_MAX_PAGE_SIZE``.
    """

    # Database Configuration
    database_url: str = Field(
        default="sqlite:///:memory:",
        description="SQLAlchemy database URL for the default configuration"
    )
    database_echo: bool = Field(
        default=False,
        description="Echo every SQL statement (debug only)"
    )
    pool_size: int = Field(
        default=10,
        description="Connection pool size (ignored for SQLite)"
    )
    max_overflow: int = Field(
        default=20,
        description="Connections allowed beyond pool_size (ignored for SQLite)"
    )
    pool_timeout: int = Field(
        default=30,
        description="Seconds to wait for a pooled connection before timing out"
    )
    pool_recycle: int = Field(
        default=1800,
        description="Seconds after which pooled connections are recycled"
    )
    default_config_name: str = Field(
        default="default",
        description="Configuration name used when callers do not pass one"
    )

    # Repository behaviour
    batch_size: int = Field(
        default=20,
        description="Entities written between flush/clear cycles in save_all"
    )
    max_page_size: int = Field(
        default=1000,
        description="Largest page size accepted by the pagination engine"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Root log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_json: bool = Field(
        default=True,
        description="Emit JSON log lines (False for plain text)"
    )

    model_config = SettingsConfigDict(
        env_prefix="REPOKIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """
        Validate database URL format.

        Accepts plain and driver-qualified schemes (``postgresql+psycopg://``).
        """
        if not v or v.strip() == "":
            raise ValueError("REPOKIT_DATABASE_URL is required and cannot be empty")

        scheme = v.split("://", 1)[0].split("+", 1)[0] if "://" in v else ""
        if scheme not in SUPPORTED_SCHEMES:
            raise ValueError(
                f"REPOKIT_DATABASE_URL must start with one of: {', '.join(SUPPORTED_SCHEMES)}. "
                f"Got: {v[:20]}..."
            )
        return v

    @field_validator("pool_size", "pool_timeout", "batch_size", "max_page_size")
    @classmethod
    def validate_positive(cls, v: int, info) -> int:
        if v < 1:
            raise ValueError(f"{info.field_name.upper()} must be at least 1, got {v}")
        return v

    @field_validator("max_overflow", "pool_recycle")
    @classmethod
    def validate_non_negative(cls, v: int, info) -> int:
        if v < 0:
            raise ValueError(f"{info.field_name.upper()} must not be negative, got {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of: {', '.join(LOG_LEVELS)}")
        return level

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def is_in_memory(self) -> bool:
        return self.is_sqlite and (
            ":memory:" in self.database_url or self.database_url.rstrip("/") in ("sqlite:", "sqlite+pysqlite:")
        )


@lru_cache
def get_settings() -> Settings:
    """
    Return the process-wide settings instance.

    Settings are read once; call ``get_settings.cache_clear()`` in tests
    after changing environment variables.
    """
    return Settings()
