"""Configuration management using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="BATCHOPS_",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )
    log_dir: str | None = Field(
        default=None,
        description="Directory for rotating log files (stderr only when unset)",
    )

    # Batch defaults
    transactional: bool = Field(
        default=True,
        description="Stop the batch on the first operation that exhausts its retries",
    )
    retry_count: int = Field(
        default=3,
        ge=0,
        description="Retries per operation after the first attempt",
    )
    parallel_ops: bool = Field(
        default=False,
        description="Execute in input order, ignoring dependencies",
    )
    backoff_base_ms: int = Field(
        default=500,
        ge=0,
        description="Backoff multiplier in milliseconds (wait = 2^attempt * base)",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings instance loaded from environment.

    Example:
        >>> settings = get_settings()
        >>> settings.retry_count
        3
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
