"""Runtime settings loaded from ``QC_``-prefixed environment variables."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from quotecache.config.paths import expand_env_path


class Settings(BaseSettings):
    """Infrastructure configuration shared by every data source.

    Values can be overridden via environment variables prefixed with
    ``QC_``.  For example, ``QC_STORE_BACKEND=redis``.
    """

    model_config = SettingsConfigDict(
        env_prefix="QC_",
        env_file=".env",
        extra="ignore",
    )

    store_backend: Literal["memory", "redis", "sqlite"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    sqlite_path: Path = Path(".cache/quotecache.sqlite3")

    lock_poll_interval_ms: int = Field(default=200, ge=10)
    rate_limit_guard_timeout_ms: int = Field(default=5_000, ge=100)

    cache_refresh_interval: float = 60 * 60 * 24
    rate_limit: str = "120/minute"
    api_key: str | None = None

    @field_validator("sqlite_path", mode="before")
    @classmethod
    def _expand_sqlite_path(cls, value: str | Path) -> Path:
        return expand_env_path(value, field="QC_SQLITE_PATH")


@lru_cache
def get_settings() -> Settings:
    """Return the cached settings singleton."""
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()


__all__ = ["Settings", "clear_settings_cache", "get_settings"]
