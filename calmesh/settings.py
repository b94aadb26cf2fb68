"""
calmesh.settings - Centralized Configuration

Process-level defaults loaded from .env files and environment variables
using pydantic-settings. Per-account behaviour (feed URLs, cache TTL
overrides, routing domains) lives in the accounts configuration, not here.

Usage:
    >>> from calmesh.settings import get_settings
    >>> settings = get_settings()
    >>> settings.batch_max_size
    50
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CalmeshSettings(BaseSettings):
    """Centralized calmesh configuration loaded from .env / environment variables.

    All CALMESH_* prefixed env vars are loaded automatically.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="CALMESH_",
        extra="ignore",
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"

    # -- Accounts --------------------------------------------------------------
    config_path: Path | None = None
    tokens_path: Path | None = None  # JSON object: account id -> bearer token

    # -- Batch execution -------------------------------------------------------
    batch_max_size: int = Field(default=50, ge=1)
    batch_max_concurrency: int = Field(default=10, ge=1)

    # -- Providers -------------------------------------------------------------
    http_timeout_seconds: float = Field(default=30.0, gt=0)
    google_api_timeout_seconds: float = Field(default=30.0, gt=0)
    ics_cache_ttl_minutes: int = Field(default=5, ge=1)
    json_cache_ttl_minutes: int = Field(default=15, ge=1)

    # -- Validators ------------------------------------------------------------

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.strip().upper()


# ---------------------------------------------------------------------------
# Singleton accessor
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def get_settings() -> CalmeshSettings:
    """Return the cached CalmeshSettings singleton."""
    return CalmeshSettings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for tests)."""
    get_settings.cache_clear()
