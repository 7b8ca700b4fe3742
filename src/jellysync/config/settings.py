"""Application settings loaded from environment variables and .env files."""

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Hey future me, every sub-settings block here is a plain BaseModel nested inside the one
# BaseSettings at the bottom. Env vars reach them through the nested delimiter, e.g.
# JELLYSYNC_DATABASE__URL or JELLYSYNC_SYNC__ITEM_PAGE_SIZE. Tests just pass dicts:
# Settings(database={"url": "sqlite+aiosqlite:///:memory:"}).
class DatabaseSettings(BaseModel):
    """Database connection settings."""

    url: str = "sqlite+aiosqlite:///./jellysync.db"
    echo: bool = False
    pool_pre_ping: bool = True
    # Only applied for PostgreSQL, SQLite has no real pool
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 3600


class JellyfinSettings(BaseModel):
    """HTTP client settings for talking to Jellyfin servers."""

    client_name: str = "jellysync"
    client_version: str = "0.1.0"
    device_name: str = "jellysync-worker"
    device_id: str = "jellysync"
    request_timeout: float = 60.0
    max_retries: int = Field(default=3, ge=0)
    retry_initial_delay: float = Field(default=1.0, ge=0)
    # Page size used internally when the client walks a full library for the minimal snapshot
    minimal_page_size: int = Field(default=1000, ge=1)


class SyncSettings(BaseModel):
    """Tuning knobs for the sync pipeline.

    Defaults mirror what works against a mid-sized Jellyfin instance without
    tripping its request throttling.
    """

    # Users / libraries
    user_batch_size: int = Field(default=100, ge=1)
    user_concurrency: int = Field(default=5, ge=1)
    library_batch_size: int = Field(default=100, ge=1)
    library_concurrency: int = Field(default=5, ge=1)

    # Items
    item_page_size: int = Field(default=1000, ge=1)
    item_concurrency: int = Field(default=4, ge=1)
    max_library_concurrency: int = Field(default=1, ge=1)
    recent_items_limit: int = Field(default=100, ge=1)

    # Activities
    activity_page_size: int = Field(default=5000, ge=1)
    activity_max_pages: int = Field(default=5000, ge=1)
    activity_concurrency: int = Field(default=5, ge=1)
    recent_activity_page_size: int = Field(default=100, ge=1)
    recent_activity_max_pages: int = Field(default=1, ge=1)
    intelligent_scan_multiplier: int = Field(default=3, ge=1)

    # Shared
    api_request_delay_ms: int = Field(default=100, ge=0)
    max_reported_errors: int = Field(default=50, ge=1)

    # Deleted item cleanup
    cleanup_batch_size: int = Field(default=100, ge=1)

    # People backfill
    people_ids_per_fetch: int = Field(default=20, ge=1)
    people_db_batch_limit: int = Field(default=500, ge=1)
    people_max_runtime_seconds: float = Field(default=14 * 60, gt=0)

    @property
    def api_request_delay(self) -> float:
        """Inter-page delay in seconds."""
        return self.api_request_delay_ms / 1000


class ObservabilitySettings(BaseModel):
    """Logging settings."""

    log_json_format: bool = False


# Listen up, this is THE settings object. Don't instantiate it all over the place - use
# get_settings() which caches one instance per process. Tests build their own Settings()
# and pass it explicitly, that's why nothing below reads get_settings() at import time.
class Settings(BaseSettings):
    """Root application settings."""

    model_config = SettingsConfigDict(
        env_prefix="JELLYSYNC_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "jellysync"
    app_env: Literal["development", "production", "test"] = "development"
    log_level: str = "INFO"

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    jellyfin: JellyfinSettings = Field(default_factory=JellyfinSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Normalize and validate the log level name."""
        normalized = value.upper()
        if normalized not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {value}")
        return normalized


@lru_cache
def get_settings() -> Settings:
    """Get the process-wide settings instance."""
    return Settings()
