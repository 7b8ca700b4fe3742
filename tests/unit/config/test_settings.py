"""Tests for application settings."""

import pytest
from pydantic import ValidationError

from jellysync.config import Settings, SyncSettings


class TestSettings:
    """Nested sections, env overrides and validation."""

    def test_defaults(self, monkeypatch) -> None:
        monkeypatch.chdir("/")
        settings = Settings()
        assert settings.database.url.startswith("sqlite+aiosqlite://")
        assert settings.sync.activity_page_size == 5000
        assert settings.sync.intelligent_scan_multiplier == 3
        assert settings.jellyfin.max_retries == 3

    def test_nested_dicts(self) -> None:
        settings = Settings(sync={"item_page_size": 250, "api_request_delay_ms": 1500})
        assert settings.sync.item_page_size == 250
        assert settings.sync.api_request_delay == 1.5

    def test_env_override_uses_nested_delimiter(self, monkeypatch) -> None:
        monkeypatch.setenv("JELLYSYNC_SYNC__ITEM_PAGE_SIZE", "42")
        monkeypatch.setenv("JELLYSYNC_DATABASE__URL", "sqlite+aiosqlite:///env.db")
        settings = Settings()
        assert settings.sync.item_page_size == 42
        assert settings.database.url == "sqlite+aiosqlite:///env.db"

    def test_log_level_is_normalized(self) -> None:
        assert Settings(log_level="debug").log_level == "DEBUG"

    def test_invalid_log_level_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(log_level="chatty")

    @pytest.mark.parametrize(
        "field", ["item_page_size", "activity_concurrency", "cleanup_batch_size"]
    )
    def test_sync_sizes_must_be_positive(self, field) -> None:
        with pytest.raises(ValidationError):
            SyncSettings(**{field: 0})
