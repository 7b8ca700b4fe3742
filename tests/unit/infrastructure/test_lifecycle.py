"""Tests for the sync runtime lifecycle."""

import logging

import pytest

from jellysync.domain.dtos import JellyfinUser
from jellysync.domain.entities import SyncStatus, SyncType
from jellysync.infrastructure.lifecycle import (
    _sqlite_db_path,
    _validate_sqlite_path,
    sync_all_servers,
    sync_runtime,
)
from jellysync.infrastructure.persistence import ServerRepository


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestSqlitePath:
    @pytest.mark.parametrize(
        "url",
        [
            "sqlite+aiosqlite:///:memory:",
            "sqlite+aiosqlite://",
            "postgresql+asyncpg://u:p@db/jellysync",
        ],
    )
    def test_no_file_path(self, url) -> None:
        assert _sqlite_db_path(url) is None

    def test_creates_parent_directory(self, settings, tmp_path) -> None:
        target = tmp_path / "nested" / "dir" / "jellysync.db"
        cfg = settings.model_copy(
            update={
                "database": settings.database.model_copy(
                    update={"url": f"sqlite+aiosqlite:///{target}"}
                )
            }
        )
        _validate_sqlite_path(cfg)
        assert target.parent.is_dir()


class TestSyncRuntime:
    """End-to-end through the runtime with a mocked client."""

    async def test_runs_every_server(self, settings, database, server, client) -> None:
        async with database.session_scope() as session:
            other = await ServerRepository(session).add(
                name="cabin", url="http://cabin.local:8096", api_key="k2"
            )
        client.get_users.return_value = [JellyfinUser(id="u1", name="alice")]

        async with sync_runtime(settings, client_factory=lambda s, cfg: client) as dispatcher:
            results = await sync_all_servers(dispatcher, "users")

        assert set(results) == {server.id, other.id}
        assert all(r.status == SyncStatus.SUCCESS for r in results.values())
        assert client.close.await_count == 2

    async def test_no_servers(self, settings, database) -> None:
        async with sync_runtime(settings) as dispatcher:
            assert await sync_all_servers(dispatcher, SyncType.FULL) == {}
