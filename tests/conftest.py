"""Shared fixtures for jellysync tests.

Hey future me - every test that touches the database gets its OWN SQLite file under
tmp_path (not :memory:). Sync services open a new session per element, and each new
connection to an in-memory database would see an empty database.
"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest
from factories import MOVIES_LIBRARY_ID, SHOWS_LIBRARY_ID, make_item

from jellysync.application.services.sync import SyncContext, map_jellyfin_item
from jellysync.config import Settings
from jellysync.domain.dtos import JellyfinItem
from jellysync.domain.entities import MediaServer
from jellysync.domain.ports import IMediaServerClient
from jellysync.infrastructure.persistence import (
    Database,
    DatabaseLockMetrics,
    ItemRepository,
    LibraryModel,
    ServerRepository,
)


@pytest.fixture(autouse=True)
def reset_lock_metrics() -> None:
    """DatabaseLockMetrics is a process singleton, start every test from zero."""
    DatabaseLockMetrics.get_instance().reset()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at a per-test SQLite file, no inter-page delay."""
    return Settings(
        app_env="test",
        database={"url": f"sqlite+aiosqlite:///{tmp_path / 'jellysync.db'}"},
        sync={
            "api_request_delay_ms": 0,
            "item_page_size": 2,
            "item_concurrency": 2,
            "activity_page_size": 3,
            "activity_concurrency": 2,
            "cleanup_batch_size": 2,
        },
    )


@pytest.fixture
async def database(settings: Settings) -> AsyncGenerator[Database, None]:
    db = Database(settings)
    await db.create_tables()
    yield db
    await db.close()


@pytest.fixture
async def server(database: Database) -> MediaServer:
    async with database.session_scope() as session:
        return await ServerRepository(session).add(
            name="home", url="http://jellyfin.local:8096", api_key="secret-key"
        )


@pytest.fixture
async def libraries(database: Database, server: MediaServer) -> list[LibraryModel]:
    """A movies and a tvshows library of the test server."""
    models = [
        LibraryModel(id=MOVIES_LIBRARY_ID, name="Movies", type="movies", server_id=server.id),
        LibraryModel(id=SHOWS_LIBRARY_ID, name="Shows", type="tvshows", server_id=server.id),
    ]
    async with database.session_scope() as session:
        session.add_all(models)
    return models


@pytest.fixture
def client() -> AsyncMock:
    mock = AsyncMock(spec=IMediaServerClient)
    mock.is_server_healthy.return_value = True
    return mock


@pytest.fixture
def ctx(
    server: MediaServer, client: AsyncMock, database: Database, settings: Settings
) -> SyncContext:
    return SyncContext(
        server=server, client=client, database=database, settings=settings.sync
    )


@pytest.fixture
def store_item(
    database: Database, server: MediaServer
) -> Callable[..., Awaitable[JellyfinItem]]:
    """Write an item row directly, optionally soft-deleted."""

    async def _store(
        item_id: str,
        library_id: str = MOVIES_LIBRARY_ID,
        deleted: bool = False,
        **fields: Any,
    ) -> JellyfinItem:
        dto = make_item(item_id, **fields)
        row = map_jellyfin_item(dto, library_id, server.id)
        async with database.session_scope() as session:
            repo = ItemRepository(session)
            await repo.upsert(row.as_values())
            if deleted:
                await repo.soft_delete([item_id])
        return dto

    return _store
