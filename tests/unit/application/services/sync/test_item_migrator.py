"""Tests for ItemMigrator: reference rewrite first, old row removal second."""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from jellysync.application.services.sync import ItemMigrator
from jellysync.infrastructure.persistence import (
    HiddenRecommendationModel,
    ItemModel,
    SessionModel,
)


@pytest.fixture
async def referenced_items(database, server, libraries, store_item):
    """Old (soft-deleted) item with two sessions and a hidden recommendation, plus its successor."""
    await store_item("old", deleted=True, ProviderIds={"Imdb": "tt001"})
    await store_item("new", ProviderIds={"Imdb": "tt001"})
    async with database.session_scope() as session:
        session.add_all(
            [
                SessionModel(id="s1", server_id=server.id, item_id="old"),
                SessionModel(id="s2", server_id=server.id, item_id="old"),
                HiddenRecommendationModel(server_id=server.id, user_id="u1", item_id="old"),
            ]
        )


async def count_refs(database, item_id: str) -> tuple[int, int]:
    async with database.session_scope() as session:
        sessions = await session.scalar(
            select(func.count()).select_from(SessionModel).where(SessionModel.item_id == item_id)
        )
        hidden = await session.scalar(
            select(func.count())
            .select_from(HiddenRecommendationModel)
            .where(HiddenRecommendationModel.item_id == item_id)
        )
    return sessions, hidden


class TestItemMigrator:
    """Migration safety."""

    async def test_migrate_moves_references_and_removes_old_row(
        self, database, referenced_items
    ) -> None:
        counts = await ItemMigrator(database).migrate("old", "new", "provider_id:imdb:tt001")

        assert counts.sessions == 2
        assert counts.hidden_recommendations == 1
        assert counts.deleted is True
        assert await count_refs(database, "old") == (0, 0)
        assert await count_refs(database, "new") == (2, 1)
        async with database.session_scope() as session:
            assert await session.get(ItemModel, "old") is None
            assert await session.get(ItemModel, "new") is not None

    async def test_failed_delete_leaves_no_dangling_reference(
        self, database, referenced_items
    ) -> None:
        """The old row survives as a harmless duplicate, history already points at new."""
        migrator = ItemMigrator(database)
        migrator._delete_old = AsyncMock(side_effect=RuntimeError("disk full"))

        with pytest.raises(RuntimeError):
            await migrator.migrate("old", "new")

        assert await count_refs(database, "old") == (0, 0)
        assert await count_refs(database, "new") == (2, 1)
        async with database.session_scope() as session:
            assert await session.get(ItemModel, "old") is not None

    async def test_migrate_without_references(self, database, libraries, store_item) -> None:
        await store_item("old", deleted=True)
        await store_item("new")

        counts = await ItemMigrator(database).migrate("old", "new")

        assert counts.sessions == 0
        assert counts.hidden_recommendations == 0
        assert counts.deleted is True
