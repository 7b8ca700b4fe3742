"""Tests for SyncCoordinator, SyncDispatcher and SyncGuard."""

import pytest
from factories import activities_page, items_page, make_activity, make_item

from jellysync.application.services.sync import SyncCoordinator, SyncDispatcher, SyncGuard
from jellysync.application.services.sync.coordinator import FULL_SYNC_FAILED
from jellysync.domain.dtos import JellyfinLibrary, JellyfinUser
from jellysync.domain.entities import ServerSyncState, SyncStatus, SyncType
from jellysync.domain.exceptions import (
    EntityNotFoundException,
    ExternalServiceError,
    SyncAlreadyRunningError,
)
from jellysync.infrastructure.persistence import ServerModel, UserRepository


@pytest.fixture
def healthy_remote(client):
    """A small but complete server: one user, one library, two items, two activities."""
    client.get_users.return_value = [JellyfinUser(id="u1", name="alice")]
    client.get_libraries.return_value = [
        JellyfinLibrary(id="lib-movies", name="Movies", type="movies")
    ]
    client.get_items_page.return_value = items_page([make_item("m1"), make_item("m2")])
    client.get_activities.return_value = activities_page(
        [make_activity("a1", UserId="u1"), make_activity("a2")]
    )
    return client


async def load_server(database, server_id):
    async with database.session_scope() as session:
        return await session.get(ServerModel, server_id)


class TestSyncCoordinator:
    """Users → libraries → items → activities."""

    async def test_full_sync_runs_all_stages(self, ctx, healthy_remote) -> None:
        result = await SyncCoordinator(ctx).perform_full_sync()

        assert result.status == SyncStatus.SUCCESS
        assert result.data.stage_status == {
            "users": "success",
            "libraries": "success",
            "items": "success",
            "activities": "success",
        }
        assert result.metrics.users_inserted == 1
        assert result.metrics.libraries_inserted == 1
        assert result.metrics.items_inserted == 2
        assert result.metrics.activities_inserted == 2
        assert result.data.items.items_inserted == 2

    async def test_failed_stage_does_not_block_later_stages(
        self, ctx, healthy_remote
    ) -> None:
        healthy_remote.get_users.side_effect = ExternalServiceError("HTTP 401")

        result = await SyncCoordinator(ctx).perform_full_sync()

        assert result.status == SyncStatus.ERROR
        assert result.error == FULL_SYNC_FAILED
        assert result.data.stage_status["users"] == "error"
        assert result.data.stage_status["activities"] == "success"
        assert result.metrics.items_inserted == 2
        assert "Users: Users sync failed: HTTP 401" in result.errors

    async def test_partial_stage_makes_full_sync_partial(self, ctx, healthy_remote) -> None:
        async def get_items_page(library_id, start_index, limit):
            if start_index > 0:
                raise ExternalServiceError("HTTP 503")
            return items_page([make_item("m1"), make_item("m2")], total=5)

        healthy_remote.get_items_page.side_effect = get_items_page

        result = await SyncCoordinator(ctx).perform_full_sync()

        assert result.status == SyncStatus.PARTIAL
        assert result.data.stage_status["items"] == "partial"
        assert result.errors == ["Items: Library Movies: HTTP 503"]


class TestSyncGuard:
    """Single flight per server."""

    async def test_second_claim_for_same_server_fails(self) -> None:
        guard = SyncGuard()
        async with guard.hold(1):
            assert guard.is_running(1)
            with pytest.raises(SyncAlreadyRunningError, match="server 1"):
                async with guard.hold(1):
                    pass
            async with guard.hold(2):
                assert guard.is_running(2)
        assert not guard.is_running(1)

    async def test_claim_released_on_error(self) -> None:
        guard = SyncGuard()
        with pytest.raises(RuntimeError):
            async with guard.hold(1):
                raise RuntimeError("boom")
        assert not guard.is_running(1)


class TestSyncDispatcher:
    """Job entry point and server status bookkeeping."""

    @pytest.fixture
    def dispatcher(self, database, settings, client) -> SyncDispatcher:
        return SyncDispatcher(database, settings, client_factory=lambda server, cfg: client)

    async def test_successful_run_marks_server_completed(
        self, dispatcher, database, server, healthy_remote
    ) -> None:
        result = await dispatcher.run(server.id, SyncType.USERS)

        assert result.status == SyncStatus.SUCCESS
        stored = await load_server(database, server.id)
        assert stored.sync_status == ServerSyncState.COMPLETED.value
        assert stored.sync_type == "users"
        assert stored.sync_error is None
        assert stored.last_sync_started is not None
        assert stored.last_sync_completed is not None
        healthy_remote.close.assert_awaited_once()

    async def test_string_sync_type_and_options(
        self, dispatcher, server, libraries, healthy_remote
    ) -> None:
        result = await dispatcher.run(server.id, "recent_activities", page_size=1)

        assert result.status == SyncStatus.SUCCESS
        healthy_remote.get_activities.assert_awaited_once_with(0, 1)

    async def test_partial_run_is_completed_with_note(
        self, dispatcher, database, server, healthy_remote, mocker
    ) -> None:
        healthy_remote.get_users.return_value = [
            JellyfinUser(id="u1", name="alice"),
            JellyfinUser(id="bad", name="bob"),
        ]
        original = UserRepository.upsert

        async def flaky(repo, user, server_id):
            if user.id == "bad":
                raise ValueError("constraint failed")
            return await original(repo, user, server_id)

        mocker.patch.object(UserRepository, "upsert", new=flaky)

        result = await dispatcher.run(server.id, SyncType.USERS)

        assert result.status == SyncStatus.PARTIAL
        stored = await load_server(database, server.id)
        assert stored.sync_status == ServerSyncState.COMPLETED.value
        assert stored.sync_error == "Partial success with 1 errors"

    async def test_stage_error_marks_server_failed(
        self, dispatcher, database, server, healthy_remote
    ) -> None:
        healthy_remote.get_users.side_effect = ExternalServiceError("HTTP 401")

        result = await dispatcher.run(server.id, SyncType.USERS)

        assert result.status == SyncStatus.ERROR
        stored = await load_server(database, server.id)
        assert stored.sync_status == ServerSyncState.FAILED.value
        assert stored.sync_error == "Users sync failed: HTTP 401"

    async def test_unhandled_exception_is_caught(
        self, dispatcher, database, server, healthy_remote
    ) -> None:
        result = await dispatcher.run(server.id, SyncType.ITEMS, unknown_option=True)

        assert result.status == SyncStatus.ERROR
        assert result.error.startswith("items sync failed: ")
        stored = await load_server(database, server.id)
        assert stored.sync_status == ServerSyncState.FAILED.value
        healthy_remote.close.assert_awaited_once()

    async def test_unknown_server_raises(self, dispatcher, database) -> None:
        with pytest.raises(EntityNotFoundException):
            await dispatcher.run(999, SyncType.FULL)

    async def test_concurrent_run_for_same_server_is_rejected(
        self, database, settings, server, client
    ) -> None:
        guard = SyncGuard()
        dispatcher = SyncDispatcher(
            database, settings, client_factory=lambda s, c: client, guard=guard
        )

        async with guard.hold(server.id):
            result = await dispatcher.run(server.id, SyncType.USERS)

        assert result.status == SyncStatus.ERROR
        assert result.error == f"Sync already running for server {server.id}"
        stored = await load_server(database, server.id)
        assert stored.sync_status == ServerSyncState.PENDING.value
        client.get_users.assert_not_awaited()
