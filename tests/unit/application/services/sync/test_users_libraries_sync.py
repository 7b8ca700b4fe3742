"""Tests for UserSyncService and LibrarySyncService."""

from jellysync.application.services.sync import LibrarySyncService, UserSyncService
from jellysync.domain.dtos import JellyfinLibrary, JellyfinUser
from jellysync.domain.entities import SyncStatus
from jellysync.domain.exceptions import ExternalServiceError
from jellysync.infrastructure.persistence import LibraryModel, UserModel


class TestUserSync:
    """Users mirror."""

    async def test_inserts_then_updates(self, ctx, client, database) -> None:
        client.get_users.return_value = [
            JellyfinUser(id="u1", name="alice", is_administrator=True),
            JellyfinUser(id="u2", name="bob"),
        ]
        service = UserSyncService(ctx)

        first = await service.sync_users()
        client.get_users.return_value = [JellyfinUser(id="u1", name="alice2")]
        second = await service.sync_users()

        assert first.status == SyncStatus.SUCCESS
        assert first.data.users_inserted == 2
        assert second.data.users_updated == 1
        async with database.session_scope() as session:
            alice = await session.get(UserModel, "u1")
        assert alice.name == "alice2"
        assert alice.server_id == ctx.server.id

    async def test_chunks_cover_every_user(self, ctx, client) -> None:
        ctx.settings = ctx.settings.model_copy(update={"user_batch_size": 2})
        client.get_users.return_value = [JellyfinUser(id=f"u{i}", name=f"n{i}") for i in range(5)]

        result = await UserSyncService(ctx).sync_users()

        assert result.metrics.users_processed == 5
        assert result.metrics.users_inserted == 5

    async def test_user_error_is_partial(self, ctx, client) -> None:
        client.get_users.return_value = [JellyfinUser(id="u1", name="ok"), JellyfinUser(id="u2", name="bad")]
        service = UserSyncService(ctx)
        original = service._write_user

        async def flaky(user):
            if user.id == "u2":
                raise ValueError("constraint failed")
            return await original(user)

        service._write_user = flaky

        result = await service.sync_users()

        assert result.status == SyncStatus.PARTIAL
        assert result.errors == ["User u2: constraint failed"]
        assert result.data.users_inserted == 1
        assert result.data.users_processed == 2
        assert result.metrics.users_processed == 2

    async def test_fetch_failure_is_error(self, ctx, client) -> None:
        client.get_users.side_effect = ExternalServiceError("Jellyfin request failed: HTTP 401")

        result = await UserSyncService(ctx).sync_users()

        assert result.status == SyncStatus.ERROR
        assert result.error == "Users sync failed: Jellyfin request failed: HTTP 401"


class TestLibrarySync:
    """Libraries mirror."""

    async def test_upserts_libraries_and_caches_owner(self, ctx, client, database) -> None:
        client.get_libraries.return_value = [
            JellyfinLibrary(id="lib-a", name="Movies", type="movies"),
            JellyfinLibrary(id="lib-b", name="Music", type="music"),
        ]

        result = await LibrarySyncService(ctx).sync_libraries()

        assert result.status == SyncStatus.SUCCESS
        assert result.data.libraries_inserted == 2
        async with database.session_scope() as session:
            music = await session.get(LibraryModel, "lib-b")
        assert music.type == "music"
        assert await ctx.server_id_for_library("lib-a") == ctx.server.id

    async def test_rename_is_an_update(self, ctx, client, database) -> None:
        client.get_libraries.return_value = [JellyfinLibrary(id="lib-a", name="Films", type="movies")]
        service = LibrarySyncService(ctx)
        await service.sync_libraries()
        client.get_libraries.return_value = [JellyfinLibrary(id="lib-a", name="Movies", type="movies")]

        result = await service.sync_libraries()

        assert result.data.libraries_updated == 1
        async with database.session_scope() as session:
            assert (await session.get(LibraryModel, "lib-a")).name == "Movies"

    async def test_fetch_failure_is_error(self, ctx, client) -> None:
        client.get_libraries.side_effect = ExternalServiceError("timeout")

        result = await LibrarySyncService(ctx).sync_libraries()

        assert result.status == SyncStatus.ERROR
        assert result.error == "Libraries sync failed: timeout"

    async def test_failed_library_still_counts_as_processed(self, ctx, client) -> None:
        client.get_libraries.return_value = [
            JellyfinLibrary(id="lib-a", name="Movies", type="movies"),
            JellyfinLibrary(id="lib-b", name="Broken", type="music"),
        ]
        service = LibrarySyncService(ctx)
        original = service._write_library

        async def flaky(library):
            if library.id == "lib-b":
                raise ValueError("constraint failed")
            return await original(library)

        service._write_library = flaky

        result = await service.sync_libraries()

        assert result.status == SyncStatus.PARTIAL
        assert result.errors == ["Library Broken: constraint failed"]
        assert result.data.libraries_processed == 2
        assert result.data.libraries_inserted == 1
