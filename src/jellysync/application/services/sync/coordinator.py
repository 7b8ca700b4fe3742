"""Full-sync coordinator and the per-server job dispatcher."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from jellysync.config.settings import JellyfinSettings, Settings
from jellysync.domain.entities import (
    MediaServer,
    ServerSyncState,
    SyncMetrics,
    SyncResult,
    SyncStatus,
    SyncType,
)
from jellysync.domain.exceptions import EntityNotFoundException, SyncAlreadyRunningError
from jellysync.domain.ports import IMediaServerClient
from jellysync.infrastructure.integrations import JellyfinClient
from jellysync.infrastructure.observability import (
    format_error,
    format_sync_log_line,
    set_correlation_id,
)
from jellysync.infrastructure.persistence import (
    Database,
    DatabaseLockMetrics,
    ServerRepository,
)

from .activities import ActivitySyncService, ActivitySyncStats
from .context import SyncContext
from .deleted_items import DeletedItemReconciler
from .items import ItemSyncService, ItemSyncStats
from .libraries import LibrarySyncService, LibrarySyncStats
from .metrics import SyncMetricsTracker
from .people import PeopleSyncService
from .users import UserSyncService, UserSyncStats

logger = logging.getLogger(__name__)

FULL_SYNC_FAILED = "One or more sync operations failed"

_NON_COUNTERS = {"started_at", "finished_at", "duration_ms", "errors"}


@dataclass
class FullSyncData:
    """Result data of a full sync: each stage's data plus its status."""

    users: UserSyncStats | None = None
    libraries: LibrarySyncStats | None = None
    items: ItemSyncStats | None = None
    activities: ActivitySyncStats | None = None
    stage_status: dict[str, str] = field(default_factory=dict)


def _absorb(tracker: SyncMetricsTracker, metrics: SyncMetrics) -> None:
    """Add a finished stage's counters to the full-sync tracker."""
    for f in dataclasses.fields(metrics):
        if f.name not in _NON_COUNTERS:
            tracker.increment(f.name, getattr(metrics, f.name))


# Hey future me, full sync = users → libraries → items → activities, STRICTLY in that order
# (items need libraries, activities need users for the FK check). A failing stage does NOT
# stop the next one - a broken activity log shouldn't block item sync. Every stage error is
# prefixed with its stage name so the combined list stays readable.
class SyncCoordinator:
    """Runs the four sync stages for one server."""

    def __init__(self, context: SyncContext) -> None:
        self.ctx = context
        self.users = UserSyncService(context)
        self.libraries = LibrarySyncService(context)
        self.items = ItemSyncService(context)
        self.activities = ActivitySyncService(context)

    def _merge_stage(
        self,
        label: str,
        result: SyncResult[Any],
        tracker: SyncMetricsTracker,
        data: FullSyncData,
    ) -> None:
        _absorb(tracker, result.metrics)
        data.stage_status[label.lower()] = result.status.value
        if result.status == SyncStatus.ERROR:
            tracker.record_error(f"{label}: {result.error}")
        elif result.status == SyncStatus.PARTIAL:
            for error in result.errors:
                tracker.record_error(f"{label}: {error}")
        logger.info(
            format_sync_log_line(
                "full-sync",
                {
                    "server": self.ctx.server.name,
                    "page": len(data.stage_status),
                    "errors": len(result.errors) if result.status != SyncStatus.SUCCESS else 0,
                    "processMs": result.metrics.duration_ms,
                    "step": label.lower(),
                    "phase": "done",
                    "status": result.status.value,
                },
            )
        )

    async def perform_full_sync(self) -> SyncResult[FullSyncData]:
        tracker = SyncMetricsTracker(self.ctx.settings.max_reported_errors)
        data = FullSyncData()
        logger.info(
            format_sync_log_line(
                "full-sync", {"server": self.ctx.server.name, "phase": "start"}
            )
        )

        users = await self.users.sync_users()
        data.users = users.data
        self._merge_stage("Users", users, tracker, data)

        libraries = await self.libraries.sync_libraries()
        data.libraries = libraries.data
        self._merge_stage("Libraries", libraries, tracker, data)

        items = await self.items.sync_items()
        data.items = items.data
        self._merge_stage("Items", items, tracker, data)

        activities = await self.activities.sync_activities()
        data.activities = activities.data
        self._merge_stage("Activities", activities, tracker, data)

        logger.info(
            "full_sync.completed",
            extra={
                "server": self.ctx.server.name,
                "stages": data.stage_status,
                "db_lock_stats": DatabaseLockMetrics.get_instance().get_stats(),
            },
        )

        if any(s == SyncStatus.ERROR.value for s in data.stage_status.values()):
            return SyncResult.failure(data, tracker.finish(), FULL_SYNC_FAILED, tracker.errors)
        return tracker.result(data)


# Listen up, SyncGuard is an IN-PROCESS single-flight lock per server id. Two jobs for the
# same server would race on the same rows (and double-migrate), two jobs for DIFFERENT
# servers are fine. Multi-process deployments need a DB/queue level lock on top of this.
class SyncGuard:
    """Allows at most one running sync per server."""

    def __init__(self) -> None:
        self._running: set[int] = set()

    def is_running(self, server_id: int) -> bool:
        return server_id in self._running

    @asynccontextmanager
    async def hold(self, server_id: int) -> AsyncGenerator[None, None]:
        """Claim the server for the duration of the block.

        Raises:
            SyncAlreadyRunningError: If a sync for this server is running
        """
        if server_id in self._running:
            raise SyncAlreadyRunningError(server_id)
        self._running.add(server_id)
        try:
            yield
        finally:
            self._running.discard(server_id)


ClientFactory = Callable[[MediaServer, JellyfinSettings], IMediaServerClient]


class SyncDispatcher:
    """Entry point for schedulers: run one SyncType against one server."""

    def __init__(
        self,
        database: Database,
        settings: Settings,
        client_factory: ClientFactory = JellyfinClient,
        guard: SyncGuard | None = None,
    ) -> None:
        self.database = database
        self.settings = settings
        self.client_factory = client_factory
        self.guard = guard or SyncGuard()

    async def _load_server(self, server_id: int) -> MediaServer:
        async with self.database.session_scope() as session:
            server = await ServerRepository(session).get_by_id(server_id)
        if server is None:
            raise EntityNotFoundException("Server", server_id)
        return server

    async def _set_state(
        self,
        server_id: int,
        state: ServerSyncState,
        sync_type: SyncType,
        error: str | None = None,
    ) -> None:
        async with self.database.session_scope() as session:
            await ServerRepository(session).update_sync_status(
                server_id, state, sync_type=sync_type.value, error=error
            )

    async def _dispatch(
        self, ctx: SyncContext, sync_type: SyncType, options: dict[str, Any]
    ) -> SyncResult[Any]:
        if sync_type == SyncType.FULL:
            return await SyncCoordinator(ctx).perform_full_sync()
        if sync_type == SyncType.USERS:
            return await UserSyncService(ctx).sync_users()
        if sync_type == SyncType.LIBRARIES:
            return await LibrarySyncService(ctx).sync_libraries()
        if sync_type == SyncType.ITEMS:
            return await ItemSyncService(ctx).sync_items(**options)
        if sync_type == SyncType.RECENT_ITEMS:
            return await ItemSyncService(ctx).sync_recently_added_items(**options)
        if sync_type == SyncType.ACTIVITIES:
            return await ActivitySyncService(ctx).sync_activities(**options)
        if sync_type == SyncType.RECENT_ACTIVITIES:
            return await ActivitySyncService(ctx).sync_recent_activities(**options)
        if sync_type == SyncType.DELETED_ITEMS_CLEANUP:
            return await DeletedItemReconciler(ctx).cleanup_deleted_items()
        if sync_type == SyncType.PEOPLE:
            return await PeopleSyncService(ctx).sync_people(**options)
        raise ValueError(f"Unsupported sync type: {sync_type}")

    async def run(
        self, server_id: int, sync_type: SyncType | str, **options: Any
    ) -> SyncResult[Any]:
        """Run a sync job and record its outcome on the server row.

        Args:
            server_id: Server to sync
            sync_type: What to sync
            **options: Passed to the stage (e.g. intelligent=True, limit=50)

        Returns:
            The stage's SyncResult; ERROR without touching the store when a
            sync for this server is already running

        Raises:
            EntityNotFoundException: If the server doesn't exist
        """
        sync_type = SyncType(sync_type)
        server = await self._load_server(server_id)

        try:
            async with self.guard.hold(server_id):
                correlation_id = set_correlation_id()
                logger.info(
                    "sync.dispatched",
                    extra={
                        "server": server.name,
                        "sync_type": sync_type.value,
                        "correlation_id": correlation_id,
                    },
                )
                return await self._run_claimed(server, sync_type, options)
        except SyncAlreadyRunningError as e:
            logger.warning(
                "sync.already_running",
                extra={"server": server.name, "sync_type": sync_type.value},
            )
            return SyncMetricsTracker().failure(None, e.message)

    async def _run_claimed(
        self, server: MediaServer, sync_type: SyncType, options: dict[str, Any]
    ) -> SyncResult[Any]:
        await self._set_state(server.id, ServerSyncState.SYNCING, sync_type)
        client = self.client_factory(server, self.settings.jellyfin)
        try:
            ctx = SyncContext(
                server=server,
                client=client,
                database=self.database,
                settings=self.settings.sync,
            )
            result = await self._dispatch(ctx, sync_type, options)
        except Exception as e:
            logger.error(
                "sync.unhandled_error",
                extra={"server": server.name, "sync_type": sync_type.value},
                exc_info=True,
            )
            result = SyncMetricsTracker().failure(
                None, f"{sync_type.value} sync failed: {format_error(e)}"
            )
        finally:
            await client.close()

        if result.status == SyncStatus.ERROR:
            await self._set_state(server.id, ServerSyncState.FAILED, sync_type, result.error)
        else:
            note = (
                f"Partial success with {result.metrics.errors or len(result.errors)} errors"
                if result.status == SyncStatus.PARTIAL
                else None
            )
            await self._set_state(server.id, ServerSyncState.COMPLETED, sync_type, note)
        return result
