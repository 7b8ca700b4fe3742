"""Reconcile local items against the live server: soft-delete what's gone, migrate what moved."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from jellysync.domain.entities import IdentityMatch, MatchOutcome, SyncResult
from jellysync.domain.exceptions import CleanupAbortedError
from jellysync.infrastructure.observability import (
    format_error,
    format_sync_log_line,
    log_operation,
)
from jellysync.infrastructure.persistence import (
    HiddenRecommendationRepository,
    ItemRepository,
    LibraryModel,
    LibraryRepository,
    chunked,
    execute_with_retry,
)

from .context import SyncContext
from .identity import MatchIndex, classify_against_snapshot
from .metrics import SyncMetricsTracker
from .migration import ItemMigrator

logger = logging.getLogger(__name__)

UNREACHABLE_MESSAGE = (
    "Server unreachable - cleanup aborted to prevent marking all items as deleted"
)


@dataclass
class CleanupStats:
    """Result data of a deleted-items cleanup."""

    libraries_scanned: int = 0
    items_scanned: int = 0
    jellyfin_items_count: int = 0
    database_items_count: int = 0
    items_soft_deleted: int = 0
    items_migrated: int = 0
    migrations_deferred: int = 0
    sessions_migrated: int = 0
    hidden_recommendations_deleted: int = 0
    hidden_recommendations_migrated: int = 0


@dataclass
class _Snapshot:
    ids: set[str]
    index: MatchIndex
    scanned_library_ids: set[str]


# Hey future me, this is the most DANGEROUS job in the pipeline - a wrong snapshot marks a
# whole library as deleted. Hence the two guards, and both run BEFORE any write:
#   1. server unreachable (health check false or raising) → abort
#   2. snapshot empty while we have active items → abort (Jellyfin mid-rescan returns 0)
# A library whose snapshot fetch FAILED is skipped in the diff as well, otherwise every
# item of it would look deleted.
# State machine: health-guard → snapshot → snapshot-guard → per-library diff →
# batch soft-delete → migrations → COMPLETE (or ABORTED at a guard).
class DeletedItemReconciler:
    """Finds items that disappeared from Jellyfin or came back under a new id."""

    def __init__(self, context: SyncContext, migrator: ItemMigrator | None = None) -> None:
        self.ctx = context
        self.migrator = migrator or ItemMigrator(context.database)

    def _log_phase(self, phase: str, **fields: object) -> None:
        logger.info(
            format_sync_log_line(
                "deleted-items-cleanup",
                {"server": self.ctx.server.name, "phase": phase, **fields},
            )
        )

    async def _check_reachable(self) -> None:
        try:
            healthy = await self.ctx.client.is_server_healthy()
        except Exception as e:
            logger.warning(
                "cleanup.health_check_failed", extra={"error": format_error(e)}
            )
            healthy = False
        if not healthy:
            raise CleanupAbortedError(UNREACHABLE_MESSAGE, reason="server_unreachable")

    async def _build_snapshot(
        self,
        libraries: list[LibraryModel],
        tracker: SyncMetricsTracker,
        stats: CleanupStats,
    ) -> _Snapshot:
        snapshot = _Snapshot(ids=set(), index=MatchIndex(), scanned_library_ids=set())
        for library in libraries:
            try:
                tracker.increment("api_requests")
                items = await self.ctx.client.get_all_items_minimal(library.id)
            except Exception as e:
                tracker.record_error(f"Library {library.name}: {format_error(e)}")
                continue
            for item in items:
                snapshot.ids.add(item.id)
                snapshot.index.add(item)
            snapshot.scanned_library_ids.add(library.id)
            stats.libraries_scanned += 1
            self._log_phase(
                "fetch",
                page=stats.libraries_scanned,
                processed=len(items),
                totalProcessed=len(snapshot.ids),
                libraryId=library.id,
            )
        stats.jellyfin_items_count = len(snapshot.ids)
        return snapshot

    async def _diff_library(
        self, library: LibraryModel, snapshot: _Snapshot, stats: CleanupStats
    ) -> tuple[list[str], list[tuple[str, IdentityMatch]]]:
        async with self.ctx.database.session_scope() as session:
            rows = await ItemRepository(session).list_active_identities(
                self.ctx.server.id, library.id
            )
        to_delete: list[str] = []
        to_migrate: list[tuple[str, IdentityMatch]] = []
        for row in rows:
            outcome, match = classify_against_snapshot(row, snapshot.ids, snapshot.index)
            if outcome == MatchOutcome.DELETED:
                to_delete.append(row.id)
            elif outcome == MatchOutcome.MIGRATED and match is not None:
                to_migrate.append((row.id, match))
        stats.items_scanned += len(rows)
        stats.database_items_count += len(rows)
        self._log_phase(
            "library-processed",
            processed=len(rows),
            totalProcessed=stats.items_scanned,
            libraryId=library.id,
            toDelete=len(to_delete),
            toMigrate=len(to_migrate),
        )
        return to_delete, to_migrate

    async def _soft_delete_batch(self, batch: list[str]) -> tuple[int, int]:
        async with self.ctx.database.session_scope() as session:
            deleted = await ItemRepository(session).soft_delete(batch)
            hidden = await HiddenRecommendationRepository(session).delete_for_items(batch)
        return deleted, hidden

    async def _soft_delete_one(self, item_id: str) -> int:
        async with self.ctx.database.session_scope() as session:
            return await ItemRepository(session).soft_delete([item_id])

    async def _target_exists(self, item_id: str) -> bool:
        async with self.ctx.database.session_scope() as session:
            return await ItemRepository(session).exists(item_id)

    # Yo, a migration target that is NOT in our table yet (the new id was never synced) can't
    # take over references - the FKs would point nowhere. So we only soft-delete the old row
    # and count it as deferred; the next item sync inserts the new id, finds the old one in
    # the deleted index and finishes the migration there. A target that exists but is
    # soft-deleted IS migrated right away: item sync only reactivates such a row (UPDATE,
    # no re-identification), so deferring would strand the old row's references.
    async def _migrate(
        self,
        old_id: str,
        match: IdentityMatch,
        tracker: SyncMetricsTracker,
        stats: CleanupStats,
    ) -> None:
        await execute_with_retry(
            lambda: self._soft_delete_one(old_id), operation_name="cleanup.soft_delete"
        )
        tracker.increment("database_operations")
        if not await self._target_exists(match.item_id):
            stats.migrations_deferred += 1
            logger.info(
                "cleanup.migration_deferred",
                extra={"old_item_id": old_id, "new_item_id": match.item_id, "reason": match.reason},
            )
            return
        counts = await self.migrator.migrate(old_id, match.item_id, match.reason)
        stats.items_migrated += 1
        stats.sessions_migrated += counts.sessions
        stats.hidden_recommendations_migrated += counts.hidden_recommendations
        tracker.increment("items_migrated")
        tracker.increment("sessions_migrated", counts.sessions)
        tracker.increment("hidden_recommendations_migrated", counts.hidden_recommendations)

    async def _run(self, tracker: SyncMetricsTracker, stats: CleanupStats) -> None:
        server = self.ctx.server
        await self._check_reachable()

        async with self.ctx.database.session_scope() as session:
            libraries = await LibraryRepository(session).list_for_server(server.id)
            active_count = await ItemRepository(session).count_active(server.id)
        tracker.increment("database_operations", 2)

        snapshot = await self._build_snapshot(libraries, tracker, stats)
        if stats.jellyfin_items_count == 0 and active_count > 0:
            raise CleanupAbortedError(
                f"Jellyfin returned 0 items but database has {active_count} items - "
                "cleanup aborted to prevent false deletions",
                reason="empty_snapshot",
            )

        to_delete: list[str] = []
        to_migrate: list[tuple[str, IdentityMatch]] = []
        for library in libraries:
            if library.id not in snapshot.scanned_library_ids:
                continue
            deleted, migrated = await self._diff_library(library, snapshot, stats)
            to_delete.extend(deleted)
            to_migrate.extend(migrated)

        for batch in chunked(to_delete, self.ctx.settings.cleanup_batch_size):
            deleted, hidden = await execute_with_retry(
                lambda batch=batch: self._soft_delete_batch(batch),
                operation_name="cleanup.soft_delete_batch",
            )
            tracker.increment("database_operations", 2)
            stats.items_soft_deleted += deleted
            stats.hidden_recommendations_deleted += hidden

        for old_id, match in to_migrate:
            try:
                await self._migrate(old_id, match, tracker, stats)
            except Exception as e:
                tracker.record_error(
                    f"Migration {old_id} -> {match.item_id}: {format_error(e)}"
                )

        self._log_phase(
            "complete",
            processed=stats.items_scanned,
            errors=tracker.error_count,
            totalProcessed=stats.items_scanned,
            deleted=stats.items_soft_deleted,
            migrated=stats.items_migrated,
            deferred=stats.migrations_deferred,
            sessionsMigrated=stats.sessions_migrated,
            hiddenRecsDeleted=stats.hidden_recommendations_deleted,
            hiddenRecsMigrated=stats.hidden_recommendations_migrated,
        )

    async def cleanup_deleted_items(self) -> SyncResult[CleanupStats]:
        """Run the reconciliation for the context's server.

        Returns:
            SUCCESS, PARTIAL (per-library or per-migration errors) or ERROR
            (a guard fired or something unexpected escaped)
        """
        tracker = SyncMetricsTracker(self.ctx.settings.max_reported_errors)
        stats = CleanupStats()
        try:
            async with log_operation(
                logger, "deleted_items_cleanup", server=self.ctx.server.name
            ) as summary:
                await self._run(tracker, stats)
                summary.update(
                    items_soft_deleted=stats.items_soft_deleted,
                    items_migrated=stats.items_migrated,
                    migrations_deferred=stats.migrations_deferred,
                )
        except CleanupAbortedError as e:
            self._log_phase("abort", errors=1, reason=e.reason)
            return tracker.failure(stats, e.message)
        except Exception as e:
            return tracker.failure(stats, f"Cleanup failed: {format_error(e)}")
        return tracker.result(stats)
