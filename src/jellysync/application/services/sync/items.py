"""Item sync: full library paging and the recently-added bulk path."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from jellysync.domain.dtos import JellyfinItem, JellyfinLibrary
from jellysync.domain.entities import IdentityMatch, SyncResult
from jellysync.infrastructure.observability import (
    format_error,
    format_sync_log_line,
    log_operation,
)
from jellysync.infrastructure.persistence import (
    ItemRepository,
    ItemSyncState,
    LibraryModel,
    LibraryRepository,
    execute_with_retry,
)

from .context import SyncContext
from .item_mapper import (
    ItemRow,
    has_image_changes,
    has_tracked_changes,
    map_jellyfin_item,
    needs_provider_backfill,
)
from .metrics import SyncMetricsTracker
from .migration import ItemMigrator
from .paging import ElementResult, Page, PagedFetcher, PageReport, run_bounded

logger = logging.getLogger(__name__)


class ItemAction(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    UNCHANGED = "unchanged"


@dataclass
class ItemWriteResult:
    """Per-item outcome, aggregated into metrics after each page."""

    item_id: str
    action: ItemAction
    match: IdentityMatch | None = None
    sessions_migrated: int = 0
    hidden_recommendations_migrated: int = 0
    migration_error: str | None = None


@dataclass
class ItemSyncStats:
    """Result data of an item sync."""

    libraries_processed: int = 0
    libraries_failed: int = 0
    pages: int = 0
    items_processed: int = 0
    items_inserted: int = 0
    items_updated: int = 0
    items_unchanged: int = 0
    items_migrated: int = 0
    failed_libraries: list[str] = field(default_factory=list)


def classify_item(state: ItemSyncState | None, row: ItemRow) -> ItemAction:
    """Single-item classification by etag, deleted flag and provider-id backfill."""
    if state is None:
        return ItemAction.INSERT
    if (
        state.etag == row.etag
        and state.deleted_at is None
        and not needs_provider_backfill(state.provider_ids, row.provider_ids)
    ):
        return ItemAction.UNCHANGED
    return ItemAction.UPDATE


# Hey future me, ONE item == ONE transaction. Classification and write happen in the same
# session_scope, wrapped in execute_with_retry for SQLite's "database is locked". The
# identity match + migration runs AFTER that commit because the migrator repoints foreign
# keys at the new row, which therefore has to exist already.
class ItemSyncService:
    """Syncs Jellyfin items of one server into the items table."""

    def __init__(self, context: SyncContext, migrator: ItemMigrator | None = None) -> None:
        self.ctx = context
        self.migrator = migrator or ItemMigrator(context.database)

    # ===== SHARED WRITE PATH =====

    async def _write_single(self, row: ItemRow) -> tuple[ItemAction, bool]:
        async with self.ctx.database.session_scope() as session:
            repo = ItemRepository(session)
            state = await repo.get_sync_state(row.id)
            action = classify_item(state, row)
            if action != ItemAction.UNCHANGED:
                await repo.upsert(row.as_values())
        was_deleted = state is not None and state.deleted_at is not None
        return action, was_deleted

    async def _write_row(self, row: ItemRow) -> None:
        async with self.ctx.database.session_scope() as session:
            await ItemRepository(session).upsert(row.as_values())

    async def _reidentify(self, row: ItemRow, result: ItemWriteResult) -> None:
        """Match a freshly inserted item against soft-deleted rows and migrate."""
        index = await self.ctx.deleted_items_index()
        match = index.find_match(row)
        if match is None:
            return
        # claimed before awaiting so a concurrent insert can't migrate the same row
        self.ctx.forget_deleted_item(match.item_id)
        result.match = match
        try:
            counts = await self.migrator.migrate(match.item_id, row.id, match.reason)
        except Exception as e:
            result.migration_error = (
                f"Migration {match.item_id} -> {row.id} ({match.reason}) failed: "
                f"{format_error(e)}"
            )
            logger.error(
                "items.migration_failed",
                extra={"old_item_id": match.item_id, "new_item_id": row.id},
                exc_info=True,
            )
            return
        result.sessions_migrated = counts.sessions
        result.hidden_recommendations_migrated = counts.hidden_recommendations

    async def _after_write(
        self, row: ItemRow, action: ItemAction, was_deleted: bool
    ) -> ItemWriteResult:
        result = ItemWriteResult(item_id=row.id, action=action)
        if action == ItemAction.INSERT:
            await self._reidentify(row, result)
        elif was_deleted:
            # it came back under the same id, it's no longer a migration candidate
            self.ctx.forget_deleted_item(row.id)
        return result

    async def _map(self, dto: JellyfinItem, library_id: str) -> ItemRow:
        server_id = await self.ctx.server_id_for_library(library_id) or self.ctx.server.id
        return map_jellyfin_item(dto, library_id, server_id)

    async def process_item(self, dto: JellyfinItem, library_id: str) -> ItemWriteResult:
        """Classify and write one item, then re-identify it when it's new."""
        row = await self._map(dto, library_id)
        action, was_deleted = await execute_with_retry(
            lambda: self._write_single(row), operation_name="items.write"
        )
        return await self._after_write(row, action, was_deleted)

    @staticmethod
    def _aggregate(
        results: list[ElementResult[ItemWriteResult]],
        tracker: SyncMetricsTracker,
        stats: ItemSyncStats,
        error_prefix: str,
    ) -> dict[str, int]:
        page = {"inserted": 0, "updated": 0, "unchanged": 0, "migrated": 0, "errors": 0}
        for element in results:
            tracker.increment("items_processed")
            stats.items_processed += 1
            if not element.ok or element.value is None:
                page["errors"] += 1
                tracker.record_error(f"{error_prefix}item {element.key}: {element.error}")
                continue
            outcome = element.value
            if outcome.action == ItemAction.UNCHANGED:
                tracker.increment("items_unchanged")
                stats.items_unchanged += 1
                page["unchanged"] += 1
                continue
            tracker.increment("database_operations")
            if outcome.action == ItemAction.INSERT:
                tracker.increment("items_inserted")
                stats.items_inserted += 1
                page["inserted"] += 1
            else:
                tracker.increment("items_updated")
                stats.items_updated += 1
                page["updated"] += 1
            if outcome.migration_error:
                page["errors"] += 1
                tracker.record_error(f"{error_prefix}{outcome.migration_error}")
            elif outcome.match is not None:
                tracker.increment("items_migrated")
                tracker.increment("sessions_migrated", outcome.sessions_migrated)
                tracker.increment(
                    "hidden_recommendations_migrated",
                    outcome.hidden_recommendations_migrated,
                )
                stats.items_migrated += 1
                page["migrated"] += 1
        return page

    # ===== FULL SYNC =====

    async def _sync_library(
        self,
        library: LibraryModel,
        tracker: SyncMetricsTracker,
        stats: ItemSyncStats,
    ) -> None:
        settings = self.ctx.settings
        client = self.ctx.client
        total_processed = 0
        prefix = f"Library {library.name}: "

        async def fetch(offset: int, limit: int) -> Page[JellyfinItem]:
            tracker.increment("api_requests")
            page = await client.get_items_page(library.id, offset, limit)
            raw_count = len(page.items) if page.raw_count is None else page.raw_count
            return Page(
                page.items,
                has_more=offset + raw_count < page.total_count,
                raw_count=raw_count,
                rejected=page.rejected,
            )

        async def process(dto: JellyfinItem) -> ItemWriteResult:
            return await self.process_item(dto, library.id)

        async def on_page(report: PageReport[JellyfinItem, ItemWriteResult]) -> None:
            nonlocal total_processed
            counts = self._aggregate(report.results, tracker, stats, prefix)
            for rejected in report.rejected:
                counts["errors"] += 1
                tracker.record_error(f"{prefix}item {rejected}")
            total_processed += len(report.processed)
            logger.info(
                format_sync_log_line(
                    "items-sync",
                    {
                        "server": self.ctx.server.name,
                        "page": report.number,
                        "processed": len(report.processed),
                        "inserted": counts["inserted"],
                        "updated": counts["updated"],
                        "errors": counts["errors"],
                        "processMs": report.process_ms,
                        "totalProcessed": total_processed,
                        "libraryId": library.id,
                        "fetchMs": report.fetch_ms,
                        "unchanged": counts["unchanged"],
                        "migrated": counts["migrated"],
                    },
                )
            )
            return None

        fetcher: PagedFetcher[JellyfinItem, ItemWriteResult] = PagedFetcher(
            fetch,
            process,
            page_size=settings.item_page_size,
            concurrency=settings.item_concurrency,
            delay_seconds=settings.api_request_delay,
            key=lambda dto: dto.id,
            on_page=on_page,
            name="items",
        )
        outcome = await fetcher.run()
        stats.pages += outcome.pages
        if outcome.fetch_error:
            stats.libraries_failed += 1
            stats.failed_libraries.append(library.name)
            tracker.record_error(f"{prefix}{outcome.fetch_error}")
        else:
            stats.libraries_processed += 1

    async def sync_items(self, library_id: str | None = None) -> SyncResult[ItemSyncStats]:
        """Page through every library of the server and upsert its items.

        Args:
            library_id: Restrict the run to one library

        Returns:
            SyncResult with ItemSyncStats; PARTIAL when items or pages failed
        """
        server = self.ctx.server
        tracker = SyncMetricsTracker(self.ctx.settings.max_reported_errors)
        stats = ItemSyncStats()

        try:
            async with log_operation(
                logger, "items_sync", server=server.name, library_id=library_id
            ) as summary:
                async with self.ctx.database.session_scope() as session:
                    libraries = await LibraryRepository(session).list_for_server(server.id)
                if library_id is not None:
                    libraries = [lib for lib in libraries if lib.id == library_id]
                    if not libraries:
                        return tracker.failure(
                            stats,
                            f"Library {library_id} not found for server {server.id}",
                        )
                for library in libraries:
                    self.ctx.remember_library(library.id, library.server_id)

                library_results = await run_bounded(
                    libraries,
                    lambda lib: self._sync_library(lib, tracker, stats),
                    self.ctx.settings.max_library_concurrency,
                    key=lambda lib: lib.name,
                )
                for failed in (r for r in library_results if not r.ok):
                    stats.libraries_failed += 1
                    stats.failed_libraries.append(failed.key)
                    tracker.record_error(f"Library {failed.key}: {failed.error}")

                summary.update(
                    libraries=len(libraries),
                    items_processed=stats.items_processed,
                    items_inserted=stats.items_inserted,
                    items_updated=stats.items_updated,
                    items_migrated=stats.items_migrated,
                    errors=tracker.error_count,
                )
        except Exception as e:
            return tracker.failure(stats, f"Items sync failed: {format_error(e)}")

        return tracker.result(stats)

    # ===== RECENTLY ADDED =====

    # Listen up, the recently-added path is the cheap periodic one: no paging, the N newest
    # items per library, classified in BULK against full stored rows. Tracked fields or
    # image fields changing both mean "update" - artwork refreshes matter for the UI.
    def _classify_bulk(self, stored: object | None, row: ItemRow) -> ItemAction:
        if stored is None:
            return ItemAction.INSERT
        if (
            getattr(stored, "deleted_at", None) is not None
            or has_tracked_changes(stored, row)
            or has_image_changes(stored, row)
            or needs_provider_backfill(getattr(stored, "provider_ids", None), row.provider_ids)
        ):
            return ItemAction.UPDATE
        return ItemAction.UNCHANGED

    async def _sync_recent_library(
        self,
        library: LibraryModel,
        limit: int,
        tracker: SyncMetricsTracker,
        stats: ItemSyncStats,
    ) -> None:
        tracker.increment("api_requests")
        dtos = await self.ctx.client.get_recently_added_items(library.id, limit)
        rows = [await self._map(dto, library.id) for dto in dtos]

        async with self.ctx.database.session_scope() as session:
            existing = await ItemRepository(session).get_many([r.id for r in rows])
        planned = [
            (row, self._classify_bulk(existing.get(row.id), row), row.id in existing)
            for row in rows
        ]

        async def apply(plan: tuple[ItemRow, ItemAction, bool]) -> ItemWriteResult:
            row, action, known = plan
            if action != ItemAction.UNCHANGED:
                await execute_with_retry(
                    lambda: self._write_row(row), operation_name="items.write"
                )
            was_deleted = known and existing[row.id].deleted_at is not None
            return await self._after_write(row, action, was_deleted)

        results = await run_bounded(
            planned,
            apply,
            self.ctx.settings.item_concurrency,
            key=lambda plan: plan[0].id,
        )
        counts = self._aggregate(results, tracker, stats, f"Library {library.name}: ")
        stats.pages += 1
        stats.libraries_processed += 1
        logger.info(
            format_sync_log_line(
                "recent-items-sync",
                {
                    "server": self.ctx.server.name,
                    "page": 1,
                    "processed": len(results),
                    "inserted": counts["inserted"],
                    "updated": counts["updated"],
                    "errors": counts["errors"],
                    "totalProcessed": stats.items_processed,
                    "libraryId": library.id,
                    "unchanged": counts["unchanged"],
                    "migrated": counts["migrated"],
                },
            )
        )

    async def sync_recently_added_items(
        self, limit: int | None = None
    ) -> SyncResult[ItemSyncStats]:
        """Sync the `limit` newest items of every library still present on the server."""
        server = self.ctx.server
        limit = limit or self.ctx.settings.recent_items_limit
        tracker = SyncMetricsTracker(self.ctx.settings.max_reported_errors)
        stats = ItemSyncStats()

        try:
            async with log_operation(
                logger, "recent_items_sync", server=server.name, limit=limit
            ) as summary:
                tracker.increment("api_requests")
                remote: list[JellyfinLibrary] = await self.ctx.client.get_libraries()
                remote_ids = {lib.id for lib in remote}
                async with self.ctx.database.session_scope() as session:
                    local = await LibraryRepository(session).list_for_server(server.id)
                libraries = [lib for lib in local if lib.id in remote_ids]
                for library in libraries:
                    self.ctx.remember_library(library.id, library.server_id)

                results = await run_bounded(
                    libraries,
                    lambda lib: self._sync_recent_library(lib, limit, tracker, stats),
                    self.ctx.settings.max_library_concurrency,
                    key=lambda lib: lib.name,
                )
                for failed in (r for r in results if not r.ok):
                    stats.libraries_failed += 1
                    stats.failed_libraries.append(failed.key)
                    tracker.record_error(f"Library {failed.key}: {failed.error}")

                summary.update(
                    libraries=len(libraries),
                    items_inserted=stats.items_inserted,
                    items_updated=stats.items_updated,
                    errors=tracker.error_count,
                )
        except Exception as e:
            return tracker.failure(
                stats, f"Recently added items sync failed: {format_error(e)}"
            )

        return tracker.result(stats)
