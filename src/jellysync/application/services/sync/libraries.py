"""Library sync."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from jellysync.domain.dtos import JellyfinLibrary
from jellysync.domain.entities import SyncResult
from jellysync.infrastructure.observability import (
    format_error,
    format_sync_log_line,
    log_operation,
)
from jellysync.infrastructure.persistence import LibraryRepository, execute_with_retry

from .context import SyncContext
from .metrics import SyncMetricsTracker
from .paging import ElementResult, process_in_chunks

logger = logging.getLogger(__name__)


@dataclass
class LibrarySyncStats:
    libraries_processed: int = 0
    libraries_inserted: int = 0
    libraries_updated: int = 0


class LibrarySyncService:
    """Mirrors the server's media folders into the libraries table.

    Libraries that disappeared remotely are left alone here; their items are
    handled by the deleted-items cleanup.
    """

    def __init__(self, context: SyncContext) -> None:
        self.ctx = context

    async def _write_library(self, library: JellyfinLibrary) -> bool:
        async with self.ctx.database.session_scope() as session:
            inserted = await LibraryRepository(session).upsert(library, self.ctx.server.id)
        self.ctx.remember_library(library.id, self.ctx.server.id)
        return inserted

    async def process_library(self, library: JellyfinLibrary) -> bool:
        return await execute_with_retry(
            lambda: self._write_library(library), operation_name="libraries.write"
        )

    async def sync_libraries(self) -> SyncResult[LibrarySyncStats]:
        settings = self.ctx.settings
        tracker = SyncMetricsTracker(settings.max_reported_errors)
        stats = LibrarySyncStats()

        def on_chunk(number: int, results: list[ElementResult[bool]], process_ms: int) -> None:
            inserted = updated = errors = 0
            for result in results:
                tracker.increment("libraries_processed")
                stats.libraries_processed += 1
                if not result.ok:
                    errors += 1
                    tracker.record_error(f"Library {result.key}: {result.error}")
                    continue
                tracker.increment("database_operations")
                if result.value:
                    inserted += 1
                    tracker.increment("libraries_inserted")
                else:
                    updated += 1
                    tracker.increment("libraries_updated")
            stats.libraries_inserted += inserted
            stats.libraries_updated += updated
            logger.info(
                format_sync_log_line(
                    "libraries-sync",
                    {
                        "server": self.ctx.server.name,
                        "page": number,
                        "processed": len(results),
                        "inserted": inserted,
                        "updated": updated,
                        "errors": errors,
                        "processMs": process_ms,
                        "totalProcessed": stats.libraries_processed,
                    },
                )
            )

        try:
            async with log_operation(
                logger, "libraries_sync", server=self.ctx.server.name
            ) as summary:
                tracker.increment("api_requests")
                libraries = await self.ctx.client.get_libraries()
                await process_in_chunks(
                    libraries,
                    self.process_library,
                    settings.library_batch_size,
                    settings.library_concurrency,
                    key=lambda library: library.name,
                    on_chunk=on_chunk,
                )
                summary.update(
                    fetched=len(libraries),
                    inserted=stats.libraries_inserted,
                    updated=stats.libraries_updated,
                    errors=tracker.error_count,
                )
        except Exception as e:
            return tracker.failure(stats, f"Libraries sync failed: {format_error(e)}")
        return tracker.result(stats)
