"""Resumable backfill of item credits (actors, directors, ...)."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from jellysync.domain.dtos import PersonDTO
from jellysync.domain.entities import SyncResult
from jellysync.infrastructure.observability import (
    format_error,
    format_sync_log_line,
    log_operation,
)
from jellysync.infrastructure.persistence import (
    ItemRepository,
    PeopleRepository,
    chunked,
    execute_with_retry,
)

from .context import SyncContext
from .metrics import SyncMetricsTracker

logger = logging.getLogger(__name__)

LIBRARY_TYPES_WITH_PEOPLE = ("movies", "tvshows", "music")


@dataclass
class PeopleSyncStats:
    processed: int = 0
    remaining: int = 0
    errors: int = 0
    people_upserted: int = 0
    links_written: int = 0


# Hey future me, this job is meant to be called OVER AND OVER by the scheduler. It works for
# at most people_max_runtime_seconds and then stops; progress is stored per item in
# items.people_synced_at, so the next call picks up exactly where this one ended. Items
# without any credits get the stamp too, otherwise they'd be selected forever.
# Setting processed=False tells downstream jobs (recommendations) to rebuild that item.
class PeopleSyncService:
    """Fetches people for items that never had them synced."""

    def __init__(self, context: SyncContext) -> None:
        self.ctx = context

    async def _write_chunk(
        self, item_ids: list[str], people_by_item: dict[str, list[PersonDTO]]
    ) -> tuple[int, int]:
        server_id = self.ctx.server.id
        upserted = links = 0
        async with self.ctx.database.session_scope() as session:
            people_repo = PeopleRepository(session)
            for item_id in item_ids:
                credits = people_by_item.get(item_id, [])
                for person in credits:
                    await people_repo.upsert_person(person, server_id)
                    upserted += 1
                links += await people_repo.replace_item_people(item_id, server_id, credits)
            await ItemRepository(session).mark_people_synced(item_ids)
        return upserted, links

    async def _sync_chunk(self, item_ids: list[str], stats: PeopleSyncStats) -> None:
        item_people = await self.ctx.client.get_items_people(item_ids)
        people_by_item = {entry.item_id: entry.people for entry in item_people}
        upserted, links = await execute_with_retry(
            lambda: self._write_chunk(item_ids, people_by_item),
            operation_name="people.write",
        )
        stats.processed += len(item_ids)
        stats.people_upserted += upserted
        stats.links_written += links

    async def _count_remaining(self) -> int:
        async with self.ctx.database.session_scope() as session:
            return await ItemRepository(session).count_missing_people(
                self.ctx.server.id, LIBRARY_TYPES_WITH_PEOPLE
            )

    async def sync_people(
        self, max_runtime_seconds: float | None = None
    ) -> SyncResult[PeopleSyncStats]:
        """Backfill people until done or out of time.

        Args:
            max_runtime_seconds: Wall-clock budget, defaults to settings

        Returns:
            SyncResult with PeopleSyncStats; `remaining` > 0 means call again
        """
        settings = self.ctx.settings
        budget = max_runtime_seconds or settings.people_max_runtime_seconds
        tracker = SyncMetricsTracker(settings.max_reported_errors)
        stats = PeopleSyncStats()
        started = time.monotonic()
        page = 0

        def out_of_time() -> bool:
            return time.monotonic() - started >= budget

        try:
            async with log_operation(
                logger, "people_sync", server=self.ctx.server.name, budget_s=budget
            ) as summary:
                while not out_of_time():
                    async with self.ctx.database.session_scope() as session:
                        candidates = await ItemRepository(session).list_missing_people(
                            self.ctx.server.id,
                            LIBRARY_TYPES_WITH_PEOPLE,
                            settings.people_db_batch_limit,
                        )
                    tracker.increment("database_operations")
                    if not candidates:
                        break

                    processed_before = stats.processed
                    for chunk in chunked(candidates, settings.people_ids_per_fetch):
                        if out_of_time():
                            break
                        page += 1
                        chunk_start = time.monotonic()
                        try:
                            tracker.increment("api_requests")
                            await self._sync_chunk(chunk, stats)
                        except Exception as e:
                            stats.errors += 1
                            tracker.record_error(
                                f"People chunk {chunk[0]}..{chunk[-1]}: {format_error(e)}"
                            )
                            continue
                        tracker.increment("database_operations")
                        logger.info(
                            format_sync_log_line(
                                "people-sync",
                                {
                                    "server": self.ctx.server.name,
                                    "page": page,
                                    "processed": len(chunk),
                                    "inserted": stats.links_written,
                                    "updated": stats.people_upserted,
                                    "errors": stats.errors,
                                    "processMs": int((time.monotonic() - chunk_start) * 1000),
                                    "totalProcessed": stats.processed,
                                },
                            )
                        )

                    # only failing items left, they'd be selected again forever
                    if stats.processed == processed_before:
                        break

                stats.remaining = await self._count_remaining()
                summary.update(
                    processed=stats.processed,
                    remaining=stats.remaining,
                    errors=stats.errors,
                )
        except Exception as e:
            return tracker.failure(stats, f"People sync failed: {format_error(e)}")
        return tracker.result(stats)
