"""Activity log sync: full walk and watermark-based incremental walk."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from jellysync.domain.dtos import JellyfinActivity
from jellysync.domain.entities import SYSTEM_USER_ID, SyncResult
from jellysync.infrastructure.observability import (
    format_error,
    format_sync_log_line,
    log_operation,
)
from jellysync.infrastructure.persistence import (
    ActivityRepository,
    UserRepository,
    execute_with_retry,
)

from .context import SyncContext
from .metrics import SyncMetricsTracker
from .paging import Page, PagedFetcher, PageReport

logger = logging.getLogger(__name__)

WATERMARK_FOUND = "watermark_found"
INTELLIGENT_LIMIT_REACHED = "intelligent_limit_reached"


@dataclass
class ActivitySyncStats:
    """Result data of an activity sync."""

    activities_processed: int = 0
    activities_inserted: int = 0
    activities_updated: int = 0
    pages: int = 0
    stop_reason: str = ""
    watermark_found: bool = False


class ActivitySyncService:
    """Syncs /System/ActivityLog/Entries of one server."""

    def __init__(self, context: SyncContext) -> None:
        self.ctx = context

    # Yo, activities reference users by id but Jellyfin logs server-side events with the
    # all-zero SYSTEM_USER_ID, and users can be deleted. The FK would reject both, so the
    # user id is NULLed when it's missing, the sentinel or not in our users table.
    async def _write_activity(self, activity: JellyfinActivity) -> bool:
        async with self.ctx.database.session_scope() as session:
            user_id = activity.user_id
            if (
                not user_id
                or user_id == SYSTEM_USER_ID
                or not await UserRepository(session).exists(user_id, self.ctx.server.id)
            ):
                user_id = None
            return await ActivityRepository(session).upsert(
                activity, self.ctx.server.id, user_id
            )

    async def process_activity(self, activity: JellyfinActivity) -> bool:
        """Upsert one activity. Returns True when it was inserted."""
        return await execute_with_retry(
            lambda: self._write_activity(activity), operation_name="activities.write"
        )

    async def _walk(
        self,
        prefix: str,
        page_size: int,
        max_pages: int,
        tracker: SyncMetricsTracker,
        stats: ActivitySyncStats,
        watermark: str | None = None,
        scan_limit: int | None = None,
    ) -> None:
        client = self.ctx.client

        async def fetch(offset: int, limit: int) -> Page[JellyfinActivity]:
            tracker.increment("api_requests")
            page = await client.get_activities(offset, limit)
            return Page(page.activities, raw_count=page.raw_count, rejected=page.rejected)

        # Listen up, the watermark is the newest activity we already stored. The log is newest
        # first, so once it shows up at index k everything from k on is known: process [0, k)
        # and stop.
        def trim(
            activities: list[JellyfinActivity],
        ) -> tuple[list[JellyfinActivity], str | None]:
            if watermark is None:
                return activities, None
            for index, activity in enumerate(activities):
                if activity.id == watermark:
                    stats.watermark_found = True
                    return activities[:index], WATERMARK_FOUND
            return activities, None

        async def on_page(report: PageReport[JellyfinActivity, bool]) -> str | None:
            inserted = updated = errors = 0
            for result in report.results:
                tracker.increment("activities_processed")
                stats.activities_processed += 1
                if not result.ok:
                    errors += 1
                    tracker.record_error(f"Activity {result.key}: {result.error}")
                    continue
                tracker.increment("database_operations")
                if result.value:
                    inserted += 1
                    tracker.increment("activities_inserted")
                else:
                    updated += 1
                    tracker.increment("activities_updated")
            for rejected in report.rejected:
                errors += 1
                tracker.record_error(f"Activity {rejected}")
            stats.activities_inserted += inserted
            stats.activities_updated += updated
            logger.info(
                format_sync_log_line(
                    prefix,
                    {
                        "server": self.ctx.server.name,
                        "page": report.number,
                        "processed": len(report.processed),
                        "inserted": inserted,
                        "updated": updated,
                        "errors": errors,
                        "processMs": report.process_ms,
                        "totalProcessed": stats.activities_processed,
                        "startIndex": report.offset,
                        "fetched": report.fetched,
                        "fetchMs": report.fetch_ms,
                    },
                )
            )
            if (
                scan_limit is not None
                and not stats.watermark_found
                and stats.activities_processed >= scan_limit
            ):
                logger.info(
                    "activities.watermark_not_found",
                    extra={
                        "server": self.ctx.server.name,
                        "watermark": watermark,
                        "scanned": stats.activities_processed,
                    },
                )
                return INTELLIGENT_LIMIT_REACHED
            return None

        fetcher: PagedFetcher[JellyfinActivity, bool] = PagedFetcher(
            fetch,
            self.process_activity,
            page_size=page_size,
            concurrency=self.ctx.settings.activity_concurrency,
            delay_seconds=self.ctx.settings.api_request_delay,
            max_pages=max_pages,
            key=lambda activity: activity.id,
            trim=trim,
            on_page=on_page,
            name="activities",
        )
        outcome = await fetcher.run()
        stats.pages = outcome.pages
        stats.stop_reason = outcome.stop_reason
        if outcome.fetch_error:
            tracker.record_error(f"Page {outcome.pages + 1}: {outcome.fetch_error}")

    async def sync_activities(
        self, page_size: int | None = None, max_pages: int | None = None
    ) -> SyncResult[ActivitySyncStats]:
        """Walk the whole activity log."""
        settings = self.ctx.settings
        page_size = page_size or settings.activity_page_size
        max_pages = max_pages or settings.activity_max_pages
        tracker = SyncMetricsTracker(settings.max_reported_errors)
        stats = ActivitySyncStats()
        try:
            async with log_operation(
                logger, "activities_sync", server=self.ctx.server.name, page_size=page_size
            ) as summary:
                await self._walk("activities-sync", page_size, max_pages, tracker, stats)
                summary.update(
                    activities_processed=stats.activities_processed,
                    pages=stats.pages,
                    stop_reason=stats.stop_reason,
                )
        except Exception as e:
            return tracker.failure(stats, f"Activities sync failed: {format_error(e)}")
        return tracker.result(stats)

    async def sync_recent_activities(
        self,
        page_size: int | None = None,
        max_pages: int | None = None,
        intelligent: bool = False,
    ) -> SyncResult[ActivitySyncStats]:
        """Fetch the newest activities.

        Args:
            page_size: Entries per page
            max_pages: Page cap
            intelligent: Stop at the newest stored activity instead of walking max_pages;
                scanning also stops after page_size * intelligent_scan_multiplier entries
                if that activity never shows up

        Returns:
            SyncResult with ActivitySyncStats
        """
        settings = self.ctx.settings
        page_size = page_size or settings.recent_activity_page_size
        if max_pages is None:
            # intelligent mode is bounded by the scan limit, give it the pages to reach it
            max_pages = (
                settings.intelligent_scan_multiplier
                if intelligent
                else settings.recent_activity_max_pages
            )
        tracker = SyncMetricsTracker(settings.max_reported_errors)
        stats = ActivitySyncStats()
        try:
            async with log_operation(
                logger,
                "recent_activities_sync",
                server=self.ctx.server.name,
                intelligent=intelligent,
            ) as summary:
                watermark: str | None = None
                scan_limit: int | None = None
                if intelligent:
                    async with self.ctx.database.session_scope() as session:
                        watermark = await ActivityRepository(session).get_latest_id(
                            self.ctx.server.id
                        )
                    tracker.increment("database_operations")
                    if watermark is not None:
                        scan_limit = page_size * settings.intelligent_scan_multiplier
                await self._walk(
                    "recent-activities-sync",
                    page_size,
                    max_pages,
                    tracker,
                    stats,
                    watermark=watermark,
                    scan_limit=scan_limit,
                )
                summary.update(
                    activities_processed=stats.activities_processed,
                    stop_reason=stats.stop_reason,
                    watermark_found=stats.watermark_found,
                )
        except Exception as e:
            return tracker.failure(
                stats, f"Recent activities sync failed: {format_error(e)}"
            )
        return tracker.result(stats)
