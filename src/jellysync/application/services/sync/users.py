"""User sync."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from jellysync.domain.dtos import JellyfinUser
from jellysync.domain.entities import SyncResult
from jellysync.infrastructure.observability import (
    format_error,
    format_sync_log_line,
    log_operation,
)
from jellysync.infrastructure.persistence import UserRepository, execute_with_retry

from .context import SyncContext
from .metrics import SyncMetricsTracker
from .paging import ElementResult, process_in_chunks

logger = logging.getLogger(__name__)


@dataclass
class UserSyncStats:
    users_processed: int = 0
    users_inserted: int = 0
    users_updated: int = 0


class UserSyncService:
    """Mirrors the server's /Users list into the users table."""

    def __init__(self, context: SyncContext) -> None:
        self.ctx = context

    async def _write_user(self, user: JellyfinUser) -> bool:
        async with self.ctx.database.session_scope() as session:
            return await UserRepository(session).upsert(user, self.ctx.server.id)

    async def process_user(self, user: JellyfinUser) -> bool:
        return await execute_with_retry(
            lambda: self._write_user(user), operation_name="users.write"
        )

    async def sync_users(self) -> SyncResult[UserSyncStats]:
        settings = self.ctx.settings
        tracker = SyncMetricsTracker(settings.max_reported_errors)
        stats = UserSyncStats()

        def on_chunk(number: int, results: list[ElementResult[bool]], process_ms: int) -> None:
            inserted = updated = errors = 0
            for result in results:
                tracker.increment("users_processed")
                stats.users_processed += 1
                if not result.ok:
                    errors += 1
                    tracker.record_error(f"User {result.key}: {result.error}")
                    continue
                tracker.increment("database_operations")
                if result.value:
                    inserted += 1
                    tracker.increment("users_inserted")
                else:
                    updated += 1
                    tracker.increment("users_updated")
            stats.users_inserted += inserted
            stats.users_updated += updated
            logger.info(
                format_sync_log_line(
                    "users-sync",
                    {
                        "server": self.ctx.server.name,
                        "page": number,
                        "processed": len(results),
                        "inserted": inserted,
                        "updated": updated,
                        "errors": errors,
                        "processMs": process_ms,
                        "totalProcessed": stats.users_processed,
                    },
                )
            )

        try:
            async with log_operation(
                logger, "users_sync", server=self.ctx.server.name
            ) as summary:
                tracker.increment("api_requests")
                users = await self.ctx.client.get_users()
                await process_in_chunks(
                    users,
                    self.process_user,
                    settings.user_batch_size,
                    settings.user_concurrency,
                    key=lambda user: user.id,
                    on_chunk=on_chunk,
                )
                summary.update(
                    fetched=len(users),
                    inserted=stats.users_inserted,
                    updated=stats.users_updated,
                    errors=tracker.error_count,
                )
        except Exception as e:
            return tracker.failure(stats, f"Users sync failed: {format_error(e)}")
        return tracker.result(stats)
