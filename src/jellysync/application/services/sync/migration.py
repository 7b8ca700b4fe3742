"""Move references from an old item id to its re-identified replacement."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from jellysync.infrastructure.persistence import (
    Database,
    HiddenRecommendationRepository,
    ItemRepository,
    SessionRepository,
    with_db_retry,
)

logger = logging.getLogger(__name__)


@dataclass
class MigrationCounts:
    """What one migration touched."""

    sessions: int = 0
    hidden_recommendations: int = 0
    deleted: bool = False


# Hey future me, the ORDER here is the whole point:
#   1. rewrite sessions + hidden recommendations old → new, COMMIT
#   2. hard-delete the old item row, in a SEPARATE transaction
# hidden_recommendations.item_id is ON DELETE CASCADE and sessions.item_id is SET NULL, so
# deleting first would silently destroy history. If step 2 fails we are left with a
# harmless orphan row (already soft-deleted) and NEVER with a dangling reference.
# The new item row MUST exist before calling migrate() - the FKs point at it.
class ItemMigrator:
    """Rewrites references and removes the superseded item row."""

    def __init__(self, database: Database) -> None:
        self.database = database

    @with_db_retry(max_attempts=3)
    async def _rewrite_references(self, old_id: str, new_id: str) -> MigrationCounts:
        async with self.database.session_scope() as session:
            sessions = await SessionRepository(session).reassign_item(old_id, new_id)
            hidden = await HiddenRecommendationRepository(session).reassign_item(
                old_id, new_id
            )
        return MigrationCounts(sessions=sessions, hidden_recommendations=hidden)

    @with_db_retry(max_attempts=3)
    async def _delete_old(self, old_id: str) -> bool:
        async with self.database.session_scope() as session:
            return await ItemRepository(session).hard_delete(old_id) > 0

    async def migrate(self, old_id: str, new_id: str, reason: str = "") -> MigrationCounts:
        """Point every reference of old_id at new_id, then remove old_id.

        Args:
            old_id: Superseded item id
            new_id: Replacement item id (row must already exist)
            reason: Match reason, only used for logging

        Returns:
            Number of rewritten sessions / hidden recommendations
        """
        counts = await self._rewrite_references(old_id, new_id)
        counts.deleted = await self._delete_old(old_id)
        logger.info(
            "items.migrated",
            extra={
                "old_item_id": old_id,
                "new_item_id": new_id,
                "reason": reason,
                "sessions_migrated": counts.sessions,
                "hidden_recommendations_migrated": counts.hidden_recommendations,
            },
        )
        return counts
