"""Sync pipeline: users → libraries → items → activities, plus cleanup and people backfill."""

from jellysync.application.services.sync.activities import (
    ActivitySyncService,
    ActivitySyncStats,
)
from jellysync.application.services.sync.context import SyncContext
from jellysync.application.services.sync.coordinator import (
    FullSyncData,
    SyncCoordinator,
    SyncDispatcher,
    SyncGuard,
)
from jellysync.application.services.sync.deleted_items import (
    CleanupStats,
    DeletedItemReconciler,
)
from jellysync.application.services.sync.identity import (
    STRATEGIES,
    MatchIndex,
    classify_against_snapshot,
)
from jellysync.application.services.sync.item_mapper import (
    IMAGE_FIELDS,
    TRACKED_FIELDS,
    ItemRow,
    map_jellyfin_item,
)
from jellysync.application.services.sync.items import ItemSyncService, ItemSyncStats
from jellysync.application.services.sync.libraries import (
    LibrarySyncService,
    LibrarySyncStats,
)
from jellysync.application.services.sync.metrics import SyncMetricsTracker
from jellysync.application.services.sync.migration import ItemMigrator, MigrationCounts
from jellysync.application.services.sync.paging import (
    ElementResult,
    Page,
    PagedFetcher,
    PagingOutcome,
    run_bounded,
)
from jellysync.application.services.sync.people import PeopleSyncService, PeopleSyncStats
from jellysync.application.services.sync.users import UserSyncService, UserSyncStats

__all__ = [
    "IMAGE_FIELDS",
    "STRATEGIES",
    "TRACKED_FIELDS",
    "ActivitySyncService",
    "ActivitySyncStats",
    "CleanupStats",
    "DeletedItemReconciler",
    "ElementResult",
    "FullSyncData",
    "ItemMigrator",
    "ItemRow",
    "ItemSyncService",
    "ItemSyncStats",
    "LibrarySyncService",
    "LibrarySyncStats",
    "MatchIndex",
    "MigrationCounts",
    "Page",
    "PagedFetcher",
    "PagingOutcome",
    "PeopleSyncService",
    "PeopleSyncStats",
    "SyncContext",
    "SyncCoordinator",
    "SyncDispatcher",
    "SyncGuard",
    "SyncMetricsTracker",
    "UserSyncService",
    "UserSyncStats",
    "classify_against_snapshot",
    "map_jellyfin_item",
    "run_bounded",
]
