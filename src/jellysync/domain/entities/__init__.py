"""Domain entities."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from jellysync.domain.entities.sync_result import SyncMetrics, SyncResult, SyncStatus

# Jellyfin writes this user id on activity log entries that were produced by the server
# itself (scheduled tasks, plugin updates, ...). It never exists in /Users.
SYSTEM_USER_ID = "00000000000000000000000000000000"


class SyncType(str, Enum):
    """What a single dispatched sync job should do."""

    FULL = "full"
    USERS = "users"
    LIBRARIES = "libraries"
    ITEMS = "items"
    ACTIVITIES = "activities"
    RECENT_ITEMS = "recent_items"
    RECENT_ACTIVITIES = "recent_activities"
    DELETED_ITEMS_CLEANUP = "deleted_items_cleanup"
    PEOPLE = "people"


class ServerSyncState(str, Enum):
    """Value of servers.sync_status."""

    PENDING = "pending"
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"


# Hey future me, MatchOutcome is the three-way answer for "what happened to this item?".
# EXISTS = same id still there, MIGRATED = same content under a NEW id (provider/structural
# match), DELETED = gone for real. It's computed per candidate and never stored.
class MatchOutcome(str, Enum):
    """Identity classification of one item."""

    EXISTS = "exists"
    MIGRATED = "migrated"
    DELETED = "deleted"


class MatchType(str, Enum):
    """Which identity strategy produced a match. Declaration order is priority order."""

    PROVIDER_ID = "provider_id"
    EPISODE = "episode"
    EPISODE_NO_YEAR = "episode_no_year"
    SEASON = "season"
    SEASON_NO_YEAR = "season_no_year"
    SERIES = "series"


@dataclass(frozen=True)
class IdentityMatch:
    """A candidate matched another record under a different id."""

    item_id: str  # id of the record we matched against
    match_type: MatchType
    reason: str  # e.g. "provider_id:imdb:tt001" or "episode:show:2020:S1E2"


@dataclass
class MediaServer:
    """A configured Jellyfin server."""

    id: int
    name: str
    url: str
    api_key: str
    sync_status: ServerSyncState = ServerSyncState.PENDING
    last_sync_started: datetime | None = None
    last_sync_completed: datetime | None = None


__all__ = [
    "SYSTEM_USER_ID",
    "IdentityMatch",
    "MatchOutcome",
    "MatchType",
    "MediaServer",
    "ServerSyncState",
    "SyncMetrics",
    "SyncResult",
    "SyncStatus",
    "SyncType",
]
