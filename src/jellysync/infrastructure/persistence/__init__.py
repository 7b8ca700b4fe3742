"""Infrastructure persistence layer."""

from .batch_utils import chunked
from .database import Database
from .models import (
    ActivityModel,
    Base,
    HiddenRecommendationModel,
    ItemModel,
    ItemPersonModel,
    LibraryModel,
    PersonModel,
    ServerModel,
    SessionModel,
    UserModel,
)
from .repositories import (
    ActivityRepository,
    HiddenRecommendationRepository,
    ItemIdentityRow,
    ItemRepository,
    ItemSyncState,
    LibraryRepository,
    PeopleRepository,
    ServerRepository,
    SessionRepository,
    UserRepository,
)
from .retry import DatabaseLockMetrics, execute_with_retry, is_lock_error, with_db_retry

__all__ = [
    "ActivityModel",
    "ActivityRepository",
    "Base",
    "Database",
    "DatabaseLockMetrics",
    "HiddenRecommendationModel",
    "HiddenRecommendationRepository",
    "ItemIdentityRow",
    "ItemModel",
    "ItemPersonModel",
    "ItemRepository",
    "ItemSyncState",
    "LibraryModel",
    "LibraryRepository",
    "PeopleRepository",
    "PersonModel",
    "ServerModel",
    "ServerRepository",
    "SessionModel",
    "SessionRepository",
    "UserModel",
    "UserRepository",
    "chunked",
    "execute_with_retry",
    "is_lock_error",
    "with_db_retry",
]
