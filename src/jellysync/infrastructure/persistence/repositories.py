"""Repository implementations for data persistence."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import delete, exists, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from jellysync.domain.dtos import JellyfinActivity, JellyfinLibrary, JellyfinUser, PersonDTO
from jellysync.domain.entities import MediaServer, ServerSyncState
from jellysync.domain.exceptions import ConfigurationError

from .models import (
    ActivityModel,
    HiddenRecommendationModel,
    ItemModel,
    ItemPersonModel,
    LibraryModel,
    PersonModel,
    ServerModel,
    SessionModel,
    UserModel,
    utc_now,
)

logger = logging.getLogger(__name__)


# Hey future me, "INSERT ... ON CONFLICT DO UPDATE" is dialect specific in SQLAlchemy -
# sqlite.insert and postgresql.insert both have on_conflict_do_update() with the same
# signature, the generic sa.insert has neither. We pick the right one from the session's
# bound engine so the same repository code runs on the test SQLite file and on Postgres.
def _dialect_insert(session: AsyncSession) -> Callable[..., Any]:
    dialect = session.bind.dialect.name if session.bind is not None else ""
    if dialect == "sqlite":
        return sqlite.insert
    if dialect == "postgresql":
        return postgresql.insert
    raise ConfigurationError(f"Unsupported database dialect for upserts: {dialect!r}")


async def _upsert(
    session: AsyncSession,
    model: type[Any],
    values: dict[str, Any],
    index_elements: Sequence[str],
    update_columns: Sequence[str],
) -> None:
    insert = _dialect_insert(session)
    stmt = insert(model).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=list(index_elements),
        set_={column: stmt.excluded[column] for column in update_columns},
    )
    await session.execute(stmt)


# =============================================================================
# SERVERS
# =============================================================================


class ServerRepository:
    """Repository for configured Jellyfin servers."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @staticmethod
    def _to_entity(model: ServerModel) -> MediaServer:
        return MediaServer(
            id=model.id,
            name=model.name,
            url=model.url,
            api_key=model.api_key,
            sync_status=ServerSyncState(model.sync_status),
            last_sync_started=model.last_sync_started,
            last_sync_completed=model.last_sync_completed,
        )

    async def add(self, name: str, url: str, api_key: str) -> MediaServer:
        """Register a new server."""
        model = ServerModel(name=name, url=url, api_key=api_key)
        self.session.add(model)
        await self.session.flush()
        return self._to_entity(model)

    async def get_by_id(self, server_id: int) -> MediaServer | None:
        model = await self.session.get(ServerModel, server_id)
        return self._to_entity(model) if model else None

    async def list_all(self) -> list[MediaServer]:
        result = await self.session.execute(select(ServerModel).order_by(ServerModel.id))
        return [self._to_entity(m) for m in result.scalars().all()]

    # Yo, started/completed timestamps are set based on the NEW state: SYNCING stamps
    # last_sync_started, COMPLETED stamps last_sync_completed. Error text is cleared on
    # every transition that doesn't pass one.
    async def update_sync_status(
        self,
        server_id: int,
        status: ServerSyncState,
        sync_type: str | None = None,
        error: str | None = None,
    ) -> None:
        values: dict[str, Any] = {
            "sync_status": status.value,
            "sync_type": sync_type,
            "sync_error": error,
            "updated_at": utc_now(),
        }
        if status == ServerSyncState.SYNCING:
            values["last_sync_started"] = utc_now()
        elif status == ServerSyncState.COMPLETED:
            values["last_sync_completed"] = utc_now()
        await self.session.execute(
            update(ServerModel).where(ServerModel.id == server_id).values(**values)
        )


# =============================================================================
# LIBRARIES / USERS
# =============================================================================


class LibraryRepository:
    """Repository for libraries."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert(self, library: JellyfinLibrary, server_id: int) -> bool:
        """Insert or update a library.

        Returns:
            True if the library was inserted, False if it already existed
        """
        existed = await self.session.get(LibraryModel, library.id) is not None
        await _upsert(
            self.session,
            LibraryModel,
            {
                "id": library.id,
                "name": library.name,
                "type": library.type,
                "server_id": server_id,
                "updated_at": utc_now(),
            },
            index_elements=["id"],
            update_columns=["name", "type", "server_id", "updated_at"],
        )
        return not existed

    async def list_for_server(self, server_id: int) -> list[LibraryModel]:
        result = await self.session.execute(
            select(LibraryModel)
            .where(LibraryModel.server_id == server_id)
            .order_by(LibraryModel.name)
        )
        return list(result.scalars().all())

    async def get_server_id(self, library_id: str) -> int | None:
        result = await self.session.execute(
            select(LibraryModel.server_id).where(LibraryModel.id == library_id)
        )
        return result.scalar_one_or_none()


class UserRepository:
    """Repository for users."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert(self, user: JellyfinUser, server_id: int) -> bool:
        """Insert or update a user.

        Returns:
            True if the user was inserted, False if it already existed
        """
        existed = await self.session.get(UserModel, user.id) is not None
        values = {
            "id": user.id,
            "name": user.name,
            "server_id": server_id,
            "has_password": user.has_password,
            "is_administrator": user.is_administrator,
            "is_disabled": user.is_disabled,
            "is_hidden": user.is_hidden,
            "primary_image_tag": user.primary_image_tag,
            "last_login_date": user.last_login_date,
            "last_activity_date": user.last_activity_date,
            "updated_at": utc_now(),
        }
        await _upsert(
            self.session,
            UserModel,
            values,
            index_elements=["id"],
            update_columns=[k for k in values if k != "id"],
        )
        return not existed

    async def exists(self, user_id: str, server_id: int) -> bool:
        result = await self.session.execute(
            select(
                exists().where(UserModel.id == user_id, UserModel.server_id == server_id)
            )
        )
        return bool(result.scalar())


# =============================================================================
# ACTIVITIES
# =============================================================================


class ActivityRepository:
    """Repository for activity log entries."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert(
        self, activity: JellyfinActivity, server_id: int, user_id: str | None
    ) -> bool:
        """Insert or update an activity.

        Args:
            activity: Activity from Jellyfin
            server_id: Owning server
            user_id: Validated local user id (None for system/unknown users)

        Returns:
            True if the activity was inserted, False if it already existed
        """
        existed = await self.session.get(ActivityModel, activity.id) is not None
        values = {
            "id": activity.id,
            "name": activity.name,
            "short_overview": activity.short_overview,
            "type": activity.type,
            "date": activity.date,
            "severity": activity.severity,
            "server_id": server_id,
            "user_id": user_id,
            "item_id": activity.item_id,
        }
        await _upsert(
            self.session,
            ActivityModel,
            values,
            index_elements=["id"],
            update_columns=[k for k in values if k != "id"],
        )
        return not existed

    async def get_latest_id(self, server_id: int) -> str | None:
        """Id of the newest stored activity of a server (the sync watermark)."""
        result = await self.session.execute(
            select(ActivityModel.id)
            .where(ActivityModel.server_id == server_id)
            .order_by(ActivityModel.date.desc(), ActivityModel.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()


# =============================================================================
# ITEMS
# =============================================================================


@dataclass(frozen=True)
class ItemSyncState:
    """The few columns item sync needs to classify an incoming item."""

    id: str
    etag: str | None
    deleted_at: datetime | None
    provider_ids: dict[str, str] | None


@dataclass(frozen=True)
class ItemIdentityRow:
    """Identity projection of a local item (for matching)."""

    id: str
    type: str
    name: str | None
    provider_ids: dict[str, str] | None
    series_name: str | None
    production_year: int | None
    index_number: int | None
    parent_index_number: int | None


_IDENTITY_COLUMNS = (
    ItemModel.id,
    ItemModel.type,
    ItemModel.name,
    ItemModel.provider_ids,
    ItemModel.series_name,
    ItemModel.production_year,
    ItemModel.index_number,
    ItemModel.parent_index_number,
)


# Listen up, the item repository is where soft vs hard delete is decided:
# - soft_delete() only stamps deleted_at on ACTIVE rows (a second cleanup run is a no-op)
# - hard_delete() really removes the row and must only be called AFTER references were
#   rewritten (see ItemMigrator) - FK cascades would otherwise eat hidden recommendations.
class ItemRepository:
    """Repository for items."""

    # Columns never overwritten by an upsert
    _IMMUTABLE_COLUMNS = frozenset({"id", "created_at"})

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_sync_state(self, item_id: str) -> ItemSyncState | None:
        result = await self.session.execute(
            select(
                ItemModel.id,
                ItemModel.etag,
                ItemModel.deleted_at,
                ItemModel.provider_ids,
            ).where(ItemModel.id == item_id)
        )
        row = result.one_or_none()
        if row is None:
            return None
        return ItemSyncState(
            id=row.id,
            etag=row.etag,
            deleted_at=row.deleted_at,
            provider_ids=row.provider_ids,
        )

    async def get_many(self, item_ids: Sequence[str]) -> dict[str, ItemModel]:
        """Load full rows by id, keyed by id."""
        if not item_ids:
            return {}
        result = await self.session.execute(
            select(ItemModel).where(ItemModel.id.in_(list(item_ids)))
        )
        return {model.id: model for model in result.scalars().all()}

    async def upsert(self, values: dict[str, Any]) -> None:
        """Insert an item or replace every mapped column; always clears deleted_at."""
        row = {**values, "deleted_at": None, "updated_at": utc_now()}
        await _upsert(
            self.session,
            ItemModel,
            row,
            index_elements=["id"],
            update_columns=[k for k in row if k not in self._IMMUTABLE_COLUMNS],
        )

    async def count_active(self, server_id: int) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(ItemModel)
            .where(ItemModel.server_id == server_id, ItemModel.deleted_at.is_(None))
        )
        return int(result.scalar() or 0)

    async def exists(self, item_id: str, active_only: bool = False) -> bool:
        """True if the row exists; soft-deleted rows count unless active_only."""
        conditions = [ItemModel.id == item_id]
        if active_only:
            conditions.append(ItemModel.deleted_at.is_(None))
        result = await self.session.execute(select(exists().where(*conditions)))
        return bool(result.scalar())

    async def list_active_identities(
        self, server_id: int, library_id: str
    ) -> list[ItemIdentityRow]:
        """Identity rows of all active items of one library."""
        result = await self.session.execute(
            select(*_IDENTITY_COLUMNS).where(
                ItemModel.server_id == server_id,
                ItemModel.library_id == library_id,
                ItemModel.deleted_at.is_(None),
            )
        )
        return [ItemIdentityRow(**row._asdict()) for row in result.all()]

    async def list_deleted_identities(self, server_id: int) -> list[ItemIdentityRow]:
        """Identity rows of soft-deleted items, most recently deleted first."""
        result = await self.session.execute(
            select(*_IDENTITY_COLUMNS)
            .where(ItemModel.server_id == server_id, ItemModel.deleted_at.is_not(None))
            .order_by(ItemModel.deleted_at.desc(), ItemModel.id)
        )
        return [ItemIdentityRow(**row._asdict()) for row in result.all()]

    async def soft_delete(self, item_ids: Sequence[str]) -> int:
        """Stamp deleted_at on the given ACTIVE items."""
        if not item_ids:
            return 0
        now = utc_now()
        result = await self.session.execute(
            update(ItemModel)
            .where(ItemModel.id.in_(list(item_ids)), ItemModel.deleted_at.is_(None))
            .values(deleted_at=now, updated_at=now)
        )
        return result.rowcount or 0

    async def hard_delete(self, item_id: str) -> int:
        result = await self.session.execute(
            delete(ItemModel).where(ItemModel.id == item_id)
        )
        return result.rowcount or 0

    def _missing_people_filter(self, server_id: int, library_types: Sequence[str]) -> Any:
        return (
            ItemModel.server_id == server_id,
            ItemModel.deleted_at.is_(None),
            ItemModel.people_synced_at.is_(None),
            LibraryModel.type.in_(list(library_types)),
        )

    async def list_missing_people(
        self, server_id: int, library_types: Sequence[str], limit: int
    ) -> list[str]:
        """Ids of active items whose people were never synced."""
        result = await self.session.execute(
            select(ItemModel.id)
            .join(LibraryModel, ItemModel.library_id == LibraryModel.id)
            .where(*self._missing_people_filter(server_id, library_types))
            .order_by(ItemModel.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_missing_people(
        self, server_id: int, library_types: Sequence[str]
    ) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(ItemModel)
            .join(LibraryModel, ItemModel.library_id == LibraryModel.id)
            .where(*self._missing_people_filter(server_id, library_types))
        )
        return int(result.scalar() or 0)

    async def mark_people_synced(self, item_ids: Sequence[str]) -> None:
        """Stamp people_synced_at and flag items for downstream reprocessing."""
        if not item_ids:
            return
        now = utc_now()
        await self.session.execute(
            update(ItemModel)
            .where(ItemModel.id.in_(list(item_ids)))
            .values(people_synced_at=now, processed=False, updated_at=now)
        )


# =============================================================================
# REFERENCING RECORDS
# =============================================================================


class SessionRepository:
    """Repository for playback sessions (only the parts sync needs)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def reassign_item(self, old_item_id: str, new_item_id: str) -> int:
        """Point every session of old_item_id at new_item_id."""
        result = await self.session.execute(
            update(SessionModel)
            .where(SessionModel.item_id == old_item_id)
            .values(item_id=new_item_id)
        )
        return result.rowcount or 0


class HiddenRecommendationRepository:
    """Repository for hidden recommendations (only the parts sync needs)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def reassign_item(self, old_item_id: str, new_item_id: str) -> int:
        result = await self.session.execute(
            update(HiddenRecommendationModel)
            .where(HiddenRecommendationModel.item_id == old_item_id)
            .values(item_id=new_item_id)
        )
        return result.rowcount or 0

    async def delete_for_items(self, item_ids: Sequence[str]) -> int:
        if not item_ids:
            return 0
        result = await self.session.execute(
            delete(HiddenRecommendationModel).where(
                HiddenRecommendationModel.item_id.in_(list(item_ids))
            )
        )
        return result.rowcount or 0


# =============================================================================
# PEOPLE
# =============================================================================


class PeopleRepository:
    """Repository for people and item credits."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert_person(self, person: PersonDTO, server_id: int) -> None:
        await _upsert(
            self.session,
            PersonModel,
            {
                "id": person.id,
                "server_id": server_id,
                "name": person.name,
                "primary_image_tag": person.primary_image_tag,
                "updated_at": utc_now(),
            },
            index_elements=["id", "server_id"],
            update_columns=["name", "primary_image_tag", "updated_at"],
        )

    # Hey future me, item credits are REPLACED, not merged: a resync of an item drops its old
    # links first. Duplicate (person, type) pairs inside one payload are skipped so the unique
    # constraint never fires.
    async def replace_item_people(
        self, item_id: str, server_id: int, people: Sequence[PersonDTO]
    ) -> int:
        """Replace all credits of an item.

        Returns:
            Number of links written
        """
        await self.session.execute(
            delete(ItemPersonModel).where(ItemPersonModel.item_id == item_id)
        )
        seen: set[tuple[str, str]] = set()
        links: list[ItemPersonModel] = []
        for sort_order, person in enumerate(people):
            key = (person.id, person.type)
            if key in seen:
                continue
            seen.add(key)
            links.append(
                ItemPersonModel(
                    item_id=item_id,
                    person_id=person.id,
                    server_id=server_id,
                    type=person.type,
                    role=person.role,
                    sort_order=sort_order,
                )
            )
        self.session.add_all(links)
        await self.session.flush()
        return len(links)
