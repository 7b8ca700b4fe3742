"""SQLAlchemy ORM models for jellysync."""

from datetime import UTC, datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy import (
    JSON,
    Boolean,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# Hey future me, utc_now() ensures ALL timestamps are UTC! Never use datetime.now() without
# timezone - that's "naive" datetime and causes bugs when servers are in different timezones.
def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


# Hey future me - SQLite doesn't preserve timezone info! Datetimes come back "naive" even
# though we store UTC. Use this before comparing DB datetimes with aware ones, otherwise
# you get "can't compare offset-naive and offset-aware datetimes".
def ensure_utc_aware(dt: datetime) -> datetime:
    """Ensure datetime is UTC-aware, assuming naive datetimes are UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


class Base(DeclarativeBase):
    """Base class for all ORM models.

    All models inherit from this to share one metadata registry.
    """

    pass


# Yo, one row per configured Jellyfin server. The sync_* columns are written by the
# dispatcher around every job so the UI can show "syncing since 10:03" or the last error.
class ServerModel(Base):
    """A Jellyfin server we sync from."""

    __tablename__ = "servers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(String(512), nullable=False)
    api_key: Mapped[str] = mapped_column(String(255), nullable=False)
    sync_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending"
    )
    sync_type: Mapped[str | None] = mapped_column(String(40), nullable=True)
    sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_sync_started: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    last_sync_completed: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )


class LibraryModel(Base):
    """A Jellyfin library (top-level media folder)."""

    __tablename__ = "libraries"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # CollectionType from Jellyfin: movies, tvshows, music, boxsets, ... or "Unknown"
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    server_id: Mapped[int] = mapped_column(
        ForeignKey("servers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )


class UserModel(Base):
    """A Jellyfin user."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    server_id: Mapped[int] = mapped_column(
        ForeignKey("servers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    has_password: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_administrator: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    is_disabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_hidden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    primary_image_tag: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_login_date: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    last_activity_date: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )


# Hey future me, user_id is SET NULL on user delete AND gets nulled at ingest time when the
# activity was written by the Jellyfin system user or a user we don't know. item_id has no FK
# on purpose - activities mention items that may never be synced (deleted long ago).
class ActivityModel(Base):
    """An entry of the Jellyfin activity log."""

    __tablename__ = "activities"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    short_overview: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(100), nullable=False)
    date: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    severity: Mapped[str | None] = mapped_column(String(40), nullable=True)
    server_id: Mapped[int] = mapped_column(
        ForeignKey("servers.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    item_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (Index("ix_activities_server_date", "server_id", "date"),)


# Listen up, ItemModel is THE table of this whole project. A few rules that are easy to break:
# - id is Jellyfin's id and it is NOT stable! Delete + re-add in Jellyfin gives a new id.
# - deleted_at != NULL means soft-deleted. Those rows are kept as migration candidates so
#   sessions/hidden recommendations can be moved to the item's new id later.
# - raw_data keeps the whole BaseItemDto for fields we don't map into columns.
# - Collections (provider_ids, tags, genres, image dicts) are JSON so SQLite and Postgres both work.
class ItemModel(Base):
    """A Jellyfin item (movie, series, season, episode, track, ...)."""

    __tablename__ = "items"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    server_id: Mapped[int] = mapped_column(
        ForeignKey("servers.id", ondelete="CASCADE"), nullable=False
    )
    library_id: Mapped[str] = mapped_column(
        ForeignKey("libraries.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    original_title: Mapped[str | None] = mapped_column(Text, nullable=True)
    etag: Mapped[str | None] = mapped_column(String(64), nullable=True)
    date_created: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    container: Mapped[str | None] = mapped_column(String(40), nullable=True)
    sort_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    premiere_date: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    path: Mapped[str | None] = mapped_column(Text, nullable=True)
    official_rating: Mapped[str | None] = mapped_column(String(40), nullable=True)
    overview: Mapped[str | None] = mapped_column(Text, nullable=True)
    community_rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    runtime_ticks: Mapped[int | None] = mapped_column(sa.BigInteger, nullable=True)
    production_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_folder: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    parent_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    media_type: Mapped[str | None] = mapped_column(String(40), nullable=True)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Hierarchy - structural identity keys for episodes/seasons/series
    series_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    series_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    season_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    season_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    index_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    parent_index_number: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Images
    primary_image_aspect_ratio: Mapped[float | None] = mapped_column(
        Float, nullable=True
    )
    primary_image_tag: Mapped[str | None] = mapped_column(String(64), nullable=True)
    series_primary_image_tag: Mapped[str | None] = mapped_column(
        String(64), nullable=True
    )
    primary_image_thumb_tag: Mapped[str | None] = mapped_column(
        String(64), nullable=True
    )
    primary_image_logo_tag: Mapped[str | None] = mapped_column(
        String(64), nullable=True
    )
    parent_thumb_item_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    parent_thumb_image_tag: Mapped[str | None] = mapped_column(
        String(64), nullable=True
    )
    parent_logo_item_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    parent_logo_image_tag: Mapped[str | None] = mapped_column(
        String(64), nullable=True
    )
    backdrop_image_tags: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    parent_backdrop_item_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True
    )
    parent_backdrop_image_tags: Mapped[list[str] | None] = mapped_column(
        JSON, nullable=True
    )
    image_blur_hashes: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True
    )
    image_tags: Mapped[dict[str, str] | None] = mapped_column(JSON, nullable=True)
    can_delete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_download: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    play_access: Mapped[str | None] = mapped_column(String(20), nullable=True)
    is_hd: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Metadata
    provider_ids: Mapped[dict[str, str] | None] = mapped_column(JSON, nullable=True)
    tags: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    genres: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    series_studio: Mapped[str | None] = mapped_column(Text, nullable=True)
    video_type: Mapped[str | None] = mapped_column(String(40), nullable=True)
    has_subtitles: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    channel_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    location_type: Mapped[str | None] = mapped_column(String(40), nullable=True)

    raw_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    # Downstream consumers (embeddings etc.) reset this to False when content changes
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    people_synced_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )
    deleted_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_items_server_deleted", "server_id", "deleted_at"),
        Index("ix_items_server_type", "server_id", "type"),
    )


# Yo, sessions are written by the playback poller (not part of this package) - we only ever
# REWRITE their item_id during a migration. SET NULL keeps history if an item is hard-deleted
# without a successor.
class SessionModel(Base):
    """A playback session referencing an item."""

    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    server_id: Mapped[int] = mapped_column(
        ForeignKey("servers.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    item_id: Mapped[str | None] = mapped_column(
        ForeignKey("items.id", ondelete="SET NULL"), nullable=True, index=True
    )
    item_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    client_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    device_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    play_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    ended_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )


class HiddenRecommendationModel(Base):
    """An item a user hid from their recommendations."""

    __tablename__ = "hidden_recommendations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    server_id: Mapped[int] = mapped_column(
        ForeignKey("servers.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    item_id: Mapped[str] = mapped_column(
        ForeignKey("items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )


class PersonModel(Base):
    """A person (actor, director, ...). Person ids are only unique per server."""

    __tablename__ = "people"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    server_id: Mapped[int] = mapped_column(
        ForeignKey("servers.id", ondelete="CASCADE"), primary_key=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    primary_image_tag: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )


class ItemPersonModel(Base):
    """Junction between items and people; the credit type lives here, not on the person."""

    __tablename__ = "item_people"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_id: Mapped[str] = mapped_column(
        ForeignKey("items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    person_id: Mapped[str] = mapped_column(String(64), nullable=False)
    server_id: Mapped[int] = mapped_column(
        ForeignKey("servers.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(40), nullable=False, default="Unknown")
    role: Mapped[str | None] = mapped_column(Text, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("item_id", "person_id", "type", name="uq_item_people"),
    )
