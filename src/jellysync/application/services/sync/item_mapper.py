"""Jellyfin item DTO → items table row mapping and change detection."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from jellysync.domain.dtos import JellyfinItem
from jellysync.infrastructure.persistence.models import ensure_utc_aware


@dataclass
class ItemRow:
    """Column values of one `items` row as produced by the mapper."""

    id: str
    server_id: int
    library_id: str
    name: str
    type: str
    raw_data: dict[str, Any]

    original_title: str | None = None
    etag: str | None = None
    date_created: datetime | None = None
    container: str | None = None
    sort_name: str | None = None
    premiere_date: datetime | None = None
    path: str | None = None
    official_rating: str | None = None
    overview: str | None = None
    community_rating: float | None = None
    runtime_ticks: int | None = None
    production_year: int | None = None
    is_folder: bool = False
    parent_id: str | None = None
    media_type: str | None = None
    width: int | None = None
    height: int | None = None

    series_name: str | None = None
    series_id: str | None = None
    season_id: str | None = None
    season_name: str | None = None
    index_number: int | None = None
    parent_index_number: int | None = None

    primary_image_aspect_ratio: float | None = None
    primary_image_tag: str | None = None
    series_primary_image_tag: str | None = None
    primary_image_thumb_tag: str | None = None
    primary_image_logo_tag: str | None = None
    parent_thumb_item_id: str | None = None
    parent_thumb_image_tag: str | None = None
    parent_logo_item_id: str | None = None
    parent_logo_image_tag: str | None = None
    backdrop_image_tags: list[str] | None = None
    parent_backdrop_item_id: str | None = None
    parent_backdrop_image_tags: list[str] | None = None
    image_blur_hashes: dict[str, Any] | None = None
    image_tags: dict[str, str] | None = None
    can_delete: bool = False
    can_download: bool = False
    play_access: str | None = None
    is_hd: bool = False

    provider_ids: dict[str, str] | None = None
    tags: list[str] | None = None
    genres: list[str] | None = None
    series_studio: str | None = None
    video_type: str | None = None
    has_subtitles: bool = False
    channel_id: str | None = None
    location_type: str | None = None

    def as_values(self) -> dict[str, Any]:
        """Column → value dict ready for ItemRepository.upsert()."""
        return asdict(self)


# Fields whose change means the item's content changed.
TRACKED_FIELDS: tuple[str, ...] = (
    "name",
    "original_title",
    "etag",
    "container",
    "sort_name",
    "premiere_date",
    "path",
    "official_rating",
    "overview",
    "community_rating",
    "runtime_ticks",
    "production_year",
    "is_folder",
    "parent_id",
    "media_type",
    "width",
    "height",
    "series_name",
    "series_id",
    "season_id",
    "season_name",
    "index_number",
    "parent_index_number",
    "provider_ids",
    "tags",
    "series_studio",
    "video_type",
    "has_subtitles",
    "channel_id",
    "location_type",
    "genres",
)

# Fields that only affect artwork / permissions. Disjoint from TRACKED_FIELDS.
IMAGE_FIELDS: tuple[str, ...] = (
    "primary_image_aspect_ratio",
    "primary_image_tag",
    "series_primary_image_tag",
    "primary_image_thumb_tag",
    "primary_image_logo_tag",
    "parent_thumb_item_id",
    "parent_thumb_image_tag",
    "parent_logo_item_id",
    "parent_logo_image_tag",
    "parent_backdrop_item_id",
    "parent_backdrop_image_tags",
    "backdrop_image_tags",
    "image_blur_hashes",
    "image_tags",
    "can_delete",
    "can_download",
    "play_access",
    "is_hd",
)


def _text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _flag(value: Any) -> bool:
    return bool(value) if value is not None else False


# Hey future me, THESE are the null rules, stated once:
#   - empty / whitespace-only strings → None
#   - missing numbers → None, but 0 STAYS 0 (season 0 = "Specials", episode 0 exists too,
#     and both are part of identity keys - coalescing 0 to None breaks re-identification)
#   - missing booleans → False (the columns are NOT NULL)
#   - missing collections → None
# If you touch a rule here, the identity tests for specials will tell you.
def map_jellyfin_item(dto: JellyfinItem, library_id: str, server_id: int) -> ItemRow:
    """Map a Jellyfin item to the values of its `items` row.

    Args:
        dto: Item as received from Jellyfin
        library_id: Library the item was fetched from
        server_id: Owning server

    Returns:
        ItemRow with null rules applied; raw_data is the untouched payload
    """
    image_tags = dto.image_tags or {}
    return ItemRow(
        id=dto.id,
        server_id=server_id,
        library_id=library_id,
        name=dto.name or "",
        type=dto.type,
        raw_data=dto.raw,
        original_title=_text(dto.original_title),
        etag=_text(dto.etag),
        date_created=dto.date_created,
        container=_text(dto.container),
        sort_name=_text(dto.sort_name),
        premiere_date=dto.premiere_date,
        path=_text(dto.path),
        official_rating=_text(dto.official_rating),
        overview=_text(dto.overview),
        community_rating=dto.community_rating,
        runtime_ticks=dto.runtime_ticks,
        production_year=dto.production_year,
        is_folder=_flag(dto.is_folder),
        parent_id=_text(dto.parent_id),
        media_type=_text(dto.media_type),
        width=dto.width,
        height=dto.height,
        series_name=_text(dto.series_name),
        series_id=_text(dto.series_id),
        season_id=_text(dto.season_id),
        season_name=_text(dto.season_name),
        index_number=dto.index_number,
        parent_index_number=dto.parent_index_number,
        primary_image_aspect_ratio=dto.primary_image_aspect_ratio,
        primary_image_tag=_text(image_tags.get("Primary")),
        series_primary_image_tag=_text(dto.series_primary_image_tag),
        primary_image_thumb_tag=_text(image_tags.get("Thumb")),
        primary_image_logo_tag=_text(image_tags.get("Logo")),
        parent_thumb_item_id=_text(dto.parent_thumb_item_id),
        parent_thumb_image_tag=_text(dto.parent_thumb_image_tag),
        parent_logo_item_id=_text(dto.parent_logo_item_id),
        parent_logo_image_tag=_text(dto.parent_logo_image_tag),
        backdrop_image_tags=dto.backdrop_image_tags,
        parent_backdrop_item_id=_text(dto.parent_backdrop_item_id),
        parent_backdrop_image_tags=dto.parent_backdrop_image_tags,
        image_blur_hashes=dto.image_blur_hashes,
        image_tags=dto.image_tags,
        can_delete=_flag(dto.can_delete),
        can_download=_flag(dto.can_download),
        play_access=_text(dto.play_access),
        is_hd=_flag(dto.is_hd),
        provider_ids=dto.provider_ids,
        tags=dto.tags,
        genres=dto.genres,
        series_studio=_text(dto.series_studio),
        video_type=_text(dto.video_type),
        has_subtitles=_flag(dto.has_subtitles),
        channel_id=_text(dto.channel_id),
        location_type=_text(dto.location_type),
    )


# ===== CHANGE DETECTION =====


def values_equal(stored: Any, incoming: Any) -> bool:
    """Compare a stored column value with a freshly mapped one.

    Datetimes compare by instant (SQLite hands back naive UTC values),
    JSON columns compare by value.
    """
    if isinstance(stored, datetime) and isinstance(incoming, datetime):
        return ensure_utc_aware(stored) == ensure_utc_aware(incoming)
    return bool(stored == incoming)


def changed_fields(stored: Any, row: ItemRow, fields: tuple[str, ...]) -> list[str]:
    """Names of `fields` whose stored value differs from the mapped row."""
    return [
        name
        for name in fields
        if not values_equal(getattr(stored, name), getattr(row, name))
    ]


def has_tracked_changes(stored: Any, row: ItemRow) -> bool:
    return bool(changed_fields(stored, row, TRACKED_FIELDS))


def has_image_changes(stored: Any, row: ItemRow) -> bool:
    return bool(changed_fields(stored, row, IMAGE_FIELDS))


def _has_provider_ids(provider_ids: dict[str, str] | None) -> bool:
    return any(str(v).strip() for v in (provider_ids or {}).values() if v is not None)


# Yo, provider IDs often show up AFTER the first scan (Jellyfin's metadata fetch runs later)
# and the etag does not always change when they do. An item with no stored ids that now has
# some must be rewritten, otherwise the provider_id match strategy never sees them.
def needs_provider_backfill(
    stored_provider_ids: dict[str, str] | None,
    incoming_provider_ids: dict[str, str] | None,
) -> bool:
    """True when we hold no provider ids but Jellyfin now reports some."""
    return not _has_provider_ids(stored_provider_ids) and _has_provider_ids(
        incoming_provider_ids
    )
