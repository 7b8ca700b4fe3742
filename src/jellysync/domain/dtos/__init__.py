"""
Data Transfer Objects for Jellyfin API payloads.

Hey future me - these DTOs are the ONLY place where Jellyfin's PascalCase JSON is read.
The client turns raw responses into these, services never touch response dicts directly.
Each DTO has a `from_api()` classmethod that tolerates missing optional fields but raises
ValidationError when a field we can't live without (Id, Name, ...) is absent.

Flow: Jellyfin JSON → DTO (typed) → mapper → row values → repository
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from jellysync.domain.exceptions import ValidationError

_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


# Yo, Jellyfin emits 7-digit fractional seconds ("2024-03-01T10:00:00.1234567Z") which older
# fromisoformat() chokes on. We trim to microseconds and swap the Z for +00:00. Naive values
# are assumed UTC - Jellyfin always talks UTC.
def parse_jellyfin_datetime(value: Any) -> datetime | None:
    """Parse a Jellyfin timestamp into an aware UTC datetime.

    Args:
        value: ISO-8601 string, datetime or None

    Returns:
        Aware datetime or None for empty/unparseable input
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = _FRACTION_RE.sub(r"\1", str(value).strip())
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _require(data: dict[str, Any], key: str, kind: str) -> Any:
    value = data.get(key)
    if value is None or value == "":
        raise ValidationError(f"Jellyfin {kind} is missing {key}")
    return value


@dataclass
class JellyfinUser:
    """A Jellyfin user account."""

    id: str
    name: str
    has_password: bool = False
    is_administrator: bool = False
    is_disabled: bool = False
    is_hidden: bool = False
    last_login_date: datetime | None = None
    last_activity_date: datetime | None = None
    primary_image_tag: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> JellyfinUser:
        policy = data.get("Policy") or {}
        return cls(
            id=str(_require(data, "Id", "user")),
            name=str(_require(data, "Name", "user")),
            has_password=bool(data.get("HasPassword", False)),
            is_administrator=bool(policy.get("IsAdministrator", False)),
            is_disabled=bool(policy.get("IsDisabled", False)),
            is_hidden=bool(policy.get("IsHidden", False)),
            last_login_date=parse_jellyfin_datetime(data.get("LastLoginDate")),
            last_activity_date=parse_jellyfin_datetime(data.get("LastActivityDate")),
            primary_image_tag=data.get("PrimaryImageTag") or None,
        )


@dataclass
class JellyfinLibrary:
    """A top-level media folder (library)."""

    id: str
    name: str
    type: str

    # Hey future me, library "type" falls back CollectionType → Type → "Unknown". Mixed
    # libraries have no CollectionType at all, that's why the chain exists.
    @classmethod
    def from_api(cls, data: dict[str, Any]) -> JellyfinLibrary:
        return cls(
            id=str(_require(data, "Id", "library")),
            name=str(_require(data, "Name", "library")),
            type=data.get("CollectionType") or data.get("Type") or "Unknown",
        )


# Listen up, JellyfinItem is the FULL item payload used by item sync. It's deliberately a
# dumb carrier: raw values as Jellyfin sends them (with dates parsed), no null-coalescing.
# The coalescing rules live in exactly one place - item_mapper.map_jellyfin_item().
@dataclass
class JellyfinItem:
    """A Jellyfin BaseItemDto."""

    id: str
    name: str
    type: str
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

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
    is_folder: bool | None = None
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

    video_type: str | None = None
    has_subtitles: bool | None = None
    channel_id: str | None = None
    location_type: str | None = None
    genres: list[str] | None = None
    tags: list[str] | None = None
    series_studio: str | None = None
    provider_ids: dict[str, str] | None = None

    primary_image_aspect_ratio: float | None = None
    image_tags: dict[str, str] | None = None
    series_primary_image_tag: str | None = None
    parent_thumb_item_id: str | None = None
    parent_thumb_image_tag: str | None = None
    parent_logo_item_id: str | None = None
    parent_logo_image_tag: str | None = None
    backdrop_image_tags: list[str] | None = None
    parent_backdrop_item_id: str | None = None
    parent_backdrop_image_tags: list[str] | None = None
    image_blur_hashes: dict[str, Any] | None = None
    can_delete: bool | None = None
    can_download: bool | None = None
    play_access: str | None = None
    is_hd: bool | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> JellyfinItem:
        return cls(
            id=str(_require(data, "Id", "item")),
            name=data.get("Name") or "",
            type=data.get("Type") or "Unknown",
            raw=dict(data),
            original_title=data.get("OriginalTitle"),
            etag=data.get("Etag"),
            date_created=parse_jellyfin_datetime(data.get("DateCreated")),
            container=data.get("Container"),
            sort_name=data.get("SortName"),
            premiere_date=parse_jellyfin_datetime(data.get("PremiereDate")),
            path=data.get("Path"),
            official_rating=data.get("OfficialRating"),
            overview=data.get("Overview"),
            community_rating=data.get("CommunityRating"),
            runtime_ticks=data.get("RunTimeTicks"),
            production_year=data.get("ProductionYear"),
            is_folder=data.get("IsFolder"),
            parent_id=data.get("ParentId"),
            media_type=data.get("MediaType"),
            width=data.get("Width"),
            height=data.get("Height"),
            series_name=data.get("SeriesName"),
            series_id=data.get("SeriesId"),
            season_id=data.get("SeasonId"),
            season_name=data.get("SeasonName"),
            index_number=data.get("IndexNumber"),
            parent_index_number=data.get("ParentIndexNumber"),
            video_type=data.get("VideoType"),
            has_subtitles=data.get("HasSubtitles"),
            channel_id=data.get("ChannelId"),
            location_type=data.get("LocationType"),
            genres=data.get("Genres"),
            tags=data.get("Tags"),
            series_studio=data.get("SeriesStudio"),
            provider_ids=data.get("ProviderIds"),
            primary_image_aspect_ratio=data.get("PrimaryImageAspectRatio"),
            image_tags=data.get("ImageTags"),
            series_primary_image_tag=data.get("SeriesPrimaryImageTag"),
            parent_thumb_item_id=data.get("ParentThumbItemId"),
            parent_thumb_image_tag=data.get("ParentThumbImageTag"),
            parent_logo_item_id=data.get("ParentLogoItemId"),
            parent_logo_image_tag=data.get("ParentLogoImageTag"),
            backdrop_image_tags=data.get("BackdropImageTags"),
            parent_backdrop_item_id=data.get("ParentBackdropItemId"),
            parent_backdrop_image_tags=data.get("ParentBackdropImageTags"),
            image_blur_hashes=data.get("ImageBlurHashes"),
            can_delete=data.get("CanDelete"),
            can_download=data.get("CanDownload"),
            play_access=data.get("PlayAccess"),
            is_hd=data.get("IsHD"),
        )


# Listen up, a page can hold entries that fail from_api(). They are NOT in items/activities
# but they still occupy a slot on the server, so raw_count (entries the server returned)
# is what moves the offset and decides "short page". rejected holds one "id: reason" string
# per dropped entry so the sync can count and report it. raw_count None = nothing dropped.
@dataclass
class ItemsPage:
    """One page of /Items plus the server-side total."""

    items: list[JellyfinItem]
    total_count: int
    raw_count: int | None = None
    rejected: list[str] = field(default_factory=list)


@dataclass
class ActivitiesPage:
    """One page of the activity log, newest first."""

    activities: list[JellyfinActivity]
    raw_count: int | None = None
    rejected: list[str] = field(default_factory=list)


# Hey future me, MinimalItem is the slim projection for the deleted-items snapshot. Whole
# libraries get pulled through this, so keep it to identity fields only - no overview, no
# images, no raw dict.
@dataclass
class MinimalItem:
    """Identity-only projection of a Jellyfin item."""

    id: str
    type: str
    name: str | None = None
    provider_ids: dict[str, str] | None = None
    series_name: str | None = None
    production_year: int | None = None
    index_number: int | None = None
    parent_index_number: int | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> MinimalItem:
        return cls(
            id=str(_require(data, "Id", "item")),
            type=data.get("Type") or "Unknown",
            name=data.get("Name"),
            provider_ids=data.get("ProviderIds"),
            series_name=data.get("SeriesName"),
            production_year=data.get("ProductionYear"),
            index_number=data.get("IndexNumber"),
            parent_index_number=data.get("ParentIndexNumber"),
        )


@dataclass
class JellyfinActivity:
    """An entry of /System/ActivityLog/Entries."""

    id: str
    name: str
    type: str
    date: datetime
    short_overview: str | None = None
    severity: str | None = None
    user_id: str | None = None
    item_id: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> JellyfinActivity:
        date = parse_jellyfin_datetime(_require(data, "Date", "activity"))
        if date is None:
            raise ValidationError(f"Jellyfin activity has invalid Date: {data.get('Date')!r}")
        return cls(
            id=str(_require(data, "Id", "activity")),
            name=data.get("Name") or "",
            type=data.get("Type") or "Unknown",
            date=date,
            short_overview=data.get("ShortOverview") or None,
            severity=data.get("Severity") or None,
            user_id=data.get("UserId") or None,
            item_id=data.get("ItemId") or None,
        )


@dataclass
class PersonDTO:
    """A person credited on an item (actor, director, ...)."""

    id: str
    name: str
    type: str = "Unknown"
    role: str | None = None
    primary_image_tag: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> PersonDTO | None:
        """Build a person, or None when Id/Name are blank (Jellyfin sends those)."""
        person_id = str(data.get("Id") or "").strip()
        name = str(data.get("Name") or "").strip()
        if not person_id or not name:
            return None
        return cls(
            id=person_id,
            name=name,
            type=data.get("Type") or "Unknown",
            role=data.get("Role") or None,
            primary_image_tag=data.get("PrimaryImageTag") or None,
        )


@dataclass
class ItemPeople:
    """People credited on one item."""

    item_id: str
    people: list[PersonDTO] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> ItemPeople:
        people = [PersonDTO.from_api(p) for p in data.get("People") or []]
        return cls(
            item_id=str(_require(data, "Id", "item")),
            people=[p for p in people if p is not None],
        )


__all__ = [
    "ActivitiesPage",
    "ItemPeople",
    "ItemsPage",
    "JellyfinActivity",
    "JellyfinItem",
    "JellyfinLibrary",
    "JellyfinUser",
    "MinimalItem",
    "PersonDTO",
    "parse_jellyfin_datetime",
]
