"""Tests for the Jellyfin item → row mapping and change detection."""

from datetime import UTC, datetime
from types import SimpleNamespace

from factories import make_item

from jellysync.application.services.sync.item_mapper import (
    IMAGE_FIELDS,
    TRACKED_FIELDS,
    ItemRow,
    changed_fields,
    has_image_changes,
    has_tracked_changes,
    map_jellyfin_item,
    needs_provider_backfill,
    values_equal,
)


def stored_copy(row: ItemRow, **overrides) -> SimpleNamespace:
    """Something that looks like a loaded ItemModel for the given row."""
    values = row.as_values()
    values.update(overrides)
    return SimpleNamespace(**values)


class TestMapJellyfinItem:
    """Null-coalescing rules of the mapper."""

    def test_copies_identity_and_ownership(self) -> None:
        dto = make_item("i1", Name="Heat", Type="Movie", ProductionYear=1995)
        row = map_jellyfin_item(dto, "lib-1", 7)
        assert row.id == "i1"
        assert row.library_id == "lib-1"
        assert row.server_id == 7
        assert row.name == "Heat"
        assert row.type == "Movie"
        assert row.production_year == 1995

    def test_blank_strings_become_none(self) -> None:
        dto = make_item("i1", Overview="   ", Path="", OfficialRating="R")
        row = map_jellyfin_item(dto, "lib-1", 1)
        assert row.overview is None
        assert row.path is None
        assert row.official_rating == "R"

    def test_zero_numbers_are_preserved(self) -> None:
        """Season 0 is Specials and episode 0 exists, both matter for identity."""
        dto = make_item(
            "e0", Type="Episode", ParentIndexNumber=0, IndexNumber=0, CommunityRating=0.0
        )
        row = map_jellyfin_item(dto, "lib-1", 1)
        assert row.parent_index_number == 0
        assert row.index_number == 0
        assert row.community_rating == 0.0

    def test_missing_flags_default_to_false(self) -> None:
        row = map_jellyfin_item(make_item("i1"), "lib-1", 1)
        assert row.is_folder is False
        assert row.can_delete is False
        assert row.has_subtitles is False
        assert row.is_hd is False

    def test_missing_collections_stay_none(self) -> None:
        row = map_jellyfin_item(make_item("i1"), "lib-1", 1)
        assert row.provider_ids is None
        assert row.genres is None
        assert row.backdrop_image_tags is None

    def test_image_tags_are_split_into_columns(self) -> None:
        dto = make_item(
            "i1", ImageTags={"Primary": "p-tag", "Thumb": "t-tag", "Logo": ""}
        )
        row = map_jellyfin_item(dto, "lib-1", 1)
        assert row.primary_image_tag == "p-tag"
        assert row.primary_image_thumb_tag == "t-tag"
        assert row.primary_image_logo_tag is None
        assert row.image_tags == {"Primary": "p-tag", "Thumb": "t-tag", "Logo": ""}

    def test_dates_are_parsed_to_utc(self) -> None:
        dto = make_item("i1", PremiereDate="2020-05-01T00:00:00.0000000Z")
        row = map_jellyfin_item(dto, "lib-1", 1)
        assert row.premiere_date == datetime(2020, 5, 1, tzinfo=UTC)

    def test_raw_payload_is_kept(self) -> None:
        dto = make_item("i1", SomethingUnmapped={"a": 1})
        row = map_jellyfin_item(dto, "lib-1", 1)
        assert row.raw_data["SomethingUnmapped"] == {"a": 1}


class TestChangeDetection:
    """Tracked vs image field comparison."""

    def test_field_groups_are_disjoint(self) -> None:
        assert not set(TRACKED_FIELDS) & set(IMAGE_FIELDS)

    def test_identical_row_has_no_changes(self) -> None:
        row = map_jellyfin_item(make_item("i1", Overview="x"), "lib-1", 1)
        stored = stored_copy(row)
        assert not has_tracked_changes(stored, row)
        assert not has_image_changes(stored, row)

    def test_tracked_change_detected(self) -> None:
        row = map_jellyfin_item(make_item("i1", Overview="new"), "lib-1", 1)
        stored = stored_copy(row, overview="old")
        assert changed_fields(stored, row, TRACKED_FIELDS) == ["overview"]
        assert not has_image_changes(stored, row)

    def test_image_change_detected(self) -> None:
        row = map_jellyfin_item(make_item("i1", ImageTags={"Primary": "b"}), "lib-1", 1)
        stored = stored_copy(row, primary_image_tag="a")
        assert has_image_changes(stored, row)
        assert not has_tracked_changes(stored, row)

    def test_naive_stored_datetime_equals_aware_incoming(self) -> None:
        """SQLite gives naive UTC back."""
        aware = datetime(2024, 1, 1, 12, tzinfo=UTC)
        assert values_equal(aware.replace(tzinfo=None), aware)


class TestProviderBackfill:
    """Provider ids arriving after the first scan."""

    def test_empty_to_present_needs_backfill(self) -> None:
        assert needs_provider_backfill(None, {"Tmdb": "123"})
        assert needs_provider_backfill({}, {"Tmdb": "123"})
        assert needs_provider_backfill({"Tmdb": " "}, {"Tmdb": "123"})

    def test_present_to_present_is_not_backfill(self) -> None:
        assert not needs_provider_backfill({"Imdb": "tt1"}, {"Tmdb": "123"})

    def test_nothing_incoming_is_not_backfill(self) -> None:
        assert not needs_provider_backfill(None, None)
        assert not needs_provider_backfill({}, {"Tmdb": ""})
