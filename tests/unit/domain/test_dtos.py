"""Tests for Jellyfin payload DTOs."""

from datetime import UTC, datetime

import pytest

from jellysync.domain.dtos import (
    ItemPeople,
    JellyfinActivity,
    JellyfinItem,
    JellyfinLibrary,
    JellyfinUser,
    PersonDTO,
    parse_jellyfin_datetime,
)
from jellysync.domain.exceptions import ValidationError


class TestParseJellyfinDatetime:
    """Timestamp parsing."""

    def test_seven_digit_fraction_and_z(self) -> None:
        parsed = parse_jellyfin_datetime("2024-03-01T10:00:00.1234567Z")
        assert parsed == datetime(2024, 3, 1, 10, 0, 0, 123456, tzinfo=UTC)

    def test_naive_is_utc(self) -> None:
        parsed = parse_jellyfin_datetime("2024-03-01T10:00:00")
        assert parsed is not None
        assert parsed.tzinfo == UTC

    def test_offset_is_converted_to_utc(self) -> None:
        parsed = parse_jellyfin_datetime("2024-03-01T12:00:00+02:00")
        assert parsed == datetime(2024, 3, 1, 10, 0, tzinfo=UTC)

    @pytest.mark.parametrize("value", [None, "", "not a date"])
    def test_empty_or_garbage(self, value) -> None:
        assert parse_jellyfin_datetime(value) is None


class TestFromApi:
    """Required fields and fallbacks."""

    def test_item_requires_id(self) -> None:
        with pytest.raises(ValidationError, match="missing Id"):
            JellyfinItem.from_api({"Name": "Heat"})

    def test_item_keeps_raw_payload_and_zero_values(self) -> None:
        item = JellyfinItem.from_api({"Id": "i1", "IndexNumber": 0, "Type": "Episode"})
        assert item.index_number == 0
        assert item.name == ""
        assert item.raw["Id"] == "i1"

    def test_user_policy_flags(self) -> None:
        user = JellyfinUser.from_api(
            {"Id": "u1", "Name": "alice", "Policy": {"IsDisabled": True}}
        )
        assert user.is_disabled is True
        assert user.is_administrator is False

    def test_user_requires_name(self) -> None:
        with pytest.raises(ValidationError):
            JellyfinUser.from_api({"Id": "u1"})

    def test_library_type_fallback_chain(self) -> None:
        assert JellyfinLibrary.from_api({"Id": "l", "Name": "x", "Type": "Folder"}).type == (
            "Folder"
        )
        assert JellyfinLibrary.from_api({"Id": "l", "Name": "x"}).type == "Unknown"

    def test_activity_needs_valid_date(self) -> None:
        with pytest.raises(ValidationError, match="invalid Date"):
            JellyfinActivity.from_api({"Id": 1, "Date": "yesterday"})

    def test_activity_blank_user_is_none(self) -> None:
        activity = JellyfinActivity.from_api(
            {"Id": 7, "Date": "2024-03-01T10:00:00Z", "UserId": ""}
        )
        assert activity.id == "7"
        assert activity.user_id is None

    def test_blank_people_are_dropped(self) -> None:
        assert PersonDTO.from_api({"Id": " ", "Name": "x"}) is None
        credits = ItemPeople.from_api(
            {
                "Id": "i1",
                "People": [
                    {"Id": "p1", "Name": "Al Pacino", "Role": "McCauley"},
                    {"Id": "p2", "Name": ""},
                ],
            }
        )
        assert [(p.id, p.type, p.role) for p in credits.people] == [
            ("p1", "Unknown", "McCauley")
        ]
