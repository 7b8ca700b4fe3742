"""Re-identification of items whose Jellyfin id changed.

Hey future me - Jellyfin hands out a NEW item id when a file is removed and added back
(library rebuild, moved folder, re-encoded file). Without this module every re-added movie
or episode would show up as a brand new item and its watch history would stay attached to
the old, dead id. We recognise "the same thing under a new id" by stable attributes, tried
in strict priority order:

    1. provider_id      - any shared (provider, external id) pair (imdb, tmdb, tvdb, ...)
    2. episode          - series name + year + season + episode
       episode_no_year  - same without year (year metadata often arrives late)
    3. season           - series name + year + season number
       season_no_year
    4. series           - series name + year (BOTH required)
    5. no match

Movies deliberately have NO name+year fallback: two different movies with the same title
and year exist, and a wrong automatic merge rewrites someone's watch history.

Each strategy yields namespaced lookup keys; a MatchIndex maps keys → record ids. The same
index type is used for the soft-deleted rows (item sync) and for the remote snapshot
(deleted-items cleanup).
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Protocol

from jellysync.domain.entities import IdentityMatch, MatchOutcome, MatchType


class IdentityFields(Protocol):
    """Anything carrying the identity attributes of an item."""

    id: str
    type: str
    name: str | None
    provider_ids: dict[str, str] | None
    series_name: str | None
    production_year: int | None
    index_number: int | None
    parent_index_number: int | None


def _norm(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    return normalized or None


class MatchStrategy:
    """Yields lookup keys for one match type."""

    match_type: MatchType

    def keys(self, record: IdentityFields) -> Iterator[str]:
        raise NotImplementedError

    def _key(self, detail: str) -> str:
        return f"{self.match_type.value}:{detail}"


class ProviderIdStrategy(MatchStrategy):
    match_type = MatchType.PROVIDER_ID

    def keys(self, record: IdentityFields) -> Iterator[str]:
        for provider, external_id in (record.provider_ids or {}).items():
            provider_key = _norm(provider)
            value = str(external_id).strip() if external_id is not None else ""
            if provider_key and value:
                yield self._key(f"{provider_key}:{value}")


class EpisodeStrategy(MatchStrategy):
    def __init__(self, with_year: bool) -> None:
        self.with_year = with_year
        self.match_type = MatchType.EPISODE if with_year else MatchType.EPISODE_NO_YEAR

    def keys(self, record: IdentityFields) -> Iterator[str]:
        series = _norm(record.series_name)
        if (
            record.type != "Episode"
            or series is None
            or record.parent_index_number is None
            or record.index_number is None
        ):
            return
        episode = f"S{record.parent_index_number}E{record.index_number}"
        if self.with_year:
            if record.production_year:
                yield self._key(f"{series}:{record.production_year}:{episode}")
        else:
            yield self._key(f"{series}:{episode}")


class SeasonStrategy(MatchStrategy):
    def __init__(self, with_year: bool) -> None:
        self.with_year = with_year
        self.match_type = MatchType.SEASON if with_year else MatchType.SEASON_NO_YEAR

    def keys(self, record: IdentityFields) -> Iterator[str]:
        series = _norm(record.series_name)
        if record.type != "Season" or series is None or record.index_number is None:
            return
        season = f"S{record.index_number}"
        if self.with_year:
            if record.production_year:
                yield self._key(f"{series}:{record.production_year}:{season}")
        else:
            yield self._key(f"{series}:{season}")


class SeriesStrategy(MatchStrategy):
    match_type = MatchType.SERIES

    def keys(self, record: IdentityFields) -> Iterator[str]:
        name = _norm(record.name)
        if record.type == "Series" and name and record.production_year:
            yield self._key(f"{name}:{record.production_year}")


# Priority order - first hit wins.
STRATEGIES: tuple[MatchStrategy, ...] = (
    ProviderIdStrategy(),
    EpisodeStrategy(with_year=True),
    EpisodeStrategy(with_year=False),
    SeasonStrategy(with_year=True),
    SeasonStrategy(with_year=False),
    SeriesStrategy(),
)


# Yo, MatchIndex keeps the FIRST record registered for a key. Feed it in the order you want
# to win ties - deleted rows come most-recently-deleted first, so the freshest dead row is
# the one a re-added item takes over.
class MatchIndex:
    """Lookup table from identity keys to item ids."""

    def __init__(self, strategies: tuple[MatchStrategy, ...] = STRATEGIES) -> None:
        self._strategies = strategies
        self._by_key: dict[str, str] = {}
        self._keys_by_id: dict[str, list[str]] = {}

    def __len__(self) -> int:
        return len(self._keys_by_id)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._keys_by_id

    def add(self, record: IdentityFields) -> None:
        keys = self._keys_by_id.setdefault(record.id, [])
        for strategy in self._strategies:
            for key in strategy.keys(record):
                if key not in self._by_key:
                    self._by_key[key] = record.id
                    keys.append(key)

    def add_all(self, records: Iterable[IdentityFields]) -> MatchIndex:
        for record in records:
            self.add(record)
        return self

    def discard(self, item_id: str) -> None:
        """Forget a record (e.g. once it was migrated and no longer a candidate)."""
        for key in self._keys_by_id.pop(item_id, []):
            if self._by_key.get(key) == item_id:
                del self._by_key[key]

    def lookup(self, key: str, exclude_id: str) -> str | None:
        item_id = self._by_key.get(key)
        if item_id is None or item_id == exclude_id:
            return None
        return item_id

    def find_match(self, candidate: IdentityFields) -> IdentityMatch | None:
        """First strategy key of `candidate` that points at a different record."""
        for strategy in self._strategies:
            for key in strategy.keys(candidate):
                item_id = self.lookup(key, exclude_id=candidate.id)
                if item_id is not None:
                    return IdentityMatch(
                        item_id=item_id, match_type=strategy.match_type, reason=key
                    )
        return None


def classify_against_snapshot(
    local: IdentityFields,
    snapshot_ids: set[str] | frozenset[str],
    snapshot_index: MatchIndex,
) -> tuple[MatchOutcome, IdentityMatch | None]:
    """Decide what happened to a local item given the remote snapshot.

    Returns:
        (EXISTS, None) if the id is still on the server,
        (MIGRATED, match) if a remote item with another id is the same thing,
        (DELETED, None) otherwise
    """
    if local.id in snapshot_ids:
        return MatchOutcome.EXISTS, None
    match = snapshot_index.find_match(local)
    if match is not None:
        return MatchOutcome.MIGRATED, match
    return MatchOutcome.DELETED, None
