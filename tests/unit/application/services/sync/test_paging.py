"""Tests for the paged fetcher and the bounded worker pool.

Hey future me - the fetchers here are plain async functions over a list, so every test
states exactly what the "server" returns per offset.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from pytest_mock import MockerFixture

from jellysync.application.services.sync.paging import (
    Page,
    PagedFetcher,
    PageReport,
    StopReason,
    process_in_chunks,
    run_bounded,
)


def list_source(elements: list[int], explicit: bool = False):
    """fetch_page over an in-memory list, recording requested offsets."""
    requested: list[int] = []

    async def fetch(offset: int, limit: int) -> Page[int]:
        requested.append(offset)
        chunk = elements[offset : offset + limit]
        has_more = offset + len(chunk) < len(elements) if explicit else None
        return Page(chunk, has_more=has_more)

    return fetch, requested


async def identity(element: int) -> int:
    return element


class TestRunBounded:
    """Per-element worker pool."""

    async def test_results_keep_input_order(self) -> None:
        async def slow_first(element: int) -> int:
            await asyncio.sleep(0.01 if element == 0 else 0)
            return element * 10

        results = await run_bounded([0, 1, 2], slow_first, concurrency=3)
        assert [r.value for r in results] == [0, 10, 20]

    async def test_failure_is_isolated_to_its_element(self) -> None:
        async def worker(element: int) -> int:
            if element == 2:
                raise RuntimeError("broken element")
            return element

        results = await run_bounded([1, 2, 3], worker, concurrency=2)
        assert [r.ok for r in results] == [True, False, True]
        assert results[1].key == "2"
        assert results[1].error == "broken element"
        assert results[1].value is None

    async def test_concurrency_is_bounded(self) -> None:
        in_flight = 0
        peak = 0

        async def worker(element: int) -> int:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.005)
            in_flight -= 1
            return element

        await run_bounded(range(10), worker, concurrency=3)
        assert peak <= 3

    async def test_custom_key_is_used_for_errors(self) -> None:
        async def worker(element: dict) -> None:
            raise ValueError("nope")

        results = await run_bounded([{"id": "abc"}], worker, 1, key=lambda e: e["id"])
        assert results[0].key == "abc"


class TestProcessInChunks:
    """Chunked processing of an already fetched list."""

    async def test_on_chunk_called_per_chunk(self) -> None:
        seen: list[tuple[int, int]] = []

        def on_chunk(number, results, process_ms) -> None:
            seen.append((number, len(results)))

        results = await process_in_chunks(
            list(range(5)), identity, batch_size=2, concurrency=2, on_chunk=on_chunk
        )
        assert [r.value for r in results] == [0, 1, 2, 3, 4]
        assert seen == [(1, 2), (2, 2), (3, 1)]

    async def test_invalid_batch_size(self) -> None:
        with pytest.raises(ValueError):
            await process_in_chunks([1], identity, batch_size=0, concurrency=1)


class TestPagedFetcherStopConditions:
    """When the paging loop ends."""

    async def test_full_page_then_empty_page(self) -> None:
        """5000 items on page 1 and 0 on page 2 stops after page 2 with has_more False."""
        fetch, requested = list_source(list(range(5000)))
        fetcher = PagedFetcher(fetch, identity, page_size=5000, concurrency=50)

        outcome = await fetcher.run()

        assert requested == [0, 5000]
        assert outcome.pages == 2
        assert outcome.fetched == 5000
        assert outcome.processed == 5000
        assert outcome.stop_reason == StopReason.EMPTY_PAGE
        assert outcome.has_more is False

    async def test_short_page_stops_without_extra_fetch(self) -> None:
        fetch, requested = list_source(list(range(5)))
        outcome = await PagedFetcher(fetch, identity, page_size=2, concurrency=1).run()

        assert requested == [0, 2, 4]
        assert outcome.stop_reason == StopReason.SHORT_PAGE
        assert outcome.processed == 5
        assert outcome.has_more is False

    async def test_explicit_has_more_false_stops(self) -> None:
        fetch, requested = list_source(list(range(4)), explicit=True)
        outcome = await PagedFetcher(fetch, identity, page_size=2, concurrency=1).run()

        assert requested == [0, 2]
        assert outcome.stop_reason == StopReason.NO_MORE
        assert outcome.next_offset == 4

    async def test_max_pages_leaves_has_more(self) -> None:
        fetch, requested = list_source(list(range(10)))
        outcome = await PagedFetcher(
            fetch, identity, page_size=2, concurrency=1, max_pages=2
        ).run()

        assert requested == [0, 2]
        assert outcome.stop_reason == StopReason.MAX_PAGES
        assert outcome.has_more is True

    async def test_start_offset(self) -> None:
        fetch, requested = list_source(list(range(6)))
        outcome = await PagedFetcher(
            fetch, identity, page_size=4, concurrency=1, start_offset=3
        ).run()
        assert requested == [3]
        assert outcome.processed == 3


class TestPagedFetcherErrors:
    """Fetch errors and element errors."""

    async def test_fetch_error_keeps_earlier_pages(self) -> None:
        processed: list[int] = []

        async def fetch(offset: int, limit: int) -> Page[int]:
            if offset > 0:
                raise ConnectionError("server went away")
            return Page([1, 2])

        async def process(element: int) -> int:
            processed.append(element)
            return element

        outcome = await PagedFetcher(fetch, process, page_size=2, concurrency=1).run()

        assert processed == [1, 2]
        assert outcome.pages == 1
        assert outcome.stop_reason == StopReason.FETCH_ERROR
        assert outcome.fetch_error == "server went away"
        assert outcome.has_more is True

    async def test_element_errors_do_not_stop_the_page(self) -> None:
        fetch, _ = list_source([1, 2, 3])

        async def process(element: int) -> int:
            if element == 2:
                raise ValueError("bad element")
            return element

        outcome = await PagedFetcher(fetch, process, page_size=5, concurrency=3).run()
        assert outcome.processed == 3
        assert outcome.element_errors == ["2: bad element"]

    async def test_rejected_entries_keep_offsets_and_walk_going(self) -> None:
        """Server has 7 entries, the one at offset 1 could not be parsed."""
        source = list(range(7))
        requested: list[int] = []

        async def fetch(offset: int, limit: int) -> Page[int]:
            requested.append(offset)
            chunk = source[offset : offset + limit]
            kept = [e for e in chunk if e != 1]
            rejected = ["1: invalid activity payload"] if 1 in chunk else []
            return Page(kept, raw_count=len(chunk), rejected=rejected)

        reports: list[PageReport[int, int]] = []

        async def on_page(report: PageReport[int, int]) -> None:
            reports.append(report)

        outcome = await PagedFetcher(
            fetch, identity, page_size=3, concurrency=2, on_page=on_page
        ).run()

        assert requested == [0, 3, 6]
        assert outcome.stop_reason == StopReason.SHORT_PAGE
        assert outcome.fetched == 7
        assert outcome.processed == 6
        assert outcome.rejected == 1
        assert outcome.element_errors == ["1: invalid activity payload"]
        assert reports[0].fetched == 3
        assert reports[0].processed == [0, 2]
        assert reports[0].rejected == ["1: invalid activity payload"]

    async def test_fully_rejected_page_is_not_the_end(self) -> None:
        pages = {
            0: Page([], raw_count=2, rejected=["a: bad", "b: bad"]),
            2: Page([3]),
        }
        requested: list[int] = []

        async def fetch(offset: int, limit: int) -> Page[int]:
            requested.append(offset)
            return pages[offset]

        outcome = await PagedFetcher(fetch, identity, page_size=2, concurrency=1).run()

        assert requested == [0, 2]
        assert outcome.processed == 1
        assert outcome.element_errors == ["a: bad", "b: bad"]

    def test_page_size_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            PagedFetcher(identity, identity, page_size=0, concurrency=1)


class TestPagedFetcherOrdering:
    """Sequential pages, delays and hooks."""

    async def test_next_page_waits_for_current_page(self) -> None:
        events: list[str] = []

        async def fetch(offset: int, limit: int) -> Page[int]:
            events.append(f"fetch:{offset}")
            return Page(list(range(offset, min(offset + limit, 4))))

        async def process(element: int) -> int:
            await asyncio.sleep(0.005 * (2 - element % 2))
            events.append(f"done:{element}")
            return element

        await PagedFetcher(fetch, process, page_size=2, concurrency=2).run()

        assert events.index("fetch:2") > events.index("done:0")
        assert events.index("fetch:2") > events.index("done:1")

    async def test_delay_only_between_pages(self, mocker: MockerFixture) -> None:
        sleep = mocker.patch(
            "jellysync.application.services.sync.paging.asyncio.sleep",
            new_callable=AsyncMock,
        )
        fetch, _ = list_source(list(range(5)))

        await PagedFetcher(
            fetch, identity, page_size=2, concurrency=1, delay_seconds=0.25
        ).run()

        # three pages → two gaps
        assert sleep.await_count == 2
        sleep.assert_awaited_with(0.25)

    async def test_trim_hook_cuts_page_and_stops(self) -> None:
        fetch, requested = list_source(list(range(10)))
        processed: list[int] = []

        async def process(element: int) -> int:
            processed.append(element)
            return element

        def trim(elements: list[int]) -> tuple[list[int], str | None]:
            if 5 in elements:
                return elements[: elements.index(5)], "found_five"
            return elements, None

        outcome = await PagedFetcher(
            fetch, process, page_size=3, concurrency=1, trim=trim
        ).run()

        assert sorted(processed) == [0, 1, 2, 3, 4]
        assert requested == [0, 3]
        assert outcome.stop_reason == "found_five"
        assert outcome.has_more is False

    async def test_on_page_hook_receives_reports_and_can_stop(self) -> None:
        fetch, requested = list_source(list(range(10)))
        reports: list[PageReport] = []

        async def on_page(report: PageReport) -> str | None:
            reports.append(report)
            return "enough" if report.number == 2 else None

        outcome = await PagedFetcher(
            fetch, identity, page_size=3, concurrency=1, on_page=on_page
        ).run()

        assert requested == [0, 3]
        assert [r.offset for r in reports] == [0, 3]
        assert [r.fetched for r in reports] == [3, 3]
        assert outcome.stop_reason == "enough"
