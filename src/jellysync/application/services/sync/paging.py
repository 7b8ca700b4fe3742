"""Offset pagination with a bounded per-page worker pool."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from jellysync.infrastructure.observability.sync_log import format_error

logger = logging.getLogger(__name__)

E = TypeVar("E")
R = TypeVar("R")


@dataclass
class ElementResult(Generic[R]):
    """Outcome of processing one element: a value or an error string, never both."""

    key: str
    value: R | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# Hey future me, run_bounded() is THE worker pool of every sync stage. A semaphore caps how
# many elements are in flight, gather() waits for all of them. Exceptions are caught PER
# ELEMENT and turned into ElementResult(error=...) - one broken item must never cancel its
# siblings or the page. Results come back in input order even though processing order is not
# guaranteed. Aggregating them into counters is the caller's job (see items.py).
async def run_bounded(
    elements: Iterable[E],
    worker: Callable[[E], Awaitable[R]],
    concurrency: int,
    key: Callable[[E], str] = str,
) -> list[ElementResult[R]]:
    """Process elements concurrently with at most `concurrency` in flight.

    Args:
        elements: Elements to process
        worker: Coroutine function processing one element
        concurrency: Maximum number of concurrently running workers
        key: Function returning a readable identifier for error messages

    Returns:
        One ElementResult per element, in input order
    """
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _run(element: E) -> ElementResult[R]:
        element_key = key(element)
        async with semaphore:
            try:
                value = await worker(element)
            except Exception as e:
                logger.debug(
                    "sync.element_failed",
                    extra={"element": element_key, "error": str(e)},
                    exc_info=True,
                )
                return ElementResult(key=element_key, error=format_error(e))
        return ElementResult(key=element_key, value=value)

    return list(await asyncio.gather(*(_run(e) for e in elements)))


async def process_in_chunks(
    elements: list[E],
    worker: Callable[[E], Awaitable[R]],
    batch_size: int,
    concurrency: int,
    key: Callable[[E], str] = str,
    on_chunk: Callable[[int, list[ElementResult[R]], int], None] | None = None,
) -> list[ElementResult[R]]:
    """run_bounded() over an already fetched list, one chunk of `batch_size` at a time.

    on_chunk(chunk_number, results, process_ms) is called after every chunk.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    collected: list[ElementResult[R]] = []
    for number, start in enumerate(range(0, len(elements), batch_size), start=1):
        process_start = time.monotonic()
        results = await run_bounded(
            elements[start : start + batch_size], worker, concurrency, key=key
        )
        if on_chunk is not None:
            on_chunk(number, results, int((time.monotonic() - process_start) * 1000))
        collected.extend(results)
    return collected


@dataclass
class Page(Generic[E]):
    """One fetched page.

    `has_more` is the source's explicit "more data" signal. Leave it None
    when the source has none; the fetcher then relies on page length.

    `raw_count` is how many entries the source returned, `rejected` holds
    "key: reason" for the ones that never made it into `elements`. The offset
    and the short-page test use raw_count, so a dropped entry neither ends the
    walk nor shifts the next page.
    """

    elements: list[E]
    has_more: bool | None = None
    raw_count: int | None = None
    rejected: list[str] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.elements) if self.raw_count is None else self.raw_count


@dataclass
class PageReport(Generic[E, R]):
    """What happened on one page, handed to the on_page hook."""

    number: int
    offset: int
    fetched: int
    processed: list[E]
    results: list[ElementResult[R]]
    fetch_ms: int
    process_ms: int
    rejected: list[str] = field(default_factory=list)


@dataclass
class PagingOutcome:
    """Summary of a finished paging loop."""

    pages: int = 0
    fetched: int = 0
    processed: int = 0
    rejected: int = 0
    stop_reason: str = ""
    has_more: bool = False
    fetch_error: str | None = None
    next_offset: int = 0
    element_errors: list[str] = field(default_factory=list)


class StopReason:
    """Built-in reasons a paging loop ends."""

    EMPTY_PAGE = "empty_page"
    SHORT_PAGE = "short_page"
    NO_MORE = "no_more"
    MAX_PAGES = "max_pages"
    FETCH_ERROR = "fetch_error"


# Listen up, the paging contract in one place:
# 1. Pages are fetched STRICTLY in order. Page N+1 is only requested after every element of
#    page N finished - no overlap, no prefetch.
# 2. `delay_seconds` is awaited BETWEEN page fetches (not before the first one, never between
#    elements) to stay under the server's request throttling.
# 3. Stop on: empty page, short page, explicit has_more=False, max_pages, or a fetch error.
#    A fetch error is NOT retried here - the client already retried, anything beyond that is
#    the scheduler's business.
# 4. Hooks: `trim` may cut a page short before processing and request a stop (the activity
#    watermark uses it), `on_page` sees every processed page and may request a stop too.
class PagedFetcher(Generic[E, R]):
    """Drives offset pagination and per-page bounded processing."""

    def __init__(
        self,
        fetch_page: Callable[[int, int], Awaitable[Page[E]]],
        process: Callable[[E], Awaitable[R]],
        *,
        page_size: int,
        concurrency: int,
        delay_seconds: float = 0.0,
        max_pages: int | None = None,
        start_offset: int = 0,
        key: Callable[[E], str] = str,
        trim: Callable[[list[E]], tuple[list[E], str | None]] | None = None,
        on_page: Callable[[PageReport[E, R]], Awaitable[str | None]] | None = None,
        name: str = "paging",
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self._fetch_page = fetch_page
        self._process = process
        self.page_size = page_size
        self.concurrency = concurrency
        self.delay_seconds = delay_seconds
        self.max_pages = max_pages
        self.start_offset = start_offset
        self._key = key
        self._trim = trim
        self._on_page = on_page
        self.name = name

    async def run(self) -> PagingOutcome:
        outcome = PagingOutcome(next_offset=self.start_offset)
        offset = self.start_offset

        while True:
            if self.max_pages is not None and outcome.pages >= self.max_pages:
                outcome.stop_reason = StopReason.MAX_PAGES
                outcome.has_more = True
                break

            if outcome.pages > 0 and self.delay_seconds > 0:
                await asyncio.sleep(self.delay_seconds)

            fetch_start = time.monotonic()
            try:
                page = await self._fetch_page(offset, self.page_size)
            except Exception as e:
                outcome.fetch_error = format_error(e)
                outcome.stop_reason = StopReason.FETCH_ERROR
                outcome.has_more = True
                logger.error(
                    f"{self.name}.page_fetch_failed",
                    extra={"offset": offset, "page": outcome.pages + 1, "error": outcome.fetch_error},
                    exc_info=True,
                )
                break
            fetch_ms = int((time.monotonic() - fetch_start) * 1000)

            outcome.pages += 1
            fetched = page.size
            outcome.fetched += fetched

            if fetched == 0:
                outcome.stop_reason = StopReason.EMPTY_PAGE
                outcome.has_more = False
                break

            to_process, trim_reason = (
                self._trim(page.elements) if self._trim else (page.elements, None)
            )

            process_start = time.monotonic()
            results = await run_bounded(
                to_process, self._process, self.concurrency, key=self._key
            )
            process_ms = int((time.monotonic() - process_start) * 1000)
            outcome.processed += len(to_process)
            outcome.rejected += len(page.rejected)
            outcome.element_errors.extend(page.rejected)
            outcome.element_errors.extend(
                f"{r.key}: {r.error}" for r in results if not r.ok
            )

            offset += fetched
            outcome.next_offset = offset

            hook_reason = None
            if self._on_page is not None:
                hook_reason = await self._on_page(
                    PageReport(
                        number=outcome.pages,
                        offset=offset - fetched,
                        fetched=fetched,
                        processed=to_process,
                        results=results,
                        fetch_ms=fetch_ms,
                        process_ms=process_ms,
                        rejected=page.rejected,
                    )
                )

            if trim_reason or hook_reason:
                outcome.stop_reason = trim_reason or hook_reason or ""
                outcome.has_more = False
                break
            if page.has_more is False:
                outcome.stop_reason = StopReason.NO_MORE
                outcome.has_more = False
                break
            if page.has_more is None and fetched < self.page_size:
                outcome.stop_reason = StopReason.SHORT_PAGE
                outcome.has_more = False
                break

        return outcome
