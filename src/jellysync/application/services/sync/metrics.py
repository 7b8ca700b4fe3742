"""Run-scoped metrics tracking for sync stages."""

from __future__ import annotations

import dataclasses
import time
from typing import TypeVar

from jellysync.domain.entities import SyncMetrics, SyncResult
from jellysync.infrastructure.persistence.models import utc_now

T = TypeVar("T")

_COUNTER_FIELDS = frozenset(
    f.name
    for f in dataclasses.fields(SyncMetrics)
    if f.name not in {"started_at", "finished_at", "duration_ms"}
)


# Hey future me, one tracker per sync RUN. Counters only go UP (increment() rejects negative
# deltas) and the tracker is finalized exactly once by finish(). Anything that tries to
# count after that is a bug - e.g. a worker that outlived its run - so it raises instead of
# silently changing a result that was already handed out.
class SyncMetricsTracker:
    """Accumulates counters, errors and timing for one sync run."""

    def __init__(self, max_reported_errors: int = 50) -> None:
        self._metrics = SyncMetrics(started_at=utc_now())
        self._start = time.monotonic()
        self._errors: list[str] = []
        self._max_reported_errors = max_reported_errors
        self._final: SyncMetrics | None = None

    @property
    def finished(self) -> bool:
        return self._final is not None

    @property
    def errors(self) -> list[str]:
        """Reported error strings (capped at max_reported_errors)."""
        return list(self._errors)

    @property
    def error_count(self) -> int:
        return self._metrics.errors

    def increment(self, counter: str, amount: int = 1) -> None:
        """Increase a counter of SyncMetrics by `amount`."""
        if self._final is not None:
            raise RuntimeError("Cannot update metrics of a finished sync run")
        if counter not in _COUNTER_FIELDS:
            raise ValueError(f"Unknown sync metric: {counter}")
        if amount < 0:
            raise ValueError(f"Sync metrics only increase, got {counter} += {amount}")
        setattr(self._metrics, counter, getattr(self._metrics, counter) + amount)

    def record_error(self, message: str) -> None:
        """Count an error; keep the message if we are below the reporting cap."""
        self.increment("errors")
        if len(self._errors) < self._max_reported_errors:
            self._errors.append(message)

    def current(self) -> SyncMetrics:
        """Copy of the live counters (for per-page deltas)."""
        return dataclasses.replace(self._metrics)

    def finish(self) -> SyncMetrics:
        """Stamp end time/duration and freeze. Idempotent."""
        if self._final is None:
            self._metrics.finished_at = utc_now()
            self._metrics.duration_ms = int((time.monotonic() - self._start) * 1000)
            self._final = dataclasses.replace(self._metrics)
        return self._final

    # ===== RESULT BUILDERS =====

    def result(self, data: T) -> SyncResult[T]:
        """SUCCESS if no error was recorded, PARTIAL otherwise."""
        return SyncResult.from_errors(data, self.finish(), self.errors)

    def failure(self, data: T, error: str) -> SyncResult[T]:
        """ERROR result with `error` as headline, keeping earlier per-element errors."""
        if self._final is None:
            self.record_error(error)
        errors = self.errors or [error]
        return SyncResult.failure(data, self.finish(), error, errors)
