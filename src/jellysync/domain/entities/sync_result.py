"""Sync run result types handed back to schedulers and the UI."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class SyncStatus(str, Enum):
    """Overall outcome of one sync run."""

    SUCCESS = "success"
    PARTIAL = "partial"  # finished, but some elements failed
    ERROR = "error"  # guard fired or an unhandled exception escaped


# Hey future me, SyncMetrics is the FROZEN view of a run. SyncMetricsTracker (application
# layer) owns the mutable copy while the run is going and hands out one of these when it
# finishes. Every counter lives here even if a given stage never touches it - a users sync
# simply reports items_* as 0. That keeps the shape identical for every SyncType so the
# dashboard can render any result without branching.
@dataclass
class SyncMetrics:
    """Counters and timing for a single sync run."""

    started_at: datetime
    finished_at: datetime | None = None
    duration_ms: int = 0

    api_requests: int = 0
    database_operations: int = 0

    users_processed: int = 0
    users_inserted: int = 0
    users_updated: int = 0

    libraries_processed: int = 0
    libraries_inserted: int = 0
    libraries_updated: int = 0

    items_processed: int = 0
    items_inserted: int = 0
    items_updated: int = 0
    items_unchanged: int = 0
    items_migrated: int = 0
    sessions_migrated: int = 0
    hidden_recommendations_migrated: int = 0

    activities_processed: int = 0
    activities_inserted: int = 0
    activities_updated: int = 0

    errors: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize metrics for logging / JSON responses."""
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        return data


@dataclass
class SyncResult(Generic[T]):
    """Result of a sync run.

    `status` is derived from what happened, never set by hand outside the
    factory methods below. `errors` holds human-readable strings (already
    truncated to the configured maximum). `error` is the single headline
    message for ERROR results.
    """

    status: SyncStatus
    data: T
    metrics: SyncMetrics
    errors: list[str] = field(default_factory=list)
    error: str | None = None

    @classmethod
    def success(cls, data: T, metrics: SyncMetrics) -> SyncResult[T]:
        return cls(status=SyncStatus.SUCCESS, data=data, metrics=metrics)

    @classmethod
    def partial(
        cls, data: T, metrics: SyncMetrics, errors: list[str]
    ) -> SyncResult[T]:
        return cls(
            status=SyncStatus.PARTIAL, data=data, metrics=metrics, errors=list(errors)
        )

    @classmethod
    def failure(
        cls,
        data: T,
        metrics: SyncMetrics,
        error: str,
        errors: list[str] | None = None,
    ) -> SyncResult[T]:
        return cls(
            status=SyncStatus.ERROR,
            data=data,
            metrics=metrics,
            errors=list(errors) if errors else [error],
            error=error,
        )

    @classmethod
    def from_errors(
        cls, data: T, metrics: SyncMetrics, errors: list[str]
    ) -> SyncResult[T]:
        """SUCCESS when nothing failed, PARTIAL otherwise."""
        if errors:
            return cls.partial(data, metrics, errors)
        return cls.success(data, metrics)

    @property
    def ok(self) -> bool:
        return self.status != SyncStatus.ERROR
