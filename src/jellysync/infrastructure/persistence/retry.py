# Hey future me - item sync runs several workers, each with its own transaction, and on
# SQLite only one of them can hold the write lock. Losers get "database is locked" even
# though waiting a moment would have worked. Every per-element write goes through
# execute_with_retry() so a short lock wait never turns into a reported item error.
#
#   await execute_with_retry(lambda: self._write_single(row), operation_name="items.write")
#
#   @with_db_retry(max_attempts=3)
#   async def migrate(self, old_id, new_id): ...
#
# Only lock/busy OperationalErrors are retried. Constraint violations and everything else
# propagate on the first attempt.
"""Retry helpers for SQLite lock contention."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from functools import wraps
from typing import Any, ClassVar, ParamSpec, TypeVar

from sqlalchemy.exc import OperationalError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

_LOCK_MARKERS = ("locked", "busy")


@dataclass
class DatabaseLockMetrics:
    """Process-wide lock contention counters.

    The coordinator logs get_stats() after every full sync, a rising
    lock_failures count means worker concurrency is too high for SQLite.
    """

    lock_attempts: int = 0
    lock_successes: int = 0
    lock_failures: int = 0
    lock_retries: int = 0
    total_wait_time_ms: float = 0.0
    max_wait_time_ms: float = 0.0
    last_lock_event: float | None = None

    _instance: ClassVar[DatabaseLockMetrics | None] = None

    @classmethod
    def get_instance(cls) -> DatabaseLockMetrics:
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def reset(self) -> None:
        """Zero every counter (tests)."""
        for name, value in asdict(DatabaseLockMetrics()).items():
            setattr(self, name, value)

    def record(self, outcome: str, waited_ms: float = 0.0) -> None:
        """Record the end of one retried operation ("success" or "failure")."""
        if outcome == "success":
            self.lock_successes += 1
        else:
            self.lock_failures += 1
        self.total_wait_time_ms += waited_ms
        self.max_wait_time_ms = max(self.max_wait_time_ms, waited_ms)
        if waited_ms > 0 or outcome != "success":
            self.last_lock_event = time.time()

    def get_stats(self) -> dict[str, Any]:
        stats = asdict(self)
        stats["total_wait_time_ms"] = round(self.total_wait_time_ms, 2)
        stats["max_wait_time_ms"] = round(self.max_wait_time_ms, 2)
        stats["last_lock_event_timestamp"] = stats.pop("last_lock_event")
        return stats


def is_lock_error(exception: BaseException) -> bool:
    """True for SQLite "database is locked" / "database is busy" errors."""
    if not isinstance(exception, OperationalError):
        return False
    message = str(exception).lower()
    return any(marker in message for marker in _LOCK_MARKERS)


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    initial_delay: float = 0.5,
    max_delay: float = 5.0,
    backoff_factor: float = 2.0,
    operation_name: str = "operation",
) -> T:
    """Run `operation`, retrying lock errors with exponential backoff.

    `operation` must build a NEW awaitable on every call (a lambda or bound
    method); a coroutine object can only be awaited once.

    Args:
        operation: Zero-argument callable producing the awaitable
        max_attempts: Attempts including the first one
        initial_delay: Seconds before the first retry
        max_delay: Cap for a single delay
        backoff_factor: Delay multiplier per retry
        operation_name: Used in log lines

    Returns:
        Whatever the operation returns

    Raises:
        OperationalError: Non-lock errors at once, lock errors after the last attempt
    """
    metrics = DatabaseLockMetrics.get_instance()
    metrics.lock_attempts += 1
    delay = initial_delay
    waited_ms = 0.0
    attempt = 1

    while True:
        try:
            result = await operation()
        except OperationalError as e:
            if not is_lock_error(e) or attempt >= max_attempts:
                metrics.record("failure", waited_ms)
                if is_lock_error(e):
                    logger.error(
                        "db.lock_retry_exhausted",
                        extra={
                            "operation": operation_name,
                            "attempts": attempt,
                            "waited_ms": round(waited_ms),
                        },
                    )
                raise
            metrics.lock_retries += 1
            logger.warning(
                "db.locked_retrying",
                extra={
                    "operation": operation_name,
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                    "delay_s": delay,
                },
            )
            await asyncio.sleep(delay)
            waited_ms += delay * 1000
            delay = min(delay * backoff_factor, max_delay)
            attempt += 1
        else:
            metrics.record("success", waited_ms)
            return result


def with_db_retry(
    max_attempts: int = 3,
    initial_delay: float = 0.5,
    max_delay: float = 5.0,
    backoff_factor: float = 2.0,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator form of execute_with_retry() for async methods."""

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return await execute_with_retry(
                lambda: func(*args, **kwargs),
                max_attempts=max_attempts,
                initial_delay=initial_delay,
                max_delay=max_delay,
                backoff_factor=backoff_factor,
                operation_name=func.__qualname__,
            )

        return wrapper

    return decorator
