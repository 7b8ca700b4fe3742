"""Shared logger helpers.

Hey future me - every sync stage wraps its run in log_operation() so start/end/duration
lines look the same for users, libraries, items, activities, cleanup and people:

    async with log_operation(logger, "items_sync", server=server.name):
        ...

    # INFO: items_sync.started {"server": "home"}
    # INFO: items_sync.completed {"server": "home", "duration_ms": 5312}
"""

import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any


# Yo, on exception it logs {operation}.failed with exc_info and RE-RAISES. Sync stages turn
# exceptions into SyncResult.failure themselves, so put the try/except OUTSIDE this context
# manager, otherwise the failure is swallowed before it gets logged.
@asynccontextmanager
async def log_operation(
    logger: logging.Logger,
    operation: str,
    **context: Any,
) -> AsyncGenerator[dict[str, Any], None]:
    """Log operation start/end with automatic timing.

    The yielded dict can be filled with result fields (counts, status); they
    are appended to the completion log line.

    Args:
        logger: Logger instance
        operation: Operation name (e.g. "items_sync")
        **context: Additional fields to include in every log line

    Yields:
        Mutable dict of extra fields for the completion log
    """
    start = time.monotonic()
    summary: dict[str, Any] = {}
    logger.info(f"{operation}.started", extra=context)

    try:
        yield summary
    except Exception as e:
        duration_ms = int((time.monotonic() - start) * 1000)
        logger.error(
            f"{operation}.failed",
            extra={
                **context,
                "duration_ms": duration_ms,
                "error": str(e),
                "error_type": type(e).__name__,
            },
            exc_info=True,
        )
        raise

    duration_ms = int((time.monotonic() - start) * 1000)
    logger.info(
        f"{operation}.completed",
        extra={**context, **summary, "duration_ms": duration_ms},
    )
