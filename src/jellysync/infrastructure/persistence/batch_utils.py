# Hey future me - chunking helpers for anything that writes lots of rows!
#
# SQLite locks on EVERY write and Postgres has a bind-parameter limit per statement.
# Either way: never build one giant "UPDATE ... WHERE id IN (50 000 ids)". Split into
# fixed-size batches and commit per batch so locks are released in between.
#
# EXAMPLE:
#   for batch in chunked(ids_to_delete, 100):
#       async with db.session_scope() as session:
#           await ItemRepository(session).soft_delete(batch)
"""Batch helpers for bounding statement and transaction size."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from typing import TypeVar

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Yield consecutive slices of at most `size` elements.

    Args:
        items: Sequence to split
        size: Maximum batch size (must be >= 1)

    Yields:
        Lists of up to `size` elements, in order

    Example:
        >>> list(chunked([1, 2, 3, 4, 5], 2))
        [[1, 2], [3, 4], [5]]
    """
    if size < 1:
        raise ValueError(f"Batch size must be >= 1, got {size}")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])
