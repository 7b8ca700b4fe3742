"""Run-scoped state shared by the sync stages of one server."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from jellysync.config.settings import SyncSettings
from jellysync.domain.entities import MediaServer
from jellysync.domain.ports import IMediaServerClient
from jellysync.infrastructure.persistence import Database, ItemRepository, LibraryRepository

from .identity import MatchIndex


# Hey future me, SyncContext replaces what would otherwise be module globals: the
# library→server cache and the deleted-items index live HERE and die with the run. Two runs
# for two servers never see each other's cache. Build one per dispatched job.
@dataclass
class SyncContext:
    """Everything a sync stage needs for one run against one server."""

    server: MediaServer
    client: IMediaServerClient
    database: Database
    settings: SyncSettings

    _library_servers: dict[str, int | None] = field(default_factory=dict, repr=False)
    _deleted_index: MatchIndex | None = field(default=None, repr=False)
    _deleted_index_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    async def server_id_for_library(self, library_id: str) -> int | None:
        """Owning server of a library, cached for the lifetime of the run."""
        if library_id not in self._library_servers:
            async with self.database.session_scope() as session:
                self._library_servers[library_id] = await LibraryRepository(
                    session
                ).get_server_id(library_id)
        return self._library_servers[library_id]

    def remember_library(self, library_id: str, server_id: int) -> None:
        self._library_servers[library_id] = server_id

    # Yo, the deleted-items index is built LAZILY and at most once per run: the first insert
    # that needs it loads every soft-deleted row of the server. Concurrent workers wait on
    # the lock instead of each loading their own copy.
    async def deleted_items_index(self) -> MatchIndex:
        """Identity index over this server's soft-deleted items."""
        if self._deleted_index is None:
            async with self._deleted_index_lock:
                if self._deleted_index is None:
                    async with self.database.session_scope() as session:
                        rows = await ItemRepository(session).list_deleted_identities(
                            self.server.id
                        )
                    self._deleted_index = MatchIndex().add_all(rows)
        return self._deleted_index

    def forget_deleted_item(self, item_id: str) -> None:
        """Drop an item from the deleted index (migrated away or came back)."""
        if self._deleted_index is not None:
            self._deleted_index.discard(item_id)
