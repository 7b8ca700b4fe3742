"""Process lifecycle for sync jobs.

Schedulers (cron, a worker loop, a one-off script) don't build Database or
SyncDispatcher themselves. They enter sync_runtime() once, run jobs through the
yielded dispatcher and let the context manager close the engine.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from sqlalchemy.engine import make_url

from jellysync.application.services.sync import SyncDispatcher
from jellysync.application.services.sync.coordinator import ClientFactory
from jellysync.config import Settings, get_settings
from jellysync.domain.entities import SyncResult, SyncType
from jellysync.domain.exceptions import ConfigurationError
from jellysync.infrastructure.integrations import JellyfinClient
from jellysync.infrastructure.observability import configure_logging
from jellysync.infrastructure.persistence import Database, ServerRepository

logger = logging.getLogger(__name__)


def _sqlite_db_path(database_url: str) -> Path | None:
    """File path of a SQLite URL, None for other backends and in-memory databases."""
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return None
    if not url.database or url.database == ":memory:":
        return None
    return Path(url.database)


# Hey future me, this runs BEFORE the engine exists. SQLite creates the .db plus -journal/-wal
# files next to each other, so a missing parent directory only shows up later as a cryptic
# "unable to open database file" in the middle of a sync. Fail here with a clear message.
def _validate_sqlite_path(settings: Settings) -> None:
    db_path = _sqlite_db_path(settings.database.url)
    if db_path is None:
        return
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ConfigurationError(
            f"Unable to create SQLite database directory '{db_path.parent}': {exc}. "
            "Update JELLYSYNC_DATABASE__URL or adjust directory permissions."
        ) from exc
    logger.debug("Ensured SQLite parent directory exists: %s", db_path.parent)


@asynccontextmanager
async def sync_runtime(
    settings: Settings | None = None,
    client_factory: ClientFactory = JellyfinClient,
) -> AsyncGenerator[SyncDispatcher, None]:
    """Configure logging, open the database and yield a dispatcher.

    Args:
        settings: Settings to use (defaults to get_settings())
        client_factory: Builds the media server client per job

    Yields:
        SyncDispatcher bound to the opened database
    """
    settings = settings or get_settings()
    configure_logging(
        log_level=settings.log_level,
        json_format=settings.observability.log_json_format,
        app_name=settings.app_name,
    )
    logger.info("Starting sync runtime: %s", settings.app_name)

    _validate_sqlite_path(settings)
    db = Database(settings)
    try:
        yield SyncDispatcher(db, settings, client_factory=client_factory)
    finally:
        logger.info("Shutting down sync runtime")
        await db.close()


async def sync_all_servers(
    dispatcher: SyncDispatcher, sync_type: SyncType | str, **options: Any
) -> dict[int, SyncResult[Any]]:
    """Run one sync type against every configured server, one server at a time.

    Returns:
        Results keyed by server id
    """
    async with dispatcher.database.session_scope() as session:
        servers = await ServerRepository(session).list_all()

    results: dict[int, SyncResult[Any]] = {}
    for server in servers:
        results[server.id] = await dispatcher.run(server.id, sync_type, **options)
    logger.info(
        "sync.all_servers_done",
        extra={
            "sync_type": SyncType(sync_type).value,
            "servers": len(servers),
            "statuses": {sid: r.status.value for sid, r in results.items()},
        },
    )
    return results
