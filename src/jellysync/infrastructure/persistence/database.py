"""Async engine and transactional sessions."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from jellysync.config import Settings
from jellysync.infrastructure.persistence.models import Base

logger = logging.getLogger(__name__)

# Seconds a SQLite connection waits for the write lock before "database is locked"
SQLITE_LOCK_TIMEOUT = 30


class Database:
    """Owns the async engine; hands out one transaction per session_scope()."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        db = settings.database
        self.backend = make_url(db.url).get_backend_name()

        engine_kwargs: dict[str, Any] = {"echo": db.echo, "pool_pre_ping": db.pool_pre_ping}
        if self.backend == "postgresql":
            engine_kwargs.update(
                pool_size=db.pool_size,
                max_overflow=db.max_overflow,
                pool_timeout=db.pool_timeout,
                pool_recycle=db.pool_recycle,
            )
        elif self.backend == "sqlite":
            engine_kwargs["connect_args"] = {
                "check_same_thread": False,
                "timeout": SQLITE_LOCK_TIMEOUT,
            }

        self._engine = create_async_engine(db.url, **engine_kwargs)
        if self.backend == "sqlite":
            self._install_sqlite_pragmas()

        self._session_factory = async_sessionmaker(
            self._engine, class_=AsyncSession, expire_on_commit=False
        )
        logger.debug("database.engine_created", extra={"backend": self.backend})

    # Yo, foreign_keys is OFF by default in SQLite. Without it "ON DELETE SET NULL" on
    # sessions.item_id and the CASCADE on hidden_recommendations silently do nothing, and the
    # migration tests would pass for the wrong reason.
    def _install_sqlite_pragmas(self) -> None:
        @event.listens_for(self._engine.sync_engine, "connect")
        def _on_connect(dbapi_conn: Any, _connection_record: Any) -> None:
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    # Hey future me, every sync worker opens ITS OWN session_scope per element. Sessions are
    # not safe to share between concurrent tasks - one AsyncSession == one task, always.
    @asynccontextmanager
    async def session_scope(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session; commit on success, roll back and re-raise on error."""
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def close(self) -> None:
        await self._engine.dispose()

    async def create_tables(self) -> None:
        """Create the schema from the ORM metadata (tests; production runs Alembic)."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_tables(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
