"""Database session management for OctoPrint Manager."""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import Connection
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from octoprint_manager.config import get_settings
from octoprint_manager.models.base import Base
from octoprint_manager.utils import get_logger

logger = get_logger(__name__)


def _create_schema(sync_conn: Connection) -> None:
    Base.metadata.create_all(sync_conn)
    for table in Base.metadata.sorted_tables:
        for index in table.indexes:
            index.create(sync_conn, checkfirst=True)


def build_db_url(state_db: str) -> str:
    """
    Turn the configured state database into an async SQLAlchemy URL.

    Args:
        state_db: Filesystem path or sqlite URL

    Returns:
        URL using the aiosqlite driver
    """
    if state_db.startswith("sqlite+aiosqlite://"):
        return state_db
    if state_db.startswith("sqlite://"):
        return state_db.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return f"sqlite+aiosqlite:///{state_db}"


class DatabaseManager:
    """Manages the engine and sessions for the container record store."""

    def __init__(self, db_url: str | None = None) -> None:
        """
        Initialize database manager.

        Args:
            db_url: Explicit database URL; defaults to the configured state database
        """
        self.settings = get_settings()
        self._db_url = db_url
        self._engine: AsyncEngine | None = None
        self._session_maker: async_sessionmaker[AsyncSession] | None = None

    @property
    def db_url(self) -> str:
        return self._db_url or build_db_url(self.settings.state_db)

    def get_engine(self) -> AsyncEngine:
        """
        Get or create async database engine.

        The parent directory of a file-backed database is created on first use.

        Returns:
            AsyncEngine instance
        """
        if self._engine is None:
            db_url = self.db_url
            if self._db_url is None and ":memory:" not in db_url:
                parent = os.path.dirname(os.path.abspath(self.settings.state_db))
                os.makedirs(parent, exist_ok=True)

            self._engine = create_async_engine(db_url, echo=False)
            logger.info("Database engine created", extra={"db_url": db_url})

        return self._engine

    def get_session_maker(self) -> async_sessionmaker[AsyncSession]:
        """Get or create the session maker bound to the engine."""
        if self._session_maker is None:
            self._session_maker = async_sessionmaker(
                self.get_engine(),
                class_=AsyncSession,
                expire_on_commit=False,
            )

        return self._session_maker

    async def create_tables(self) -> None:
        """
        Create all database tables and their indexes.

        ``create_all`` skips tables that already exist, so indexes are
        created separately with ``checkfirst``. A record store written before
        ports were unique gains ``ix_containers_port`` here, and startup fails
        if it already holds two records on one port.
        """
        engine = self.get_engine()
        async with engine.begin() as conn:
            await conn.run_sync(_create_schema)
        logger.info("Database tables created")

    async def close(self) -> None:
        """Close database engine."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._session_maker = None
            logger.info("Database engine closed")

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get an async database session.

        The session commits when the block exits cleanly and rolls back if
        it raises.

        Yields:
            AsyncSession instance
        """
        session_maker = self.get_session_maker()
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise


_db_manager: DatabaseManager | None = None


def get_db_manager() -> DatabaseManager:
    """
    Get global database manager instance.

    Returns:
        DatabaseManager instance
    """
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager


async def init_db() -> None:
    """Initialize database (create tables)."""
    await get_db_manager().create_tables()


async def close_db() -> None:
    """Close database connection."""
    global _db_manager
    if _db_manager:
        await _db_manager.close()
        _db_manager = None
