import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy import event

from epg_catchup.models import Base

logger = logging.getLogger(__name__)


def _create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create async session factory from engine"""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False,
    )


class CacheDatabase:
    """
    SQLite database holding the EPG cache.

    Owns its engine and session factory; call init() before use and close()
    on shutdown.
    """

    def __init__(self, database_path: str):
        self.database_path = database_path
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def is_initialized(self) -> bool:
        return self._session_factory is not None

    def get_session_factory(self) -> async_sessionmaker[AsyncSession]:
        """Get the session factory (initialized in init)"""
        if self._session_factory is None:
            raise RuntimeError("Database not initialized. Call init() during startup.")
        return self._session_factory

    async def init(self) -> None:
        """Initialize database schema and engine"""
        if self._engine is not None:
            return

        logger.info(f"Initializing cache database at {self.database_path}")

        self._engine = create_async_engine(
            f"sqlite+aiosqlite:///{self.database_path}",
            echo=False,
            future=True,
            pool_pre_ping=True,
            connect_args={"timeout": 30, "check_same_thread": False},
        )

        def configure_sqlite(dbapi_conn, _):
            """Configure SQLite connection parameters"""
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode = WAL")
            cursor.execute("PRAGMA synchronous = NORMAL")
            # Serialized EPG payloads are large; 64MB page cache
            cursor.execute("PRAGMA cache_size = -64000")
            cursor.close()

        event.listen(self._engine.sync_engine, "connect", configure_sqlite)

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self._session_factory = _create_session_factory(self._engine)

        logger.info("Cache database initialized successfully")

    async def close(self) -> None:
        """Close database connections on shutdown"""
        if self._engine:
            await self._engine.dispose()
            logger.info("Cache database connections closed")
        self._engine = None
        self._session_factory = None

    @asynccontextmanager
    async def session_scope(self) -> AsyncIterator[AsyncSession]:
        """Provide an async session wrapped in a transaction (auto commit/rollback)."""
        session_factory = self.get_session_factory()

        async with session_factory() as session:
            async with session.begin():
                yield session
