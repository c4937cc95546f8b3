"""Database session management."""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from safetrust.core.logging import get_logger
from safetrust.db.engine import create_db_engine

logger = get_logger(__name__)


class Database:
    """Owns one async engine and its session factory.

    Callers manage the lifecycle explicitly: ``await db.open()`` before use,
    ``await db.close()`` on shutdown.
    """

    def __init__(
        self,
        database_url: str | None = None,
        base: type[DeclarativeBase] | None = None,
        engine: AsyncEngine | None = None,
    ):
        self._database_url = database_url
        self._base = base
        self._engine = engine
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database is not open")
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            raise RuntimeError("Database is not open")
        return self._session_factory

    @property
    def is_open(self) -> bool:
        return self._session_factory is not None

    async def open(self, create_tables: bool = False) -> None:
        """Create the engine and session factory, optionally creating tables."""
        if self._engine is None:
            self._engine = create_db_engine(self._database_url)
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,  # Prevent lazy loading issues
            autoflush=False,
        )
        if create_tables and self._base is not None:
            async with self._engine.begin() as conn:
                await conn.run_sync(self._base.metadata.create_all)
        logger.info("Database opened", extra={"create_tables": create_tables})

    async def close(self) -> None:
        """Dispose the engine."""
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._session_factory = None
