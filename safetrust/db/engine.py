"""Database engine configuration."""

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from safetrust.core.config import settings


def create_db_engine(database_url: str | None = None, echo: bool = False) -> AsyncEngine:
    """Create an async SQLAlchemy engine."""
    url = database_url or settings.DATABASE_URL
    if url.startswith("sqlite"):
        # SQLite file databases are shared between the event loop and aiosqlite's thread
        return create_async_engine(url, echo=echo, connect_args={"check_same_thread": False})
    return create_async_engine(
        url,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=5,
        max_overflow=10,
        echo=echo,
    )
