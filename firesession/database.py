"""Database configuration and connection management."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from firesession.config import Settings
from firesession.models import metadata


def to_async_url(database_url: str) -> str:
    """Convert a sync PostgreSQL URL to its asyncpg form."""
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


class Database:
    """
    Engine and session factory for the credential store.

    Constructed once at process start and passed to whatever needs it;
    there is no module-level connection cache.
    """

    def __init__(self, database_url: str, *, echo: bool = False, **engine_kwargs: Any):
        """Create the async engine with connection pooling for PostgreSQL."""
        self.url = to_async_url(database_url)

        if self.url.startswith("postgresql+asyncpg://"):
            pool_kwargs: dict[str, Any] = {
                "pool_pre_ping": True,
                "pool_size": 10,
                "max_overflow": 20,
                "pool_recycle": 3600,
            }
            pool_kwargs.update(engine_kwargs)
            engine_kwargs = pool_kwargs

        self.engine: AsyncEngine = create_async_engine(self.url, echo=echo, **engine_kwargs)
        self.sessionmaker = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        """Build the database from application settings."""
        engine_kwargs: dict[str, Any] = {}
        if to_async_url(settings.database_url).startswith("postgresql+asyncpg://"):
            engine_kwargs["connect_args"] = {
                "server_settings": {"application_name": settings.app_name},
            }
        return cls(settings.database_url, echo=settings.debug, **engine_kwargs)

    @property
    def dialect_name(self) -> str:
        """Name of the SQL dialect behind the engine."""
        return self.engine.dialect.name

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Open a session, rolling back on error."""
        async with self.sessionmaker() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        """Create all tables. Used by tests and first-time setup."""
        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    async def check_connection(self) -> bool:
        """Check if database connection is healthy."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception:
            return False

    async def dispose(self) -> None:
        """Close all pooled connections."""
        await self.engine.dispose()
