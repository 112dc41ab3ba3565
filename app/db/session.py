"""
Database session and engine configuration.

This file sets up the async database connection using SQLAlchemy + asyncpg.
The engine is owned by a process-scoped Database object that the API
lifespan (or the worker) creates at startup and disposes on shutdown.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from app.db.base import Base


class Database:
    """Engine + session factory with an explicit lifecycle."""

    def __init__(self, url: str, *, echo: bool = False, **engine_kwargs: Any):
        self.url = url
        self.echo = echo
        self.engine_kwargs = engine_kwargs
        self._engine: Optional[AsyncEngine] = None
        self._session_maker: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database is not connected; call connect() first")
        return self._engine

    def connect(self) -> "Database":
        """Create the engine. Safe to call more than once."""
        if self._engine is not None:
            return self

        kwargs = dict(self.engine_kwargs)
        if self.is_sqlite:
            # in-memory databases must share one connection across sessions
            if ":memory:" in self.url or self.url.rstrip("/").endswith("sqlite+aiosqlite:"):
                kwargs.setdefault("poolclass", StaticPool)
            kwargs.setdefault("connect_args", {"check_same_thread": False})
        else:
            kwargs.setdefault("pool_pre_ping", True)

        self._engine = create_async_engine(self.url, echo=self.echo, future=True, **kwargs)
        self._session_maker = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,  # Keeps data accessible after commit
        )
        return self

    async def dispose(self) -> None:
        """Close pooled connections; the object can be reconnected later."""
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._session_maker = None

    def session_maker(self) -> async_sessionmaker[AsyncSession]:
        if self._session_maker is None:
            raise RuntimeError("Database is not connected; call connect() first")
        return self._session_maker

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Context manager helper for async DB sessions (commit on success)."""
        async with self.session_maker()() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def ping(self) -> bool:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception:  # noqa: BLE001
            return False

    async def create_all(self) -> None:
        """Dev/test convenience. In prod, prefer Alembic migrations."""
        import app.models  # noqa: F401  registers tables on Base.metadata

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)


def dialect_insert(session: AsyncSession, table):
    """INSERT construct that supports ON CONFLICT for the bound dialect."""
    name = session.get_bind().dialect.name
    if name == "postgresql":
        return postgresql.insert(table)
    if name == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"ON CONFLICT inserts are not supported on {name}")
