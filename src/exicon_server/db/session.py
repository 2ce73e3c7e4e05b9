"""
Database Session Management

Provides the async SQLAlchemy engine and session factory. A ``Database``
is constructed explicitly by each entry point (API app, batch CLI, tests)
instead of at import time.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, AsyncIterator

from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
)

from .models import Base


class Database:
    """
    Owner of one async engine and its session factory.

    Parameters
    ----------
    url : str
        SQLAlchemy async URL, e.g. ``postgresql+asyncpg://...`` or
        ``sqlite+aiosqlite://`` in tests.
    **engine_kwargs
        Passed through to ``create_async_engine``.
    """

    def __init__(self, url: str, **engine_kwargs: Any) -> None:
        if url.startswith("postgresql"):
            engine_kwargs.setdefault("pool_pre_ping", True)
            engine_kwargs.setdefault("pool_size", 5)
            engine_kwargs.setdefault("max_overflow", 10)

        self.engine: AsyncEngine = create_async_engine(
            url,
            echo=False,  # Set True for SQL debugging
            **engine_kwargs,
        )
        self.sessionmaker = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Session scope that commits on success and rolls back on error.
        """
        async with self.sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()


async def iter_session(database: Database) -> AsyncGenerator[AsyncSession, None]:
    """
    Generator form of ``Database.session`` for FastAPI dependencies.

    Usage:
        async def get_session(request: Request):
            async for session in iter_session(request.app.state.database):
                yield session
    """
    async with database.session() as session:
        yield session
