"""
Request-scoped dependencies.

Long-lived components (database, index, cache, search executor) are built
once by the application factory and stored on ``app.state``; these
helpers hand them to routes and let tests swap them through
``app.dependency_overrides``.
"""

from __future__ import annotations

from typing import AsyncGenerator, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..cache.store import ResultCache
from ..db.session import iter_session
from ..search.executor import SearchExecutor
from ..search.index import SearchIndex


def get_search_index(request: Request) -> Optional[SearchIndex]:
    return request.app.state.search_index


def get_cache(request: Request) -> ResultCache:
    return request.app.state.cache


def get_search_executor(request: Request) -> SearchExecutor:
    return request.app.state.search_executor


async def get_async_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    async for session in iter_session(request.app.state.database):
        yield session
