"""
Exicon Server Application Entry Point

This module defines the FastAPI application instance, registers all routers,
configures global exception handling, and provides a test-friendly application
factory.

Design Goals
------------
- Deterministic startup
- Explicit dependency initialization order: database, search index,
  result cache (with its sweep task), search executor
- Centralized router registration
- Global exception safety net
- Test-friendly via create_app()
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI

from .config import settings
from .core.errors import SearchBackendError, unhandled_exception_handler
from .cache.store import ResultCache
from .db.session import Database
from .search.executor import SearchExecutor
from .search.index import SearchIndex

from .api import (
    document_routes,
    health_routes,
    search_routes,
)


logger = logging.getLogger("exicon.app")


def _wire_executor(app: FastAPI) -> None:
    state = app.state
    if state.database is not None and state.cache is not None:
        state.search_executor = SearchExecutor(
            state.search_index,
            state.database,
            settings.search,
            cache=state.cache,
        )


# ---------------------------------------------------------------------
# Application Factory (Test-Friendly)
# ---------------------------------------------------------------------

def create_app(
    *,
    database: Optional[Database] = None,
    search_index: Optional[SearchIndex] = None,
    cache: Optional[ResultCache] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Components passed in are used as-is (tests hand in an in-memory
    database, a RAM index and a private cache); anything missing is built
    from settings in the startup hook.

    Returns
    -------
    FastAPI
        Fully configured FastAPI application.
    """
    app = FastAPI(
        title="exicon-server",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    app.state.database = database
    app.state.search_index = search_index
    app.state.cache = cache
    app.state.search_executor = None
    app.state.owns_database = database is None
    _wire_executor(app)

    # --------------------------------------------------------------
    # Global Exception Handling
    # --------------------------------------------------------------

    app.add_exception_handler(Exception, unhandled_exception_handler)

    # --------------------------------------------------------------
    # Router Registration
    # --------------------------------------------------------------

    app.include_router(health_routes.router)
    app.include_router(search_routes.router)
    app.include_router(document_routes.router)

    # --------------------------------------------------------------
    # Startup Hook
    # --------------------------------------------------------------

    @app.on_event("startup")
    async def _startup() -> None:
        """
        Fail-fast validation and component construction.

        A missing or unreadable search index is not fatal: search runs in
        substring-scan mode until the index is rebuilt.
        """
        logger.info("Starting exicon-server")

        # Touch critical secrets to force validation now (not at first use)
        _ = settings.openai_api_key.get_secret_value()

        state = app.state
        if state.database is None:
            state.database = Database(settings.database_url)
        if state.search_index is None:
            try:
                state.search_index = SearchIndex.open_dir(settings.search_index_dir)
            except SearchBackendError as exc:
                logger.warning("Search index unavailable, using fallback: %s", exc)
        if state.cache is None:
            state.cache = ResultCache(default_ttl=settings.cache.default_ttl_seconds)
        state.cache.start_sweeper(settings.cache.sweep_interval_seconds)
        _wire_executor(app)

        logger.info("Configuration validated successfully")

    # --------------------------------------------------------------
    # Shutdown Hook
    # --------------------------------------------------------------

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        """Stop the cache sweeper and release database connections."""
        logger.info("Shutting down exicon-server")
        if app.state.cache is not None:
            await app.state.cache.shutdown()
        if app.state.owns_database and app.state.database is not None:
            await app.state.database.dispose()

    return app


# ---------------------------------------------------------------------
# Default Application Instance (for Uvicorn/Gunicorn)
# ---------------------------------------------------------------------

app = create_app()
