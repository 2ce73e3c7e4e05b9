"""
Search Executor

Runs searches against the full-text index and degrades to a substring
scan of the document store when the index is absent or fails.

Flow
----
1. Consult the result cache (normalized query + filters + page).
2. No free text: recency listing from the store.
3. Free text: ranked index search in a worker thread, or the substring
   scan on any index failure. Degraded results are logged and not cached.
4. Paginate by offset/limit; ``total_count`` covers the filtered set.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from ..cache import keys
from ..cache.store import ResultCache
from ..config import SearchConfig
from ..db.repository import DocumentRepository
from ..db.session import Database
from .index import SearchIndex
from .models import SearchFilters, SearchPage
from .query_builder import CompoundQuery, build_query, normalize_query

logger = logging.getLogger("exicon.search")


class SearchExecutor:
    """
    Parameters
    ----------
    index : Optional[SearchIndex]
        Full-text index; ``None`` means no index is configured.
    database : Database
        Document store used for listings and the substring fallback.
    config : SearchConfig
        Immutable tuning snapshot.
    cache : Optional[ResultCache]
        Shared result cache; caching is skipped when ``None``.
    """

    def __init__(
        self,
        index: Optional[SearchIndex],
        database: Database,
        config: SearchConfig,
        cache: Optional[ResultCache] = None,
    ) -> None:
        self._index = index
        self._database = database
        self._config = config
        self._cache = cache

    @property
    def config(self) -> SearchConfig:
        return self._config

    def _caching(self) -> bool:
        return self._cache is not None and self._config.performance.enable_caching

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(
        self,
        query: Optional[str],
        filters: Optional[SearchFilters] = None,
        page: int = 1,
        page_size: int = 12,
    ) -> SearchPage:
        """
        Search or list documents.

        Never raises for index problems; those degrade to the substring
        scan. Store errors propagate.
        """
        filters = filters or SearchFilters()
        page = max(page, 1)
        page_size = max(page_size, 1)
        config = self._config

        cache_key = keys.search(query, filters, page, page_size)
        if self._caching():
            cached = self._cache.get(cache_key)
            if cached is not None:
                return cached

        compound = build_query(query, config)
        if config.debug.log_queries:
            logger.info("Search query=%r filters=%s page=%s", query, filters, page)

        if compound is None:
            result = await self._listing(filters, page, page_size)
            degraded = False
        else:
            result, degraded = await self._ranked(compound, filters, page, page_size)

        if self._caching() and not degraded:
            self._cache.set(cache_key, result, ttl=config.performance.cache_seconds)
        return result

    async def _listing(self, filters: SearchFilters, page: int, page_size: int) -> SearchPage:
        async with self._database.session() as session:
            results, total = await DocumentRepository(session).list_documents(
                filters,
                offset=(page - 1) * page_size,
                limit=page_size,
            )
        return SearchPage(results=results, total_count=total, page=page, page_size=page_size)

    async def _ranked(
        self,
        compound: CompoundQuery,
        filters: SearchFilters,
        page: int,
        page_size: int,
    ) -> tuple:
        """Returns ``(page, degraded)``."""
        config = self._config

        if self._index is None or not self._index.is_available():
            return await self._degrade(compound.text, filters, page, page_size, "index unavailable")

        try:
            hits = await asyncio.to_thread(self._index.search, compound, filters)
        except Exception as exc:
            return await self._degrade(compound.text, filters, page, page_size, str(exc))

        if config.debug.log_scores:
            for hit in hits:
                logger.info(
                    "score=%.4f id=%s name=%r fields=%s",
                    hit.score,
                    hit.document.id,
                    hit.document.name,
                    sorted(hit.matched_fields),
                )

        offset = (page - 1) * page_size
        results = [hit.document for hit in hits[offset:offset + page_size]]
        return (
            SearchPage(results=results, total_count=len(hits), page=page, page_size=page_size),
            False,
        )

    async def _degrade(
        self,
        text: str,
        filters: SearchFilters,
        page: int,
        page_size: int,
        reason: str,
    ) -> tuple:
        if not self._config.debug.enable_fallback:
            logger.error("Search index failed and fallback is disabled: %s", reason)
            return SearchPage(page=page, page_size=page_size), True

        logger.warning("Search degraded to substring scan (%s) for query %r", reason, text)
        async with self._database.session() as session:
            matches = await DocumentRepository(session).substring_search(text, filters)

        offset = (page - 1) * page_size
        return (
            SearchPage(
                results=matches[offset:offset + page_size],
                total_count=len(matches),
                page=page,
                page_size=page_size,
            ),
            True,
        )

    # ------------------------------------------------------------------
    # Autocomplete
    # ------------------------------------------------------------------

    async def suggestions(self, query: Optional[str], limit: Optional[int] = None) -> List[str]:
        """
        Name suggestions for search-as-you-type. Queries shorter than
        ``min_query_length`` (or autocomplete being disabled) yield ``[]``.
        """
        autocomplete = self._config.autocomplete
        text = normalize_query(query)
        if not autocomplete.enabled or len(text) < autocomplete.min_query_length:
            return []

        limit = limit or autocomplete.max_suggestions
        cache_key = keys.suggestions(text, limit)
        if self._caching():
            cached = self._cache.get(cache_key)
            if cached is not None:
                return cached

        names: Optional[List[str]] = None
        if self._index is not None and self._index.is_available():
            try:
                names = await asyncio.to_thread(
                    self._index.suggest,
                    text,
                    max_edits=autocomplete.max_edits,
                    prefix_length=self._config.fuzzy.prefix_length,
                    limit=limit,
                )
            except Exception as exc:
                logger.warning("Suggestion lookup degraded to prefix scan: %s", exc)

        if names is None:
            async with self._database.session() as session:
                names = await DocumentRepository(session).suggest_names(text, limit)
        elif self._caching():
            self._cache.set(cache_key, names, ttl=self._config.performance.cache_seconds)

        return names
