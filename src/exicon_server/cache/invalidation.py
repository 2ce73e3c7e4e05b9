"""
Cache invalidation hooks.

Writers call these after creating, updating or deleting a document.
Invalidation is best-effort: failures are logged and never raised, since
a stale entry expires on its own while a failed write path does not
recover.
"""

from __future__ import annotations

import logging
from typing import Iterable, Protocol

from . import keys
from .store import ResultCache
from ..search.models import DOCUMENT_STATUSES

logger = logging.getLogger("exicon.cache.invalidation")


class CachedDocument(Protocol):
    id: str
    kind: str
    slug: str
    tags: Iterable[str]


def _clear_listings(cache: ResultCache, kind: str, pages: int, page_size: int) -> None:
    for page in range(1, pages + 1):
        for status in DOCUMENT_STATUSES:
            for scope in (kind, None):
                cache.delete(keys.listing(scope, status, page, page_size))


def invalidate_document(
    cache: ResultCache,
    document: CachedDocument,
    *,
    pages: int = 5,
    page_size: int = 12,
    similar_limit: int = 8,
    tags_updated: bool = False,
    previous_slug: str | None = None,
) -> None:
    """Invalidate everything derived from an updated document."""
    try:
        cache.delete(keys.detail(document.kind, document.slug))
        if previous_slug and previous_slug != document.slug:
            cache.delete(keys.detail(document.kind, previous_slug))
        _clear_listings(cache, document.kind, pages, page_size)
        cache.delete(keys.similar(document.id, document.tags or [], similar_limit))
        cache.delete_prefix(keys.SEARCH_PREFIX)
        cache.delete_prefix(keys.SUGGESTIONS_PREFIX)
        if tags_updated:
            cache.delete(keys.popular_tags())
        logger.debug("Invalidated caches for %s/%s", document.kind, document.slug)
    except Exception:
        logger.warning(
            "Cache invalidation failed for document %s", document.id, exc_info=True
        )


def invalidate_on_create(
    cache: ResultCache,
    document: CachedDocument,
    *,
    pages: int = 5,
    page_size: int = 12,
) -> None:
    """A new document shifts pagination and tag counts."""
    try:
        _clear_listings(cache, document.kind, pages, page_size)
        cache.delete(keys.popular_tags())
        cache.delete_prefix(keys.SEARCH_PREFIX)
        cache.delete_prefix(keys.SUGGESTIONS_PREFIX)
    except Exception:
        logger.warning(
            "Cache invalidation failed for new document %s", document.id, exc_info=True
        )


def invalidate_on_delete(
    cache: ResultCache,
    document: CachedDocument,
    *,
    pages: int = 5,
    page_size: int = 12,
    similar_limit: int = 8,
) -> None:
    invalidate_document(
        cache,
        document,
        pages=pages,
        page_size=page_size,
        similar_limit=similar_limit,
        tags_updated=True,
    )
