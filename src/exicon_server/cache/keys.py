"""
Cache key builders.

Every read path that memoizes a result builds its key here so the
invalidation hooks can find them again.
"""

from __future__ import annotations

from typing import Iterable, Optional

from ..search.models import SearchFilters
from ..search.query_builder import normalize_query

SEARCH_PREFIX = "search:"
SUGGESTIONS_PREFIX = "suggestions:"


def listing(kind: Optional[str], status: str, page: int, page_size: int) -> str:
    return f"documents:all:{kind or 'all'}:{status}:{page}:{page_size}"


def detail(kind: str, slug: str) -> str:
    return f"document:slug:{kind}:{slug}"


def similar(document_id: str, tags: Iterable[str], limit: int) -> str:
    return f"documents:similar:{document_id}:{'-'.join(sorted(tags))}:{limit}"


def popular_tags() -> str:
    return "tags:popular"


def search(query: Optional[str], filters: SearchFilters, page: int, page_size: int) -> str:
    text = normalize_query(query).lower()
    return f"{SEARCH_PREFIX}{text}:{filters.cache_fragment()}:{page}:{page_size}"


def suggestions(query: str, limit: int) -> str:
    return f"{SUGGESTIONS_PREFIX}{normalize_query(query).lower()}:{limit}"
