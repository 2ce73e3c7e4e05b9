"""
Search Routes

Ranked fuzzy search and autocomplete over exercises and lexicon items.
Index failures never surface here: the executor degrades to a substring
scan, so clients always get a (possibly less precise) result page.
"""

from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Query, status

from .dependencies import get_search_executor
from .models import SuggestionsResponse
from ..search.executor import SearchExecutor
from ..search.models import DocumentKind, SearchFilters, SearchPage

router = APIRouter(prefix="/search", tags=["search"])


@router.get(
    "",
    response_model=SearchPage,
    summary="Ranked fuzzy search",
    status_code=status.HTTP_200_OK,
)
async def search(
    executor: Annotated[SearchExecutor, Depends(get_search_executor)],
    q: Annotated[Optional[str], Query(max_length=200)] = None,
    kind: Optional[DocumentKind] = None,
    tags: Annotated[List[str], Query()] = [],
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 12,
) -> SearchPage:
    """
    Search active documents.

    Parameters
    ----------
    q : Optional[str]
        Free text. Without it, results are the most recently updated
        documents.
    kind : Optional[DocumentKind]
        Restrict to exercises or lexicon items.
    tags : List[str]
        Every listed tag must be present.
    """
    filters = SearchFilters(kind=kind, status="active", tags=tags)
    return await executor.search(q, filters, page=page, page_size=page_size)


@router.get(
    "/suggestions",
    response_model=SuggestionsResponse,
    summary="Search-as-you-type name suggestions",
)
async def suggestions(
    executor: Annotated[SearchExecutor, Depends(get_search_executor)],
    q: Annotated[str, Query(max_length=100)] = "",
    limit: Annotated[Optional[int], Query(ge=1, le=20)] = None,
) -> SuggestionsResponse:
    names = await executor.suggestions(q, limit=limit)
    return SuggestionsResponse(query=q, suggestions=names)
