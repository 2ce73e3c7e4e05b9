"""
Document Routes

Read paths for listings, a single document, its similar items and tag
aggregates. Every response is memoized in the shared result cache under
the keys the invalidation hooks know about.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from .dependencies import get_async_session, get_cache
from .models import (
    AliasModel,
    DocumentDetail,
    PopularTagsResponse,
    SimilarResponse,
    TagCount,
)
from ..cache import keys
from ..cache.store import ResultCache
from ..config import settings
from ..db.models import Document
from ..db.repository import DocumentRepository
from ..search.models import DocumentKind, SearchFilters, SearchPage

router = APIRouter(tags=["documents"])


def _detail(doc: Document) -> DocumentDetail:
    return DocumentDetail(
        id=doc.id,
        kind=doc.kind,
        slug=doc.slug or doc.id,
        name=doc.name,
        aliases=[AliasModel(name=name) for name in doc.alias_names],
        description=doc.description,
        text=doc.text,
        tags=list(doc.tags or []),
        status=doc.status,
        referenced_slugs=list(doc.referenced_slugs or []),
        referenced_by=list(doc.referenced_by or []),
        created_at=doc.created_at,
        updated_at=doc.updated_at,
    )


async def _active_document(
    repository: DocumentRepository,
    kind: str,
    slug: str,
) -> Document:
    doc = await repository.get_by_slug(kind, slug)
    if doc is None or doc.status != "active":
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No active {kind} with slug '{slug}'",
        )
    return doc


@router.get("/documents/{kind}/{slug}", response_model=DocumentDetail)
async def get_document(
    kind: DocumentKind,
    slug: str,
    session: Annotated[AsyncSession, Depends(get_async_session)],
    cache: Annotated[ResultCache, Depends(get_cache)],
) -> DocumentDetail:
    cache_key = keys.detail(kind, slug)
    cached = cache.get(cache_key)
    if cached is not None:
        return cached

    doc = await _active_document(DocumentRepository(session), kind, slug)
    detail = _detail(doc)
    cache.set(cache_key, detail, ttl=settings.cache.detail_ttl_seconds)
    return detail


@router.get("/documents/{kind}/{slug}/similar", response_model=SimilarResponse)
async def get_similar(
    kind: DocumentKind,
    slug: str,
    session: Annotated[AsyncSession, Depends(get_async_session)],
    cache: Annotated[ResultCache, Depends(get_cache)],
    limit: Annotated[int, Query(ge=1, le=24)] = 8,
) -> SimilarResponse:
    repository = DocumentRepository(session)
    doc = await _active_document(repository, kind, slug)

    cache_key = keys.similar(doc.id, doc.tags or [], limit)
    cached = cache.get(cache_key)
    if cached is not None:
        return cached

    response = SimilarResponse(
        slug=slug,
        results=await repository.similar_by_tags(doc, limit=limit),
    )
    cache.set(cache_key, response, ttl=settings.cache.similar_ttl_seconds)
    return response


@router.get("/tags/popular", response_model=PopularTagsResponse)
async def popular_tags(
    session: Annotated[AsyncSession, Depends(get_async_session)],
    cache: Annotated[ResultCache, Depends(get_cache)],
) -> PopularTagsResponse:
    cache_key = keys.popular_tags()
    cached = cache.get(cache_key)
    if cached is not None:
        return cached

    ranked = await DocumentRepository(session).popular_tags()
    response = PopularTagsResponse(tags=[TagCount(tag=t, count=c) for t, c in ranked])
    cache.set(cache_key, response, ttl=settings.cache.popular_tags_ttl_seconds)
    return response


@router.get("/documents", response_model=SearchPage)
async def list_documents(
    session: Annotated[AsyncSession, Depends(get_async_session)],
    cache: Annotated[ResultCache, Depends(get_cache)],
    kind: Optional[DocumentKind] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[Optional[int], Query(ge=1, le=100)] = None,
) -> SearchPage:
    """Active documents, most recently updated first."""
    page_size = page_size or settings.listing_page_size
    cache_key = keys.listing(kind, "active", page, page_size)
    cached = cache.get(cache_key)
    if cached is not None:
        return cached

    results, total = await DocumentRepository(session).list_documents(
        SearchFilters(kind=kind, status="active"),
        offset=(page - 1) * page_size,
        limit=page_size,
    )
    response = SearchPage(results=results, total_count=total, page=page, page_size=page_size)
    cache.set(cache_key, response, ttl=settings.cache.listing_ttl_seconds)
    return response
