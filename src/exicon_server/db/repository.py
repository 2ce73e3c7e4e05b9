"""
Document Repository

Query and update operations over the ``document`` table: listings,
substring scans for the search fallback, batch eligibility, slug upkeep
and cross-reference bookkeeping.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import PersistenceError
from ..search.models import DocumentSummary, IndexedDocument, SearchFilters
from ..text.references import referenced_slugs
from ..text.slugs import slugify, unique_slug
from .models import Document

logger = logging.getLogger("exicon.db.repository")

UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "aliases",
        "description",
        "text",
        "tags",
        "status",
        "referenced_slugs",
        "referenced_by",
    }
)


# ---------------------------------------------------------------------
# Projections
# ---------------------------------------------------------------------

def _timestamp(value: Optional[datetime]) -> float:
    if value is None:
        return 0.0
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def to_summary(doc: Document, score: Optional[float] = None) -> DocumentSummary:
    return DocumentSummary(
        id=doc.id,
        kind=doc.kind,
        slug=doc.slug or doc.id,
        name=doc.name,
        description=doc.description,
        tags=list(doc.tags or []),
        status=doc.status,
        updated_at=doc.updated_at,
        score=score,
    )


def to_indexed(doc: Document) -> IndexedDocument:
    return IndexedDocument(
        id=doc.id,
        kind=doc.kind,
        slug=doc.slug or doc.id,
        name=doc.name,
        aliases=doc.alias_names,
        description=doc.description,
        text=doc.text,
        tags=list(doc.tags or []),
        status=doc.status,
        updated_at=doc.updated_at,
    )


def _by_recency(docs: Iterable[Document]) -> List[Document]:
    return sorted(docs, key=lambda d: (-_timestamp(d.updated_at), d.id))


def _has_tags(doc: Document, tags: Sequence[str]) -> bool:
    doc_tags = {t.strip().lower() for t in (doc.tags or [])}
    return all(tag in doc_tags for tag in tags)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class DocumentRepository:
    """
    Data access for exercises and lexicon items.

    Parameters
    ----------
    session : AsyncSession
        Session the repository reads and writes through. Committing is
        left to the caller's session scope.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get(self, doc_id: str) -> Optional[Document]:
        return await self._session.get(Document, doc_id)

    async def get_by_slug(self, kind: str, slug: str) -> Optional[Document]:
        stmt = select(Document).where(Document.kind == kind, Document.slug == slug)
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def _filtered(self, filters: SearchFilters, *clauses: Any) -> List[Document]:
        stmt = select(Document).where(Document.status == filters.status, *clauses)
        if filters.kind:
            stmt = stmt.where(Document.kind == filters.kind)
        result = await self._session.execute(stmt)
        docs = list(result.scalars().all())
        if filters.tags:
            docs = [d for d in docs if _has_tags(d, filters.tags)]
        return docs

    # ------------------------------------------------------------------
    # Listings and Scans
    # ------------------------------------------------------------------

    async def list_documents(
        self,
        filters: SearchFilters,
        offset: int = 0,
        limit: int = 12,
    ) -> Tuple[List[DocumentSummary], int]:
        """
        Recency-ordered listing (``updated_at`` desc, then ``id`` asc).

        Returns the requested page and the size of the whole filtered set.
        """
        if not filters.tags:
            base = select(Document).where(Document.status == filters.status)
            if filters.kind:
                base = base.where(Document.kind == filters.kind)

            count_stmt = select(func.count()).select_from(base.subquery())
            total = (await self._session.execute(count_stmt)).scalar() or 0

            page_stmt = (
                base.order_by(Document.updated_at.desc(), Document.id.asc())
                .offset(offset)
                .limit(limit)
            )
            rows = (await self._session.execute(page_stmt)).scalars().all()
            return [to_summary(d) for d in rows], total

        docs = _by_recency(await self._filtered(filters))
        return [to_summary(d) for d in docs[offset:offset + limit]], len(docs)

    async def substring_search(
        self,
        text: str,
        filters: SearchFilters,
    ) -> List[DocumentSummary]:
        """
        Case-insensitive literal scan over name, description and text.

        Name matches come first; each group is ordered by recency.
        """
        needle = text.strip()
        if not needle:
            return []

        pattern = f"%{_escape_like(needle)}%"
        docs = await self._filtered(
            filters,
            or_(
                Document.name.ilike(pattern, escape="\\"),
                Document.description.ilike(pattern, escape="\\"),
                Document.text.ilike(pattern, escape="\\"),
            ),
        )

        lowered = needle.lower()
        docs.sort(
            key=lambda d: (
                lowered not in d.name.lower(),
                -_timestamp(d.updated_at),
                d.id,
            )
        )
        return [to_summary(d) for d in docs]

    async def suggest_names(self, prefix: str, limit: int) -> List[str]:
        """Names of active documents starting with ``prefix``."""
        pattern = f"{_escape_like(prefix.strip())}%"
        stmt = (
            select(Document.name)
            .where(Document.status == "active", Document.name.ilike(pattern, escape="\\"))
            .order_by(Document.name.asc())
            .distinct()
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [row[0] for row in result.all()]

    async def similar_by_tags(self, doc: Document, limit: int = 8) -> List[DocumentSummary]:
        """
        Active documents of the same kind ranked by shared tag count, then
        recency.
        """
        tags = {t.lower() for t in (doc.tags or [])}
        if not tags:
            return []

        candidates = await self._filtered(
            SearchFilters(kind=doc.kind, status="active"),
            Document.id != doc.id,
        )
        scored = []
        for other in candidates:
            shared = len(tags & {t.lower() for t in (other.tags or [])})
            if shared:
                scored.append((shared, other))
        scored.sort(key=lambda p: (-p[0], -_timestamp(p[1].updated_at), p[1].id))
        return [to_summary(d) for _, d in scored[:limit]]

    async def popular_tags(self, limit: int = 20) -> List[Tuple[str, int]]:
        """Tag usage counts over active documents, most used first."""
        stmt = select(Document.tags).where(Document.status == "active")
        result = await self._session.execute(stmt)

        counts: Dict[str, int] = {}
        for (tags,) in result.all():
            for tag in tags or []:
                key = tag.strip().lower()
                if key:
                    counts[key] = counts.get(key, 0) + 1
        ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
        return ranked[:limit]

    async def all_for_index(self) -> List[IndexedDocument]:
        result = await self._session.execute(select(Document))
        return [to_indexed(d) for d in result.scalars().all()]

    async def count_by_kind_and_status(self) -> Dict[str, Dict[str, int]]:
        stmt = select(Document.kind, Document.status, func.count()).group_by(
            Document.kind, Document.status
        )
        result = await self._session.execute(stmt)
        stats: Dict[str, Dict[str, int]] = {}
        for kind, status, count in result.all():
            stats.setdefault(kind, {})[status] = count
        return stats

    # ------------------------------------------------------------------
    # Batch Eligibility
    # ------------------------------------------------------------------

    async def find_unprocessed(
        self,
        kind: str,
        source_fields: Sequence[str],
        exclude_ids: Iterable[str],
        limit: int,
    ) -> List[Document]:
        """
        Next documents of ``kind`` with non-empty text in any of
        ``source_fields`` whose id is not in ``exclude_ids``. Ordered by
        creation time, then id, so pages are stable across runs.
        """
        has_source = or_(
            *(
                and_(
                    getattr(Document, field).is_not(None),
                    getattr(Document, field) != "",
                )
                for field in source_fields
            )
        )
        stmt = select(Document).where(Document.kind == kind, has_source)

        excluded = list(exclude_ids)
        if excluded:
            stmt = stmt.where(Document.id.not_in(excluded))

        stmt = stmt.order_by(Document.created_at.asc(), Document.id.asc()).limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _taken_slugs(self, kind: str, exclude_id: Optional[str] = None) -> set:
        stmt = select(Document.slug).where(Document.kind == kind, Document.slug.is_not(None))
        if exclude_id:
            stmt = stmt.where(Document.id != exclude_id)
        result = await self._session.execute(stmt)
        return {row[0] for row in result.all()}

    async def add(self, **fields: Any) -> Document:
        """
        Insert a document. A missing slug is derived from the name and
        made unique within the document's kind.
        """
        doc = Document(**fields)
        if not doc.kind:
            doc.kind = "exercise"
        if not doc.slug:
            doc.slug = unique_slug(slugify(doc.name), await self._taken_slugs(doc.kind))
        self._session.add(doc)
        await self._session.flush()
        return doc

    async def update_fields(self, doc_id: str, values: Dict[str, Any]) -> Document:
        """
        Set the given fields on one document and flush.

        Raises
        ------
        PersistenceError
            If the document does not exist or a field is not updatable.
        """
        unknown = set(values) - UPDATABLE_FIELDS
        if unknown:
            raise PersistenceError(f"Fields not updatable: {', '.join(sorted(unknown))}")

        doc = await self.get(doc_id)
        if doc is None:
            raise PersistenceError(f"Document {doc_id} not found")

        for field, value in values.items():
            setattr(doc, field, value)
        await self._session.flush()
        return doc

    async def rename(self, doc_id: str, new_name: str) -> Tuple[Document, Optional[str]]:
        """
        Change a document's name and re-derive its slug.

        The new slug is checked against the other slugs of the same kind
        before the change is flushed. Returns the document and its previous
        slug.
        """
        doc = await self.get(doc_id)
        if doc is None:
            raise PersistenceError(f"Document {doc_id} not found")

        previous = doc.slug
        taken = await self._taken_slugs(doc.kind, exclude_id=doc.id)
        doc.name = new_name
        doc.slug = unique_slug(slugify(new_name), taken)
        await self._session.flush()
        return doc, previous

    async def assign_slugs(self) -> int:
        """Give every slug-less document a unique slug. Returns the count."""
        result = await self._session.execute(
            select(Document).where(or_(Document.slug.is_(None), Document.slug == ""))
            .order_by(Document.created_at.asc(), Document.id.asc())
        )
        missing = list(result.scalars().all())

        taken: Dict[str, set] = {}
        for doc in missing:
            if doc.kind not in taken:
                taken[doc.kind] = await self._taken_slugs(doc.kind)
            doc.slug = unique_slug(slugify(doc.name), taken[doc.kind])
            taken[doc.kind].add(doc.slug)

        await self._session.flush()
        if missing:
            logger.info("Assigned slugs to %s documents", len(missing))
        return len(missing)

    async def set_references(self, doc_id: str, field: str, text: str) -> Document:
        """
        Write a linked text field and refresh the document's forward
        references from both linkable fields, description first.
        """
        doc = await self.update_fields(doc_id, {field: text})
        slugs = referenced_slugs(doc.description or "")
        for slug in referenced_slugs(doc.text or ""):
            if slug not in slugs:
                slugs.append(slug)
        doc.referenced_slugs = slugs
        await self._session.flush()
        return doc

    async def rebuild_referenced_by(self) -> int:
        """
        Recompute every document's ``referenced_by`` list from the forward
        references. Returns the number of documents whose list changed.
        """
        result = await self._session.execute(select(Document))
        docs = list(result.scalars().all())

        backlinks: Dict[str, List[str]] = {}
        for doc in docs:
            if not doc.slug:
                continue
            for slug in doc.referenced_slugs or []:
                if slug != doc.slug:
                    backlinks.setdefault(slug, []).append(doc.slug)

        changed = 0
        for doc in docs:
            new_value = sorted(set(backlinks.get(doc.slug, []))) if doc.slug else []
            if list(doc.referenced_by or []) != new_value:
                doc.referenced_by = new_value
                changed += 1

        await self._session.flush()
        logger.info("Rebuilt reverse references; %s documents changed", changed)
        return changed
