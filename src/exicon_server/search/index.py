"""
Full-Text Search Index

A Whoosh-backed index over exercises and lexicon items.

Key Properties
--------------
- One index document per store document, keyed by ``id``
- Compiles backend-neutral ``CompoundQuery`` objects into boosted
  ``Or``/``Term`` queries; fuzzy clauses are expanded through the reader's
  edit-distance term lookup with an exact prefix and an expansion cap
- Deterministic ranking: score desc, then recency desc, then id asc
- Concurrency-safe writes (re-entrant lock)
- On-disk storage in production, RAM storage for tests
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from itertools import islice
from pathlib import Path
from threading import RLock
from typing import Iterable, List, Optional

from whoosh import index as whoosh_index
from whoosh.fields import ID, KEYWORD, STORED, TEXT, Schema
from whoosh.filedb.filestore import RamStorage
from whoosh.query import And, FuzzyTerm, Or, Prefix, Query, Term
from whoosh.writing import CLEAR

from ..core.errors import SearchBackendError
from .models import DocumentSummary, IndexedDocument, SearchFilters
from .query_builder import CompoundQuery

logger = logging.getLogger("exicon.search.index")


SCHEMA = Schema(
    id=ID(stored=True, unique=True),
    kind=ID(stored=True),
    slug=ID(stored=True),
    status=ID(stored=True),
    name=TEXT(stored=True),
    aliases=TEXT,
    description=TEXT(stored=True),
    text=TEXT,
    tags=KEYWORD(stored=True, commas=True, lowercase=True, scorable=True),
    updated_at=STORED,
)


@dataclass(frozen=True)
class IndexHit:
    document: DocumentSummary
    score: float
    matched_fields: frozenset


def _timestamp(value: Optional[datetime]) -> float:
    if value is None:
        return 0.0
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def _from_timestamp(value: Optional[float]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


class SearchIndex:
    """
    Wrapper around a Whoosh index.

    All reads open a fresh searcher so committed writes are visible
    immediately.
    """

    def __init__(self, ix) -> None:
        self._ix = ix
        self._lock = RLock()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def open_dir(cls, path: str) -> "SearchIndex":
        """
        Open the index stored under ``path``, creating an empty one if
        none exists yet.
        """
        directory = Path(path)
        try:
            directory.mkdir(parents=True, exist_ok=True)
            if whoosh_index.exists_in(str(directory)):
                ix = whoosh_index.open_dir(str(directory))
            else:
                ix = whoosh_index.create_in(str(directory), SCHEMA)
        except Exception as exc:
            raise SearchBackendError(
                f"Failed to open search index at {path}: {type(exc).__name__}"
            ) from exc
        return cls(ix)

    @classmethod
    def in_memory(cls) -> "SearchIndex":
        return cls(RamStorage().create_index(SCHEMA))

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def doc_count(self) -> int:
        try:
            return self._ix.doc_count()
        except Exception as exc:
            raise SearchBackendError(
                f"Failed to read index size: {type(exc).__name__}"
            ) from exc

    def is_available(self) -> bool:
        """An index with no documents is treated as absent."""
        try:
            return self.doc_count() > 0
        except SearchBackendError:
            return False

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @staticmethod
    def _fields(doc: IndexedDocument) -> dict:
        return {
            "id": doc.id,
            "kind": doc.kind,
            "slug": doc.slug,
            "status": doc.status,
            "name": doc.name,
            "aliases": "\n".join(doc.aliases),
            "description": doc.description or "",
            "text": doc.text or "",
            "tags": ",".join(t.strip().lower() for t in doc.tags if t.strip()),
            "updated_at": _timestamp(doc.updated_at),
        }

    def upsert(self, docs: Iterable[IndexedDocument]) -> int:
        """Add or replace documents. Returns the number written."""
        count = 0
        with self._lock:
            writer = self._ix.writer()
            try:
                for doc in docs:
                    writer.update_document(**self._fields(doc))
                    count += 1
            except Exception as exc:
                writer.cancel()
                raise SearchBackendError(
                    f"Failed to write documents: {type(exc).__name__}"
                ) from exc
            writer.commit()
        return count

    def delete(self, doc_id: str) -> int:
        with self._lock:
            writer = self._ix.writer()
            removed = writer.delete_by_term("id", doc_id)
            writer.commit()
        return removed

    def rebuild(self, docs: Iterable[IndexedDocument]) -> int:
        """Replace the full index contents with ``docs``."""
        count = 0
        with self._lock:
            writer = self._ix.writer()
            try:
                for doc in docs:
                    writer.add_document(**self._fields(doc))
                    count += 1
            except Exception as exc:
                writer.cancel()
                raise SearchBackendError(
                    f"Failed to rebuild index: {type(exc).__name__}"
                ) from exc
            writer.commit(mergetype=CLEAR)
        logger.info("Search index rebuilt with %s documents", count)
        return count

    # ------------------------------------------------------------------
    # Query Compilation
    # ------------------------------------------------------------------

    def _tokens(self, field: str, text: str) -> List[str]:
        return list(self._ix.schema[field].process_text(text, mode="query"))

    def compile(self, query: CompoundQuery, reader) -> Optional[Query]:
        """
        Translate a compound query into a Whoosh query.

        Returns ``None`` if no clause produced any term (for example when
        the text only holds stop words).
        """
        field_queries: List[Query] = []

        for clause in query.clauses:
            terms: List[Query] = []
            for token in self._tokens(clause.field, query.text):
                if clause.fuzzy is not None and clause.fuzzy.max_edits > 0:
                    expansions = islice(
                        reader.terms_within(
                            clause.field,
                            token,
                            clause.fuzzy.max_edits,
                            prefix=clause.fuzzy.prefix_length,
                        ),
                        clause.fuzzy.max_expansions,
                    )
                    words = sorted(set(expansions), key=lambda w: (w != token, w))
                else:
                    words = [token]
                terms.extend(
                    Term(clause.field, word, boost=clause.boost) for word in words
                )

            if terms:
                field_queries.append(Or(terms))

        if not field_queries:
            return None
        return Or(field_queries)

    @staticmethod
    def _filter_query(filters: SearchFilters) -> Query:
        parts: List[Query] = [Term("status", filters.status)]
        if filters.kind:
            parts.append(Term("kind", filters.kind))
        parts.extend(Term("tags", tag) for tag in filters.tags)
        return And(parts)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    def _summary(fields: dict, score: Optional[float]) -> DocumentSummary:
        raw_tags = fields.get("tags") or ""
        return DocumentSummary(
            id=fields["id"],
            kind=fields["kind"],
            slug=fields["slug"],
            name=fields["name"],
            description=fields.get("description") or None,
            tags=[t for t in raw_tags.split(",") if t],
            status=fields["status"],
            updated_at=_from_timestamp(fields.get("updated_at")),
            score=score,
        )

    def search(
        self,
        query: CompoundQuery,
        filters: SearchFilters,
    ) -> List[IndexHit]:
        """
        Run a compound query and return every matching hit in rank order.

        Hits matching fewer than ``query.minimum_should_match`` fields, or
        scoring below ``query.score_threshold``, are dropped.

        Raises
        ------
        SearchBackendError
            On any engine failure.
        """
        try:
            with self._ix.searcher() as searcher:
                compiled = self.compile(query, searcher.reader())
                if compiled is None:
                    return []

                results = searcher.search(
                    compiled,
                    limit=None,
                    filter=self._filter_query(filters),
                    terms=True,
                )

                hits: List[IndexHit] = []
                for hit in results:
                    matched = frozenset(field for field, _ in hit.matched_terms())
                    if len(matched) < query.minimum_should_match:
                        continue
                    score = float(hit.score)
                    if query.score_threshold is not None and score < query.score_threshold:
                        continue
                    fields = hit.fields()
                    hits.append(
                        IndexHit(
                            document=self._summary(fields, score),
                            score=score,
                            matched_fields=matched,
                        )
                    )
        except SearchBackendError:
            raise
        except Exception as exc:
            raise SearchBackendError(
                f"Search failed: {type(exc).__name__}: {exc}"
            ) from exc

        hits.sort(
            key=lambda h: (
                -h.score,
                -_timestamp(h.document.updated_at),
                h.document.id,
            )
        )
        return hits

    def suggest(
        self,
        text: str,
        *,
        max_edits: int,
        prefix_length: int,
        limit: int,
    ) -> List[str]:
        """
        Name suggestions for search-as-you-type over active documents.

        The last token is matched as a prefix or within ``max_edits``;
        earlier tokens must match exactly.
        """
        tokens = self._tokens("name", text)
        if not tokens:
            return []

        *head, last = tokens
        parts: List[Query] = [Term("name", t) for t in head]
        tail: List[Query] = [Prefix("name", last)]
        if max_edits > 0:
            tail.append(
                FuzzyTerm("name", last, maxdist=max_edits, prefixlength=prefix_length)
            )
        parts.append(Or(tail))

        try:
            with self._ix.searcher() as searcher:
                results = searcher.search(
                    And(parts),
                    limit=limit,
                    filter=Term("status", "active"),
                )
                names: List[str] = []
                for hit in results:
                    name = hit["name"]
                    if name not in names:
                        names.append(name)
                return names
        except Exception as exc:
            raise SearchBackendError(
                f"Suggestion lookup failed: {type(exc).__name__}"
            ) from exc
