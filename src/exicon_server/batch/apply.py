"""
Applying accepted field changes.

Shared by auto-apply mode in the orchestrator and by proposal review:
write the value, then refresh what is derived from the document (result
cache entries and the search index entry).
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..cache.invalidation import invalidate_document
from ..cache.store import ResultCache
from ..core.errors import SearchBackendError
from ..db.models import Document
from ..db.repository import DocumentRepository, to_indexed
from ..search.index import SearchIndex

logger = logging.getLogger("exicon.batch.apply")

LINKING_JOB_PREFIX = "hybrid-references"


async def apply_value(
    repository: DocumentRepository,
    document_id: str,
    field: str,
    value: Any,
    job_type: str,
) -> Document:
    """
    Write ``value`` into ``field``. Linked text also refreshes the
    document's forward references.
    """
    if job_type.startswith(LINKING_JOB_PREFIX):
        return await repository.set_references(document_id, field, value)
    return await repository.update_fields(document_id, {field: value})


def refresh_derived(
    document: Document,
    field: str,
    *,
    cache: Optional[ResultCache] = None,
    index: Optional[SearchIndex] = None,
    invalidation_pages: int = 5,
    page_size: int = 12,
) -> None:
    """
    Invalidate cached reads of ``document`` and re-index it.

    Runs after the write has committed. Neither step raises: the store
    stays authoritative and ``reindex`` repairs a missed index update.
    """
    if cache is not None:
        invalidate_document(
            cache,
            document,
            pages=invalidation_pages,
            page_size=page_size,
            tags_updated=(field == "tags"),
        )

    if index is not None:
        try:
            index.upsert([to_indexed(document)])
        except SearchBackendError as exc:
            logger.warning("Re-index of document %s failed: %s", document.id, exc)
