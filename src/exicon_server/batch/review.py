"""
Proposal Review

Human-in-the-loop side of proposal mode: approve or reject pending
proposals, then apply everything approved.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..cache.store import ResultCache
from ..config import CacheConfig
from ..db.models import CleanupProposal
from ..db.proposals import ProposalStore
from ..db.repository import DocumentRepository
from ..db.session import Database
from ..search.index import SearchIndex
from .apply import LINKING_JOB_PREFIX, apply_value, refresh_derived

logger = logging.getLogger("exicon.batch.review")


@dataclass
class ApplyStats:
    applied: int = 0
    failed: int = 0
    failed_ids: List[int] = field(default_factory=list)


class ProposalReviewer:
    def __init__(
        self,
        database: Database,
        *,
        cache: Optional[ResultCache] = None,
        index: Optional[SearchIndex] = None,
        cache_config: Optional[CacheConfig] = None,
        listing_page_size: int = 12,
    ) -> None:
        self._database = database
        self._cache = cache
        self._index = index
        self._cache_config = cache_config or CacheConfig()
        self._listing_page_size = listing_page_size

    async def approve(self, proposal_id: int) -> CleanupProposal:
        async with self._database.session() as session:
            return await ProposalStore(session).transition(proposal_id, "approved")

    async def reject(self, proposal_id: int) -> CleanupProposal:
        async with self._database.session() as session:
            return await ProposalStore(session).transition(proposal_id, "rejected")

    async def apply_approved(self, job_type: Optional[str] = None) -> ApplyStats:
        """
        Write every approved proposal to its document and mark it applied.

        Each proposal commits on its own; a failure is logged and the rest
        continue.
        """
        stats = ApplyStats()
        async with self._database.session() as session:
            approved = await ProposalStore(session).list_by_status("approved", job_type)

        linked = False
        for proposal in approved:
            try:
                async with self._database.session() as session:
                    document = await apply_value(
                        DocumentRepository(session),
                        proposal.document_id,
                        proposal.field,
                        proposal.proposed_value,
                        proposal.job_type,
                    )
                    await ProposalStore(session).transition(proposal.id, "applied")
            except Exception:
                logger.exception(
                    "Could not apply proposal %s to document %s",
                    proposal.id,
                    proposal.document_id,
                )
                stats.failed += 1
                stats.failed_ids.append(proposal.id)
                continue

            stats.applied += 1
            linked = linked or proposal.job_type.startswith(LINKING_JOB_PREFIX)
            refresh_derived(
                document,
                proposal.field,
                cache=self._cache,
                index=self._index,
                invalidation_pages=self._cache_config.invalidation_pages,
                page_size=self._listing_page_size,
            )

        if linked:
            async with self._database.session() as session:
                await DocumentRepository(session).rebuild_referenced_by()

        logger.info("Applied %s approved proposals (%s failed)", stats.applied, stats.failed)
        return stats
