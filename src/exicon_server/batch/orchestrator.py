"""
Batch Orchestrator

Walks the document store page by page and runs one job over every
eligible document.

Guarantees
----------
- Eligible = the job accepts the document AND its id is not in the job's
  durable processed set.
- Per document: run the job, persist the proposal (and the field write in
  auto-apply mode) in one transaction, then record the id as processed in
  a second one. A crash between the two leaves the document unmarked, so
  it is retried on the next run.
- "No result" is success: the document is marked processed.
- A failure (job error or persistence error) is logged with the document
  id and the batch moves on; the id stays unmarked.
- Pages are spaced by an ``IntervalPacer``; a stop request is honored
  between pages.
- Within a page, documents run sequentially unless ``max_concurrency``
  allows a bounded number in parallel.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Set

from ..cache.store import ResultCache
from ..config import BatchConfig, CacheConfig
from ..db.proposals import ProposalStore
from ..db.repository import DocumentRepository
from ..db.session import Database
from ..db.tracking import ProcessedTracker
from ..search.index import SearchIndex
from .apply import apply_value, refresh_derived
from .jobs import BatchJob, JobOutcome
from .pacing import IntervalPacer

logger = logging.getLogger("exicon.batch")


@dataclass
class BatchStats:
    job_type: str
    pages: int = 0
    processed: int = 0
    proposals: int = 0
    applied: int = 0
    no_result: int = 0
    skipped: int = 0
    failed: int = 0
    failed_ids: List[str] = field(default_factory=list)
    stopped: bool = False

    def summary(self) -> str:
        return (
            f"{self.job_type}: pages={self.pages} processed={self.processed} "
            f"proposals={self.proposals} applied={self.applied} "
            f"no_result={self.no_result} skipped={self.skipped} failed={self.failed}"
        )


class BatchOrchestrator:
    """
    Parameters
    ----------
    database : Database
        Document store, proposal store and tracker backend.
    job : BatchJob
        What to do with each document.
    config : BatchConfig
        Page size, pacing, concurrency and apply mode.
    cache, index : optional
        Refreshed after auto-applied writes.
    page_pacer, document_pacer : optional
        Override the pacers built from ``config`` (tests inject fakes).
    """

    def __init__(
        self,
        database: Database,
        job: BatchJob,
        config: BatchConfig,
        *,
        cache: Optional[ResultCache] = None,
        index: Optional[SearchIndex] = None,
        cache_config: Optional[CacheConfig] = None,
        listing_page_size: int = 12,
        page_pacer: Optional[IntervalPacer] = None,
        document_pacer: Optional[IntervalPacer] = None,
    ) -> None:
        self._database = database
        self._job = job
        self._config = config
        self._cache = cache
        self._index = index
        self._cache_config = cache_config or CacheConfig()
        self._listing_page_size = listing_page_size
        self._page_pacer = page_pacer or IntervalPacer(config.page_delay_seconds)
        self._document_pacer = document_pacer or IntervalPacer(config.document_delay_seconds)
        self._stop = asyncio.Event()

    def stop(self) -> None:
        """Request a stop; the current page finishes first."""
        self._stop.set()

    # ------------------------------------------------------------------
    # Run Loop
    # ------------------------------------------------------------------

    async def run(self, max_pages: Optional[int] = None) -> BatchStats:
        job = self._job
        stats = BatchStats(job_type=job.job_type)

        async with self._database.session() as session:
            processed = await ProcessedTracker(session).load_ids(job.job_type)
        logger.info(
            "Starting %s: %s documents already processed", job.job_type, len(processed)
        )

        # Ids passed over in this run only: ineligible or failed.
        passed_over: Set[str] = set()

        while not self._stop.is_set():
            await self._page_pacer.wait()

            async with self._database.session() as session:
                documents = await DocumentRepository(session).find_unprocessed(
                    job.kind,
                    job.source_fields,
                    exclude_ids=processed | passed_over,
                    limit=self._config.page_size,
                )
            if not documents:
                break

            eligible = []
            for doc in documents:
                if job.is_eligible(doc):
                    eligible.append(doc)
                else:
                    passed_over.add(doc.id)
                    stats.skipped += 1

            stats.pages += 1
            logger.info(
                "%s page %s: %s eligible of %s",
                job.job_type,
                stats.pages,
                len(eligible),
                len(documents),
            )
            await self._run_page(eligible, stats, processed, passed_over)

            if max_pages is not None and stats.pages >= max_pages:
                break

        stats.stopped = self._stop.is_set()
        await job.finalize(self._database)
        logger.info("Finished %s", stats.summary())
        return stats

    async def _run_page(
        self,
        documents: List[Any],
        stats: BatchStats,
        processed: Set[str],
        passed_over: Set[str],
    ) -> None:
        if self._config.max_concurrency <= 1:
            for doc in documents:
                await self._document_pacer.wait()
                await self._run_document(doc, stats, processed, passed_over)
            return

        semaphore = asyncio.Semaphore(self._config.max_concurrency)

        async def _bounded(doc: Any) -> None:
            async with semaphore:
                await self._run_document(doc, stats, processed, passed_over)

        await asyncio.gather(*(_bounded(doc) for doc in documents))

    # ------------------------------------------------------------------
    # Single Document
    # ------------------------------------------------------------------

    def _fail(self, doc: Any, stats: BatchStats, passed_over: Set[str]) -> None:
        stats.failed += 1
        stats.failed_ids.append(doc.id)
        passed_over.add(doc.id)

    async def _run_document(
        self,
        doc: Any,
        stats: BatchStats,
        processed: Set[str],
        passed_over: Set[str],
    ) -> None:
        job = self._job

        try:
            outcome = await job.run(doc)
        except Exception:
            logger.exception("%s failed for document %s (%s)", job.job_type, doc.id, doc.name)
            self._fail(doc, stats, passed_over)
            return

        try:
            await self._persist(doc, outcome, stats)
        except Exception:
            logger.exception("Could not store %s result for document %s", job.job_type, doc.id)
            self._fail(doc, stats, passed_over)
            return

        try:
            async with self._database.session() as session:
                await ProcessedTracker(session).mark(job.job_type, doc.id)
        except Exception:
            logger.exception("Could not mark document %s processed for %s", doc.id, job.job_type)
            self._fail(doc, stats, passed_over)
            return

        processed.add(doc.id)
        stats.processed += 1

    def _should_apply(self, outcome: JobOutcome) -> bool:
        return (
            self._config.auto_apply
            and outcome.confidence >= self._config.auto_apply_min_confidence
        )

    async def _persist(self, doc: Any, outcome: Optional[JobOutcome], stats: BatchStats) -> None:
        if outcome is None:
            stats.no_result += 1
            return

        auto_apply = self._should_apply(outcome)
        updated = None
        async with self._database.session() as session:
            await ProposalStore(session).create(
                document_id=doc.id,
                job_type=self._job.job_type,
                field=outcome.field,
                current_value=outcome.current_value,
                proposed_value=outcome.proposed_value,
                confidence=outcome.confidence,
                reason=outcome.reason,
                status="applied" if auto_apply else "pending",
                metadata=outcome.metadata or None,
            )
            if auto_apply:
                updated = await apply_value(
                    DocumentRepository(session),
                    doc.id,
                    outcome.field,
                    outcome.proposed_value,
                    self._job.job_type,
                )

        stats.proposals += 1
        if updated is not None:
            stats.applied += 1
            refresh_derived(
                updated,
                outcome.field,
                cache=self._cache,
                index=self._index,
                invalidation_pages=self._cache_config.invalidation_pages,
                page_size=self._listing_page_size,
            )
