"""
Batch Orchestrator Tests

Resumability, proposal vs auto-apply mode, per-document failure isolation,
pacing and stop handling, against an in-memory SQLite store.
"""

import json
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from exicon_server.batch.jobs import JobOutcome, ReferenceLinkingJob
from exicon_server.batch.orchestrator import BatchOrchestrator
from exicon_server.cache import keys
from exicon_server.cache.store import ResultCache
from exicon_server.config import BatchConfig, LinkingConfig
from exicon_server.core.errors import TextUnderstandingError
from exicon_server.db.proposals import ProposalStore
from exicon_server.db.repository import DocumentRepository
from exicon_server.db.tracking import ProcessedTracker
from exicon_server.linking.detector import MentionDetector
from exicon_server.linking.linker import ReferenceLinker
from exicon_server.search.index import SearchIndex
from exicon_server.search.models import DocumentSummary, SearchPage

from conftest import BASE_TIME


class FakePacer:
    def __init__(self):
        self.ticks = 0

    async def wait(self):
        self.ticks += 1
        return 0.0


class FakeJob:
    """Returns scripted outcomes per document id; exceptions are raised."""

    job_type = "fake-job"
    kind = "exercise"
    source_fields = ("text",)

    def __init__(self, outcomes=None, eligible=None, on_run=None):
        self.outcomes = outcomes or {}
        self.eligible = eligible
        self.on_run = on_run
        self.calls = []
        self.finalized = False

    def is_eligible(self, document):
        return self.eligible is None or document.id in self.eligible

    async def run(self, document):
        self.calls.append(document.id)
        if self.on_run:
            self.on_run(document)
        value = self.outcomes.get(document.id)
        if isinstance(value, Exception):
            raise value
        return value

    async def finalize(self, database):
        self.finalized = True


def _outcome(value="Tidy description.", confidence=0.9, field="description"):
    return JobOutcome(
        field=field,
        current_value=None,
        proposed_value=value,
        confidence=confidence,
        reason="test",
    )


async def _add(database, *entries):
    """Insert documents in creation order; each entry is (id, name, text)."""
    async with database.session() as session:
        repo = DocumentRepository(session)
        for i, (doc_id, name, text) in enumerate(entries):
            await repo.add(
                id=doc_id,
                name=name,
                text=text,
                status="active",
                created_at=BASE_TIME + timedelta(minutes=i),
                updated_at=BASE_TIME + timedelta(minutes=i),
            )


async def _processed(database, job_type="fake-job"):
    async with database.session() as session:
        return await ProcessedTracker(session).load_ids(job_type)


async def _proposals(database, status):
    async with database.session() as session:
        return await ProposalStore(session).list_by_status(status)


async def _get(database, doc_id):
    async with database.session() as session:
        return await DocumentRepository(session).get(doc_id)


def _orchestrator(database, job, **config):
    config.setdefault("page_delay_seconds", 0)
    config.setdefault("document_delay_seconds", 0)
    return BatchOrchestrator(
        database,
        job,
        BatchConfig(**config),
        page_pacer=FakePacer(),
        document_pacer=FakePacer(),
    )


@pytest.fixture
async def three_docs(database):
    await _add(
        database,
        ("a", "Alpha", "Alpha text"),
        ("b", "Bravo", "Bravo text"),
        ("c", "Charlie", "Charlie text"),
    )
    return database


class TestResumability:
    async def test_already_processed_documents_are_skipped(self, three_docs):
        async with three_docs.session() as session:
            await ProcessedTracker(session).mark("fake-job", "a")

        job = FakeJob()
        stats = await _orchestrator(three_docs, job).run()

        assert job.calls == ["b", "c"]
        assert stats.processed == 2
        assert await _processed(three_docs) == {"a", "b", "c"}

    async def test_second_run_does_nothing(self, three_docs):
        await _orchestrator(three_docs, FakeJob()).run()
        job = FakeJob()
        stats = await _orchestrator(three_docs, job).run()

        assert job.calls == []
        assert stats.pages == 0
        assert job.finalized

    async def test_documents_without_source_text_are_not_fetched(self, database):
        await _add(database, ("a", "Alpha", "Alpha text"), ("empty", "Empty", ""))
        job = FakeJob()
        await _orchestrator(database, job).run()
        assert job.calls == ["a"]


class TestOutcomes:
    async def test_no_result_is_marked_processed(self, three_docs):
        stats = await _orchestrator(three_docs, FakeJob()).run()

        assert stats.no_result == 3
        assert stats.proposals == 0
        assert await _processed(three_docs) == {"a", "b", "c"}

    async def test_proposal_mode_leaves_document_untouched(self, three_docs):
        job = FakeJob({"a": _outcome()})
        stats = await _orchestrator(three_docs, job).run()

        (proposal,) = await _proposals(three_docs, "pending")
        assert proposal.document_id == "a"
        assert proposal.job_type == "fake-job"
        assert proposal.proposed_value == "Tidy description."
        assert stats.proposals == 1
        assert stats.applied == 0
        assert (await _get(three_docs, "a")).description is None

    async def test_auto_apply_writes_at_threshold(self, three_docs):
        cache = ResultCache()
        cache.set(keys.detail("exercise", "alpha"), "stale")
        index = SearchIndex.in_memory()

        job = FakeJob({"a": _outcome(confidence=0.8), "b": _outcome(confidence=0.79)})
        orchestrator = BatchOrchestrator(
            three_docs,
            job,
            BatchConfig(auto_apply=True, auto_apply_min_confidence=0.8),
            cache=cache,
            index=index,
            page_pacer=FakePacer(),
            document_pacer=FakePacer(),
        )
        stats = await orchestrator.run()

        assert stats.applied == 1
        assert stats.proposals == 2
        (applied,) = await _proposals(three_docs, "applied")
        assert applied.document_id == "a"
        assert applied.applied_at is not None
        assert [p.document_id for p in await _proposals(three_docs, "pending")] == ["b"]

        assert (await _get(three_docs, "a")).description == "Tidy description."
        assert (await _get(three_docs, "b")).description is None
        assert cache.get(keys.detail("exercise", "alpha")) is None
        assert index.doc_count() == 1


class TestFailures:
    async def test_job_error_is_isolated_and_retried_next_run(self, three_docs, caplog):
        job = FakeJob({"b": TextUnderstandingError("HTTP 503")})
        stats = await _orchestrator(three_docs, job).run()

        assert job.calls == ["a", "b", "c"]
        assert stats.failed == 1
        assert stats.failed_ids == ["b"]
        assert await _processed(three_docs) == {"a", "c"}
        assert "failed for document b" in caplog.text

        retry = FakeJob()
        await _orchestrator(three_docs, retry).run()
        assert retry.calls == ["b"]

    async def test_persistence_error_rolls_back_and_continues(self, three_docs):
        job = FakeJob({"a": _outcome(field="not_a_field"), "b": _outcome()})
        stats = await _orchestrator(three_docs, job, auto_apply=True).run()

        assert stats.failed_ids == ["a"]
        assert stats.applied == 1
        assert [p.document_id for p in await _proposals(three_docs, "applied")] == ["b"]
        assert "a" not in await _processed(three_docs)

    async def test_ineligible_documents_are_skipped_not_marked(self, three_docs):
        job = FakeJob(eligible={"a"})
        stats = await _orchestrator(three_docs, job).run()

        assert job.calls == ["a"]
        assert stats.skipped == 2
        assert await _processed(three_docs) == {"a"}


class TestPacingAndControl:
    async def test_pacers_tick_per_page_and_document(self, three_docs):
        page_pacer, doc_pacer = FakePacer(), FakePacer()
        orchestrator = BatchOrchestrator(
            three_docs,
            FakeJob(),
            BatchConfig(page_size=1),
            page_pacer=page_pacer,
            document_pacer=doc_pacer,
        )
        stats = await orchestrator.run()

        assert stats.pages == 3
        # One extra page tick finds nothing left.
        assert page_pacer.ticks == 4
        assert doc_pacer.ticks == 3

    async def test_max_pages(self, three_docs):
        job = FakeJob()
        stats = await _orchestrator(three_docs, job, page_size=2).run(max_pages=1)
        assert job.calls == ["a", "b"]
        assert stats.pages == 1

    async def test_stop_finishes_current_page(self, three_docs):
        job = FakeJob()
        orchestrator = _orchestrator(three_docs, job, page_size=1)
        job.on_run = lambda doc: orchestrator.stop()

        stats = await orchestrator.run()

        assert job.calls == ["a"]
        assert stats.stopped
        assert job.finalized
        assert await _processed(three_docs) == {"a"}


class TestLinkingJob:
    async def test_auto_applied_links_and_reverse_references(self, database):
        await _add(
            database,
            ("ex-burpee", "Burpee", None),
            ("ex-merkin", "Merkin", None),
            ("ex-workout", "Workout", "Do a burpee then ten merkins"),
        )
        catalog = {
            "burpee": DocumentSummary(
                id="ex-burpee", kind="exercise", slug="burpee", name="Burpee", status="active"
            ),
            "merkins": DocumentSummary(
                id="ex-merkin", kind="exercise", slug="merkin", name="Merkin", status="active"
            ),
        }

        class CatalogExecutor:
            async def search(self, query, filters=None, page=1, page_size=12):
                hit = catalog.get(query.lower())
                return SearchPage(results=[hit] if hit else [])

        llm = AsyncMock()
        llm.complete.return_value = json.dumps(
            {"mentions": [{"text": "burpee"}, {"text": "merkins"}]}
        )
        linker = ReferenceLinker(
            MentionDetector(llm, vocabulary=[]), CatalogExecutor(), LinkingConfig()
        )
        job = ReferenceLinkingJob(linker)

        stats = await _orchestrator(database, job, auto_apply=True).run()

        assert stats.applied == 1
        workout = await _get(database, "ex-workout")
        assert workout.description == "Do a [burpee](@burpee) then ten [merkins](@merkin)"
        assert workout.text == "Do a burpee then ten merkins"
        assert workout.referenced_slugs == ["burpee", "merkin"]
        assert (await _get(database, "ex-burpee")).referenced_by == ["workout"]
        assert (await _get(database, "ex-merkin")).referenced_by == ["workout"]

        (proposal,) = await _proposals(database, "applied")
        assert proposal.metadata_["original_text"] == "Do a burpee then ten merkins"
        assert [r["slug"] for r in proposal.metadata_["references"]] == ["burpee", "merkin"]
        assert await _processed(database, "hybrid-references") == {"ex-workout"}
