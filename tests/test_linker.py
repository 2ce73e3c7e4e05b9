"""
Reference Linker Tests

Most tests use a scripted search executor so each candidate's top hit is
fixed. The end-to-end case runs through a real index.
"""

import asyncio
import json
import time
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from exicon_server.config import LinkingConfig, SearchConfig
from exicon_server.core.errors import SearchBackendError
from exicon_server.linking.detector import MentionDetector
from exicon_server.linking.linker import ReferenceLinker, source_text
from exicon_server.linking.models import ValidatedReference
from exicon_server.search.executor import SearchExecutor
from exicon_server.search.index import SearchIndex
from exicon_server.search.models import DocumentSummary, SearchPage

from conftest import make_indexed


def _summary(doc_id, name, slug=None):
    return DocumentSummary(
        id=doc_id,
        kind="exercise",
        slug=slug or name.lower().replace(" ", "-"),
        name=name,
        status="active",
        score=1.0,
    )


CATALOG = {
    "burpee": [_summary("ex-burpee", "Burpee")],
    "burpees": [_summary("ex-burpee", "Burpee")],
    "merkins": [_summary("ex-merkin", "Merkin")],
    "merkin": [_summary("ex-merkin", "Merkin")],
    "merk": [_summary("ex-merkin", "Merkin")],
    "hand release merkin": [_summary("ex-hrm", "Hand Release Merkin")],
    "bear crawl": [_summary("ex-bear", "Bear Crawl")],
}


class ScriptedExecutor:
    def __init__(self, catalog=CATALOG):
        self.catalog = catalog
        self.queries = []

    async def search(self, query, filters=None, page=1, page_size=12):
        self.queries.append((query, filters))
        return SearchPage(results=self.catalog.get(query.lower(), []), page_size=page_size)


class FailingExecutor:
    async def search(self, query, filters=None, page=1, page_size=12):
        raise SearchBackendError("index offline")


class SlowExecutor:
    async def search(self, query, filters=None, page=1, page_size=12):
        await asyncio.sleep(1)
        return SearchPage()


class SlowIndex:
    """A populated index whose queries block the calling thread."""

    def is_available(self):
        return True

    def search(self, query, filters):
        time.sleep(0.3)
        return []


def _llm(*mentions):
    llm = AsyncMock()
    llm.complete.return_value = json.dumps({"mentions": [{"text": m} for m in mentions]})
    return llm


def _linker(llm, executor=None, **config):
    detector = MentionDetector(llm, vocabulary=[])
    return ReferenceLinker(detector, executor or ScriptedExecutor(), LinkingConfig(**config))


def _doc(text, *, doc_id="ex-workout", name="Workout", description=None):
    return SimpleNamespace(id=doc_id, name=name, description=description, text=text)


def _reasons(result):
    return {(d.candidate, d.reason) for d in result.discarded}


class TestProcess:
    async def test_links_burpee_and_merkins(self):
        linker = _linker(_llm("burpee", "merkins"))
        result = await linker.process(_doc("Do a burpee then ten merkins"))

        assert result.updated_text == "Do a [burpee](@burpee) then ten [merkins](@merkin)"
        assert result.original_text == "Do a burpee then ten merkins"
        assert result.slugs == ["burpee", "merkin"]
        assert result.confidence == pytest.approx((1.0 + 6 / 7) / 2)
        assert result.discarded == []

    async def test_searches_active_exercises_only(self):
        executor = ScriptedExecutor()
        linker = _linker(_llm("burpee"), executor)
        await linker.process(_doc("Do a burpee"))

        query, filters = executor.queries[0]
        assert query == "burpee"
        assert filters.kind == "exercise"
        assert filters.status == "active"

    async def test_no_mentions_is_none(self):
        linker = _linker(_llm())
        assert await linker.process(_doc("Run up the hill")) is None

    async def test_empty_source_skips_detection(self):
        llm = _llm("burpee")
        linker = _linker(llm)
        assert await linker.process(_doc("   ")) is None
        llm.complete.assert_not_awaited()

    async def test_hallucinated_candidate_is_discarded(self):
        linker = _linker(_llm("burpee", "Bear Crawl"))
        result = await linker.process(_doc("Do a burpee"))

        assert result.updated_text == "Do a [burpee](@burpee)"
        assert ("Bear Crawl", "not_found_in_text") in _reasons(result)

    async def test_already_linked_text_is_left_alone(self):
        linker = _linker(_llm("burpee"))
        assert await linker.process(_doc("Do a [burpee](@burpee) now")) is None

    async def test_low_similarity_is_discarded(self):
        linker = _linker(_llm("merk", "burpee"))
        result = await linker.process(_doc("Do a merk and a burpee"))

        assert result.slugs == ["burpee"]
        assert ("merk", "low_similarity") in _reasons(result)

    async def test_threshold_is_configurable(self):
        linker = _linker(_llm("merk"), similarity_threshold=0.6)
        result = await linker.process(_doc("Do a merk"))
        assert result.updated_text == "Do a [merk](@merkin)"

    async def test_no_hits(self):
        linker = _linker(_llm("dora", "burpee"))
        result = await linker.process(_doc("Dora then a burpee"))
        assert ("dora", "no_hits") in _reasons(result)

    async def test_self_reference_is_discarded(self):
        linker = _linker(_llm("merkins"))
        doc = _doc("Ten merkins", doc_id="ex-merkin", name="Merkin")
        assert await linker.process(doc) is None

    async def test_longer_name_claims_its_span_first(self):
        linker = _linker(_llm("Merkin", "Hand Release Merkin"))
        result = await linker.process(_doc("Hand Release Merkin then a Merkin"))

        assert result.updated_text == (
            "[Hand Release Merkin](@hand-release-merkin) then a [Merkin](@merkin)"
        )

    async def test_nested_name_without_free_occurrence_overlaps(self):
        linker = _linker(_llm("Merkin", "Hand Release Merkin"))
        result = await linker.process(_doc("Ten Hand Release Merkin"))

        assert result.slugs == ["hand-release-merkin"]
        assert ("Merkin", "overlap") in _reasons(result)

    async def test_search_failure_discards_candidate(self):
        linker = _linker(_llm("burpee"), FailingExecutor())
        assert await linker.process(_doc("Do a burpee")) is None

    async def test_search_timeout_discards_candidate(self):
        linker = _linker(_llm("burpee"), SlowExecutor(), search_timeout_seconds=0.01)
        assert await linker.process(_doc("Do a burpee")) is None

    async def test_search_timeout_covers_blocking_index_queries(self, database):
        executor = SearchExecutor(SlowIndex(), database, SearchConfig())
        linker = _linker(_llm("burpee"), executor, search_timeout_seconds=0.05)

        started = time.monotonic()
        assert await linker.process(_doc("Do a burpee")) is None
        assert time.monotonic() - started < 0.25

    async def test_unknown_field_is_rejected(self):
        linker = _linker(_llm())
        with pytest.raises(ValueError):
            await linker.process(_doc("Do a burpee"), target_field="tags")


class TestValidate:
    async def test_outcomes(self):
        from exicon_server.linking.models import ReferenceCandidate

        linker = _linker(_llm())
        doc = _doc("unused")

        ok = await linker.validate(ReferenceCandidate("Burpees"), doc)
        assert isinstance(ok, ValidatedReference)
        assert ok.slug == "burpee"
        assert ok.start == ok.end == -1

        missing = await linker.validate(ReferenceCandidate("Dora"), doc)
        assert missing.reason == "no_hits"


class TestLocate:
    def _ref(self, candidate, slug):
        return ValidatedReference(candidate, -1, -1, slug, slug, candidate, 1.0)

    def test_positions_sorted_by_start(self):
        text = "Bear Crawl into a burpee"
        placed, discarded = ReferenceLinker.locate(
            text, [self._ref("burpee", "burpee"), self._ref("Bear Crawl", "bear-crawl")]
        )
        assert [(r.start, r.end) for r in placed] == [(0, 10), (18, 24)]
        assert discarded == []

    def test_same_candidate_twice_takes_next_occurrence(self):
        text = "burpee, burpee"
        placed, _ = ReferenceLinker.locate(
            text, [self._ref("burpee", "burpee"), self._ref("burpee", "burpee")]
        )
        assert [(r.start, r.end) for r in placed] == [(0, 6), (8, 14)]


def test_source_text_fallback():
    doc = _doc("Body text", description=None)
    assert source_text(doc, "description") == "Body text"
    assert source_text(_doc("Body", description="Desc"), "description") == "Desc"
    assert source_text(_doc(None), "text") == ""


async def test_end_to_end_with_real_index(database):
    index = SearchIndex.in_memory()
    index.rebuild(
        [
            make_indexed("ex-burpee", "Burpee", description="Squat thrust with a jump."),
            make_indexed("ex-merkin", "Merkin", description="The F3 push up."),
        ]
    )
    executor = SearchExecutor(index, database, SearchConfig())
    linker = ReferenceLinker(
        MentionDetector(_llm("burpee", "merkins"), vocabulary=[]),
        executor,
        LinkingConfig(),
    )

    result = await linker.process(_doc("Do a burpee then ten merkins"))

    assert result.updated_text == "Do a [burpee](@burpee) then ten [merkins](@merkin)"
    assert [r.similarity for r in result.references] == pytest.approx([1.0, 6 / 7])
