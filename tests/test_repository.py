"""
Document Repository and Tracker Tests
"""

import pytest

from exicon_server.core.errors import PersistenceError
from exicon_server.db.models import Document
from exicon_server.db.repository import DocumentRepository, to_indexed
from exicon_server.db.tracking import ProcessedTracker
from exicon_server.search.models import SearchFilters
from exicon_server.text.slugs import slugify, unique_slug


def test_slugify_and_unique_slug():
    assert slugify("Hand-Release  Merkin!") == "hand-release-merkin"
    assert slugify("6 Minutes of Marys") == "6-minutes-of-marys"
    assert unique_slug("dora", set()) == "dora"
    assert unique_slug("dora", {"dora", "dora-2"}) == "dora-3"
    assert unique_slug("", set()) == "item"


class TestSlugs:
    async def test_add_derives_unique_slug_per_kind(self, database):
        async with database.session() as session:
            repo = DocumentRepository(session)
            first = await repo.add(name="Dora 1-2-3", status="active")
            second = await repo.add(name="Dora 1 2 3", status="active")
            lexicon = await repo.add(name="Dora 1-2-3", kind="lexicon")

        assert first.slug == "dora-1-2-3"
        assert second.slug == "dora-1-2-3-2"
        assert lexicon.slug == "dora-1-2-3"
        assert first.kind == "exercise"

    async def test_rename_avoids_collisions(self, seeded_database):
        async with seeded_database.session() as session:
            doc, previous = await DocumentRepository(session).rename("ex-bear", "Merkin")

        assert previous == "bear-crawl"
        assert doc.slug == "merkin-2"
        assert doc.name == "Merkin"

    async def test_rename_keeps_own_slug(self, seeded_database):
        async with seeded_database.session() as session:
            doc, _ = await DocumentRepository(session).rename("ex-bear", "Bear crawl")
        assert doc.slug == "bear-crawl"

    async def test_assign_slugs(self, database):
        async with database.session() as session:
            session.add_all(
                [
                    Document(id="a", kind="exercise", name="Al Gore", slug=None),
                    Document(id="b", kind="exercise", name="Al Gore", slug=""),
                    Document(id="c", kind="exercise", name="Dora", slug="dora"),
                ]
            )

        async with database.session() as session:
            repo = DocumentRepository(session)
            assert await repo.assign_slugs() == 2
            slugs = {d.id: d.slug for d in [await repo.get(i) for i in "abc"]}

        assert slugs == {"a": "al-gore", "b": "al-gore-2", "c": "dora"}


class TestReads:
    async def test_get_by_slug(self, seeded_database):
        async with seeded_database.session() as session:
            repo = DocumentRepository(session)
            assert (await repo.get_by_slug("exercise", "merkin")).id == "ex-merkin"
            assert await repo.get_by_slug("lexicon", "merkin") is None

    async def test_listing_with_tags_and_paging(self, seeded_database):
        async with seeded_database.session() as session:
            repo = DocumentRepository(session)
            tagged, total = await repo.list_documents(SearchFilters(tags=["merkin"]))
            page, all_total = await repo.list_documents(SearchFilters(), offset=1, limit=2)

        assert [d.id for d in tagged] == ["ex-music", "ex-merkin"]
        assert total == 2
        assert all_total == 5
        assert [d.id for d in page] == ["ex-bear", "ex-music"]

    async def test_similar_by_tags(self, seeded_database):
        async with seeded_database.session() as session:
            repo = DocumentRepository(session)
            merkin = await repo.get("ex-merkin")
            similar = await repo.similar_by_tags(merkin)

        # The archived Burpee Broad Jump shares nothing and is inactive anyway.
        assert [d.id for d in similar] == ["ex-music"]

    async def test_popular_tags(self, seeded_database):
        async with seeded_database.session() as session:
            tags = await DocumentRepository(session).popular_tags(limit=3)
        assert tags[0] == ("merkin", 2)
        assert len(tags) == 3

    async def test_suggest_names(self, seeded_database):
        async with seeded_database.session() as session:
            names = await DocumentRepository(session).suggest_names("BUR", limit=5)
        assert names == ["Burpee"]

    async def test_counts_and_index_projection(self, seeded_database):
        async with seeded_database.session() as session:
            repo = DocumentRepository(session)
            counts = await repo.count_by_kind_and_status()
            indexed = {d.id: d for d in await repo.all_for_index()}

        assert counts == {"exercise": {"active": 4, "archived": 1}, "lexicon": {"active": 1}}
        assert indexed["ex-burpee"].aliases == ["Burpees"]
        assert to_indexed(Document(id="x", kind="exercise", name="X", status="draft")).slug == "x"


class TestWrites:
    async def test_update_fields(self, seeded_database):
        async with seeded_database.session() as session:
            doc = await DocumentRepository(session).update_fields(
                "ex-bear", {"tags": ["crawl", "core"]}
            )
        assert doc.tags == ["crawl", "core"]

    async def test_update_rejects_unknown_field_and_missing_doc(self, seeded_database):
        async with seeded_database.session() as session:
            repo = DocumentRepository(session)
            with pytest.raises(PersistenceError):
                await repo.update_fields("ex-bear", {"slug": "x"})
            with pytest.raises(PersistenceError):
                await repo.update_fields("nope", {"text": "x"})

    async def test_references_round_trip(self, seeded_database):
        async with seeded_database.session() as session:
            repo = DocumentRepository(session)
            await repo.set_references(
                "ex-music", "description", "[Merkins](@merkin) to a song, then a [burpee](@burpee)."
            )
            await repo.set_references("ex-bear", "text", "Crawl into a [Merkin](@merkin).")
            changed = await repo.rebuild_referenced_by()
            merkin = await repo.get("ex-merkin")
            burpee = await repo.get("ex-burpee")

        assert changed == 2
        assert merkin.referenced_by == ["bear-crawl", "music-merkins"]
        assert burpee.referenced_by == ["music-merkins"]

    async def test_linking_one_field_keeps_the_other_fields_references(self, seeded_database):
        async with seeded_database.session() as session:
            repo = DocumentRepository(session)
            await repo.set_references("ex-bear", "description", "Do a [burpee](@burpee).")
            doc = await repo.set_references("ex-bear", "text", "Then ten [merkins](@merkin).")
            await repo.rebuild_referenced_by()
            merkin = await repo.get("ex-merkin")
            burpee = await repo.get("ex-burpee")

        assert doc.referenced_slugs == ["burpee", "merkin"]
        assert burpee.referenced_by == ["bear-crawl"]
        assert merkin.referenced_by == ["bear-crawl"]


class TestFindUnprocessed:
    async def test_order_and_exclusion(self, seeded_database):
        async with seeded_database.session() as session:
            repo = DocumentRepository(session)
            first = await repo.find_unprocessed("exercise", ("text",), [], limit=2)
            rest = await repo.find_unprocessed(
                "exercise", ("text",), [d.id for d in first], limit=10
            )

        assert [d.id for d in first] == ["ex-burpee", "ex-merkin"]
        assert [d.id for d in rest] == ["ex-music", "ex-bear", "ex-old"]


class TestTracker:
    async def test_mark_is_idempotent_and_reset(self, database):
        async with database.session() as session:
            tracker = ProcessedTracker(session)
            await tracker.mark("cleanup-tags", "a")
            await tracker.mark("cleanup-tags", "a")
            await tracker.mark("cleanup-text", "a")

        async with database.session() as session:
            tracker = ProcessedTracker(session)
            assert await tracker.load_ids("cleanup-tags") == {"a"}
            assert await tracker.counts() == {"cleanup-tags": 1, "cleanup-text": 1}
            assert await tracker.reset("cleanup-tags") == 1
            assert await tracker.load_ids("cleanup-tags") == set()
