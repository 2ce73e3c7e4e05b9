import os

# Settings are read at import time; provide the required values first.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("OPENAI_API_KEY", "test-key")

from datetime import datetime, timedelta

import pytest
from sqlalchemy.pool import StaticPool

from exicon_server.db.repository import DocumentRepository
from exicon_server.db.session import Database
from exicon_server.search.index import SearchIndex
from exicon_server.search.models import IndexedDocument

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0)


def make_indexed(doc_id, name, *, minutes=0, **fields):
    fields.setdefault("slug", name.lower().replace(" ", "-"))
    fields.setdefault("kind", "exercise")
    fields.setdefault("status", "active")
    return IndexedDocument(
        id=doc_id,
        name=name,
        updated_at=BASE_TIME + timedelta(minutes=minutes),
        **fields,
    )


@pytest.fixture
def exercise_docs():
    return [
        make_indexed(
            "ex-burpee",
            "Burpee",
            aliases=["Burpees"],
            description="Squat thrust with a jump.",
            text="Drop to a plank, do a push up, jump up.",
            tags=["full-body", "burpee"],
            minutes=1,
        ),
        make_indexed(
            "ex-merkin",
            "Merkin",
            description="The F3 push up.",
            text="Plank position, lower the chest, press back up.",
            tags=["upper-body", "chest", "merkin"],
            minutes=2,
        ),
        make_indexed(
            "ex-music",
            "Music Merkins",
            description="Merkins to a song.",
            text="Up and down with the music.",
            tags=["music", "merkin"],
            minutes=3,
        ),
        make_indexed(
            "ex-bear",
            "Bear Crawl",
            description="Crawl on hands and feet.",
            text="Stay low and move forward.",
            tags=["crawl"],
            minutes=4,
        ),
        make_indexed(
            "ex-old",
            "Burpee Broad Jump",
            description="A burpee followed by a broad jump.",
            text="Burpee, then jump as far as you can.",
            tags=["burpee", "jump"],
            status="archived",
            minutes=5,
        ),
        make_indexed(
            "lex-pax",
            "PAX",
            kind="lexicon",
            description="The people who attend a workout.",
            text="Plural and singular.",
            minutes=6,
        ),
    ]


@pytest.fixture
def search_index(exercise_docs):
    index = SearchIndex.in_memory()
    index.rebuild(exercise_docs)
    return index


@pytest.fixture
async def database():
    db = Database(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
async def seeded_database(database, exercise_docs):
    """The same documents as ``search_index``, stored in the database."""
    async with database.session() as session:
        repo = DocumentRepository(session)
        for doc in exercise_docs:
            await repo.add(
                id=doc.id,
                kind=doc.kind,
                slug=doc.slug,
                name=doc.name,
                aliases=[{"name": a} for a in doc.aliases],
                description=doc.description,
                text=doc.text,
                tags=list(doc.tags),
                status=doc.status,
                created_at=doc.updated_at,
                updated_at=doc.updated_at,
            )
    return database
