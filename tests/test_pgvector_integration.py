"""
pgvector backend against a live PostgreSQL database.

Seeds a handful of chunks, then checks that the direct ORM query
(``PgVectorStore.search``) and the client path through the
``search_chunks`` function with a text vector literal return the same
chunks. Set ``TEST_DATABASE_URL`` (asyncpg DSN, pgvector available) to run.
"""

import os
import uuid

import pytest
from sqlalchemy import delete, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from almanac_wiki.db.models import Base, Document, DocumentChunk, EMBEDDING_DIMENSIONS
from almanac_wiki.db.vector_store import PgVectorStore, install_search_function
from almanac_wiki.rag.search import VectorSearchClient

from conftest import FakeEmbedder

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        not os.getenv("TEST_DATABASE_URL"),
        reason="TEST_DATABASE_URL is not set",
    ),
]


def pad(values):
    return list(values) + [0.0] * (EMBEDDING_DIMENSIONS - len(values))


QUERY_VECTOR = pad([1.0, 0.0, 0.0])

SEEDED = [
    ("c1", "doc-a", [1.0, 0.0, 0.0]),
    ("c2", "doc-a", [0.9, 0.1, 0.0]),
    ("c3", "doc-b", [0.6, 0.8, 0.0]),
    ("c4", "doc-b", [0.0, 1.0, 0.0]),
    ("c5", "doc-c", [0.8, 0.6, 0.0]),
]


@pytest.fixture
async def seeded_store():
    engine = create_async_engine(os.environ["TEST_DATABASE_URL"])
    session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)

    doc_ids = {name: uuid.uuid4() for name in ("doc-a", "doc-b", "doc-c")}
    chunk_ids = {}

    async with session_factory() as session:
        async with session.begin():
            await install_search_function(session)
            for name, doc_id in doc_ids.items():
                session.add(Document(id=doc_id, title=f"Title of {name}"))
            await session.flush()
            for index, (chunk_name, doc_name, vector) in enumerate(SEEDED):
                chunk_id = uuid.uuid4()
                chunk_ids[str(chunk_id)] = chunk_name
                session.add(DocumentChunk(
                    id=chunk_id,
                    document_id=doc_ids[doc_name],
                    content=f"Passage {chunk_name} from {doc_name}.",
                    chunk_index=index,
                    embedding=pad(vector),
                ))

    yield PgVectorStore(session_factory), chunk_ids

    async with session_factory() as session:
        async with session.begin():
            await session.execute(delete(Document).where(Document.id.in_(doc_ids.values())))
    await engine.dispose()


def seeded_only(chunks, chunk_ids):
    return [c for c in chunks if c.chunk_id in chunk_ids]


async def test_direct_and_client_paths_agree(seeded_store):
    store, chunk_ids = seeded_store
    threshold, limit = 0.7, 15

    direct = await store.search(QUERY_VECTOR, k=limit, threshold=threshold)
    client = VectorSearchClient(FakeEmbedder({"sleep training": QUERY_VECTOR}), store)
    via_client = await client.search("sleep training", threshold=threshold, limit=limit)

    assert seeded_only(via_client, chunk_ids) == seeded_only(direct, chunk_ids)
    assert [chunk_ids[c.chunk_id] for c in seeded_only(via_client, chunk_ids)] == ["c1", "c2", "c5"]


async def test_lower_threshold_widens_results(seeded_store):
    store, chunk_ids = seeded_store
    client = VectorSearchClient(FakeEmbedder({"sleep training": QUERY_VECTOR}), store)

    results = await client.search("sleep training", threshold=0.5, limit=15)

    assert [chunk_ids[c.chunk_id] for c in seeded_only(results, chunk_ids)] == ["c1", "c2", "c5", "c3"]
    assert all(0.0 <= c.similarity <= 1.0 for c in results)
