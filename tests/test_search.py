"""
Vector search: literal format, client behaviour, and the FAISS / pgvector
backends behind the same ``similarity_search`` contract.
"""

import math
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from almanac_wiki.db.vector_store import PgVectorStore, SEARCH_CHUNKS_FUNCTION_SQL
from almanac_wiki.embeddings.index import FaissChunkIndex
from almanac_wiki.embeddings.models import StoredChunk
from almanac_wiki.rag.search import (
    VectorSearchClient,
    parse_vector_literal,
    to_vector_literal,
)

from conftest import FakeEmbedder, make_chunk


QUERY_VECTOR = [1.0, 0.0, 0.0]

SEEDED = [
    ("c1", "doc-a", [1.0, 0.0, 0.0]),
    ("c2", "doc-a", [0.9, 0.1, 0.0]),
    ("c3", "doc-b", [0.6, 0.8, 0.0]),
    ("c4", "doc-b", [0.0, 1.0, 0.0]),
    ("c5", "doc-c", [0.8, 0.6, 0.0]),
]


@pytest.fixture
def seeded_index(tmp_path):
    index = FaissChunkIndex(
        index_path=str(tmp_path / "chunks.faiss"),
        meta_path=str(tmp_path / "chunks_meta.json"),
    )
    chunks = [
        StoredChunk(
            chunk_id=chunk_id,
            document_id=doc,
            content=f"Content of {chunk_id}",
            document_title=f"Title {doc}",
        )
        for chunk_id, doc, _ in SEEDED
    ]
    index.add_chunks(chunks, [vec for _, _, vec in SEEDED])
    return index


class FakeSession:
    def __init__(self, rows):
        result = MagicMock()
        result.all.return_value = rows
        self.execute = AsyncMock(return_value=result)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


# ---------------------------------------------------------------------
# Literal format
# ---------------------------------------------------------------------

class TestVectorLiteral:

    def test_bracketed_comma_joined(self):
        assert to_vector_literal([0.25, -0.5, 1]) == "[0.25,-0.5,1.0]"

    def test_round_trips_exactly(self):
        vector = [0.1, 1 / 3, -2.5e-07, 12345.678]
        assert parse_vector_literal(to_vector_literal(vector)) == vector

    def test_parse_tolerates_spaces(self):
        assert parse_vector_literal(" [ 0.5, -1 ,2 ] ") == [0.5, -1.0, 2.0]

    @pytest.mark.parametrize("vector", [[], [math.nan], [math.inf, 0.0]])
    def test_rejects_unserialisable_vectors(self, vector):
        with pytest.raises(ValueError):
            to_vector_literal(vector)

    @pytest.mark.parametrize("literal", ["", "[]", "0.1,0.2", "{0.1,0.2}", "[0.1,abc]"])
    def test_rejects_malformed_literals(self, literal):
        with pytest.raises(ValueError):
            parse_vector_literal(literal)


# ---------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------

class TestVectorSearchClient:

    async def test_passes_literal_to_backend(self):
        backend = AsyncMock()
        backend.similarity_search.return_value = []
        client = VectorSearchClient(FakeEmbedder({"naps": [0.25, -0.5]}), backend)

        await client.search("naps", threshold=0.75, limit=15)

        backend.similarity_search.assert_awaited_once_with("[0.25,-0.5]", 0.75, 15)

    async def test_enforces_threshold_order_and_limit(self):
        backend = AsyncMock()
        backend.similarity_search.return_value = [
            make_chunk("low", "doc-a", 0.5),
            make_chunk("mid", "doc-b", 0.8),
            make_chunk("top", "doc-c", 0.95),
            make_chunk("edge", "doc-d", 0.75),
        ]
        client = VectorSearchClient(FakeEmbedder({}, default=[1.0]), backend)

        results = await client.search("naps", threshold=0.75, limit=2)

        assert [c.chunk_id for c in results] == ["top", "mid"]

    async def test_uses_defaults(self):
        backend = AsyncMock()
        backend.similarity_search.return_value = []
        client = VectorSearchClient(
            FakeEmbedder({}, default=[1.0]), backend, default_threshold=0.6, default_limit=4
        )

        await client.search("naps")

        backend.similarity_search.assert_awaited_once_with("[1.0]", 0.6, 4)

    async def test_backend_failure_returns_empty(self):
        backend = AsyncMock()
        backend.similarity_search.side_effect = ConnectionError("db down")
        client = VectorSearchClient(FakeEmbedder({}, default=[1.0]), backend)

        assert await client.search("naps") == []

    async def test_embedding_failure_returns_empty(self):
        backend = AsyncMock()
        client = VectorSearchClient(FakeEmbedder({}), backend)

        assert await client.search("unknown query") == []
        backend.similarity_search.assert_not_awaited()

    @pytest.mark.parametrize("query,limit", [("", 5), ("   ", 5), ("naps", 0)])
    async def test_trivial_requests_skip_embedding(self, query, limit):
        embedder = FakeEmbedder({}, default=[1.0])
        client = VectorSearchClient(embedder, AsyncMock())

        assert await client.search(query, limit=limit) == []
        assert embedder.calls == []


# ---------------------------------------------------------------------
# FAISS backend
# ---------------------------------------------------------------------

class TestFaissBackend:

    async def test_direct_and_client_paths_agree(self, seeded_index):
        threshold, limit = 0.7, 15

        direct = [
            stored.with_similarity(min(max(score, 0.0), 1.0))
            for stored, score in seeded_index.search(QUERY_VECTOR, k=limit)
            if score >= threshold
        ]
        client = VectorSearchClient(FakeEmbedder({"sleep training": QUERY_VECTOR}), seeded_index)
        via_client = await client.search("sleep training", threshold=threshold, limit=limit)

        assert via_client == direct
        assert [c.chunk_id for c in via_client] == ["c1", "c2", "c5"]

    async def test_similarity_search_filters_by_threshold(self, seeded_index):
        results = await seeded_index.similarity_search(to_vector_literal(QUERY_VECTOR), 0.5, 10)

        assert [c.chunk_id for c in results] == ["c1", "c2", "c5", "c3"]
        assert all(0.0 <= c.similarity <= 1.0 for c in results)

    def test_delete_document(self, seeded_index):
        assert seeded_index.delete_document("doc-b") == 2
        assert len(seeded_index) == 3
        assert seeded_index.get_stats()["total_documents"] == 2

    def test_save_and_load(self, seeded_index, tmp_path):
        seeded_index.save()

        reloaded = FaissChunkIndex(
            index_path=str(tmp_path / "chunks.faiss"),
            meta_path=str(tmp_path / "chunks_meta.json"),
        )
        assert reloaded.load() is True
        assert len(reloaded) == len(seeded_index)
        assert [c.chunk_id for c, _ in reloaded.search(QUERY_VECTOR, k=2)] == ["c1", "c2"]

    def test_load_without_files(self, tmp_path):
        index = FaissChunkIndex(
            index_path=str(tmp_path / "missing.faiss"),
            meta_path=str(tmp_path / "missing.json"),
        )
        assert index.load() is False


# ---------------------------------------------------------------------
# pgvector backend
# ---------------------------------------------------------------------

class TestPgVectorStore:

    async def test_similarity_search_binds_literal_as_text(self):
        row = SimpleNamespace(
            id="11111111-1111-1111-1111-111111111111",
            document_id="22222222-2222-2222-2222-222222222222",
            content="Swaddling passage",
            section_title="Swaddling",
            page_number=4,
            chunk_index=2,
            similarity=0.83,
            document_title="Newborn Care",
        )
        session = FakeSession([row])
        store = PgVectorStore(lambda: session)

        results = await store.similarity_search("[0.1,0.2]", 0.75, 15)

        stmt, params = session.execute.await_args.args
        assert "CAST(:query_embedding AS vector)" in str(stmt)
        assert params == {"query_embedding": "[0.1,0.2]", "match_threshold": 0.75, "match_count": 15}
        assert results[0].chunk_id == row.id
        assert results[0].document_title == "Newborn Care"
        assert results[0].similarity == 0.83

    async def test_similarity_is_clamped(self):
        row = SimpleNamespace(
            id="c", document_id="d", content="x", section_title=None,
            page_number=None, chunk_index=None, similarity=1.0000002, document_title=None,
        )
        store = PgVectorStore(lambda: FakeSession([row]))

        results = await store.similarity_search("[1.0]", 0.5, 5)

        assert results[0].similarity == 1.0
        assert results[0].document_title == "Untitled"

    def test_search_function_filters_and_orders_by_distance(self):
        assert "match_threshold" in SEARCH_CHUNKS_FUNCTION_SQL
        assert "ORDER BY c.embedding <=> query_embedding" in SEARCH_CHUNKS_FUNCTION_SQL
