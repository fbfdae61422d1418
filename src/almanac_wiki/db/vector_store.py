"""
Vector Store

PostgreSQL + pgvector similarity search over document chunks.

Two query paths share one result shape:

- ``search``             ORM query; pgvector binds the Python list itself
- ``similarity_search``  the ``search_chunks`` SQL function, which takes
                         the query vector as text and casts it
                         (``CAST(:query_embedding AS vector)``)

``similarity_search`` is the backend contract used by
``VectorSearchClient``. Both paths must return the same chunks for the
same embedding.
"""

from __future__ import annotations

from typing import Any, List, Optional

from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import Document, DocumentChunk
from ..rag.models import Chunk, SearchResult


SEARCH_CHUNKS_FUNCTION_SQL = """
CREATE OR REPLACE FUNCTION search_chunks(
    query_embedding vector(1536),
    match_threshold float,
    match_count int
)
RETURNS TABLE (
    id uuid,
    document_id uuid,
    content text,
    section_title text,
    page_number int,
    chunk_index int,
    similarity float,
    document_title text
)
LANGUAGE sql STABLE
AS $$
    SELECT
        c.id,
        c.document_id,
        c.content,
        c.section_title,
        c.page_number,
        c.chunk_index,
        1 - (c.embedding <=> query_embedding) AS similarity,
        d.title AS document_title
    FROM document_chunks c
    JOIN documents d ON d.id = c.document_id
    WHERE 1 - (c.embedding <=> query_embedding) >= match_threshold
    ORDER BY c.embedding <=> query_embedding
    LIMIT match_count;
$$;
"""

_SEARCH_CHUNKS_CALL = text(
    "SELECT * FROM search_chunks("
    "CAST(:query_embedding AS vector), :match_threshold, :match_count)"
)


def _to_chunk(row: Any) -> Chunk:
    return Chunk(
        chunk_id=str(row.id),
        document_id=str(row.document_id),
        content=row.content,
        similarity=min(max(float(row.similarity), 0.0), 1.0),
        document_title=row.document_title or "Untitled",
        section_title=row.section_title,
        page_number=row.page_number,
        chunk_index=row.chunk_index or 0,
    )


class PgVectorStore:
    """
    PostgreSQL-backed similarity backend using pgvector.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """
        Parameters
        ----------
        session_factory : async_sessionmaker[AsyncSession]
            Factory for short-lived read sessions.
        """
        self._session_factory = session_factory

    async def search(
        self,
        query_embedding: List[float],
        k: int = 5,
        threshold: Optional[float] = None,
    ) -> SearchResult:
        """
        Direct ORM query with a raw float vector.

        Returns
        -------
        SearchResult
            Chunks ordered by descending cosine similarity.
        """
        cosine_distance = DocumentChunk.embedding.cosine_distance(query_embedding)

        stmt = (
            select(
                DocumentChunk.id,
                DocumentChunk.document_id,
                DocumentChunk.content,
                DocumentChunk.section_title,
                DocumentChunk.page_number,
                DocumentChunk.chunk_index,
                (1 - cosine_distance).label("similarity"),
                Document.title.label("document_title"),
            )
            .join(Document, Document.id == DocumentChunk.document_id)
            .order_by(cosine_distance)
            .limit(k)
        )

        if threshold is not None:
            stmt = stmt.where((1 - cosine_distance) >= threshold)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_to_chunk(row) for row in result.all()]

    async def similarity_search(
        self,
        embedding_literal: str,
        threshold: float,
        limit: int,
    ) -> SearchResult:
        """
        Call ``search_chunks`` with the vector literal as a text parameter.

        Parameters
        ----------
        embedding_literal : str
            ``"[x1,x2,...]"`` as produced by ``to_vector_literal``.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                _SEARCH_CHUNKS_CALL,
                {
                    "query_embedding": embedding_literal,
                    "match_threshold": threshold,
                    "match_count": limit,
                },
            )
            return [_to_chunk(row) for row in result.all()]


async def install_search_function(session: AsyncSession) -> None:
    await session.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
    await session.execute(text(SEARCH_CHUNKS_FUNCTION_SQL))
