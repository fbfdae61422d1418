"""
Vector Search Client

Turns a text query into ranked document chunks:

    query --embed--> vector --literal--> backend.similarity_search --> chunks

Backends receive the query vector as a pgvector text literal
(``"[0.1,-0.2,...]"``), the format expected by ``CAST(:v AS vector)``.
A mismatch between the client's array representation and the text the
backend parses makes similarity queries silently return nothing, so the
literal is produced in one place and parsed back in one place.

Search is read-only and never raises: on any embedding or backend failure
it logs and returns an empty result so the caller can fall back to
generation without sources.
"""

from __future__ import annotations

import logging
import math
import re
from typing import List, Optional, Protocol, Sequence

from .models import SearchResult

logger = logging.getLogger("wiki.search")

_LITERAL = re.compile(r"^\[\s*(.*?)\s*\]$", re.DOTALL)


# ---------------------------------------------------------------------
# Vector Literal Format
# ---------------------------------------------------------------------

def to_vector_literal(vector: Sequence[float]) -> str:
    """
    Serialise an embedding as ``"[x1,x2,...]"``.

    Floats use ``repr`` so the literal round-trips exactly.

    Raises
    ------
    ValueError
        If the vector is empty or holds NaN / infinite values.
    """
    if not vector:
        raise ValueError("Cannot serialise an empty vector")

    parts: List[str] = []
    for value in vector:
        number = float(value)
        if not math.isfinite(number):
            raise ValueError("Vector values must be finite")
        parts.append(repr(number))

    return "[" + ",".join(parts) + "]"


def parse_vector_literal(literal: str) -> List[float]:
    """
    Parse a ``"[x1,x2,...]"`` literal back into floats.

    Raises
    ------
    ValueError
        If the text is not a bracketed, comma-separated list of numbers.
    """
    match = _LITERAL.match(literal.strip()) if isinstance(literal, str) else None
    if match is None or not match.group(1):
        raise ValueError(f"Malformed vector literal: {str(literal)[:40]!r}")

    try:
        values = [float(part) for part in match.group(1).split(",")]
    except ValueError as exc:
        raise ValueError(f"Malformed vector literal: {exc}") from exc

    if not all(math.isfinite(v) for v in values):
        raise ValueError("Vector values must be finite")
    return values


# ---------------------------------------------------------------------
# Collaborator Contracts
# ---------------------------------------------------------------------

class QueryEmbedder(Protocol):
    async def embed_query(self, text: str) -> List[float]:
        ...


class SimilarityBackend(Protocol):
    async def similarity_search(
        self,
        embedding_literal: str,
        threshold: float,
        limit: int,
    ) -> SearchResult:
        """Chunks with similarity >= threshold, best first, at most limit."""
        ...


# ---------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------

class VectorSearchClient:
    """
    Query-to-chunks search over an injected embedder and backend.
    """

    def __init__(
        self,
        embedder: QueryEmbedder,
        backend: SimilarityBackend,
        default_threshold: float = 0.7,
        default_limit: int = 15,
    ) -> None:
        self._embedder = embedder
        self._backend = backend
        self.default_threshold = default_threshold
        self.default_limit = default_limit

    async def search(
        self,
        query: str,
        threshold: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> SearchResult:
        """
        Parameters
        ----------
        query : str
            Free-text query.

        threshold : Optional[float]
            Minimum cosine similarity, inclusive.

        limit : Optional[int]
            Maximum number of chunks.

        Returns
        -------
        SearchResult
            Chunks ordered by descending similarity; empty on failure.
        """
        threshold = self.default_threshold if threshold is None else threshold
        limit = self.default_limit if limit is None else limit

        if not query or not query.strip() or limit <= 0:
            return []

        try:
            vector = await self._embedder.embed_query(query)
            literal = to_vector_literal(vector)
            chunks = await self._backend.similarity_search(literal, threshold, limit)
        except Exception:
            logger.exception(
                "Vector search failed for query %r (threshold=%.2f, limit=%d)",
                query[:80],
                threshold,
                limit,
            )
            return []

        # Enforce ordering and bounds regardless of backend.
        results = [c for c in chunks if c.similarity >= threshold]
        results.sort(key=lambda c: c.similarity, reverse=True)
        results = results[:limit]

        logger.info(
            "Search returned %d chunks (threshold=%.2f, limit=%d)",
            len(results),
            threshold,
            limit,
        )
        return results
