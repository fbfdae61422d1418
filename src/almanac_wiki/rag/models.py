"""
Retrieval Data Models

Typed DTOs exchanged between the similarity backend, the search client and
the context assembler.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field, ConfigDict


class Chunk(BaseModel):
    """
    One retrieved document chunk.

    Immutable once produced by a similarity backend; ``similarity`` is the
    cosine similarity to the query, clamped to [0, 1].
    """
    chunk_id: str = Field(..., min_length=1)
    document_id: str = Field(..., min_length=1)
    content: str
    similarity: float = Field(..., ge=0.0, le=1.0)
    document_title: str = "Untitled"
    section_title: Optional[str] = None
    page_number: Optional[int] = None
    chunk_index: int = 0

    model_config = ConfigDict(extra="forbid", frozen=True)


# Ordered by descending similarity, every entry at or above the threshold.
SearchResult = List[Chunk]


class SearchStats(BaseModel):
    """Summary of one retrieval, stored with the generated page."""
    total_results: int = Field(default=0, ge=0)
    avg_similarity: float = 0.0
    min_similarity: float = 0.0
    max_similarity: float = 0.0

    model_config = ConfigDict(extra="forbid", frozen=True)

    @classmethod
    def from_results(cls, results: SearchResult) -> "SearchStats":
        if not results:
            return cls()
        scores = [c.similarity for c in results]
        return cls(
            total_results=len(scores),
            avg_similarity=sum(scores) / len(scores),
            min_similarity=min(scores),
            max_similarity=max(scores),
        )


class AssembledContext(BaseModel):
    """
    Retrieved text packed under a token budget.

    ``sources`` holds distinct document ids in order of first appearance;
    ``source_titles`` is aligned with it.
    """
    context: str = ""
    sources: List[str] = Field(default_factory=list)
    source_titles: List[str] = Field(default_factory=list)
    tokens_used: int = 0
    chunks_used: int = 0
    truncated: bool = False

    model_config = ConfigDict(extra="forbid", frozen=True)
