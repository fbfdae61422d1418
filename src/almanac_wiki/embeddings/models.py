"""
Chunk Storage Model

Canonical record for one pre-chunked span of a source document as held by
a similarity backend. Each instance corresponds to ONE embedding vector.
"""

from __future__ import annotations

from typing import Optional
from pydantic import BaseModel, Field, ConfigDict

from ..rag.models import Chunk


class StoredChunk(BaseModel):
    """
    A single indexed document chunk.

    This model is the authoritative schema for:
    - FAISS index storage
    - Metadata persistence to JSON
    - Mapping index hits to ``Chunk`` search results
    """

    chunk_id: str = Field(..., min_length=1)

    document_id: str = Field(..., min_length=1)

    content: str = Field(
        ...,
        min_length=1,
        description="Raw text content for this embedded chunk.",
    )

    document_title: str = Field(default="Untitled")

    section_title: Optional[str] = None

    page_number: Optional[int] = Field(default=None, ge=0)

    chunk_index: int = Field(default=0, ge=0)

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
    )

    def with_similarity(self, similarity: float) -> Chunk:
        """Project this stored chunk into a ranked search hit."""
        return Chunk(
            similarity=similarity,
            **self.model_dump(),
        )
