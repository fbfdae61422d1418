"""
API Models

Request and response payloads for the wiki and search endpoints. Domain
objects (``GeneratedPage``, ``Stub``, ``Chunk``) are returned as-is; only the
envelopes live here.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..rag.models import Chunk
from ..wiki.models import GeneratedPage, RelatedPage, Stub


# ---------------------------------------------------------------------
# Wiki
# ---------------------------------------------------------------------

class GenerateRequest(BaseModel):
    """
    Topic to write a page about. Validated by the pipeline, not here, so
    that the streaming route can report validation as an error event.
    """
    query: str

    model_config = ConfigDict(extra="forbid")


class RegenerateRequest(BaseModel):
    slug: str = Field(..., min_length=1)

    model_config = ConfigDict(extra="forbid")


class PageResponse(BaseModel):
    page: GeneratedPage
    stale: bool

    model_config = ConfigDict(extra="forbid")


class StubsResponse(BaseModel):
    stubs: List[Stub] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")


class RelatedPagesResponse(BaseModel):
    slug: str
    related: List[RelatedPage] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------

class SearchRequest(BaseModel):
    """
    Direct semantic search request. Omitted fields fall back to the
    configured defaults.
    """
    query: str = Field(..., min_length=1)
    threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    limit: Optional[int] = Field(default=None, ge=1, le=100)

    model_config = ConfigDict(extra="forbid")


class SearchResponse(BaseModel):
    results: List[Chunk] = Field(default_factory=list)
    total_results: int = Field(0, ge=0)

    model_config = ConfigDict(extra="forbid")
