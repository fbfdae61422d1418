"""
Wiki Data Models

Pages, entity mentions, stubs, graph edges and the progress events emitted
by a generation. All models validate at construction so that rows coming
back from a store are checked at the boundary.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, ConfigDict

from ..rag.models import SearchStats


# ---------------------------------------------------------------------
# Entities and Graph
# ---------------------------------------------------------------------

class ConfidenceTier(str, Enum):
    """Coarse quality label for a candidate entity link."""
    STRONG = "strong"
    MEDIUM = "medium"
    WEAK = "weak"
    GHOST = "ghost"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]


_TIER_RANK = {
    ConfidenceTier.GHOST: 0,
    ConfidenceTier.WEAK: 1,
    ConfidenceTier.MEDIUM: 2,
    ConfidenceTier.STRONG: 3,
}


class EntityMention(BaseModel):
    """One entity found in a generated article."""
    text: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1)
    confidence: ConfidenceTier
    context_sentence: str = ""
    relevance: float = Field(default=0.5, ge=0.0, le=1.0)
    category: Optional[str] = None

    model_config = ConfigDict(extra="forbid", frozen=True)


class Stub(BaseModel):
    """A suggested-but-ungenerated topic aggregated from mentions."""
    slug: str = Field(..., min_length=1)
    title: str
    mentioned_in: List[str] = Field(default_factory=list)
    mention_count: int = Field(default=0, ge=0)
    confidence: ConfidenceTier = ConfidenceTier.WEAK
    category: Optional[str] = None
    is_generated: bool = False
    created_at: Optional[datetime] = None
    generated_at: Optional[datetime] = None

    model_config = ConfigDict(extra="forbid")


class PageConnection(BaseModel):
    """Weighted directed edge between two pages."""
    from_slug: str
    to_slug: str
    strength: float = Field(..., ge=0.0, le=1.0)
    link_text: str = ""

    model_config = ConfigDict(extra="forbid")


class RelatedPage(BaseModel):
    slug: str
    strength: float = Field(..., ge=0.0, le=1.0)
    bidirectional: bool = False

    model_config = ConfigDict(extra="forbid", frozen=True)


# ---------------------------------------------------------------------
# Generated Pages
# ---------------------------------------------------------------------

class TokenUsage(BaseModel):
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    total_cost: float = Field(default=0.0, ge=0.0)

    model_config = ConfigDict(extra="forbid")


class EntityLink(BaseModel):
    entity: str
    slug: str
    confidence: ConfidenceTier

    model_config = ConfigDict(extra="forbid")


class PageMetadata(BaseModel):
    """Provenance of one generation, stored alongside the page."""
    query: str
    sources_used: List[str] = Field(default_factory=list)
    source_titles: List[str] = Field(default_factory=list)
    entity_links: List[EntityLink] = Field(default_factory=list)
    chunk_count: int = Field(default=0, ge=0)
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    search_stats: SearchStats = Field(default_factory=SearchStats)
    generation_source: Literal["rag_documents", "ai_knowledge"] = "rag_documents"
    ai_fallback: bool = False
    model: Optional[str] = None
    generation_time_ms: Optional[int] = None

    model_config = ConfigDict(extra="ignore")


class GeneratedPage(BaseModel):
    """
    A persisted wiki article.

    Pages are replaced wholesale on regeneration. There is no archived
    state: a page is either published or a draft.
    """
    slug: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    content: str
    excerpt: str = ""
    confidence_score: float = Field(..., ge=0.0, le=1.0)
    generated_at: datetime
    ttl_expires_at: datetime
    published: bool
    view_count: int = Field(default=0, ge=0)
    metadata: PageMetadata

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------
# Progress Events
# ---------------------------------------------------------------------

class StatusEvent(BaseModel):
    type: Literal["status"] = "status"
    message: str
    stage: Optional[str] = None

    model_config = ConfigDict(extra="forbid", frozen=True)


class ContentEvent(BaseModel):
    type: Literal["content"] = "content"
    text: str

    model_config = ConfigDict(extra="forbid", frozen=True)


class DoneEvent(BaseModel):
    type: Literal["done"] = "done"
    page: GeneratedPage

    model_config = ConfigDict(extra="forbid", frozen=True)


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str
    error_type: str = "internal_error"

    model_config = ConfigDict(extra="forbid", frozen=True)


ProgressEvent = Annotated[
    Union[StatusEvent, ContentEvent, DoneEvent, ErrorEvent],
    Field(discriminator="type"),
]
