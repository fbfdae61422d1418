"""
Shared fixtures and fakes.

Collaborators are replaced at their contract boundary:
- embedder: fixed vectors per query text
- streaming LLM: scripted TextDelta / UsageDelta sequences
- search client: canned results per threshold
- page cache and graph store: the in-memory implementations
"""

import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import pytest

from almanac_wiki.core.errors import PersistenceError
from almanac_wiki.llm.client import TextDelta, UsageDelta
from almanac_wiki.rag.models import Chunk
from almanac_wiki.wiki.cache import InMemoryPageCache, ttl_expiry
from almanac_wiki.wiki.graph import InMemoryGraphStore, LinkGraphUpdater
from almanac_wiki.wiki.models import GeneratedPage, PageMetadata
from almanac_wiki.wiki.orchestrator import GenerationOptions, GenerationOrchestrator


FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------

def make_chunk(
    chunk_id: str,
    document_id: str,
    similarity: float,
    content: Optional[str] = None,
    document_title: Optional[str] = None,
) -> Chunk:
    return Chunk(
        chunk_id=chunk_id,
        document_id=document_id,
        content=content or f"Passage {chunk_id} from {document_id}.",
        similarity=similarity,
        document_title=document_title or f"Title of {document_id}",
    )


def make_page(
    slug: str,
    query: str = "some topic",
    published: bool = True,
    confidence: float = 0.8,
    generated_at: datetime = FIXED_NOW,
    ttl_hours: float = 48,
    view_count: int = 0,
    content: Optional[str] = None,
) -> GeneratedPage:
    return GeneratedPage(
        slug=slug,
        title=query.title(),
        content=content or f"# {query.title()}\n\nAn article about {query}.",
        excerpt=f"An article about {query}.",
        confidence_score=confidence,
        generated_at=generated_at,
        ttl_expires_at=ttl_expiry(generated_at, ttl_hours),
        published=published,
        view_count=view_count,
        metadata=PageMetadata(query=query),
    )


# ---------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------

class FakeEmbedder:
    """Returns a registered vector per query text."""

    def __init__(self, vectors: Dict[str, List[float]], default: Optional[List[float]] = None):
        self.vectors = vectors
        self.default = default
        self.calls: List[str] = []

    async def embed_query(self, text: str) -> List[float]:
        self.calls.append(text)
        if text in self.vectors:
            return self.vectors[text]
        if self.default is None:
            raise KeyError(text)
        return self.default


class ScriptedLLM:
    """
    Streams a fixed list of events. An exception instance in the script is
    raised at that point; ``delay`` sleeps before every event.
    """

    def __init__(self, script: Sequence[object], delay: float = 0.0):
        self.script = list(script)
        self.delay = delay
        self.calls: List[dict] = []
        self.closed = False

    async def stream(self, system_prompt, user_message, temperature=0.7, max_tokens=4096):
        self.calls.append({
            "system_prompt": system_prompt,
            "user_message": user_message,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        try:
            for item in self.script:
                if self.delay:
                    await asyncio.sleep(self.delay)
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            self.closed = True


def article_script(content: str, input_tokens: int = 1200, output_tokens: int = 800) -> List[object]:
    """Usage at stream start and end, content split into a few deltas."""
    step = max(1, len(content) // 4)
    deltas = [TextDelta(content[i:i + step]) for i in range(0, len(content), step)]
    return [
        UsageDelta(input_tokens=input_tokens, output_tokens=1),
        *deltas,
        UsageDelta(output_tokens=output_tokens),
    ]


class StaticSearchClient:
    """Returns canned results keyed by threshold; records every call."""

    def __init__(self, by_threshold: Optional[Dict[float, List[Chunk]]] = None):
        self.by_threshold = by_threshold or {}
        self.calls: List[tuple] = []

    async def search(self, query, threshold=None, limit=None):
        self.calls.append((query, threshold, limit))
        results = self.by_threshold.get(threshold, [])
        return list(results)[:limit] if limit else list(results)


class FailingPutPageCache(InMemoryPageCache):
    async def put(self, page):
        raise PersistenceError("disk full")


# ---------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------

@pytest.fixture
def page_cache():
    return InMemoryPageCache()


@pytest.fixture
def graph_store(page_cache):
    return InMemoryGraphStore(pages=page_cache)


@pytest.fixture
def graph_updater(graph_store):
    return LinkGraphUpdater(graph_store, clock=lambda: FIXED_NOW)


@pytest.fixture
def options():
    return GenerationOptions(
        search_thresholds=(0.7, 0.6, 0.5),
        search_limit=15,
        context_token_budget=8000,
        model="test-model",
        timeout_seconds=5.0,
    )


@pytest.fixture
def make_orchestrator(page_cache, graph_updater, options):
    """Factory so each test picks its own search results and LLM script."""

    def _build(search_client, llm, **overrides):
        kwargs = dict(
            search_client=search_client,
            llm=llm,
            pages=page_cache,
            extractor=None,
            graph=graph_updater,
            options=options,
            clock=lambda: FIXED_NOW,
        )
        kwargs.update(overrides)
        return GenerationOrchestrator(**kwargs)

    return _build
