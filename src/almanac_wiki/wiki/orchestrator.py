"""
Generation Orchestrator

Runs one query end-to-end and reports progress as an async sequence of
``ProgressEvent`` values:

    searching -> generating -> finishing -> done
         \\            \\             \\
          +------------+-------------+--> error

Pipeline
--------
1. validate the query and derive the slug
2. search, widening the similarity threshold until something is found
3. assemble context and build the prompt (or take the no-sources branch)
4. stream the article, forwarding each text delta as a content event
5. extract entities, inject links, record mentions in the link graph
6. title, excerpt, confidence, persistence
7. mark any pending stub for the slug as generated

Only generation errors, timeouts, validation and persistence failures end a
run with an ``error`` event. Retrieval, extraction and graph failures are
logged and the run continues with less detail.

The page is written only in step 6, so a consumer that stops iterating
(``aclose``, client disconnect) before then leaves no page behind.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Protocol, Tuple, TypeVar

from ..config import settings
from ..core.errors import (
    GenerationError,
    PageNotFoundError,
    PipelineTimeoutError,
    WikiError,
)
from ..core.result import Err, NotFound
from ..llm.client import StreamEvent, TextDelta, UsageDelta, estimate_cost
from ..rag.confidence import ConfidenceScorer
from ..rag.context import ContextAssembler, format_context_for_prompt
from ..rag.models import AssembledContext, SearchResult, SearchStats
from .cache import PageCache, ttl_expiry, utcnow
from .entities import EntityExtractor
from .graph import LinkGraphUpdater
from .links import inject_links
from .models import (
    ContentEvent,
    DoneEvent,
    EntityLink,
    EntityMention,
    ErrorEvent,
    GeneratedPage,
    PageMetadata,
    ProgressEvent,
    StatusEvent,
    TokenUsage,
)
from .prompts import build_fallback_prompt, build_user_message, build_wiki_prompt
from .text import extract_title, generate_excerpt, query_to_slug, validate_query, validate_slug

logger = logging.getLogger("wiki.orchestrator")

T = TypeVar("T")


# ---------------------------------------------------------------------
# Collaborator Contracts
# ---------------------------------------------------------------------

class SearchClient(Protocol):
    async def search(
        self,
        query: str,
        threshold: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> SearchResult:
        ...


class StreamingLLM(Protocol):
    def stream(
        self,
        system_prompt: str,
        user_message: str,
        temperature: float = 0.7,
        max_tokens: int = 4096,
    ) -> AsyncIterator[StreamEvent]:
        ...


# ---------------------------------------------------------------------
# Options and Run State
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class GenerationOptions:
    search_thresholds: Tuple[float, ...] = (0.7, 0.6, 0.5)
    search_limit: int = 15
    context_token_budget: int = 8000
    temperature: float = 0.7
    max_tokens: int = 4096
    model: Optional[str] = None
    ttl_hours: float = 48
    publish_threshold: float = 0.6
    input_cost_per_million: float = 3.0
    output_cost_per_million: float = 15.0
    timeout_seconds: float = 240.0

    @classmethod
    def from_settings(cls) -> "GenerationOptions":
        return cls(
            search_thresholds=tuple(settings.search_thresholds) or (0.7,),
            search_limit=settings.search_limit,
            context_token_budget=settings.context_token_budget,
            temperature=settings.generation_temperature,
            max_tokens=settings.generation_max_tokens,
            model=settings.generation_model,
            ttl_hours=settings.page_ttl_hours,
            publish_threshold=settings.publish_threshold,
            input_cost_per_million=settings.input_cost_per_million,
            output_cost_per_million=settings.output_cost_per_million,
            timeout_seconds=settings.pipeline_timeout_seconds,
        )


class GenerationState(str, Enum):
    IDLE = "idle"
    SEARCHING = "searching"
    GENERATING = "generating"
    FINISHING = "finishing"
    DONE = "done"
    ERROR = "error"


_TRANSITIONS = {
    GenerationState.IDLE: {GenerationState.SEARCHING, GenerationState.ERROR},
    GenerationState.SEARCHING: {GenerationState.GENERATING, GenerationState.ERROR},
    GenerationState.GENERATING: {GenerationState.FINISHING, GenerationState.ERROR},
    GenerationState.FINISHING: {GenerationState.DONE, GenerationState.ERROR},
    GenerationState.DONE: set(),
    GenerationState.ERROR: set(),
}


@dataclass
class GenerationRun:
    """Mutable state of a single generation."""
    query: str
    slug: Optional[str] = None
    force_publish: bool = False
    state: GenerationState = GenerationState.IDLE
    started: float = field(default_factory=time.monotonic)

    def advance(self, target: GenerationState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal transition {self.state.value} -> {target.value}")
        self.state = target


class _Deadline:
    """Wall-clock budget shared by every await of one run."""

    def __init__(self, seconds: float) -> None:
        self._seconds = seconds
        self._expires = time.monotonic() + seconds

    def remaining(self) -> float:
        return self._expires - time.monotonic()

    async def run(self, awaitable: Awaitable[T]) -> T:
        remaining = self.remaining()
        if remaining <= 0:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise PipelineTimeoutError(f"Generation exceeded {self._seconds:.0f}s")
        try:
            return await asyncio.wait_for(awaitable, timeout=remaining)
        except asyncio.TimeoutError as exc:
            raise PipelineTimeoutError(
                f"Generation exceeded {self._seconds:.0f}s"
            ) from exc


async def _next_event(events: AsyncIterator[StreamEvent]) -> Optional[StreamEvent]:
    try:
        return await events.__anext__()
    except StopAsyncIteration:
        return None


# ---------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------

class GenerationOrchestrator:
    """
    Query-to-page pipeline over injected collaborators.

    The orchestrator holds no per-request state; each call creates its own
    ``GenerationRun``, so one instance may serve concurrent requests.

    Concurrent requests for the same uncached slug are not deduplicated
    here and will each pay for a generation. Callers that need at most one
    build per slug must hold a per-slug lock or lease around ``stream``.
    """

    def __init__(
        self,
        search_client: SearchClient,
        llm: StreamingLLM,
        pages: PageCache,
        extractor: Optional[EntityExtractor] = None,
        graph: Optional[LinkGraphUpdater] = None,
        assembler: Optional[ContextAssembler] = None,
        scorer: Optional[ConfidenceScorer] = None,
        options: Optional[GenerationOptions] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._search = search_client
        self._llm = llm
        self._pages = pages
        self._extractor = extractor
        self._graph = graph
        self._assembler = assembler or ContextAssembler()
        self._scorer = scorer or ConfidenceScorer()
        self.options = options or GenerationOptions()
        self._clock = clock

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def stream(
        self,
        query: str,
        slug: Optional[str] = None,
        force_publish: bool = False,
    ) -> AsyncIterator[ProgressEvent]:
        """
        Generate a page, yielding progress events in pipeline order.

        The sequence always ends with exactly one ``done`` or ``error``
        event. Closing the iterator early cancels the run.
        """
        run = GenerationRun(query=query, slug=slug, force_publish=force_publish)

        try:
            async with aclosing(self._events(run)) as events:
                async for event in events:
                    yield event
        except WikiError as exc:
            logger.error(
                "Generation failed in state %s for %r: %s (%s)",
                run.state.value,
                query,
                exc,
                exc.error_type,
            )
            yield ErrorEvent(message=str(exc) or exc.error_type, error_type=exc.error_type)
        except Exception:
            logger.exception("Unexpected generation failure for %r", query)
            yield ErrorEvent(message="Generation failed unexpectedly", error_type="internal_error")

    async def generate(
        self,
        query: str,
        slug: Optional[str] = None,
        force_publish: bool = False,
    ) -> GeneratedPage:
        """
        Non-streaming variant for batch callers.

        Raises
        ------
        WikiError
            The failure that ended the run.
        """
        run = GenerationRun(query=query, slug=slug, force_publish=force_publish)
        page: Optional[GeneratedPage] = None

        async with aclosing(self._events(run)) as events:
            async for event in events:
                if isinstance(event, DoneEvent):
                    page = event.page

        if page is None:
            raise GenerationError("Generation finished without a page")
        return page

    async def regenerate(self, slug: str) -> GeneratedPage:
        """
        Rebuild an existing page from its stored query and publish it
        regardless of the new confidence score.

        Raises
        ------
        PageNotFoundError
            If there is no page for ``slug`` or it has no stored query.
        PersistenceError
            If the page store cannot be read or written.
        """
        validate_slug(slug)
        lookup = await self._pages.get(slug)

        if isinstance(lookup, Err):
            raise lookup.error
        if isinstance(lookup, NotFound):
            raise PageNotFoundError(f"No page for slug {slug!r}")

        query = lookup.value.metadata.query
        if not query:
            raise PageNotFoundError(f"Page {slug!r} has no stored query")

        await self._pages.invalidate(slug)
        logger.info("Regenerating %s from query %r", slug, query)
        return await self.generate(query, slug=slug, force_publish=True)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _events(self, run: GenerationRun) -> AsyncIterator[ProgressEvent]:
        try:
            async with aclosing(self._pipeline(run)) as events:
                async for event in events:
                    yield event
        except Exception:
            if run.state not in (GenerationState.DONE, GenerationState.ERROR):
                run.advance(GenerationState.ERROR)
            raise

    async def _pipeline(self, run: GenerationRun) -> AsyncIterator[ProgressEvent]:
        opts = self.options
        deadline = _Deadline(opts.timeout_seconds)

        query = validate_query(run.query)
        slug = run.slug or query_to_slug(query)
        validate_slug(slug)

        # -- searching -------------------------------------------------
        run.advance(GenerationState.SEARCHING)
        yield self._status(run, "Searching the almanac...")

        results: SearchResult = []
        thresholds = opts.search_thresholds
        for attempt, threshold in enumerate(thresholds):
            results = await deadline.run(
                self._search.search(query, threshold=threshold, limit=opts.search_limit)
            )
            if results:
                break
            if attempt < len(thresholds) - 1:
                yield self._status(run, "No strong matches yet, broadening search...")

        if results:
            assembled = self._assembler.assemble(results, opts.context_token_budget, query)
            system_prompt = build_wiki_prompt(query, format_context_for_prompt(assembled))
            yield self._status(run, f"Found {len(results)} relevant sources...")
        else:
            assembled = AssembledContext()
            system_prompt = build_fallback_prompt(query)
            yield self._status(run, "Using AI knowledge...")

        # -- generating ------------------------------------------------
        run.advance(GenerationState.GENERATING)
        yield self._status(run, "Crafting your article...")

        parts: List[str] = []
        input_tokens = output_tokens = 0

        stream = self._llm.stream(
            system_prompt,
            build_user_message(query),
            temperature=opts.temperature,
            max_tokens=opts.max_tokens,
        )
        async with aclosing(stream) as events:
            while True:
                event = await deadline.run(_next_event(events))
                if event is None:
                    break
                if isinstance(event, TextDelta):
                    parts.append(event.text)
                    yield ContentEvent(text=event.text)
                elif isinstance(event, UsageDelta):
                    if event.input_tokens is not None:
                        input_tokens = event.input_tokens
                    if event.output_tokens is not None:
                        output_tokens = event.output_tokens

        raw_content = "".join(parts)
        if not raw_content.strip():
            raise GenerationError("Generation returned no content")

        # -- finishing -------------------------------------------------
        run.advance(GenerationState.FINISHING)
        yield self._status(run, "Adding finishing touches...")

        mentions = await self._extract_mentions(raw_content, deadline)
        content = inject_links(raw_content, mentions)
        await self._record_mentions(mentions, slug)

        page = self._build_page(
            run=run,
            query=query,
            slug=slug,
            content=content,
            results=results,
            assembled=assembled,
            mentions=mentions,
            usage=TokenUsage(
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total_cost=estimate_cost(
                    input_tokens,
                    output_tokens,
                    opts.input_cost_per_million,
                    opts.output_cost_per_million,
                ),
            ),
        )

        yield self._status(run, "Saving to almanac...")
        await deadline.run(self._pages.put(page))
        logger.info(
            "Saved %s (confidence=%.2f, published=%s, sources=%d, tokens=%d/%d, cost=$%.4f, %dms)",
            page.slug,
            page.confidence_score,
            page.published,
            len(page.metadata.sources_used),
            input_tokens,
            output_tokens,
            page.metadata.token_usage.total_cost,
            page.metadata.generation_time_ms or 0,
        )

        await self._mark_generated(slug)

        run.advance(GenerationState.DONE)
        yield DoneEvent(page=page)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _status(run: GenerationRun, message: str) -> StatusEvent:
        return StatusEvent(message=message, stage=run.state.value)

    async def _extract_mentions(
        self,
        content: str,
        deadline: _Deadline,
    ) -> List[EntityMention]:
        if self._extractor is None:
            return []
        try:
            return await deadline.run(self._extractor.extract(content))
        except PipelineTimeoutError:
            raise
        except Exception as exc:
            logger.warning("Entity extraction failed, continuing without links: %s", exc)
            return []

    async def _record_mentions(self, mentions: List[EntityMention], slug: str) -> None:
        if self._graph is None or not mentions:
            return
        result = await self._graph.record_mentions(mentions, slug)
        if isinstance(result, Err):
            logger.warning("Link graph update for %s incomplete: %s", slug, result.error)

    async def _mark_generated(self, slug: str) -> None:
        if self._graph is None:
            return
        result = await self._graph.mark_generated(slug)
        if isinstance(result, Err):
            logger.warning("Could not mark stub %s as generated: %s", slug, result.error)

    def _build_page(
        self,
        run: GenerationRun,
        query: str,
        slug: str,
        content: str,
        results: SearchResult,
        assembled: AssembledContext,
        mentions: List[EntityMention],
        usage: TokenUsage,
    ) -> GeneratedPage:
        opts = self.options
        ai_fallback = not results

        confidence = self._scorer.score(
            result_count=len(results),
            source_count=len(assembled.sources),
            content_length=len(content),
        )
        generated_at = self._clock()

        metadata = PageMetadata(
            query=query,
            sources_used=list(assembled.sources),
            source_titles=list(assembled.source_titles),
            entity_links=[
                EntityLink(entity=m.text, slug=m.slug, confidence=m.confidence)
                for m in mentions
            ],
            chunk_count=assembled.chunks_used,
            token_usage=usage,
            search_stats=SearchStats.from_results(results),
            generation_source="ai_knowledge" if ai_fallback else "rag_documents",
            ai_fallback=ai_fallback,
            model=opts.model,
            generation_time_ms=int((time.monotonic() - run.started) * 1000),
        )

        return GeneratedPage(
            slug=slug,
            title=extract_title(content, fallback=query),
            content=content,
            excerpt=generate_excerpt(content),
            confidence_score=confidence,
            generated_at=generated_at,
            ttl_expires_at=ttl_expiry(generated_at, opts.ttl_hours),
            published=run.force_publish or confidence >= opts.publish_threshold,
            metadata=metadata,
        )
