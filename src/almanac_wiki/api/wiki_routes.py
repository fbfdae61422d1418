"""
Wiki Routes

Page generation (streamed and blocking), regeneration, page reads and the
link-graph views. Pipeline failures surface as ``WikiError`` and are
rendered by the application-level handler; the streaming route reports
them in-band as an ``error`` event instead.
"""

from __future__ import annotations

import logging
from contextlib import aclosing
from typing import Annotated, AsyncIterator

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import StreamingResponse

from .dependencies import get_graph_updater, get_orchestrator, get_page_cache
from .models import (
    GenerateRequest,
    PageResponse,
    RegenerateRequest,
    RelatedPagesResponse,
    StubsResponse,
)
from ..core.errors import PageNotFoundError
from ..core.result import Err, NotFound
from ..wiki.cache import PageCache, is_stale
from ..wiki.graph import LinkGraphUpdater
from ..wiki.models import GeneratedPage
from ..wiki.orchestrator import GenerationOrchestrator
from ..wiki.text import validate_slug

logger = logging.getLogger("wiki.app")

router = APIRouter(prefix="/wiki", tags=["wiki"])


def _sse_frame(payload: str) -> str:
    return f"data: {payload}\n\n"


# ---------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------

@router.post(
    "/generate-stream",
    summary="Generate a page, streaming progress as server-sent events",
    status_code=status.HTTP_200_OK,
)
async def generate_stream(
    req: GenerateRequest,
    orchestrator: Annotated[GenerationOrchestrator, Depends(get_orchestrator)],
) -> StreamingResponse:
    """
    Stream ``status``, ``content``, ``done`` and ``error`` events, one
    ``data:`` frame each.

    A client disconnect cancels the response task, which closes the
    event generator before anything is persisted.
    """

    async def frames() -> AsyncIterator[str]:
        async with aclosing(orchestrator.stream(req.query)) as events:
            async for event in events:
                yield _sse_frame(event.model_dump_json())

    return StreamingResponse(
        frames(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post(
    "/generate",
    response_model=GeneratedPage,
    summary="Generate a page and return it when finished",
)
async def generate(
    req: GenerateRequest,
    orchestrator: Annotated[GenerationOrchestrator, Depends(get_orchestrator)],
) -> GeneratedPage:
    return await orchestrator.generate(req.query)


@router.post(
    "/regenerate",
    response_model=GeneratedPage,
    summary="Rebuild an existing page from its stored query",
)
async def regenerate(
    req: RegenerateRequest,
    orchestrator: Annotated[GenerationOrchestrator, Depends(get_orchestrator)],
) -> GeneratedPage:
    """
    The rebuilt page is always published. 404 when the page or its stored
    query is missing.
    """
    return await orchestrator.regenerate(req.slug)


# ---------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------

@router.get(
    "/pages/{slug}",
    response_model=PageResponse,
    summary="Fetch a cached page",
)
async def get_page(
    slug: str,
    pages: Annotated[PageCache, Depends(get_page_cache)],
) -> PageResponse:
    validate_slug(slug)
    lookup = await pages.get(slug)

    if isinstance(lookup, Err):
        raise lookup.error
    if isinstance(lookup, NotFound):
        raise PageNotFoundError(f"No page for slug {slug!r}")

    page = lookup.value
    try:
        await pages.increment_views(slug)
    except Exception as exc:
        logger.warning(f"View count update failed for {slug}: {exc}")

    return PageResponse(page=page, stale=is_stale(page))


@router.get(
    "/stubs",
    response_model=StubsResponse,
    summary="Most-mentioned topics without a page",
)
async def list_stubs(
    graph: Annotated[LinkGraphUpdater, Depends(get_graph_updater)],
    limit: int = Query(20, ge=1, le=100),
) -> StubsResponse:
    return StubsResponse(stubs=await graph.top_stubs(limit))


@router.get(
    "/pages/{slug}/related",
    response_model=RelatedPagesResponse,
    summary="Pages connected to a page, strongest first",
)
async def related_pages(
    slug: str,
    graph: Annotated[LinkGraphUpdater, Depends(get_graph_updater)],
    limit: int = Query(10, ge=1, le=50),
) -> RelatedPagesResponse:
    validate_slug(slug)
    return RelatedPagesResponse(slug=slug, related=await graph.related_pages(slug, limit))
