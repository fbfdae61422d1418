"""
Background batch jobs over the page corpus.

- entity re-extraction: re-run the extractor on every published page and
  record the mentions in the link graph
- stale regeneration: rebuild published pages whose TTL has passed

Both are rate limited: each worker waits ``delay_seconds`` between items,
so N workers never issue more than N items per delay window.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

from ..core.errors import WikiError
from ..core.result import Err
from ..core.retry import RetryPolicy, retry_with_backoff
from .cache import PageCache
from .entities import EntityExtractor
from .graph import LinkGraphUpdater
from .models import GeneratedPage

logger = logging.getLogger("wiki.batch")

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class PageJobResult:
    slug: str
    success: bool
    entity_count: int = 0
    error: Optional[str] = None


@dataclass
class BatchSummary:
    results: List[PageJobResult] = field(default_factory=list)
    dry_run: bool = False

    @property
    def processed(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return self.processed - self.succeeded


async def run_rate_limited(
    items: Sequence[T],
    handler: Callable[[T], Awaitable[R]],
    delay_seconds: float = 1.0,
    concurrency: int = 1,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> List[R]:
    """
    Apply ``handler`` to every item with a bounded worker pool.

    Results are returned in input order. The handler is expected to
    capture its own failures.
    """
    queue: asyncio.Queue = asyncio.Queue()
    for index, item in enumerate(items):
        queue.put_nowait((index, item))

    results: List[Optional[R]] = [None] * len(items)

    async def worker() -> None:
        while True:
            try:
                index, item = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                results[index] = await handler(item)
            finally:
                queue.task_done()
            if not queue.empty() and delay_seconds > 0:
                await sleep(delay_seconds)

    workers = max(1, min(concurrency, len(items)))
    await asyncio.gather(*(worker() for _ in range(workers)))
    return results  # type: ignore[return-value]


# ---------------------------------------------------------------------
# Entity re-extraction
# ---------------------------------------------------------------------

async def reextract_entities(
    pages: PageCache,
    extractor: EntityExtractor,
    graph: LinkGraphUpdater,
    limit: Optional[int] = None,
    dry_run: bool = False,
    delay_seconds: float = 1.0,
    concurrency: int = 1,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> BatchSummary:
    """
    Re-run entity extraction over published pages.

    With ``dry_run`` the mentions are counted but nothing is written.
    """
    targets = await pages.list_published(limit=limit)
    logger.info(f"Re-extracting entities for {len(targets)} pages (dry_run={dry_run})")

    async def process(page: GeneratedPage) -> PageJobResult:
        try:
            mentions = await extractor.extract(page.content)
        except Exception as exc:
            logger.warning(f"Extraction failed for {page.slug}: {exc}")
            return PageJobResult(slug=page.slug, success=False, error=str(exc))

        if not dry_run:
            outcome = await graph.record_mentions(mentions, page.slug)
            if isinstance(outcome, Err):
                return PageJobResult(
                    slug=page.slug,
                    success=False,
                    entity_count=len(mentions),
                    error=str(outcome.error),
                )

        logger.info(f"{page.slug}: {len(mentions)} entities")
        return PageJobResult(slug=page.slug, success=True, entity_count=len(mentions))

    results = await run_rate_limited(
        targets,
        process,
        delay_seconds=delay_seconds,
        concurrency=concurrency,
        sleep=sleep,
    )
    return BatchSummary(results=results, dry_run=dry_run)


# ---------------------------------------------------------------------
# Stale page regeneration
# ---------------------------------------------------------------------

async def regenerate_stale_pages(
    pages: PageCache,
    orchestrator,
    limit: int = 10,
    delay_seconds: float = 1.0,
    retry_policy: Optional[RetryPolicy] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> BatchSummary:
    """
    Rebuild stale published pages one at a time.

    Each page is regenerated from its stored query and written over the
    stale copy, which stays in place if every attempt fails. Retryable
    failures are retried with backoff.
    """
    stale = await pages.stale_pages(limit=limit)
    logger.info(f"Regenerating {len(stale)} stale pages")

    async def process(page: GeneratedPage) -> PageJobResult:
        query = page.metadata.query
        try:
            fresh = await retry_with_backoff(
                lambda: orchestrator.generate(query, slug=page.slug, force_publish=True),
                policy=retry_policy,
                sleep=sleep,
            )
        except WikiError as exc:
            logger.error(f"Regeneration of {page.slug} failed: {exc}")
            return PageJobResult(slug=page.slug, success=False, error=str(exc))
        except Exception as exc:
            logger.exception(f"Regeneration of {page.slug} crashed")
            return PageJobResult(
                slug=page.slug,
                success=False,
                error=f"{type(exc).__name__}: {exc}",
            )

        return PageJobResult(
            slug=page.slug,
            success=True,
            entity_count=len(fresh.metadata.entity_links),
        )

    results = await run_rate_limited(
        stale,
        process,
        delay_seconds=delay_seconds,
        concurrency=1,
        sleep=sleep,
    )
    return BatchSummary(results=results)
