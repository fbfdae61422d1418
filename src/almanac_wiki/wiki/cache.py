"""
Page Cache

Durable store of generated pages keyed by slug, with TTL-based staleness.

Lookups return a tagged result instead of an optional page:

- ``Ok(page)``           the page exists
- ``NotFound(slug)``     no page for the slug
- ``Err(PersistenceError)``  the store could not be read

Writes (``put``) raise ``PersistenceError``; an unpersisted page must never
be reported as done.

``InMemoryPageCache`` implements the contract in-process and is used for
local runs and tests. ``db.page_store.SqlPageCache`` is the PostgreSQL
implementation.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from threading import RLock
from typing import Dict, List, Optional, Protocol, Union

from ..core.errors import PersistenceError
from ..core.result import Err, NotFound, Ok
from .models import GeneratedPage

PageLookup = Union[Ok[GeneratedPage], NotFound, Err[PersistenceError]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ttl_expiry(generated_at: datetime, ttl_hours: float) -> datetime:
    return generated_at + timedelta(hours=ttl_hours)


def is_stale(page: GeneratedPage, now: Optional[datetime] = None) -> bool:
    """A page is stale once ``now`` is past its ``ttl_expires_at``."""
    now = now or utcnow()
    expires = page.ttl_expires_at
    if expires.tzinfo is None:
        expires = expires.replace(tzinfo=timezone.utc)
    return now > expires


class PageCache(Protocol):
    async def get(self, slug: str) -> PageLookup:
        ...

    async def put(self, page: GeneratedPage) -> None:
        ...

    async def invalidate(self, slug: str) -> bool:
        ...

    async def invalidate_by_source(self, document_id: str) -> List[str]:
        ...

    async def stale_pages(self, limit: int = 10, now: Optional[datetime] = None) -> List[GeneratedPage]:
        ...

    async def list_published(self, limit: Optional[int] = None) -> List[GeneratedPage]:
        ...

    async def existing_slugs(self, slugs: List[str]) -> List[str]:
        ...

    async def increment_views(self, slug: str) -> None:
        ...


class InMemoryPageCache:
    """
    Process-local page store.

    Copy-on-read and copy-on-write so callers never share mutable page
    objects with the store.
    """

    def __init__(self) -> None:
        self._pages: Dict[str, GeneratedPage] = {}
        self._lock = RLock()

    async def get(self, slug: str) -> PageLookup:
        with self._lock:
            page = self._pages.get(slug)
            if page is None:
                return NotFound(slug)
            return Ok(page.model_copy(deep=True))

    async def put(self, page: GeneratedPage) -> None:
        with self._lock:
            self._pages[page.slug] = page.model_copy(deep=True)

    async def invalidate(self, slug: str) -> bool:
        with self._lock:
            return self._pages.pop(slug, None) is not None

    async def invalidate_by_source(self, document_id: str) -> List[str]:
        """Drop every page generated from ``document_id``; returns their slugs."""
        with self._lock:
            slugs = [
                slug for slug, page in self._pages.items()
                if document_id in page.metadata.sources_used
            ]
            for slug in slugs:
                del self._pages[slug]
        return slugs

    async def stale_pages(
        self,
        limit: int = 10,
        now: Optional[datetime] = None,
    ) -> List[GeneratedPage]:
        """Published pages past their TTL, most viewed first."""
        now = now or utcnow()
        with self._lock:
            stale = [
                p for p in self._pages.values()
                if p.published and is_stale(p, now)
            ]
        stale.sort(key=lambda p: p.view_count, reverse=True)
        return [p.model_copy(deep=True) for p in stale[:limit]]

    async def list_published(self, limit: Optional[int] = None) -> List[GeneratedPage]:
        with self._lock:
            pages = sorted(
                (p for p in self._pages.values() if p.published),
                key=lambda p: p.generated_at,
                reverse=True,
            )
        if limit is not None:
            pages = pages[:limit]
        return [p.model_copy(deep=True) for p in pages]

    async def existing_slugs(self, slugs: List[str]) -> List[str]:
        with self._lock:
            return [s for s in slugs if s in self._pages]

    async def increment_views(self, slug: str) -> None:
        with self._lock:
            page = self._pages.get(slug)
            if page is not None:
                page.view_count += 1
