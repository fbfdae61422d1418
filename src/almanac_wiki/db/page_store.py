"""
SQL Page Cache

PostgreSQL implementation of the page cache contract over ``wiki_pages``.
Rows are validated into ``GeneratedPage`` on the way out; a row that fails
validation is reported as a persistence error rather than returned.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from pydantic import ValidationError
from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import WikiPage
from ..core.errors import PersistenceError
from ..core.result import Err, NotFound, Ok
from ..wiki.cache import PageLookup, utcnow
from ..wiki.models import GeneratedPage, PageMetadata

logger = logging.getLogger("wiki.pages")


def _to_page(row: WikiPage) -> GeneratedPage:
    return GeneratedPage(
        slug=row.slug,
        title=row.title,
        content=row.content,
        excerpt=row.excerpt or "",
        confidence_score=row.confidence_score,
        generated_at=row.generated_at,
        ttl_expires_at=row.ttl_expires_at,
        published=row.published,
        view_count=row.view_count or 0,
        metadata=PageMetadata.model_validate(row.page_metadata or {}),
    )


class SqlPageCache:
    """
    Page cache backed by the ``wiki_pages`` table.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, slug: str) -> PageLookup:
        try:
            async with self._session_factory() as session:
                row = await session.scalar(select(WikiPage).where(WikiPage.slug == slug))
        except SQLAlchemyError as exc:
            logger.error("Page lookup failed for %s: %s", slug, exc)
            return Err(PersistenceError(f"Page lookup failed: {type(exc).__name__}"))

        if row is None:
            return NotFound(slug)

        try:
            return Ok(_to_page(row))
        except ValidationError as exc:
            logger.error("Stored page %s is malformed: %s", slug, exc)
            return Err(PersistenceError(f"Stored page {slug!r} is malformed"))

    async def put(self, page: GeneratedPage) -> None:
        """
        Insert or fully replace the page for ``page.slug``.

        Raises
        ------
        PersistenceError
            If the write fails.
        """
        values = {
            "slug": page.slug,
            "title": page.title,
            "content": page.content,
            "excerpt": page.excerpt,
            "confidence_score": page.confidence_score,
            "generated_at": page.generated_at,
            "ttl_expires_at": page.ttl_expires_at,
            "published": page.published,
            "page_metadata": page.metadata.model_dump(mode="json"),
        }

        stmt = pg_insert(WikiPage).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[WikiPage.slug],
            set_={
                "title": stmt.excluded.title,
                "content": stmt.excluded.content,
                "excerpt": stmt.excluded.excerpt,
                "confidence_score": stmt.excluded.confidence_score,
                "generated_at": stmt.excluded.generated_at,
                "ttl_expires_at": stmt.excluded.ttl_expires_at,
                "published": stmt.excluded.published,
                "page_metadata": stmt.excluded.page_metadata,
                "updated_at": func.now(),
            },
        )

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(stmt)
        except SQLAlchemyError as exc:
            logger.error("Saving page %s failed: %s", page.slug, exc)
            raise PersistenceError(f"Saving page failed: {type(exc).__name__}") from exc

    async def invalidate(self, slug: str) -> bool:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(WikiPage).where(WikiPage.slug == slug)
                    )
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Invalidating page failed: {type(exc).__name__}") from exc
        return bool(result.rowcount)

    async def invalidate_by_source(self, document_id: str) -> List[str]:
        """
        Delete every page whose metadata lists ``document_id`` among its
        sources. Returns the deleted slugs.
        """
        stmt = (
            delete(WikiPage)
            .where(WikiPage.page_metadata["sources_used"].contains([document_id]))
            .returning(WikiPage.slug)
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(stmt)
                    slugs = list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Invalidating pages for document failed: {type(exc).__name__}"
            ) from exc
        if slugs:
            logger.info("Invalidated %d page(s) sourced from %s", len(slugs), document_id)
        return slugs

    async def stale_pages(
        self,
        limit: int = 10,
        now: Optional[datetime] = None,
    ) -> List[GeneratedPage]:
        now = now or utcnow()
        stmt = (
            select(WikiPage)
            .where(WikiPage.published.is_(True), WikiPage.ttl_expires_at < now)
            .order_by(WikiPage.view_count.desc())
            .limit(limit)
        )
        return await self._fetch(stmt)

    async def list_published(self, limit: Optional[int] = None) -> List[GeneratedPage]:
        stmt = (
            select(WikiPage)
            .where(WikiPage.published.is_(True))
            .order_by(WikiPage.generated_at.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return await self._fetch(stmt)

    async def existing_slugs(self, slugs: List[str]) -> List[str]:
        if not slugs:
            return []
        async with self._session_factory() as session:
            result = await session.scalars(
                select(WikiPage.slug).where(WikiPage.slug.in_(slugs))
            )
            return list(result.all())

    async def increment_views(self, slug: str) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(WikiPage)
                    .where(WikiPage.slug == slug)
                    .values(view_count=WikiPage.view_count + 1)
                )

    async def _fetch(self, stmt) -> List[GeneratedPage]:
        try:
            async with self._session_factory() as session:
                rows = (await session.scalars(stmt)).all()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Page query failed: {type(exc).__name__}") from exc

        pages: List[GeneratedPage] = []
        for row in rows:
            try:
                pages.append(_to_page(row))
            except ValidationError as exc:
                logger.warning("Skipping malformed page %s: %s", row.slug, exc)
        return pages
