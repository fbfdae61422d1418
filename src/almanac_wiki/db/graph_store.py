"""
SQL Graph Store

Stub and page-connection persistence with PostgreSQL upserts. Repeat
observations update rows in place:

- stubs:       ``mentioned_in`` gains the new page once, ``mention_count``
               follows it, ``confidence`` keeps the strongest tier seen
- connections: ``strength = least(1, strength + 0.5 * tier strength)``
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple

from sqlalchemy import any_, case, func, literal, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import PageConnection as PageConnectionRow, WikiPage, WikiStub
from ..wiki.graph import REPEAT_FACTOR, stub_tier, stub_title
from ..wiki.models import ConfidenceTier, EntityMention, PageConnection, Stub


def _to_stub(row: WikiStub) -> Stub:
    return Stub(
        slug=row.slug,
        title=row.title,
        mentioned_in=list(row.mentioned_in or []),
        mention_count=row.mention_count,
        confidence=ConfidenceTier(row.confidence),
        category=row.category,
        is_generated=row.is_generated,
        created_at=row.created_at,
        generated_at=row.generated_at,
    )


def _to_connection(row: PageConnectionRow) -> PageConnection:
    return PageConnection(
        from_slug=row.from_slug,
        to_slug=row.to_slug,
        strength=min(max(row.strength, 0.0), 1.0),
        link_text=row.link_text or "",
    )


_TIER_RANK_SQL = case(
    {"strong": 3, "medium": 2, "weak": 1},
    value=WikiStub.confidence,
    else_=0,
)


class SqlGraphStore:
    """
    ``GraphStore`` over ``wiki_stubs``, ``page_connections`` and
    ``wiki_pages``. Each call runs in its own transaction.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Mention statistics
    # ------------------------------------------------------------------

    async def existing_page_slugs(self, slugs: List[str]) -> Set[str]:
        if not slugs:
            return set()
        async with self._session_factory() as session:
            result = await session.scalars(
                select(WikiPage.slug).where(WikiPage.slug.in_(slugs))
            )
            return set(result.all())

    async def mention_counts(self, slugs: List[str]) -> Dict[str, int]:
        """Distinct pages mentioning each slug, via stubs or incoming edges."""
        if not slugs:
            return {}

        mentions: Dict[str, Set[str]] = defaultdict(set)
        async with self._session_factory() as session:
            stub_rows = await session.execute(
                select(WikiStub.slug, WikiStub.mentioned_in).where(WikiStub.slug.in_(slugs))
            )
            for slug, mentioned_in in stub_rows.all():
                mentions[slug].update(mentioned_in or [])

            edge_rows = await session.execute(
                select(PageConnectionRow.to_slug, PageConnectionRow.from_slug)
                .where(PageConnectionRow.to_slug.in_(slugs))
            )
            for to_slug, from_slug in edge_rows.all():
                mentions[to_slug].add(from_slug)

        return {slug: len(mentions.get(slug, ())) for slug in slugs}

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert_stub(self, mention: EntityMention, from_slug: str) -> Stub:
        tier = stub_tier(mention.confidence)
        already_listed = literal(from_slug) == any_(WikiStub.mentioned_in)

        stmt = pg_insert(WikiStub).values(
            slug=mention.slug,
            title=stub_title(mention.text),
            mentioned_in=[from_slug],
            mention_count=1,
            confidence=tier.value,
            category=mention.category,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[WikiStub.slug],
            set_={
                "mentioned_in": case(
                    (already_listed, WikiStub.mentioned_in),
                    else_=func.array_append(WikiStub.mentioned_in, from_slug),
                ),
                "mention_count": case(
                    (already_listed, WikiStub.mention_count),
                    else_=func.cardinality(WikiStub.mentioned_in) + 1,
                ),
                "confidence": case(
                    (_TIER_RANK_SQL < tier.rank, tier.value),
                    else_=WikiStub.confidence,
                ),
                "category": func.coalesce(WikiStub.category, stmt.excluded.category),
                "updated_at": func.now(),
            },
        ).returning(WikiStub)

        async with self._session_factory() as session:
            async with session.begin():
                row = (await session.execute(stmt)).scalar_one()
                return _to_stub(row)

    async def upsert_connection(
        self,
        from_slug: str,
        to_slug: str,
        link_text: str,
        base_strength: float,
    ) -> PageConnection:
        stmt = pg_insert(PageConnectionRow).values(
            from_slug=from_slug,
            to_slug=to_slug,
            link_text=link_text,
            strength=min(base_strength, 1.0),
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_connection_pair",
            set_={
                "strength": func.least(
                    1.0,
                    PageConnectionRow.strength + base_strength * REPEAT_FACTOR,
                ),
                "link_text": stmt.excluded.link_text,
                "updated_at": func.now(),
            },
        ).returning(PageConnectionRow)

        async with self._session_factory() as session:
            async with session.begin():
                row = (await session.execute(stmt)).scalar_one()
                return _to_connection(row)

    async def mark_stub_generated(self, slug: str, when: datetime) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(WikiStub)
                    .where(WikiStub.slug == slug, WikiStub.is_generated.is_(False))
                    .values(is_generated=True, generated_at=when)
                )
                return bool(result.rowcount)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_stub(self, slug: str) -> Optional[Stub]:
        async with self._session_factory() as session:
            row = await session.scalar(select(WikiStub).where(WikiStub.slug == slug))
            return _to_stub(row) if row is not None else None

    async def top_stubs(self, limit: int = 20) -> List[Stub]:
        async with self._session_factory() as session:
            rows = await session.scalars(
                select(WikiStub)
                .where(WikiStub.is_generated.is_(False))
                .order_by(WikiStub.mention_count.desc(), WikiStub.created_at)
                .limit(limit)
            )
            return [_to_stub(row) for row in rows.all()]

    async def connections(
        self,
        slug: str,
    ) -> Tuple[List[PageConnection], List[PageConnection]]:
        async with self._session_factory() as session:
            outgoing = await session.scalars(
                select(PageConnectionRow).where(PageConnectionRow.from_slug == slug)
            )
            outgoing_edges = [_to_connection(r) for r in outgoing.all()]
            incoming = await session.scalars(
                select(PageConnectionRow).where(PageConnectionRow.to_slug == slug)
            )
            incoming_edges = [_to_connection(r) for r in incoming.all()]
        return outgoing_edges, incoming_edges
