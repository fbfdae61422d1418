"""
Link Graph

Persists what a generated page mentions:

- mentions of topics without a page become (or reinforce) a ``Stub``
- mentions of existing pages become weighted ``PageConnection`` edges

Every ``LinkGraphUpdater`` write returns a ``Result`` instead of raising.
Graph freshness is never allowed to fail a generation; the caller decides
to log and ignore the ``Err`` variant.

Edge strength
-------------
A new edge starts at the strength of the mention's tier (strong 1.0,
medium 0.6, weak 0.3, ghost 0.1). Observing the same edge again adds half
that amount, capped at 1.0.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from threading import RLock
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Set, Tuple

from ..core.errors import GraphUpdateError
from ..core.result import Err, Ok, Result
from .cache import InMemoryPageCache, utcnow
from .models import (
    ConfidenceTier,
    EntityMention,
    PageConnection,
    RelatedPage,
    Stub,
)

logger = logging.getLogger("wiki.graph")

TIER_STRENGTH: Dict[ConfidenceTier, float] = {
    ConfidenceTier.STRONG: 1.0,
    ConfidenceTier.MEDIUM: 0.6,
    ConfidenceTier.WEAK: 0.3,
    ConfidenceTier.GHOST: 0.1,
}
REPEAT_FACTOR = 0.5
INCOMING_BOOST = 0.5


def strengthen(current: Optional[float], base: float) -> float:
    if current is None:
        return min(base, 1.0)
    return min(current + base * REPEAT_FACTOR, 1.0)


def stub_tier(tier: ConfidenceTier) -> ConfidenceTier:
    """Stubs are graded strong, medium or weak; ghost mentions count as weak."""
    return ConfidenceTier.WEAK if tier == ConfidenceTier.GHOST else tier


def stub_title(text: str) -> str:
    return text[:1].upper() + text[1:]


# ---------------------------------------------------------------------
# Store Contract
# ---------------------------------------------------------------------

class GraphStore(Protocol):
    async def existing_page_slugs(self, slugs: List[str]) -> Set[str]:
        ...

    async def mention_counts(self, slugs: List[str]) -> Dict[str, int]:
        ...

    async def upsert_stub(self, mention: EntityMention, from_slug: str) -> Stub:
        ...

    async def upsert_connection(
        self,
        from_slug: str,
        to_slug: str,
        link_text: str,
        base_strength: float,
    ) -> PageConnection:
        ...

    async def mark_stub_generated(self, slug: str, when: datetime) -> bool:
        ...

    async def get_stub(self, slug: str) -> Optional[Stub]:
        ...

    async def top_stubs(self, limit: int = 20) -> List[Stub]:
        ...

    async def connections(self, slug: str) -> Tuple[List[PageConnection], List[PageConnection]]:
        """(outgoing, incoming) edges of a page."""
        ...


class InMemoryGraphStore:
    """
    Process-local stub and connection store.

    Page existence is answered by an optional ``InMemoryPageCache`` plus any
    slugs registered with ``add_existing_pages``.
    """

    def __init__(self, pages: Optional[InMemoryPageCache] = None) -> None:
        self._pages = pages
        self._known_pages: Set[str] = set()
        self._stubs: Dict[str, Stub] = {}
        self._edges: Dict[Tuple[str, str], PageConnection] = {}
        self._lock = RLock()

    def add_existing_pages(self, slugs: Iterable[str]) -> None:
        with self._lock:
            self._known_pages.update(slugs)

    async def existing_page_slugs(self, slugs: List[str]) -> Set[str]:
        found = {s for s in slugs if s in self._known_pages}
        if self._pages is not None:
            found.update(await self._pages.existing_slugs(list(slugs)))
        return found

    async def mention_counts(self, slugs: List[str]) -> Dict[str, int]:
        with self._lock:
            counts: Dict[str, int] = {}
            for slug in slugs:
                pages: Set[str] = set()
                stub = self._stubs.get(slug)
                if stub is not None:
                    pages.update(stub.mentioned_in)
                pages.update(f for (f, t) in self._edges if t == slug)
                counts[slug] = len(pages)
            return counts

    async def upsert_stub(self, mention: EntityMention, from_slug: str) -> Stub:
        with self._lock:
            tier = stub_tier(mention.confidence)
            stub = self._stubs.get(mention.slug)

            if stub is None:
                stub = Stub(
                    slug=mention.slug,
                    title=stub_title(mention.text),
                    mentioned_in=[from_slug],
                    mention_count=1,
                    confidence=tier,
                    category=mention.category,
                    created_at=utcnow(),
                )
            else:
                if from_slug not in stub.mentioned_in:
                    stub.mentioned_in.append(from_slug)
                stub.mention_count = len(stub.mentioned_in)
                if tier.rank > stub.confidence.rank:
                    stub.confidence = tier
                stub.category = stub.category or mention.category

            self._stubs[mention.slug] = stub
            return stub.model_copy(deep=True)

    async def upsert_connection(
        self,
        from_slug: str,
        to_slug: str,
        link_text: str,
        base_strength: float,
    ) -> PageConnection:
        with self._lock:
            edge = self._edges.get((from_slug, to_slug))
            edge = PageConnection(
                from_slug=from_slug,
                to_slug=to_slug,
                strength=strengthen(edge.strength if edge else None, base_strength),
                link_text=link_text,
            )
            self._edges[(from_slug, to_slug)] = edge
            return edge.model_copy()

    async def mark_stub_generated(self, slug: str, when: datetime) -> bool:
        with self._lock:
            stub = self._stubs.get(slug)
            if stub is None or stub.is_generated:
                return False
            stub.is_generated = True
            stub.generated_at = when
            return True

    async def get_stub(self, slug: str) -> Optional[Stub]:
        with self._lock:
            stub = self._stubs.get(slug)
            return stub.model_copy(deep=True) if stub else None

    async def top_stubs(self, limit: int = 20) -> List[Stub]:
        with self._lock:
            pending = [s for s in self._stubs.values() if not s.is_generated]
            pending.sort(key=lambda s: s.mention_count, reverse=True)
            return [s.model_copy(deep=True) for s in pending[:limit]]

    async def connections(self, slug: str) -> Tuple[List[PageConnection], List[PageConnection]]:
        with self._lock:
            outgoing = [e.model_copy() for (f, _), e in self._edges.items() if f == slug]
            incoming = [e.model_copy() for (_, t), e in self._edges.items() if t == slug]
            return outgoing, incoming


# ---------------------------------------------------------------------
# Updater
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class GraphUpdateSummary:
    stubs_upserted: int = 0
    connections_upserted: int = 0
    skipped: int = 0
    failed: int = 0


class LinkGraphUpdater:
    """
    Best-effort writer for stubs and page connections.
    """

    def __init__(
        self,
        store: GraphStore,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._clock = clock

    async def record_mentions(
        self,
        mentions: List[EntityMention],
        from_slug: str,
    ) -> Result[GraphUpdateSummary, GraphUpdateError]:
        """
        Upsert a stub for every mention of a topic without a page, and an
        edge ``from_slug -> slug`` for every mention of an existing page.

        Mentions of ``from_slug`` itself are skipped. Each mention is written
        independently so one failure does not prevent the rest.

        Returns
        -------
        Result[GraphUpdateSummary, GraphUpdateError]
            ``Err`` if the page lookup failed or any single write failed.
        """
        unique: Dict[str, EntityMention] = {}
        skipped = 0
        for mention in mentions:
            if mention.slug == from_slug or mention.slug in unique:
                skipped += 1
                continue
            unique[mention.slug] = mention

        if not unique:
            return Ok(GraphUpdateSummary(skipped=skipped))

        try:
            existing = await self._store.existing_page_slugs(list(unique))
        except Exception as exc:
            logger.warning("Page lookup for %s failed: %s", from_slug, exc)
            return Err(GraphUpdateError(f"Page lookup failed: {type(exc).__name__}"))

        stubs = connections = failed = 0
        for slug, mention in unique.items():
            try:
                if slug in existing:
                    await self._store.upsert_connection(
                        from_slug,
                        slug,
                        mention.text,
                        TIER_STRENGTH[mention.confidence],
                    )
                    connections += 1
                else:
                    await self._store.upsert_stub(mention, from_slug)
                    stubs += 1
            except Exception as exc:
                failed += 1
                logger.warning(
                    "Graph update %s -> %s failed: %s", from_slug, slug, exc
                )

        summary = GraphUpdateSummary(
            stubs_upserted=stubs,
            connections_upserted=connections,
            skipped=skipped,
            failed=failed,
        )
        if failed:
            return Err(GraphUpdateError(
                f"{failed} of {len(unique)} graph updates failed for {from_slug}"
            ))
        return Ok(summary)

    async def mark_generated(self, slug: str) -> Result[bool, GraphUpdateError]:
        """
        Flip a stub's ``is_generated`` flag. ``Ok(False)`` when no pending
        stub exists for the slug.
        """
        try:
            return Ok(await self._store.mark_stub_generated(slug, self._clock()))
        except Exception as exc:
            logger.warning("Marking stub %s as generated failed: %s", slug, exc)
            return Err(GraphUpdateError(f"Stub update failed: {type(exc).__name__}"))

    async def related_pages(self, slug: str, limit: int = 10) -> List[RelatedPage]:
        """
        Pages linked to or from ``slug``, strongest first. An edge in both
        directions scores ``min(1, outgoing + 0.5 * incoming)``.
        """
        outgoing, incoming = await self._store.connections(slug)
        incoming_by_source = {e.from_slug: e.strength for e in incoming}

        related: Dict[str, RelatedPage] = {}
        for edge in outgoing:
            back = incoming_by_source.get(edge.to_slug)
            strength = edge.strength
            if back is not None:
                strength = min(strength + back * INCOMING_BOOST, 1.0)
            related[edge.to_slug] = RelatedPage(
                slug=edge.to_slug,
                strength=strength,
                bidirectional=back is not None,
            )

        for source, strength in incoming_by_source.items():
            if source not in related:
                related[source] = RelatedPage(slug=source, strength=strength)

        ranked = sorted(related.values(), key=lambda r: (-r.strength, r.slug))
        return ranked[:limit]

    async def top_stubs(self, limit: int = 20) -> List[Stub]:
        return await self._store.top_stubs(limit)
