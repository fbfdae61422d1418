"""
Entity Extraction

Finds candidate topics in a generated article and grades each one with a
confidence tier. Extraction is a pluggable strategy: anything exposing

    async def extract(content: str) -> List[EntityMention]

can replace ``PatternEntityExtractor`` without touching the orchestrator or
the link graph.

Tiering
-------
Tiers combine whether a page already exists for the slug with how many
distinct pages already mention it:

- strong   page exists and >= 3 mentions
- medium   page exists, or >= 2 mentions with relevance > 0.7
- weak     >= 1 mention with relevance > 0.5
- ghost    anything else
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Set, Tuple

from ..core.errors import EntityExtractionError
from .models import ConfidenceTier, EntityMention
from .text import normalize_slug, unwrap_inline_markdown

logger = logging.getLogger("wiki.entities")

MIN_ENTITY_LENGTH = 3
MAX_CONTEXT_LENGTH = 200

STOPWORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "is", "are", "was", "were", "be", "been", "being", "have", "has", "had",
    "do", "does", "did", "will", "would", "should", "could", "may", "might",
    "can", "must", "this", "that", "these", "those", "you", "your", "their",
    "our", "its", "his", "her", "it", "they", "we", "if", "when", "as",
    "of", "with", "from", "by", "so", "some", "most", "many", "all", "any",
})

# Too broad to be useful as link targets on their own.
GENERIC_TERMS = frozenset({
    "baby", "babies", "child", "children", "parent", "parents", "mom", "dad",
    "help", "care", "need", "needs", "thing", "things", "time", "way",
})

# Capitalised multi-word phrases: "see Sleep training method". Only used
# mid-sentence; at a sentence start the capital is just grammar.
_CAPITALISED_PHRASE = re.compile(r"\b([A-Z][a-z]+(?:\s+[a-z]+){1,3})\b")

_PATTERNS: Tuple[re.Pattern, ...] = (
    # Age ranges: "0-3 months", "2-4 years"
    re.compile(r"\b(\d+-\d+\s+(?:months?|years?|weeks?))\b", re.IGNORECASE),
    # Developmental stages
    re.compile(r"\b(newborns?|infants?|toddlers?|preschoolers?|teenagers?)\b", re.IGNORECASE),
    _CAPITALISED_PHRASE,
    # Quoted phrases
    re.compile(r"\"([^\"]{3,50})\""),
    # Known domain phrases
    re.compile(
        r"\b(sleep\s+training|potty\s+training|separation\s+anxiety|growth\s+spurts?)\b",
        re.IGNORECASE,
    ),
)

# (category, relevance, pattern), first match wins.
_CATEGORIES: Tuple[Tuple[str, float, re.Pattern], ...] = (
    ("age-range", 0.9, re.compile(r"\d+.*(month|year|week)|newborn|infant|toddler|preschooler", re.IGNORECASE)),
    ("symptom", 0.85, re.compile(r"fever|rash|cough|pain|vomit|diarrh", re.IGNORECASE)),
    ("technique", 0.75, re.compile(r"training|method|technique|approach|strategy", re.IGNORECASE)),
    ("product", 0.6, re.compile(r"bottle|diaper|nappy|carrier|stroller|pram|crib|cot", re.IGNORECASE)),
)
_DEFAULT_CATEGORY = ("concept", 0.5)

_SENTENCE_SPLIT = re.compile(r"[.!?]+|\n+")
_LINE_PREFIX = re.compile(r"^\s*(?:#+|[-*+]|\d+\.)\s+", re.MULTILINE)


# ---------------------------------------------------------------------
# Collaborator Contracts
# ---------------------------------------------------------------------

class EntityExtractor(Protocol):
    async def extract(self, content: str) -> List[EntityMention]:
        ...


class MentionStats(Protocol):
    """Site-wide facts used to grade candidates."""

    async def existing_page_slugs(self, slugs: List[str]) -> Set[str]:
        ...

    async def mention_counts(self, slugs: List[str]) -> Dict[str, int]:
        ...


# ---------------------------------------------------------------------
# Pure Helpers
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class EntityCandidate:
    text: str
    slug: str
    category: str
    relevance: float
    context_sentence: str


def assign_tier(page_exists: bool, mention_count: int, relevance: float) -> ConfidenceTier:
    if page_exists and mention_count >= 3:
        return ConfidenceTier.STRONG
    if page_exists or (mention_count >= 2 and relevance > 0.7):
        return ConfidenceTier.MEDIUM
    if mention_count >= 1 and relevance > 0.5:
        return ConfidenceTier.WEAK
    return ConfidenceTier.GHOST


def classify_entity(text: str) -> Tuple[str, float]:
    for category, relevance, pattern in _CATEGORIES:
        if pattern.search(text):
            return category, relevance
    return _DEFAULT_CATEGORY


def _trim_stopwords(phrase: str) -> str:
    words = phrase.split()
    while words and words[0].lower() in STOPWORDS:
        words.pop(0)
    while words and words[-1].lower() in STOPWORDS:
        words.pop()
    return " ".join(words)


def _clip(sentence: str) -> str:
    if len(sentence) <= MAX_CONTEXT_LENGTH:
        return sentence
    return sentence[: MAX_CONTEXT_LENGTH - 3].rstrip() + "..."


def split_sentences(content: str) -> List[str]:
    text = unwrap_inline_markdown(content)
    text = _LINE_PREFIX.sub("", text)
    return [
        " ".join(s.split())
        for s in _SENTENCE_SPLIT.split(text)
        if s.strip()
    ]


def find_candidates(content: str) -> List[EntityCandidate]:
    """
    Pattern-match candidates, deduplicated by slug.

    When two surface forms share a slug the more relevant one is kept; on a
    tie the first occurrence wins. Output is in order of first appearance.
    """
    found: Dict[str, EntityCandidate] = {}

    for sentence in split_sentences(content):
        for pattern in _PATTERNS:
            for match in pattern.finditer(sentence):
                if pattern is _CAPITALISED_PHRASE and match.start() == 0:
                    continue
                text = _trim_stopwords(match.group(1).strip())
                lowered = text.lower()

                if len(text) < MIN_ENTITY_LENGTH:
                    continue
                if lowered in STOPWORDS or lowered in GENERIC_TERMS:
                    continue

                slug = normalize_slug(text)
                if len(slug) < MIN_ENTITY_LENGTH:
                    continue

                category, relevance = classify_entity(text)
                candidate = EntityCandidate(
                    text=text,
                    slug=slug,
                    category=category,
                    relevance=relevance,
                    context_sentence=_clip(sentence),
                )

                existing = found.get(slug)
                if existing is None:
                    found[slug] = candidate
                elif candidate.relevance > existing.relevance:
                    found[slug] = candidate

    return list(found.values())


# ---------------------------------------------------------------------
# Pattern Strategy
# ---------------------------------------------------------------------

class PatternEntityExtractor:
    """
    Regex candidate detection graded against site-wide mention statistics.

    Without a ``stats`` provider every candidate is treated as unseen and
    graded ``ghost``.
    """

    def __init__(
        self,
        stats: Optional[MentionStats] = None,
        max_entities: Optional[int] = None,
    ) -> None:
        self._stats = stats
        self._max_entities = max_entities

    async def extract(self, content: str) -> List[EntityMention]:
        """
        Raises
        ------
        EntityExtractionError
            If the statistics lookup fails.
        """
        candidates = find_candidates(content)
        if not candidates:
            return []

        slugs = [c.slug for c in candidates]
        existing: Set[str] = set()
        counts: Dict[str, int] = {}

        if self._stats is not None:
            try:
                existing = await self._stats.existing_page_slugs(slugs)
                counts = await self._stats.mention_counts(slugs)
            except Exception as exc:
                raise EntityExtractionError(
                    f"Mention statistics lookup failed: {type(exc).__name__}"
                ) from exc

        ranked = []
        for position, c in enumerate(candidates):
            mention_count = counts.get(c.slug, 0)
            tier = assign_tier(c.slug in existing, mention_count, c.relevance)
            mention = EntityMention(
                text=c.text,
                slug=c.slug,
                confidence=tier,
                context_sentence=c.context_sentence,
                relevance=c.relevance,
                category=c.category,
            )
            ranked.append((-tier.rank, -mention_count, position, mention))

        ranked.sort(key=lambda item: item[:3])
        mentions = [item[3] for item in ranked]

        if self._max_entities is not None:
            mentions = mentions[: self._max_entities]

        logger.debug("Extracted %d entities", len(mentions))
        return mentions
