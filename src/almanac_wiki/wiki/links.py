"""
Link Injection

Turns the first plain-text occurrence of each linkable entity into a
markdown link to its wiki page. Headings and existing links are left alone.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Tuple

from .models import ConfidenceTier, EntityMention

WIKI_PATH_PREFIX = "/wiki/"

_PROTECTED = re.compile(
    r"^#+\s.*$"                      # headings
    r"|\[\[[^\]]*\]\]"               # wiki links
    r"|\[[^\]]*\]\([^)]*\)"          # markdown links
    r"|`[^`]*`",                     # inline code
    re.MULTILINE,
)


def _protected_spans(content: str) -> List[Tuple[int, int]]:
    return [m.span() for m in _PROTECTED.finditer(content)]


def _inside(start: int, end: int, spans: List[Tuple[int, int]]) -> bool:
    return any(start < s_end and end > s_start for s_start, s_end in spans)


def inject_links(
    content: str,
    mentions: Iterable[EntityMention],
    include_ghosts: bool = False,
) -> str:
    """
    Link the first eligible occurrence of every mention.

    Matching is case-insensitive on whole words and keeps the article's own
    casing as link text. Ghost-tier mentions are skipped unless
    ``include_ghosts`` is set. Slugs already linked earlier in the content
    are not linked again.
    """
    linked_slugs = set()

    for mention in mentions:
        if mention.confidence == ConfidenceTier.GHOST and not include_ghosts:
            continue
        if mention.slug in linked_slugs:
            continue

        target = f"{WIKI_PATH_PREFIX}{mention.slug}"
        if f"]({target})" in content:
            linked_slugs.add(mention.slug)
            continue

        pattern = re.compile(
            r"(?<![\w-])" + re.escape(mention.text) + r"(?![\w-])",
            re.IGNORECASE,
        )
        spans = _protected_spans(content)

        for match in pattern.finditer(content):
            start, end = match.span()
            if _inside(start, end, spans):
                continue
            content = f"{content[:start]}[{match.group(0)}]({target}){content[end:]}"
            linked_slugs.add(mention.slug)
            break

    return content
