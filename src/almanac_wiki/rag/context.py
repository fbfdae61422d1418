"""
Context Assembly

Packs ranked chunks into a single context string under a token budget.

Rules
-----
- Chunks are taken in ranking order; nothing is reordered.
- Assembly stops at the first chunk that would push the estimate of the
  joined context over the budget.
- The first chunk is always included, even when it alone exceeds the
  budget.
- Chunks whose word set overlaps an included chunk by more than
  ``NEAR_DUPLICATE_THRESHOLD`` (Jaccard, case-insensitive) are skipped.
- Sources are distinct document ids in order of first appearance.
"""

from __future__ import annotations

import math
from typing import Dict, FrozenSet, List

from .models import AssembledContext, SearchResult

CHUNK_SEPARATOR = "\n\n---\n\n"
CHARS_PER_TOKEN = 4
NEAR_DUPLICATE_THRESHOLD = 0.95


def estimate_tokens(text: str) -> int:
    """Character-count heuristic: one token per four characters, rounded up."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def word_set(text: str) -> FrozenSet[str]:
    return frozenset(text.lower().split())


def jaccard_similarity(a: FrozenSet[str], b: FrozenSet[str]) -> float:
    if not a and not b:
        return 1.0
    return len(a & b) / len(a | b)


class ContextAssembler:
    """
    Greedy, deterministic context packer.
    """

    def __init__(self, separator: str = CHUNK_SEPARATOR) -> None:
        self.separator = separator

    def assemble(
        self,
        results: SearchResult,
        token_budget: int,
        query: str = "",
    ) -> AssembledContext:
        """
        Parameters
        ----------
        results : SearchResult
            Chunks in ranking order.

        token_budget : int
            Maximum ``estimate_tokens`` of the returned context, except when
            the first chunk alone exceeds it.

        query : str
            The originating query. Not used for packing.

        Returns
        -------
        AssembledContext
        """
        parts: List[str] = []
        included_words: List[FrozenSet[str]] = []
        sources: Dict[str, str] = {}
        context = ""
        truncated = False

        for position, chunk in enumerate(results):
            text = chunk.content.strip()
            words = word_set(text)
            if not words or any(
                jaccard_similarity(words, seen) > NEAR_DUPLICATE_THRESHOLD
                for seen in included_words
            ):
                continue

            candidate = context + self.separator + text if parts else text
            if parts and estimate_tokens(candidate) > token_budget:
                truncated = True
                break

            parts.append(text)
            included_words.append(words)
            sources.setdefault(chunk.document_id, chunk.document_title)
            context = candidate

            if estimate_tokens(context) >= token_budget:
                truncated = position < len(results) - 1
                break

        return AssembledContext(
            context=context,
            sources=list(sources.keys()),
            source_titles=list(sources.values()),
            tokens_used=estimate_tokens(context),
            chunks_used=len(parts),
            truncated=truncated,
        )


def format_context_for_prompt(assembled: AssembledContext) -> str:
    """
    Wrap assembled text in ``<context>`` tags followed by a numbered list of
    source titles.
    """
    if not assembled.context:
        return ""

    lines = ["<context>", assembled.context, "</context>"]
    if assembled.source_titles:
        lines.append("")
        lines.append("Sources:")
        lines.extend(
            f"{i}. {title}" for i, title in enumerate(assembled.source_titles, start=1)
        )
    return "\n".join(lines)
