"""
Text Helpers

Query validation, slug normalisation, and title/excerpt extraction for
generated markdown articles. Everything here is pure and deterministic.
"""

from __future__ import annotations

import re

from ..core.errors import QueryValidationError

MIN_QUERY_LENGTH = 3
MAX_QUERY_LENGTH = 200
EXCERPT_LENGTH = 200

_ALLOWED_QUERY = re.compile(r"^[\w\s\-.,!?()'\"]+$")

_HEADING_LINE = re.compile(r"^#+\s+.+$", re.MULTILINE)
_TABLE_ROW = re.compile(r"^\|.*\|$", re.MULTILINE)
_TABLE_RULE = re.compile(r"^\s*[-|:]+\s*$", re.MULTILINE)
_WIKI_LINK = re.compile(r"\[\[([^\]]+)\]\]")
_MD_LINK = re.compile(r"\[([^\]]+)\]\([^)]*\)")
_BOLD = re.compile(r"\*\*([^*]+)\*\*")
_ITALIC = re.compile(r"\*([^*]+)\*")
_UNDERSCORE_EMPHASIS = re.compile(r"(?<!\w)_{1,2}([^_]+)_{1,2}(?!\w)")
_INLINE_CODE = re.compile(r"`([^`]*)`")
_TITLE_HEADING = re.compile(r"^#\s+(.+)$", re.MULTILINE)


def validate_query(query: str) -> str:
    """
    Normalise and validate a user query.

    Returns
    -------
    str
        The trimmed query with internal whitespace collapsed.

    Raises
    ------
    QueryValidationError
        If the query is empty, too short, too long, or contains characters
        outside word characters, whitespace and ``-.,!?()'"``.
    """
    if not isinstance(query, str):
        raise QueryValidationError("Query must be a string")

    normalized = " ".join(query.split())

    if not normalized:
        raise QueryValidationError("Query must not be empty")
    if len(normalized) < MIN_QUERY_LENGTH:
        raise QueryValidationError(
            f"Query must be at least {MIN_QUERY_LENGTH} characters"
        )
    if len(normalized) > MAX_QUERY_LENGTH:
        raise QueryValidationError(
            f"Query must be at most {MAX_QUERY_LENGTH} characters"
        )
    if not _ALLOWED_QUERY.match(normalized):
        raise QueryValidationError("Query contains invalid characters")

    return normalized


def query_to_slug(query: str) -> str:
    """
    ``"Sleep Training (0-6 months)"`` -> ``"sleep-training-0-6-months"``.
    """
    slug = query.lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def normalize_slug(text: str) -> str:
    """
    Entity-text slug: ASCII letters, digits and single hyphens only.
    """
    slug = text.lower()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def validate_slug(slug: str) -> str:
    if not slug or normalize_slug(slug) != slug:
        raise QueryValidationError(f"Invalid slug: {slug!r}")
    return slug


def extract_title(content: str, fallback: str) -> str:
    """First level-one markdown heading, or ``fallback``."""
    match = _TITLE_HEADING.search(content)
    if match:
        title = match.group(1).strip().strip("#").strip()
        if title:
            return title
    return fallback


def unwrap_inline_markdown(text: str) -> str:
    """Replace links, emphasis and inline code with their text, keeping lines."""
    text = _WIKI_LINK.sub(r"\1", text)
    text = _MD_LINK.sub(r"\1", text)
    text = _BOLD.sub(r"\1", text)
    text = _ITALIC.sub(r"\1", text)
    text = _UNDERSCORE_EMPHASIS.sub(r"\1", text)
    return _INLINE_CODE.sub(r"\1", text)


def strip_markdown(content: str) -> str:
    """
    Reduce markdown to plain prose on a single line.

    Headings, table rows and table rules are dropped; wiki links, markdown
    links, emphasis and inline code are unwrapped to their text.
    """
    text = _HEADING_LINE.sub("", content)
    text = _TABLE_ROW.sub("", text)
    text = _TABLE_RULE.sub("", text)
    text = unwrap_inline_markdown(text)
    return " ".join(text.split())


def generate_excerpt(content: str, length: int = EXCERPT_LENGTH) -> str:
    """
    Plain-text teaser of at most ``length`` characters plus an ellipsis.

    Text that already fits is returned unchanged. Longer text is cut at
    ``length`` and trimmed back to the last whole word.
    """
    plain = strip_markdown(content)
    if len(plain) <= length:
        return plain

    cut = plain[:length]
    if plain[length] != " ":
        boundary = cut.rfind(" ")
        if boundary > 0:
            cut = cut[:boundary]

    return cut.rstrip(" ,;:-") + "..."
