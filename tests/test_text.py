"""
Query, slug, title and excerpt helpers.
"""

import pytest

from almanac_wiki.core.errors import QueryValidationError
from almanac_wiki.wiki.text import (
    extract_title,
    generate_excerpt,
    normalize_slug,
    query_to_slug,
    strip_markdown,
    validate_query,
    validate_slug,
)


class TestValidateQuery:

    def test_collapses_whitespace(self):
        assert validate_query("  sleep    training \n") == "sleep training"

    @pytest.mark.parametrize("query", ["", "   ", "ab", "x" * 201, "sleep <script>", "naps; drop table"])
    def test_rejects_malformed_queries(self, query):
        with pytest.raises(QueryValidationError):
            validate_query(query)

    def test_accepts_punctuation_in_allowed_set(self):
        assert validate_query("What's normal (0-3 months)?") == "What's normal (0-3 months)?"


class TestSlugs:

    def test_query_to_slug(self):
        assert query_to_slug("Sleep Training (0-6 months)") == "sleep-training-0-6-months"

    def test_normalize_slug_collapses_separators(self):
        assert normalize_slug("  Separation -- Anxiety! ") == "separation-anxiety"

    def test_validate_slug_accepts_normalized(self):
        assert validate_slug("pregnancy-nutrition") == "pregnancy-nutrition"

    @pytest.mark.parametrize("slug", ["", "Pregnancy-Nutrition", "bad slug", "trailing-", "double--hyphen"])
    def test_validate_slug_rejects_unnormalized(self, slug):
        with pytest.raises(QueryValidationError):
            validate_slug(slug)


class TestTitle:

    def test_first_h1_wins(self):
        content = "Intro line\n# Toddler Sleep\n\n# Second"
        assert extract_title(content, "fallback") == "Toddler Sleep"

    def test_falls_back_without_h1(self):
        assert extract_title("## Only a subheading\n\nBody", "sleep training") == "sleep training"


class TestExcerpt:

    def test_strip_markdown_removes_structure(self):
        content = (
            "# Heading\n"
            "| a | b |\n"
            "|---|---|\n"
            "Read **this** and *that*, see [the guide](/wiki/guide) or [[Naps]] and `code`."
        )
        assert strip_markdown(content) == "Read this and that, see the guide or Naps and code."

    def test_short_content_is_returned_without_ellipsis(self):
        assert generate_excerpt("# Title\n\nShort **bold** text.") == "Short bold text."

    def test_cut_mid_word_backs_off_to_word_boundary(self):
        content = "abcdefghij " * 30
        expected = " ".join(["abcdefghij"] * 18) + "..."
        assert generate_excerpt(content) == expected

    def test_cut_on_boundary_keeps_last_word(self):
        content = "word " * 100
        excerpt = generate_excerpt(content)
        assert excerpt == " ".join(["word"] * 40) + "..."

    def test_excerpt_is_deterministic(self):
        content = "# Title\n\n" + "Some *emphasised* sentence about naps. " * 20
        assert generate_excerpt(content) == generate_excerpt(content)
        assert len(generate_excerpt(content)) <= 203
