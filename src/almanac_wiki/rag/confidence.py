"""
Confidence Scoring

Page confidence in [0, 1], computed once the article text is final:

    min(source_count / 10, 1) * 0.5 + min(content_length / 3000, 1) * 0.5

Articles written without retrieved sources get a fixed score instead.
"""

from __future__ import annotations

SOURCE_SATURATION = 10
LENGTH_SATURATION = 3000
FALLBACK_CONFIDENCE = 0.7


class ConfidenceScorer:
    """Pure scoring function with a configurable fallback constant."""

    def __init__(self, fallback_confidence: float = FALLBACK_CONFIDENCE) -> None:
        self.fallback_confidence = fallback_confidence

    def score(
        self,
        result_count: int,
        source_count: int,
        content_length: int,
    ) -> float:
        """
        Parameters
        ----------
        result_count : int
            Number of retrieved chunks. Zero selects the fallback constant.

        source_count : int
            Distinct source documents used.

        content_length : int
            Characters in the final article.

        Returns
        -------
        float
            Confidence clipped to [0, 1].
        """
        if result_count <= 0:
            return self.fallback_score()

        sources = min(max(source_count, 0) / SOURCE_SATURATION, 1.0)
        length = min(max(content_length, 0) / LENGTH_SATURATION, 1.0)
        return min(max(sources * 0.5 + length * 0.5, 0.0), 1.0)

    def fallback_score(self) -> float:
        return self.fallback_confidence
