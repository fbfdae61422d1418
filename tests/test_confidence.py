import pytest

from almanac_wiki.rag.confidence import ConfidenceScorer


class TestConfidenceScorer:

    def test_formula(self):
        scorer = ConfidenceScorer()
        assert scorer.score(result_count=8, source_count=3, content_length=1500) == pytest.approx(
            0.3 * 0.5 + 0.5 * 0.5
        )

    def test_saturates_at_one(self):
        assert ConfidenceScorer().score(20, 25, 10_000) == 1.0

    def test_no_results_uses_fallback_constant(self):
        scorer = ConfidenceScorer()
        assert scorer.score(result_count=0, source_count=0, content_length=2500) == 0.7
        assert scorer.fallback_score() == 0.7

    def test_fallback_is_configurable(self):
        assert ConfidenceScorer(fallback_confidence=0.4).score(0, 0, 100) == 0.4

    @pytest.mark.parametrize(
        "args",
        [(1, 0, 0), (3, 1, 299), (15, 12, 2999), (2, -1, -50)],
    )
    def test_pure_and_bounded(self, args):
        scorer = ConfidenceScorer()
        first = scorer.score(*args)
        assert first == scorer.score(*args)
        assert 0.0 <= first <= 1.0
