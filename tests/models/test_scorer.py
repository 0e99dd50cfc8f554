"""
Anomaly Scorer Unit Tests

Tests for the deterministic deviation score:
- Reference scenarios (no deviation, single-feature deviation, maximal deviation)
- Clamping and the [0, 10] bound
- Severity bands and dominant-feature attribution
- Single assignment of FeatureSample.score
"""

import pytest

from core.config import ScoringPolicy
from core.models.baseline import Baseline, FeatureHistory
from core.models.scorer import SCORED_FEATURES, AnomalyScorer
from core.schemas.outputs import Severity


@pytest.fixture
def scorer():
    return AnomalyScorer()


@pytest.fixture
def steady_history(make_sample):
    """Ten identical windows: typing 5, pointer 100, 1 click, idle 0.9."""
    history = FeatureHistory()
    for _ in range(10):
        history.append(make_sample())
    return history


# =============================================================================
# Reference Scenarios
# =============================================================================

class TestReferenceScenarios:
    """Worked examples of the scoring formula."""

    def test_no_deviation_scores_zero(self, scorer, steady_history, make_sample):
        """Latest equal to baseline on every feature → 0.00, severity none."""
        steady_history.append(make_sample(typing_rate=5.0))

        result = scorer.score_latest(steady_history)
        assert result.score == 0.0
        assert result.severity == Severity.NONE
        assert result.dominant_feature is None
        assert not result.is_anomaly

    def test_single_pointer_deviation(self, scorer, steady_history, make_sample):
        """Pointer 250 vs baseline 100: delta 150 / (100 + 50) = 1.0 → 0.35."""
        steady_history.append(make_sample(pointer_distance=250.0))

        result = scorer.score_latest(steady_history)
        assert result.normalized["pointer_distance"] == pytest.approx(1.0)
        assert result.score == pytest.approx(0.35)
        assert result.severity == Severity.NONE
        assert result.dominant_feature == "pointer_distance"

    def test_maximal_deviation_scores_ten(self, scorer):
        """All normalized deviations at 10 → 10.00, severe."""
        normalized = {name: 10.0 for name in SCORED_FEATURES}

        score = scorer.weighted_score(normalized)
        assert score == pytest.approx(10.0)
        assert scorer.classify(score) == Severity.SEVERE


# =============================================================================
# Bounds & Clamping
# =============================================================================

class TestBounds:
    """Each normalized term is clamped to [0, 10]; the score stays in [0, 10]."""

    def test_normalized_terms_are_clamped(self, scorer, steady_history, make_sample):
        latest = make_sample(typing_rate=10_000.0, pointer_distance=1e9, click_count=500)
        baseline = Baseline(
            means={"typing_rate": 5.0, "pointer_distance": 100.0, "click_count": 1.0, "idle_ratio": 0.9},
            sample_count=10,
        )
        normalized = scorer.normalize(latest, baseline)

        assert normalized["typing_rate"] == 10.0
        assert normalized["pointer_distance"] == 10.0
        assert normalized["click_count"] == 10.0

    def test_overweight_input_is_clamped(self, scorer):
        """Out-of-range normalized input cannot push the score past 10."""
        assert scorer.weighted_score({name: 1e6 for name in SCORED_FEATURES}) == pytest.approx(10.0)
        assert scorer.weighted_score({name: -5.0 for name in SCORED_FEATURES}) == 0.0

    def test_extreme_burst_is_severe(self, scorer, make_sample):
        """Idle baseline then a burst of activity: severe, bounded score."""
        history = FeatureHistory()
        for _ in range(10):
            history.append(make_sample(typing_rate=0.0, pointer_distance=0.0, click_count=0, idle_ratio=1.0))
        history.append(make_sample(typing_rate=40.0, pointer_distance=5000.0, click_count=30, idle_ratio=0.0))

        result = scorer.score_latest(history)
        assert 0.0 <= result.score <= 10.0
        assert result.severity == Severity.SEVERE
        # idle deviation of 1.0 normalizes to 2.0
        assert result.normalized["idle_ratio"] == pytest.approx(2.0)

    def test_first_window_scores_zero(self, scorer, make_sample):
        """A lone sample is its own baseline."""
        history = FeatureHistory()
        history.append(make_sample(typing_rate=12.0))
        assert scorer.score_latest(history).score == 0.0

    def test_empty_history_returns_none(self, scorer):
        assert scorer.score_latest(FeatureHistory()) is None


# =============================================================================
# Severity Bands
# =============================================================================

class TestSeverity:
    """severe ≥ 3.5, moderate ≥ 2.2, otherwise none."""

    @pytest.mark.parametrize("score, expected", [
        (0.0, Severity.NONE),
        (2.19, Severity.NONE),
        (2.2, Severity.MODERATE),
        (3.49, Severity.MODERATE),
        (3.5, Severity.SEVERE),
        (10.0, Severity.SEVERE),
    ])
    def test_bands(self, scorer, score, expected):
        assert scorer.classify(score) == expected

    def test_custom_thresholds(self):
        scorer = AnomalyScorer(ScoringPolicy(severe_threshold=1.0, moderate_threshold=0.5))
        assert scorer.classify(0.6) == Severity.MODERATE
        assert scorer.classify(1.0) == Severity.SEVERE


# =============================================================================
# Determinism & Attribution
# =============================================================================

class TestDeterminism:
    """Same inputs, same score; the sample is scored exactly once."""

    def test_deterministic(self, scorer, make_sample):
        baseline = Baseline(
            means={"typing_rate": 3.0, "pointer_distance": 80.0, "click_count": 2.0, "idle_ratio": 0.7},
            sample_count=10,
        )
        sample = make_sample(typing_rate=9.0, pointer_distance=400.0, click_count=0, idle_ratio=0.2)

        first = scorer.score(sample, baseline)
        second = scorer.score(sample, baseline)
        assert first == second

    def test_score_assigned_once(self, scorer, steady_history, make_sample):
        steady_history.append(make_sample(click_count=4))
        scorer.score_latest(steady_history)

        latest = steady_history.latest()
        assert latest.is_scored
        with pytest.raises(ValueError):
            latest.assign_score(1.0)

    def test_dominant_feature_tie_prefers_first(self, scorer):
        """Equal weighted contributions resolve to typing_rate."""
        normalized = {"typing_rate": 2.0, "pointer_distance": 2.0, "click_count": 0.0, "idle_ratio": 0.0}
        assert scorer._dominant(normalized) == "typing_rate"

    def test_dominant_feature_by_weighted_contribution(self, scorer):
        """click_count 5 * 0.15 = 0.75 beats typing_rate 2 * 0.35 = 0.70."""
        normalized = {"typing_rate": 2.0, "pointer_distance": 0.0, "click_count": 5.0, "idle_ratio": 0.0}
        assert scorer._dominant(normalized) == "click_count"
