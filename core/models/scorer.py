"""
Continuum Anomaly Scorer

Deterministic deviation scoring of the latest window against the session
baseline. No ML, no randomness.

Algorithm:
    delta_f   = |latest_f - baseline_f|
    n_typing  = clamp(delta / (baseline + 1),  0, 10)
    n_pointer = clamp(delta / (baseline + 50), 0, 10)
    n_clicks  = clamp(delta / (baseline + 1),  0, 10)
    n_idle    = clamp(delta / 0.5,             0, 10)
    score     = round(sum(weight_f * n_f), 2)

Weights, smoothing and severity bands come from ScoringPolicy.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from core.config import ScoringPolicy
from core.models.baseline import Baseline, BaselineTracker, FeatureHistory
from core.schemas.outputs import FeatureSample, Severity


SCORED_FEATURES = ("typing_rate", "pointer_distance", "click_count", "idle_ratio")


@dataclass(frozen=True)
class ScoreResult:
    """Score of one window plus its explanation."""
    score: float
    severity: Severity
    normalized: Dict[str, float]
    dominant_feature: Optional[str]
    window_index: Optional[int] = None

    @property
    def is_anomaly(self) -> bool:
        return self.severity != Severity.NONE


class AnomalyScorer:
    """
    Compares the latest FeatureSample with the baseline.

    The result is bounded by max_normalized * sum(weights), i.e. 10.0 with
    the default policy.
    """

    def __init__(
        self,
        policy: Optional[ScoringPolicy] = None,
        tracker: Optional[BaselineTracker] = None,
    ) -> None:
        self.policy = policy or ScoringPolicy()
        self.tracker = tracker or BaselineTracker(self.policy.baseline_size)

    # -------------------------------------------------------------------------
    # Scoring
    # -------------------------------------------------------------------------

    def normalize(self, sample: FeatureSample, baseline: Baseline) -> Dict[str, float]:
        """Smoothed, clamped deviation of each scored feature."""
        normalized: Dict[str, float] = {}
        for name in SCORED_FEATURES:
            reference = baseline.mean(name)
            delta = abs(sample.feature(name) - reference)
            if name == "idle_ratio":
                denominator = self.policy.idle_scale
            else:
                denominator = reference + self.policy.smoothing[name]
            normalized[name] = self._clamp(delta / denominator)
        return normalized

    def weighted_score(self, normalized: Dict[str, float]) -> float:
        """Combine normalized deviations into a score rounded to 2 decimals."""
        total = sum(
            self.policy.weights[name] * self._clamp(normalized.get(name, 0.0))
            for name in SCORED_FEATURES
        )
        return round(total, 2)

    def score(self, sample: FeatureSample, baseline: Baseline) -> ScoreResult:
        """Score a sample without mutating it."""
        normalized = self.normalize(sample, baseline)
        value = self.weighted_score(normalized)
        return ScoreResult(
            score=value,
            severity=self.classify(value),
            normalized=normalized,
            dominant_feature=self._dominant(normalized) if value > 0 else None,
            window_index=sample.window_index,
        )

    def score_latest(self, history: FeatureHistory) -> Optional[ScoreResult]:
        """
        Score the most recent sample in history and assign its score.

        Returns None for an empty history.
        """
        latest = history.latest()
        if latest is None:
            return None

        baseline = self.tracker.compute(history)
        result = self.score(latest, baseline)
        latest.assign_score(result.score)
        return result

    def classify(self, score: float) -> Severity:
        if score >= self.policy.severe_threshold:
            return Severity.SEVERE
        if score >= self.policy.moderate_threshold:
            return Severity.MODERATE
        return Severity.NONE

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _clamp(self, value: float) -> float:
        return max(0.0, min(self.policy.max_normalized, value))

    def _dominant(self, normalized: Dict[str, float]) -> str:
        # Ties resolve to the first feature in SCORED_FEATURES order
        return max(
            SCORED_FEATURES,
            key=lambda name: self.policy.weights[name] * normalized.get(name, 0.0),
        )
