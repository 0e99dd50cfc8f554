"""
Continuum Baseline Tracker

Bounded feature history and the reference statistics derived from it.

The baseline is the per-feature arithmetic mean over the OLDEST samples
still retained in history (at most `baseline_size`), so it reflects the
earliest available behavior of the session rather than the most recent.
"""

from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Iterator, List, Optional, Tuple

from core.schemas.outputs import FeatureSample


BASELINE_FEATURES: Tuple[str, ...] = (
    "typing_rate",
    "mean_key_interval_ms",
    "pointer_distance",
    "click_count",
    "idle_ratio",
)


class FeatureHistory:
    """FIFO ring of FeatureSamples; the oldest sample is evicted at capacity."""

    def __init__(self, capacity: int = 60) -> None:
        if capacity < 1:
            raise ValueError("History capacity must be at least 1")
        self._samples: Deque[FeatureSample] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._samples.maxlen

    def append(self, sample: FeatureSample) -> None:
        self._samples.append(sample)

    def latest(self) -> Optional[FeatureSample]:
        return self._samples[-1] if self._samples else None

    def oldest(self, count: int) -> List[FeatureSample]:
        """The first `count` samples, oldest first."""
        return [s for _, s in zip(range(count), self._samples)]

    def snapshot(self) -> List[FeatureSample]:
        return list(self._samples)

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[FeatureSample]:
        return iter(self._samples)


@dataclass(frozen=True)
class Baseline:
    """Per-feature reference means."""
    means: Dict[str, float]
    sample_count: int

    def mean(self, feature: str) -> float:
        return self.means.get(feature, 0.0)

    @classmethod
    def empty(cls) -> "Baseline":
        return cls(means={name: 0.0 for name in BASELINE_FEATURES}, sample_count=0)


class BaselineTracker:
    """
    Supplies the baseline for each scoring pass.

    Recomputed from the history prefix on every call; the previous result
    is reused only when the prefix consists of the very same sample objects.
    """

    def __init__(self, baseline_size: int = 10) -> None:
        if baseline_size < 1:
            raise ValueError("Baseline size must be at least 1")
        self.baseline_size = baseline_size
        self._cache_key: Optional[Tuple[FeatureSample, ...]] = None
        self._cached: Optional[Baseline] = None

    def compute(self, history: FeatureHistory) -> Baseline:
        window = history.oldest(self.baseline_size)
        if not window:
            return Baseline.empty()

        key = tuple(window)
        if self._cached is not None and _same_samples(key, self._cache_key):
            return self._cached

        n = len(window)
        means = {
            name: sum(s.feature(name) for s in window) / n
            for name in BASELINE_FEATURES
        }
        baseline = Baseline(means=means, sample_count=n)

        self._cache_key = key
        self._cached = baseline
        return baseline


def _same_samples(
    current: Tuple[FeatureSample, ...],
    cached: Optional[Tuple[FeatureSample, ...]],
) -> bool:
    if cached is None or len(current) != len(cached):
        return False
    return all(a is b for a, b in zip(current, cached))
