"""
Continuum Telemetry Aggregator

Stateful feature engineering for interaction telemetry.
Buckets raw key, pointer-move and click events into fixed-width windows
and emits one FeatureSample per window.

Features extracted per window:
- keystroke_count / typing_rate: key presses in the window
- mean_key_interval_ms: mean delta between consecutive key presses
- pointer_distance: Euclidean path length of pointer movement (px)
- click_count: clicks in the window
- idle_ratio: 1 - min(activity weight, 1000ms) / 1000ms
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple, Union

from core.schemas.inputs import InputEventKind
from core.schemas.outputs import FeatureSample


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Activity weight per event kind (ms of "signal" credited to the window)
KEY_WEIGHT_MS = 5.0
MOVE_WEIGHT_MS = 8.0
CLICK_WEIGHT_MS = 20.0

# Activity weight saturates at one full window
WINDOW_ACTIVITY_CAP_MS = 1000.0


# =============================================================================
# Internal Data Structures
# =============================================================================

@dataclass
class WindowCounters:
    """Window-local accumulators, reset at every window boundary."""
    key_timestamps: List[float] = field(default_factory=list)
    pointer_distance: float = 0.0
    click_count: int = 0
    activity_ms: float = 0.0

    @property
    def keystroke_count(self) -> int:
        return len(self.key_timestamps)


# =============================================================================
# Telemetry Aggregator
# =============================================================================

class TelemetryAggregator:
    """
    Folds a live event stream into one FeatureSample per window.

    Events are folded into the currently open window regardless of arrival
    order; only counts and sums matter. The first pointer position seen in
    a session is a reference point and contributes neither distance nor
    activity weight. The last pointer position survives window boundaries.

    Malformed events are dropped. This component never raises.
    """

    def __init__(self) -> None:
        self._window = WindowCounters()
        self._last_pointer: Optional[Tuple[float, float]] = None
        self._next_index: int = 0

    @property
    def next_window_index(self) -> int:
        return self._next_index

    # -------------------------------------------------------------------------
    # Ingest
    # -------------------------------------------------------------------------

    def on_event(
        self,
        kind: Union[InputEventKind, str],
        payload: Any,
        timestamp: Any,
    ) -> None:
        """
        Fold a single raw event into the open window.

        Args:
            kind: "key", "move" or "click"
            payload: {"x", "y"} mapping or (x, y) pair for moves; ignored otherwise
            timestamp: Event time in milliseconds
        """
        try:
            event_kind = InputEventKind(kind)
        except ValueError:
            logger.debug(f"Dropping event with unknown kind {kind!r}")
            return

        if event_kind == InputEventKind.KEY:
            ts = _as_finite(timestamp)
            if ts is None:
                logger.debug(f"Dropping key event with bad timestamp {timestamp!r}")
                return
            self._window.key_timestamps.append(ts)
            self._window.activity_ms += KEY_WEIGHT_MS

        elif event_kind == InputEventKind.MOVE:
            point = _as_point(payload)
            if point is None:
                logger.debug(f"Dropping move event with bad payload {payload!r}")
                return
            self._fold_move(point)

        else:
            self._window.click_count += 1
            self._window.activity_ms += CLICK_WEIGHT_MS

    def _fold_move(self, point: Tuple[float, float]) -> None:
        if self._last_pointer is None:
            # Reference point only
            self._last_pointer = point
            return

        dx = point[0] - self._last_pointer[0]
        dy = point[1] - self._last_pointer[1]
        self._window.pointer_distance += math.hypot(dx, dy)
        self._window.activity_ms += MOVE_WEIGHT_MS
        self._last_pointer = point

    # -------------------------------------------------------------------------
    # Window Boundary
    # -------------------------------------------------------------------------

    def close_window(self) -> FeatureSample:
        """Emit the FeatureSample for the open window and reset counters."""
        window = self._window
        activity = min(window.activity_ms, WINDOW_ACTIVITY_CAP_MS)

        sample = FeatureSample(
            window_index=self._next_index,
            keystroke_count=window.keystroke_count,
            typing_rate=float(window.keystroke_count),
            mean_key_interval_ms=self._mean_interval(window.key_timestamps),
            pointer_distance=window.pointer_distance,
            click_count=window.click_count,
            idle_ratio=max(0.0, 1.0 - activity / WINDOW_ACTIVITY_CAP_MS),
        )

        self._next_index += 1
        self._window = WindowCounters()
        return sample

    def zero_sample(self) -> FeatureSample:
        """
        Emit a zero-signal sample for the open window and discard its counters.

        Used when a window could not be aggregated.
        """
        sample = FeatureSample(window_index=self._next_index)
        self._next_index += 1
        self._window = WindowCounters()
        return sample

    def _mean_interval(self, timestamps: List[float]) -> float:
        """Mean delta between consecutive key presses, taken in time order."""
        if len(timestamps) < 2:
            return 0.0
        ordered = sorted(timestamps)
        deltas = [b - a for a, b in zip(ordered, ordered[1:])]
        return sum(deltas) / len(deltas)

    def reset(self) -> None:
        """Reset aggregator state for a new session."""
        self._window = WindowCounters()
        self._last_pointer = None
        self._next_index = 0


# =============================================================================
# Payload Helpers
# =============================================================================

def _as_finite(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def _as_point(payload: Any) -> Optional[Tuple[float, float]]:
    if isinstance(payload, dict):
        x, y = payload.get("x"), payload.get("y")
    elif isinstance(payload, (tuple, list)) and len(payload) == 2:
        x, y = payload
    else:
        return None

    fx, fy = _as_finite(x), _as_finite(y)
    if fx is None or fy is None:
        return None
    return (fx, fy)
