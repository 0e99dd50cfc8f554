"""
Continuum Session Repository

In-memory registry of per-session monitoring state.

Each session exclusively owns its aggregator, feature history, scorer
(with its baseline cache) and trust controller. Nothing is shared across
sessions and nothing is persisted: state is destroyed at logout / session end.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

from core.models.baseline import FeatureHistory
from core.models.scorer import AnomalyScorer
from core.models.trust import TrustController
from core.processors.telemetry import TelemetryAggregator


logger = logging.getLogger(__name__)


class SessionExistsError(Exception):
    """Raised when a session id is already being monitored."""
    pass


@dataclass
class SessionState:
    """Monitoring state owned by one session."""
    session_id: str
    user_id: str
    aggregator: TelemetryAggregator
    history: FeatureHistory
    scorer: AnomalyScorer
    trust: TrustController
    last_batch_id: int = 0


class SessionRepository:
    """
    Thread-safe session registry.

    The lock guards the registry only; per-session state is mutated by that
    session's single logical pipeline.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, SessionState] = {}
        self._lock = threading.Lock()

    def add(self, state: SessionState) -> SessionState:
        with self._lock:
            if state.session_id in self._sessions:
                raise SessionExistsError(f"Session {state.session_id} is already active")
            self._sessions[state.session_id] = state
        return state

    def get(self, session_id: str) -> Optional[SessionState]:
        with self._lock:
            return self._sessions.get(session_id)

    def remove(self, session_id: str) -> Optional[SessionState]:
        with self._lock:
            return self._sessions.pop(session_id, None)

    def session_ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
