"""
Continuum Trust Controller

Per-session trust state machine driven by anomaly scores.

States:
    TRUSTED         initial; entered after primary (+ optional biometric) auth
    DEGRADED        a moderate deviation was logged; display-only
    PENDING_REAUTH  a severe deviation occurred; sensitive actions should be
                    blocked by the integrating application until cleared

Trust level is a display signal:
    trust_level = round(100 - min(60, score * 12))
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Callable, List, Optional

from core.config import TrustPolicy
from core.models.scorer import ScoreResult
from core.schemas.outputs import AnomalyLogEntry, Severity, TrustState


logger = logging.getLogger(__name__)


DESCRIPTIONS = {
    Severity.SEVERE: "severe deviation",
    Severity.MODERATE: "moderate deviation",
}

MAX_TRUST = 100


class ReauthNotVerifiedError(Exception):
    """Raised when clearing re-auth without a successful verification."""
    pass


class TrustController:
    """
    Consumes scores, maintains the trust level and raises re-auth requests.

    The reauth callback fires once when PENDING_REAUTH is entered; further
    severe scores while pending are logged but do not re-fire it.
    """

    def __init__(
        self,
        policy: Optional[TrustPolicy] = None,
        on_reauth_required: Optional[Callable[[], None]] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.policy = policy or TrustPolicy()
        self._on_reauth_required = on_reauth_required
        self._clock = clock

        self.state: TrustState = TrustState.TRUSTED
        self.trust_level: int = MAX_TRUST
        self.reauth_pending: bool = False
        self._anomaly_log: List[AnomalyLogEntry] = []
        self._verified_since_pending: bool = False

    @property
    def anomaly_log(self) -> List[AnomalyLogEntry]:
        return list(self._anomaly_log)

    # -------------------------------------------------------------------------
    # Scoring Input
    # -------------------------------------------------------------------------

    def trust_for_score(self, score: float) -> int:
        penalty = min(self.policy.max_penalty, score * self.policy.score_multiplier)
        # Half-up rounding
        level = int(math.floor(MAX_TRUST - penalty + 0.5))
        return max(0, min(MAX_TRUST, level))

    def apply(self, result: ScoreResult) -> Optional[AnomalyLogEntry]:
        """
        Update trust from one scored window.

        Returns the anomaly log entry appended, if any.
        """
        self.trust_level = self.trust_for_score(result.score)

        if result.severity == Severity.NONE:
            if self.state == TrustState.DEGRADED:
                self.state = TrustState.TRUSTED
            return None

        entry = AnomalyLogEntry(
            timestamp=self._clock(),
            score=result.score,
            description=DESCRIPTIONS[result.severity],
            severity=result.severity,
            dominant_feature=result.dominant_feature,
            window_index=result.window_index,
        )
        self._anomaly_log.append(entry)

        if result.severity == Severity.SEVERE:
            self._enter_pending_reauth()
        elif self.state != TrustState.PENDING_REAUTH:
            self.state = TrustState.DEGRADED

        return entry

    def _enter_pending_reauth(self) -> None:
        if self.state == TrustState.PENDING_REAUTH:
            return

        self.state = TrustState.PENDING_REAUTH
        self.reauth_pending = True
        self._verified_since_pending = False
        if self._on_reauth_required is not None:
            self._on_reauth_required()

    # -------------------------------------------------------------------------
    # Re-authentication
    # -------------------------------------------------------------------------

    def record_verification(self, verified: bool) -> None:
        """Record the outcome of a re-verification attempt."""
        if verified:
            self._verified_since_pending = True

    def clear_reauth(self) -> None:
        """
        Leave PENDING_REAUTH after a successful verification.

        Raises:
            ReauthNotVerifiedError: no successful verification was recorded.
        """
        if not self.reauth_pending:
            return
        if not self._verified_since_pending:
            raise ReauthNotVerifiedError("Re-authentication requires a successful verification")

        self.reauth_pending = False
        self._verified_since_pending = False
        self.trust_level = MAX_TRUST
        self.state = TrustState.TRUSTED

    def cancel_reauth(self) -> bool:
        """
        Apply the cancel policy to a dismissed re-auth prompt.

        Returns True when the session must be terminated.
        """
        if not self.reauth_pending:
            return False
        if self.policy.cancel_policy == "terminate":
            logger.warning("Re-authentication cancelled; session will be terminated")
            return True
        logger.warning("Re-authentication cancelled; session stays pending")
        return False
