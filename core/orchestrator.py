"""
Continuum Orchestrator

Per-session continuous-authentication pipeline.

Detection flow (one tick per window per session):
    Aggregator -> History -> Baseline -> Scorer -> Trust Controller

Re-authentication flow:
    severe score -> PENDING_REAUTH -> reauth_required listeners
    -> biometric / password verification -> clear_reauth -> TRUSTED

All collaborators (session repository, biometric service, identity store,
audit logger) are injected; the orchestrator holds no global state.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from core.capture import verify_with_capture
from core.config import EngineSettings
from core.models.baseline import FeatureHistory
from core.models.biometric import BiometricEnrollment, BiometricService
from core.models.scorer import AnomalyScorer, ScoreResult
from core.models.trust import TrustController
from core.processors.telemetry import TelemetryAggregator
from core.schemas.inputs import InputEventKind, Modality, TelemetryStreamPayload
from core.schemas.outputs import AnomalyLogEntry, FeatureSample, Severity, TrustState
from persistence.audit_logger import AuditLogger
from persistence.enrollment_store import InMemoryEnrollmentStore
from persistence.identity_store import IdentityStore
from persistence.session_repository import SessionRepository, SessionState


logger = logging.getLogger(__name__)


TickListener = Callable[[str, FeatureSample, bool, Severity], None]
ReauthListener = Callable[[str], None]
PasswordVerifier = Callable[[str, str], bool]


# =============================================================================
# Exceptions
# =============================================================================

class UnknownSessionError(Exception):
    """Raised when an operation names a session that is not active."""
    pass


class UnknownAccountError(Exception):
    """Raised when starting a session for an account the identity store lacks."""
    pass


class ReplayAttackError(Exception):
    """Raised when a telemetry batch is replayed or out of date."""
    pass


class SessionMismatchError(Exception):
    """Raised when a telemetry batch names a different user than its session."""
    pass


class PasswordFallbackUnavailable(Exception):
    """Raised when password re-authentication is disabled or not wired."""
    pass


# =============================================================================
# Tick Result
# =============================================================================

@dataclass(frozen=True)
class TickResult:
    """Outcome of one window for one session."""
    session_id: str
    sample: FeatureSample
    score: ScoreResult
    trust_level: int
    state: TrustState
    anomaly: Optional[AnomalyLogEntry] = None

    @property
    def severity(self) -> Severity:
        return self.score.severity

    @property
    def is_anomaly(self) -> bool:
        return self.score.is_anomaly


# =============================================================================
# Orchestrator
# =============================================================================

class ContinuumOrchestrator:
    """
    Owns the per-session pipelines and the re-authentication workflow.
    """

    def __init__(
        self,
        repo: Optional[SessionRepository] = None,
        biometrics: Optional[BiometricService] = None,
        identity_store: Optional[IdentityStore] = None,
        settings: Optional[EngineSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        password_verifier: Optional[PasswordVerifier] = None,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.repo = repo or SessionRepository()
        self.biometrics = biometrics or BiometricService(
            InMemoryEnrollmentStore(), self.settings.biometric
        )
        self.identity_store = identity_store
        self.audit_logger = audit_logger
        self.password_verifier = password_verifier

        self._tick_listeners: List[TickListener] = []
        self._reauth_listeners: List[ReauthListener] = []

        logger.info("ContinuumOrchestrator initialized")

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def add_tick_listener(self, listener: TickListener) -> None:
        """Register a callback receiving (session_id, sample, is_anomaly, severity)."""
        self._tick_listeners.append(listener)

    def add_reauth_listener(self, listener: ReauthListener) -> None:
        """Register a callback receiving reauth_required(session_id)."""
        self._reauth_listeners.append(listener)

    def _emit_reauth_required(self, session_id: str) -> None:
        logger.warning(f"Re-authentication required for session {session_id}")
        for listener in list(self._reauth_listeners):
            try:
                listener(session_id)
            except Exception as e:
                logger.error(f"Reauth listener failed for {session_id}: {e}")

    def _emit_tick(self, session_id: str, sample: FeatureSample, result: ScoreResult) -> None:
        for listener in list(self._tick_listeners):
            try:
                listener(session_id, sample, result.is_anomaly, result.severity)
            except Exception as e:
                logger.error(f"Tick listener failed for {session_id}: {e}")

    # -------------------------------------------------------------------------
    # Session Lifecycle
    # -------------------------------------------------------------------------

    def start_session(self, session_id: str, user_id: str) -> SessionState:
        """
        Begin monitoring a session after successful primary authentication.

        Trust starts at 100 in the TRUSTED state. An id that is already
        active is refused with SessionExistsError; its state is left as is.
        """
        if self.identity_store is not None and not self.identity_store.exists(user_id):
            raise UnknownAccountError(f"No account registered for {user_id}")

        scoring = self.settings.scoring
        state = SessionState(
            session_id=session_id,
            user_id=user_id,
            aggregator=TelemetryAggregator(),
            history=FeatureHistory(scoring.history_capacity),
            scorer=AnomalyScorer(scoring),
            trust=TrustController(
                self.settings.trust,
                on_reauth_required=lambda: self._emit_reauth_required(session_id),
            ),
        )
        self.repo.add(state)
        logger.info(f"Session {session_id} started for {user_id}")
        return state

    def end_session(self, session_id: str) -> bool:
        """Destroy session state (logout). Returns False if it was not active."""
        state = self.repo.remove(session_id)
        if state is None:
            return False
        logger.info(
            f"Session {session_id} ended for {state.user_id} "
            f"after {len(state.history)} retained windows"
        )
        return True

    def active_sessions(self) -> List[str]:
        return self.repo.session_ids()

    def _require(self, session_id: str) -> SessionState:
        state = self.repo.get(session_id)
        if state is None:
            raise UnknownSessionError(f"Session {session_id} is not active")
        return state

    # -------------------------------------------------------------------------
    # Ingest
    # -------------------------------------------------------------------------

    def on_event(
        self,
        session_id: str,
        kind: InputEventKind,
        payload: Any,
        timestamp: float,
    ) -> None:
        """Fire-and-forget ingestion of one raw event."""
        state = self.repo.get(session_id)
        if state is None:
            logger.debug(f"Dropping event for inactive session {session_id}")
            return
        state.aggregator.on_event(kind, payload, timestamp)

    def ingest_batch(self, payload: TelemetryStreamPayload) -> int:
        """
        Fold a client batch into the session's open window.

        batch_id is a high-water mark: duplicates and older batches are
        rejected, gaps are accepted.

        Returns the number of events folded.
        """
        state = self._require(payload.session_id)

        if payload.user_id != state.user_id:
            raise SessionMismatchError(
                f"Batch user {payload.user_id} does not own session {payload.session_id}"
            )

        if payload.batch_id <= state.last_batch_id:
            raise ReplayAttackError(
                f"Duplicate/old batch: received {payload.batch_id}, "
                f"last accepted was {state.last_batch_id}"
            )

        gap = payload.batch_id - state.last_batch_id
        if gap > 1:
            logger.info(
                f"Telemetry batch gap on {payload.session_id}: expected "
                f"{state.last_batch_id + 1}, got {payload.batch_id}"
            )

        for event in payload.events:
            state.aggregator.on_event(event.kind, event.payload(), event.timestamp)

        state.last_batch_id = payload.batch_id
        return len(payload.events)

    # -------------------------------------------------------------------------
    # Tick
    # -------------------------------------------------------------------------

    def tick(self, session_id: str) -> TickResult:
        """
        Close the open window and run the scoring pipeline for one session.

        A window that cannot be aggregated becomes a zero-signal sample.
        """
        state = self._require(session_id)

        try:
            sample = state.aggregator.close_window()
        except Exception:
            logger.exception(f"Window aggregation failed for {session_id}, using zero-signal sample")
            sample = state.aggregator.zero_sample()

        state.history.append(sample)
        result = state.scorer.score_latest(state.history)
        entry = state.trust.apply(result)

        if entry is not None:
            logger.warning(
                f"{entry.description.capitalize()} on {session_id}: score={entry.score:.2f} "
                f"feature={entry.dominant_feature} trust={state.trust.trust_level}"
            )
            if self.audit_logger is not None:
                self.audit_logger.log_anomaly(session_id, state.user_id, entry)

        self._emit_tick(session_id, sample, result)

        return TickResult(
            session_id=session_id,
            sample=sample,
            score=result,
            trust_level=state.trust.trust_level,
            state=state.trust.state,
            anomaly=entry,
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_trust_level(self, session_id: str) -> int:
        return self._require(session_id).trust.trust_level

    def get_trust_state(self, session_id: str) -> TrustState:
        return self._require(session_id).trust.state

    def is_reauth_pending(self, session_id: str) -> bool:
        return self._require(session_id).trust.reauth_pending

    def get_anomaly_log(self, session_id: str) -> List[AnomalyLogEntry]:
        return self._require(session_id).trust.anomaly_log

    def get_history(self, session_id: str) -> List[FeatureSample]:
        return self._require(session_id).history.snapshot()

    # -------------------------------------------------------------------------
    # Re-authentication
    # -------------------------------------------------------------------------

    def reauthenticate(self, session_id: str, modality: Modality, sample: Any = None) -> bool:
        """
        Verify a biometric sample for the session's user.

        On success a pending re-auth is cleared and trust resets to 100.
        Biometric errors propagate unchanged and never alter trust.
        """
        state = self._require(session_id)
        verified = self.biometrics.verify(state.user_id, modality, sample)
        self._record_verification(state, verified, Modality(modality).value)
        return verified

    async def reauthenticate_with_capture(
        self,
        session_id: str,
        modality: Modality,
        capture: Callable[[], Awaitable[Any]],
        *,
        cancel_event: Optional[asyncio.Event] = None,
        release: Optional[Callable[[], Any]] = None,
    ) -> Optional[bool]:
        """Capture-and-verify variant; None if the user cancelled the capture."""
        state = self._require(session_id)
        verified = await verify_with_capture(
            self.biometrics,
            state.user_id,
            modality,
            capture,
            cancel_event=cancel_event,
            release=release,
        )
        if verified is None:
            return None
        self._record_verification(state, verified, Modality(modality).value)
        return verified

    def reauthenticate_with_password(self, session_id: str, password: str) -> bool:
        """Password fallback; requires an identity store and a password verifier."""
        state = self._require(session_id)
        if (
            not self.settings.trust.allow_password_fallback
            or self.password_verifier is None
            or self.identity_store is None
        ):
            raise PasswordFallbackUnavailable("Password re-authentication is not available")

        account = self.identity_store.find(state.user_id)
        verified = account is not None and self.password_verifier(password, account.password_hash)
        self._record_verification(state, verified, "password")
        return verified

    def _record_verification(self, state: SessionState, verified: bool, method: str) -> None:
        state.trust.record_verification(verified)
        if self.audit_logger is not None:
            self.audit_logger.log_reauth(
                state.session_id, state.user_id,
                "verified" if verified else "failed",
                modality=method,
            )
        if verified:
            self.clear_reauth(state.session_id)
        else:
            logger.warning(f"Re-verification via {method} failed for session {state.session_id}")

    def clear_reauth(self, session_id: str) -> None:
        """
        Clear a pending re-auth.

        Raises:
            ReauthNotVerifiedError: no successful verification was recorded
        """
        state = self._require(session_id)
        was_pending = state.trust.reauth_pending
        state.trust.clear_reauth()
        if was_pending:
            logger.info(f"Re-authentication cleared for session {session_id}")

    def cancel_reauth(self, session_id: str) -> bool:
        """
        Handle a dismissed re-auth prompt according to the cancel policy.

        Returns True when the session was terminated.
        """
        state = self._require(session_id)
        terminate = state.trust.cancel_reauth()
        if self.audit_logger is not None and state.trust.reauth_pending:
            self.audit_logger.log_reauth(
                session_id, state.user_id,
                "terminated" if terminate else "cancelled",
            )
        if terminate:
            self.end_session(session_id)
        return terminate

    # -------------------------------------------------------------------------
    # Enrollment
    # -------------------------------------------------------------------------

    def enroll(
        self,
        user_id: str,
        modality: Modality,
        sample: Any = None,
        display_name: Optional[str] = None,
    ) -> BiometricEnrollment:
        return self.biometrics.enroll(user_id, modality, sample, display_name=display_name)

    def unenroll(self, user_id: str, modality: Modality) -> bool:
        return self.biometrics.unenroll(user_id, modality)

    def get_enrollment(self, user_id: str) -> Dict[str, bool]:
        return self.biometrics.get_enrollment(user_id)
