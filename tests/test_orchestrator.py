"""
Orchestrator Integration Tests

Tests the full per-session flow of ContinuumOrchestrator with in-memory
backends:

1. Session start: trust 100, TRUSTED
2. Steady telemetry windows: no anomalies
3. Burst of activity against an idle baseline: severe → PENDING_REAUTH
4. Re-verification (face / fingerprint / password) → TRUSTED, trust 100
5. Cancel policies, replay protection and failure degradation
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from core.config import EngineSettings, TrustPolicy
from core.models.biometric import NotEnrolled, ReportedPlatformAuthenticator
from core.models.trust import ReauthNotVerifiedError
from core.orchestrator import (
    ContinuumOrchestrator,
    PasswordFallbackUnavailable,
    ReplayAttackError,
    SessionMismatchError,
    UnknownAccountError,
    UnknownSessionError,
)
from core.schemas.inputs import Modality, TelemetryStreamPayload
from core.schemas.outputs import Severity, TrustState
from persistence.session_repository import SessionExistsError


USER = "alice@example.com"


# =============================================================================
# Helpers
# =============================================================================

def steady_window(orchestrator, session_id, t0=0.0):
    """Light, regular activity: 5 keys, a short pointer path, one click."""
    for i in range(5):
        orchestrator.on_event(session_id, "key", {"key": "a"}, t0 + i * 150)
    orchestrator.on_event(session_id, "move", {"x": 0, "y": 0}, t0)
    orchestrator.on_event(session_id, "move", {"x": 60, "y": 80}, t0 + 500)
    orchestrator.on_event(session_id, "click", {}, t0 + 700)
    return orchestrator.tick(session_id)


def burst_window(orchestrator, session_id, t0=0.0):
    """Heavy activity: many keys, long pointer path, many clicks."""
    for i in range(60):
        orchestrator.on_event(session_id, "key", {"key": "x"}, t0 + i * 10)
    for i in range(40):
        orchestrator.on_event(session_id, "move", {"x": (i % 2) * 400, "y": 0}, t0 + i * 20)
    for i in range(25):
        orchestrator.on_event(session_id, "click", {}, t0 + i * 30)
    return orchestrator.tick(session_id)


def go_pending(orchestrator, session_id):
    """Ten steady windows for the baseline, then one burst."""
    for n in range(10):
        steady_window(orchestrator, session_id, t0=n * 1000)
    return burst_window(orchestrator, session_id, t0=10_000)


@pytest.fixture
def session(orchestrator):
    orchestrator.start_session("s1", USER)
    return "s1"


# =============================================================================
# Session Lifecycle
# =============================================================================

class TestSessionLifecycle:

    def test_start_session_is_trusted(self, orchestrator, session):
        assert orchestrator.get_trust_level(session) == 100
        assert orchestrator.get_trust_state(session) == TrustState.TRUSTED
        assert orchestrator.is_reauth_pending(session) is False
        assert orchestrator.active_sessions() == [session]

    def test_unknown_account_rejected(self, orchestrator):
        with pytest.raises(UnknownAccountError):
            orchestrator.start_session("s9", "mallory@example.com")

    def test_end_session_destroys_state(self, orchestrator, session):
        assert orchestrator.end_session(session) is True
        assert orchestrator.end_session(session) is False
        with pytest.raises(UnknownSessionError):
            orchestrator.get_trust_level(session)

    def test_sessions_are_isolated(self, orchestrator, session):
        orchestrator.start_session("s2", USER)
        go_pending(orchestrator, session)

        assert orchestrator.is_reauth_pending(session) is True
        assert orchestrator.is_reauth_pending("s2") is False
        assert orchestrator.get_history("s2") == []

    def test_restart_of_active_session_rejected(self, orchestrator, session):
        """An active session cannot be restarted to escape a pending re-auth."""
        go_pending(orchestrator, session)
        log_before = orchestrator.get_anomaly_log(session)
        assert log_before

        with pytest.raises(SessionExistsError):
            orchestrator.start_session(session, USER)

        assert orchestrator.is_reauth_pending(session) is True
        assert orchestrator.get_trust_state(session) == TrustState.PENDING_REAUTH
        assert orchestrator.get_trust_level(session) < 100
        assert orchestrator.get_anomaly_log(session) == log_before
        assert len(orchestrator.get_history(session)) == 11

    def test_session_id_reusable_after_logout(self, orchestrator, session):
        go_pending(orchestrator, session)
        orchestrator.end_session(session)

        orchestrator.start_session(session, USER)
        assert orchestrator.get_trust_level(session) == 100
        assert orchestrator.get_anomaly_log(session) == []

    def test_events_for_unknown_session_are_dropped(self, orchestrator):
        orchestrator.on_event("ghost", "key", {}, 0)


# =============================================================================
# Detection Flow
# =============================================================================

class TestDetection:

    def test_steady_behaviour_is_normal(self, orchestrator, session, recorded_events):
        for n in range(12):
            result = steady_window(orchestrator, session, t0=n * 1000)
            assert result.severity == Severity.NONE

        assert orchestrator.get_trust_level(session) == 100
        assert orchestrator.get_anomaly_log(session) == []
        assert len(recorded_events["ticks"]) == 12
        assert not any(t[2] for t in recorded_events["ticks"])

    def test_burst_triggers_reauth(self, orchestrator, session, recorded_events):
        result = go_pending(orchestrator, session)

        assert result.severity == Severity.SEVERE
        assert result.is_anomaly
        assert result.anomaly.description == "severe deviation"
        assert orchestrator.get_trust_state(session) == TrustState.PENDING_REAUTH
        assert orchestrator.get_trust_level(session) == result.trust_level < 100
        assert recorded_events["reauth"] == [session]
        assert recorded_events["ticks"][-1] == (session, 10, True, Severity.SEVERE)

    def test_trust_query_is_idempotent(self, orchestrator, session):
        go_pending(orchestrator, session)
        levels = {orchestrator.get_trust_level(session) for _ in range(5)}
        assert len(levels) == 1

    def test_history_is_bounded(self, orchestrator, session):
        for _ in range(75):
            orchestrator.tick(session)

        history = orchestrator.get_history(session)
        assert len(history) == 60
        assert history[0].window_index == 15
        assert all(s.is_scored for s in history)

    def test_aggregation_failure_yields_zero_sample(self, orchestrator, session, monkeypatch):
        """A failing window closes as a zero-signal sample and the pipeline continues."""
        state = orchestrator.repo.get(session)
        monkeypatch.setattr(state.aggregator, "close_window", MagicMock(side_effect=RuntimeError("boom")))

        result = orchestrator.tick(session)
        assert result.sample.keystroke_count == 0
        assert result.sample.idle_ratio == 1.0
        assert len(orchestrator.get_history(session)) == 1

    def test_listener_failure_does_not_break_tick(self, orchestrator, session):
        orchestrator.add_tick_listener(MagicMock(side_effect=RuntimeError("listener down")))
        orchestrator.tick(session)
        assert len(orchestrator.get_history(session)) == 1

    def test_anomalies_are_audited(self, orchestrator, session):
        orchestrator.audit_logger = MagicMock()
        go_pending(orchestrator, session)

        orchestrator.audit_logger.log_anomaly.assert_called_once()
        args = orchestrator.audit_logger.log_anomaly.call_args[0]
        assert args[0] == session
        assert args[1] == USER


# =============================================================================
# Batch Ingest
# =============================================================================

class TestBatchIngest:

    def batch(self, batch_id, user=USER, events=None):
        return TelemetryStreamPayload(
            session_id="s1",
            user_id=user,
            batch_id=batch_id,
            events=events if events is not None else [
                {"kind": "key", "timestamp": 0},
                {"kind": "key", "timestamp": 120},
                {"kind": "click", "timestamp": 200},
            ],
        )

    def test_batch_folds_into_window(self, orchestrator, session):
        assert orchestrator.ingest_batch(self.batch(1)) == 3
        sample = orchestrator.tick(session).sample

        assert sample.keystroke_count == 2
        assert sample.mean_key_interval_ms == pytest.approx(120.0)
        assert sample.click_count == 1

    def test_replayed_batch_rejected(self, orchestrator, session):
        orchestrator.ingest_batch(self.batch(1))
        with pytest.raises(ReplayAttackError):
            orchestrator.ingest_batch(self.batch(1))

    def test_old_batch_rejected_after_gap(self, orchestrator, session):
        orchestrator.ingest_batch(self.batch(5))
        with pytest.raises(ReplayAttackError):
            orchestrator.ingest_batch(self.batch(3))

    def test_wrong_user_rejected(self, orchestrator, session):
        with pytest.raises(SessionMismatchError):
            orchestrator.ingest_batch(self.batch(1, user="mallory@example.com"))

    def test_unknown_session(self, orchestrator):
        with pytest.raises(UnknownSessionError):
            orchestrator.ingest_batch(self.batch(1))


# =============================================================================
# Re-authentication
# =============================================================================

class TestReauthentication:

    def test_face_verification_clears_pending(self, orchestrator, session, face_descriptor):
        """Successful verify while pending → TRUSTED, trust 100, not pending."""
        orchestrator.enroll(USER, Modality.FACE, face_descriptor())
        go_pending(orchestrator, session)

        assert orchestrator.reauthenticate(session, Modality.FACE, face_descriptor(0.01)) is True
        assert orchestrator.get_trust_state(session) == TrustState.TRUSTED
        assert orchestrator.get_trust_level(session) == 100
        assert orchestrator.is_reauth_pending(session) is False

    def test_failed_verification_keeps_pending(self, orchestrator, session, face_descriptor):
        orchestrator.enroll(USER, Modality.FACE, face_descriptor())
        result = go_pending(orchestrator, session)

        assert orchestrator.reauthenticate(session, Modality.FACE, face_descriptor(1.0)) is False
        assert orchestrator.is_reauth_pending(session) is True
        assert orchestrator.get_trust_level(session) == result.trust_level

    def test_not_enrolled_leaves_trust_unchanged(self, orchestrator, session, face_descriptor):
        result = go_pending(orchestrator, session)

        with pytest.raises(NotEnrolled):
            orchestrator.reauthenticate(session, Modality.FACE, face_descriptor())
        assert orchestrator.get_trust_level(session) == result.trust_level
        assert orchestrator.is_reauth_pending(session) is True

    def test_fingerprint_verification(self, orchestrator, session):
        orchestrator.enroll(USER, Modality.FINGERPRINT, ReportedPlatformAuthenticator(True, "cred-1"))
        go_pending(orchestrator, session)

        verified = orchestrator.reauthenticate(
            session, Modality.FINGERPRINT, ReportedPlatformAuthenticator(True, "cred-1", assertion_valid=True)
        )
        assert verified is True
        assert orchestrator.get_trust_state(session) == TrustState.TRUSTED

    def test_password_fallback(self, orchestrator, session):
        go_pending(orchestrator, session)

        assert orchestrator.reauthenticate_with_password(session, "wrong") is False
        assert orchestrator.is_reauth_pending(session) is True
        assert orchestrator.reauthenticate_with_password(session, "secret") is True
        assert orchestrator.is_reauth_pending(session) is False

    def test_password_fallback_disabled(self, biometric_service, identity_store, fake_password_verifier):
        orchestrator = ContinuumOrchestrator(
            biometrics=biometric_service,
            identity_store=identity_store,
            settings=EngineSettings(trust=TrustPolicy(allow_password_fallback=False), auto_tick=False),
            password_verifier=fake_password_verifier,
        )
        orchestrator.start_session("s1", USER)
        with pytest.raises(PasswordFallbackUnavailable):
            orchestrator.reauthenticate_with_password("s1", "secret")

    def test_clear_without_verification(self, orchestrator, session):
        go_pending(orchestrator, session)
        with pytest.raises(ReauthNotVerifiedError):
            orchestrator.clear_reauth(session)

    def test_capture_reauth(self, orchestrator, session, face_descriptor):
        orchestrator.enroll(USER, Modality.FACE, face_descriptor())
        go_pending(orchestrator, session)

        async def camera():
            return face_descriptor()

        verified = asyncio.run(orchestrator.reauthenticate_with_capture(session, Modality.FACE, camera))
        assert verified is True
        assert orchestrator.get_trust_state(session) == TrustState.TRUSTED

    def test_cancelled_capture_changes_nothing(self, orchestrator, session, face_descriptor):
        orchestrator.enroll(USER, Modality.FACE, face_descriptor())
        go_pending(orchestrator, session)

        async def scenario():
            cancel = asyncio.Event()
            cancel.set()

            async def camera():
                await asyncio.sleep(3600)

            return await orchestrator.reauthenticate_with_capture(
                session, Modality.FACE, camera, cancel_event=cancel
            )

        assert asyncio.run(scenario()) is None
        assert orchestrator.is_reauth_pending(session) is True

    def test_reauth_audited(self, orchestrator, session):
        orchestrator.audit_logger = MagicMock()
        go_pending(orchestrator, session)
        orchestrator.reauthenticate_with_password(session, "secret")

        orchestrator.audit_logger.log_reauth.assert_called_with(
            session, USER, "verified", modality="password"
        )


# =============================================================================
# Cancel Policy
# =============================================================================

class TestCancelPolicy:

    def test_terminate_ends_session(self, orchestrator, session):
        go_pending(orchestrator, session)

        assert orchestrator.cancel_reauth(session) is True
        assert session not in orchestrator.active_sessions()

    def test_keep_pending(self, biometric_service, identity_store):
        orchestrator = ContinuumOrchestrator(
            biometrics=biometric_service,
            identity_store=identity_store,
            settings=EngineSettings(trust=TrustPolicy(cancel_policy="keep_pending"), auto_tick=False),
        )
        orchestrator.start_session("s1", USER)
        go_pending(orchestrator, "s1")

        assert orchestrator.cancel_reauth("s1") is False
        assert orchestrator.is_reauth_pending("s1") is True

    def test_cancel_when_trusted_is_noop(self, orchestrator, session):
        assert orchestrator.cancel_reauth(session) is False
        assert session in orchestrator.active_sessions()


# =============================================================================
# Enrollment Passthrough
# =============================================================================

class TestEnrollment:

    def test_enrollment_status(self, orchestrator, face_descriptor):
        assert orchestrator.get_enrollment(USER) == {"face": False, "fingerprint": False}
        orchestrator.enroll(USER, Modality.FACE, face_descriptor())
        assert orchestrator.get_enrollment(USER) == {"face": True, "fingerprint": False}

    def test_unenroll(self, orchestrator, face_descriptor):
        orchestrator.enroll(USER, Modality.FACE, face_descriptor())
        assert orchestrator.unenroll(USER, Modality.FACE) is True
        assert orchestrator.get_enrollment(USER) == {"face": False, "fingerprint": False}
