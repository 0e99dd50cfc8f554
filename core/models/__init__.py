"""
Continuum Core Models

Baseline tracking, deterministic anomaly scoring, trust state machine
and biometric enrollment/verification.
"""

from core.models.baseline import Baseline, BaselineTracker, FeatureHistory
from core.models.biometric import (
    BiometricEnrollment,
    BiometricError,
    BiometricService,
    CaptureFailed,
    CaptureTimeout,
    NotEnrolled,
    PlatformAuthenticator,
    PlatformUnsupported,
    ReportedPlatformAuthenticator,
)
from core.models.scorer import AnomalyScorer, ScoreResult
from core.models.trust import ReauthNotVerifiedError, TrustController

__all__ = [
    "Baseline",
    "BaselineTracker",
    "FeatureHistory",
    "AnomalyScorer",
    "ScoreResult",
    "TrustController",
    "ReauthNotVerifiedError",
    "BiometricService",
    "BiometricEnrollment",
    "PlatformAuthenticator",
    "ReportedPlatformAuthenticator",
    "BiometricError",
    "CaptureFailed",
    "CaptureTimeout",
    "PlatformUnsupported",
    "NotEnrolled",
]
