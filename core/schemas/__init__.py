"""
Continuum Core Schemas

Public exports for input and output Pydantic models.
"""

# Input schemas
from core.schemas.inputs import (
    AccountRole,
    BiometricSamplePayload,
    Department,
    EnrollPayload,
    InputEvent,
    InputEventKind,
    Modality,
    PasswordReauthPayload,
    RegisterAccountPayload,
    StartSessionPayload,
    TelemetryStreamPayload,
    VerifyPayload,
)

# Output schemas
from core.schemas.outputs import (
    AccountResponse,
    AnomalyLogEntry,
    AnomalyLogResponse,
    CancelReauthResponse,
    EnrollmentStatusResponse,
    FeatureSample,
    SessionResponse,
    Severity,
    TrustResponse,
    TrustState,
    VerifyResponse,
)

__all__ = [
    # Input - Enums
    "InputEventKind",
    "Modality",
    # Input - Telemetry
    "InputEvent",
    "TelemetryStreamPayload",
    # Input - Session / Biometric
    "StartSessionPayload",
    "BiometricSamplePayload",
    "EnrollPayload",
    "VerifyPayload",
    "PasswordReauthPayload",
    # Input - Accounts
    "AccountRole",
    "Department",
    "RegisterAccountPayload",
    # Output
    "Severity",
    "TrustState",
    "FeatureSample",
    "AnomalyLogEntry",
    "SessionResponse",
    "TrustResponse",
    "AnomalyLogResponse",
    "EnrollmentStatusResponse",
    "VerifyResponse",
    "CancelReauthResponse",
    "AccountResponse",
]
