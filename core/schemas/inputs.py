"""
Continuum Input Schemas

Pydantic V2 models for:
- Raw telemetry events and batched stream payloads
- Session lifecycle requests
- Biometric enrollment and re-verification requests
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


# =============================================================================
# Enums
# =============================================================================

class InputEventKind(str, Enum):
    """Raw input event kinds folded by the telemetry aggregator."""
    KEY = "key"
    MOVE = "move"
    CLICK = "click"


class Modality(str, Enum):
    """Biometric factor type, enrolled and verified independently."""
    FACE = "face"
    FINGERPRINT = "fingerprint"


# =============================================================================
# Telemetry Events
# =============================================================================

class InputEvent(BaseModel):
    """Single input event captured by the client wrapper."""
    kind: InputEventKind = Field(..., description="key, move or click")
    timestamp: float = Field(..., description="Event timestamp in milliseconds")
    x: Optional[float] = Field(None, description="Pointer X coordinate (move events)")
    y: Optional[float] = Field(None, description="Pointer Y coordinate (move events)")
    key: Optional[str] = Field(None, description="Key code (key events, informational only)")

    def payload(self) -> dict:
        """Event payload in the shape accepted by TelemetryAggregator.on_event."""
        if self.kind == InputEventKind.MOVE:
            return {"x": self.x, "y": self.y}
        if self.kind == InputEventKind.KEY:
            return {"key": self.key}
        return {}


class TelemetryStreamPayload(BaseModel):
    """
    Batched telemetry stream sent periodically by the client.

    batch_id is a per-session high-water mark used for replay protection.
    """
    session_id: str = Field(..., min_length=1, description="Active session identifier")
    user_id: str = Field(..., min_length=1, description="Account identifier (email)")
    batch_id: int = Field(..., ge=1, description="Monotonic batch number")
    events: List[InputEvent] = Field(default_factory=list, description="Batch of input events")


# =============================================================================
# Session Lifecycle
# =============================================================================

class StartSessionPayload(BaseModel):
    """Opens a monitored session after successful primary authentication."""
    session_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1, description="Account identifier (email)")


# =============================================================================
# Biometric Requests
# =============================================================================

class BiometricSamplePayload(BaseModel):
    """
    Captured biometric sample.

    Face samples carry a descriptor vector. Fingerprint samples carry the
    outcome of the client-side platform ceremony: whether a platform
    authenticator exists, the credential handle it produced or asserted,
    and whether the assertion was valid.
    """
    modality: Modality
    descriptor: Optional[List[float]] = Field(
        None, description="Face descriptor vector (face only)"
    )
    credential_id: Optional[str] = Field(
        None, description="Platform credential handle (fingerprint only)"
    )
    platform_available: bool = Field(
        True, description="Whether a user-verifying platform authenticator exists"
    )
    assertion_valid: bool = Field(
        False, description="Platform-reported assertion result (fingerprint verify only)"
    )


class EnrollPayload(BiometricSamplePayload):
    """Enrollment request for one modality."""
    display_name: Optional[str] = Field(None, description="Name shown by the platform prompt")


class VerifyPayload(BiometricSamplePayload):
    """Re-verification request for a session pending re-authentication."""


class PasswordReauthPayload(BaseModel):
    """Password fallback for re-authentication."""
    password: str = Field(..., min_length=1)


# =============================================================================
# Accounts
# =============================================================================

class AccountRole(str, Enum):
    PHYSICIAN = "physician"
    NURSE = "nurse"
    ADMIN = "admin"


class Department(str, Enum):
    CARDIOLOGY = "Cardiology"
    NEUROLOGY = "Neurology"
    EMERGENCY = "Emergency"
    PEDIATRICS = "Pediatrics"
    ONCOLOGY = "Oncology"
    IT = "IT"
    ADMINISTRATION = "Administration"


class RegisterAccountPayload(BaseModel):
    """Account registration handled by the identity collaborator."""
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3, description="Account identifier")
    password: str = Field(..., min_length=1)
    role: AccountRole
    department: Department
