"""
Continuum Output Schemas

Pydantic V2 models for per-window feature samples, anomaly log entries
and the API response contracts.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr


# =============================================================================
# Enums
# =============================================================================

class Severity(str, Enum):
    """Severity band of an anomaly score."""
    NONE = "none"
    MODERATE = "moderate"
    SEVERE = "severe"


class TrustState(str, Enum):
    """Session trust state machine."""
    TRUSTED = "TRUSTED"
    DEGRADED = "DEGRADED"
    PENDING_REAUTH = "PENDING_REAUTH"


# =============================================================================
# Feature Sample
# =============================================================================

class FeatureSample(BaseModel):
    """
    One completed telemetry window.

    Immutable after creation except for `score`, which the anomaly scorer
    assigns exactly once via assign_score().
    """
    model_config = ConfigDict(frozen=True)

    window_index: int = Field(..., ge=0, description="Monotonic window counter")
    keystroke_count: int = Field(0, ge=0)
    typing_rate: float = Field(0.0, ge=0.0, description="Keys per window")
    mean_key_interval_ms: float = Field(0.0, ge=0.0, description="0 if fewer than 2 keys")
    pointer_distance: float = Field(0.0, ge=0.0, description="Pixels travelled")
    click_count: int = Field(0, ge=0)
    idle_ratio: float = Field(1.0, ge=0.0, le=1.0, description="Coarse idle proxy")
    score: float = Field(0.0, ge=0.0, description="Anomaly score")

    _scored: bool = PrivateAttr(default=False)

    @property
    def is_scored(self) -> bool:
        return self._scored

    def assign_score(self, score: float) -> None:
        """Set the anomaly score. Raises ValueError on a second assignment."""
        if self._scored:
            raise ValueError(f"Window {self.window_index} already scored")
        if score < 0:
            raise ValueError(f"Score must be non-negative, got {score}")
        object.__setattr__(self, "score", score)
        self._scored = True

    def feature(self, name: str) -> float:
        return float(getattr(self, name))


# =============================================================================
# Anomaly Log
# =============================================================================

class AnomalyLogEntry(BaseModel):
    """Append-only anomaly log record."""
    timestamp: datetime
    score: float = Field(..., ge=0.0)
    description: str = Field(..., description="'severe deviation' or 'moderate deviation'")
    severity: Severity
    dominant_feature: Optional[str] = Field(
        None, description="Feature with the largest weighted contribution"
    )
    window_index: Optional[int] = None


# =============================================================================
# API Responses
# =============================================================================

class SessionResponse(BaseModel):
    session_id: str
    user_id: str
    trust_level: int = Field(..., ge=0, le=100)
    state: TrustState


class TrustResponse(BaseModel):
    """Trust query result for one session."""
    session_id: str
    trust_level: int = Field(..., ge=0, le=100)
    state: TrustState
    reauth_pending: bool


class AnomalyLogResponse(BaseModel):
    session_id: str
    entries: List[AnomalyLogEntry] = Field(default_factory=list)


class EnrollmentStatusResponse(BaseModel):
    """Per-modality enrollment flags for one user."""
    user_id: str
    face: bool = False
    fingerprint: bool = False

    @classmethod
    def from_status(cls, user_id: str, status: Dict[str, bool]) -> "EnrollmentStatusResponse":
        return cls(
            user_id=user_id,
            face=status.get("face", False),
            fingerprint=status.get("fingerprint", False),
        )


class VerifyResponse(BaseModel):
    """Outcome of a re-verification attempt."""
    session_id: str
    verified: bool
    trust_level: int = Field(..., ge=0, le=100)
    state: TrustState
    reauth_pending: bool


class CancelReauthResponse(BaseModel):
    """Outcome of dismissing a re-authentication prompt."""
    session_id: str
    policy: str
    session_terminated: bool
    reauth_pending: bool


class AccountResponse(BaseModel):
    """Registered account, without its password hash."""
    id: str
    name: str
    email: str
    role: str
    department: str
