"""
Continuum Engine Configuration

Policy knobs for scoring, trust and biometric matching.
Values are read from environment variables (prefix CONTINUUM_) so that
deployments can tune thresholds without code changes.

Usage:
    settings = EngineSettings.from_env()
    scorer = AnomalyScorer(settings.scoring)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Optional


logger = logging.getLogger(__name__)


# =============================================================================
# Defaults
# =============================================================================

DEFAULT_WEIGHTS: Dict[str, float] = {
    "typing_rate": 0.35,
    "pointer_distance": 0.35,
    "click_count": 0.15,
    "idle_ratio": 0.15,
}

# Added to the baseline mean before dividing (idle_ratio uses a fixed scale)
DEFAULT_SMOOTHING: Dict[str, float] = {
    "typing_rate": 1.0,
    "pointer_distance": 50.0,
    "click_count": 1.0,
}

CANCEL_POLICIES = ("terminate", "keep_pending")


# =============================================================================
# Policies
# =============================================================================

@dataclass(frozen=True)
class ScoringPolicy:
    """Anomaly scorer weights, smoothing and severity bands."""
    weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    smoothing: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_SMOOTHING))
    idle_scale: float = 0.5
    max_normalized: float = 10.0
    severe_threshold: float = 3.5
    moderate_threshold: float = 2.2
    baseline_size: int = 10
    history_capacity: int = 60

    def __post_init__(self) -> None:
        missing = set(DEFAULT_WEIGHTS) - set(self.weights)
        if missing:
            raise ValueError(f"Missing scoring weights: {sorted(missing)}")
        if any(w < 0 for w in self.weights.values()):
            raise ValueError("Scoring weights must be non-negative")
        if self.idle_scale <= 0:
            raise ValueError("idle_scale must be positive")
        if not 0 <= self.moderate_threshold <= self.severe_threshold:
            raise ValueError(
                f"Expected 0 <= moderate ({self.moderate_threshold}) "
                f"<= severe ({self.severe_threshold})"
            )
        if self.baseline_size < 1 or self.history_capacity < self.baseline_size:
            raise ValueError("history_capacity must be >= baseline_size >= 1")


@dataclass(frozen=True)
class TrustPolicy:
    """Trust display mapping and re-auth cancellation behaviour."""
    score_multiplier: float = 12.0
    max_penalty: float = 60.0
    cancel_policy: str = "terminate"
    allow_password_fallback: bool = True

    def __post_init__(self) -> None:
        if self.cancel_policy not in CANCEL_POLICIES:
            raise ValueError(
                f"cancel_policy must be one of {CANCEL_POLICIES}, got {self.cancel_policy!r}"
            )
        if not 0 <= self.max_penalty <= 100:
            raise ValueError("max_penalty must be within [0, 100]")


@dataclass(frozen=True)
class BiometricPolicy:
    """Face matching threshold, capture time bounds and detector poll interval (seconds)."""
    face_match_threshold: float = 0.6
    face_descriptor_length: int = 128
    camera_timeout: float = 10.0
    ceremony_timeout: float = 60.0
    detection_interval: float = 0.1


@dataclass(frozen=True)
class EngineSettings:
    """Top-level settings assembled at process start."""
    scoring: ScoringPolicy = field(default_factory=ScoringPolicy)
    trust: TrustPolicy = field(default_factory=TrustPolicy)
    biometric: BiometricPolicy = field(default_factory=BiometricPolicy)
    window_seconds: float = 1.0
    auto_tick: bool = True
    enrollment_backend: str = "memory"
    identity_backend: str = "memory"
    environment: str = "development"

    @classmethod
    def from_env(cls) -> EngineSettings:
        """Build settings from CONTINUUM_* environment variables."""
        scoring = ScoringPolicy(
            weights=_parse_weights(os.getenv("CONTINUUM_SCORE_WEIGHTS")),
            severe_threshold=_float_env("CONTINUUM_SEVERE_THRESHOLD", 3.5),
            moderate_threshold=_float_env("CONTINUUM_MODERATE_THRESHOLD", 2.2),
        )
        trust = TrustPolicy(
            cancel_policy=os.getenv("CONTINUUM_REAUTH_CANCEL_POLICY", "terminate"),
            allow_password_fallback=_bool_env("CONTINUUM_PASSWORD_FALLBACK", True),
        )
        biometric = BiometricPolicy(
            face_match_threshold=_float_env("CONTINUUM_FACE_MATCH_THRESHOLD", 0.6),
            face_descriptor_length=int(os.getenv("CONTINUUM_FACE_DESCRIPTOR_LENGTH", 128)),
            camera_timeout=_float_env("CONTINUUM_CAMERA_TIMEOUT", 10.0),
            ceremony_timeout=_float_env("CONTINUUM_CEREMONY_TIMEOUT", 60.0),
            detection_interval=_float_env("CONTINUUM_DETECTION_INTERVAL", 0.1),
        )
        settings = cls(
            scoring=scoring,
            trust=trust,
            biometric=biometric,
            window_seconds=_float_env("CONTINUUM_WINDOW_SECONDS", 1.0),
            auto_tick=_bool_env("CONTINUUM_AUTO_TICK", True),
            enrollment_backend=os.getenv("CONTINUUM_ENROLLMENT_BACKEND", "memory"),
            identity_backend=os.getenv("CONTINUUM_IDENTITY_BACKEND", "memory"),
            environment=os.getenv("CONTINUUM_ENV", "development"),
        )
        logger.info(
            f"Settings loaded: env={settings.environment}, "
            f"enrollment={settings.enrollment_backend}, identity={settings.identity_backend}"
        )
        return settings


# =============================================================================
# Env Helpers
# =============================================================================

def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _parse_weights(raw: Optional[str]) -> Dict[str, float]:
    """
    Parse "typing_rate=0.35,pointer_distance=0.35,..." into a weight dict.

    Features not mentioned keep their default weight.
    """
    weights = dict(DEFAULT_WEIGHTS)
    if not raw:
        return weights

    for part in raw.split(","):
        if not part.strip():
            continue
        name, sep, value = part.partition("=")
        name = name.strip()
        if not sep or name not in DEFAULT_WEIGHTS:
            raise ValueError(f"Invalid weight entry {part!r} in CONTINUUM_SCORE_WEIGHTS")
        weights[name] = float(value)
    return weights
