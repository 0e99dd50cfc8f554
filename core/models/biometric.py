"""
Continuum Biometric Enrollment & Verification

Per-user, per-modality state machine: NotEnrolled -> Enrolled.

- Face: a fixed-length descriptor vector; match iff Euclidean distance to
  the enrolled template is below the configured threshold (0.6 default).
- Fingerprint: a platform-bound credential handle; match iff the platform
  authenticator reports a valid assertion for that credential.

Enrollment is all-or-nothing: the template is written to the store only
after capture and validation have fully succeeded. Calls for the same
(user, modality) pair are serialized.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from core.config import BiometricPolicy
from core.schemas.inputs import Modality

if TYPE_CHECKING:
    from persistence.enrollment_store import EnrollmentStore


logger = logging.getLogger(__name__)


# =============================================================================
# Errors
# =============================================================================

class BiometricError(Exception):
    """Base class for surfaced biometric failures."""
    category: str = "biometric"

    @property
    def user_message(self) -> str:
        return str(self)


class CaptureFailed(BiometricError):
    """No usable biometric signal (e.g. no face detected)."""
    category = "signal_absence"


class CaptureTimeout(CaptureFailed):
    """Camera or platform ceremony exceeded its time bound."""
    category = "timeout"


class PlatformUnsupported(BiometricError):
    """Device or modality capability is absent (hardware, permission)."""
    category = "capability"


class NotEnrolled(BiometricError):
    """Verification requested for a (user, modality) with no template."""
    category = "structural"


# =============================================================================
# Enrollment Record
# =============================================================================

Template = Union[List[float], str]


@dataclass
class BiometricEnrollment:
    """Stored template for one (user, modality)."""
    user_id: str
    modality: Modality
    template: Template
    enrolled: bool = True
    enrolled_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["modality"] = self.modality.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> BiometricEnrollment:
        fields = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        fields["modality"] = Modality(fields["modality"])
        return cls(**fields)


# =============================================================================
# Platform Authenticator
# =============================================================================

class PlatformAuthenticator(ABC):
    """Device-side credential ceremony for the fingerprint modality."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether a user-verifying platform authenticator exists."""

    @abstractmethod
    def register(self, user_id: str, display_name: Optional[str] = None) -> Optional[str]:
        """Create a credential; returns its handle or None on failure."""

    @abstractmethod
    def assert_credential(self, user_id: str, credential_id: str) -> bool:
        """Whether the platform produced a valid assertion for credential_id."""


class ReportedPlatformAuthenticator(PlatformAuthenticator):
    """
    Platform result reported by the client after running the ceremony.

    The server never sees the ceremony bytes, only its outcome.
    """

    def __init__(
        self,
        platform_available: bool,
        credential_id: Optional[str] = None,
        assertion_valid: bool = False,
    ) -> None:
        self.platform_available = platform_available
        self.credential_id = credential_id
        self.assertion_valid = assertion_valid

    def is_available(self) -> bool:
        return self.platform_available

    def register(self, user_id: str, display_name: Optional[str] = None) -> Optional[str]:
        return self.credential_id or None

    def assert_credential(self, user_id: str, credential_id: str) -> bool:
        return self.assertion_valid and self.credential_id == credential_id


# =============================================================================
# Biometric Service
# =============================================================================

class BiometricService:
    """
    Enrollment and verification for face and fingerprint factors.

    Owned by the caller and injected where needed; holds no global state.
    """

    def __init__(
        self,
        store: EnrollmentStore,
        policy: Optional[BiometricPolicy] = None,
        platform: Optional[PlatformAuthenticator] = None,
    ) -> None:
        self.store = store
        self.policy = policy or BiometricPolicy()
        self.platform = platform

        # Per-(user, modality) locks serialize enroll/verify calls
        self._locks: Dict[Tuple[str, Modality], threading.Lock] = defaultdict(threading.Lock)
        self._lock_guard = threading.Lock()

    def _lock_for(self, user_id: str, modality: Modality) -> threading.Lock:
        with self._lock_guard:
            return self._locks[(user_id, modality)]

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
        """
        Capture a template and store it, replacing any prior one.

        Args:
            sample: face descriptor for FACE; optional PlatformAuthenticator
                    for FINGERPRINT (defaults to the service's platform)

        Raises:
            CaptureFailed: no usable signal
            PlatformUnsupported: modality capability absent
        """
        modality = Modality(modality)
        with self._lock_for(user_id, modality):
            if modality == Modality.FACE:
                template: Template = self._validate_descriptor(sample).tolist()
            else:
                platform = self._resolve_platform(sample)
                credential_id = platform.register(user_id, display_name)
                if not credential_id:
                    raise CaptureFailed("Failed to create fingerprint credential")
                template = credential_id

            enrollment = BiometricEnrollment(
                user_id=user_id,
                modality=modality,
                template=template,
            )
            self.store.save(enrollment)

        logger.info(f"Enrolled {modality.value} for {user_id}")
        return enrollment

    def unenroll(self, user_id: str, modality: Modality) -> bool:
        """Remove a stored template. Returns False if none was enrolled."""
        modality = Modality(modality)
        with self._lock_for(user_id, modality):
            if self.store.load(user_id, modality) is None:
                return False
            self.store.delete(user_id, modality)

        logger.info(f"Removed {modality.value} enrollment for {user_id}")
        return True

    # -------------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------------

    def verify(self, user_id: str, modality: Modality, sample: Any = None) -> bool:
        """
        Compare a live sample with the enrolled template.

        Returns False for a well-formed non-match.

        Raises:
            NotEnrolled: no template (checked before any capture work)
            CaptureFailed: unusable face sample
            PlatformUnsupported: fingerprint capability absent
        """
        modality = Modality(modality)
        with self._lock_for(user_id, modality):
            enrollment = self.store.load(user_id, modality)
            if enrollment is None or not enrollment.enrolled:
                raise NotEnrolled(f"No {modality.value} enrolled for this account")

            if modality == Modality.FACE:
                live = self._validate_descriptor(sample)
                distance = self.face_distance(live, enrollment.template)
                matched = distance < self.policy.face_match_threshold
                logger.info(
                    f"Face verification for {user_id}: distance={distance:.4f} "
                    f"threshold={self.policy.face_match_threshold} matched={matched}"
                )
                return matched

            platform = self._resolve_platform(sample)
            matched = bool(platform.assert_credential(user_id, str(enrollment.template)))
            logger.info(f"Fingerprint verification for {user_id}: matched={matched}")
            return matched

    def is_enrolled(self, user_id: str, modality: Modality) -> bool:
        enrollment = self.store.load(user_id, Modality(modality))
        return enrollment is not None and enrollment.enrolled

    def get_enrollment(self, user_id: str) -> Dict[str, bool]:
        """Enrollment flags per modality."""
        return {
            modality.value: self.is_enrolled(user_id, modality)
            for modality in Modality
        }

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def face_distance(a: Sequence[float], b: Sequence[float]) -> float:
        """Euclidean distance between two descriptor vectors."""
        va = np.asarray(a, dtype=np.float64)
        vb = np.asarray(b, dtype=np.float64)
        if va.shape != vb.shape:
            raise CaptureFailed(
                f"Descriptor length mismatch: {va.shape[0]} vs {vb.shape[0]}"
            )
        return float(np.linalg.norm(va - vb))

    def _validate_descriptor(self, sample: Any) -> np.ndarray:
        if sample is None:
            raise CaptureFailed("No face detected")

        try:
            vector = np.asarray(sample, dtype=np.float64)
        except (TypeError, ValueError):
            raise CaptureFailed("Face descriptor is not numeric")

        if vector.ndim != 1 or vector.size == 0:
            raise CaptureFailed("No face detected")
        if vector.size != self.policy.face_descriptor_length:
            raise CaptureFailed(
                f"Face descriptor must have {self.policy.face_descriptor_length} "
                f"values, got {vector.size}"
            )
        if not np.all(np.isfinite(vector)):
            raise CaptureFailed("Face descriptor contains invalid values")
        return vector

    def _resolve_platform(self, sample: Any) -> PlatformAuthenticator:
        platform = sample if isinstance(sample, PlatformAuthenticator) else self.platform
        if platform is None or not platform.is_available():
            raise PlatformUnsupported(
                "Fingerprint authentication is not supported on this device"
            )
        return platform
