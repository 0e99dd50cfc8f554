"""
Continuum Enrollment Store

Template storage for biometric enrollments, keyed by (user, modality).

Key Schema (Redis backend):
    BIOMETRIC:{user_id}:{modality}  → BiometricEnrollment JSON

Every save is a single write of the complete record, so an enrollment is
never partially persisted.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

from redis.exceptions import RedisError

from core.models.biometric import BiometricEnrollment
from core.schemas.inputs import Modality


logger = logging.getLogger(__name__)


class EnrollmentStoreError(Exception):
    """Raised when the backing store cannot be read or written."""
    pass


class EnrollmentStore(ABC):
    """Interface for enrollment template persistence."""

    @abstractmethod
    def save(self, enrollment: BiometricEnrollment) -> None:
        """Store the record, replacing any prior one for the same pair."""

    @abstractmethod
    def load(self, user_id: str, modality: Modality) -> Optional[BiometricEnrollment]:
        """Return the record for the pair, or None."""

    @abstractmethod
    def delete(self, user_id: str, modality: Modality) -> None:
        """Remove the record for the pair if present."""


class InMemoryEnrollmentStore(EnrollmentStore):
    """Process-local store; constructed explicitly and injected."""

    def __init__(self) -> None:
        self._records: Dict[Tuple[str, Modality], BiometricEnrollment] = {}
        self._lock = threading.Lock()

    def save(self, enrollment: BiometricEnrollment) -> None:
        with self._lock:
            self._records[(enrollment.user_id, enrollment.modality)] = enrollment

    def load(self, user_id: str, modality: Modality) -> Optional[BiometricEnrollment]:
        with self._lock:
            return self._records.get((user_id, Modality(modality)))

    def delete(self, user_id: str, modality: Modality) -> None:
        with self._lock:
            self._records.pop((user_id, Modality(modality)), None)

    def __len__(self) -> int:
        return len(self._records)


class RedisEnrollmentStore(EnrollmentStore):
    """
    Redis-backed store.

    Read failures are reported as EnrollmentStoreError rather than "not
    enrolled" so that an outage never looks like a missing template.
    """

    def __init__(self, client=None) -> None:
        if client is None:
            from persistence.connection import get_redis_client
            client = get_redis_client()
        self.client = client

    def _key(self, user_id: str, modality: Modality) -> str:
        return f"BIOMETRIC:{user_id}:{Modality(modality).value}"

    def save(self, enrollment: BiometricEnrollment) -> None:
        key = self._key(enrollment.user_id, enrollment.modality)
        try:
            self.client.set(key, json.dumps(enrollment.to_dict()))
        except RedisError as e:
            logger.error(f"Redis write failed for {key}: {e}")
            raise EnrollmentStoreError(f"Could not store enrollment: {e}") from e

    def load(self, user_id: str, modality: Modality) -> Optional[BiometricEnrollment]:
        key = self._key(user_id, modality)
        try:
            raw = self.client.get(key)
        except RedisError as e:
            logger.error(f"Redis read failed for {key}: {e}")
            raise EnrollmentStoreError(f"Could not read enrollment: {e}") from e

        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return BiometricEnrollment.from_dict(json.loads(raw))

    def delete(self, user_id: str, modality: Modality) -> None:
        key = self._key(user_id, modality)
        try:
            self.client.delete(key)
        except RedisError as e:
            logger.error(f"Redis delete failed for {key}: {e}")
            raise EnrollmentStoreError(f"Could not delete enrollment: {e}") from e
