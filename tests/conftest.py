"""
Continuum Test Suite - Shared Pytest Fixtures

This conftest.py provides fixtures for all test categories including:
- Feature sample and face descriptor factories
- Biometric service with an in-memory enrollment store
- Orchestrator wired with in-memory stores and a recording listener
- Mocked Redis and Supabase clients

Usage:
    pytest tests/ -v -s
"""

from typing import Dict, List
from unittest.mock import MagicMock

import pytest

from core.config import BiometricPolicy, EngineSettings, ScoringPolicy, TrustPolicy
from core.models.biometric import BiometricService
from core.orchestrator import ContinuumOrchestrator
from core.schemas.outputs import FeatureSample
from persistence.enrollment_store import InMemoryEnrollmentStore
from persistence.identity_store import Account, InMemoryIdentityStore
from persistence.session_repository import SessionRepository


DESCRIPTOR_LENGTH = 128


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_sample():
    """
    Factory for FeatureSample objects with "normal" defaults.

    Usage:
        def test_example(make_sample):
            sample = make_sample(window_index=3, pointer_distance=250.0)
    """
    counter = {"next": 0}

    def _make(**overrides) -> FeatureSample:
        values = {
            "window_index": counter["next"],
            "keystroke_count": 5,
            "typing_rate": 5.0,
            "mean_key_interval_ms": 180.0,
            "pointer_distance": 100.0,
            "click_count": 1,
            "idle_ratio": 0.9,
        }
        values.update(overrides)
        counter["next"] = values["window_index"] + 1
        return FeatureSample(**values)

    return _make


@pytest.fixture
def face_descriptor():
    """
    Factory for deterministic face descriptors.

    `offset` is added to every component, so the Euclidean distance between
    descriptors built with offsets a and b is |a - b| * sqrt(128).
    """
    def _make(offset: float = 0.0, length: int = DESCRIPTOR_LENGTH) -> List[float]:
        return [round(0.01 * (i % 17), 4) + offset for i in range(length)]

    return _make


# =============================================================================
# Engine Fixtures
# =============================================================================

@pytest.fixture
def settings() -> EngineSettings:
    """Default engine settings with the background tick disabled."""
    return EngineSettings(
        scoring=ScoringPolicy(),
        trust=TrustPolicy(),
        biometric=BiometricPolicy(),
        auto_tick=False,
    )


@pytest.fixture
def enrollment_store() -> InMemoryEnrollmentStore:
    return InMemoryEnrollmentStore()


@pytest.fixture
def biometric_service(enrollment_store, settings) -> BiometricService:
    return BiometricService(enrollment_store, settings.biometric)


@pytest.fixture
def identity_store() -> InMemoryIdentityStore:
    """Identity store holding one account (alice@example.com, password 'secret')."""
    store = InMemoryIdentityStore()
    store.create(Account(
        id="1",
        name="Alice Doe",
        email="alice@example.com",
        password_hash="hashed:secret",
        role="physician",
        department="Cardiology",
    ))
    return store


@pytest.fixture
def fake_password_verifier():
    """Matches passwords against the 'hashed:<password>' convention above."""
    def _verify(password: str, password_hash: str) -> bool:
        return password_hash == f"hashed:{password}"

    return _verify


@pytest.fixture
def orchestrator(settings, biometric_service, identity_store, fake_password_verifier):
    """Orchestrator with in-memory backends and no audit logging."""
    return ContinuumOrchestrator(
        repo=SessionRepository(),
        biometrics=biometric_service,
        identity_store=identity_store,
        settings=settings,
        password_verifier=fake_password_verifier,
    )


@pytest.fixture
def recorded_events(orchestrator) -> Dict[str, list]:
    """Attach listeners that record tick and reauth_required notifications."""
    events: Dict[str, list] = {"ticks": [], "reauth": []}
    orchestrator.add_tick_listener(
        lambda sid, sample, is_anomaly, severity: events["ticks"].append(
            (sid, sample.window_index, is_anomaly, severity)
        )
    )
    orchestrator.add_reauth_listener(lambda sid: events["reauth"].append(sid))
    return events


# =============================================================================
# Backend Mocks
# =============================================================================

@pytest.fixture
def mock_redis():
    """
    MagicMock standing in for redis.Redis with a dict behind get/set/delete.
    """
    data: Dict[str, str] = {}
    client = MagicMock()
    client.set.side_effect = lambda key, value: data.__setitem__(key, value) or True
    client.get.side_effect = lambda key: data.get(key)
    client.delete.side_effect = lambda key: 1 if data.pop(key, None) is not None else 0
    client.data = data
    return client


@pytest.fixture
def mock_supabase():
    """MagicMock standing in for a supabase Client; table() calls chain."""
    client = MagicMock()
    table = client.table.return_value
    table.select.return_value = table
    table.eq.return_value = table
    table.limit.return_value = table
    table.insert.return_value = table
    table.execute.return_value = MagicMock(data=[])
    return client
