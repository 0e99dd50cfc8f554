"""
Continuum Persistence Layer

Public exports for session state, enrollment templates, identity records
and audit logging.
"""

from .connection import get_redis_client
from .session_repository import SessionExistsError, SessionRepository, SessionState
from .enrollment_store import (
    EnrollmentStore,
    EnrollmentStoreError,
    InMemoryEnrollmentStore,
    RedisEnrollmentStore,
)
from .identity_store import (
    Account,
    AccountExistsError,
    IdentityStore,
    InMemoryIdentityStore,
    SupabaseIdentityStore,
    hash_password,
    verify_password,
)
from .audit_logger import AuditLogger

__all__ = [
    "get_redis_client",
    "SessionExistsError",
    "SessionRepository",
    "SessionState",
    "EnrollmentStore",
    "EnrollmentStoreError",
    "InMemoryEnrollmentStore",
    "RedisEnrollmentStore",
    "Account",
    "AccountExistsError",
    "IdentityStore",
    "InMemoryIdentityStore",
    "SupabaseIdentityStore",
    "hash_password",
    "verify_password",
    "AuditLogger",
]
