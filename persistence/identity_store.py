"""
Continuum Identity Store

Account records consumed by the engine: existence checks when a session
starts and password-hash lookup for the re-auth password fallback.

Backends:
    InMemoryIdentityStore   process-local, constructed at startup
    SupabaseIdentityStore   `accounts` table
"""

from __future__ import annotations

import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

import bcrypt
from supabase import Client, create_client


logger = logging.getLogger(__name__)


@dataclass
class Account:
    """Account record owned by the identity collaborator."""
    id: str
    name: str
    email: str
    password_hash: str
    role: str
    department: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Account:
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


class AccountExistsError(Exception):
    """Raised when creating an account whose email is already registered."""
    pass


class IdentityStore(ABC):
    """Interface of the identity collaborator."""

    @abstractmethod
    def find(self, email: str) -> Optional[Account]:
        """Return the account for email, or None."""

    @abstractmethod
    def create(self, account: Account) -> Account:
        """Persist a new account. Raises AccountExistsError on duplicates."""

    def exists(self, email: str) -> bool:
        return self.find(email) is not None


class InMemoryIdentityStore(IdentityStore):
    """Dictionary-backed store keyed by normalized email."""

    def __init__(self) -> None:
        self._accounts: Dict[str, Account] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _normalize(email: str) -> str:
        return email.strip().lower()

    def find(self, email: str) -> Optional[Account]:
        with self._lock:
            return self._accounts.get(self._normalize(email))

    def create(self, account: Account) -> Account:
        key = self._normalize(account.email)
        with self._lock:
            if key in self._accounts:
                raise AccountExistsError(f"User with email {account.email} already exists")
            self._accounts[key] = account
        logger.info(f"Account created: {account.email} ({account.role})")
        return account


class SupabaseIdentityStore(IdentityStore):
    """
    Supabase-backed store using the `accounts` table.

    Schema:
        accounts (
            id TEXT PRIMARY KEY,
            name TEXT,
            email TEXT UNIQUE,
            password_hash TEXT,
            role TEXT,
            department TEXT
        )
    """

    TABLE_NAME = "accounts"

    def __init__(self, client: Optional[Client] = None) -> None:
        if client is None:
            url = os.environ.get("SUPABASE_URL")
            key = os.environ.get("SUPABASE_KEY")
            if not url or not key:
                raise ValueError("SUPABASE_URL and SUPABASE_KEY are required for the supabase identity backend")
            client = create_client(url, key)
        self.client = client
        logger.info("SupabaseIdentityStore initialized")

    def find(self, email: str) -> Optional[Account]:
        response = (
            self.client.table(self.TABLE_NAME)
            .select("*")
            .eq("email", email.strip().lower())
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return Account.from_dict(response.data[0])

    def create(self, account: Account) -> Account:
        if self.exists(account.email):
            raise AccountExistsError(f"User with email {account.email} already exists")

        row = account.to_dict()
        row["email"] = account.email.strip().lower()
        self.client.table(self.TABLE_NAME).insert(row).execute()
        logger.info(f"Account created in Supabase: {row['email']}")
        return account


# =============================================================================
# Password Hashing
# =============================================================================

BCRYPT_ROUNDS = 12


def hash_password(password: str) -> str:
    """Hash a password with bcrypt (cost 12)."""
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS))
    return hashed.decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    """Check a password against a bcrypt hash; malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError as e:
        logger.error(f"Password verification error: {e}")
        return False
