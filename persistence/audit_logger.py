"""
Continuum Audit Logger

Fire-and-forget audit writer that inserts structured entries into the
Supabase `audit_logs` table for anomalies and re-authentication outcomes.

Schema:
    audit_logs (
        event_id TEXT PRIMARY KEY,
        payload  JSONB,
        created_at TIMESTAMPTZ DEFAULT now()
    )
"""

from __future__ import annotations

import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from supabase import Client, create_client

from core.schemas.outputs import AnomalyLogEntry


logger = logging.getLogger(__name__)


class AuditLogger:
    """
    Builds and inserts audit payloads into Supabase.

    All writes are best-effort: errors are logged and never raised, so the
    scoring pipeline is not disturbed by audit outages.
    """

    ENGINE_VERSION = "v1.0.0"
    TABLE_NAME = "audit_logs"

    def __init__(self, client: Optional[Client] = None) -> None:
        if client is not None:
            self._client: Optional[Client] = client
            return

        url = os.getenv("SUPABASE_URL")
        key = os.getenv("SUPABASE_KEY")
        if not url or not key:
            logger.warning("Supabase credentials missing, audit logging disabled")
            self._client = None
            return
        self._client = create_client(url, key)

    @property
    def enabled(self) -> bool:
        return self._client is not None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def log_anomaly(self, session_id: str, user_id: str, entry: AnomalyLogEntry) -> None:
        """Record one anomaly log entry."""
        self._insert(self._build_entry(
            event_type="anomaly",
            session_id=session_id,
            user_id=user_id,
            details={
                "score": entry.score,
                "severity": entry.severity.value,
                "description": entry.description,
                "dominant_feature": entry.dominant_feature,
                "window_index": entry.window_index,
                "observed_at": entry.timestamp.isoformat(),
            },
        ))

    def log_reauth(
        self,
        session_id: str,
        user_id: str,
        outcome: str,
        modality: Optional[str] = None,
    ) -> None:
        """Record a re-authentication outcome (verified, failed, cancelled, terminated)."""
        self._insert(self._build_entry(
            event_type="reauth",
            session_id=session_id,
            user_id=user_id,
            details={"outcome": outcome, "modality": modality},
        ))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _insert(self, entry: Dict[str, Any]) -> None:
        if self._client is None:
            return

        try:
            self._client.table(self.TABLE_NAME).insert({
                "event_id": entry["event_id"],
                "payload": entry,
            }).execute()
            logger.debug(f"Audit log inserted: {entry['event_id']}")
        except Exception as e:
            logger.error(f"Audit log insertion failed: {e}")

    def _build_entry(
        self,
        event_type: str,
        session_id: str,
        user_id: str,
        details: Dict[str, Any],
    ) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        return {
            "event_id": f"evt_{uuid.uuid4()}",
            "event_type": event_type,
            "timestamp": now.isoformat(),
            "environment": os.getenv("CONTINUUM_ENV", "development"),
            "engine_version": self.ENGINE_VERSION,
            "actor": {
                "user_id": user_id,
                "session_id": session_id,
            },
            "details": details,
        }
