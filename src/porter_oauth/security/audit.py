"""
Audit trail for credential lifecycle events.
Created: 2026-10-18

Grants, issuance, refresh, revocation, rejected client credentials and
replayed codes are each recorded as one JSON line. Without a configured path
the events only reach the ``porter_oauth.audit`` logger.
"""

import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger("porter_oauth.audit")


class AuditSeverity(str, Enum):
    INFO = "info"  # Normal issuance
    WARNING = "warning"  # Bad client credentials
    ALERT = "alert"  # Replayed authorization code


_LOG_LEVELS = {
    AuditSeverity.INFO: logging.INFO,
    AuditSeverity.WARNING: logging.WARNING,
    AuditSeverity.ALERT: logging.ERROR,
}


@dataclass
class AuditEvent:
    """One credential event."""

    action: str  # e.g. "token_issued", "grant_replayed"
    client_id: str
    status: str = "success"  # or "rejected"
    severity: AuditSeverity = AuditSeverity.INFO
    context: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(default_factory=lambda: datetime.now(tz=UTC).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "severity": self.severity.value,
            "action": self.action,
            "client_id": self.client_id,
            "status": self.status,
            "context": dict(self.context),
        }


class AuditLogger:
    """Append-only JSONL audit writer, safe to share between request threads."""

    def __init__(self, log_path: Path | None = None):
        self.log_path = log_path
        self._lock = threading.Lock()

    def log(self, event: AuditEvent) -> None:
        payload = event.to_dict()
        logger.log(
            _LOG_LEVELS[event.severity],
            "%s client=%s status=%s",
            event.action,
            event.client_id,
            event.status,
        )
        if self.log_path is not None:
            self._append(payload)

    def _append(self, payload: dict[str, Any]) -> None:
        line = json.dumps(payload) + "\n"
        with self._lock:
            try:
                self.log_path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.log_path, "a", encoding="utf-8") as f:
                    f.write(line)
            except OSError as e:
                logger.critical("FAILED TO WRITE AUDIT LOG: %s | Event: %s", e, payload)

    def record(
        self,
        action: str,
        client_id: str,
        status: str = "success",
        severity: AuditSeverity = AuditSeverity.INFO,
        **context: Any,
    ) -> str:
        """Log an event built from the arguments and return its id."""
        event = AuditEvent(action, client_id, status, severity, context)
        self.log(event)
        return event.id
