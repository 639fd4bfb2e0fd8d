#!/usr/bin/env python3
# CUI // SP-CTI
"""Append-only audit trail for PatternGate.

The core emits events through the AuditSink interface synchronously. The
SQLite adapter is best-effort: a failed write is logged and dropped so that
auditing can never fail a gate decision. No UPDATE or DELETE is ever issued
against audit_trail.
"""

import argparse
import json
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import List, Optional

from patterngate.resilience.errors import PatternGateError

logger = logging.getLogger("patterngate.audit")

VALID_EVENT_TYPES = (
    # Enforcement protocol
    "patterns_discovered", "validation_passed", "validation_failed",
    "session_expired",
    # Engineering pipeline
    "engineering_started", "scoping_completed", "phase_advanced", "gate_passed",
    "gate_failed", "approval_requested", "approval_granted", "approval_denied",
    "session_paused", "session_resumed", "session_cancelled", "session_completed",
    "artifact_stored", "phase_executed",
    # Safety journal
    "context_loaded", "decision_logged", "attempt_logged", "scope_defined",
    "scope_violation", "contradiction_detected",
)


class AuditSink(ABC):
    """Receives audit events from the core."""

    @abstractmethod
    def emit(
        self,
        event_type: str,
        actor: str,
        action: str,
        details: Optional[dict] = None,
        session_id: Optional[str] = None,
    ) -> None:
        """Record one event."""


def _check_event_type(event_type: str) -> None:
    if event_type not in VALID_EVENT_TYPES:
        raise ValueError(f"Invalid event_type '{event_type}'. Valid: {VALID_EVENT_TYPES}")


class NullSink(AuditSink):
    """Discards events (still validates the event type)."""

    def emit(self, event_type, actor, action, details=None, session_id=None):
        _check_event_type(event_type)


class RecordingSink(AuditSink):
    """Keeps events in memory. Used by tests and embedding callers."""

    def __init__(self):
        self.events: List[dict] = []

    def emit(self, event_type, actor, action, details=None, session_id=None):
        _check_event_type(event_type)
        self.events.append({
            "event_type": event_type,
            "actor": actor,
            "action": action,
            "details": details or {},
            "session_id": session_id,
        })

    def of_type(self, event_type: str) -> List[dict]:
        return [e for e in self.events if e["event_type"] == event_type]


class SqliteAuditSink(AuditSink):
    """Writes events to the audit_trail table through a SessionStore."""

    def __init__(self, store):
        self.store = store

    def emit(self, event_type, actor, action, details=None, session_id=None):
        _check_event_type(event_type)
        try:
            log_event(self.store, event_type, actor, action, details, session_id)
        except PatternGateError as exc:
            logger.warning("Audit write dropped (%s): %s", event_type, exc)


def log_event(store, event_type, actor, action, details=None, session_id=None) -> str:
    """Write an immutable audit trail entry. Returns the entry ID."""
    _check_event_type(event_type)
    entry_id = str(uuid.uuid4())
    store.insert("audit_trail", {
        "id": entry_id,
        "event_type": event_type,
        "actor": actor,
        "action": action,
        "session_id": session_id,
        "details": json.dumps(details or {}, default=str),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })
    return entry_id


def main():
    from patterngate.db.session_store import SessionStore

    parser = argparse.ArgumentParser(description="Query the PatternGate audit trail")
    parser.add_argument("--db-path", default=None)
    parser.add_argument("--session-id", default=None)
    parser.add_argument("--event-type", default=None, choices=VALID_EVENT_TYPES)
    parser.add_argument("--limit", type=int, default=50)
    args = parser.parse_args()

    where = {}
    if args.session_id:
        where["session_id"] = args.session_id
    if args.event_type:
        where["event_type"] = args.event_type
    rows = SessionStore(args.db_path).filter(
        "audit_trail", where=where, order_by="timestamp", descending=True, limit=args.limit,
    )
    print(json.dumps(rows, indent=2, default=str))


if __name__ == "__main__":
    main()
