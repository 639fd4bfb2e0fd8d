#!/usr/bin/env python3
# CUI // SP-CTI
"""Engineering session repository: store access, cache and per-session locks.

The cache only ever holds sessions exactly as they were last persisted.
Callers mutate a private copy returned by load() and hand it to save(),
which writes the row and then replaces the cache entry. Readers therefore
never observe a half-applied mutation. Mutations on one session id must
run inside session_lock(id).
"""

import copy
import json
import logging
import threading
import uuid
from contextlib import contextmanager
from typing import Dict, List, Optional

from patterngate.db.locks import KeyedLocks
from patterngate.engineering.models import AgentDecision, AgentMessage, EngineeringSession

logger = logging.getLogger("patterngate.engineering.repository")


class SessionRepository:

    def __init__(self, store):
        self.store = store
        self._locks = KeyedLocks()
        self._cache: Dict[str, EngineeringSession] = {}
        self._cache_lock = threading.Lock()

    @contextmanager
    def session_lock(self, session_id: str):
        with self._locks.hold(session_id):
            yield

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def load(self, session_id: str) -> Optional[EngineeringSession]:
        """Return a private copy of the session, reloading from the store on a cache miss."""
        with self._cache_lock:
            cached = self._cache.get(session_id)
        if cached is None:
            row = self.store.get("engineering_sessions", id=session_id)
            if row is None:
                return None
            cached = EngineeringSession.from_row(row)
            with self._cache_lock:
                self._cache[session_id] = cached
            logger.debug("Loaded session %s from store", session_id)
        return copy.deepcopy(cached)

    def insert(self, session: EngineeringSession) -> None:
        self.store.insert("engineering_sessions", session.to_row())
        self._sync(session)

    def save(self, session: EngineeringSession) -> None:
        row = session.to_row()
        session_id = row.pop("id")
        changed = self.store.update("engineering_sessions", row, {"id": session_id})
        if not changed:
            row["id"] = session_id
            self.store.insert("engineering_sessions", row)
        self._sync(session)

    def _sync(self, session: EngineeringSession) -> None:
        with self._cache_lock:
            self._cache[session.id] = copy.deepcopy(session)

    def invalidate(self, session_id: Optional[str] = None) -> None:
        with self._cache_lock:
            if session_id is None:
                self._cache.clear()
            else:
                self._cache.pop(session_id, None)

    def list_sessions(self, status=None, phase=None, limit=None, offset=0) -> List[dict]:
        rows = self.store.filter(
            "engineering_sessions", self._where(status, phase),
            order_by="created_at", descending=True, limit=limit, offset=offset,
        )
        return [
            {
                "id": r["id"],
                "project_name": r["project_name"],
                "team_id": r["team_id"],
                "status": r["status"],
                "current_phase": r["current_phase"],
                "current_agent": r["current_agent"],
                "is_running": bool(r["is_running"]),
                "created_at": r["created_at"],
                "updated_at": r["updated_at"],
                "completed_at": r["completed_at"],
            }
            for r in rows
        ]

    def count_sessions(self, status=None, phase=None) -> int:
        return self.store.count("engineering_sessions", self._where(status, phase))

    @staticmethod
    def _where(status, phase) -> dict:
        where = {}
        if status:
            where["status"] = getattr(status, "value", status)
        if phase:
            where["current_phase"] = getattr(phase, "value", phase)
        return where

    # ------------------------------------------------------------------
    # Append-only side records
    # ------------------------------------------------------------------

    def append_message(self, session_id: str, message: AgentMessage) -> None:
        self.store.insert("engineering_messages", {
            "id": message.id,
            "session_id": session_id,
            "from_agent": message.from_agent,
            "to_agent": message.to_agent,
            "message_type": message.message_type,
            "content": message.content,
            "metadata": json.dumps(message.metadata, default=str),
            "created_at": message.timestamp,
        })

    def list_messages(self, session_id: str, limit: Optional[int] = None) -> List[dict]:
        rows = self.store.filter("engineering_messages", {"session_id": session_id},
                                 order_by="created_at", limit=limit)
        for r in rows:
            r["metadata"] = json.loads(r["metadata"] or "{}")
        return rows

    def append_decision(self, session_id: str, decision: AgentDecision) -> None:
        self.store.insert("engineering_decisions", {
            "id": decision.id,
            "session_id": session_id,
            "agent": decision.agent.value,
            "phase": decision.phase.value,
            "decision": decision.decision,
            "reasoning": decision.reasoning,
            "alternatives": json.dumps(decision.alternatives),
            "confidence": decision.confidence,
            "reversible": int(decision.reversible),
            "impact": decision.impact,
            "created_at": decision.timestamp,
        })

    def append_gate_history(self, session_id: str, phase, previous_status, new_status,
                            triggered_by: str, reason: str = "", artifacts=None,
                            timestamp: str = "") -> None:
        self.store.insert("engineering_gate_history", {
            "id": str(uuid.uuid4()),
            "session_id": session_id,
            "phase": getattr(phase, "value", phase),
            "previous_status": getattr(previous_status, "value", previous_status),
            "new_status": getattr(new_status, "value", new_status),
            "triggered_by": triggered_by,
            "reason": reason,
            "artifacts": json.dumps(list(artifacts or [])),
            "created_at": timestamp,
        })

    def list_gate_history(self, session_id: str) -> List[dict]:
        rows = self.store.filter("engineering_gate_history", {"session_id": session_id},
                                 order_by="created_at")
        for r in rows:
            r["artifacts"] = json.loads(r["artifacts"] or "[]")
        return rows
