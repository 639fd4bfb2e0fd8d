#!/usr/bin/env python3
# CUI // SP-CTI
"""Durable per-session safety journal.

A safety session is opened by load_context() and collects the decisions,
attempts and scope lock of one unit of agent work. It also records which
optional safety gates the caller went through:

    context_loaded    load_context() was called
    intent_clarified  mark_intent_clarified() was called
    scope_locked      define_scope() was called

Everything is written through the SessionStore, so the journal survives a
process restart. Writes to one session are serialized by a per-session lock.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from patterngate.audit.audit_logger import NullSink
from patterngate.db.locks import KeyedLocks
from patterngate.resilience.errors import CorruptRecordError
from patterngate.safety import attempt_tracker, decision_log, scope_lock
from patterngate.safety.attempt_tracker import Attempt
from patterngate.safety.decision_log import Decision
from patterngate.safety.scope_lock import ScopeLock

logger = logging.getLogger("patterngate.safety")

SAFETY_GATES = ("context_loaded", "intent_clarified", "scope_locked")
BASE_SAFETY_SCORE = 25
POINTS_PER_GATE = 25


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _decode(payload: str, record_id: str) -> dict:
    try:
        data = json.loads(payload)
    except (TypeError, ValueError) as exc:
        raise CorruptRecordError(f"Undecodable payload in record {record_id}", record_id) from exc
    if not isinstance(data, dict):
        raise CorruptRecordError(f"Payload of record {record_id} is not an object", record_id)
    return data


class SafetyJournal:
    """Decisions, attempts and scope locks keyed by safety session id."""

    def __init__(self, store, sink=None, sensitive_files=None, sensitive_patterns=None):
        self.store = store
        self.sink = sink or NullSink()
        self.sensitive_files = tuple(sensitive_files or scope_lock.SENSITIVE_FILES)
        self.sensitive_patterns = tuple(sensitive_patterns or scope_lock.SENSITIVE_PATTERNS)
        self._locks = KeyedLocks()

    # ------------------------------------------------------------------
    # Sessions and gates
    # ------------------------------------------------------------------

    def _ensure_session(self, session_id: str) -> dict:
        row = self.store.get("safety_sessions", id=session_id)
        if row:
            return row
        now = _now()
        row = {
            "id": session_id, "project_hash": None,
            "context_loaded": 0, "intent_clarified": 0, "scope_locked": 0,
            "created_at": now, "updated_at": now,
        }
        self.store.insert("safety_sessions", row)
        return row

    def _set_gate(self, session_id: str, gate: str) -> None:
        self._ensure_session(session_id)
        self.store.update(
            "safety_sessions", {gate: 1, "updated_at": _now()}, {"id": session_id}
        )

    def get_gates(self, session_id: str) -> Optional[dict]:
        row = self.store.get("safety_sessions", id=session_id)
        if not row:
            return None
        return {gate: bool(row[gate]) for gate in SAFETY_GATES}

    def load_context(
        self,
        project_hash: Optional[str] = None,
        decisions: Optional[List[dict]] = None,
        attempts: Optional[List[dict]] = None,
        stack: Optional[dict] = None,
    ) -> dict:
        """Open a safety session seeded with previously exported history."""
        session_id = f"safety_{uuid.uuid4().hex[:8]}"
        with self._locks.hold(session_id):
            now = _now()
            self.store.insert("safety_sessions", {
                "id": session_id, "project_hash": project_hash,
                "context_loaded": 1, "intent_clarified": 0, "scope_locked": 0,
                "created_at": now, "updated_at": now,
            })
            for data in decisions or []:
                self._insert_decision(session_id, Decision.from_dict(data))
            if stack:
                self._insert_decision(session_id, decision_log.tech_stack_decision(stack))
            for data in attempts or []:
                self._insert_attempt(session_id, Attempt.from_dict(data))

        loaded_decisions = self.get_decisions(session_id)
        loaded_attempts = self.get_attempts(session_id)
        self.sink.emit("context_loaded", "agent", f"Opened safety session {session_id}",
                       {"decisions": len(loaded_decisions), "attempts": len(loaded_attempts)},
                       session_id=session_id)
        fresh = not loaded_decisions and not loaded_attempts
        return {
            "success": True,
            "session_id": session_id,
            "context": {
                "decision_count": len(loaded_decisions),
                "attempt_count": len(loaded_attempts),
                "failed_attempt_count": sum(1 for a in loaded_attempts if a.result == "failure"),
            },
            "summary": self.format_context(session_id),
            "message": (
                "No existing context found. This appears to be a fresh session."
                if fresh else "Context loaded. Review the summary before proceeding."
            ),
        }

    def mark_intent_clarified(self, session_id: str) -> dict:
        with self._locks.hold(session_id):
            self._set_gate(session_id, "intent_clarified")
        return {"success": True, "session_id": session_id}

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def _insert_decision(self, session_id: str, decision: Decision) -> None:
        self.store.insert("safety_decisions", {
            "id": f"{session_id}:{decision.id}",
            "session_id": session_id,
            "category": decision.category,
            "impact": decision.impact,
            "payload": json.dumps(decision.to_dict()),
            "created_at": _now(),
        })

    def add_decision(self, session_id: str, decision: Decision) -> None:
        with self._locks.hold(session_id):
            self._ensure_session(session_id)
            self._insert_decision(session_id, decision)
        self.sink.emit("decision_logged", decision.made_by, decision.decision,
                       {"category": decision.category, "impact": decision.impact},
                       session_id=session_id)

    def get_decisions(self, session_id: str) -> List[Decision]:
        rows = self.store.filter("safety_decisions", {"session_id": session_id}, order_by="created_at")
        return [Decision.from_dict(_decode(r["payload"], r["id"])) for r in rows]

    def log_decision(
        self,
        session_id: str,
        decision: str,
        reasoning: str,
        impact: str,
        category: str = "business-logic",
        alternatives=None,
        related_files=None,
        made_by: str = "ai",
    ) -> dict:
        """Record a decision and report any contradiction with earlier ones."""
        existing = self.get_decisions(session_id)
        record = decision_log.create_decision(
            decision=decision, category=category, reasoning=reasoning,
            made_by=made_by, impact=impact, alternatives=alternatives,
            user_approved=made_by == "user", related_files=related_files,
        )
        self.add_decision(session_id, record)
        contradiction = decision_log.check_contradiction(decision, existing)
        if contradiction:
            self.sink.emit("contradiction_detected", made_by, contradiction.explanation,
                           {"rule": contradiction.rule}, session_id=session_id)
        return {
            "success": True,
            "decision_id": record.id,
            "logged": True,
            "contradiction": contradiction.to_dict() if contradiction else None,
        }

    # ------------------------------------------------------------------
    # Attempts
    # ------------------------------------------------------------------

    def _insert_attempt(self, session_id: str, attempt: Attempt) -> None:
        self.store.insert("safety_attempts", {
            "id": f"{session_id}:{attempt.id}",
            "session_id": session_id,
            "issue_hash": attempt.issue_hash,
            "result": attempt.result,
            "payload": json.dumps(attempt.to_dict()),
            "created_at": _now(),
        })

    def add_attempt(self, session_id: str, attempt: Attempt) -> None:
        with self._locks.hold(session_id):
            self._ensure_session(session_id)
            self._insert_attempt(session_id, attempt)
        self.sink.emit("attempt_logged", "agent", attempt.approach,
                       {"result": attempt.result, "issue_hash": attempt.issue_hash},
                       session_id=session_id)

    def get_attempts(self, session_id: str) -> List[Attempt]:
        rows = self.store.filter("safety_attempts", {"session_id": session_id}, order_by="created_at")
        return [Attempt.from_dict(_decode(r["payload"], r["id"])) for r in rows]

    def log_attempt(
        self,
        session_id: str,
        issue: str,
        approach: str,
        result: str,
        code_or_command: str = "",
        error_message: Optional[str] = None,
        lessons_learned: Optional[str] = None,
    ) -> dict:
        previous = self.get_attempts(session_id)
        attempt = attempt_tracker.create_attempt(
            issue, approach, result, code_or_command, error_message, lessons_learned,
        )
        self.add_attempt(session_id, attempt)
        check = attempt_tracker.has_been_tried(issue, approach, previous)
        return {
            "success": True,
            "attempt_id": attempt.id,
            "logged": True,
            "was_already_tried": check.already_tried,
            "recommendation": check.recommendation,
            "message": (
                "Failure logged. This approach will be flagged if attempted again."
                if result == "failure" else "Attempt logged successfully."
            ),
        }

    # ------------------------------------------------------------------
    # Scope locks
    # ------------------------------------------------------------------

    def define_scope(self, session_id: str, request: str, provided: Optional[dict] = None) -> ScopeLock:
        """Create the session's scope lock, deactivating any previous one."""
        lock = scope_lock.create_scope_lock(
            request, provided,
            sensitive_files=self.sensitive_files,
            sensitive_patterns=self.sensitive_patterns,
        )
        with self._locks.hold(session_id):
            self._ensure_session(session_id)
            now = _now()
            self.store.update("scope_locks", {"is_active": 0, "updated_at": now},
                              {"session_id": session_id, "is_active": 1})
            self.store.insert("scope_locks", {
                "id": lock.id, "session_id": session_id, "is_active": 1,
                "payload": json.dumps(lock.to_dict()),
                "created_at": now, "updated_at": now,
            })
            self._set_gate(session_id, "scope_locked")
        self.sink.emit("scope_defined", "agent", request,
                       {"lock_id": lock.id, "allowed_actions": lock.allowed_actions},
                       session_id=session_id)
        return lock

    def get_scope_lock(self, session_id: str) -> Optional[ScopeLock]:
        row = self.store.get("scope_locks", session_id=session_id, is_active=1)
        if not row:
            return None
        return ScopeLock.from_dict(_decode(row["payload"], row["id"]))

    def check_action(
        self,
        session_id: str,
        action_type: str,
        target_file: str,
        issue: Optional[str] = None,
        approach: Optional[str] = None,
    ) -> dict:
        """Scope check, decision contradiction, and (optionally) retry check.

        A blocked action is appended to the lock's violation list.
        """
        with self._locks.hold(session_id):
            lock = self.get_scope_lock(session_id)
            if lock is None:
                result = {
                    "allowed": True,
                    "reason": "No scope lock defined. Action permitted by default.",
                    "warning": "Consider defining a scope to prevent scope creep.",
                    "violation": None,
                }
            else:
                check = scope_lock.check_action(lock, action_type, target_file)
                if check.violation:
                    scope_lock.record_violation(lock, check.violation)
                    self.store.update(
                        "scope_locks",
                        {"payload": json.dumps(lock.to_dict()), "updated_at": _now()},
                        {"id": lock.id},
                    )
                    self.sink.emit("scope_violation", "agent", check.reason,
                                   {"action": action_type, "target": target_file},
                                   session_id=session_id)
                result = check.to_dict()

        contradiction = scope_lock.check_contradiction(
            f"{action_type} on {target_file}", self.get_decisions(session_id)
        )
        result["success"] = True
        result["contradiction"] = contradiction.to_dict() if contradiction else None
        if issue and approach:
            result["previous_attempt"] = attempt_tracker.has_been_tried(
                issue, approach, self.get_attempts(session_id)
            ).to_dict()
        return result

    # ------------------------------------------------------------------
    # Status and export
    # ------------------------------------------------------------------

    def get_status(self, session_id: str) -> dict:
        gates = self.get_gates(session_id)
        if gates is None:
            return {"found": False, "session_id": session_id, "safety_score": 0}
        lock = self.get_scope_lock(session_id)
        followed = [g for g in SAFETY_GATES if gates[g]]
        return {
            "found": True,
            "session_id": session_id,
            "gates": gates,
            "safety_score": BASE_SAFETY_SCORE + POINTS_PER_GATE * len(followed),
            "decision_count": len(self.get_decisions(session_id)),
            "attempt_count": len(self.get_attempts(session_id)),
            "scope_lock": lock.to_dict() if lock else None,
            "violation_count": len(lock.violations) if lock else 0,
        }

    def format_context(self, session_id: str, issue: Optional[str] = None) -> str:
        """Prompt-ready summary of critical decisions and failed approaches."""
        decisions = self.get_decisions(session_id)
        attempts = self.get_attempts(session_id)
        lines = []
        critical = [d for d in decisions if d.impact in ("high", "critical")]
        if critical:
            lines.append("### CRITICAL DECISIONS (Must follow)")
            lines.extend(f"- **{d.decision}**: {d.reasoning}" for d in critical)
            lines.append("")
        failed = [a for a in attempts if a.result == "failure"]
        if issue:
            failed = attempt_tracker.get_failed_attempts(issue, attempts)
        if failed:
            lines.append("### FAILED APPROACHES (Do not retry)")
            lines.extend(f"- {a.approach}: {a.error_message or 'Failed'}" for a in failed[:5])
            lines.append("")
        return "\n".join(lines).strip()

    def export_markdown(self, session_id: str) -> dict:
        lock = self.get_scope_lock(session_id)
        return {
            "decisions": decision_log.generate_decisions_file(self.get_decisions(session_id)),
            "attempts": attempt_tracker.format_attempts_markdown(self.get_attempts(session_id)),
            "scope": scope_lock.format_for_display(lock) if lock else "",
        }
