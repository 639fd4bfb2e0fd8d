#!/usr/bin/env python3
# CUI // SP-CTI
"""Two-gate enforcement protocol: discover() before work, validate() after it.

discover() returns the rule documents for a task together with an opaque
session token. validate() takes that token and decides whether the work may
be called complete. Every outcome is returned as a dict; nothing in the
protocol raises. Only store failures propagate, as StoreUnavailableError or
CorruptRecordError.

Session lifecycle:
    active --validate pass--> completed        (terminal, cached pass)
    active --validate fail--> failed           (may be validated again)
    active|failed --now > expires_at--> expired (terminal, never revived)

Concurrent validate() calls on one token are serialized in-process by a
per-token lock and across processes by compare-and-swap on the row's version
column. A caller that loses the swap re-reads the row and evaluates again, so
a session completed by the winner is reported as a cached pass.
"""

import argparse
import json
import logging
import secrets
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from patterngate.audit.audit_logger import NullSink
from patterngate.db.locks import KeyedLocks
from patterngate.enforcement.keyword_rules import (
    CORE_DOCUMENT,
    documents_for_keywords,
    extract_keywords,
    related_suggestions,
    with_core,
)
from patterngate.resilience.errors import PatternGateError, StoreUnavailableError
from patterngate.safety import attempt_tracker, decision_log

logger = logging.getLogger("patterngate.enforcement")

DEFAULT_SESSION_TTL = 7200
MAX_SWAP_ATTEMPTS = 3
START_GATE = "start_gate"
OPTIONAL_GATES = ("context_loaded", "intent_clarified", "scope_locked")
BASE_SAFETY_SCORE = 25
POINTS_PER_GATE = 25

_SKIPPED_GATE_ISSUES = {
    "context_loaded": ("CONTEXT_NOT_LOADED", "Project context was not loaded before starting work."),
    "intent_clarified": ("INTENT_NOT_CLARIFIED", "Intent was not clarified before starting work."),
    "scope_locked": ("SCOPE_NOT_LOCKED", "No scope lock was defined for this task."),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _issue(issue_type: str, severity: str, message: str) -> dict:
    return {"type": issue_type, "severity": severity, "message": message}


def _opt_bool(value) -> Optional[int]:
    return None if value is None else int(bool(value))


class EnforcementGate:
    """discover/validate protocol bound to a store, a catalog and a journal."""

    def __init__(
        self,
        store,
        catalog,
        sink=None,
        journal=None,
        session_ttl: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
        core_document: str = CORE_DOCUMENT,
    ):
        self.store = store
        self.catalog = catalog
        self.sink = sink or NullSink()
        self.journal = journal
        self.session_ttl = int(session_ttl or DEFAULT_SESSION_TTL)
        self.clock = clock or _utcnow
        self.core_document = core_document
        self._locks = KeyedLocks()

    # ------------------------------------------------------------------
    # Gate 1: discover
    # ------------------------------------------------------------------

    def discover(
        self,
        task: str,
        keywords: Optional[List[str]] = None,
        files: Optional[List[str]] = None,
        project_hash: Optional[str] = None,
        project_name: Optional[str] = None,
        session_id: Optional[str] = None,
        context_loaded: Optional[bool] = None,
        scope_confirmed: Optional[bool] = None,
        team_id: Optional[str] = None,
        device_id: Optional[str] = None,
    ) -> dict:
        started = time.monotonic()

        warnings = []
        if session_id and not context_loaded:
            warnings.append("Project context was not loaded. Load context before writing code.")
        if scope_confirmed is False:
            warnings.append("Scope was not confirmed. Confirm what is in and out of scope first.")

        if keywords:
            matched_keywords = [str(k).strip().lower() for k in keywords if str(k).strip()]
            from_fallback = False
        else:
            matched_keywords, from_fallback = extract_keywords(task)
        documents, matched = documents_for_keywords(matched_keywords)
        has_exact_match = matched and not from_fallback

        names = with_core(documents, self.core_document)
        found = self.catalog.get_documents(names)
        missing = [n for n in names if n not in found]
        if missing:
            logger.warning("Catalog has no document for: %s", ", ".join(missing))
        patterns = [
            {
                "name": name,
                "content": found[name],
                "relevance": "high" if name == self.core_document else "medium",
            }
            for name in names if name in found
        ]
        suggestions = [] if has_exact_match else related_suggestions(task)

        now = self.clock()
        expires_at = now + timedelta(seconds=self.session_ttl)
        token = f"ses_{secrets.token_hex(16)}"
        record_id = str(uuid.uuid4())
        self.store.insert("enforcement_sessions", {
            "id": record_id,
            "session_token": token,
            "team_id": team_id,
            "device_id": device_id,
            "project_hash": project_hash,
            "project_name": project_name,
            "task_description": task,
            "planned_files": json.dumps(files or []),
            "keywords": json.dumps(matched_keywords),
            "patterns_returned": json.dumps(names),
            "start_gate_passed": 1,
            "end_gate_passed": 0,
            "status": "active",
            "version": 0,
            "expires_at": expires_at.isoformat(),
            "created_at": now.isoformat(),
        })

        relevant_decisions, failed_approaches, context_summary = [], [], None
        if session_id and self.journal is not None:
            decisions = self.journal.get_decisions(session_id)
            relevant_decisions = decision_log.get_relevant_decisions(decisions, task)
            attempts = self.journal.get_attempts(session_id)
            failed_approaches = [
                a for a in attempts if a.result == "failure" and a.should_not_retry
            ]
            context_summary = self.journal.format_context(session_id) or None

        message = self._discover_message(
            warnings, token, has_exact_match, suggestions, relevant_decisions, failed_approaches
        )

        latency_ms = int((time.monotonic() - started) * 1000)
        self.store.insert("pattern_discoveries", {
            "id": str(uuid.uuid4()),
            "session_id": record_id,
            "task_description": task,
            "keywords": json.dumps(matched_keywords),
            "patterns": json.dumps([p["name"] for p in patterns]),
            "has_exact_match": int(has_exact_match),
            "latency_ms": latency_ms,
            "created_at": now.isoformat(),
        })
        self.sink.emit("patterns_discovered", "agent", task,
                       {"patterns": names, "has_exact_match": has_exact_match},
                       session_id=record_id)
        logger.info("discover: %d document(s), exact=%s, session=%s",
                    len(names), has_exact_match, record_id)

        return {
            "session_token": token,
            "session_id": record_id,
            "expires_at": expires_at.isoformat(),
            "patterns": patterns,
            "core_rules": found.get(self.core_document, ""),
            "documents": names,
            "keywords": matched_keywords,
            "message": message,
            "has_exact_match": has_exact_match,
            "related_suggestions": suggestions,
            "safety_warnings": warnings,
            "context_summary": context_summary,
            "relevant_decisions": [d.to_dict() for d in relevant_decisions],
            "failed_approaches": [a.to_dict() for a in failed_approaches],
        }

    @staticmethod
    def _discover_message(warnings, token, has_exact_match, suggestions, decisions, failed) -> str:
        lines = []
        for warning in warnings:
            lines.append(f"WARNING: {warning}")
        if warnings:
            lines.append("")
        lines.append(
            f'Follow the rules above. When the work is done, call validate with sessionToken "{token}".'
        )
        if not has_exact_match and suggestions:
            lines.extend(["", "No rule matched this task exactly. Related rule sets:"])
            for s in suggestions:
                lines.append(f"- {', '.join(s['documents'])}: {s['reason']}")
        if decisions:
            lines.extend(["", decision_log.format_for_prompt(decisions).rstrip()])
        if failed:
            lines.extend(["", "## FAILED APPROACHES (Do not retry these)"])
            lines.extend(f"- {a.approach}: {a.error_message or 'Failed'}" for a in failed)
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Gate 2: validate
    # ------------------------------------------------------------------

    def validate(
        self,
        session_token: str,
        feature_name: str,
        feature_description: Optional[str] = None,
        files_modified: Optional[List[str]] = None,
        tests_written: Optional[List[str]] = None,
        tests_run: Optional[bool] = None,
        tests_passed: Optional[bool] = None,
        typescript_passed: Optional[bool] = None,
        safety_session_id: Optional[str] = None,
        context_was_loaded: Optional[bool] = None,
        intent_was_clarified: Optional[bool] = None,
        scope_was_locked: Optional[bool] = None,
        approach: Optional[str] = None,
        env_vars_added: Optional[List[str]] = None,
        schema_modified: Optional[bool] = None,
    ) -> dict:
        started = time.monotonic()
        with self._locks.hold(session_token or ""):
            for _ in range(MAX_SWAP_ATTEMPTS):
                row = self.store.get("enforcement_sessions", session_token=session_token) \
                    if session_token else None
                if row is None:
                    return self._not_found(session_token)

                now = self.clock()
                if row["status"] == "expired" or now > datetime.fromisoformat(row["expires_at"]):
                    return self._expire(row)

                if row["status"] == "completed":
                    return self._cached_pass(row)

                issues = []
                if not row["start_gate_passed"]:
                    issues.append(_issue(
                        "START_GATE_NOT_PASSED", "error",
                        "Rules were never discovered for this session. Call discover first.",
                    ))

                gates = self._evaluate_safety_gates(
                    row, safety_session_id,
                    {"context_loaded": context_was_loaded,
                     "intent_clarified": intent_was_clarified,
                     "scope_locked": scope_was_locked},
                )
                issues.extend(self._check_work(
                    tests_written, tests_run, tests_passed, typescript_passed,
                    env_vars_added, schema_modified,
                ))
                issues.extend(gates["issues"])

                passed = not any(i["severity"] == "error" for i in issues)
                changed = self.store.update(
                    "enforcement_sessions",
                    {
                        "status": "completed" if passed else "failed",
                        "end_gate_passed": int(passed and bool(row["start_gate_passed"])),
                        "tests_run": _opt_bool(tests_run),
                        "tests_passed": _opt_bool(tests_passed),
                        "typecheck_passed": _opt_bool(typescript_passed),
                        "feature_name": feature_name,
                        "completed_at": now.isoformat() if passed else None,
                        "version": row["version"] + 1,
                    },
                    {"id": row["id"], "version": row["version"]},
                )
                if changed:
                    break
                logger.info("validate: lost version race on %s, re-reading", row["id"])
            else:
                raise StoreUnavailableError(
                    f"Session {session_token} kept changing under validate()"
                )

        latency_ms = int((time.monotonic() - started) * 1000)
        self.store.insert("pattern_validations", {
            "id": str(uuid.uuid4()),
            "session_id": row["id"],
            "feature_name": feature_name,
            "feature_description": feature_description,
            "files_modified": json.dumps(files_modified or []),
            "passed": int(passed),
            "issues": json.dumps(issues),
            "safety_score": gates["score"],
            "latency_ms": latency_ms,
            "created_at": now.isoformat(),
        })
        self.sink.emit(
            "validation_passed" if passed else "validation_failed", "agent", feature_name,
            {"issues": [i["type"] for i in issues], "safety_score": gates["score"]},
            session_id=row["id"],
        )

        attempt_logged = decision_logged = False
        if safety_session_id and self.journal is not None:
            attempt_logged, decision_logged = self._record_safety_outcome(
                safety_session_id, feature_name, feature_description, approach,
                files_modified, passed, issues,
            )

        return {
            "passed": passed,
            "issues": issues,
            "session_completed": passed,
            "message": self._validate_message(feature_name, passed, issues, gates),
            "safety_score": gates["score"],
            "safety_gates_followed": gates["followed"],
            "safety_gates_skipped": gates["skipped"],
            "attempt_logged": attempt_logged,
            "decision_logged": decision_logged,
        }

    def _evaluate_safety_gates(self, row, safety_session_id, flags) -> dict:
        mandatory = bool(row["start_gate_passed"])
        followed = [START_GATE] if mandatory else []
        skipped = [] if mandatory else [START_GATE]
        if not safety_session_id:
            return {"score": 100 if mandatory else 0, "followed": followed,
                    "skipped": skipped, "issues": []}

        journal_gates = {}
        if self.journal is not None:
            journal_gates = self.journal.get_gates(safety_session_id) or {}

        issues = []
        for gate in OPTIONAL_GATES:
            value = flags.get(gate)
            if value is None:
                value = journal_gates.get(gate, False)
            if value:
                followed.append(gate)
            else:
                skipped.append(gate)
                issue_type, text = _SKIPPED_GATE_ISSUES[gate]
                issues.append(_issue(issue_type, "warning", text))
        optional_followed = len([g for g in followed if g != START_GATE])
        score = (BASE_SAFETY_SCORE if mandatory else 0) + POINTS_PER_GATE * optional_followed
        return {"score": score, "followed": followed, "skipped": skipped, "issues": issues}

    @staticmethod
    def _check_work(tests_written, tests_run, tests_passed, typescript_passed,
                    env_vars_added, schema_modified) -> List[dict]:
        if isinstance(env_vars_added, str):
            env_vars_added = [env_vars_added]
        issues = []
        if not tests_run:
            issues.append(_issue("TESTS_NOT_RUN", "error",
                                 "Tests were not run. Run the test suite before completing."))
        elif not tests_passed:
            issues.append(_issue("TESTS_FAILED", "error",
                                 "Tests are failing. Fix them before completing."))
        if typescript_passed is False:
            issues.append(_issue("TYPECHECK_FAILED", "error",
                                 "Type check failed. Fix type errors before completing."))
        if not tests_written:
            issues.append(_issue("NO_TESTS_WRITTEN", "warning",
                                 "No tests were written for this feature."))
        if env_vars_added:
            issues.append(_issue(
                "ENV_VARS_ADDED", "warning",
                f"New environment variables ({', '.join(env_vars_added)}): "
                "document them in .env.example.",
            ))
        if schema_modified:
            issues.append(_issue("SCHEMA_MODIFIED", "warning",
                                 "Database schema changed: generate and run a migration."))
        return issues

    def _record_safety_outcome(self, safety_session_id, feature_name, description,
                               approach, files_modified, passed, issues):
        errors = [i for i in issues if i["severity"] == "error"]
        try:
            attempt = attempt_tracker.create_attempt(
                issue=feature_name,
                approach=approach or description or feature_name,
                result="success" if passed else "failure",
                error_message="; ".join(i["message"] for i in errors) or None,
                lessons_learned=None if passed else
                "Validation failed on: " + ", ".join(i["type"] for i in errors),
            )
            self.journal.add_attempt(safety_session_id, attempt)
            decision_logged = False
            if passed:
                self.journal.add_decision(safety_session_id, decision_log.create_decision(
                    decision=f"Implemented {feature_name}",
                    category="business-logic",
                    reasoning=approach or description or "Passed validation",
                    made_by="ai",
                    impact="low",
                    related_files=files_modified,
                ))
                decision_logged = True
            return True, decision_logged
        except PatternGateError as exc:
            logger.warning("Safety journal write failed for %s: %s", safety_session_id, exc)
            return False, False

    def _not_found(self, token) -> dict:
        issue = _issue("SESSION_NOT_FOUND", "error",
                       "Session not found. Call discover before validate.")
        return {
            "passed": False,
            "issues": [issue],
            "session_completed": False,
            "message": f"VALIDATION FAILED: {issue['message']}",
            "safety_score": 0,
            "safety_gates_followed": [],
            "safety_gates_skipped": [START_GATE] + list(OPTIONAL_GATES),
            "attempt_logged": False,
            "decision_logged": False,
        }

    def _expire(self, row) -> dict:
        if row["status"] in ("active", "failed"):
            self.store.update(
                "enforcement_sessions",
                {"status": "expired", "version": row["version"] + 1},
                {"id": row["id"], "version": row["version"]},
            )
            self.sink.emit("session_expired", "system", "Session expired before validation",
                           session_id=row["id"])
        issue = _issue("SESSION_EXPIRED", "error",
                       "Session expired. Call discover again to start a new session.")
        return {
            "passed": False,
            "issues": [issue],
            "session_completed": False,
            "message": f"VALIDATION FAILED: {issue['message']}",
            "safety_score": 0,
            "safety_gates_followed": [],
            "safety_gates_skipped": [],
            "attempt_logged": False,
            "decision_logged": False,
        }

    @staticmethod
    def _cached_pass(row) -> dict:
        return {
            "passed": True,
            "issues": [],
            "session_completed": True,
            "message": f'VALIDATION PASSED: Feature "{row["feature_name"]}" was already validated.',
            "safety_score": 100,
            "safety_gates_followed": [START_GATE],
            "safety_gates_skipped": [],
            "attempt_logged": False,
            "decision_logged": False,
        }

    @staticmethod
    def _validate_message(feature_name, passed, issues, gates) -> str:
        if passed:
            lines = [f'VALIDATION PASSED: Feature "{feature_name}" is complete.']
        else:
            lines = ["VALIDATION FAILED: Fix the following issues:"]
        for i in issues:
            lines.append(f"- [{i['severity'].upper()}] {i['message']}")
        lines.append(f"Safety score: {gates['score']}/100")
        if gates["skipped"]:
            lines.append(f"Skipped safety gates: {', '.join(gates['skipped'])}")
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_patterns(self, names: List[str]) -> dict:
        found = self.catalog.get_documents(names)
        return {
            "patterns": [{"name": n, "content": found[n]} for n in names if n in found],
            "missing": [n for n in names if n not in found],
        }

    def get_session(self, session_token: str) -> Optional[dict]:
        row = self.store.get("enforcement_sessions", session_token=session_token)
        if row is None:
            return None
        for key in ("planned_files", "keywords", "patterns_returned"):
            row[key] = json.loads(row[key] or "[]")
        return row

    def get_active_session(self, team_id: str, device_id: Optional[str] = None) -> Optional[dict]:
        """Newest unexpired active session for a team (and device, if given)."""
        where = {"team_id": team_id, "status": "active"}
        if device_id:
            where["device_id"] = device_id
        now = self.clock()
        for row in self.store.filter("enforcement_sessions", where,
                                     order_by="created_at", descending=True):
            if datetime.fromisoformat(row["expires_at"]) >= now:
                return self.get_session(row["session_token"])
        return None

    def get_stats(self) -> dict:
        return {
            "sessions_by_status": self.store.group_count("enforcement_sessions", "status"),
            "discoveries": self.store.count("pattern_discoveries"),
            "validations_passed": self.store.count("pattern_validations", {"passed": 1}),
            "validations_failed": self.store.count("pattern_validations", {"passed": 0}),
        }


def main():
    from patterngate.runtime import build_services

    parser = argparse.ArgumentParser(description="PatternGate enforcement protocol")
    parser.add_argument("--db-path", default=None)
    sub = parser.add_subparsers(dest="command", required=True)

    p_discover = sub.add_parser("discover", help="Fetch rules for a task")
    p_discover.add_argument("--task", required=True)
    p_discover.add_argument("--keywords", nargs="*")

    p_validate = sub.add_parser("validate", help="Validate completed work")
    p_validate.add_argument("--token", required=True)
    p_validate.add_argument("--feature", required=True)
    p_validate.add_argument("--tests-run", action="store_true")
    p_validate.add_argument("--tests-passed", action="store_true")
    p_validate.add_argument("--tests-written", nargs="*")

    sub.add_parser("stats", help="Session and validation counts")

    args = parser.parse_args()
    gate = build_services(db_path=args.db_path).gate
    if args.command == "discover":
        result = gate.discover(args.task, keywords=args.keywords)
    elif args.command == "validate":
        result = gate.validate(
            args.token, args.feature,
            tests_run=args.tests_run, tests_passed=args.tests_passed,
            tests_written=args.tests_written,
        )
    else:
        result = gate.get_stats()
    print(json.dumps(result, indent=2, default=str))


if __name__ == "__main__":
    main()
