#!/usr/bin/env python3
# CUI // SP-CTI
"""Tests for patterngate.safety.safety_journal: durable decisions, attempts and scope."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
from patterngate.resilience.errors import CorruptRecordError
from patterngate.safety.decision_log import create_decision
from patterngate.safety.safety_journal import SafetyJournal

STACK = {"framework": "nextjs", "database": "supabase", "orm": "drizzle",
         "auth": "supabase", "ui": "shadcn"}


class TestLoadContext:
    """Opening a safety session."""

    def test_fresh_session(self, journal, sink):
        result = journal.load_context(project_hash="abc")
        assert result["success"] is True
        assert result["session_id"].startswith("safety_")
        assert result["context"] == {"decision_count": 0, "attempt_count": 0, "failed_attempt_count": 0}
        assert "fresh session" in result["message"]
        assert journal.get_gates(result["session_id"]) == {
            "context_loaded": True, "intent_clarified": False, "scope_locked": False,
        }
        assert sink.of_type("context_loaded")

    def test_seeded_history(self, journal):
        decision = create_decision("Use Zod", "patterns", "Schemas").to_dict()
        result = journal.load_context(
            decisions=[decision],
            attempts=[{
                "id": "a1", "timestamp": "2026-01-01T00:00:00+00:00", "issue": "build",
                "issue_hash": "deadbeef", "approach": "npm ci", "result": "failure",
                "should_not_retry": True,
            }],
            stack=STACK,
        )
        assert result["context"] == {"decision_count": 2, "attempt_count": 1, "failed_attempt_count": 1}
        assert "Context loaded" in result["message"]
        assert "Tech stack: nextjs" in result["summary"]
        assert "npm ci" in result["summary"]

    def test_sessions_are_isolated(self, journal):
        a = journal.load_context(decisions=[create_decision("A", "patterns", "x").to_dict()])
        b = journal.load_context()
        assert journal.get_decisions(b["session_id"]) == []
        assert len(journal.get_decisions(a["session_id"])) == 1


class TestGates:

    def test_unknown_session(self, journal):
        assert journal.get_gates("safety_missing") is None

    def test_mark_intent_creates_session(self, journal):
        journal.mark_intent_clarified("safety_new")
        assert journal.get_gates("safety_new") == {
            "context_loaded": False, "intent_clarified": True, "scope_locked": False,
        }

    def test_status_score(self, journal):
        sid = journal.load_context()["session_id"]
        assert journal.get_status(sid)["safety_score"] == 50
        journal.mark_intent_clarified(sid)
        journal.define_scope(sid, "add a component")
        status = journal.get_status(sid)
        assert status["found"] is True
        assert status["safety_score"] == 100
        assert status["scope_lock"]["request"] == "add a component"

    def test_status_not_found(self, journal):
        assert journal.get_status("safety_missing") == {
            "found": False, "session_id": "safety_missing", "safety_score": 0,
        }


class TestDecisions:

    def test_log_decision_without_contradiction(self, journal, sink):
        sid = journal.load_context()["session_id"]
        result = journal.log_decision(sid, "Use Zod for bodies", "One schema per body", "low",
                                      category="patterns")
        assert result["logged"] is True
        assert result["contradiction"] is None
        assert journal.get_decisions(sid)[0].id == result["decision_id"]
        assert sink.of_type("decision_logged")
        assert not sink.of_type("contradiction_detected")

    def test_log_decision_reports_contradiction(self, journal, sink):
        sid = journal.load_context(stack=STACK)["session_id"]
        result = journal.log_decision(sid, "Move the database to mongodb", "Flexible documents", "high",
                                      category="tech-stack")
        assert result["logged"] is True
        assert result["contradiction"]["rule"] == "tech-stack"
        assert len(journal.get_decisions(sid)) == 2
        assert sink.of_type("contradiction_detected")

    def test_user_decisions_are_approved(self, journal):
        sid = journal.load_context()["session_id"]
        journal.log_decision(sid, "Blue buttons", "Brand", "low", category="ui-design", made_by="user")
        assert journal.get_decisions(sid)[0].user_approved is True

    def test_invalid_category_raises(self, journal):
        sid = journal.load_context()["session_id"]
        with pytest.raises(ValueError):
            journal.log_decision(sid, "x", "y", "low", category="vibes")

    def test_survives_new_instance(self, journal, store):
        sid = journal.load_context()["session_id"]
        journal.log_decision(sid, "Use Zod", "Schemas", "low", category="patterns")
        assert [d.decision for d in SafetyJournal(store).get_decisions(sid)] == ["Use Zod"]

    def test_corrupt_payload(self, journal, store):
        sid = journal.load_context()["session_id"]
        journal.log_decision(sid, "Use Zod", "Schemas", "low", category="patterns")
        store.update("safety_decisions", {"payload": "{not json"}, {"session_id": sid})
        with pytest.raises(CorruptRecordError):
            journal.get_decisions(sid)


class TestAttempts:

    def test_log_and_detect_retry(self, journal):
        sid = journal.load_context()["session_id"]
        first = journal.log_attempt(sid, "build fails", "delete the lockfile", "failure",
                                    error_message="same error")
        assert first["was_already_tried"] is False
        assert "Failure logged" in first["message"]
        second = journal.log_attempt(sid, "build fails", "delete the lockfile", "failure")
        assert second["was_already_tried"] is True
        assert "tried and failed" in second["recommendation"]

    def test_success_message(self, journal):
        sid = journal.load_context()["session_id"]
        assert journal.log_attempt(sid, "x", "y", "success")["message"] == "Attempt logged successfully."

    def test_format_context_for_issue(self, journal):
        sid = journal.load_context()["session_id"]
        journal.log_attempt(sid, "build fails", "delete the lockfile", "failure")
        journal.log_attempt(sid, "tests hang", "raise the timeout", "failure")
        text = journal.format_context(sid, issue="build fails")
        assert "delete the lockfile" in text
        assert "raise the timeout" not in text


class TestScope:

    def test_define_scope_replaces_previous(self, journal, store):
        sid = journal.load_context()["session_id"]
        first = journal.define_scope(sid, "add a component")
        second = journal.define_scope(sid, "write tests")
        assert journal.get_scope_lock(sid).id == second.id
        assert store.get("scope_locks", id=first.id)["is_active"] == 0
        assert journal.get_gates(sid)["scope_locked"] is True

    def test_define_scope_uses_configured_sensitive_sets(self, store):
        journal = SafetyJournal(store, sensitive_files=["vault.json"], sensitive_patterns=["secrets/"])
        lock = journal.define_scope("safety_cfg", "add a component")
        assert lock.forbidden_files == ["vault.json"]
        assert lock.forbidden_patterns == ["secrets/"]

    def test_check_action_without_lock(self, journal):
        sid = journal.load_context()["session_id"]
        result = journal.check_action(sid, "delete-file", "anything.ts")
        assert result["allowed"] is True
        assert "warning" in result
        assert result["contradiction"] is None

    def test_check_action_allows_in_scope(self, journal):
        sid = journal.load_context()["session_id"]
        journal.define_scope(sid, "add a button component")
        result = journal.check_action(sid, "create-file", "src/components/Button.tsx")
        assert result["allowed"] is True
        assert result["violation"] is None

    def test_violation_persisted(self, journal, sink):
        sid = journal.load_context()["session_id"]
        journal.define_scope(sid, "add a button component")
        result = journal.check_action(sid, "modify-file", ".env")
        assert result["allowed"] is False
        assert result["violation"]["blocked"] is True
        assert journal.get_status(sid)["violation_count"] == 1
        assert len(journal.get_scope_lock(sid).violations) == 1
        assert sink.of_type("scope_violation")

    def test_check_action_reports_contradiction_and_retry(self, journal):
        sid = journal.load_context()["session_id"]
        journal.log_decision(sid, "Keep sessions server-side", "Cookies only", "high", category="security")
        journal.log_attempt(sid, "session bug", "cache sessions in local storage", "failure")
        result = journal.check_action(sid, "create-file", "src/lib/local-session.ts",
                                      issue="session bug", approach="cache sessions in local storage")
        assert result["contradiction"]["severity"] == "error"
        assert result["previous_attempt"]["already_tried"] is True


def test_export_markdown(journal):
    sid = journal.load_context()["session_id"]
    journal.log_decision(sid, "Use Zod", "Schemas", "low", category="patterns")
    journal.log_attempt(sid, "build fails", "npm ci", "failure")
    journal.define_scope(sid, "add a component")
    exported = journal.export_markdown(sid)
    assert exported["decisions"].startswith("# Project Decisions")
    assert "Use Zod" in exported["decisions"]
    assert "## Issue: build fails" in exported["attempts"]
    assert exported["scope"].startswith("## SCOPE LOCK ACTIVE")


def test_export_markdown_without_scope(journal):
    sid = journal.load_context()["session_id"]
    assert journal.export_markdown(sid)["scope"] == ""
