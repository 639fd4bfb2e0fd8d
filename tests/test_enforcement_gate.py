#!/usr/bin/env python3
# CUI // SP-CTI
"""Tests for patterngate.enforcement.enforcement_gate: discover/validate protocol."""

import json
import sys
from datetime import timedelta
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
from patterngate.enforcement.enforcement_gate import OPTIONAL_GATES, START_GATE
from patterngate.resilience.errors import StoreUnavailableError
from patterngate.safety import decision_log


def _issue_types(result):
    return [i["type"] for i in result["issues"]]


def _clean_pass(gate, token, **overrides):
    kwargs = dict(tests_run=True, tests_passed=True, typescript_passed=True,
                  tests_written=["tests/test_feature.py"])
    kwargs.update(overrides)
    return gate.validate(token, "Feature", **kwargs)


# ---------------------------------------------------------------------------
# discover
# ---------------------------------------------------------------------------

class TestDiscover:
    """Gate 1: rule discovery and session minting."""

    def test_stripe_checkout_validation_union(self, gate):
        result = gate.discover("add stripe checkout with zod validation")
        assert result["has_exact_match"] is True
        assert set(result["documents"]) == {
            "core/standards", "payments/stripe", "payments/checkout", "api/validation",
        }
        assert len(result["documents"]) == len(set(result["documents"]))
        assert result["related_suggestions"] == []

    def test_login_includes_auth_documents(self, gate):
        result = gate.discover("add login with email and password")
        assert "auth/email-password" in result["documents"]
        assert "auth/session" in result["documents"]

    def test_core_document_always_first(self, gate):
        for task in ("add stripe checkout", "something vague", "build a widget"):
            result = gate.discover(task)
            assert result["documents"][0] == "core/standards"
            assert result["core_rules"].startswith("# Core Standards")

    def test_patterns_carry_content_and_relevance(self, gate):
        result = gate.discover("add stripe checkout")
        by_name = {p["name"]: p for p in result["patterns"]}
        assert by_name["core/standards"]["relevance"] == "high"
        assert by_name["payments/stripe"]["relevance"] == "medium"
        assert "webhook" in by_name["payments/stripe"]["content"]

    def test_missing_catalog_documents_are_skipped(self, gate):
        result = gate.discover("send a welcome email")
        assert "email/transactional" in result["documents"]
        assert "email/transactional" not in [p["name"] for p in result["patterns"]]

    def test_explicit_keywords_override_task(self, gate):
        result = gate.discover("anything at all", keywords=["Stripe"])
        assert result["keywords"] == ["stripe"]
        assert result["documents"] == ["core/standards", "payments/stripe"]
        assert result["has_exact_match"] is True

    def test_fallback_has_no_exact_match(self, gate):
        result = gate.discover("build a nightly worker")
        assert result["has_exact_match"] is False
        assert result["documents"] == ["core/standards", "frontend/components", "api/routes"]
        assert [s["category"] for s in result["related_suggestions"]] == ["background-job"]
        assert "Related rule sets" in result["message"]

    def test_default_suggestions_when_nothing_matches(self, gate):
        result = gate.discover("something vague")
        assert len(result["related_suggestions"]) == 2

    def test_persists_session(self, gate, store, clock):
        result = gate.discover("add stripe checkout", files=["src/pay.ts"],
                               project_name="shop", team_id="team-1")
        row = store.get("enforcement_sessions", session_token=result["session_token"])
        assert row["id"] == result["session_id"]
        assert row["status"] == "active"
        assert row["start_gate_passed"] == 1
        assert row["team_id"] == "team-1"
        assert json.loads(row["planned_files"]) == ["src/pay.ts"]
        assert row["expires_at"] == result["expires_at"]
        assert row["created_at"] == clock.now.isoformat()

    def test_tokens_are_unique_and_opaque(self, gate):
        a = gate.discover("add stripe")["session_token"]
        b = gate.discover("add stripe")["session_token"]
        assert a != b
        assert a.startswith("ses_") and len(a) == 36

    def test_expiry_uses_ttl(self, gate, clock):
        result = gate.discover("add stripe")
        assert result["expires_at"] == (clock.now + timedelta(seconds=7200)).isoformat()

    def test_discovery_audited(self, gate, store, sink):
        result = gate.discover("add stripe")
        rows = store.filter("pattern_discoveries", {"session_id": result["session_id"]})
        assert len(rows) == 1
        assert rows[0]["has_exact_match"] == 1
        assert sink.of_type("patterns_discovered")

    def test_message_names_token(self, gate):
        result = gate.discover("add stripe")
        assert result["session_token"] in result["message"]


class TestDiscoverWarnings:
    """Non-blocking warnings about skipped safety steps."""

    def test_no_warnings_by_default(self, gate):
        assert gate.discover("add stripe")["safety_warnings"] == []

    def test_session_without_context(self, gate):
        result = gate.discover("add stripe", session_id="safety_x")
        assert len(result["safety_warnings"]) == 1
        assert "context" in result["safety_warnings"][0].lower()
        assert result["message"].startswith("WARNING:")

    def test_scope_not_confirmed_only_when_false(self, gate):
        assert gate.discover("add stripe", scope_confirmed=None)["safety_warnings"] == []
        result = gate.discover("add stripe", scope_confirmed=False)
        assert any("Scope" in w for w in result["safety_warnings"])

    def test_both_warnings(self, gate):
        result = gate.discover("add stripe", session_id="safety_x", context_loaded=False,
                               scope_confirmed=False)
        assert len(result["safety_warnings"]) == 2


class TestDiscoverWithJournal:
    """Cached decisions and failed approaches surface in discover."""

    def test_failed_approaches_and_decisions(self, gate, journal):
        sid = journal.load_context()["session_id"]
        journal.log_attempt(sid, "checkout", "client-side price calculation", "failure",
                            error_message="prices tampered")
        journal.log_decision(sid, "Use server-side price lookup", "Client prices are untrusted",
                             "high", category="security")

        result = gate.discover("add stripe checkout", session_id=sid, context_loaded=True)
        assert [a["approach"] for a in result["failed_approaches"]] == ["client-side price calculation"]
        assert [d["decision"] for d in result["relevant_decisions"]] == ["Use server-side price lookup"]
        assert "FAILED APPROACHES" in result["message"]
        assert "ACTIVE DECISIONS" in result["message"]
        assert "CRITICAL DECISIONS" in result["context_summary"]

    def test_retryable_failures_are_not_listed(self, gate, journal):
        sid = journal.load_context()["session_id"]
        journal.log_attempt(sid, "checkout", "retry with backoff", "failure",
                            lessons_learned="might work with a longer timeout")
        result = gate.discover("add stripe", session_id=sid, context_loaded=True)
        assert result["failed_approaches"] == []


# ---------------------------------------------------------------------------
# validate
# ---------------------------------------------------------------------------

class TestValidateLookup:
    """Missing, expired and completed sessions."""

    def test_unknown_token(self, gate):
        result = gate.validate("<unknown>", "Feature", tests_run=True, tests_passed=True)
        assert result["passed"] is False
        assert result["issues"][0]["type"] == "SESSION_NOT_FOUND"
        assert result["issues"][0]["severity"] == "error"
        assert len(result["issues"]) == 1
        assert result["safety_score"] == 0
        assert result["safety_gates_skipped"] == [START_GATE] + list(OPTIONAL_GATES)

    def test_empty_token(self, gate):
        assert _issue_types(gate.validate("", "Feature")) == ["SESSION_NOT_FOUND"]

    def test_expired_session(self, gate, clock, store, sink):
        token = gate.discover("add stripe")["session_token"]
        clock.advance(seconds=7201)
        result = _clean_pass(gate, token)
        assert result["passed"] is False
        assert _issue_types(result) == ["SESSION_EXPIRED"]
        assert store.get("enforcement_sessions", session_token=token)["status"] == "expired"
        assert len(sink.of_type("session_expired")) == 1

    def test_expiry_is_permanent(self, gate, clock, sink):
        token = gate.discover("add stripe")["session_token"]
        clock.advance(hours=3)
        gate.validate(token, "Feature")
        clock.advance(hours=-3)
        result = _clean_pass(gate, token)
        assert _issue_types(result) == ["SESSION_EXPIRED"]
        assert len(sink.of_type("session_expired")) == 1

    def test_exactly_at_expiry_is_still_valid(self, gate, clock):
        token = gate.discover("add stripe")["session_token"]
        clock.advance(seconds=7200)
        assert _clean_pass(gate, token)["passed"] is True

    def test_expired_failed_session(self, gate, clock):
        token = gate.discover("add stripe")["session_token"]
        gate.validate(token, "Feature")
        clock.advance(hours=3)
        assert _issue_types(_clean_pass(gate, token)) == ["SESSION_EXPIRED"]

    def test_completed_session_returns_cached_pass(self, gate, store):
        token = gate.discover("add stripe")["session_token"]
        assert _clean_pass(gate, token)["passed"] is True
        result = gate.validate(token, "Feature", tests_run=False, typescript_passed=False)
        assert result["passed"] is True
        assert result["issues"] == []
        assert result["safety_score"] == 100
        assert "already validated" in result["message"]
        assert store.count("pattern_validations") == 1

    def test_failed_session_can_be_revalidated(self, gate):
        token = gate.discover("add stripe")["session_token"]
        assert gate.validate(token, "Feature")["passed"] is False
        assert _clean_pass(gate, token)["passed"] is True


class TestValidateChecks:
    """Hard checks are errors, soft checks are warnings."""

    @pytest.fixture
    def token(self, gate):
        return gate.discover("add stripe checkout")["session_token"]

    def test_clean_pass(self, gate, token, store):
        result = _clean_pass(gate, token)
        assert result["passed"] is True
        assert result["issues"] == []
        assert result["session_completed"] is True
        row = store.get("enforcement_sessions", session_token=token)
        assert row["status"] == "completed"
        assert row["end_gate_passed"] == 1
        assert row["feature_name"] == "Feature"
        assert row["version"] == 1

    def test_tests_not_run(self, gate, token):
        result = gate.validate(token, "Feature", tests_written=["t"])
        assert result["passed"] is False
        assert _issue_types(result) == ["TESTS_NOT_RUN"]

    def test_tests_failed(self, gate, token, store):
        result = gate.validate(token, "Feature", tests_run=True, tests_passed=False, tests_written=["t"])
        assert _issue_types(result) == ["TESTS_FAILED"]
        assert store.get("enforcement_sessions", session_token=token)["status"] == "failed"

    def test_typecheck_failed(self, gate, token):
        result = _clean_pass(gate, token, typescript_passed=False)
        assert result["passed"] is False
        assert _issue_types(result) == ["TYPECHECK_FAILED"]

    def test_typecheck_unknown_is_not_an_error(self, gate, token):
        assert _clean_pass(gate, token, typescript_passed=None)["passed"] is True

    def test_warnings_never_block(self, gate, token):
        result = _clean_pass(gate, token, tests_written=[], env_vars_added=["STRIPE_KEY"],
                             schema_modified=True)
        assert result["passed"] is True
        assert _issue_types(result) == ["NO_TESTS_WRITTEN", "ENV_VARS_ADDED", "SCHEMA_MODIFIED"]
        assert all(i["severity"] == "warning" for i in result["issues"])
        assert "STRIPE_KEY" in result["issues"][1]["message"]

    def test_single_env_var_string(self, gate, token):
        result = _clean_pass(gate, token, env_vars_added="STRIPE_KEY")
        assert "(STRIPE_KEY)" in result["issues"][0]["message"]

    def test_every_issue_reported(self, gate, token):
        result = gate.validate(token, "Feature", typescript_passed=False, schema_modified=True)
        assert _issue_types(result) == [
            "TESTS_NOT_RUN", "TYPECHECK_FAILED", "NO_TESTS_WRITTEN", "SCHEMA_MODIFIED",
        ]
        assert "[ERROR]" in result["message"]
        assert "[WARNING]" in result["message"]

    def test_validation_audited(self, gate, token, store, sink):
        gate.validate(token, "Feature")
        rows = store.filter("pattern_validations")
        assert len(rows) == 1
        assert rows[0]["passed"] == 0
        assert [i["type"] for i in json.loads(rows[0]["issues"])][0] == "TESTS_NOT_RUN"
        assert sink.of_type("validation_failed")

    def test_missing_start_gate_is_an_error(self, gate, token, store):
        store.update("enforcement_sessions", {"start_gate_passed": 0}, {"session_token": token})
        result = _clean_pass(gate, token)
        assert result["passed"] is False
        assert "START_GATE_NOT_PASSED" in _issue_types(result)
        assert result["safety_score"] == 0
        assert result["safety_gates_skipped"] == [START_GATE]


class TestSafetyScore:
    """Basic protocol scores 100/0, extended protocol 25 per gate."""

    def test_basic_protocol_ignores_optional_flags(self, gate):
        token = gate.discover("add stripe")["session_token"]
        result = _clean_pass(gate, token, context_was_loaded=False, intent_was_clarified=False)
        assert result["safety_score"] == 100
        assert result["safety_gates_followed"] == [START_GATE]
        assert result["safety_gates_skipped"] == []
        assert result["issues"] == []

    def test_extended_protocol_reads_journal_gates(self, gate, journal):
        sid = journal.load_context()["session_id"]
        token = gate.discover("add stripe", session_id=sid, context_loaded=True)["session_token"]
        result = _clean_pass(gate, token, safety_session_id=sid)
        assert result["passed"] is True
        assert result["safety_score"] == 50
        assert result["safety_gates_followed"] == [START_GATE, "context_loaded"]
        assert result["safety_gates_skipped"] == ["intent_clarified", "scope_locked"]
        assert _issue_types(result) == ["INTENT_NOT_CLARIFIED", "SCOPE_NOT_LOCKED"]

    def test_all_gates_followed(self, gate, journal):
        sid = journal.load_context()["session_id"]
        journal.mark_intent_clarified(sid)
        journal.define_scope(sid, "add checkout page")
        token = gate.discover("add stripe")["session_token"]
        result = _clean_pass(gate, token, safety_session_id=sid)
        assert result["safety_score"] == 100
        assert result["safety_gates_skipped"] == []

    def test_explicit_flags_override_journal(self, gate, journal):
        sid = journal.load_context()["session_id"]
        token = gate.discover("add stripe")["session_token"]
        result = _clean_pass(gate, token, safety_session_id=sid, context_was_loaded=False,
                             intent_was_clarified=True, scope_was_locked=True)
        assert result["safety_score"] == 75
        assert result["safety_gates_skipped"] == ["context_loaded"]

    def test_unknown_safety_session_scores_base_only(self, gate):
        token = gate.discover("add stripe")["session_token"]
        result = _clean_pass(gate, token, safety_session_id="safety_missing")
        assert result["safety_score"] == 25
        assert result["passed"] is True


class TestSafetyOutcome:
    """Attempts and decisions written back to the safety journal."""

    def test_pass_logs_attempt_and_decision(self, gate, journal):
        sid = journal.load_context()["session_id"]
        token = gate.discover("add stripe")["session_token"]
        result = _clean_pass(gate, token, safety_session_id=sid, approach="Stripe Checkout session",
                             files_modified=["src/checkout.ts"])
        assert result["attempt_logged"] is True
        assert result["decision_logged"] is True
        attempts = journal.get_attempts(sid)
        assert [(a.approach, a.result) for a in attempts] == [("Stripe Checkout session", "success")]
        decisions = journal.get_decisions(sid)
        assert decisions[-1].decision == "Implemented Feature"
        assert decisions[-1].related_files == ("src/checkout.ts",)

    def test_failure_logs_attempt_only(self, gate, journal):
        sid = journal.load_context()["session_id"]
        token = gate.discover("add stripe")["session_token"]
        result = gate.validate(token, "Feature", safety_session_id=sid)
        assert result["attempt_logged"] is True
        assert result["decision_logged"] is False
        attempt = journal.get_attempts(sid)[0]
        assert attempt.result == "failure"
        assert attempt.lessons_learned == "Validation failed on: TESTS_NOT_RUN"
        assert attempt.should_not_retry is True
        assert journal.get_decisions(sid) == []

    def test_no_logging_without_safety_session(self, gate):
        token = gate.discover("add stripe")["session_token"]
        result = _clean_pass(gate, token)
        assert result["attempt_logged"] is False
        assert result["decision_logged"] is False

    def test_seeded_decision_survives(self, gate, journal):
        sid = journal.load_context(decisions=[decision_log.create_decision(
            "Use Postgres", "tech-stack", "Relational data").to_dict()])["session_id"]
        token = gate.discover("add stripe")["session_token"]
        _clean_pass(gate, token, safety_session_id=sid)
        assert [d.decision for d in journal.get_decisions(sid)] == ["Use Postgres", "Implemented Feature"]


class TestCompareAndSwap:
    """Concurrent validate on one token is resolved by the version column."""

    def test_lost_race_rereads_and_reports_cached_pass(self, gate, store, monkeypatch):
        token = gate.discover("add stripe")["session_token"]
        original = store.update
        raced = []

        def racing_update(table, values, where):
            if table == "enforcement_sessions" and not raced:
                raced.append(True)
                original(table, {"status": "completed", "feature_name": "Other writer",
                                 "version": where["version"] + 1}, {"id": where["id"]})
            return original(table, values, where)

        monkeypatch.setattr(store, "update", racing_update)
        result = gate.validate(token, "Feature")
        assert result["passed"] is True
        assert "Other writer" in result["message"]
        assert store.count("pattern_validations") == 0

    def test_swap_budget_exhausted(self, gate, store, monkeypatch):
        token = gate.discover("add stripe")["session_token"]
        monkeypatch.setattr(store, "update", lambda table, values, where: 0)
        with pytest.raises(StoreUnavailableError):
            _clean_pass(gate, token)


class TestLookups:

    def test_get_session_decodes_lists(self, gate):
        result = gate.discover("add stripe", files=["a.ts"])
        session = gate.get_session(result["session_token"])
        assert session["planned_files"] == ["a.ts"]
        assert session["patterns_returned"] == result["documents"]
        assert gate.get_session("nope") is None

    def test_get_patterns(self, gate):
        result = gate.get_patterns(["payments/stripe", "nope/missing"])
        assert [p["name"] for p in result["patterns"]] == ["payments/stripe"]
        assert result["missing"] == ["nope/missing"]

    def test_get_active_session(self, gate, clock):
        first = gate.discover("add stripe", team_id="team-1", device_id="laptop")
        clock.advance(minutes=5)
        second = gate.discover("add checkout", team_id="team-1", device_id="desktop")
        assert gate.get_active_session("team-1")["session_token"] == second["session_token"]
        assert gate.get_active_session("team-1", "laptop")["session_token"] == first["session_token"]
        assert gate.get_active_session("team-2") is None

    def test_get_active_session_skips_expired(self, gate, clock):
        gate.discover("add stripe", team_id="team-1")
        clock.advance(hours=3)
        assert gate.get_active_session("team-1") is None

    def test_stats(self, gate):
        ok = gate.discover("add stripe")["session_token"]
        bad = gate.discover("add checkout")["session_token"]
        _clean_pass(gate, ok)
        gate.validate(bad, "Feature")
        stats = gate.get_stats()
        assert stats["discoveries"] == 2
        assert stats["validations_passed"] == 1
        assert stats["validations_failed"] == 1
        assert stats["sessions_by_status"] == {"completed": 1, "failed": 1}
