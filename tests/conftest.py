#!/usr/bin/env python3
# CUI // SP-CTI
"""Shared pytest fixtures for the PatternGate test suite.

Every fixture builds on a throwaway SQLite file under tmp_path, so tests
never touch data/patterngate.db and can run in parallel.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Ensure project root is on sys.path
BASE_DIR = Path(__file__).resolve().parent.parent
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from patterngate.audit.audit_logger import RecordingSink  # noqa: E402
from patterngate.catalog.pattern_catalog import InMemoryPatternCatalog  # noqa: E402
from patterngate.config import load_config  # noqa: E402
from patterngate.db.session_store import SessionStore  # noqa: E402
from patterngate.engineering.orchestrator import PhaseOrchestrator  # noqa: E402
from patterngate.engineering.session_repository import SessionRepository  # noqa: E402
from patterngate.enforcement.enforcement_gate import EnforcementGate  # noqa: E402
from patterngate.runtime import Services  # noqa: E402
from patterngate.safety.safety_journal import SafetyJournal  # noqa: E402


SAMPLE_DOCUMENTS = {
    "core/standards": "# Core Standards\n- Validate input at the boundary.",
    "auth/email-password": "# Email and Password\n- Hash passwords.",
    "auth/session": "# Sessions\n- Read the session on the server.",
    "payments/stripe": "# Stripe\n- Verify webhook signatures.",
    "payments/checkout": "# Checkout\n- Price ids come from config.",
    "api/routes": "# API Routes\n- Authenticate, validate, act.",
    "api/validation": "# Validation\n- One schema per body.",
    "frontend/components": "# Components\n- Use shared primitives.",
    "testing/unit": "# Unit Tests\n- Test behavior.",
}

FIXED_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = FIXED_NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def store(tmp_path):
    """SessionStore on a fresh temp database with the full schema."""
    return SessionStore(tmp_path / "patterngate.db")


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def catalog():
    return InMemoryPatternCatalog(SAMPLE_DOCUMENTS)


@pytest.fixture
def journal(store, sink):
    return SafetyJournal(store, sink)


@pytest.fixture
def gate(store, catalog, sink, journal, clock):
    return EnforcementGate(store, catalog, sink=sink, journal=journal, session_ttl=7200, clock=clock)


@pytest.fixture
def repository(store):
    return SessionRepository(store)


@pytest.fixture
def orchestrator(repository, sink, clock):
    return PhaseOrchestrator(repository, sink=sink, clock=clock)


@pytest.fixture
def services(store, sink, catalog, journal, gate, repository, orchestrator):
    return Services(load_config(BASE_DIR / "tests" / "no-such-config.yaml"),
                    store, sink, catalog, journal, gate, repository, orchestrator)


@pytest.fixture
def api_client(services):
    """Flask test client wired to the temp-database services."""
    from patterngate.api.app import create_app
    app = create_app(services=services)
    app.config["TESTING"] = True
    return app.test_client()


ANSWERS = (
    ("name", "Invoice Tracker"),
    ("description", "Track invoices for small agencies"),
    ("audience", "businesses"),
    ("is_full_business", False),
    ("platforms", ["web"]),
    ("has_auth", True),
    ("has_payments", False),
    ("has_realtime", False),
    ("compliance", []),
    ("expected_users", "small"),
    ("launch_timeline", "weeks"),
)


def complete_scoping(orchestrator, session_id, answers=ANSWERS):
    """Drive the scoping wizard to completion with ``answers``."""
    result = None
    for step_id, answer in answers:
        result = orchestrator.process_answer(session_id, step_id, answer)
        assert result.success, result.message
    return result


@pytest.fixture
def scoped_session(orchestrator):
    """Engineering session that has finished scoping (now in requirements)."""
    started = orchestrator.start_session("Invoice Tracker", "Track invoices")
    complete_scoping(orchestrator, started["session_id"])
    return started["session_id"]
