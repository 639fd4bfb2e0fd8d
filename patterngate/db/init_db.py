#!/usr/bin/env python3
# CUI // SP-CTI
"""Initialize the PatternGate database.

All tables are created with CREATE TABLE IF NOT EXISTS, so init_db() is safe
to call on every process start.
"""

import argparse
import logging
import sqlite3
from pathlib import Path

from patterngate.compat.db_utils import get_db_path

logger = logging.getLogger("patterngate.db")

SCHEMA_SQL = """
-- Two-gate enforcement sessions (one per discover call)
CREATE TABLE IF NOT EXISTS enforcement_sessions (
    id TEXT PRIMARY KEY,
    session_token TEXT NOT NULL UNIQUE,
    team_id TEXT,
    device_id TEXT,
    project_hash TEXT,
    project_name TEXT,
    task_description TEXT NOT NULL,
    planned_files TEXT,
    keywords TEXT,
    patterns_returned TEXT,
    start_gate_passed INTEGER NOT NULL DEFAULT 0,
    end_gate_passed INTEGER NOT NULL DEFAULT 0,
    tests_run INTEGER,
    tests_passed INTEGER,
    typecheck_passed INTEGER,
    feature_name TEXT,
    status TEXT NOT NULL DEFAULT 'active'
        CHECK(status IN ('active', 'completed', 'expired', 'failed')),
    version INTEGER NOT NULL DEFAULT 0,
    expires_at TEXT NOT NULL,
    created_at TEXT NOT NULL,
    completed_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_enf_sessions_team ON enforcement_sessions(team_id, device_id, status);

-- Write-once audit rows for discover / validate
CREATE TABLE IF NOT EXISTS pattern_discoveries (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    task_description TEXT,
    keywords TEXT,
    patterns TEXT,
    has_exact_match INTEGER NOT NULL DEFAULT 0,
    latency_ms INTEGER,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS pattern_validations (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    feature_name TEXT,
    feature_description TEXT,
    files_modified TEXT,
    passed INTEGER NOT NULL DEFAULT 0,
    issues TEXT,
    safety_score INTEGER,
    latency_ms INTEGER,
    created_at TEXT NOT NULL
);

-- Multi-phase engineering builds
CREATE TABLE IF NOT EXISTS engineering_sessions (
    id TEXT PRIMARY KEY,
    project_id TEXT,
    project_name TEXT NOT NULL,
    project_description TEXT,
    team_id TEXT,
    status TEXT NOT NULL DEFAULT 'active'
        CHECK(status IN ('active', 'paused', 'completed', 'abandoned')),
    current_phase TEXT NOT NULL,
    current_agent TEXT NOT NULL,
    is_running INTEGER NOT NULL DEFAULT 1,
    scope TEXT NOT NULL,
    stack TEXT NOT NULL,
    gate_status TEXT NOT NULL,
    artifacts TEXT NOT NULL,
    dependency_graph TEXT NOT NULL,
    context TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    paused_at TEXT,
    completed_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_eng_sessions_status ON engineering_sessions(status, current_phase);

CREATE TABLE IF NOT EXISTS engineering_messages (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    from_agent TEXT NOT NULL,
    to_agent TEXT NOT NULL,
    message_type TEXT NOT NULL,
    content TEXT NOT NULL,
    metadata TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS engineering_decisions (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    agent TEXT NOT NULL,
    phase TEXT NOT NULL,
    decision TEXT NOT NULL,
    reasoning TEXT,
    alternatives TEXT,
    confidence INTEGER,
    reversible INTEGER NOT NULL DEFAULT 1,
    impact TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS engineering_gate_history (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    phase TEXT NOT NULL,
    previous_status TEXT,
    new_status TEXT NOT NULL,
    triggered_by TEXT,
    reason TEXT,
    artifacts TEXT,
    created_at TEXT NOT NULL
);

-- Safety journal (decisions, attempts, scope locks)
CREATE TABLE IF NOT EXISTS safety_sessions (
    id TEXT PRIMARY KEY,
    project_hash TEXT,
    context_loaded INTEGER NOT NULL DEFAULT 0,
    intent_clarified INTEGER NOT NULL DEFAULT 0,
    scope_locked INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS safety_decisions (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    category TEXT NOT NULL,
    impact TEXT NOT NULL,
    payload TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS safety_attempts (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    issue_hash TEXT NOT NULL,
    result TEXT NOT NULL,
    payload TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS scope_locks (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    payload TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- Append-only audit trail
CREATE TABLE IF NOT EXISTS audit_trail (
    id TEXT PRIMARY KEY,
    event_type TEXT NOT NULL,
    actor TEXT NOT NULL,
    action TEXT NOT NULL,
    session_id TEXT,
    details TEXT,
    timestamp TEXT NOT NULL
);
"""

KNOWN_TABLES = (
    "enforcement_sessions", "pattern_discoveries", "pattern_validations",
    "engineering_sessions", "engineering_messages", "engineering_decisions",
    "engineering_gate_history",
    "safety_sessions", "safety_decisions", "safety_attempts", "scope_locks",
    "audit_trail",
)


def init_db(db_path=None):
    """Create the PatternGate schema. Returns the list of table names."""
    path = Path(get_db_path(db_path))
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    try:
        conn.executescript(SCHEMA_SQL)
        conn.commit()
        rows = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
        ).fetchall()
    finally:
        conn.close()
    tables = [row[0] for row in rows]
    logger.info("PatternGate database initialized at %s (%d tables)", path, len(tables))
    return tables


def main():
    parser = argparse.ArgumentParser(description="Initialize PatternGate database")
    parser.add_argument("--db-path", type=Path, default=None, help="Database file path")
    parser.add_argument("--reset", action="store_true", help="Drop and recreate all tables")
    args = parser.parse_args()

    path = get_db_path(args.db_path)
    if args.reset and path.exists():
        path.unlink()
        print(f"Removed existing database: {path}")

    tables = init_db(path)
    print(f"PatternGate database initialized at {path}")
    print(f"Tables created ({len(tables)}): {', '.join(tables)}")


if __name__ == "__main__":
    main()
