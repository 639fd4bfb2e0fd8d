#!/usr/bin/env python3
# CUI // SP-CTI
"""Tests for patterngate.db: schema init, SessionStore, KeyedLocks, path resolution."""

import os
import sqlite3
import sys
import threading
from pathlib import Path
from unittest import mock

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
from patterngate.compat.db_utils import get_db_connection, get_db_path, get_project_root
from patterngate.db.init_db import KNOWN_TABLES, init_db
from patterngate.db.locks import KeyedLocks
from patterngate.db.session_store import SessionStore
from patterngate.resilience.errors import StoreUnavailableError


def _safety_row(session_id, context_loaded=0, project_hash=None):
    return {
        "id": session_id, "project_hash": project_hash,
        "context_loaded": context_loaded, "intent_clarified": 0, "scope_locked": 0,
        "created_at": f"2026-01-01T00:00:0{session_id[-1]}", "updated_at": "2026-01-01T00:00:00",
    }


class TestInitDb:
    """Schema creation."""

    def test_creates_every_known_table(self, tmp_path):
        tables = init_db(tmp_path / "fresh.db")
        for table in KNOWN_TABLES:
            assert table in tables

    def test_idempotent(self, tmp_path):
        path = tmp_path / "twice.db"
        first = init_db(path)
        assert init_db(path) == first

    def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "db.sqlite"
        init_db(path)
        assert path.exists()


class TestDbPathResolution:
    """Explicit path, then env var, then config."""

    def test_explicit_path(self):
        assert get_db_path("/custom/path.db") == Path("/custom/path.db")

    def test_env_var(self):
        with mock.patch.dict(os.environ, {"PATTERNGATE_DB_PATH": "/env/pg.db"}):
            assert get_db_path() == Path("/env/pg.db")

    def test_explicit_beats_env(self):
        with mock.patch.dict(os.environ, {"PATTERNGATE_DB_PATH": "/env/pg.db"}):
            assert get_db_path("/explicit.db") == Path("/explicit.db")

    def test_default_is_under_project_root(self, monkeypatch):
        monkeypatch.delenv("PATTERNGATE_DB_PATH", raising=False)
        monkeypatch.delenv("PATTERNGATE_CONFIG", raising=False)
        path = get_db_path()
        assert path.name == "patterngate.db"
        assert str(path).startswith(str(get_project_root()))

    def test_validate_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_db_connection(tmp_path / "missing.db", validate=True)


class TestSessionStore:
    """CRUD helpers over the schema."""

    def test_insert_and_get(self, store):
        store.insert("safety_sessions", _safety_row("s1"))
        row = store.get("safety_sessions", id="s1")
        assert row["id"] == "s1"
        assert row["context_loaded"] == 0

    def test_get_missing_returns_none(self, store):
        assert store.get("safety_sessions", id="nope") is None

    def test_none_matches_null(self, store):
        store.insert("safety_sessions", _safety_row("s1"))
        store.insert("safety_sessions", _safety_row("s2", project_hash="abc"))
        rows = store.filter("safety_sessions", {"project_hash": None})
        assert [r["id"] for r in rows] == ["s1"]

    def test_list_means_in(self, store):
        for sid in ("s1", "s2", "s3"):
            store.insert("safety_sessions", _safety_row(sid))
        rows = store.filter("safety_sessions", {"id": ["s1", "s3"]}, order_by="id")
        assert [r["id"] for r in rows] == ["s1", "s3"]

    def test_empty_list_matches_nothing(self, store):
        store.insert("safety_sessions", _safety_row("s1"))
        assert store.filter("safety_sessions", {"id": []}) == []

    def test_filter_order_limit_offset(self, store):
        for sid in ("s1", "s2", "s3", "s4"):
            store.insert("safety_sessions", _safety_row(sid))
        rows = store.filter("safety_sessions", order_by="created_at", descending=True,
                            limit=2, offset=1)
        assert [r["id"] for r in rows] == ["s3", "s2"]

    def test_count(self, store):
        store.insert("safety_sessions", _safety_row("s1", context_loaded=1))
        store.insert("safety_sessions", _safety_row("s2"))
        assert store.count("safety_sessions") == 2
        assert store.count("safety_sessions", {"context_loaded": 1}) == 1

    def test_update_returns_rowcount(self, store):
        store.insert("safety_sessions", _safety_row("s1"))
        assert store.update("safety_sessions", {"scope_locked": 1}, {"id": "s1"}) == 1
        assert store.update("safety_sessions", {"scope_locked": 1}, {"id": "zz"}) == 0
        assert store.get("safety_sessions", id="s1")["scope_locked"] == 1

    def test_update_as_compare_and_swap(self, store):
        store.insert("safety_sessions", _safety_row("s1"))
        assert store.update("safety_sessions", {"context_loaded": 1},
                            {"id": "s1", "context_loaded": 0}) == 1
        assert store.update("safety_sessions", {"context_loaded": 1},
                            {"id": "s1", "context_loaded": 0}) == 0

    def test_update_requires_where(self, store):
        with pytest.raises(ValueError):
            store.update("safety_sessions", {"scope_locked": 1}, {})

    def test_group_count(self, store):
        store.insert("safety_sessions", _safety_row("s1", context_loaded=1))
        store.insert("safety_sessions", _safety_row("s2", context_loaded=1))
        store.insert("safety_sessions", _safety_row("s3"))
        assert store.group_count("safety_sessions", "context_loaded") == {1: 2, 0: 1}

    def test_unknown_table_rejected(self, store):
        with pytest.raises(ValueError):
            store.get("users", id="x")

    def test_bad_identifier_rejected(self, store):
        with pytest.raises(ValueError):
            store.filter("safety_sessions", {"id; DROP TABLE audit_trail": "x"})

    def test_duplicate_primary_key_is_integrity_error(self, store):
        store.insert("safety_sessions", _safety_row("s1"))
        with pytest.raises(sqlite3.IntegrityError):
            store.insert("safety_sessions", _safety_row("s1"))

    def test_operational_error_becomes_store_unavailable(self, tmp_path):
        store = SessionStore(tmp_path / "db.sqlite", initialize=False)
        with pytest.raises(StoreUnavailableError):
            store.count("safety_sessions")


class TestKeyedLocks:
    """Per-key re-entrant locks."""

    def test_same_key_same_lock(self):
        locks = KeyedLocks()
        assert locks.get("a") is locks.get("a")
        assert locks.get("a") is not locks.get("b")
        assert len(locks) == 2

    def test_reentrant(self):
        locks = KeyedLocks()
        with locks.hold("a"):
            with locks.hold("a"):
                pass

    def test_serializes_same_key(self):
        locks = KeyedLocks()
        counter = {"value": 0}

        def bump():
            for _ in range(200):
                with locks.hold("k"):
                    current = counter["value"]
                    counter["value"] = current + 1

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert counter["value"] == 800
