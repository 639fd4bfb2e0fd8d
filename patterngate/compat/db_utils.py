#!/usr/bin/env python3
# CUI // SP-CTI
"""Database path resolution and connection helpers for PatternGate.

Fallback chain for the database path:
    1. Explicit path argument (if provided)
    2. PATTERNGATE_DB_PATH environment variable
    3. database.path from args/patterngate_config.yaml (relative to project root)

Usage:
    from patterngate.compat.db_utils import get_db_path, get_db_connection

    conn = get_db_connection()                     # configured database
    conn = get_db_connection("/tmp/other.db")      # explicit database
"""

import os
import sqlite3
from pathlib import Path
from typing import Optional, Union

# Project root: 3 levels up from patterngate/compat/db_utils.py
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


def get_project_root() -> Path:
    """Return the PatternGate project root directory."""
    return _PROJECT_ROOT


def get_db_path(explicit: Optional[Union[str, Path]] = None) -> Path:
    """Resolve the PatternGate database path."""
    if explicit:
        return Path(explicit)

    env_path = os.environ.get("PATTERNGATE_DB_PATH")
    if env_path:
        return Path(env_path)

    from patterngate.config import load_config
    configured = Path(load_config()["database"]["path"])
    if not configured.is_absolute():
        configured = _PROJECT_ROOT / configured
    return configured


def get_db_connection(
    db_path: Optional[Union[str, Path]] = None,
    validate: bool = False,
    row_factory: bool = True,
) -> sqlite3.Connection:
    """Open a SQLite connection to the PatternGate database.

    Args:
        db_path: Explicit database path. Uses get_db_path() if None.
        validate: If True, raise FileNotFoundError when the DB file is missing.
        row_factory: If True, rows come back as sqlite3.Row.
    """
    path = get_db_path(db_path)
    if validate and not path.exists():
        raise FileNotFoundError(
            f"Database not found: {path}\n"
            "Run: python -m patterngate.db.init_db"
        )
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), timeout=5.0)
    if row_factory:
        conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn
