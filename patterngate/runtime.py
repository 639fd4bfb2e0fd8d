#!/usr/bin/env python3
# CUI // SP-CTI
"""Wires the store, catalog, journal, gate and orchestrator from config.

Entry points (MCP server, Flask app, CLIs) call build_services() once and
share the returned object for the life of the process.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from patterngate.audit.audit_logger import AuditSink, SqliteAuditSink
from patterngate.catalog.pattern_catalog import DirectoryPatternCatalog, PatternCatalog
from patterngate.compat.db_utils import get_project_root
from patterngate.config import load_config
from patterngate.db.session_store import SessionStore
from patterngate.engineering.orchestrator import PhaseOrchestrator
from patterngate.engineering.session_repository import SessionRepository
from patterngate.enforcement.enforcement_gate import EnforcementGate
from patterngate.safety.safety_journal import SafetyJournal

logger = logging.getLogger("patterngate.runtime")


@dataclass
class Services:
    config: dict
    store: SessionStore
    sink: AuditSink
    catalog: PatternCatalog
    journal: SafetyJournal
    gate: EnforcementGate
    repository: SessionRepository
    orchestrator: PhaseOrchestrator


def build_services(config: Optional[dict] = None, db_path=None,
                   catalog: Optional[PatternCatalog] = None) -> Services:
    config = config or load_config()
    if db_path is None and not os.environ.get("PATTERNGATE_DB_PATH"):
        db_path = Path(config["database"]["path"])
        if not db_path.is_absolute():
            db_path = get_project_root() / db_path
    store = SessionStore(db_path)
    sink = SqliteAuditSink(store)

    if catalog is None:
        directory = Path(config["catalog"]["directory"])
        if not directory.is_absolute():
            directory = get_project_root() / directory
        catalog = DirectoryPatternCatalog(directory)

    scope_config = config.get("scope_lock", {})
    journal = SafetyJournal(
        store, sink,
        sensitive_files=scope_config.get("forbidden_files"),
        sensitive_patterns=scope_config.get("forbidden_patterns"),
    )
    gate = EnforcementGate(
        store, catalog, sink=sink, journal=journal,
        session_ttl=config["enforcement"]["session_ttl_seconds"],
    )
    repository = SessionRepository(store)
    orchestrator = PhaseOrchestrator(repository, sink=sink)
    logger.info("Services ready (db=%s)", store.db_path)
    return Services(config, store, sink, catalog, journal, gate, repository, orchestrator)
