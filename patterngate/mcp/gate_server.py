#!/usr/bin/env python3
# CUI // SP-CTI
"""PatternGate MCP server: enforcement, safety journal and engineering tools.

Protocol outcomes (failed validation, refused transitions, scope
violations) are ordinary results. Only infrastructure failures come back as
isError results, and none of them stop the server.

Usage:
    patterngate-mcp [--db-path PATH] [--config PATH]
"""

import argparse
import functools
import logging
import sys

from patterngate.config import configure_logging, load_config
from patterngate.mcp.base_server import MCPServer
from patterngate.resilience.errors import PatternGateError

logger = logging.getLogger("patterngate.mcp.gate_server")


def _guard(handler):
    """Turn PatternGateError and bad arguments into error payloads."""
    @functools.wraps(handler)
    def wrapper(services, args):
        try:
            return handler(services, args)
        except PatternGateError as exc:
            logger.error("%s failed: %s", handler.__name__, exc)
            return exc.to_dict()
        except ValueError as exc:
            return {"error": str(exc)}
    return wrapper


def _require(args: dict, *names):
    missing = [n for n in names if args.get(n) in (None, "")]
    if missing:
        raise ValueError(f"Missing required argument(s): {', '.join(missing)}")
    return [args[n] for n in names]


def _pick(args: dict, *names) -> dict:
    return {n: args[n] for n in names if n in args}


# ---------------------------------------------------------------------------
# Enforcement tools
# ---------------------------------------------------------------------------

@_guard
def handle_discover_patterns(services, args: dict) -> dict:
    (task,) = _require(args, "task")
    return services.gate.discover(task, **_pick(
        args, "keywords", "files", "project_hash", "project_name", "session_id",
        "context_loaded", "scope_confirmed", "team_id", "device_id",
    ))


@_guard
def handle_validate_complete(services, args: dict) -> dict:
    token, feature = _require(args, "session_token", "feature_name")
    return services.gate.validate(token, feature, **_pick(
        args, "feature_description", "files_modified", "tests_written", "tests_run",
        "tests_passed", "typescript_passed", "safety_session_id", "context_was_loaded",
        "intent_was_clarified", "scope_was_locked", "approach", "env_vars_added",
        "schema_modified",
    ))


@_guard
def handle_get_patterns(services, args: dict) -> dict:
    (names,) = _require(args, "names")
    return services.gate.get_patterns(list(names))


# ---------------------------------------------------------------------------
# Safety journal tools
# ---------------------------------------------------------------------------

@_guard
def handle_safety_load_context(services, args: dict) -> dict:
    return services.journal.load_context(**_pick(args, "project_hash", "decisions", "attempts", "stack"))


@_guard
def handle_safety_confirm_intent(services, args: dict) -> dict:
    (session_id,) = _require(args, "session_id")
    return services.journal.mark_intent_clarified(session_id)


@_guard
def handle_safety_log_decision(services, args: dict) -> dict:
    session_id, decision, reasoning, impact = _require(
        args, "session_id", "decision", "reasoning", "impact")
    return services.journal.log_decision(session_id, decision, reasoning, impact, **_pick(
        args, "category", "alternatives", "related_files", "made_by"))


@_guard
def handle_safety_log_attempt(services, args: dict) -> dict:
    session_id, issue, approach, result = _require(args, "session_id", "issue", "approach", "result")
    return services.journal.log_attempt(session_id, issue, approach, result, **_pick(
        args, "code_or_command", "error_message", "lessons_learned"))


@_guard
def handle_safety_define_scope(services, args: dict) -> dict:
    session_id, request = _require(args, "session_id", "request")
    provided = _pick(
        args, "allowed_files", "allowed_directories", "allowed_actions", "forbidden_files",
        "forbidden_patterns", "max_new_files", "max_modified_files",
        "can_delete_files", "can_modify_dependencies", "can_modify_schema",
    )
    lock = services.journal.define_scope(session_id, request, provided or None)
    return {"success": True, "scope": lock.to_dict()}


@_guard
def handle_safety_check_action(services, args: dict) -> dict:
    session_id, action_type = _require(args, "session_id", "action_type")
    return services.journal.check_action(
        session_id, action_type, args.get("target_file") or "",
        issue=args.get("issue"), approach=args.get("approach"),
    )


@_guard
def handle_safety_status(services, args: dict) -> dict:
    (session_id,) = _require(args, "session_id")
    return services.journal.get_status(session_id)


# ---------------------------------------------------------------------------
# Engineering tools
# ---------------------------------------------------------------------------

@_guard
def handle_engineering_start(services, args: dict) -> dict:
    (name,) = _require(args, "project_name")
    return services.orchestrator.start_session(name, **_pick(
        args, "project_description", "team_id", "project_id"))


@_guard
def handle_engineering_answer(services, args: dict) -> dict:
    session_id, step_id = _require(args, "session_id", "step_id")
    if "answer" not in args:
        raise ValueError("Missing required argument(s): answer")
    return services.orchestrator.process_answer(session_id, step_id, args["answer"]).to_dict()


@_guard
def handle_engineering_advance(services, args: dict) -> dict:
    (session_id,) = _require(args, "session_id")
    return services.orchestrator.advance_phase(session_id).to_dict()


@_guard
def handle_engineering_pass_gate(services, args: dict) -> dict:
    (session_id,) = _require(args, "session_id")
    return services.orchestrator.pass_gate(
        session_id, args.get("artifacts"), args.get("approved_by") or "auto").to_dict()


@_guard
def handle_engineering_request_approval(services, args: dict) -> dict:
    (session_id,) = _require(args, "session_id")
    return services.orchestrator.request_approval(session_id, args.get("reason") or "").to_dict()


@_guard
def handle_engineering_approval(services, args: dict) -> dict:
    (session_id,) = _require(args, "session_id")
    if not isinstance(args.get("approved"), bool):
        raise ValueError("'approved' must be true or false")
    return services.orchestrator.handle_approval(
        session_id, args["approved"], feedback=args.get("feedback"),
        approved_by=args.get("approved_by") or "user",
    ).to_dict()


@_guard
def handle_engineering_store_artifact(services, args: dict) -> dict:
    session_id, kind, content = _require(args, "session_id", "artifact", "content")
    return services.orchestrator.store_artifact(session_id, kind, content).to_dict()


@_guard
def handle_engineering_add_node(services, args: dict) -> dict:
    session_id, node_id, node_type, name = _require(args, "session_id", "node_id", "node_type", "name")
    return services.orchestrator.add_node(
        session_id, node_id, node_type, name, args.get("path") or "").to_dict()


@_guard
def handle_engineering_add_edge(services, args: dict) -> dict:
    session_id, source, target = _require(args, "session_id", "source_id", "target_id")
    return services.orchestrator.add_edge(
        session_id, source, target, args.get("relation") or "import").to_dict()


@_guard
def handle_engineering_impact(services, args: dict) -> dict:
    session_id, node_id = _require(args, "session_id", "node_id")
    analysis = services.orchestrator.analyze_impact(session_id, node_id)
    if analysis is None:
        return {"found": False, "message": f"Node {node_id} not found in session {session_id}"}
    return {"found": True, **analysis.to_dict()}


@_guard
def handle_engineering_progress(services, args: dict) -> dict:
    (session_id,) = _require(args, "session_id")
    progress = services.orchestrator.get_progress(session_id)
    if progress is None:
        return {"found": False, "message": f"Session {session_id} not found"}
    return {"found": True, **progress}


# ---------------------------------------------------------------------------
# Server setup
# ---------------------------------------------------------------------------

_STR = {"type": "string"}
_BOOL = {"type": "boolean"}
_STR_LIST = {"type": "array", "items": {"type": "string"}}


def _schema(required=(), **properties) -> dict:
    return {"type": "object", "properties": properties, "required": list(required)}


TOOLS = (
    ("discover_patterns", "Gate 1: fetch coding rules for a task and open an enforcement session",
     handle_discover_patterns,
     _schema(("task",), task=_STR, keywords=_STR_LIST, files=_STR_LIST, project_hash=_STR,
             project_name=_STR, session_id=_STR, context_loaded=_BOOL, scope_confirmed=_BOOL,
             team_id=_STR, device_id=_STR)),
    ("validate_complete", "Gate 2: validate completed work against the enforcement session",
     handle_validate_complete,
     _schema(("session_token", "feature_name"), session_token=_STR, feature_name=_STR,
             feature_description=_STR, files_modified=_STR_LIST, tests_written=_STR_LIST,
             tests_run=_BOOL, tests_passed=_BOOL, typescript_passed=_BOOL, safety_session_id=_STR,
             context_was_loaded=_BOOL, intent_was_clarified=_BOOL, scope_was_locked=_BOOL,
             approach=_STR, env_vars_added=_STR_LIST, schema_modified=_BOOL)),
    ("get_patterns", "Fetch named pattern documents", handle_get_patterns,
     _schema(("names",), names=_STR_LIST)),
    ("safety_load_context", "Open a safety session seeded with prior decisions and attempts",
     handle_safety_load_context,
     _schema(project_hash=_STR, decisions={"type": "array"}, attempts={"type": "array"},
             stack={"type": "object"})),
    ("safety_confirm_intent", "Record that the task intent was clarified with the user",
     handle_safety_confirm_intent, _schema(("session_id",), session_id=_STR)),
    ("safety_log_decision", "Record a decision and check it against earlier ones",
     handle_safety_log_decision,
     _schema(("session_id", "decision", "reasoning", "impact"), session_id=_STR, decision=_STR,
             reasoning=_STR, impact=_STR, category=_STR, alternatives=_STR_LIST,
             related_files=_STR_LIST, made_by=_STR)),
    ("safety_log_attempt", "Record an attempted fix and whether it worked",
     handle_safety_log_attempt,
     _schema(("session_id", "issue", "approach", "result"), session_id=_STR, issue=_STR,
             approach=_STR, result=_STR, code_or_command=_STR, error_message=_STR,
             lessons_learned=_STR)),
    ("safety_define_scope", "Lock the files, directories and actions a task may touch",
     handle_safety_define_scope,
     _schema(("session_id", "request"), session_id=_STR, request=_STR, allowed_files=_STR_LIST,
             allowed_directories=_STR_LIST, allowed_actions=_STR_LIST, forbidden_files=_STR_LIST,
             forbidden_patterns=_STR_LIST, max_new_files={"type": "integer"},
             max_modified_files={"type": "integer"},
             can_delete_files=_BOOL, can_modify_dependencies=_BOOL, can_modify_schema=_BOOL)),
    ("safety_check_action", "Check an intended action against scope, decisions and failed attempts",
     handle_safety_check_action,
     _schema(("session_id", "action_type"), session_id=_STR, action_type=_STR, target_file=_STR,
             issue=_STR, approach=_STR)),
    ("safety_status", "Safety gates and score for a safety session", handle_safety_status,
     _schema(("session_id",), session_id=_STR)),
    ("engineering_start", "Start an engineering build session", handle_engineering_start,
     _schema(("project_name",), project_name=_STR, project_description=_STR, team_id=_STR,
             project_id=_STR)),
    ("engineering_answer", "Answer the current scoping wizard step", handle_engineering_answer,
     _schema(("session_id", "step_id", "answer"), session_id=_STR, step_id=_STR, answer={})),
    ("engineering_advance", "Advance to the next phase", handle_engineering_advance,
     _schema(("session_id",), session_id=_STR)),
    ("engineering_pass_gate", "Mark the current phase gate as passed", handle_engineering_pass_gate,
     _schema(("session_id",), session_id=_STR, artifacts=_STR_LIST, approved_by=_STR)),
    ("engineering_request_approval", "Ask a human to approve the current phase",
     handle_engineering_request_approval, _schema(("session_id",), session_id=_STR, reason=_STR)),
    ("engineering_approval", "Approve or reject the current phase", handle_engineering_approval,
     _schema(("session_id", "approved"), session_id=_STR, approved=_BOOL, feedback=_STR,
             approved_by=_STR)),
    ("engineering_store_artifact", "Store a text artifact on the session",
     handle_engineering_store_artifact,
     _schema(("session_id", "artifact", "content"), session_id=_STR, artifact=_STR, content=_STR)),
    ("engineering_add_node", "Add a node to the dependency graph", handle_engineering_add_node,
     _schema(("session_id", "node_id", "node_type", "name"), session_id=_STR, node_id=_STR,
             node_type=_STR, name=_STR, path=_STR)),
    ("engineering_add_edge", "Add a dependency edge (source depends on target)",
     handle_engineering_add_edge,
     _schema(("session_id", "source_id", "target_id"), session_id=_STR, source_id=_STR,
             target_id=_STR, relation=_STR)),
    ("engineering_impact", "Analyze the impact of changing a node", handle_engineering_impact,
     _schema(("session_id", "node_id"), session_id=_STR, node_id=_STR)),
    ("engineering_progress", "Per-phase progress, blockers and next action",
     handle_engineering_progress, _schema(("session_id",), session_id=_STR)),
)


def create_server(services, stdin=None, stdout=None) -> MCPServer:
    """Create the gate server with every tool bound to ``services``."""
    server = MCPServer(name="patterngate", version="1.0.0", stdin=stdin, stdout=stdout)
    for name, description, handler, schema in TOOLS:
        server.register_tool(name, description, schema, functools.partial(handler, services))
    return server


def main():
    from patterngate.runtime import build_services

    parser = argparse.ArgumentParser(description="PatternGate MCP server (stdio)")
    parser.add_argument("--db-path", default=None)
    parser.add_argument("--config", default=None)
    args = parser.parse_args()

    config = load_config(args.config)
    configure_logging(config, stream=sys.stderr)
    services = build_services(config, db_path=args.db_path)
    create_server(services).run()


if __name__ == "__main__":
    main()
