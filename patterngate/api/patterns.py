#!/usr/bin/env python3
# CUI // SP-CTI
"""Enforcement protocol API blueprint: discover, validate, session lookup."""

from flask import Blueprint, current_app, jsonify, request

patterns_api = Blueprint("patterns_api", __name__, url_prefix="/api/patterns")

DISCOVER_FIELDS = (
    "keywords", "files", "project_hash", "project_name", "session_id",
    "context_loaded", "scope_confirmed", "team_id", "device_id",
)
VALIDATE_FIELDS = (
    "feature_description", "files_modified", "tests_written", "tests_run", "tests_passed",
    "typescript_passed", "safety_session_id", "context_was_loaded", "intent_was_clarified",
    "scope_was_locked", "approach", "env_vars_added", "schema_modified",
)


def _gate():
    return current_app.config["PATTERNGATE_SERVICES"].gate


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@patterns_api.route("/discover", methods=["POST"])
def discover():
    data = _body()
    task = (data.get("task") or "").strip()
    if not task:
        return jsonify({"error": "task is required"}), 400
    kwargs = {k: data[k] for k in DISCOVER_FIELDS if k in data}
    return jsonify(_gate().discover(task, **kwargs))


@patterns_api.route("/validate", methods=["POST"])
def validate():
    data = _body()
    token = data.get("session_token")
    feature = data.get("feature_name")
    if not token or not feature:
        return jsonify({"error": "session_token and feature_name are required"}), 400
    kwargs = {k: data[k] for k in VALIDATE_FIELDS if k in data}
    return jsonify(_gate().validate(token, feature, **kwargs))


@patterns_api.route("/sessions/<token>")
def get_session(token):
    session = _gate().get_session(token)
    if session is None:
        return jsonify({"error": "Session not found"}), 404
    return jsonify(session)


@patterns_api.route("/stats")
def stats():
    return jsonify(_gate().get_stats())
