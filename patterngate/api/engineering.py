#!/usr/bin/env python3
# CUI // SP-CTI
"""Engineering session admin API blueprint.

Listing, inspection and the pause/resume/cancel lifecycle controls.
Refused transitions return 409 with the refusal code and reason.
"""

from flask import Blueprint, current_app, jsonify, request

from patterngate.engineering.models import TransitionRefusal

engineering_api = Blueprint("engineering_api", __name__, url_prefix="/api/engineering")

MAX_LIMIT = 200


def _orchestrator():
    return current_app.config["PATTERNGATE_SERVICES"].orchestrator


def _respond(result):
    if result.success:
        return jsonify(result.to_dict())
    status = 404 if result.refusal == TransitionRefusal.SESSION_NOT_FOUND else 409
    return jsonify(result.to_dict()), status


@engineering_api.route("/sessions")
def list_sessions():
    try:
        limit = min(int(request.args.get("limit", "50")), MAX_LIMIT)
        offset = max(int(request.args.get("offset", "0")), 0)
    except ValueError:
        return jsonify({"error": "limit and offset must be integers"}), 400
    return jsonify(_orchestrator().list_sessions(
        status=request.args.get("status"),
        phase=request.args.get("phase"),
        limit=limit,
        offset=offset,
    ))


@engineering_api.route("/sessions/<session_id>")
def get_session(session_id):
    session = _orchestrator().get_session(session_id)
    if session is None:
        return jsonify({"error": "Session not found"}), 404
    return jsonify(session.to_dict())


@engineering_api.route("/sessions/<session_id>/progress")
def get_progress(session_id):
    progress = _orchestrator().get_progress(session_id)
    if progress is None:
        return jsonify({"error": "Session not found"}), 404
    return jsonify(progress)


@engineering_api.route("/sessions/<session_id>/pause", methods=["POST"])
def pause(session_id):
    return _respond(_orchestrator().pause(session_id))


@engineering_api.route("/sessions/<session_id>/resume", methods=["POST"])
def resume(session_id):
    return _respond(_orchestrator().resume(session_id))


@engineering_api.route("/sessions/<session_id>/cancel", methods=["POST"])
def cancel(session_id):
    data = request.get_json(silent=True) or {}
    return _respond(_orchestrator().cancel(session_id, data.get("reason")))


@engineering_api.route("/stats")
def stats():
    return jsonify(_orchestrator().get_stats())
