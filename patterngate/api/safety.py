#!/usr/bin/env python3
# CUI // SP-CTI
"""Safety journal API blueprint (read-only)."""

from flask import Blueprint, Response, current_app, jsonify

safety_api = Blueprint("safety_api", __name__, url_prefix="/api/safety")


def _journal():
    return current_app.config["PATTERNGATE_SERVICES"].journal


@safety_api.route("/sessions/<session_id>/status")
def status(session_id):
    result = _journal().get_status(session_id)
    if not result["found"]:
        return jsonify(result), 404
    return jsonify(result)


@safety_api.route("/sessions/<session_id>/decisions.md")
def decisions_markdown(session_id):
    if _journal().get_gates(session_id) is None:
        return jsonify({"error": "Session not found"}), 404
    exported = _journal().export_markdown(session_id)
    return Response(exported["decisions"], mimetype="text/markdown")
