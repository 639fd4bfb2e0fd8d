#!/usr/bin/env python3
# CUI // SP-CTI
"""PatternGate admin HTTP API (Flask app factory).

Usage:
    flask --app patterngate.api.app:create_app run
"""

import logging

from flask import Flask, jsonify

from patterngate.api.engineering import engineering_api
from patterngate.api.patterns import patterns_api
from patterngate.api.safety import safety_api
from patterngate.resilience.errors import PatternGateError, TransientError

logger = logging.getLogger("patterngate.api")

SERVICES_KEY = "PATTERNGATE_SERVICES"


def create_app(config=None, services=None) -> Flask:
    """Build the app. ``services`` defaults to build_services(config)."""
    if services is None:
        from patterngate.runtime import build_services
        services = build_services(config)

    app = Flask(__name__)
    app.config[SERVICES_KEY] = services

    app.register_blueprint(patterns_api)
    app.register_blueprint(engineering_api)
    app.register_blueprint(safety_api)

    @app.errorhandler(PatternGateError)
    def handle_patterngate_error(exc):
        status = 503 if isinstance(exc, TransientError) else 500
        logger.error("Request failed (%s): %s", status, exc)
        return jsonify(exc.to_dict()), status

    @app.route("/health")
    def health():
        return jsonify({"status": "ok"})

    return app
