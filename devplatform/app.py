# devplatform/app.py

"""Developer platform API application entrypoint.

This module creates and configures the Flask application: settings,
logging, CORS for local dashboards, the process-wide event broker,
blueprints, error handlers and CLI commands. Run it directly to start
the development server.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from flask import Flask
from flask_cors import CORS

from devplatform.blueprints.cron_jobs.cron_jobs import cron_jobs_bp
from devplatform.blueprints.docs.docs import docs_bp
from devplatform.blueprints.flags.evaluate import evaluate_bp
from devplatform.blueprints.flags.flags_admin import flags_admin_bp
from devplatform.blueprints.organizations.organizations import organizations_bp
from devplatform.blueprints.system.health import health_bp
from devplatform.commands import register_commands
from devplatform.config import load_settings
from devplatform.errors.handlers import register_error_handlers
from devplatform.logging_config import setup_logging
from devplatform.services.event_broker import EventBroker


def create_app(overrides: Optional[Mapping[str, Any]] = None) -> Flask:
    """Create and configure the Flask application instance.

    Args:
        overrides: Settings applied after the environment (tests use this).

    Returns:
        Flask: A configured Flask application instance.
    """
    app = Flask(__name__)
    app.config.update(load_settings())
    if overrides:
        app.config.update(overrides)

    setup_logging(app.config["LOG_LEVEL"], app.config["LOG_FORMAT"])

    # Allow local React dashboards to call this API directly.
    # In production, CORS should be enforced at the reverse proxy layer.
    CORS(
        app,
        resources={r"/*": {"origins": app.config["CORS_ORIGINS"]}},
        supports_credentials=False,
        allow_headers=["Content-Type", "X-Api-Key"],
        methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    )

    # One broker per process; stream endpoints and services share it.
    app.extensions["event_broker"] = EventBroker()

    # Register JSON error handlers (400/401/404/409/500).
    register_error_handlers(app)

    # System & docs
    app.register_blueprint(health_bp)         # /health/
    app.register_blueprint(docs_bp)           # /openapi.yaml, /schemas/*, /docs

    # Tenants
    app.register_blueprint(organizations_bp)  # /organizations/*

    # Feature flags (admin + runtime evaluation)
    app.register_blueprint(flags_admin_bp)    # /feature-flags/*
    app.register_blueprint(evaluate_bp)       # /feature-flags/evaluate

    # Webhook cron jobs
    app.register_blueprint(cron_jobs_bp)      # /cron-jobs/*

    register_commands(app)

    return app


if __name__ == "__main__":
    app = create_app()

    app.run(
        host="0.0.0.0",
        port=app.config["BACKEND_PORT"],
        debug=app.config["DEBUG"],
        threaded=True,
    )
