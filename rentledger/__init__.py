# rentledger/__init__.py
from __future__ import annotations

import logging
import os
from typing import Any, Optional

from flask import Flask, jsonify
from werkzeug.middleware.proxy_fix import ProxyFix

from .errors import register_error_handlers
from .extensions import cors, init_extensions
from .ledger.cache import SummaryCache
from .ledger.events import register_ledger_events
from .reconciliation.service import ReconciliationService
from .routes import BLUEPRINTS


# --- Config ------------------------------------------------------------------
def _get_allowed_origins() -> list[str]:
    """Allowed CORS origins from env, plus local dev servers."""
    default = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]
    # Support comma-separated list in env
    extra = os.getenv("CORS_ALLOWED_ORIGINS", "")
    extra_list = [o.strip() for o in extra.split(",") if o.strip()]
    return sorted(set(default + extra_list))


def _configure_logging(app: Flask) -> None:
    """JSON logs to stdout."""
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    app.logger.setLevel(level)
    root = logging.getLogger()
    root.setLevel(level)

    # avoid duplicate handlers in reloaders
    if not any(isinstance(h, logging.StreamHandler) for h in root.handlers):
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            fmt='{"ts":"%(asctime)s","level":"%(levelname)s","msg":"%(message)s","name":"%(name)s"}',
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )
        handler.setFormatter(formatter)
        root.addHandler(handler)


def _configure_cors(app: Flask) -> None:
    cors.init_app(
        app,
        resources={r"/api/*": {"origins": _get_allowed_origins()}},
        supports_credentials=True,
        methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With", "X-KCB-Webhook-Secret"],
        expose_headers=["Content-Type"],
        max_age=86400,
    )


def _configure_proxy(app: Flask) -> None:
    """Respect X-Forwarded-* from the load balancer."""
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)  # type: ignore


def _load_config(app: Flask, config_object: Optional[str | Any]) -> None:
    if config_object is None:
        config_object = os.getenv("CONFIG_CLASS", "rentledger.config.Config")

    if isinstance(config_object, str):
        # load "package.ClassName"
        module, _, cls = config_object.rpartition(".")
        config_object = getattr(__import__(module, fromlist=[cls]), cls)

    validate = getattr(config_object, "validate", None)
    if callable(validate):
        validate()
    app.config.from_object(config_object)
    app.config.setdefault("API_PREFIX", "/api")


def _register_blueprints(app: Flask) -> None:
    for bp in BLUEPRINTS:
        app.register_blueprint(bp)
        app.logger.debug("Registered blueprint %s at %s", bp.name, bp.url_prefix or "")


def _register_cli(app: Flask) -> None:
    from .cli import ledger_cli

    app.cli.add_command(ledger_cli)


# --- Application Factory ------------------------------------------------------
def create_app(config_object: Optional[str | Any] = None) -> Flask:
    """
    Standard Flask application factory.

    `config_object` may be:
      - a config object
      - dotted path to a config class (e.g., "rentledger.config.ProductionConfig")
      - None (then we'll try CONFIG_CLASS env or default to rentledger.config.Config)
    """
    app = Flask(__name__, instance_relative_config=True)
    _load_config(app, config_object)

    # Core middleware/logging/CORS
    _configure_logging(app)
    _configure_proxy(app)
    _configure_cors(app)

    # Extensions, ledger notifications, background polling
    init_extensions(app)
    register_ledger_events()
    SummaryCache(app)
    ReconciliationService(app)

    register_error_handlers(app)
    _register_blueprints(app)
    _register_cli(app)

    @app.get("/")
    def root():
        return jsonify({"service": "rentledger", "message": "See /api/health"}), 200

    return app
