"""
FlowVision
Flask Application Factory.

Usage:
    from flowvision import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from flowvision.auth import init_auth
from flowvision.config import config
from flowvision.core.exceptions import (
    ConflictError,
    NotFoundError,
    ProviderError,
    TransientError,
    UnauthorizedError,
    ValidationError,
)
from flowvision.middleware.logging_config import configure_logging
from flowvision.middleware.timing import init_request_timing
from flowvision.models import db
from flowvision.utils.errors import E, api_error

logger = logging.getLogger(__name__)

migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit — apply per-blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),  # Redis in production, memory for dev
)


def _register_error_handlers(app):
    """Map service exceptions to the standard JSON error body."""

    @app.errorhandler(NotFoundError)
    def _not_found(e):
        logger.debug("Not found: %s", e)
        return api_error(E.NOT_FOUND, f"{e.resource} not found")

    @app.errorhandler(ValidationError)
    def _validation(e):
        return api_error(E.VALIDATION_INVALID, str(e), details=e.details or None)

    @app.errorhandler(ConflictError)
    def _conflict(e):
        return api_error(E.CONFLICT_DUPLICATE, str(e))

    @app.errorhandler(UnauthorizedError)
    def _forbidden(e):
        return api_error(E.FORBIDDEN, str(e))

    @app.errorhandler(ProviderError)
    def _provider(e):
        logger.error("AI provider error (%s/%s): %s", e.provider, e.model, e)
        return api_error(E.PROVIDER, "AI provider request failed")

    @app.errorhandler(TransientError)
    def _transient(e):
        logger.warning("Transient failure: %s", e)
        return api_error(E.TRANSIENT, str(e))

    @app.errorhandler(404)
    def _route_not_found(e):
        return {"error": "Not found", "code": E.NOT_FOUND, "path": request.path}, 404

    @app.errorhandler(405)
    def _method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def _rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def _server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": E.INTERNAL}, 500


def _init_ai(app):
    """Build the gateway, the operation queue and its audit listener."""
    from flowvision.ai.audit import OperationAuditRecorder
    from flowvision.ai.gateway import LLMGateway
    from flowvision.ai.operation_queue import AIOperationQueue
    from flowvision.ai.operations import OperationExecutor
    from flowvision.services.system_config_service import SystemConfigService

    system_config = SystemConfigService(
        app.config["CONFIG_ENVIRONMENT"],
        ttl_seconds=app.config["CONFIG_CACHE_TTL_SECONDS"],
        default_timeout_seconds=app.config["AI_DEFAULT_TIMEOUT_SECONDS"],
    )
    gateway = LLMGateway(
        api_key=app.config.get("OPENAI_API_KEY", ""),
        default_model=app.config["LLM_DEFAULT_CHAT_MODEL"],
    )
    queue = AIOperationQueue(
        OperationExecutor(gateway),
        settings_provider=system_config.operation_settings,
        max_workers=app.config["AI_QUEUE_WORKERS"],
        retention_seconds=app.config["AI_RESULT_RETENTION_SECONDS"],
        default_timeout_seconds=app.config["AI_DEFAULT_TIMEOUT_SECONDS"],
        app=app,
    )
    queue.add_listener(OperationAuditRecorder(app))

    app.extensions["system_config"] = system_config
    app.extensions["ai_gateway"] = gateway
    app.extensions["ai_queue"] = queue

    if app.config["AI_QUEUE_AUTOSTART"]:
        queue.start()


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    config_class = config[config_name]
    app.config.from_object(config_class() if config_name == "production" else config_class)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Authentication & CSRF middleware ──────────────────────────────────
    init_auth(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    app.config.setdefault("MAX_CONTENT_LENGTH", 1 * 1024 * 1024)  # 1 MB

    # ── Import all models so Alembic can detect them ─────────────────────
    from flowvision.models import ai as _ai_models                  # noqa: F401
    from flowvision.models import initiative as _initiative_models  # noqa: F401
    from flowvision.models import system_config as _config_models   # noqa: F401

    # ── Auto-create tables for SQLite dev/test (PostgreSQL uses migrations) ─
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        if ":memory:" not in app.config["SQLALCHEMY_DATABASE_URI"]:
            os.makedirs(app.instance_path, exist_ok=True)
        with app.app_context():
            db.create_all()

    # ── Blueprints ───────────────────────────────────────────────────────
    from flowvision.blueprints.ai_bp import ai_bp
    from flowvision.blueprints.health_bp import health_bp
    from flowvision.blueprints.initiative_bp import initiative_bp
    from flowvision.blueprints.system_config_bp import system_config_bp

    app.register_blueprint(ai_bp)
    app.register_blueprint(health_bp)
    app.register_blueprint(initiative_bp)
    app.register_blueprint(system_config_bp)

    _register_error_handlers(app)
    _init_ai(app)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-system-config")
    def seed_system_config_cmd():
        """Create missing default system configurations; existing values are kept."""
        summary = app.extensions["system_config"].seed_defaults()
        logger.info(
            "Seeded system configuration: %s created, %s refreshed (%s defaults).",
            summary["created"], summary["updated"], summary["total"],
        )

    logger.info("FlowVision app created (config=%s)", config_name)
    return app
