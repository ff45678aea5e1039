"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        — summary (database, AI queue, configuration store)
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — detailed dependency status
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from flowvision.models import db
from flowvision.services.system_config_service import get_system_config

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


def _check_database() -> dict:
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        return {"status": "ok", "latency_ms": round(db_ms, 1)}
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Health check — database failed: %s", exc)
        return {"status": "error", "detail": str(exc)}


def _check_queue() -> dict:
    queue = current_app.extensions.get("ai_queue")
    if queue is None:
        return {"status": "error", "detail": "queue not initialised"}
    status = queue.queue_status()
    status["status"] = "ok" if status["healthy"] else "degraded"
    status["running_workers"] = queue.is_running
    return status


def _collect() -> tuple[dict, bool]:
    checks = {
        "database": _check_database(),
        "ai_queue": _check_queue(),
        "system_config": get_system_config().health_check(),
    }
    gateway = current_app.extensions.get("ai_gateway")
    checks["ai_provider"] = {
        "status": "ok",
        "providers": gateway.available_providers if gateway else [],
        "default_model": gateway.default_model if gateway else None,
    }
    healthy = (
        checks["database"]["status"] == "ok"
        and checks["system_config"]["status"] == "healthy"
        and checks["ai_queue"]["status"] != "error"
    )
    return checks, healthy


@health_bp.route("", methods=["GET"])
def health():
    checks, healthy = _collect()
    return jsonify({
        "status": "ok" if healthy else "degraded",
        "app": "FlowVision",
        "queue_healthy": checks["ai_queue"].get("healthy", False),
    }), 200 if healthy else 503


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe — always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check with dependency status."""
    checks, healthy = _collect()
    checks["app"] = {
        "name": "FlowVision",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }
    return jsonify({
        "status": "healthy" if healthy else "degraded",
        "checks": checks,
    }), 200 if healthy else 503
