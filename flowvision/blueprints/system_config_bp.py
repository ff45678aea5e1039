"""
FlowVision
System Configuration Blueprint (admin only).

Endpoints:
    /api/v1/admin/system-config              GET     list (?category, ?environment)
                                             POST    create
                                             PUT     update (validated + dry run)
                                             DELETE  deactivate (?category, ?key, ?environment)
    /api/v1/admin/system-config/validate     POST    validate + dry run, never persists
    /api/v1/admin/system-config/history      GET     ?category, ?key, ?limit (max 100)
    /api/v1/admin/system-config/seed         POST    create missing defaults
    /api/v1/admin/system-config/cache        GET     cache statistics
                                             DELETE  clear cache
"""

from flask import Blueprint, jsonify, request

from flowvision.auth import current_user, require_role
from flowvision.services import config_validator
from flowvision.services.config_validator import HISTORY_DEFAULT_LIMIT, HISTORY_MAX_LIMIT
from flowvision.services.system_config_service import get_system_config
from flowvision.utils.errors import E, api_error

system_config_bp = Blueprint("system_config", __name__, url_prefix="/api/v1/admin/system-config")

# ── Rate limiting ─────────────────────────────────────────────────────────
from flowvision import limiter  # noqa: E402

_admin_write_limit = limiter.shared_limit("60/minute", scope="admin_config_write")


def _required(data: dict, *names) -> list[str]:
    return [n for n in names if n not in data or data[n] is None or data[n] == ""]


@system_config_bp.route("", methods=["GET"])
@require_role("admin")
def list_configurations():
    configs = get_system_config().list_configs(
        category=request.args.get("category"),
        environment=request.args.get("environment"),
    )
    return jsonify({"items": configs, "total": len(configs)})


@system_config_bp.route("", methods=["POST"])
@require_role("admin")
@_admin_write_limit
def create_configuration():
    """Create a configuration row.

    Body: {category, key, value, environment?, description?, validation?,
           constraints?, tags?}
    """
    data = request.get_json(silent=True) or {}
    missing = _required(data, "category", "key", "value")
    if missing:
        return api_error(E.VALIDATION_REQUIRED, f"Missing required fields: {', '.join(missing)}")

    result = get_system_config().create_config(
        data["category"],
        data["key"],
        data["value"],
        current_user().email,
        environment=data.get("environment") or "all",
        description=data.get("description"),
        validation=data.get("validation"),
        constraints=data.get("constraints"),
        tags=data.get("tags"),
    )
    return jsonify({"success": True, **result}), 201


@system_config_bp.route("", methods=["PUT"])
@require_role("admin")
@_admin_write_limit
def update_configuration():
    """Explicit write of a new value.

    Body: {category, key, value, environment?, description?}
    Validation or dry-run failure → 422 with per-field details; nothing is saved.
    """
    data = request.get_json(silent=True) or {}
    missing = _required(data, "category", "key")
    if missing or "value" not in data:
        return api_error(
            E.VALIDATION_REQUIRED,
            f"Missing required fields: {', '.join(missing + ([] if 'value' in data else ['value']))}",
        )

    result = get_system_config().set_config(
        data["category"],
        data["key"],
        data["value"],
        current_user().email,
        environment=data.get("environment"),
        description=data.get("description"),
    )
    return jsonify({"success": True, "message": "Configuration updated successfully", **result})


@system_config_bp.route("", methods=["DELETE"])
@require_role("admin")
@_admin_write_limit
def deactivate_configuration():
    category = request.args.get("category")
    key = request.args.get("key")
    if not category or not key:
        return api_error(E.VALIDATION_REQUIRED, "category and key are required")
    config = get_system_config().deactivate_config(
        category, key, current_user().email, environment=request.args.get("environment"),
    )
    return jsonify({"success": True, "message": "Configuration deactivated successfully", "config": config})


@system_config_bp.route("/validate", methods=["POST"])
@require_role("admin")
def validate_configuration():
    """Validate a candidate value; runs the dry run only when validation passes.

    Body: {category, key, value, existingValue?, environment?}
    """
    data = request.get_json(silent=True) or {}
    missing = _required(data, "category", "key")
    if missing or "value" not in data:
        return api_error(E.VALIDATION_REQUIRED, "Missing required fields: category, key, value")

    result = config_validator.validate_configuration(
        data["category"],
        data["key"],
        data["value"],
        data.get("existingValue"),
        environment=data.get("environment"),
    )
    test_results = None
    if result.valid:
        test_results = config_validator.test_configuration(data["category"], data["key"], data["value"])
    return jsonify({"success": True, "validation": result.to_dict(), "testResults": test_results})


@system_config_bp.route("/history", methods=["GET"])
@require_role("admin")
def configuration_history():
    category = request.args.get("category") or None
    key = request.args.get("key") or None
    limit = request.args.get("limit", HISTORY_DEFAULT_LIMIT, type=int)
    effective_limit = max(1, min(limit, HISTORY_MAX_LIMIT))
    history = config_validator.get_configuration_history(category, key, effective_limit)
    return jsonify({
        "success": True,
        "history": history,
        "filters": {"category": category, "key": key, "limit": effective_limit},
    })


@system_config_bp.route("/seed", methods=["POST"])
@require_role("admin")
@_admin_write_limit
def seed_configuration():
    return jsonify(get_system_config().seed_defaults(current_user().email))


@system_config_bp.route("/cache", methods=["GET"])
@require_role("admin")
def cache_stats():
    return jsonify(get_system_config().cache_stats())


@system_config_bp.route("/cache", methods=["DELETE"])
@require_role("admin")
def clear_cache():
    get_system_config().clear_cache()
    return jsonify({"success": True, "message": "Configuration cache cleared"})
