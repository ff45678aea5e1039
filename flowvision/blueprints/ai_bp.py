"""
FlowVision
AI Blueprint: async operation queue.

Endpoints:
    QUEUE    /api/v1/ai/async                           POST
             /api/v1/ai/cancel/<operation_id>           POST
             /api/v1/ai/progress/<operation_id>         GET
             /api/v1/ai/result/<operation_id>           GET
             /api/v1/ai/queue-status                    GET

    AUDIT    /api/v1/ai/operations                      GET   (admin)
"""

from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, request

from flowvision.ai.audit import list_operation_records
from flowvision.ai.operation_queue import AIOperation
from flowvision.auth import current_user, require_role
from flowvision.utils.errors import E, api_error

ai_bp = Blueprint("ai", __name__, url_prefix="/api/v1/ai")

# ── Rate limiting ─────────────────────────────────────────────────────────
from flowvision import limiter  # noqa: E402

_ai_generate_limit = limiter.shared_limit("30/minute", scope="ai_generate")
_ai_query_limit = limiter.shared_limit("120/minute", scope="ai_query")


def _get_queue():
    return current_app.extensions["ai_queue"]


# ══════════════════════════════════════════════════════════════════════════════
# QUEUE
# ══════════════════════════════════════════════════════════════════════════════

@ai_bp.route("/async", methods=["POST"])
@_ai_generate_limit
def queue_async_operation():
    """Queue an AI operation and return immediately (202).

    Body: {type, input, context?, priority?}
    """
    data = request.get_json(silent=True) or {}
    op_type = data.get("type")
    if not op_type:
        return api_error(E.VALIDATION_REQUIRED, "type is required")
    if data.get("input") in (None, "", [], {}):
        return api_error(E.VALIDATION_REQUIRED, "input is required")
    context = data.get("context") or {}
    if not isinstance(context, dict):
        return api_error(E.VALIDATION_INVALID, "context must be an object")

    user = current_user()
    op_id = _get_queue().queue_operation(AIOperation(
        type=op_type,
        input=data["input"],
        context=context,
        priority=data.get("priority") or "normal",
        requested_by=user.email,
        tenant_id=user.tenant_id,
    ))
    op = _get_queue().get_operation(op_id)
    return jsonify({
        "operationId": op_id,
        "status": op.status if op else "queued",
        "message": "Operation queued for processing",
        "estimatedDuration": op.estimated_duration if op else None,
        "type": op_type,
        "cached": bool(op and op.cached),
    }), 202


@ai_bp.route("/cancel/<operation_id>", methods=["POST"])
@_ai_query_limit
def cancel_operation(operation_id):
    """Cancel a queued or running operation."""
    if not _get_queue().cancel_operation(operation_id, tenant_id=current_user().tenant_id):
        return api_error(E.NOT_FOUND, "Operation not found or already completed")
    return jsonify({
        "operationId": operation_id,
        "status": "cancelled",
        "message": "Operation cancelled successfully",
        "cancelledAt": datetime.now(timezone.utc).isoformat(),
    })


@ai_bp.route("/progress/<operation_id>", methods=["GET"])
@_ai_query_limit
def get_progress(operation_id):
    progress = _get_queue().get_progress(operation_id, tenant_id=current_user().tenant_id)
    if progress is None:
        return api_error(E.NOT_FOUND, "Operation not found")
    return jsonify(progress)


@ai_bp.route("/result/<operation_id>", methods=["GET"])
@_ai_query_limit
def get_result(operation_id):
    result = _get_queue().get_result(operation_id, tenant_id=current_user().tenant_id)
    if result is None:
        return api_error(E.NOT_FOUND, "Operation not found")
    return jsonify(result)


@ai_bp.route("/queue-status", methods=["GET"])
@_ai_query_limit
def queue_status():
    status = _get_queue().queue_status()
    status["timestamp"] = datetime.now(timezone.utc).isoformat()
    return jsonify(status)


# ══════════════════════════════════════════════════════════════════════════════
# AUDIT
# ══════════════════════════════════════════════════════════════════════════════

@ai_bp.route("/operations", methods=["GET"])
@require_role("admin")
def list_operations():
    """Audit trail of AI operations in the caller's tenant."""
    records = list_operation_records(
        tenant_id=current_user().tenant_id,
        status=request.args.get("status"),
        limit=request.args.get("limit", 50, type=int),
    )
    return jsonify({"items": records, "total": len(records)})
