"""
FlowVision
Issues & Initiatives Blueprint.

Endpoints:
    ISSUES       /api/v1/issues                          GET, POST
                 /api/v1/issues/<id>/vote                POST
                 /api/v1/issues/<id>/archive             PATCH

    INITIATIVES  /api/v1/initiatives                     GET, POST
                 /api/v1/initiatives/<id>                GET, PATCH
                 /api/v1/initiatives/from-issues         POST
                 /api/v1/initiatives/reorder             POST

    SCORING      /api/v1/scoring/preview                 POST

Service layer owns business logic and commits; the user is passed explicitly.
"""

from flask import Blueprint, current_app, jsonify, request

from flowvision.auth import current_user, require_role
from flowvision.services import initiative_service, issue_service
from flowvision.services.system_config_service import get_system_config
from flowvision.utils.errors import E, api_error
from flowvision.utils.scoring import score_initiative

initiative_bp = Blueprint("initiatives", __name__, url_prefix="/api/v1")

# ── Rate limiting ─────────────────────────────────────────────────────────
from flowvision import limiter  # noqa: E402

_ai_generate_limit = limiter.shared_limit("30/minute", scope="ai_generate")


# ══════════════════════════════════════════════════════════════════════════════
# ISSUES
# ══════════════════════════════════════════════════════════════════════════════

@initiative_bp.route("/issues", methods=["GET"])
def list_issues():
    status = request.args.get("status", "open")
    issues = issue_service.list_issues(
        current_user(),
        status=None if status == "all" else status,
        cluster_id=request.args.get("cluster_id", type=int),
    )
    return jsonify({"items": issues, "total": len(issues)})


@initiative_bp.route("/issues", methods=["POST"])
@require_role("editor")
def create_issue():
    issue = issue_service.create_issue(current_user(), request.get_json(silent=True) or {})
    return jsonify(issue), 201


@initiative_bp.route("/issues/<int:issue_id>/vote", methods=["POST"])
def vote_issue(issue_id):
    return jsonify(issue_service.vote_issue(current_user(), issue_id))


@initiative_bp.route("/issues/<int:issue_id>/archive", methods=["PATCH"])
@require_role("editor")
def archive_issue(issue_id):
    return jsonify(issue_service.archive_issue(current_user(), issue_id))


# ══════════════════════════════════════════════════════════════════════════════
# INITIATIVES
# ══════════════════════════════════════════════════════════════════════════════

@initiative_bp.route("/initiatives", methods=["GET"])
def list_initiatives():
    items = initiative_service.list_initiatives(current_user(), status=request.args.get("status"))
    return jsonify({"items": items, "total": len(items)})


@initiative_bp.route("/initiatives", methods=["POST"])
@require_role("editor")
def create_initiative():
    """Body: {title, problem?, goal?, kpis?, cost?, gain?, business_profile?}"""
    initiative = initiative_service.create_initiative(current_user(), request.get_json(silent=True) or {})
    return jsonify(initiative), 201


@initiative_bp.route("/initiatives/<int:initiative_id>", methods=["GET"])
def get_initiative(initiative_id):
    return jsonify(initiative_service.get_initiative(current_user(), initiative_id))


@initiative_bp.route("/initiatives/<int:initiative_id>", methods=["PATCH"])
@require_role("editor")
def update_initiative(initiative_id):
    data = request.get_json(silent=True) or {}
    for name in ("difficulty", "roi", "priority_score"):
        if name in data:
            return api_error(E.VALIDATION_INVALID, f"{name} is derived and cannot be set directly")
    return jsonify(initiative_service.update_initiative(current_user(), initiative_id, data))


@initiative_bp.route("/initiatives/reorder", methods=["POST"])
@require_role("editor")
def reorder_initiatives():
    """Body: {ids: [int, ...]} in the desired board order."""
    data = request.get_json(silent=True) or {}
    items = initiative_service.reorder_initiatives(current_user(), data.get("ids"))
    return jsonify({"items": items, "total": len(items)})


@initiative_bp.route("/initiatives/from-issues", methods=["POST"])
@require_role("editor")
@_ai_generate_limit
def create_from_issues():
    """Draft an initiative from issues with the AI provider, then score it.

    Body: {issue_ids: [int, ...], business_profile?}
    """
    data = request.get_json(silent=True) or {}
    if not data.get("issue_ids"):
        return api_error(E.VALIDATION_REQUIRED, "issue_ids is required")
    initiative = initiative_service.create_from_issues(
        current_user(),
        data["issue_ids"],
        gateway=current_app.extensions["ai_gateway"],
        settings=get_system_config().operation_settings("initiative_generation"),
        business_profile=data.get("business_profile"),
    )
    return jsonify(initiative), 201


# ══════════════════════════════════════════════════════════════════════════════
# SCORING
# ══════════════════════════════════════════════════════════════════════════════

@initiative_bp.route("/scoring/preview", methods=["POST"])
def preview_scores():
    """Score text/cost/gain without storing anything.

    Body: {text, cost?, gain?, business_profile?}
    """
    data = request.get_json(silent=True) or {}
    card = score_initiative(
        data.get("text", ""),
        data.get("business_profile"),
        cost=data.get("cost", 0),
        gain=data.get("gain", 0),
    )
    return jsonify(card.to_dict())
