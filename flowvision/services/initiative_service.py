"""Initiative service layer.

Initiatives carry difficulty / roi / priority_score from the scoring engine
and move across the Define → Prioritize → In Progress → Done board.

Rules:
  - The caller passes the AuthenticatedUser explicitly (never read from g).
  - Every query is scoped to user.tenant_id.
  - Only the owner or an admin may mutate an initiative.
  - Scores are recomputed together (Initiative.apply_scores) whenever the
    title, problem, cost or gain change; they are never set directly.
  - db.session.commit() happens only in this file.
"""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import func, select

from flowvision.ai.operation_queue import AIOperation
from flowvision.ai.operations import handle_initiative_generation
from flowvision.core.exceptions import NotFoundError, UnauthorizedError, ValidationError
from flowvision.models import db
from flowvision.models.initiative import INITIATIVE_STATUSES, INITIATIVE_TRANSITIONS, Initiative
from flowvision.services import issue_service
from flowvision.utils.scoring import sanitize, score_initiative

logger = logging.getLogger(__name__)

SCORED_FIELDS = ("title", "problem", "cost", "gain")
TEXT_FIELDS = ("title", "problem", "goal")


def _score_text(initiative: Initiative) -> str:
    return f"{initiative.title} {initiative.problem}".strip()


def _rescore(initiative: Initiative, business_profile=None) -> None:
    card = score_initiative(_score_text(initiative), business_profile,
                            cost=initiative.cost, gain=initiative.gain)
    initiative.apply_scores(card)


def _get_scoped(user, initiative_id: int) -> Initiative:
    initiative = db.session.execute(
        select(Initiative).where(
            Initiative.id == initiative_id,
            Initiative.tenant_id == user.tenant_id,
        )
    ).scalar_one_or_none()
    if initiative is None:
        raise NotFoundError(resource="Initiative", resource_id=initiative_id, tenant_id=user.tenant_id)
    return initiative


def _require_owner(user, initiative: Initiative) -> None:
    if not user.is_admin and initiative.owner != user.email:
        raise UnauthorizedError("Only the owner or an admin can modify this initiative", required_role="admin")


def _next_order_index(user) -> int:
    return db.session.execute(
        select(func.count(Initiative.id)).where(
            Initiative.tenant_id == user.tenant_id,
            Initiative.owner == user.email,
        )
    ).scalar_one()


def _text(data: dict, name: str) -> str:
    value = data.get(name)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be a string", details={name: "must be a string"})
    return value.strip()


def _clean_kpis(value) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValidationError("kpis must be a list", details={"kpis": "must be a list of strings"})
    return [str(k).strip() for k in value if str(k).strip()]


# ── Create / read ────────────────────────────────────────────────────────────


def create_initiative(user, data: dict, *, source_issue_ids: list[int] | None = None) -> dict:
    """Create and score an initiative owned by *user*.

    Args:
        user: AuthenticatedUser creating the initiative (becomes owner).
        data: title (required), problem, goal, kpis, cost, gain,
              business_profile (optional scoring context).
        source_issue_ids: Issues the initiative was drafted from.

    Raises:
        ValidationError: Missing title or malformed fields.
    """
    title = _text(data, "title")
    if not title:
        raise ValidationError("title is required", details={"title": "required"})

    initiative = Initiative(
        tenant_id=user.tenant_id,
        title=title[:200],
        problem=_text(data, "problem"),
        goal=_text(data, "goal"),
        cost=sanitize(data.get("cost")),
        gain=sanitize(data.get("gain")),
        status="Define",
        progress=0,
        owner=user.email,
        order_index=_next_order_index(user),
    )
    initiative.kpis = _clean_kpis(data.get("kpis"))
    initiative.source_issue_ids = source_issue_ids or []
    _rescore(initiative, data.get("business_profile"))

    db.session.add(initiative)
    db.session.commit()
    logger.info(
        "Initiative %s created owner=%s difficulty=%s roi=%s priority=%.1f",
        initiative.id, user.email, initiative.difficulty, initiative.roi, initiative.priority_score,
    )
    return initiative.to_dict()


def list_initiatives(user, *, status: str | None = None) -> list[dict]:
    """Admins see every initiative in the tenant; everyone else sees their own."""
    stmt = select(Initiative).where(Initiative.tenant_id == user.tenant_id)
    if not user.is_admin:
        stmt = stmt.where(Initiative.owner == user.email)
    if status is not None:
        if status not in INITIATIVE_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(INITIATIVE_STATUSES)}")
        stmt = stmt.where(Initiative.status == status)
    stmt = stmt.order_by(Initiative.order_index, Initiative.id)
    return [i.to_dict() for i in db.session.execute(stmt).scalars()]


def get_initiative(user, initiative_id: int) -> dict:
    initiative = _get_scoped(user, initiative_id)
    _require_owner(user, initiative)
    return initiative.to_dict()


# ── Update ───────────────────────────────────────────────────────────────────


def update_initiative(user, initiative_id: int, data: dict) -> dict:
    """Apply a partial update.

    Status changes must follow INITIATIVE_TRANSITIONS. Changing title,
    problem, cost or gain recomputes all three scores.

    Raises:
        NotFoundError, UnauthorizedError, ValidationError
    """
    initiative = _get_scoped(user, initiative_id)
    _require_owner(user, initiative)

    for name in TEXT_FIELDS:
        if name in data:
            value = _text(data, name)
            if name == "title" and not value:
                raise ValidationError("title cannot be empty", details={"title": "required"})
            setattr(initiative, name, value[:200] if name == "title" else value)
    for name in ("cost", "gain"):
        if name in data:
            setattr(initiative, name, sanitize(data[name]))
    if "kpis" in data:
        initiative.kpis = _clean_kpis(data["kpis"])

    if "progress" in data:
        try:
            progress = int(data["progress"])
        except (TypeError, ValueError):
            raise ValidationError("progress must be an integer", details={"progress": "invalid"})
        if not 0 <= progress <= 100:
            raise ValidationError("progress must be between 0 and 100", details={"progress": "out of range"})
        initiative.progress = progress

    new_status = data.get("status")
    if new_status is not None and new_status != initiative.status:
        if new_status not in INITIATIVE_STATUSES:
            raise ValidationError(
                f"status must be one of: {', '.join(INITIATIVE_STATUSES)}",
                details={"status": "invalid"},
            )
        allowed = INITIATIVE_TRANSITIONS.get(initiative.status, set())
        if new_status not in allowed:
            raise ValidationError(
                f"Cannot move initiative from {initiative.status} to {new_status}",
                details={"status": f"allowed: {', '.join(sorted(allowed))}"},
            )
        initiative.status = new_status
        if new_status == "Done":
            initiative.progress = 100

    if any(name in data for name in SCORED_FIELDS) or "business_profile" in data:
        _rescore(initiative, data.get("business_profile"))

    db.session.commit()
    return initiative.to_dict()


def reorder_initiatives(user, ordered_ids: list[int]) -> list[dict]:
    """Set order_index from the position of each id in *ordered_ids*."""
    if not isinstance(ordered_ids, list) or not ordered_ids:
        raise ValidationError("ids must be a non-empty list", details={"ids": "required"})
    if len(set(ordered_ids)) != len(ordered_ids):
        raise ValidationError("ids must be unique", details={"ids": "duplicate id"})

    initiatives = [_get_scoped(user, i) for i in ordered_ids]
    for initiative in initiatives:
        _require_owner(user, initiative)
    for position, initiative in enumerate(initiatives):
        initiative.order_index = position
    db.session.commit()
    return [i.to_dict() for i in initiatives]


# ── AI drafting ──────────────────────────────────────────────────────────────


def create_from_issues(user, issue_ids: list[int], *, gateway, settings: dict | None = None,
                       business_profile=None) -> dict:
    """Draft an initiative from issues via the AI gateway, then score and store it.

    Runs synchronously on the request thread; the async path is
    ``POST /api/v1/ai/async`` with type ``initiative_generation``.
    """
    issues = issue_service.get_issues(user, issue_ids)
    op = AIOperation(
        type="initiative_generation",
        input={"issues": [{"id": i.id, "description": i.description} for i in issues]},
        context={"business_profile": business_profile} if business_profile else {},
        id=f"sync_{uuid.uuid4().hex}",
        requested_by=user.email,
        tenant_id=user.tenant_id,
        config=dict(settings or {}),
    )
    draft = handle_initiative_generation(gateway, op, lambda pct, message="": None)

    result = create_initiative(
        user,
        {
            "title": draft.get("title") or "Generated Initiative",
            "problem": draft.get("problem") or "",
            "goal": draft.get("goal") or "",
            "kpis": draft.get("kpis") if isinstance(draft.get("kpis"), list) else [],
            "cost": draft.get("estimatedCost"),
            "gain": draft.get("estimatedBenefit"),
            "business_profile": business_profile,
        },
        source_issue_ids=[i.id for i in issues],
    )
    result["draft"] = draft
    return result
