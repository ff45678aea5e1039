"""Issue service layer.

Issues are submitted by any authenticated user, voted on, and archived
(never deleted) by their creator or an admin.

Rules:
  - The caller passes the AuthenticatedUser explicitly (never read from g).
  - Every query is scoped to user.tenant_id; other tenants' rows are NotFound.
  - db.session.commit() happens only in this file.
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from flowvision.core.exceptions import NotFoundError, UnauthorizedError, ValidationError
from flowvision.models import db
from flowvision.models.initiative import ISSUE_STATUSES, Issue
from flowvision.utils.scoring import sanitize

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 5000


def _get_scoped(user, issue_id: int) -> Issue:
    issue = db.session.execute(
        select(Issue).where(Issue.id == issue_id, Issue.tenant_id == user.tenant_id)
    ).scalar_one_or_none()
    if issue is None:
        raise NotFoundError(resource="Issue", resource_id=issue_id, tenant_id=user.tenant_id)
    return issue


def create_issue(user, data: dict) -> dict:
    """Create an issue in the user's tenant.

    Raises:
        ValidationError: Missing or oversized description.
    """
    description = data.get("description")
    if description is not None and not isinstance(description, str):
        raise ValidationError("description must be a string", details={"description": "must be a string"})
    description = (description or "").strip()
    if not description:
        raise ValidationError("description is required", details={"description": "required"})
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(
            f"description must be at most {MAX_DESCRIPTION_LENGTH} characters",
            details={"description": "too long"},
        )

    issue = Issue(
        tenant_id=user.tenant_id,
        description=description,
        heatmap_score=int(min(100, sanitize(data.get("heatmap_score")))),
        department=data.get("department"),
        category=data.get("category"),
        cluster_id=data.get("cluster_id"),
        created_by=user.email,
    )
    db.session.add(issue)
    db.session.commit()
    logger.info("Issue %s created tenant=%s", issue.id, user.tenant_id)
    return issue.to_dict()


def list_issues(user, *, status: str | None = "open", cluster_id: int | None = None) -> list[dict]:
    """Issues in the user's tenant, most voted first."""
    if status is not None and status not in ISSUE_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(sorted(ISSUE_STATUSES))}")
    stmt = select(Issue).where(Issue.tenant_id == user.tenant_id)
    if status is not None:
        stmt = stmt.where(Issue.status == status)
    if cluster_id is not None:
        stmt = stmt.where(Issue.cluster_id == cluster_id)
    stmt = stmt.order_by(Issue.votes.desc(), Issue.heatmap_score.desc(), Issue.id)
    return [i.to_dict() for i in db.session.execute(stmt).scalars()]


def get_issues(user, issue_ids: list[int]) -> list[Issue]:
    """Load several issues by id; every id must exist in the user's tenant."""
    if not issue_ids:
        raise ValidationError("issue_ids must not be empty", details={"issue_ids": "required"})
    try:
        wanted = [int(i) for i in issue_ids]
    except (TypeError, ValueError):
        raise ValidationError("issue_ids must be integers", details={"issue_ids": "invalid"})
    found = {
        i.id: i for i in db.session.execute(
            select(Issue).where(Issue.tenant_id == user.tenant_id, Issue.id.in_(wanted))
        ).scalars()
    }
    missing = [i for i in wanted if i not in found]
    if missing:
        raise NotFoundError(resource="Issue", resource_id=missing[0], tenant_id=user.tenant_id)
    return [found[i] for i in wanted]


def vote_issue(user, issue_id: int) -> dict:
    issue = _get_scoped(user, issue_id)
    if issue.status == "archived":
        raise ValidationError("Cannot vote on an archived issue")
    issue.votes = (issue.votes or 0) + 1
    db.session.commit()
    return issue.to_dict()


def archive_issue(user, issue_id: int) -> dict:
    """Archive an issue. Creator or admin only; archiving twice is a no-op."""
    issue = _get_scoped(user, issue_id)
    if not user.is_admin and issue.created_by != user.email:
        raise UnauthorizedError("Only the creator or an admin can archive this issue", required_role="admin")
    if issue.status != "archived":
        issue.status = "archived"
        db.session.commit()
        logger.info("Issue %s archived by %s", issue.id, user.email)
    return issue.to_dict()
