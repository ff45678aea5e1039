"""
FlowVision
Issue & Initiative domain models.

Models:
    - Issue: a reported operational problem awaiting triage
    - Initiative: a planned effort addressing one or more issues

Scores on an Initiative (difficulty / roi / priority_score) are only ever
written together through ``Initiative.apply_scores``.
"""

import json
from datetime import datetime, timezone

from flowvision.models import db

# ── Constants ────────────────────────────────────────────────────────────────

ISSUE_STATUSES = {"open", "archived"}

INITIATIVE_STATUSES = ("Define", "Prioritize", "In Progress", "Done")

# Allowed forward/backward moves on the kanban board
INITIATIVE_TRANSITIONS = {
    "Define": {"Prioritize"},
    "Prioritize": {"Define", "In Progress"},
    "In Progress": {"Prioritize", "Done"},
    "Done": {"In Progress"},
}


def _utcnow():
    return datetime.now(timezone.utc)


# ── Issue ────────────────────────────────────────────────────────────────────

class Issue(db.Model):
    """User-submitted issue. Never hard-deleted; archived via status."""

    __tablename__ = "issues"
    __table_args__ = (
        db.Index("ix_issues_tenant_status", "tenant_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), nullable=False, default="default", index=True)
    description = db.Column(db.Text, nullable=False)
    votes = db.Column(db.Integer, nullable=False, default=0)
    heatmap_score = db.Column(db.Integer, nullable=False, default=0, comment="0-100 severity/urgency")
    cluster_id = db.Column(db.Integer, nullable=True, index=True)
    department = db.Column(db.String(100), nullable=True)
    category = db.Column(db.String(100), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="open")
    created_by = db.Column(db.String(150), nullable=False, default="system")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "description": self.description,
            "votes": self.votes,
            "heatmap_score": self.heatmap_score,
            "cluster_id": self.cluster_id,
            "department": self.department,
            "category": self.category,
            "status": self.status,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Issue {self.id} votes={self.votes} heat={self.heatmap_score}>"


# ── Initiative ───────────────────────────────────────────────────────────────

class Initiative(db.Model):
    """Initiative tracked through Define → Prioritize → In Progress → Done."""

    __tablename__ = "initiatives"
    __table_args__ = (
        db.Index("ix_initiatives_owner_order", "owner", "order_index"),
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), nullable=False, default="default", index=True)
    title = db.Column(db.String(200), nullable=False)
    problem = db.Column(db.Text, nullable=False, default="")
    goal = db.Column(db.Text, nullable=False, default="")
    kpis_json = db.Column(db.Text, default="[]")

    difficulty = db.Column(db.Integer, nullable=False, default=0, comment="0-100")
    roi = db.Column(db.Integer, nullable=False, default=0, comment="0-100, clamped")
    priority_score = db.Column(db.Float, nullable=False, default=0.0, comment="roi - difficulty/2, unclamped")
    cost = db.Column(db.Float, nullable=False, default=0.0)
    gain = db.Column(db.Float, nullable=False, default=0.0)

    status = db.Column(db.String(20), nullable=False, default="Define")
    progress = db.Column(db.Integer, nullable=False, default=0)
    order_index = db.Column(db.Integer, nullable=False, default=0)
    owner = db.Column(db.String(150), nullable=False)
    source_issue_ids_json = db.Column(db.Text, default="[]")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @property
    def kpis(self) -> list:
        return json.loads(self.kpis_json or "[]")

    @kpis.setter
    def kpis(self, value):
        self.kpis_json = json.dumps(list(value or []))

    @property
    def source_issue_ids(self) -> list:
        return json.loads(self.source_issue_ids_json or "[]")

    @source_issue_ids.setter
    def source_issue_ids(self, value):
        self.source_issue_ids_json = json.dumps(list(value or []))

    def apply_scores(self, card) -> None:
        """Write difficulty, roi and priority_score from one ScoreCard."""
        self.difficulty = card.difficulty
        self.roi = card.roi
        self.priority_score = card.priority_score

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "title": self.title,
            "problem": self.problem,
            "goal": self.goal,
            "kpis": self.kpis,
            "difficulty": self.difficulty,
            "roi": self.roi,
            "priority_score": self.priority_score,
            "cost": self.cost,
            "gain": self.gain,
            "status": self.status,
            "progress": self.progress,
            "order_index": self.order_index,
            "owner": self.owner,
            "source_issue_ids": self.source_issue_ids,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Initiative {self.id}: {self.title[:30]} [{self.status}]>"
