"""
FlowVision
AI domain models.

Models:
    - AIUsageLog: token/cost tracking per provider call
    - AIOperationRecord: audit trail mirroring the in-memory operation queue
"""

import json
from datetime import datetime, timezone

from flowvision.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AI_OPERATION_TYPES = ("issue_analysis", "initiative_generation", "clustering", "insights")
AI_OPERATION_PRIORITIES = ("high", "normal", "low")
AI_OPERATION_STATUSES = ("queued", "running", "completed", "failed", "cancelled")
AI_TERMINAL_STATUSES = frozenset({"completed", "failed", "cancelled"})

# Advisory duration (ms) shown to clients for progress bars
ESTIMATED_DURATIONS_MS = {
    "issue_analysis": 4000,
    "initiative_generation": 6000,
    "clustering": 8000,
    "insights": 5000,
}

# Token costs per 1M tokens (input/output)
TOKEN_COSTS = {
    "gpt-3.5-turbo":   {"input": 1.50, "output": 2.00},
    "gpt-4":           {"input": 30.00, "output": 60.00},
    "gpt-4-turbo":     {"input": 10.00, "output": 30.00},
    "gpt-4o":          {"input": 2.50, "output": 10.00},
    "gpt-4o-mini":     {"input": 0.15, "output": 0.60},
    "local-stub":      {"input": 0.00, "output": 0.00},
}


def calculate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    """Calculate USD cost for a given model + token counts."""
    costs = TOKEN_COSTS.get(model, {"input": 0.0, "output": 0.0})
    return (prompt_tokens * costs["input"] + completion_tokens * costs["output"]) / 1_000_000


# ── AIUsageLog ────────────────────────────────────────────────────────────────

class AIUsageLog(db.Model):
    """
    Tracks token usage and cost for every provider call.
    Aggregated for usage dashboards and cost monitoring.
    """

    __tablename__ = "ai_usage_logs"

    id = db.Column(db.Integer, primary_key=True)
    provider = db.Column(db.String(30), nullable=False, comment="openai / local")
    model = db.Column(db.String(80), nullable=False)
    prompt_tokens = db.Column(db.Integer, default=0)
    completion_tokens = db.Column(db.Integer, default=0)
    total_tokens = db.Column(db.Integer, default=0)
    cost_usd = db.Column(db.Float, default=0.0)
    latency_ms = db.Column(db.Integer, default=0, comment="End-to-end latency in milliseconds")

    user = db.Column(db.String(150), default="system")
    purpose = db.Column(db.String(100), default="", comment="e.g. issue_analysis, clustering")
    operation_id = db.Column(db.String(80), nullable=True, index=True)

    success = db.Column(db.Boolean, default=True)
    error_message = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "provider": self.provider,
            "model": self.model,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
            "cost_usd": round(self.cost_usd or 0.0, 6),
            "latency_ms": self.latency_ms,
            "user": self.user,
            "purpose": self.purpose,
            "operation_id": self.operation_id,
            "success": self.success,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# ── AIOperationRecord ─────────────────────────────────────────────────────────

class AIOperationRecord(db.Model):
    """Persistent mirror of a queued AI operation's lifecycle."""

    __tablename__ = "ai_operations"
    __table_args__ = (
        db.CheckConstraint(
            "status IN ({})".format(",".join(f"'{s}'" for s in AI_OPERATION_STATUSES)),
            name="ck_ai_operation_status",
        ),
        db.Index("ix_ai_operations_tenant_status", "tenant_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    operation_id = db.Column(db.String(80), nullable=False, unique=True)
    operation_type = db.Column(db.String(40), nullable=False, index=True)
    priority = db.Column(db.String(10), nullable=False, default="normal")
    status = db.Column(db.String(20), nullable=False, default="queued")
    progress_pct = db.Column(db.Integer, default=0)
    cached = db.Column(db.Boolean, default=False)

    input_json = db.Column(db.Text, nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    estimated_duration_ms = db.Column(db.Integer, nullable=True)
    processing_time_ms = db.Column(db.Integer, nullable=True)

    requested_by = db.Column(db.String(150), nullable=True)
    tenant_id = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "operation_id": self.operation_id,
            "operation_type": self.operation_type,
            "priority": self.priority,
            "status": self.status,
            "progress_pct": self.progress_pct,
            "cached": self.cached,
            "input": json.loads(self.input_json) if self.input_json else None,
            "error": self.error_message,
            "estimated_duration_ms": self.estimated_duration_ms,
            "processing_time_ms": self.processing_time_ms,
            "requested_by": self.requested_by,
            "tenant_id": self.tenant_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    def __repr__(self):
        return f"<AIOperationRecord {self.operation_id} {self.operation_type} [{self.status}]>"
