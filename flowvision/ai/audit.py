"""
FlowVision
AI operation audit trail.

Mirrors every queue transition into ``ai_operations`` so operations stay
inspectable after the in-memory queue has garbage-collected them. The
queue stays the source of truth; a failed audit write is logged and
never fails the operation.
"""

import json
import logging
from datetime import datetime

from flask import has_app_context
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from flowvision.models import db
from flowvision.models.ai import AIOperationRecord

logger = logging.getLogger(__name__)

MAX_INPUT_CHARS = 4000
PREVIEW_CHARS = 1000


def _input_json(value) -> str:
    """Encoded input; oversized payloads become a truncation marker that still decodes."""
    text = json.dumps(value, default=str)
    if len(text) <= MAX_INPUT_CHARS:
        return text
    return json.dumps({"truncated": True, "size": len(text), "preview": text[:PREVIEW_CHARS]})


class OperationAuditRecorder:
    """Queue transition listener that upserts :class:`AIOperationRecord` rows."""

    def __init__(self, app=None):
        self.app = app

    def __call__(self, op, previous_status):
        if has_app_context():
            self.record(op)
        elif self.app is not None:
            with self.app.app_context():
                self.record(op)
        else:
            logger.debug("No app context; skipping audit for %s", op.id)

    def record(self, op) -> AIOperationRecord | None:
        try:
            row = db.session.execute(
                select(AIOperationRecord).where(AIOperationRecord.operation_id == op.id)
            ).scalar_one_or_none()
            if row is None:
                row = AIOperationRecord(
                    operation_id=op.id,
                    operation_type=op.type,
                    priority=op.priority,
                    input_json=_input_json(op.input),
                    estimated_duration_ms=op.estimated_duration,
                    requested_by=op.requested_by,
                    tenant_id=op.tenant_id,
                    created_at=_naive(op.created_at),
                )
                db.session.add(row)
            row.status = op.status
            row.progress_pct = op.progress
            row.cached = op.cached
            row.error_message = op.error
            row.processing_time_ms = op.processing_time_ms
            row.started_at = _naive(op.started_at)
            row.completed_at = _naive(op.completed_at)
            db.session.commit()
            return row
        except SQLAlchemyError as e:
            logger.error("Failed to audit AI operation %s: %s", op.id, e, extra={"operation_id": op.id})
            db.session.rollback()
            return None


def _naive(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo anyway; keep the stored value consistent across backends
    return value.replace(tzinfo=None) if value is not None else None


def list_operation_records(*, tenant_id: str | None = None, status: str | None = None,
                           limit: int = 50) -> list[dict]:
    """Return recent audit rows, newest first."""
    limit = max(1, min(int(limit), 100))
    stmt = select(AIOperationRecord).order_by(AIOperationRecord.id.desc()).limit(limit)
    if tenant_id is not None:
        stmt = stmt.where(AIOperationRecord.tenant_id == tenant_id)
    if status is not None:
        stmt = stmt.where(AIOperationRecord.status == status)
    return [r.to_dict() for r in db.session.execute(stmt).scalars()]
