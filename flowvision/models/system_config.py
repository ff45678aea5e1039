"""
FlowVision
System configuration models.

Models:
    - SystemConfiguration: versioned JSON setting keyed by
      (category, key, environment, scope)
    - SystemConfigurationHistory: immutable, append-only change record

History rows may be inserted but never updated or deleted; the ORM listeners
at the bottom of this module reject both.
"""

import json
from datetime import datetime, timezone

from sqlalchemy import event

from flowvision.models import db

CONFIG_DATA_TYPES = {"string", "number", "boolean", "json", "array", "null"}


def _utcnow():
    return datetime.now(timezone.utc)


def _loads(raw, default=None):
    if raw is None or raw == "":
        return default
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return default


def infer_data_type(value) -> str:
    """Map a JSON-compatible Python value to its stored data_type label."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    return "json"


# ── SystemConfiguration ──────────────────────────────────────────────────────

class SystemConfiguration(db.Model):
    """A single configuration entry with its validation contract."""

    __tablename__ = "system_configurations"
    __table_args__ = (
        db.UniqueConstraint(
            "category", "key", "environment", "scope",
            name="uq_system_config_category_key_env_scope",
        ),
        db.CheckConstraint(
            "data_type IN ({})".format(",".join(f"'{t}'" for t in sorted(CONFIG_DATA_TYPES))),
            name="ck_system_config_data_type",
        ),
        db.Index("ix_system_config_category", "category"),
    )

    id = db.Column(db.Integer, primary_key=True)
    category = db.Column(db.String(50), nullable=False)
    key = db.Column(db.String(100), nullable=False)
    environment = db.Column(db.String(30), nullable=False, default="all")
    scope = db.Column(db.String(50), nullable=False, default="global")

    value_json = db.Column(db.Text, nullable=False, default="null")
    data_type = db.Column(db.String(20), nullable=False, default="json")
    validation_json = db.Column(db.Text, nullable=True, comment="JSON schema for value")
    constraints_json = db.Column(db.Text, nullable=True, comment='{"business_rules": [...]}')
    description = db.Column(db.Text, nullable=True)
    tags_json = db.Column(db.Text, default="[]")

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version = db.Column(db.Integer, nullable=False, default=1)
    updated_by = db.Column(db.String(150), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    history = db.relationship(
        "SystemConfigurationHistory",
        back_populates="configuration",
        lazy="dynamic",
        order_by="SystemConfigurationHistory.version.desc()",
    )

    # ── JSON accessors ───────────────────────────────────────────────────

    @property
    def value(self):
        return _loads(self.value_json)

    @value.setter
    def value(self, new_value):
        self.value_json = json.dumps(new_value)

    @property
    def validation(self) -> dict | None:
        return _loads(self.validation_json)

    @validation.setter
    def validation(self, schema):
        self.validation_json = json.dumps(schema) if schema is not None else None

    @property
    def constraints(self) -> dict:
        return _loads(self.constraints_json, {}) or {}

    @constraints.setter
    def constraints(self, data):
        self.constraints_json = json.dumps(data) if data is not None else None

    @property
    def business_rules(self) -> list[str]:
        return list(self.constraints.get("business_rules", []))

    @property
    def tags(self) -> list:
        return _loads(self.tags_json, []) or []

    @tags.setter
    def tags(self, value):
        self.tags_json = json.dumps(list(value or []))

    def to_dict(self):
        return {
            "id": self.id,
            "category": self.category,
            "key": self.key,
            "environment": self.environment,
            "scope": self.scope,
            "value": self.value,
            "data_type": self.data_type,
            "validation": self.validation,
            "constraints": self.constraints,
            "description": self.description,
            "tags": self.tags,
            "is_active": self.is_active,
            "version": self.version,
            "updated_by": self.updated_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<SystemConfiguration {self.category}.{self.key} env={self.environment} v{self.version}>"


# ── SystemConfigurationHistory ───────────────────────────────────────────────

class SystemConfigurationHistory(db.Model):
    """One row per successful configuration write. Append-only."""

    __tablename__ = "system_configuration_history"
    __table_args__ = (
        db.Index("ix_config_history_category_key", "category", "key"),
        db.Index("ix_config_history_changed_at", "changed_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    config_id = db.Column(
        db.Integer,
        db.ForeignKey("system_configurations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    category = db.Column(db.String(50), nullable=False)
    key = db.Column(db.String(100), nullable=False)
    environment = db.Column(db.String(30), nullable=False)
    scope = db.Column(db.String(50), nullable=False)
    version = db.Column(db.Integer, nullable=False)

    old_value_json = db.Column(db.Text, nullable=True)
    new_value_json = db.Column(db.Text, nullable=False)
    changed_by = db.Column(db.String(150), nullable=False, default="system")
    change_type = db.Column(db.String(20), nullable=False, default="update", comment="create | update | deactivate")
    validation_summary_json = db.Column(db.Text, default="{}")
    changed_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    configuration = db.relationship("SystemConfiguration", back_populates="history")

    def to_dict(self):
        return {
            "id": self.id,
            "config_id": self.config_id,
            "category": self.category,
            "key": self.key,
            "environment": self.environment,
            "scope": self.scope,
            "version": self.version,
            "old_value": _loads(self.old_value_json),
            "new_value": _loads(self.new_value_json),
            "changed_by": self.changed_by,
            "change_type": self.change_type,
            "validation": _loads(self.validation_summary_json, {}),
            "changed_at": self.changed_at.isoformat() if self.changed_at else None,
        }

    def __repr__(self):
        return f"<SystemConfigurationHistory {self.category}.{self.key} v{self.version}>"


@event.listens_for(SystemConfigurationHistory, "before_update")
def _reject_history_update(mapper, connection, target):
    raise ValueError("SystemConfigurationHistory rows are immutable")


@event.listens_for(SystemConfigurationHistory, "before_delete")
def _reject_history_delete(mapper, connection, target):
    raise ValueError("SystemConfigurationHistory rows are immutable")
