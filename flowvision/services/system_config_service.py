"""System configuration store.

Cached, environment-aware reads and validated, versioned writes of
SystemConfiguration rows.

Rules:
  - Reads try the environment-specific row first, then ``environment="all"``.
  - Every successful write bumps ``version``, appends exactly one history row,
    invalidates the cache and notifies ``on_change`` listeners, in that order.
  - db.session.commit() for configuration rows happens only in this file.

One instance lives on ``app.extensions["system_config"]``; use
``get_system_config()`` inside a request or app context.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
import time
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Callable

from flask import current_app
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from flowvision.core.exceptions import ConflictError, NotFoundError, TransientError, ValidationError
from flowvision.models import db
from flowvision.models.system_config import (
    SystemConfiguration,
    SystemConfigurationHistory,
    infer_data_type,
)
from flowvision.services import config_validator
from flowvision.services.config_defaults import DEFAULT_SYSTEM_CONFIGURATIONS, default_value

logger = logging.getLogger(__name__)

MISSING = object()

DEFAULT_TTL_SECONDS = 300
GLOBAL_SCOPE = "global"

# Queue operation type → ai.operation_defaults entry
OPERATION_CONFIG_KEYS = {
    "issue_analysis": "issue_analysis",
    "initiative_generation": "initiative_generation",
    "clustering": "cluster_analysis",
    "insights": "cluster_analysis",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SystemConfigService:
    """Cached access to SystemConfiguration with validated writes."""

    def __init__(
        self,
        environment: str = "development",
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        scope: str = GLOBAL_SCOPE,
        default_timeout_seconds: float = 30,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.environment = environment
        self.scope = scope
        self.ttl_seconds = ttl_seconds
        self.default_timeout_seconds = default_timeout_seconds
        self._clock = clock
        self._cache: dict[str, tuple[float, Any]] = {}
        self._cache_lock = threading.Lock()
        self._listeners: dict[str, list[Callable[[Any], None]]] = defaultdict(list)
        self._listeners_lock = threading.Lock()

    # ── Cache ────────────────────────────────────────────────────────────

    def _cache_key(self, category: str, key: str, environment: str | None = None) -> str:
        return f"{category}:{key}:{environment or self.environment}:{self.scope}"

    def _cache_get(self, cache_key: str):
        with self._cache_lock:
            entry = self._cache.get(cache_key)
            if entry is None:
                return MISSING
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._cache[cache_key]
                return MISSING
            return copy.deepcopy(value)

    def _cache_set(self, cache_key: str, value) -> None:
        with self._cache_lock:
            self._cache[cache_key] = (self._clock() + self.ttl_seconds, copy.deepcopy(value))

    def _invalidate(self, category: str, key: str) -> None:
        prefix = f"{category}:{key}:"
        with self._cache_lock:
            for ck in [k for k in self._cache if k.startswith(prefix)]:
                del self._cache[ck]

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()
        logger.info("Configuration cache cleared")

    def cache_stats(self) -> dict:
        now = self._clock()
        with self._cache_lock:
            entries = [
                {"key": ck, "age_seconds": round(now - (expires_at - self.ttl_seconds), 3)}
                for ck, (expires_at, _) in self._cache.items()
            ]
        return {"size": len(entries), "ttl_seconds": self.ttl_seconds, "entries": entries}

    # ── Reads ────────────────────────────────────────────────────────────

    def _load_row(self, category: str, key: str, environment: str) -> SystemConfiguration | None:
        environments = ["all"] if environment == "all" else [environment, "all"]
        for env in environments:
            row = db.session.execute(
                select(SystemConfiguration).where(
                    SystemConfiguration.category == category,
                    SystemConfiguration.key == key,
                    SystemConfiguration.environment == env,
                    SystemConfiguration.scope == self.scope,
                )
            ).scalar_one_or_none()
            if row is not None and row.is_active:
                return row
        return None

    def get_config(self, category: str, key: str, fallback: Any = MISSING, environment: str | None = None):
        """Return the active value for ``category.key``.

        Raises:
            NotFoundError: No active row and no *fallback*.
            TransientError: The database read failed and no *fallback* was given.
        """
        env = environment or self.environment
        cache_key = self._cache_key(category, key, env)
        cached = self._cache_get(cache_key)
        if cached is not MISSING:
            return cached

        try:
            row = self._load_row(category, key, env)
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("Failed to load configuration %s.%s: %s", category, key, exc,
                         extra={"config_key": f"{category}.{key}"})
            if fallback is not MISSING:
                return fallback
            raise TransientError(f"Configuration {category}.{key} could not be loaded", cause=exc) from exc

        if row is not None:
            value = row.value
            self._cache_set(cache_key, value)
            return value

        if fallback is not MISSING:
            logger.warning("Configuration %s.%s not found, using fallback", category, key,
                           extra={"config_key": f"{category}.{key}"})
            return fallback
        raise NotFoundError(resource="SystemConfiguration", resource_id=f"{category}.{key}")

    def _seeded(self, category: str, key: str):
        return self.get_config(category, key, fallback=default_value(category, key))

    def scoring_thresholds(self) -> dict:
        return self._seeded("scoring", "issue_priority_thresholds")

    def validation_thresholds(self) -> dict:
        return self._seeded("scoring", "validation_score_thresholds")

    def fallback_model(self) -> str:
        return self._seeded("ai", "fallback_model")

    def token_limits(self) -> dict:
        return self._seeded("ai", "token_limits")

    def confidence_thresholds(self) -> dict:
        return self._seeded("ai", "confidence_thresholds")

    def operation_defaults(self) -> dict:
        return self._seeded("ai", "operation_defaults")

    def service_health_monitoring(self) -> dict:
        return self._seeded("ai", "service_health_monitoring")

    def timeout_values(self) -> dict:
        return self._seeded("performance", "timeout_values")

    def operation_settings(self, operation_type: str) -> dict:
        """Snapshot of provider settings for one queue operation type."""
        defaults = self.operation_defaults() or {}
        entry = defaults.get(OPERATION_CONFIG_KEYS.get(operation_type, operation_type)) or {}
        token_limits = self.token_limits() or {}
        timeouts = self.timeout_values() or {}

        ai_timeout_ms = timeouts.get("aiRequest")
        timeout_seconds = (
            ai_timeout_ms / 1000 if isinstance(ai_timeout_ms, (int, float)) and ai_timeout_ms > 0
            else self.default_timeout_seconds
        )
        return {
            "model": entry.get("model") or self.fallback_model(),
            "max_tokens": int(entry.get("maxTokens") or token_limits.get("default", 500)),
            "temperature": float(entry.get("temperature", 0.3)),
            "timeout_seconds": timeout_seconds,
        }

    def list_configs(self, category: str | None = None, environment: str | None = None) -> list[dict]:
        stmt = select(SystemConfiguration).where(SystemConfiguration.scope == self.scope)
        if category:
            stmt = stmt.where(SystemConfiguration.category == category)
        if environment:
            stmt = stmt.where(SystemConfiguration.environment.in_([environment, "all"]))
        stmt = stmt.order_by(SystemConfiguration.category, SystemConfiguration.key)
        return [c.to_dict() for c in db.session.execute(stmt).scalars().all()]

    # ── Writes ───────────────────────────────────────────────────────────

    def _find_for_write(self, category: str, key: str, environment: str | None) -> SystemConfiguration:
        if environment:
            row = db.session.execute(
                select(SystemConfiguration).where(
                    SystemConfiguration.category == category,
                    SystemConfiguration.key == key,
                    SystemConfiguration.environment == environment,
                    SystemConfiguration.scope == self.scope,
                )
            ).scalar_one_or_none()
        else:
            row = self._load_row(category, key, self.environment)
        if row is None:
            raise NotFoundError(resource="SystemConfiguration", resource_id=f"{category}.{key}")
        return row

    @staticmethod
    def _history(row: SystemConfiguration, old_value, user: str, change_type: str, summary: dict):
        return SystemConfigurationHistory(
            config_id=row.id,
            category=row.category,
            key=row.key,
            environment=row.environment,
            scope=row.scope,
            version=row.version,
            old_value_json=json.dumps(old_value) if old_value is not None else None,
            new_value_json=row.value_json,
            changed_by=user,
            change_type=change_type,
            validation_summary_json=json.dumps(summary),
            changed_at=_utcnow(),
        )

    def _commit(self, what: str) -> None:
        try:
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("Configuration write failed for %s: %s", what, exc)
            raise TransientError(f"Configuration {what} could not be saved", cause=exc) from exc

    def set_config(
        self,
        category: str,
        key: str,
        value: Any,
        user: str,
        environment: str | None = None,
        description: str | None = None,
    ) -> dict:
        """Validate, dry-run and persist a new value. All-or-nothing.

        Raises:
            NotFoundError: No row to update.
            ValidationError: Schema, business-rule or dry-run failure.
            TransientError: The commit failed.
        """
        row = self._find_for_write(category, key, environment)
        old_value = row.value

        result = config_validator.assert_valid(
            category, key, value, existing_value=old_value, environment=row.environment,
        )
        dry_run = config_validator.test_configuration(category, key, value)
        if not dry_run["success"]:
            raise ValidationError(
                f"Dry run failed for {category}.{key}",
                details={"dry_run": dry_run["errors"]},
            )

        row.value = value
        row.data_type = infer_data_type(value)
        row.version = (row.version or 0) + 1
        row.updated_by = user
        if description is not None:
            row.description = description
        db.session.add(self._history(row, old_value, user, "update", result.summary()))
        self._commit(f"{category}.{key}")

        self._invalidate(category, key)
        self._notify(category, key, value)
        logger.info("Configuration updated: %s.%s v%d by %s", category, key, row.version, user,
                    extra={"config_key": f"{category}.{key}", "user": user})
        return {"config": row.to_dict(), "validation": result.to_dict(), "dry_run": dry_run}

    def deactivate_config(self, category: str, key: str, user: str, environment: str | None = None) -> dict:
        """Soft-delete: mark the row inactive so reads fall back to defaults."""
        row = self._find_for_write(category, key, environment)
        if not row.is_active:
            return row.to_dict()
        row.is_active = False
        row.version = (row.version or 0) + 1
        row.updated_by = user
        db.session.add(self._history(row, row.value, user, "deactivate", {}))
        self._commit(f"{category}.{key}")

        self._invalidate(category, key)
        logger.info("Configuration deactivated: %s.%s by %s", category, key, user,
                    extra={"config_key": f"{category}.{key}", "user": user})
        return row.to_dict()

    def create_config(
        self,
        category: str,
        key: str,
        value: Any,
        user: str,
        *,
        environment: str = "all",
        description: str | None = None,
        validation: dict | None = None,
        constraints: dict | None = None,
        tags: list | None = None,
        commit: bool = True,
    ) -> dict:
        """Create a new configuration row at version 1 with its first history entry.

        Raises:
            ConflictError: The (category, key, environment, scope) key exists.
            ValidationError: The value fails its contract.
        """
        existing = db.session.execute(
            select(SystemConfiguration.id).where(
                SystemConfiguration.category == category,
                SystemConfiguration.key == key,
                SystemConfiguration.environment == environment,
                SystemConfiguration.scope == self.scope,
            )
        ).scalar_one_or_none()
        if existing is not None:
            raise ConflictError(resource="SystemConfiguration", field="key", value=f"{category}.{key}@{environment}")

        row = SystemConfiguration(
            category=category,
            key=key,
            environment=environment,
            scope=self.scope,
            data_type=infer_data_type(value),
            description=description,
            updated_by=user,
            version=1,
            is_active=True,
        )
        row.value = value
        row.validation = validation
        row.constraints = constraints
        row.tags = tags or []
        db.session.add(row)
        try:
            db.session.flush()
        except IntegrityError as exc:
            db.session.rollback()
            raise ConflictError(resource="SystemConfiguration", field="key",
                                value=f"{category}.{key}@{environment}") from exc

        try:
            result = config_validator.assert_valid(category, key, value, environment=environment)
        except ValidationError:
            db.session.rollback()
            raise

        db.session.add(self._history(row, None, user, "create", result.summary()))
        if commit:
            self._commit(f"{category}.{key}")
            self._invalidate(category, key)
            self._notify(category, key, value)
        logger.info("Configuration created: %s.%s (%s) by %s", category, key, environment, user,
                    extra={"config_key": f"{category}.{key}", "user": user})
        return {"config": row.to_dict(), "validation": result.to_dict()}

    def seed_defaults(self, user: str = "system") -> dict:
        """Create missing default rows; refresh contracts of existing ones, never their values."""
        created = updated = 0
        for entry in DEFAULT_SYSTEM_CONFIGURATIONS:
            environment = entry.get("environment", "all")
            row = db.session.execute(
                select(SystemConfiguration).where(
                    SystemConfiguration.category == entry["category"],
                    SystemConfiguration.key == entry["key"],
                    SystemConfiguration.environment == environment,
                    SystemConfiguration.scope == self.scope,
                )
            ).scalar_one_or_none()

            if row is not None:
                row.description = entry.get("description")
                row.validation = entry.get("validation")
                row.constraints = entry.get("constraints")
                row.tags = entry.get("tags", [])
                updated += 1
                continue

            self.create_config(
                entry["category"],
                entry["key"],
                copy.deepcopy(entry["value"]),
                user,
                environment=environment,
                description=entry.get("description"),
                validation=entry.get("validation"),
                constraints=entry.get("constraints"),
                tags=entry.get("tags"),
                commit=False,
            )
            created += 1

        self._commit("seed")
        self.clear_cache()
        logger.info("System configuration seeded: created=%d updated=%d", created, updated)
        return {"created": created, "updated": updated, "total": len(DEFAULT_SYSTEM_CONFIGURATIONS)}

    # ── Change listeners ─────────────────────────────────────────────────

    def on_change(self, category: str, key: str, callback: Callable[[Any], None]) -> Callable[[], None]:
        """Register *callback(new_value)*; returns an unsubscribe callable."""
        listener_key = f"{category}:{key}"
        with self._listeners_lock:
            self._listeners[listener_key].append(callback)

        def unsubscribe() -> None:
            with self._listeners_lock:
                callbacks = self._listeners.get(listener_key, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return unsubscribe

    def _notify(self, category: str, key: str, value) -> None:
        with self._listeners_lock:
            callbacks = list(self._listeners.get(f"{category}:{key}", []))
        for callback in callbacks:
            try:
                callback(copy.deepcopy(value))
            except Exception:  # logged, never raised to the writer
                logger.exception("Error in configuration change listener for %s.%s", category, key)

    # ── Health ───────────────────────────────────────────────────────────

    def health_check(self) -> dict:
        try:
            count = db.session.execute(select(func.count(SystemConfiguration.id))).scalar()
            status, db_ok = "healthy", True
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("SystemConfigService health check failed: %s", exc)
            count, status, db_ok = None, "unhealthy", False
        return {
            "status": status,
            "db_connection": db_ok,
            "configurations": count,
            "cache_size": len(self._cache),
            "last_check": _utcnow().isoformat(),
        }


def get_system_config() -> SystemConfigService:
    """Return the app's SystemConfigService."""
    return current_app.extensions["system_config"]
