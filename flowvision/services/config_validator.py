"""Configuration validation service.

Checks a proposed SystemConfiguration value in three passes:

  1. JSON schema (stored ``validation`` of the row, else the built-in one)
  2. Named business rules (stored ``constraints.business_rules``, else built-in)
  3. Advisory recommendations, change impact and security checks
     (warnings / suggestions only, never invalidate)

Nothing here writes to the database. ``system_config_service`` is the only
writer and calls ``assert_valid`` + ``test_configuration`` before every write.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError
from sqlalchemy import select

from flowvision.core.exceptions import NotFoundError, ValidationError
from flowvision.models import db
from flowvision.models.system_config import SystemConfiguration, SystemConfigurationHistory
from flowvision.services.config_defaults import BUILTIN_SCHEMAS

logger = logging.getLogger(__name__)

HISTORY_DEFAULT_LIMIT = 50
HISTORY_MAX_LIMIT = 100

BUSINESS_RULE = "BUSINESS_RULE"
SCHEMA_INVALID = "SCHEMA_INVALID"


# ── Result type ──────────────────────────────────────────────────────────────


@dataclass
class ValidationResult:
    valid: bool = True
    errors: list[dict] = field(default_factory=list)
    warnings: list[dict] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)

    def add_error(self, field_path: str, message: str, code: str) -> None:
        self.valid = False
        self.errors.append({
            "field": field_path,
            "message": message,
            "severity": "error",
            "code": code,
        })

    def add_warning(self, field_path: str, message: str, recommendation: str) -> None:
        self.warnings.append({
            "field": field_path,
            "message": message,
            "recommendation": recommendation,
        })

    def summary(self) -> dict:
        return {
            "valid": self.valid,
            "errors_count": len(self.errors),
            "warnings_count": len(self.warnings),
            "suggestions_count": len(self.suggestions),
        }

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "suggestions": list(self.suggestions),
        }


# ── Contract lookup ──────────────────────────────────────────────────────────


def resolve_contract(category: str, key: str, environment: str | None = None) -> dict:
    """Return ``{"validation", "business_rules", "stored"}`` for a config pair.

    Stored rows win over the built-in registry, field by field.

    Raises:
        NotFoundError: Neither a stored row nor a built-in contract exists.
    """
    rows = db.session.execute(
        select(SystemConfiguration).where(
            SystemConfiguration.category == category,
            SystemConfiguration.key == key,
        )
    ).scalars().all()
    builtin = BUILTIN_SCHEMAS.get((category, key))

    if not rows and builtin is None:
        raise NotFoundError(resource="SystemConfiguration", resource_id=f"{category}.{key}")

    row = None
    if rows:
        by_env = {r.environment: r for r in rows}
        row = by_env.get(environment) or by_env.get("all") or rows[0]

    validation = row.validation if row is not None else None
    rules = row.business_rules if row is not None else []
    if validation is None and builtin is not None:
        validation = builtin["validation"]
    if not rules and builtin is not None:
        rules = list(builtin["business_rules"])

    return {"validation": validation, "business_rules": rules, "stored": row is not None}


# ── Schema pass ──────────────────────────────────────────────────────────────

_REQUIRED_RE = re.compile(r"^'(?P<name>[^']+)' is a required property")


def _error_field(error) -> str:
    parts = [str(p) for p in error.absolute_path]
    if error.validator == "required":
        match = _REQUIRED_RE.match(error.message)
        if match:
            parts.append(match.group("name"))
    return ".".join(parts) or "value"


def check_schema(schema: dict | None, value: Any, result: ValidationResult) -> None:
    """Record every JSON-schema violation of *value* as an error."""
    if not schema:
        return
    try:
        Draft202012Validator.check_schema(schema)
    except SchemaError as exc:
        logger.error("Stored validation schema is not a valid JSON schema: %s", exc.message)
        result.add_error("validation", f"Configuration schema is invalid: {exc.message}", SCHEMA_INVALID)
        return

    validator = Draft202012Validator(schema)
    for err in sorted(validator.iter_errors(value), key=lambda e: list(e.absolute_path)):
        result.add_error(_error_field(err), err.message, f"SCHEMA_{str(err.validator).upper()}")


# ── Business rules ───────────────────────────────────────────────────────────

RuleCheck = Callable[[Any], list[tuple[str, str]]]

RULE_CHECKS: dict[str, RuleCheck] = {}


def business_rule(name: str):
    """Register a named business rule check. Returns (field, message) pairs."""
    def decorator(fn: RuleCheck) -> RuleCheck:
        RULE_CHECKS[name] = fn
        return fn
    return decorator


def _number(value) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _numbers(value) -> dict[str, float]:
    if not isinstance(value, dict):
        return {}
    return {k: n for k, v in value.items() if (n := _number(v)) is not None}


# Named threshold ladders, highest level first
LEVEL_ORDERS = (
    ("critical", "high", "medium", "low"),
    ("excellent", "good", "needsImprovement", "poor"),
    ("high", "medium", "low", "minimum"),
)


def _ordered_levels(value) -> list[tuple[str, float]]:
    """Numeric levels of *value* in ladder order, independent of key order.

    Uses the ladder naming the most keys; unnamed keys follow by value.
    """
    nums = _numbers(value)
    ladder = max(LEVEL_ORDERS, key=lambda names: sum(n in nums for n in names))
    levels = [(name, nums[name]) for name in ladder if name in nums]
    rest = sorted(((k, v) for k, v in nums.items() if k not in ladder), key=lambda kv: -kv[1])
    return levels + rest


@business_rule("all values between 0-100")
def _all_values_in_percent_range(value):
    return [
        (name, f"{name} must be between 0 and 100")
        for name, number in _numbers(value).items()
        if not 0 <= number <= 100
    ]


@business_rule("minimum 10 point spread between levels")
def _minimum_spread(value):
    levels = _ordered_levels(value)
    violations = []
    for (upper, upper_val), (lower, lower_val) in zip(levels, levels[1:]):
        if upper_val - lower_val < 10:
            violations.append((lower, f"{upper} and {lower} must be at least 10 points apart"))
    return violations


@business_rule("max pool > min pool")
def _pool_bounds(value):
    nums = _numbers(value)
    low, high = nums.get("connectionPoolMin"), nums.get("connectionPoolMax")
    if low is not None and high is not None and not high > low:
        return [("connectionPoolMax", "Max pool connections must be greater than min pool connections")]
    return []


@business_rule("hourly limit >= 60x per-minute limit")
def _hourly_covers_minute(value):
    nums = _numbers(value)
    per_minute, per_hour = nums.get("apiCallsPerMinute"), nums.get("apiCallsPerHour")
    if per_minute is not None and per_hour is not None and per_hour / 60 < per_minute:
        return [("apiCallsPerHour", "Hourly limit should be at least 60x the per-minute limit")]
    return []


@business_rule("heap critical > heap warning")
def _heap_order(value):
    nums = _numbers(value)
    warn, crit = nums.get("heapWarningThreshold"), nums.get("heapCriticalThreshold")
    if warn is not None and crit is not None and not crit > warn:
        return [("heapCriticalThreshold", "Critical threshold must be greater than warning threshold")]
    return []


@business_rule("gc trigger >= heap warning")
def _gc_trigger(value):
    nums = _numbers(value)
    warn, gc = nums.get("heapWarningThreshold"), nums.get("garbageCollectionTrigger")
    if warn is not None and gc is not None and gc < warn:
        return [("garbageCollectionTrigger", "GC trigger should be at or above warning threshold")]
    return []


_CHAIN_RE = re.compile(r"^\s*\w+(\s*(>=|>)\s*\w+)+\s*$")
_CHAIN_TOKEN_RE = re.compile(r">=|>|\w+")


def _ordering_chain(rule: str, value) -> list[tuple[str, str]]:
    """Evaluate rules like ``critical > high > medium > low`` against field values."""
    tokens = _CHAIN_TOKEN_RE.findall(rule)
    nums = _numbers(value)
    violations = []
    for i in range(0, len(tokens) - 2, 2):
        left, op, right = tokens[i], tokens[i + 1], tokens[i + 2]
        a, b = nums.get(left), nums.get(right)
        if a is None or b is None:
            continue
        ok = a >= b if op == ">=" else a > b
        if not ok:
            relation = "at least" if op == ">=" else "greater than"
            violations.append((left, f"{left} must be {relation} {right} ({rule})"))
    return violations


def evaluate_business_rules(rules: list[str], value: Any) -> list[tuple[str, str, str]]:
    """Return ``(field, message, rule)`` for every violated rule."""
    violations = []
    for rule in rules or []:
        check = RULE_CHECKS.get(rule)
        if check is not None:
            found = check(value)
        elif _CHAIN_RE.match(rule):
            found = _ordering_chain(rule, value)
        else:
            logger.warning("Unknown business rule %r ignored", rule)
            continue
        violations.extend((f, msg, rule) for f, msg in found)
    return violations


# ── Advisory checks ──────────────────────────────────────────────────────────


def _recommendations(category, key, value, result: ValidationResult, environment=None) -> None:
    nums = _numbers(value)
    if category == "performance":
        if key == "api_response_thresholds":
            if nums.get("warning", 0) > 1000:
                result.add_warning(
                    "warning",
                    "Warning threshold above 1000ms may impact user experience",
                    "Consider setting warning threshold below 1000ms for better UX",
                )
            if "timeout" in nums and nums["timeout"] < 10000:
                result.suggestions.append("Consider increasing timeout for complex AI operations")

        elif key == "database_configuration":
            if nums.get("connectionPoolMax", 0) > 20:
                result.add_warning(
                    "connectionPoolMax",
                    "High connection pool may impact database performance",
                    "Monitor database performance with high connection counts",
                )
            if "queryTimeout" in nums and nums["queryTimeout"] < 5000:
                result.suggestions.append("Consider increasing query timeout for complex analytics queries")

        elif key == "rate_limiting":
            if isinstance(value, dict) and value.get("enableRateLimiting") is False:
                result.add_warning(
                    "enableRateLimiting",
                    "Rate limiting is disabled - system may be vulnerable to abuse",
                    "Enable rate limiting for production environments",
                )
            if nums.get("apiCallsPerMinute", 0) > 500:
                result.suggestions.append("High rate limits may impact system performance under load")

        elif key == "memory_management":
            if nums.get("heapCriticalThreshold", 0) > 90:
                result.add_warning(
                    "heapCriticalThreshold",
                    "Very high critical threshold may cause system instability",
                    "Keep critical threshold below 90% for system stability",
                )
            if isinstance(value, dict) and value.get("enableMemoryProfiling") and environment == "production":
                result.add_warning(
                    "enableMemoryProfiling",
                    "Memory profiling enabled in production environment",
                    "Disable memory profiling in production for performance",
                )

    if category == "ai" and key == "operation_defaults" and isinstance(value, dict):
        for operation, settings in value.items():
            op_nums = _numbers(settings)
            if op_nums.get("maxTokens", 0) > 4000 and operation != "initiative_generation":
                result.suggestions.append(
                    f"Consider reducing maxTokens for {operation} to improve response times"
                )
            if op_nums.get("temperature", 0) > 0.8:
                result.add_warning(
                    f"{operation}.temperature",
                    "High temperature may produce inconsistent results",
                    "Consider using temperature below 0.8 for more predictable outputs",
                )


def _change_impact(category, key, new_value, existing_value, result: ValidationResult) -> None:
    if existing_value is None or category != "performance":
        return
    new, old = _numbers(new_value), _numbers(existing_value)

    if key == "caching_strategy":
        if "defaultTTL" in new and "defaultTTL" in old and new["defaultTTL"] < old["defaultTTL"]:
            result.add_warning(
                "defaultTTL",
                "Reducing TTL will increase database load",
                "Monitor database performance after reducing cache TTL",
            )
        if "maxCacheSize" in new and "maxCacheSize" in old and new["maxCacheSize"] > old["maxCacheSize"] * 2:
            result.add_warning(
                "maxCacheSize",
                "Significant cache size increase will impact memory usage",
                "Monitor memory usage after increasing cache size",
            )

    elif key == "database_configuration":
        if ("connectionPoolMax" in new and "connectionPoolMax" in old
                and new["connectionPoolMax"] > old["connectionPoolMax"] * 1.5):
            result.add_warning(
                "connectionPoolMax",
                "Significant increase in connection pool size",
                "Monitor database server resource usage",
            )


def _security(category, key, value, result: ValidationResult) -> None:
    if category != "performance":
        return
    nums = _numbers(value)
    if key == "rate_limiting":
        if nums.get("apiCallsPerMinute", 0) > 1000:
            result.add_warning(
                "apiCallsPerMinute",
                "Very high rate limits may expose system to abuse",
                "Consider implementing additional security measures",
            )
        if nums.get("adminRateMultiplier", 0) > 10:
            result.add_warning(
                "adminRateMultiplier",
                "Very high admin multiplier may be exploited if admin account is compromised",
                "Keep admin multiplier reasonable to limit potential abuse",
            )
    elif key == "memory_management":
        if nums.get("maxRequestSize", 0) > 50 * 1024 * 1024:
            result.add_warning(
                "maxRequestSize",
                "Large request size limit may enable DoS attacks",
                "Consider implementing additional request validation",
            )


# ── Public API ───────────────────────────────────────────────────────────────


def validate_configuration(
    category: str,
    key: str,
    value: Any,
    existing_value: Any = None,
    *,
    environment: str | None = None,
) -> ValidationResult:
    """Validate *value* for ``category.key`` without touching any state.

    Raises:
        NotFoundError: The (category, key) pair is unknown.
    """
    contract = resolve_contract(category, key, environment)
    result = ValidationResult()

    check_schema(contract["validation"], value, result)
    for field_path, message, rule in evaluate_business_rules(contract["business_rules"], value):
        result.add_error(field_path, message, BUSINESS_RULE)
        logger.debug("Business rule %r violated for %s.%s", rule, category, key)

    _recommendations(category, key, value, result, environment)
    _change_impact(category, key, value, existing_value, result)
    _security(category, key, value, result)
    return result


def assert_valid(
    category: str,
    key: str,
    value: Any,
    existing_value: Any = None,
    *,
    environment: str | None = None,
) -> ValidationResult:
    """Like ``validate_configuration`` but raises ``ValidationError`` when invalid."""
    result = validate_configuration(category, key, value, existing_value, environment=environment)
    if not result.valid:
        details = {}
        for err in result.errors:
            details.setdefault(err["field"], err["message"])
        raise ValidationError(f"Invalid configuration for {category}.{key}", details=details)
    return result


# ── Dry run ──────────────────────────────────────────────────────────────────


def _test_api_thresholds(cfg: dict) -> dict:
    nums = _numbers(cfg)
    return {
        "thresholdsOrdered": nums.get("critical", 0) > nums.get("warning", 0),
        "reasonableTimeouts": nums.get("timeout", 0) <= 30000,
        "healthCheckResponsive": nums.get("healthCheck", 0) <= 200,
        "configurationValid": True,
    }


def _test_caching_strategy(cfg: dict) -> dict:
    nums = _numbers(cfg)
    estimated_bytes = nums.get("maxCacheSize", 0) * 1024  # ~1 KB per entry
    return {
        "memoryUsageEstimate": f"{estimated_bytes / (1024 * 1024):.1f}MB",
        "ttlConfiguration": nums.get("defaultTTL", 0) > 0,
        "evictionPolicyValid": cfg.get("evictionPolicy") in ("LRU", "LFU", "FIFO"),
        "configurationValid": True,
    }


def _test_rate_limiting(cfg: dict) -> dict:
    nums = _numbers(cfg)
    return {
        "rateLimitsConsistent": nums.get("apiCallsPerHour", 0) / 60 >= nums.get("apiCallsPerMinute", 0),
        "burstLimitReasonable": nums.get("aiBurstLimit", 0) <= 20,
        "cooldownAdequate": nums.get("aiCooldownPeriod", 0) >= 30000,
        "configurationValid": True,
    }


def _test_ai_configuration(cfg: dict) -> dict:
    results: dict = {"configurationValid": True, "operationTests": {}}
    for operation, settings in cfg.items():
        settings = settings if isinstance(settings, dict) else {}
        nums = _numbers(settings)
        model = settings.get("model")
        results["operationTests"][operation] = {
            "modelValid": isinstance(model, str) and len(model) > 0,
            "tokensReasonable": 100 <= nums.get("maxTokens", 0) <= 8000,
            "temperatureValid": 0 <= nums.get("temperature", -1) <= 2,
        }
    return results


def _test_timeouts(cfg: dict) -> dict:
    nums = _numbers(cfg)
    return {
        "aiRequestOperable": 5000 <= nums.get("aiRequest", 30000) <= 120000,
        "apiRequestOperable": 1000 <= nums.get("apiRequest", 10000) <= 30000,
        "aiExceedsApi": nums.get("aiRequest", 30000) >= nums.get("apiRequest", 10000),
        "configurationValid": True,
    }


def _test_ordered_levels(cfg: dict) -> dict:
    values = [number for _, number in _ordered_levels(cfg)]
    return {
        "thresholdsOrdered": all(a > b for a, b in zip(values, values[1:])),
        "levels": len(values),
        "configurationValid": True,
    }


# Checks whose failure makes the dry run unsuccessful
_HARD_CHECKS = {
    "thresholdsOrdered", "evictionPolicyValid", "rateLimitsConsistent",
    "modelValid", "tokensReasonable", "temperatureValid",
    "aiRequestOperable", "apiRequestOperable",
}


def _collect_failures(name: str, outcome: dict, errors: list[str], prefix: str = "") -> None:
    for check, passed in outcome.items():
        if isinstance(passed, dict):
            _collect_failures(name, passed, errors, prefix=f"{prefix}{check}.")
        elif check in _HARD_CHECKS and passed is False:
            errors.append(f"{name}: {prefix}{check} failed")


def test_configuration(category: str, key: str, value: Any) -> dict:
    """Dry-run *value* against the checks for its key. Never persists.

    Returns:
        ``{"success": bool, "results": {...}, "errors": [str, ...]}``
    """
    errors: list[str] = []
    results: dict = {}
    cfg = value if isinstance(value, dict) else {}

    if category == "performance":
        if key == "api_response_thresholds":
            results["thresholdValidation"] = _test_api_thresholds(cfg)
        elif key == "caching_strategy":
            results["cacheValidation"] = _test_caching_strategy(cfg)
        elif key == "rate_limiting":
            results["rateLimitValidation"] = _test_rate_limiting(cfg)
        elif key == "timeout_values":
            results["timeoutValidation"] = _test_timeouts(cfg)
    elif category == "ai" and key == "operation_defaults":
        results["aiConfigValidation"] = _test_ai_configuration(cfg)
    elif category == "scoring" and key in ("issue_priority_thresholds", "issue_thresholds"):
        results["thresholdValidation"] = _test_ordered_levels(cfg)

    for name, outcome in results.items():
        _collect_failures(name, outcome, errors)

    return {"success": not errors, "results": results, "errors": errors}


# Not a pytest test despite the name
test_configuration.__test__ = False


# ── History ──────────────────────────────────────────────────────────────────


def _clamp_limit(limit) -> int:
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        return HISTORY_DEFAULT_LIMIT
    return max(1, min(limit, HISTORY_MAX_LIMIT))


def get_configuration_history(
    category: str | None = None,
    key: str | None = None,
    limit: int = HISTORY_DEFAULT_LIMIT,
) -> list[dict]:
    """Change history, newest first. ``limit`` is capped at 100."""
    stmt = select(SystemConfigurationHistory)
    if category:
        stmt = stmt.where(SystemConfigurationHistory.category == category)
    if key:
        stmt = stmt.where(SystemConfigurationHistory.key == key)
    stmt = stmt.order_by(
        SystemConfigurationHistory.changed_at.desc(),
        SystemConfigurationHistory.id.desc(),
    ).limit(_clamp_limit(limit))
    return [h.to_dict() for h in db.session.execute(stmt).scalars().all()]
