"""Default system configurations and the built-in validation registry.

``DEFAULT_SYSTEM_CONFIGURATIONS`` is what ``flask seed-system-config`` writes.
``BUILTIN_SCHEMAS`` holds the JSON schema and named business rules for every
(category, key) pair the validator knows about even when no row is stored;
it is the union of the seeded contracts and a few keys (API thresholds, DB
pool, caching strategy, memory management) that operators create by hand.
"""

from __future__ import annotations

import copy


def _num(minimum=None, maximum=None) -> dict:
    schema: dict = {"type": "number"}
    if minimum is not None:
        schema["minimum"] = minimum
    if maximum is not None:
        schema["maximum"] = maximum
    return schema


def _object(properties: dict, required: bool = True) -> dict:
    schema = {"type": "object", "properties": properties}
    if required:
        schema["required"] = list(properties)
    return schema


# ── Seeded configurations ────────────────────────────────────────────────────

DEFAULT_SYSTEM_CONFIGURATIONS: list[dict] = [
    # scoring
    {
        "category": "scoring",
        "key": "issue_priority_thresholds",
        "value": {"critical": 80, "high": 60, "medium": 40, "low": 0},
        "data_type": "json",
        "description": "Score thresholds for issue priority classification (Critical/High/Medium/Low)",
        "tags": ["business-logic", "user-facing", "critical"],
        "validation": _object({
            "critical": _num(60, 100),
            "high": _num(40, 99),
            "medium": _num(20, 79),
            "low": _num(0, 59),
        }),
        "constraints": {
            "business_rules": [
                "critical > high > medium > low",
                "all values between 0-100",
                "minimum 10 point spread between levels",
            ],
        },
    },
    {
        "category": "scoring",
        "key": "validation_score_thresholds",
        "value": {"excellent": 80, "good": 60, "needsImprovement": 40, "poor": 0},
        "data_type": "json",
        "description": "Score thresholds for form validation quality assessment",
        "tags": ["validation", "form-quality", "ux"],
        "validation": _object({
            "excellent": _num(60, 100),
            "good": _num(40, 99),
            "needsImprovement": _num(20, 79),
            "poor": _num(0, 59),
        }, required=False),
        "constraints": {"business_rules": ["excellent > good > needsImprovement > poor"]},
    },
    {
        "category": "scoring",
        "key": "heatmap_color_mapping",
        "value": {
            "critical": {"color": "bg-red-500", "textColor": "text-white"},
            "high": {"color": "bg-orange-500", "textColor": "text-white"},
            "medium": {"color": "bg-yellow-500", "textColor": "text-black"},
            "low": {"color": "bg-green-500", "textColor": "text-white"},
        },
        "data_type": "json",
        "description": "Color mappings for issue priority visualization",
        "tags": ["ui", "colors", "visualization"],
        "validation": {
            "type": "object",
            "additionalProperties": {
                "type": "object",
                "properties": {"color": {"type": "string"}, "textColor": {"type": "string"}},
                "required": ["color", "textColor"],
            },
        },
    },
    # ai
    {
        "category": "ai",
        "key": "fallback_model",
        "value": "gpt-3.5-turbo",
        "data_type": "string",
        "description": "Default AI model to use when primary configuration is unavailable",
        "tags": ["ai", "fallback", "reliability"],
        "validation": {
            "type": "string",
            "enum": ["gpt-3.5-turbo", "gpt-3.5-turbo-16k", "gpt-4", "gpt-4-turbo-preview"],
        },
    },
    {
        "category": "ai",
        "key": "token_limits",
        "value": {"categorization": 800, "analysis": 1500, "summary": 500, "default": 500},
        "data_type": "json",
        "description": "Token limits for different types of AI operations",
        "tags": ["ai", "performance", "limits"],
        "validation": _object({
            "categorization": _num(100, 4000),
            "analysis": _num(500, 8000),
            "summary": _num(100, 2000),
            "default": _num(100, 1000),
        }, required=False),
    },
    {
        "category": "ai",
        "key": "confidence_thresholds",
        "value": {"high": 85, "medium": 70, "low": 50, "minimum": 30},
        "data_type": "json",
        "description": "Confidence score thresholds for AI-generated content",
        "tags": ["ai", "confidence", "quality"],
        "validation": _object({
            "high": _num(70, 100),
            "medium": _num(50, 89),
            "low": _num(30, 69),
            "minimum": _num(0, 49),
        }, required=False),
        "constraints": {"business_rules": ["high > medium > low > minimum"]},
    },
    {
        "category": "ai",
        "key": "model_specific_configs",
        "value": {
            "gpt-3.5-turbo": {
                "maxTokens": 4096,
                "costPer1kInput": 0.0015,
                "costPer1kOutput": 0.002,
                "contextWindow": 4096,
                "preferredFor": ["summaries", "categorization", "quick_analysis"],
            },
            "gpt-4": {
                "maxTokens": 8192,
                "costPer1kInput": 0.03,
                "costPer1kOutput": 0.06,
                "contextWindow": 8192,
                "preferredFor": ["complex_analysis", "strategic_insights", "requirements"],
            },
            "gpt-4-turbo": {
                "maxTokens": 4096,
                "costPer1kInput": 0.01,
                "costPer1kOutput": 0.03,
                "contextWindow": 128000,
                "preferredFor": ["detailed_analysis", "clustering", "comprehensive_summaries"],
            },
        },
        "data_type": "json",
        "description": "Model-specific configuration including costs, limits, and use cases",
        "tags": ["ai", "models", "costs", "optimization"],
        "validation": {
            "type": "object",
            "additionalProperties": _object({
                "maxTokens": _num(100, 32000),
                "costPer1kInput": _num(0),
                "costPer1kOutput": _num(0),
                "contextWindow": _num(1000),
                "preferredFor": {"type": "array", "items": {"type": "string"}},
            }),
        },
    },
    {
        "category": "ai",
        "key": "operation_defaults",
        "value": {
            "issue_analysis": {"model": "gpt-3.5-turbo", "maxTokens": 500, "temperature": 0.7},
            "cluster_analysis": {"model": "gpt-4-turbo", "maxTokens": 700, "temperature": 0.7},
            "categorization": {"model": "gpt-3.5-turbo", "maxTokens": 800, "temperature": 0.3},
            "initiative_generation": {"model": "gpt-4", "maxTokens": 1500, "temperature": 0.3},
            "requirement_cards": {"model": "gpt-4", "maxTokens": 500, "temperature": 0.3},
        },
        "data_type": "json",
        "description": "Default AI configuration for different operation types",
        "tags": ["ai", "operations", "defaults"],
        "validation": {
            "type": "object",
            "additionalProperties": _object({
                "model": {"type": "string", "minLength": 1},
                "maxTokens": _num(100, 8000),
                "temperature": _num(0, 2),
            }),
        },
    },
    {
        "category": "ai",
        "key": "service_health_monitoring",
        "value": {
            "healthCheckInterval": 300000,
            "maxRetries": 3,
            "retryBackoffMultiplier": 2,
            "connectionTimeoutMs": 30000,
            "circuitBreakerThreshold": 5,
            "circuitBreakerResetTimeout": 60000,
            "enableMetricsCollection": True,
            "enableCostTracking": True,
        },
        "data_type": "json",
        "description": "AI service health monitoring and reliability configuration",
        "tags": ["ai", "monitoring", "reliability", "health"],
        "validation": _object({
            "healthCheckInterval": _num(60000, 3600000),
            "maxRetries": _num(1, 10),
            "retryBackoffMultiplier": _num(1, 5),
            "connectionTimeoutMs": _num(5000, 120000),
            "circuitBreakerThreshold": _num(3, 20),
            "circuitBreakerResetTimeout": _num(30000, 300000),
            "enableMetricsCollection": {"type": "boolean"},
            "enableCostTracking": {"type": "boolean"},
        }, required=False),
    },
    {
        "category": "ai",
        "key": "ab_testing_configs",
        "value": {
            "enableABTesting": False,
            "testGroups": {
                "control": {"percentage": 50, "model": "gpt-3.5-turbo", "temperature": 0.7},
                "experimental": {"percentage": 50, "model": "gpt-4-turbo", "temperature": 0.5},
            },
            "testDurationDays": 7,
            "minimumSampleSize": 100,
            "statisticalSignificanceThreshold": 0.95,
        },
        "data_type": "json",
        "description": "A/B testing configuration for AI parameter optimization",
        "tags": ["ai", "ab-testing", "optimization", "experimentation"],
        "validation": _object({
            "enableABTesting": {"type": "boolean"},
            "testGroups": {
                "type": "object",
                "additionalProperties": _object({
                    "percentage": _num(0, 100),
                    "model": {"type": "string"},
                    "temperature": _num(0, 2),
                }, required=False),
            },
            "testDurationDays": _num(1, 30),
            "minimumSampleSize": _num(10, 10000),
            "statisticalSignificanceThreshold": _num(0.8, 0.99),
        }, required=False),
    },
    # performance
    {
        "category": "performance",
        "key": "timeout_values",
        "value": {"aiRequest": 30000, "apiRequest": 10000, "databaseQuery": 5000, "fileUpload": 60000},
        "data_type": "json",
        "description": "Timeout values in milliseconds for various operations",
        "tags": ["performance", "timeout", "reliability"],
        "validation": _object({
            "aiRequest": _num(5000, 120000),
            "apiRequest": _num(1000, 30000),
            "databaseQuery": _num(1000, 15000),
            "fileUpload": _num(10000, 300000),
        }, required=False),
    },
    {
        "category": "performance",
        "key": "cache_settings",
        "value": {"configurationTTL": 300, "aiResponseTTL": 3600, "userDataTTL": 1800, "staticDataTTL": 86400},
        "data_type": "json",
        "description": "Cache time-to-live values in seconds",
        "tags": ["performance", "caching", "memory"],
        "validation": _object({
            "configurationTTL": _num(60, 3600),
            "aiResponseTTL": _num(300, 86400),
            "userDataTTL": _num(300, 7200),
            "staticDataTTL": _num(3600, 604800),
        }, required=False),
    },
    {
        "category": "performance",
        "key": "rate_limiting",
        "value": {
            "apiCallsPerMinute": 30,
            "apiCallsPerHour": 2000,
            "aiBurstLimit": 5,
            "aiCooldownPeriod": 60000,
            "adminRateMultiplier": 5,
            "enableRateLimiting": True,
            "blockDuration": 300000,
        },
        "data_type": "json",
        "description": "Rate limiting thresholds for API and AI calls",
        "tags": ["performance", "rate-limiting", "security"],
        "validation": _object({
            "apiCallsPerMinute": _num(10, 1000),
            "apiCallsPerHour": _num(100, 10000),
            "aiBurstLimit": _num(1, 20),
            "aiCooldownPeriod": _num(30000, 300000),
            "adminRateMultiplier": _num(2, 10),
            "enableRateLimiting": {"type": "boolean"},
            "blockDuration": _num(60000, 3600000),
        }),
        "constraints": {"business_rules": ["hourly limit >= 60x per-minute limit"]},
    },
    # ux
    {
        "category": "ux",
        "key": "interaction_timing",
        "value": {"debounceDelay": 1000, "navigationDelay": 1500, "feedbackDelay": 3000, "tooltipDelay": 500},
        "data_type": "json",
        "description": "Timing values in milliseconds for user interactions",
        "tags": ["ux", "timing", "interaction"],
        "validation": _object({
            "debounceDelay": _num(300, 3000),
            "navigationDelay": _num(500, 5000),
            "feedbackDelay": _num(1000, 10000),
            "tooltipDelay": _num(100, 2000),
        }, required=False),
    },
    {
        "category": "ux",
        "key": "form_validation",
        "value": {
            "minimumDescriptionLength": 20,
            "maximumDescriptionLength": 500,
            "requiredFieldsForAI": 3,
            "confidenceDisplayThreshold": 50,
        },
        "data_type": "json",
        "description": "Form validation rules and thresholds",
        "tags": ["ux", "validation", "forms"],
        "validation": _object({
            "minimumDescriptionLength": _num(10, 100),
            "maximumDescriptionLength": _num(200, 2000),
            "requiredFieldsForAI": _num(1, 10),
            "confidenceDisplayThreshold": _num(0, 100),
        }, required=False),
    },
    # development
    {
        "category": "development",
        "key": "debug_settings",
        "environment": "development",
        "value": {
            "enableVerboseLogging": False,
            "logAIInteractions": True,
            "trackPerformanceMetrics": True,
            "enableConfigurationChangeLogs": True,
        },
        "data_type": "json",
        "description": "Development and debugging configuration settings",
        "tags": ["development", "debugging", "logging"],
    },
]


# ── Validator-only contracts ─────────────────────────────────────────────────

_EXTRA_CONTRACTS: list[dict] = [
    {
        "category": "performance",
        "key": "api_response_thresholds",
        "validation": _object({
            "warning": _num(100, 5000),
            "critical": _num(500, 10000),
            "timeout": _num(5000, 60000),
            "healthCheck": _num(50, 1000),
        }),
        "business_rules": ["critical > warning"],
    },
    {
        "category": "performance",
        "key": "database_configuration",
        "validation": _object({
            "queryTimeout": _num(1000, 30000),
            "connectionPoolMin": _num(1, 10),
            "connectionPoolMax": _num(5, 50),
            "slowQueryThreshold": _num(100, 5000),
            "retryAttempts": _num(1, 5),
            "retryDelay": _num(100, 5000),
        }),
        "business_rules": ["max pool > min pool"],
    },
    {
        "category": "performance",
        "key": "caching_strategy",
        "validation": _object({
            "defaultTTL": _num(60, 86400),
            "systemConfigTTL": _num(300, 86400),
            "aiResponseTTL": _num(300, 7200),
            "userSessionTTL": _num(3600, 604800),
            "maxCacheSize": _num(100, 10000),
            "evictionPolicy": {"type": "string", "enum": ["LRU", "LFU", "FIFO"]},
            "enableCompression": {"type": "boolean"},
            "cacheWarming": {"type": "boolean"},
        }),
        "business_rules": [],
    },
    {
        "category": "performance",
        "key": "memory_management",
        "validation": _object({
            "heapWarningThreshold": _num(50, 95),
            "heapCriticalThreshold": _num(70, 98),
            "garbageCollectionTrigger": _num(60, 95),
            "maxRequestSize": _num(1048576, 104857600),
            "maxResponseSize": _num(1048576, 104857600),
            "enableMemoryProfiling": {"type": "boolean"},
        }),
        "business_rules": [
            "heap critical > heap warning",
            "gc trigger >= heap warning",
        ],
    },
    {
        "category": "scoring",
        "key": "issue_thresholds",
        "validation": _object({
            "critical": _num(70, 100),
            "high": _num(50, 90),
            "medium": _num(30, 70),
            "low": _num(0, 50),
        }),
        "business_rules": ["critical > high > medium > low"],
    },
]


def _build_registry() -> dict[tuple[str, str], dict]:
    registry: dict[tuple[str, str], dict] = {}
    for entry in DEFAULT_SYSTEM_CONFIGURATIONS:
        registry[(entry["category"], entry["key"])] = {
            "validation": entry.get("validation"),
            "business_rules": list((entry.get("constraints") or {}).get("business_rules", [])),
        }
    for entry in _EXTRA_CONTRACTS:
        registry[(entry["category"], entry["key"])] = {
            "validation": entry["validation"],
            "business_rules": list(entry["business_rules"]),
        }
    return registry


BUILTIN_SCHEMAS: dict[tuple[str, str], dict] = _build_registry()


def default_value(category: str, key: str):
    """Seeded value for (category, key), deep-copied; None if not seeded."""
    for entry in DEFAULT_SYSTEM_CONFIGURATIONS:
        if entry["category"] == category and entry["key"] == key:
            return copy.deepcopy(entry["value"])
    return None
