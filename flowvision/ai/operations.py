"""
FlowVision
AI operation handlers.

One handler per operation type. Each builds a prompt, calls the gateway
with the settings snapshotted on the operation, and parses the JSON reply.
Replies that are not JSON degrade to a structured default so callers
always get the same shape back.

Progress checkpoints (``progress(pct, message)``) are also cancellation
points: the queue raises ``OperationCancelled`` there once the operation
has been cancelled or timed out.
"""

import json
import logging
import re

from flowvision.core.exceptions import ProviderError, ValidationError
from flowvision.utils.scoring import score_initiative

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


def parse_json_reply(content: str):
    """Parse a model reply as JSON, tolerating markdown code fences. None if not JSON."""
    if not content:
        return None
    text = _FENCE_RE.sub("", content.strip())
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return None


def _field(payload, name, default=None):
    if isinstance(payload, dict):
        return payload.get(name, default)
    return default


def _text(payload, *names) -> str:
    """First non-empty text field of *payload*, or *payload* itself if it is a string."""
    if isinstance(payload, str):
        return payload
    for name in names:
        value = _field(payload, name)
        if isinstance(value, str) and value.strip():
            return value
    return ""


# ── Handlers ─────────────────────────────────────────────────────────────────


def handle_issue_analysis(gateway, op, progress) -> dict:
    description = _text(op.input, "description", "text")
    if not description:
        raise ValidationError("Issue description is required", details={"input.description": "required"})
    context = _field(op.input, "context") or op.context

    progress(30, "Analyzing issue content")
    prompt = (
        "Analyze this business issue and provide structured insights:\n\n"
        f"Issue Description: {description}\n\n"
        + (f"Context: {json.dumps(context, default=str)}\n\n" if context else "")
        + "Provide analysis in this JSON format:\n"
        '{\n  "category": "string",\n  "priority": "high|medium|low",\n'
        '  "impact": "string",\n  "rootCause": "string",\n'
        '  "recommendations": ["string"],\n  "estimatedEffort": "string",\n'
        '  "confidence": 0.95\n}'
    )
    progress(60, "Generating AI insights")
    content = _call(gateway, op, prompt)
    progress(90, "Finalizing analysis")

    parsed = parse_json_reply(content)
    if isinstance(parsed, dict):
        return parsed
    return {
        "category": "General",
        "priority": "medium",
        "impact": content[:200],
        "rootCause": "Analysis pending",
        "recommendations": ["Further investigation needed"],
        "estimatedEffort": "Medium",
        "confidence": 0.7,
    }


def handle_initiative_generation(gateway, op, progress) -> dict:
    issues = _field(op.input, "issues")
    if issues is None:
        issues = op.input if isinstance(op.input, list) else [_text(op.input, "description", "text")]
    issue_lines = "\n".join(
        f"- {_text(i, 'description', 'text') or json.dumps(i, default=str)}" for i in issues if i
    )
    if not issue_lines:
        raise ValidationError("At least one issue is required", details={"input.issues": "required"})

    progress(25, "Analyzing issues for initiative")
    prompt = (
        "Draft an initiative that addresses the following business issues:\n\n"
        f"{issue_lines}\n\n"
        "Respond with JSON containing: title, problem, goal, kpis (list of strings), "
        "estimatedCost (number), estimatedBenefit (number), priority (high|medium|low), "
        "estimatedDuration."
    )
    content = _call(gateway, op, prompt)
    progress(70, "Generating initiative recommendations")

    draft = parse_json_reply(content)
    if not isinstance(draft, dict):
        draft = {
            "title": "Generated Initiative",
            "problem": content[:500],
            "goal": "",
            "kpis": [],
            "priority": "high",
            "estimatedDuration": "4 weeks",
        }
    draft.setdefault("confidence", 0.85)

    text = " ".join(str(draft.get(k) or "") for k in ("title", "problem", "goal"))
    card = score_initiative(
        text,
        _field(op.context, "business_profile"),
        cost=draft.get("estimatedCost", 0),
        gain=draft.get("estimatedBenefit", 0),
    )
    draft["scores"] = card.to_dict()
    return draft


def handle_clustering(gateway, op, progress) -> dict:
    issues = _field(op.input, "issues", op.input if isinstance(op.input, list) else [])
    if not issues:
        return {"clusters": [], "confidence": 0.8}

    progress(30, "Grouping issues")
    lines = "\n".join(
        f"- [{_field(i, 'id', n)}] {_text(i, 'description', 'text')}" for n, i in enumerate(issues, 1)
    )
    prompt = (
        "Group these issues into clusters of related problems:\n\n"
        f"{lines}\n\n"
        'Respond with JSON: {"clusters": [{"name": "string", "issueIds": [], "summary": "string"}]}'
    )
    content = _call(gateway, op, prompt)
    progress(80, "Summarising clusters")

    parsed = parse_json_reply(content)
    if isinstance(parsed, dict) and isinstance(parsed.get("clusters"), list):
        parsed.setdefault("confidence", 0.8)
        return parsed
    return {"clusters": [], "confidence": 0.8}


def handle_insights(gateway, op, progress) -> dict:
    subject = op.input if isinstance(op.input, str) else json.dumps(op.input, default=str)
    progress(30, "Collecting signals")
    prompt = (
        "Derive business insights and trends from the following data:\n\n"
        f"{subject}\n\n"
        'Respond with JSON: {"insights": ["string"], "trends": ["string"]}'
    )
    content = _call(gateway, op, prompt)
    progress(80, "Summarising insights")

    parsed = parse_json_reply(content)
    if isinstance(parsed, dict):
        return {
            "insights": list(parsed.get("insights") or []),
            "trends": list(parsed.get("trends") or []),
            "confidence": parsed.get("confidence", 0.9),
        }
    return {"insights": [], "trends": [], "confidence": 0.9}


HANDLERS = {
    "issue_analysis": handle_issue_analysis,
    "initiative_generation": handle_initiative_generation,
    "clustering": handle_clustering,
    "insights": handle_insights,
}


def _call(gateway, op, prompt: str) -> str:
    settings = op.config or {}
    result = gateway.complete(
        prompt,
        model=settings.get("model"),
        max_tokens=settings.get("max_tokens", 1000),
        temperature=settings.get("temperature", 0.3),
        timeout=settings.get("timeout_seconds"),
        purpose=op.type,
        user=op.requested_by or "system",
        operation_id=op.id,
        max_retries=1,
    )
    content = result.get("content") or ""
    if not content:
        raise ProviderError("No response from AI service", provider=result.get("provider"),
                            model=result.get("model"))
    return content


class OperationExecutor:
    """Queue executor that dispatches operations to :data:`HANDLERS`."""

    def __init__(self, gateway, handlers=None):
        self.gateway = gateway
        self.handlers = dict(HANDLERS if handlers is None else handlers)

    def __call__(self, op, progress):
        handler = self.handlers.get(op.type)
        if handler is None:
            raise ValidationError(f"Unknown operation type: {op.type}")
        logger.debug("Executing %s", op.type, extra={"operation_id": op.id, "operation_type": op.type})
        return handler(self.gateway, op, progress)
