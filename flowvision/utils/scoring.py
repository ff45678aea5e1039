"""
Initiative scoring heuristics.

Pure functions, no I/O:
    score_difficulty(text, context) → 0..100
    score_roi(cost, gain)           → 0..100 (clamped)
    score_priority(difficulty, roi) → roi - difficulty / 2 (NOT clamped)

None of these raise. Non-numeric, NaN, infinite or negative inputs are
treated as 0 before any arithmetic.

``priority_score`` can legitimately fall below 0 or above 100; ranking code
must not assume a 0..100 range.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Mapping

HARD_KEYWORDS = ("integration", "migration", "refactor", "compliance", "security")
EASY_KEYWORDS = ("ui", "content", "email", "copy", "docs")

BASELINE_DIFFICULTY = 50
KEYWORD_WEIGHT = 10
LARGE_ORG_SIZE = 100
LARGE_ORG_WEIGHT = 5
HIGH_UTILIZATION = 0.8
DEFAULT_UTILIZATION = 0.7
UTILIZATION_WEIGHT = 5


@dataclass
class BusinessProfile:
    """Business context a difficulty estimate is made against."""

    industry: str = "Unknown"
    size: int = 0
    metrics: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ScoreCard:
    difficulty: int
    roi: int
    priority_score: float

    def to_dict(self) -> dict:
        return {
            "difficulty": self.difficulty,
            "roi": self.roi,
            "priority_score": self.priority_score,
        }


def sanitize(value: Any) -> float:
    """Coerce to a finite, non-negative float; anything else becomes 0."""
    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number) or number < 0:
        return 0.0
    return number


def _clamp(value: float, low: float = 0, high: float = 100) -> float:
    return max(low, min(high, value))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _profile_fields(context: Any) -> tuple[float, Mapping]:
    """Extract (size, metrics) from a BusinessProfile, a dict, or junk."""
    if context is None:
        return 0.0, {}
    if isinstance(context, Mapping):
        size = context.get("size", 0)
        metrics = context.get("metrics") or {}
    else:
        size = getattr(context, "size", 0)
        metrics = getattr(context, "metrics", None) or {}
    if not isinstance(metrics, Mapping):
        metrics = {}
    return sanitize(size), metrics


def _has_keyword(text: str, keyword: str) -> bool:
    return re.search(rf"\b{re.escape(keyword)}\b", text) is not None


def score_difficulty(text: Any, context: Any = None) -> int:
    """Estimate implementation difficulty (0..100) of an initiative.

    Starts from a neutral 50 and moves by keyword signals in *text* and by the
    organisation size and billable utilisation taken from *context*.
    """
    if not isinstance(text, str):
        text = "" if text is None else str(text)
    lowered = text.lower()
    score = BASELINE_DIFFICULTY

    for kw in HARD_KEYWORDS:
        if _has_keyword(lowered, kw):
            score += KEYWORD_WEIGHT
    for kw in EASY_KEYWORDS:
        if _has_keyword(lowered, kw):
            score -= KEYWORD_WEIGHT

    size, metrics = _profile_fields(context)
    if size > LARGE_ORG_SIZE:
        score += LARGE_ORG_WEIGHT

    utilization = metrics.get("billableUtilization", metrics.get("billable_utilization"))
    utilization = DEFAULT_UTILIZATION if utilization is None else sanitize(utilization)
    if utilization > HIGH_UTILIZATION:
        score += UTILIZATION_WEIGHT

    return int(_clamp(score))


def score_roi(cost: Any, gain: Any) -> int:
    """Return ROI as a whole percentage clamped to 0..100.

    A cost of zero (or anything sanitised to zero) is the maximal return.
    """
    cost = sanitize(cost)
    gain = sanitize(gain)
    if cost <= 0:
        return 100
    return int(_clamp(_round_half_up((gain - cost) / cost * 100)))


def score_priority(difficulty: Any, roi: Any) -> float:
    """Higher ROI and lower difficulty → higher priority. Unclamped."""
    return sanitize(roi) - sanitize(difficulty) / 2


def score_initiative(text: Any, context: Any = None, cost: Any = 0, gain: Any = 0) -> ScoreCard:
    """Compute difficulty, roi and priority together."""
    difficulty = score_difficulty(text, context)
    roi = score_roi(cost, gain)
    return ScoreCard(difficulty=difficulty, roi=roi, priority_score=score_priority(difficulty, roi))
