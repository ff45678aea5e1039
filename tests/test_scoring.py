"""
FlowVision
Tests — Scoring engine.

Covers:
    - score_roi: clamping, zero/negative cost, rounding, junk input
    - score_priority: roi - difficulty/2, unclamped
    - score_difficulty: keyword signals, org size, utilisation, clamping
    - score_initiative: the three scores computed together
"""

import math

import pytest

from flowvision.utils.scoring import (
    BusinessProfile,
    ScoreCard,
    sanitize,
    score_difficulty,
    score_initiative,
    score_priority,
    score_roi,
)


class TestSanitize:

    @pytest.mark.parametrize("value", [None, "abc", float("nan"), float("inf"), -5, True, [], {}])
    def test_junk_becomes_zero(self, value):
        assert sanitize(value) == 0.0

    def test_numeric_strings_are_accepted(self):
        assert sanitize("12.5") == 12.5


class TestScoreRoi:

    def test_documented_examples(self):
        assert score_roi(100, 200) == 100
        assert score_roi(100, 50) == 0

    @pytest.mark.parametrize("cost", [0, -1, -1000, None, "free", float("nan")])
    def test_non_positive_cost_is_max_return(self, cost):
        assert score_roi(cost, 10) == 100

    def test_partial_return(self):
        assert score_roi(1000, 1250) == 25

    def test_rounds_half_up(self):
        # 0.5% rounds up, 0.25% rounds down
        assert score_roi(200, 201) == 1
        assert score_roi(1000, 1002.5) == 0

    @pytest.mark.parametrize("cost,gain", [
        (1, 1e12), (1e12, 0), (50, -50), (3, 7), (0.01, 0.02), (float("inf"), 5),
    ])
    def test_always_within_bounds(self, cost, gain):
        assert 0 <= score_roi(cost, gain) <= 100

    def test_returns_int(self):
        assert isinstance(score_roi(100, 150), int)


class TestScorePriority:

    def test_documented_example(self):
        assert score_priority(40, 80) == 60

    def test_not_clamped(self):
        assert score_priority(100, 0) == -50
        assert score_priority(0, 100) == 100

    def test_half_points_kept(self):
        assert score_priority(45, 70) == 47.5

    def test_junk_inputs_do_not_raise(self):
        assert score_priority("x", None) == 0
        assert not math.isnan(score_priority(float("nan"), float("nan")))


class TestScoreDifficulty:

    def test_neutral_baseline(self):
        assert score_difficulty("Improve the onboarding checklist") == 50

    def test_hard_keywords_raise_difficulty(self):
        assert score_difficulty("ERP integration and data migration") == 70

    def test_easy_keywords_lower_difficulty(self):
        assert score_difficulty("Refresh email copy and docs") == 20

    def test_keywords_match_whole_words_only(self):
        # "build" contains "ui" but is not the word "ui"
        assert score_difficulty("build a guide") == 50

    def test_inflected_words_are_not_keywords(self):
        assert score_difficulty("Sort the contents of shared emails") == 50
        assert score_difficulty("Migrations of docstrings") == 50

    def test_keywords_next_to_punctuation(self):
        assert score_difficulty("UI/UX polish, docs.") == 30
        assert score_difficulty("(security)-review") == 60

    def test_case_insensitive(self):
        assert score_difficulty("SECURITY review") == 60

    def test_large_org_adds_difficulty(self):
        profile = BusinessProfile(industry="Retail", size=250)
        assert score_difficulty("Improve the onboarding checklist", profile) == 55

    def test_high_utilization_adds_difficulty(self):
        ctx = {"size": 10, "metrics": {"billableUtilization": 0.92}}
        assert score_difficulty("Improve the onboarding checklist", ctx) == 55

    def test_missing_utilization_uses_default(self):
        assert score_difficulty("plain", {"metrics": {}}) == 50

    def test_clamped_to_range(self):
        very_hard = "integration migration refactor compliance security"
        ctx = {"size": 1000, "metrics": {"billable_utilization": 0.99}}
        assert score_difficulty(very_hard, ctx) == 100
        assert score_difficulty("ui content email copy docs") == 0

    @pytest.mark.parametrize("text", [None, 42, "", "   "])
    def test_odd_text_does_not_raise(self, text):
        assert 0 <= score_difficulty(text) <= 100

    def test_junk_context_ignored(self):
        assert score_difficulty("plain", "not a profile") == 50
        assert score_difficulty("plain", {"size": "huge", "metrics": ["x"]}) == 50


class TestScoreInitiative:

    def test_scores_are_consistent(self):
        card = score_initiative("Payroll integration", None, cost=100, gain=150)
        assert card == ScoreCard(difficulty=60, roi=50, priority_score=20.0)
        assert card.priority_score == card.roi - card.difficulty / 2

    def test_to_dict(self):
        card = score_initiative("docs", cost=0, gain=0)
        assert card.to_dict() == {"difficulty": 40, "roi": 100, "priority_score": 80.0}
