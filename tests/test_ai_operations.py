"""
FlowVision
Tests — AI operation handlers.

Covers:
    - JSON reply parsing (code fences, junk)
    - Structured fallbacks when the model does not answer in JSON
    - Settings snapshot passed through to the gateway
    - Empty provider replies become ProviderError
"""

import json

import pytest

from flowvision.ai.gateway import LLMGateway, LLMProvider
from flowvision.ai.operation_queue import AIOperation
from flowvision.ai.operations import (
    OperationExecutor,
    handle_clustering,
    handle_initiative_generation,
    handle_insights,
    handle_issue_analysis,
    parse_json_reply,
)
from flowvision.core.exceptions import ProviderError, ValidationError

SETTINGS = {"model": "gpt-4", "max_tokens": 700, "temperature": 0.2, "timeout_seconds": 15}


class ScriptedProvider(LLMProvider):
    def __init__(self, content):
        self.content = content
        self.calls = []

    def chat(self, messages, model, **kwargs):
        self.calls.append({"model": model, "prompt": messages[-1]["content"], **kwargs})
        return {"content": self.content, "prompt_tokens": 10, "completion_tokens": 10, "model": model}


def _gateway(content):
    provider = ScriptedProvider(content)
    return LLMGateway(providers={"openai": provider}, backoff_seconds=0), provider


def _op(type, input, context=None):
    return AIOperation(type=type, input=input, context=context or {}, id="op_test", config=dict(SETTINGS))


def _no_progress(pct, message=""):
    return None


class TestParseJsonReply:

    def test_plain_json(self):
        assert parse_json_reply('{"a": 1}') == {"a": 1}

    def test_fenced_json(self):
        assert parse_json_reply('```json\n{"a": 1}\n```') == {"a": 1}

    @pytest.mark.parametrize("content", ["", None, "not json", "```\nstill not\n```"])
    def test_junk_is_none(self, content):
        assert parse_json_reply(content) is None


class TestIssueAnalysis:

    def test_passes_settings_to_gateway(self):
        gateway, provider = _gateway(json.dumps({"category": "Finance", "confidence": 0.9}))
        result = handle_issue_analysis(gateway, _op("issue_analysis", {"description": "Late invoices"}), _no_progress)
        assert result == {"category": "Finance", "confidence": 0.9}
        call = provider.calls[0]
        assert call["model"] == "gpt-4"
        assert call["max_tokens"] == 700
        assert call["temperature"] == 0.2
        assert call["timeout"] == 15
        assert "Late invoices" in call["prompt"]

    def test_plain_text_reply_falls_back(self):
        gateway, _ = _gateway("It is probably a process problem.")
        result = handle_issue_analysis(gateway, _op("issue_analysis", "Late invoices"), _no_progress)
        assert result["category"] == "General"
        assert result["confidence"] == 0.7
        assert result["impact"] == "It is probably a process problem."

    def test_description_required(self):
        gateway, provider = _gateway("{}")
        with pytest.raises(ValidationError):
            handle_issue_analysis(gateway, _op("issue_analysis", {"description": "  "}), _no_progress)
        assert provider.calls == []

    def test_empty_reply_is_provider_error(self):
        gateway, _ = _gateway("")
        with pytest.raises(ProviderError):
            handle_issue_analysis(gateway, _op("issue_analysis", "x"), _no_progress)

    def test_reports_progress(self):
        gateway, _ = _gateway("{}")
        seen = []
        handle_issue_analysis(gateway, _op("issue_analysis", "x"), lambda pct, message="": seen.append(pct))
        assert seen == [30, 60, 90]


class TestInitiativeGeneration:

    def test_scores_the_draft(self):
        draft = {"title": "Automate compliance checks", "problem": "", "goal": "",
                 "estimatedCost": 100, "estimatedBenefit": 300}
        gateway, _ = _gateway(json.dumps(draft))
        result = handle_initiative_generation(
            gateway, _op("initiative_generation", {"issues": ["Audits take weeks"]}), _no_progress,
        )
        assert result["scores"] == {"difficulty": 60, "roi": 100, "priority_score": 70.0}
        assert result["confidence"] == 0.85

    def test_business_profile_from_context(self):
        gateway, _ = _gateway(json.dumps({"title": "Plain"}))
        op = _op("initiative_generation", ["Audits take weeks"], context={"business_profile": {"size": 400}})
        result = handle_initiative_generation(gateway, op, _no_progress)
        assert result["scores"]["difficulty"] == 55

    def test_plain_text_reply_falls_back(self):
        gateway, _ = _gateway("Start with a pilot.")
        result = handle_initiative_generation(gateway, _op("initiative_generation", "Audits take weeks"),
                                              _no_progress)
        assert result["title"] == "Generated Initiative"
        assert result["problem"] == "Start with a pilot."

    def test_requires_issues(self):
        gateway, _ = _gateway("{}")
        with pytest.raises(ValidationError):
            handle_initiative_generation(gateway, _op("initiative_generation", {"issues": []}), _no_progress)


class TestClusteringAndInsights:

    def test_empty_input_skips_provider(self):
        gateway, provider = _gateway("{}")
        assert handle_clustering(gateway, _op("clustering", []), _no_progress) == {"clusters": [], "confidence": 0.8}
        assert provider.calls == []

    def test_clusters_parsed(self):
        reply = {"clusters": [{"name": "Approvals", "issueIds": [1, 2]}]}
        gateway, provider = _gateway(json.dumps(reply))
        issues = [{"id": 1, "description": "slow sign-off"}, {"id": 2, "description": "lost approvals"}]
        result = handle_clustering(gateway, _op("clustering", {"issues": issues}), _no_progress)
        assert result["clusters"] == reply["clusters"]
        assert result["confidence"] == 0.8
        assert "[2] lost approvals" in provider.calls[0]["prompt"]

    def test_insights_shape(self):
        gateway, _ = _gateway(json.dumps({"insights": ["a"], "confidence": 0.6}))
        result = handle_insights(gateway, _op("insights", {"weeks": 4}), _no_progress)
        assert result == {"insights": ["a"], "trends": [], "confidence": 0.6}

    def test_insights_fallback(self):
        gateway, _ = _gateway("no idea")
        assert handle_insights(gateway, _op("insights", "x"), _no_progress) == {
            "insights": [], "trends": [], "confidence": 0.9,
        }


class TestExecutor:

    def test_dispatches_by_type(self):
        gateway, _ = _gateway(json.dumps({"insights": ["x"]}))
        executor = OperationExecutor(gateway)
        assert executor(_op("insights", "x"), _no_progress)["insights"] == ["x"]

    def test_unknown_type(self):
        gateway, _ = _gateway("{}")
        with pytest.raises(ValidationError):
            OperationExecutor(gateway, handlers={})(_op("insights", "x"), _no_progress)
