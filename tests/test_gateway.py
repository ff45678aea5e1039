"""
FlowVision
Tests — LLM gateway.

Covers:
    - Local stub fallback when no API key is configured
    - Retry, then ProviderError after the last attempt
    - AIUsageLog rows for successes and failures
"""

import json

import pytest
from sqlalchemy import select

from flowvision.ai.gateway import LLMGateway, LLMProvider, LocalStubProvider
from flowvision.core.exceptions import ProviderError
from flowvision.models import db
from flowvision.models.ai import AIUsageLog, calculate_cost


class FlakyProvider(LLMProvider):
    """Fails ``failures`` times, then answers."""

    def __init__(self, failures=0, content="ok"):
        self.failures = failures
        self.content = content
        self.calls = []

    def chat(self, messages, model, **kwargs):
        self.calls.append({"model": model, **kwargs})
        if len(self.calls) <= self.failures:
            raise ConnectionError("upstream reset")
        return {"content": self.content, "prompt_tokens": 1000, "completion_tokens": 500, "model": model}


def _usage_rows():
    return db.session.execute(select(AIUsageLog).order_by(AIUsageLog.id)).scalars().all()


class TestLocalStub:

    def test_no_key_means_stub_only(self):
        gateway = LLMGateway(api_key="")
        assert gateway.available_providers == ["local"]
        result = gateway.complete("Analyze this business issue and provide structured insights", model="gpt-4")
        assert result["provider"] == "local"
        assert result["model"] == "local-stub"
        assert result["cost_usd"] == 0.0
        assert json.loads(result["content"])["category"] == "Process"

    @pytest.mark.parametrize("prompt,key", [
        ("Draft an initiative that addresses", "title"),
        ("Group these issues into clusters of related problems", "clusters"),
        ("Derive business insights and trends from the following data", "insights"),
    ])
    def test_stub_answers_by_task(self, prompt, key):
        content = LocalStubProvider().chat([{"role": "user", "content": prompt}])["content"]
        assert key in json.loads(content)

    def test_unrecognised_prompt_gets_plain_text(self):
        content = LocalStubProvider().chat([{"role": "user", "content": "hello"}])["content"]
        assert "OPENAI_API_KEY" in content

    def test_unknown_model_routes_to_stub(self):
        provider = FlakyProvider()
        gateway = LLMGateway(providers={"openai": provider})
        result = gateway.complete("Analyze this business issue", model="claude-unknown")
        assert result["provider"] == "local"
        assert provider.calls == []


class TestRetries:

    def test_recovers_within_budget(self):
        provider = FlakyProvider(failures=1)
        gateway = LLMGateway(providers={"openai": provider}, backoff_seconds=0)
        result = gateway.complete("hi", model="gpt-4", max_retries=2, max_tokens=300, temperature=0.1, timeout=12)
        assert result["content"] == "ok"
        assert len(provider.calls) == 2
        assert provider.calls[-1]["max_tokens"] == 300
        assert provider.calls[-1]["timeout"] == 12

    def test_gives_up_after_last_attempt(self):
        provider = FlakyProvider(failures=5)
        gateway = LLMGateway(providers={"openai": provider}, backoff_seconds=0)
        with pytest.raises(ProviderError) as exc:
            gateway.complete("hi", model="gpt-4", max_retries=3)
        assert len(provider.calls) == 3
        assert exc.value.provider == "openai"
        assert exc.value.model == "gpt-4"
        assert "upstream reset" in str(exc.value)

    def test_single_attempt(self):
        provider = FlakyProvider(failures=1)
        gateway = LLMGateway(providers={"openai": provider}, backoff_seconds=0)
        with pytest.raises(ProviderError):
            gateway.complete("hi", model="gpt-4", max_retries=1)
        assert len(provider.calls) == 1


class TestUsageLog:

    def test_success_is_logged_with_cost(self):
        gateway = LLMGateway(providers={"openai": FlakyProvider()}, backoff_seconds=0)
        gateway.complete("hi", model="gpt-4", purpose="issue_analysis", user="alice@acme.io",
                         operation_id="op_1")
        rows = _usage_rows()
        assert len(rows) == 1
        row = rows[0]
        assert row.success is True
        assert row.total_tokens == 1500
        assert row.cost_usd == pytest.approx(calculate_cost("gpt-4", 1000, 500))
        assert (row.purpose, row.user, row.operation_id) == ("issue_analysis", "alice@acme.io", "op_1")

    def test_failure_is_logged(self):
        gateway = LLMGateway(providers={"openai": FlakyProvider(failures=9)}, backoff_seconds=0)
        with pytest.raises(ProviderError):
            gateway.complete("hi", model="gpt-4", max_retries=2)
        rows = _usage_rows()
        assert len(rows) == 1
        assert rows[0].success is False
        assert "upstream reset" in rows[0].error_message


def test_cost_table():
    assert calculate_cost("gpt-4", 1_000_000, 0) == 30.0
    assert calculate_cost("unknown-model", 1000, 1000) == 0.0
