"""
FlowVision
LLM Gateway.

Provider-agnostic chat-completion router with:
    - OpenAI provider (``openai`` SDK) and a deterministic local stub
    - Auto-retry with exponential backoff
    - Token tracking & cost logging to AIUsageLog
    - Fallback to the local stub when no OPENAI_API_KEY is configured

Usage:
    from flowvision.ai.gateway import LLMGateway
    gw = LLMGateway()
    result = gw.complete("Analyze this business issue...", model="gpt-4", max_tokens=1000)
"""

import json
import logging
import os
import threading
import time
from abc import ABC, abstractmethod

from flask import has_app_context
from sqlalchemy.exc import SQLAlchemyError

from flowvision.core.exceptions import ProviderError
from flowvision.models import db
from flowvision.models.ai import AIUsageLog, calculate_cost

logger = logging.getLogger(__name__)


# ── Provider Abstract Base ────────────────────────────────────────────────────

class LLMProvider(ABC):
    """Abstract interface for LLM providers."""

    @abstractmethod
    def chat(self, messages: list, model: str, **kwargs) -> dict:
        """
        Send a chat completion request.

        Args:
            messages: List of {"role": "...", "content": "..."} dicts.
            model: Model identifier string.
            **kwargs: temperature, max_tokens, timeout.

        Returns:
            dict with keys: content, prompt_tokens, completion_tokens, model
        """
        ...


# ── OpenAI Provider ───────────────────────────────────────────────────────────

class OpenAIProvider(LLMProvider):
    """OpenAI chat completions provider."""

    def __init__(self, api_key: str | None = None):
        self.api_key = api_key or os.getenv("OPENAI_API_KEY", "")
        self._client = None

    def _get_client(self):
        if self._client is None:
            import openai
            self._client = openai.OpenAI(api_key=self.api_key)
        return self._client

    def chat(self, messages: list, model: str = "gpt-3.5-turbo", **kwargs) -> dict:
        client = self._get_client()
        params = {
            "model": model,
            "messages": messages,
            "max_tokens": kwargs.get("max_tokens", 1000),
            "temperature": kwargs.get("temperature", 0.3),
        }
        if kwargs.get("timeout"):
            params["timeout"] = kwargs["timeout"]
        response = client.chat.completions.create(**params)
        choice = response.choices[0]
        return {
            "content": choice.message.content or "",
            "prompt_tokens": response.usage.prompt_tokens,
            "completion_tokens": response.usage.completion_tokens,
            "model": model,
        }


# ── Local Stub Provider ───────────────────────────────────────────────────────

class LocalStubProvider(LLMProvider):
    """
    Local stub that returns deterministic responses for dev/testing.
    No API key required.
    """

    def chat(self, messages: list, model: str = "local-stub", **kwargs) -> dict:
        user_msg = ""
        for m in reversed(messages):
            if m["role"] == "user":
                user_msg = m["content"]
                break

        content = self._generate_stub_response(user_msg)

        return {
            "content": content,
            "prompt_tokens": len(user_msg.split()) * 2,  # rough estimate
            "completion_tokens": len(content.split()) * 2,
            "model": "local-stub",
        }

    @staticmethod
    def _generate_stub_response(user_msg: str) -> str:
        """Generate a context-aware stub response keyed on the prompt's task line."""
        lower = user_msg.lower()

        if "analyze this business issue" in lower:
            return json.dumps({
                "category": "Process",
                "priority": "medium",
                "impact": "Slows down day-to-day delivery for the affected team.",
                "rootCause": "Manual hand-offs between systems",
                "recommendations": [
                    "Map the current hand-off steps",
                    "Automate the most frequent transfer",
                ],
                "estimatedEffort": "Medium",
                "confidence": 0.75,
            })

        if "draft an initiative" in lower or "generate an initiative" in lower:
            return json.dumps({
                "title": "Streamline cross-team hand-offs",
                "problem": "Work stalls while waiting on manual transfers between teams.",
                "goal": "Cut average hand-off wait time in half within one quarter.",
                "kpis": ["Average hand-off wait time", "Tickets reopened after transfer"],
                "estimatedCost": 20000,
                "estimatedBenefit": 35000,
                "priority": "high",
                "estimatedDuration": "6-8 weeks",
            })

        if "group these issues into clusters" in lower:
            return json.dumps({
                "clusters": [
                    {"name": "Process friction", "issueIds": [], "summary": "Manual steps and waiting."},
                ],
            })

        if "business insights" in lower:
            return json.dumps({
                "insights": ["Most reported issues concern manual process steps."],
                "trends": ["Issue volume is stable week over week."],
            })

        return (
            "This is a local stub response. Configure OPENAI_API_KEY "
            "to get real AI-generated content."
        )


# ── LLM Gateway (Main Interface) ─────────────────────────────────────────────

class LLMGateway:
    """
    Central gateway for all LLM calls.

    Features:
        - Provider routing based on model name
        - Auto-retry with exponential backoff
        - Token/cost tracking (persisted to DB when an app context exists)

    Usage:
        gw = LLMGateway(api_key=app.config["OPENAI_API_KEY"])
        result = gw.chat(
            messages=[{"role": "user", "content": "Analyze this business issue..."}],
            model="gpt-4",
            purpose="issue_analysis",
        )
    """

    # Model → provider mapping
    PROVIDER_MAP = {
        "gpt-3.5-turbo": "openai",
        "gpt-3.5-turbo-16k": "openai",
        "gpt-4": "openai",
        "gpt-4-turbo": "openai",
        "gpt-4-turbo-preview": "openai",
        "gpt-4o": "openai",
        "gpt-4o-mini": "openai",
        "local-stub": "local",
    }

    DEFAULT_CHAT_MODEL = os.getenv("LLM_DEFAULT_CHAT_MODEL", "gpt-3.5-turbo")

    def __init__(
        self,
        api_key: str | None = None,
        *,
        default_model: str | None = None,
        backoff_seconds: float = 1.0,
        providers: dict[str, LLMProvider] | None = None,
    ):
        self._providers: dict[str, LLMProvider] = {}
        self.default_model = default_model or self.DEFAULT_CHAT_MODEL
        self.backoff_seconds = backoff_seconds
        if providers is not None:
            self._providers.update(providers)
            self._providers.setdefault("local", LocalStubProvider())
        else:
            self._init_providers(api_key)

    def _init_providers(self, api_key: str | None):
        """Initialize available providers based on configuration."""
        self._providers["local"] = LocalStubProvider()
        key = api_key if api_key is not None else os.getenv("OPENAI_API_KEY", "")
        if key:
            self._providers["openai"] = OpenAIProvider(key)

    @property
    def available_providers(self) -> list[str]:
        return sorted(self._providers)

    def _get_provider(self, model: str) -> tuple[LLMProvider, str]:
        """
        Resolve model to provider. Falls back to local stub if real provider unavailable.
        Returns (provider, provider_name).
        """
        provider_name = self.PROVIDER_MAP.get(model, "local")

        if provider_name in self._providers:
            return self._providers[provider_name], provider_name

        logger.debug(
            "Provider '%s' not available (no API key?). Falling back to local stub for model '%s'.",
            provider_name, model,
        )
        return self._providers["local"], "local"

    def chat(
        self,
        messages: list,
        model: str | None = None,
        *,
        purpose: str = "",
        user: str = "system",
        operation_id: str | None = None,
        max_retries: int = 3,
        **kwargs,
    ) -> dict:
        """
        Send a chat completion request with retry.

        Args:
            messages: Chat messages.
            model: Model identifier (defaults to ``default_model``).
            purpose: What the call is for (e.g. "issue_analysis").
            user: Who triggered the call.
            operation_id: Queue operation this call belongs to, if any.
            max_retries: Total attempts before giving up.
            **kwargs: temperature, max_tokens, timeout passed to provider.

        Returns:
            dict: {content, prompt_tokens, completion_tokens, model, cost_usd,
                   latency_ms, provider}

        Raises:
            ProviderError: every attempt failed.
        """
        model = model or self.default_model
        provider, provider_name = self._get_provider(model)
        attempts = max(1, int(max_retries))

        last_error = None
        for attempt in range(1, attempts + 1):
            start_time = time.time()
            try:
                result = provider.chat(messages, model, **kwargs)
                latency_ms = int((time.time() - start_time) * 1000)

                cost = calculate_cost(result["model"], result["prompt_tokens"], result["completion_tokens"])
                result["cost_usd"] = cost
                result["latency_ms"] = latency_ms
                result["provider"] = provider_name

                self._log_usage(
                    provider=provider_name, model=result["model"],
                    prompt_tokens=result["prompt_tokens"],
                    completion_tokens=result["completion_tokens"],
                    cost_usd=cost, latency_ms=latency_ms,
                    user=user, purpose=purpose, operation_id=operation_id,
                    success=True,
                )
                return result

            except Exception as e:  # provider SDKs raise many unrelated types
                last_error = e
                logger.warning(
                    "LLM call attempt %d/%d failed: %s", attempt, attempts, e,
                    extra={"operation_id": operation_id},
                )
                if attempt < attempts and self.backoff_seconds > 0:
                    backoff = min(self.backoff_seconds * 2 ** (attempt - 1), 4)
                    threading.Event().wait(backoff)

        self._log_usage(
            provider=provider_name, model=model,
            prompt_tokens=0, completion_tokens=0,
            cost_usd=0.0, latency_ms=0,
            user=user, purpose=purpose, operation_id=operation_id,
            success=False, error_message=str(last_error),
        )
        raise ProviderError(
            f"LLM call failed after {attempts} attempt(s): {last_error}",
            provider=provider_name,
            model=model,
        )

    def complete(
        self,
        prompt: str,
        *,
        model: str | None = None,
        max_tokens: int = 1000,
        temperature: float = 0.3,
        system: str | None = None,
        timeout: float | None = None,
        **kwargs,
    ) -> dict:
        """Single-prompt convenience wrapper around :meth:`chat`."""
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        return self.chat(
            messages,
            model,
            max_tokens=max_tokens,
            temperature=temperature,
            timeout=timeout,
            **kwargs,
        )

    # ── Internal Logging ──────────────────────────────────────────────────

    @staticmethod
    def _log_usage(*, provider, model, prompt_tokens, completion_tokens,
                   cost_usd, latency_ms, user, purpose, operation_id,
                   success, error_message=None):
        """Stage a usage log record; the caller's transaction commits it."""
        if not has_app_context():
            return
        try:
            log = AIUsageLog(
                provider=provider, model=model,
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
                cost_usd=cost_usd, latency_ms=latency_ms,
                user=user, purpose=purpose, operation_id=operation_id,
                success=success, error_message=error_message,
            )
            db.session.add(log)
            # flush, not commit, so the caller's unit of work stays intact
            db.session.flush()
        except SQLAlchemyError as e:
            logger.error("Failed to log AI usage: %s", e)
            db.session.rollback()
