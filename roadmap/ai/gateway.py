"""
Business Roadmap Engine
LLM Gateway.

Provider-agnostic LLM router with:
    - Multi-provider support (Anthropic Claude, OpenAI, local stub)
    - Auto-retry with exponential backoff
    - Request timeout passed to the provider client
    - Token / latency logging

Usage:
    from roadmap.ai.gateway import LLMGateway
    gw = LLMGateway(default_model="claude-3-5-haiku-20241022", timeout=60)
    result = gw.chat([{"role": "user", "content": "..."}], purpose="phase_generation")
"""

import json
import logging
import os
import re
import threading
import time
from abc import ABC, abstractmethod

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
            **kwargs: temperature, max_tokens, etc.

        Returns:
            dict with keys: content, prompt_tokens, completion_tokens, model
        """
        ...


# ── Anthropic Provider ────────────────────────────────────────────────────────

class AnthropicProvider(LLMProvider):
    """Claude API (Anthropic) provider."""

    def __init__(self, timeout: float | None = None):
        self.api_key = os.getenv("ANTHROPIC_API_KEY", "")
        self.timeout = timeout
        self._client = None

    def _get_client(self):
        if self._client is None:
            try:
                import anthropic
            except ImportError:
                raise RuntimeError("anthropic package not installed. Run: pip install anthropic")
            kwargs = {"api_key": self.api_key}
            if self.timeout:
                kwargs["timeout"] = self.timeout
            self._client = anthropic.Anthropic(**kwargs)
        return self._client

    def chat(self, messages: list, model: str = "claude-3-5-haiku-20241022", **kwargs) -> dict:
        client = self._get_client()

        # Separate system message
        system_msg = ""
        chat_messages = []
        for m in messages:
            if m["role"] == "system":
                system_msg = m["content"]
            else:
                chat_messages.append(m)

        params = {
            "model": model,
            "messages": chat_messages,
            "max_tokens": kwargs.get("max_tokens", 4096),
            "temperature": kwargs.get("temperature", 0.7),
        }
        if system_msg:
            params["system"] = system_msg

        response = client.messages.create(**params)

        return {
            "content": response.content[0].text,
            "prompt_tokens": response.usage.input_tokens,
            "completion_tokens": response.usage.output_tokens,
            "model": model,
        }


# ── OpenAI Provider ───────────────────────────────────────────────────────────

class OpenAIProvider(LLMProvider):
    """OpenAI GPT provider."""

    def __init__(self, timeout: float | None = None):
        self.api_key = os.getenv("OPENAI_API_KEY", "")
        self.timeout = timeout
        self._client = None

    def _get_client(self):
        if self._client is None:
            try:
                import openai
            except ImportError:
                raise RuntimeError("openai package not installed. Run: pip install openai")
            kwargs = {"api_key": self.api_key}
            if self.timeout:
                kwargs["timeout"] = self.timeout
            self._client = openai.OpenAI(**kwargs)
        return self._client

    def chat(self, messages: list, model: str = "gpt-4o-mini", **kwargs) -> dict:
        client = self._get_client()
        response = client.chat.completions.create(
            model=model,
            messages=messages,
            max_tokens=kwargs.get("max_tokens", 4096),
            temperature=kwargs.get("temperature", 0.7),
            response_format={"type": "json_object"},
        )
        choice = response.choices[0]
        return {
            "content": choice.message.content,
            "prompt_tokens": response.usage.prompt_tokens,
            "completion_tokens": response.usage.completion_tokens,
            "model": model,
        }


# ── Local Stub Provider (for dev/test without API keys) ──────────────────────

_STUB_PHASE_NAMES = {
    "lean_startup": [
        "Problem-Solution Fit", "Minimum Viable Product", "Product-Market Fit",
        "Scale & Growth", "Expansion", "Maturity",
    ],
    "scaling_up": [
        "Foundation & People", "Strategy & Positioning", "Execution Rhythm",
        "Cash & Scale", "Expansion", "Maturity",
    ],
}

_STUB_METRICS = ["leads", "users", "revenue", "conversions"]


class LocalStubProvider(LLMProvider):
    """
    Local stub that returns deterministic phase content for dev/testing.
    No API key required.

    It reads the ``METHODOLOGY:``, ``PHASE_COUNT:``, ``PHASE_NUMBER:`` and
    ``KR ID:`` markers that the phase prompts carry.
    """

    def chat(self, messages: list, model: str = "local-stub", **kwargs) -> dict:
        # Extract last user message
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
    def _marker(text: str, name: str, default: str = "") -> str:
        match = re.search(rf"^{name}:\s*(\S+)", text, re.MULTILINE)
        return match.group(1) if match else default

    @classmethod
    def _stub_phase(cls, number: int, methodology: str, kr_ids: list[int]) -> dict:
        names = _STUB_PHASE_NAMES.get(methodology, _STUB_PHASE_NAMES["lean_startup"])
        name = names[(number - 1) % len(names)]
        metric = _STUB_METRICS[(number - 1) % len(_STUB_METRICS)]
        objective = {
            "name": f"Reach phase {number} {metric} target",
            "metric": metric,
            "current": 0,
            "target": 10 * number,
        }
        # Bind the first phase objective to an existing key result when one is offered
        if number == 1 and kr_ids:
            objective["linked_kr_id"] = str(kr_ids[0])
        return {
            "phase_number": number,
            "phase_name": name,
            "phase_description": f"{name}: focus work for phase {number}.",
            "duration_weeks": 4 + 2 * (number - 1),
            "objectives": [objective],
            "checklist": [
                {"task": f"{name} - define the plan", "category": "strategy", "functional_role": "ceo"},
                {"task": f"{name} - run the first experiment", "category": "execution",
                 "functional_role": "operations"},
                {"task": f"{name} - review results", "category": "analysis", "functional_role": "ceo"},
            ],
            "playbook": {
                "how_to_start": f"Kick off {name.lower()} with the leadership team.",
                "daily_activities": ["Review key metrics", "Unblock the team"],
                "key_questions": [f"What does success in {name.lower()} look like?"],
                "mistakes_to_avoid": ["Skipping customer feedback"],
            },
        }

    @classmethod
    def _generate_stub_response(cls, user_msg: str) -> str:
        methodology = cls._marker(user_msg, "METHODOLOGY", "lean_startup")
        kr_ids = [int(i) for i in re.findall(r"KR ID:\s*(\d+)", user_msg)]
        single = cls._marker(user_msg, "PHASE_NUMBER")
        if single.isdigit():
            numbers = [int(single)]
        else:
            count = cls._marker(user_msg, "PHASE_COUNT", "4")
            numbers = list(range(1, (int(count) if count.isdigit() else 4) + 1))
        return json.dumps({
            "methodology": methodology,
            "phases": [cls._stub_phase(n, methodology, kr_ids) for n in numbers],
        })


# ── LLM Gateway (Main Interface) ─────────────────────────────────────────────

class LLMGateway:
    """
    Central gateway for all LLM calls.

    Features:
        - Provider routing based on model name
        - Auto-retry with exponential backoff
        - Usage logging (tokens, latency, provider)

    A model whose provider has no API key configured is served by the
    local stub, with a warning, unless ``allow_stub_fallback`` is off; then
    the call raises and no placeholder content is produced.
    """

    # Model → provider mapping
    PROVIDER_MAP = {
        # Anthropic
        "claude-3-5-haiku-20241022": "anthropic",
        "claude-3-5-sonnet-20241022": "anthropic",
        "claude-sonnet-4-20250514": "anthropic",
        "claude-opus-4-20250514": "anthropic",
        # OpenAI
        "gpt-4o": "openai",
        "gpt-4o-mini": "openai",
        # Local stub (dev/test)
        "local-stub": "local",
    }

    def __init__(self, default_model: str | None = None, timeout: float | None = None,
                 retry_backoff: float = 1.0, allow_stub_fallback: bool = True):
        self.default_model = default_model or os.getenv("LLM_DEFAULT_CHAT_MODEL", "local-stub")
        self.timeout = timeout
        self.retry_backoff = retry_backoff
        self.allow_stub_fallback = allow_stub_fallback
        self._providers = {}
        self._init_providers()

    @classmethod
    def from_config(cls, config) -> "LLMGateway":
        return cls(
            default_model=config.get("LLM_DEFAULT_CHAT_MODEL"),
            timeout=config.get("LLM_TIMEOUT_SECONDS"),
            retry_backoff=config.get("LLM_RETRY_BACKOFF_SECONDS", 1.0),
            allow_stub_fallback=config.get("LLM_ALLOW_STUB_FALLBACK", True),
        )

    def _init_providers(self):
        # Always register local stub
        self._providers["local"] = LocalStubProvider()

        # Register real providers if API keys present
        if os.getenv("ANTHROPIC_API_KEY"):
            self._providers["anthropic"] = AnthropicProvider(timeout=self.timeout)
        if os.getenv("OPENAI_API_KEY"):
            self._providers["openai"] = OpenAIProvider(timeout=self.timeout)

    def _get_provider(self, model: str) -> tuple[LLMProvider, str]:
        """
        Resolve model to provider. Falls back to the local stub when the real
        provider is unavailable and fallback is allowed; raises otherwise.
        Returns (provider, provider_name).
        """
        provider_name = self.PROVIDER_MAP.get(model, "unknown")

        if provider_name in self._providers:
            return self._providers[provider_name], provider_name

        if not self.allow_stub_fallback:
            raise RuntimeError(
                f"Provider '{provider_name}' not configured for model '{model}' "
                "and stub fallback is disabled"
            )
        logger.warning(
            "Provider '%s' not configured for model '%s'. Falling back to local stub.",
            provider_name, model,
        )
        return self._providers["local"], "local"

    def chat(
        self,
        messages: list,
        model: str | None = None,
        *,
        purpose: str = "",
        organization_id: int | None = None,
        max_retries: int = 1,
        **kwargs,
    ) -> dict:
        """
        Send a chat completion request with retry.

        Args:
            messages: Chat messages.
            model: Model identifier (defaults to the gateway's default model).
            purpose: What the call is for (e.g. "phase_generation").
            organization_id: Organization the call is made for (logging only).
            max_retries: Retries after the first attempt.
            **kwargs: temperature, max_tokens passed to provider.

        Returns:
            dict: {content, prompt_tokens, completion_tokens, model, latency_ms, provider}

        Raises:
            RuntimeError: every attempt failed.
        """
        model = model or self.default_model
        provider, provider_name = self._get_provider(model)
        attempts = max(0, max_retries) + 1

        last_error = None
        for attempt in range(1, attempts + 1):
            start_time = time.time()
            try:
                result = provider.chat(messages, model, **kwargs)
                latency_ms = int((time.time() - start_time) * 1000)
                result["latency_ms"] = latency_ms
                result["provider"] = provider_name
                logger.info(
                    "LLM call ok: purpose=%s provider=%s model=%s tokens=%d+%d (%dms)",
                    purpose, provider_name, model,
                    result["prompt_tokens"], result["completion_tokens"], latency_ms,
                    extra={"organization_id": organization_id, "event_type": "llm_call"},
                )
                return result
            except Exception as e:
                last_error = e
                logger.warning(
                    "LLM call attempt %d/%d failed: %s", attempt, attempts, e,
                    extra={"organization_id": organization_id, "event_type": "llm_call"},
                )
                if attempt < attempts and self.retry_backoff:
                    backoff = min(self.retry_backoff * 2 ** (attempt - 1), 4)
                    threading.Event().wait(backoff)

        raise RuntimeError(f"LLM call failed after {attempts} attempt(s): {last_error}")
