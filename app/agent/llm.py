"""
Agent LLM: OpenAI, Anthropic and Hugging Face behind one call interface.

Responsibility: Normalize vendor request/response shapes to
call(model, messages, config) -> LLMResponse. The manager routes a model id to the
provider that owns it and, on failure, retries once on the next available
provider with that provider's default model. No blind retry loops.
"""

import json
import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Protocol

import anthropic
import httpx
from openai import OpenAI, OpenAIError

from app.agent.tracking import CallTracker
from app.core.config import (
    ANTHROPIC_API_KEY,
    ANTHROPIC_DEFAULT_MODEL,
    HF_API_KEY,
    HF_CHAT_URL,
    HF_LLM_MODEL,
    LLM_API_TIMEOUT,
    OPENAI_API_KEY,
    OPENAI_DEFAULT_MODEL,
    REASONING_MAX_TOKENS,
    REASONING_TEMPERATURE,
    SYNTHESIS_MAX_TOKENS,
    SYNTHESIS_TEMPERATURE,
)
from app.core.errors import AllProvidersFailedError, ProviderError

logger = logging.getLogger(__name__)

Message = dict[str, str]

# OpenAI reasoning-family models take max_completion_tokens and no temperature
_OPENAI_REASONING_PREFIXES: tuple[str, ...] = ("o1", "o3", "o4", "gpt-5")


@dataclass(frozen=True)
class LLMConfig:
    temperature: float = REASONING_TEMPERATURE
    max_tokens: int = REASONING_MAX_TOKENS
    # "max_tokens" or "max_completion_tokens" (OpenAI only)
    token_parameter: str | None = None
    json_mode: bool = False
    timeout: float = LLM_API_TIMEOUT


REASONING_CONFIG = LLMConfig(temperature=REASONING_TEMPERATURE, max_tokens=REASONING_MAX_TOKENS)
SYNTHESIS_CONFIG = LLMConfig(temperature=SYNTHESIS_TEMPERATURE, max_tokens=SYNTHESIS_MAX_TOKENS)


def config_from_request(overrides: dict[str, Any] | None, base: LLMConfig = SYNTHESIS_CONFIG) -> LLMConfig:
    """Apply a request's modelConfig ({max_tokens, temperature, tokenParameter}) over a base config."""
    if not overrides:
        return base
    changes: dict[str, Any] = {}
    if isinstance(overrides.get("max_tokens"), int) and overrides["max_tokens"] > 0:
        changes["max_tokens"] = overrides["max_tokens"]
    temperature = overrides.get("temperature")
    if isinstance(temperature, (int, float)) and 0 <= temperature <= 2:
        changes["temperature"] = float(temperature)
    token_parameter = overrides.get("tokenParameter") or overrides.get("token_parameter")
    if token_parameter in ("max_tokens", "max_completion_tokens"):
        changes["token_parameter"] = token_parameter
    return replace(base, **changes)


@dataclass
class LLMResponse:
    text: str
    provider: str
    model: str
    usage: int = 0


class LLMProvider(Protocol):
    name: str
    default_model: str

    def is_available(self) -> bool: ...

    def owns_model(self, model: str) -> bool: ...

    def call(self, model: str, messages: list[Message], config: LLMConfig) -> LLMResponse: ...


def provider_for_model(model: str) -> str:
    """Provider name a model id belongs to: claude-* -> anthropic, org/name -> huggingface."""
    m = (model or "").strip().lower()
    if m.startswith("claude"):
        return "anthropic"
    if "/" in m:
        return "huggingface"
    return "openai"


class OpenAIProvider:
    """Chat completions via the openai SDK. Single-shot, token-limit keyed."""

    name = "openai"

    def __init__(self, api_key: str = OPENAI_API_KEY, default_model: str = OPENAI_DEFAULT_MODEL) -> None:
        self.api_key = api_key
        self.default_model = default_model
        self._client: OpenAI | None = None

    def is_available(self) -> bool:
        return bool(self.api_key)

    def owns_model(self, model: str) -> bool:
        return provider_for_model(model) == self.name

    def _get_client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(api_key=self.api_key, max_retries=0)
        return self._client

    def call(self, model: str, messages: list[Message], config: LLMConfig) -> LLMResponse:
        reasoning_family = model.startswith(_OPENAI_REASONING_PREFIXES)
        token_parameter = config.token_parameter or ("max_completion_tokens" if reasoning_family else "max_tokens")
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            token_parameter: config.max_tokens,
            "timeout": config.timeout,
        }
        if not reasoning_family:
            kwargs["temperature"] = config.temperature
        if config.json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            response = self._get_client().chat.completions.create(**kwargs)
        except OpenAIError as e:
            raise ProviderError(self.name, str(e)) from e
        msg = response.choices[0].message if response.choices else None
        out = ((msg.content if msg else None) or "").strip()
        usage = getattr(response, "usage", None)
        total = getattr(usage, "total_tokens", 0) or 0
        logger.info("[llm:openai] OUT model=%s response_len=%d tokens=%d", model, len(out), total)
        return LLMResponse(text=out, provider=self.name, model=model, usage=total)


class AnthropicProvider:
    """Messages API via the anthropic SDK. System prompt travels separately from the message list."""

    name = "anthropic"

    def __init__(self, api_key: str = ANTHROPIC_API_KEY, default_model: str = ANTHROPIC_DEFAULT_MODEL) -> None:
        self.api_key = api_key
        self.default_model = default_model
        self._client: anthropic.Anthropic | None = None

    def is_available(self) -> bool:
        return bool(self.api_key)

    def owns_model(self, model: str) -> bool:
        return provider_for_model(model) == self.name

    def _get_client(self) -> anthropic.Anthropic:
        if self._client is None:
            self._client = anthropic.Anthropic(api_key=self.api_key, max_retries=0)
        return self._client

    @staticmethod
    def split_messages(messages: list[Message]) -> tuple[str, list[Message]]:
        """Pull system messages out; merge consecutive same-role turns (the API requires alternation)."""
        system_parts: list[str] = []
        turns: list[Message] = []
        for m in messages:
            role = (m.get("role") or "user").lower()
            content = m.get("content") or ""
            if role == "system":
                system_parts.append(content)
                continue
            role = "assistant" if role == "assistant" else "user"
            if turns and turns[-1]["role"] == role:
                turns[-1] = {"role": role, "content": turns[-1]["content"] + "\n\n" + content}
            else:
                turns.append({"role": role, "content": content})
        if not turns or turns[0]["role"] != "user":
            turns.insert(0, {"role": "user", "content": "Continue."})
        return "\n\n".join(system_parts), turns

    def call(self, model: str, messages: list[Message], config: LLMConfig) -> LLMResponse:
        system, turns = self.split_messages(messages)
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": turns,
            "max_tokens": max(1, config.max_tokens),
            "temperature": min(1.0, config.temperature),
            "timeout": config.timeout,
        }
        if system:
            kwargs["system"] = system
        try:
            response = self._get_client().messages.create(**kwargs)
        except anthropic.AnthropicError as e:
            raise ProviderError(self.name, str(e)) from e
        parts = [getattr(block, "text", "") for block in response.content or [] if getattr(block, "type", "") == "text"]
        out = "".join(parts).strip()
        usage = getattr(response, "usage", None)
        total = (getattr(usage, "input_tokens", 0) or 0) + (getattr(usage, "output_tokens", 0) or 0)
        logger.info("[llm:anthropic] OUT model=%s response_len=%d tokens=%d", model, len(out), total)
        return LLMResponse(text=out, provider=self.name, model=model, usage=total)


class HuggingFaceProvider:
    """Hugging Face router chat completions over httpx."""

    name = "huggingface"

    def __init__(self, api_key: str = HF_API_KEY, default_model: str = HF_LLM_MODEL, url: str = HF_CHAT_URL) -> None:
        self.api_key = api_key
        self.default_model = default_model
        self.url = url

    def is_available(self) -> bool:
        return bool(self.api_key)

    def owns_model(self, model: str) -> bool:
        return provider_for_model(model) == self.name

    def call(self, model: str, messages: list[Message], config: LLMConfig) -> LLMResponse:
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        payload = {
            "model": model,
            "messages": messages,
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
        }
        try:
            with httpx.Client(timeout=config.timeout) as client:
                response = client.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise ProviderError(self.name, f"request failed: {e}") from e
        if response.status_code != 200:
            raise ProviderError(self.name, f"HTTP {response.status_code}: {response.text[:200]}")
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(self.name, "non-JSON response") from e
        choices = data.get("choices") or []
        out = ""
        if choices and isinstance(choices[0], dict):
            out = ((choices[0].get("message") or {}).get("content") or "").strip()
        total = int((data.get("usage") or {}).get("total_tokens") or 0)
        logger.info("[llm:hf] OUT model=%s response_len=%d", model, len(out))
        return LLMResponse(text=out, provider=self.name, model=model, usage=total)


class LLMProviderManager:
    """Ordered provider list behind one call(). Built once per process, shared by runs."""

    def __init__(self, providers: list[LLMProvider]) -> None:
        self.providers = list(providers)

    def available(self) -> list[LLMProvider]:
        return [p for p in self.providers if p.is_available()]

    def is_configured(self) -> bool:
        return bool(self.available())

    def _plan(self, model: str) -> list[tuple[LLMProvider, str]]:
        """Owning provider first (with the requested model), then one fallback with its default model."""
        available = self.available()
        owner = next((p for p in available if p.owns_model(model)), None)
        plan: list[tuple[LLMProvider, str]] = []
        if owner is not None:
            plan.append((owner, model))
        fallback = next((p for p in available if p is not owner), None)
        if fallback is not None:
            plan.append((fallback, fallback.default_model))
        return plan[:2]

    def call(
        self,
        model: str,
        messages: list[Message],
        config: LLMConfig,
        purpose: str = "llm",
        tracker: CallTracker | None = None,
    ) -> LLMResponse:
        logger.info("[llm:call] IN  purpose=%s model=%s messages=%d", purpose, model, len(messages))
        errors: list[str] = []
        for provider, provider_model in self._plan(model):
            started = time.perf_counter()
            try:
                response = provider.call(provider_model, messages, config)
            except ProviderError as e:
                elapsed = (time.perf_counter() - started) * 1000
                logger.warning("[llm:call] provider=%s model=%s failed: %s", provider.name, provider_model, e.message)
                if tracker is not None:
                    tracker.record(purpose, provider.name, elapsed, False, provider_model, error=e.message[:200])
                errors.append(f"{provider.name}: {e.message}")
                continue
            elapsed = (time.perf_counter() - started) * 1000
            if tracker is not None:
                tracker.record(purpose, provider.name, elapsed, True, provider_model, response.usage)
            if not response.text:
                # Empty completions are treated as failures so the fallback gets a chance
                errors.append(f"{provider.name}: empty response")
                logger.info("[llm:call] provider=%s returned empty text", provider.name)
                continue
            logger.info("[llm:call] OUT purpose=%s provider=%s len=%d", purpose, provider.name, len(response.text))
            return response
        raise AllProvidersFailedError("llm", errors)


def build_llm_manager() -> LLMProviderManager:
    return LLMProviderManager([OpenAIProvider(), AnthropicProvider(), HuggingFaceProvider()])


def parse_json_object(text: str) -> dict[str, Any] | None:
    """Defensive JSON parse of model output: strips code fences, falls back to the outermost {...}."""
    raw = (text or "").strip()
    if not raw:
        return None
    if raw.startswith("```"):
        raw = raw.strip("`")
        if raw.lower().startswith("json"):
            raw = raw[4:]
        raw = raw.strip()
    candidates = [raw]
    start, end = raw.find("{"), raw.rfind("}")
    if start != -1 and end > start:
        candidates.append(raw[start : end + 1])
    for candidate in candidates:
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value
    return None
