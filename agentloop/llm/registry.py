"""Model registry: model name -> provider and request parameters."""

import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

import httpx

from agentloop.config import Config, ProviderConfig, get_config
from agentloop.exceptions import ConfigurationError
from agentloop.llm.anthropic import AnthropicProvider
from agentloop.llm.base import LLMProvider
from agentloop.llm.bedrock import BedrockProvider
from agentloop.llm.gemini import GeminiProvider
from agentloop.llm.openai import OpenAIProvider
from agentloop.llm.openai_compatible import COMPATIBLE_BASE_URLS, OpenAICompatibleProvider


@dataclass(frozen=True)
class ModelEntry:
    """One registry entry. ``params["model"]`` is the vendor model id."""

    provider: str
    params: Mapping[str, Any] = field(default_factory=dict)


def _thinking(model: str, max_tokens: int, budget: int) -> dict[str, Any]:
    return {
        "model": model,
        "max_tokens": max_tokens,
        "thinking": {"type": "enabled", "budget_tokens": budget},
    }


def _reasoning(model: str, effort: str) -> dict[str, Any]:
    return {"model": model, "reasoning": {"effort": effort, "summary": "auto"}}


def _gemini(model: str, level: str, max_output_tokens: int) -> dict[str, Any]:
    return {
        "model": model,
        "generationConfig": {
            "maxOutputTokens": max_output_tokens,
            "thinkingConfig": {"includeThoughts": True, "thinkingLevel": level},
        },
    }


BUILTIN_MODELS: dict[str, ModelEntry] = {
    "gpt-thinking-low": ModelEntry("openai", _reasoning("gpt-5.2", "low")),
    "gpt-thinking-medium": ModelEntry("openai", _reasoning("gpt-5.2", "medium")),
    "gpt-thinking-high": ModelEntry("openai", _reasoning("gpt-5.2", "high")),
    "gpt-codex-medium": ModelEntry("openai", _reasoning("gpt-5.3-codex", "medium")),
    "gpt-codex-high": ModelEntry("openai", _reasoning("gpt-5.3-codex", "high")),
    "claude-haiku-thinking-8k": ModelEntry("anthropic", _thinking("claude-haiku-4-5", 1024 * 16, 1024 * 8)),
    "claude-sonnet-thinking-8k": ModelEntry("anthropic", _thinking("claude-sonnet-4-6", 1024 * 16, 1024 * 8)),
    "claude-sonnet-thinking-16k": ModelEntry("anthropic", _thinking("claude-sonnet-4-6", 1024 * 32, 1024 * 16)),
    "claude-opus-thinking-8k": ModelEntry("anthropic", _thinking("claude-opus-4-6", 1024 * 16, 1024 * 8)),
    "claude-opus-thinking-16k": ModelEntry("anthropic", _thinking("claude-opus-4-6", 1024 * 32, 1024 * 16)),
    "gemini-flash-thinking-low": ModelEntry("gemini", _gemini("gemini-3-flash-preview", "low", 1024 * 16)),
    "gemini-flash-thinking-high": ModelEntry("gemini", _gemini("gemini-3-flash-preview", "high", 1024 * 48)),
    "gemini-pro-thinking-high": ModelEntry("gemini", _gemini("gemini-3.1-pro-preview", "high", 1024 * 64)),
    "bedrock-claude-haiku": ModelEntry(
        "bedrock",
        {"model": "global.anthropic.claude-haiku-4-5-20251001-v1:0", "max_tokens": 1024 * 16},
    ),
    "kimi": ModelEntry("moonshotai", {"model": "kimi-k2.5", "thinking": {"type": "enabled"}}),
    "deepseek": ModelEntry("deepseek", {"model": "deepseek-v3.2", "thinking": {"type": "enabled"}}),
    "grok-fast": ModelEntry("xai", {"model": "grok-4-1-fast-reasoning"}),
}


class ModelRegistry:
    """Read-only mapping of model names to entries, built once at startup."""

    def __init__(self, entries: Mapping[str, ModelEntry]):
        self._entries = MappingProxyType(
            {
                name: ModelEntry(entry.provider, MappingProxyType(dict(entry.params)))
                for name, entry in entries.items()
            }
        )

    @classmethod
    def from_config(cls, config: Config | None = None) -> "ModelRegistry":
        config = config or get_config()
        entries = dict(BUILTIN_MODELS)
        for name, custom in config.model.custom.items():
            entries[name] = ModelEntry(custom.provider, dict(custom.params))
        return cls(entries)

    @property
    def entries(self) -> Mapping[str, ModelEntry]:
        return self._entries

    def names(self) -> list[str]:
        return sorted(self._entries)

    def get(self, name: str) -> ModelEntry:
        entry = self._entries.get(name)
        if entry is None:
            raise ConfigurationError(f'Invalid model: "{name}"')
        return entry

    def create_provider(
        self,
        name: str,
        config: Config | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> LLMProvider:
        """Create the provider adapter for a registered model name."""
        config = config or get_config()
        entry = self.get(name)
        params = dict(entry.params)
        model = params.pop("model", name)
        providers = config.providers

        if entry.provider == "anthropic":
            return AnthropicProvider(model, params, providers.anthropic, config.retry, client)
        if entry.provider == "openai":
            return OpenAIProvider(model, params, providers.openai, config.retry, client)
        if entry.provider == "gemini":
            return GeminiProvider(model, params, providers.gemini, config.retry, client)
        if entry.provider == "bedrock":
            return BedrockProvider(
                model,
                params,
                providers.bedrock,
                config.retry,
                client,
                verify_crc=config.stream.verify_event_stream_crc,
            )

        settings = providers.compatible.get(entry.provider, ProviderConfig()).model_copy()
        if not settings.base_url:
            settings.base_url = COMPATIBLE_BASE_URLS.get(entry.provider, "")
        if not settings.base_url:
            raise ConfigurationError(
                f"No base_url configured for provider '{entry.provider}' (providers.compatible.{entry.provider})"
            )
        if not settings.api_key:
            settings.api_key = os.environ.get(f"{entry.provider.upper()}_API_KEY", "")
        provider = OpenAICompatibleProvider(model, params, settings, config.retry, client)
        provider.provider_name = entry.provider
        return provider
