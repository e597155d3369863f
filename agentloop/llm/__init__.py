"""LLM providers and the model registry."""

from agentloop.llm.anthropic import AnthropicProvider
from agentloop.llm.base import (
    LLMProvider,
    PartialCallback,
    PartialContentEmitter,
    StreamAccumulator,
)
from agentloop.llm.bedrock import BedrockProvider
from agentloop.llm.gemini import GeminiProvider
from agentloop.llm.openai import OpenAIProvider
from agentloop.llm.openai_compatible import OpenAICompatibleProvider
from agentloop.llm.registry import BUILTIN_MODELS, ModelEntry, ModelRegistry

__all__ = [
    "AnthropicProvider",
    "BedrockProvider",
    "BUILTIN_MODELS",
    "GeminiProvider",
    "LLMProvider",
    "ModelEntry",
    "ModelRegistry",
    "OpenAICompatibleProvider",
    "OpenAIProvider",
    "PartialCallback",
    "PartialContentEmitter",
    "StreamAccumulator",
    "create_provider",
    "get_provider",
    "set_provider",
]


def create_provider(model_name: str | None = None) -> LLMProvider:
    """Create the provider for ``model_name`` (default: configured model)."""
    from agentloop.config import get_config

    cfg = get_config()
    registry = ModelRegistry.from_config(cfg)
    return registry.create_provider(model_name or cfg.model.name, cfg)


# Global provider instance
_provider: LLMProvider | None = None


def get_provider() -> LLMProvider:
    """Get the global LLM provider instance."""
    global _provider
    if _provider is None:
        _provider = create_provider()
    return _provider


def set_provider(provider: LLMProvider) -> None:
    """Set the global LLM provider instance."""
    global _provider
    _provider = provider
