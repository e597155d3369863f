import pytest

from agentloop.config import Config, ModelConfig, ProviderConfig
from agentloop.exceptions import ConfigurationError
from agentloop.llm import (
    AnthropicProvider,
    BedrockProvider,
    GeminiProvider,
    ModelEntry,
    ModelRegistry,
    OpenAICompatibleProvider,
    OpenAIProvider,
)
from agentloop.llm.registry import BUILTIN_MODELS


@pytest.mark.parametrize(
    "name,expected_cls",
    [
        ("claude-sonnet-thinking-8k", AnthropicProvider),
        ("gpt-thinking-low", OpenAIProvider),
        ("gemini-flash-thinking-low", GeminiProvider),
        ("bedrock-claude-haiku", BedrockProvider),
        ("kimi", OpenAICompatibleProvider),
    ],
)
def test_create_provider_dispatches_on_entry_provider(name, expected_cls, make_client):
    registry = ModelRegistry(BUILTIN_MODELS)

    provider = registry.create_provider(name, Config(), client=make_client([]))

    assert isinstance(provider, expected_cls)
    assert provider.model == BUILTIN_MODELS[name].params["model"]
    assert "model" not in provider.params


def test_unknown_model_name_is_a_configuration_error():
    registry = ModelRegistry(BUILTIN_MODELS)

    with pytest.raises(ConfigurationError, match='Invalid model: "nope"'):
        registry.get("nope")


def test_registry_entries_are_read_only():
    registry = ModelRegistry({"m": ModelEntry("anthropic", {"model": "x"})})

    with pytest.raises(TypeError):
        registry.entries["other"] = ModelEntry("openai")
    with pytest.raises(TypeError):
        registry.get("m").params["model"] = "y"


def test_custom_models_from_config_extend_builtins(make_client):
    config = Config()
    config.model.custom = {
        "local-llama": ModelConfig.CustomModelConfig(
            provider="ollama", params={"model": "llama3", "temperature": 0.2}
        )
    }
    config.providers.compatible = {"ollama": ProviderConfig(base_url="http://localhost:11434")}

    registry = ModelRegistry.from_config(config)

    assert "local-llama" in registry.names()
    assert "claude-sonnet-thinking-8k" in registry.names()
    provider = registry.create_provider("local-llama", config, client=make_client([]))
    assert provider.base_url == "http://localhost:11434"
    assert provider.provider_name == "ollama"
    assert provider.params == {"temperature": 0.2}


def test_compatible_provider_without_base_url_is_rejected(make_client):
    registry = ModelRegistry({"odd": ModelEntry("unknown-vendor", {"model": "x"})})

    with pytest.raises(ConfigurationError, match="providers.compatible.unknown-vendor"):
        registry.create_provider("odd", Config(), client=make_client([]))


def test_compatible_provider_reads_vendor_api_key_env(monkeypatch, make_client):
    monkeypatch.setenv("DEEPSEEK_API_KEY", "ds-key")
    registry = ModelRegistry(BUILTIN_MODELS)

    provider = registry.create_provider("deepseek", Config(), client=make_client([]))

    assert provider.api_key == "ds-key"
    assert provider.base_url == "https://api.deepseek.com"
