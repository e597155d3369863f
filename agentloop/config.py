"""Configuration management for agentloop."""

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Paths
DEFAULT_CONFIG_PATH = Path("~/.agentloop/config.yaml").expanduser()
PROJECT_METADATA_DIR = ".agent"
LOCAL_CONFIG_FILENAME = "config.yaml"


class ModelConfig(BaseModel):
    """Model selection."""

    class CustomModelConfig(BaseModel):
        """User-defined registry entry."""

        provider: str
        params: dict[str, Any] = Field(default_factory=dict)

    name: str = "claude-sonnet-thinking-8k"
    custom: dict[str, CustomModelConfig] = Field(default_factory=dict)


class ProviderConfig(BaseModel):
    """Connection settings for one vendor endpoint."""

    api_key: str = ""
    base_url: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    timeout: float = 120.0


class BedrockProviderConfig(ProviderConfig):
    """Gateway settings for binary-framed invoke endpoints."""

    region: str = "us-east-1"
    event_format: Literal["anthropic", "openai"] = "anthropic"


class ProvidersConfig(BaseModel):
    """Per-vendor provider settings."""

    anthropic: ProviderConfig = Field(default_factory=ProviderConfig)
    openai: ProviderConfig = Field(default_factory=ProviderConfig)
    gemini: ProviderConfig = Field(default_factory=ProviderConfig)
    bedrock: BedrockProviderConfig = Field(default_factory=BedrockProviderConfig)
    compatible: dict[str, ProviderConfig] = Field(default_factory=dict)


class RetryConfig(BaseModel):
    """Backoff for rate limits, server errors and truncated streams."""

    initial_interval: float = 2.0
    multiplier: float = 2.0
    max_interval: float = 16.0
    max_attempts: int | None = None


class StreamConfig(BaseModel):
    """Stream framing options."""

    verify_event_stream_crc: bool = True


class ToolUsePatternConfig(BaseModel):
    """Approval pattern as written in YAML."""

    tool_name: str
    input: Any = None
    reason: str = ""


class ApprovalConfig(BaseModel):
    """Automatic tool approval."""

    max_auto_approvals: int = 20
    on_budget_exhausted: Literal["ask", "deny"] = "ask"
    use_default_patterns: bool = True
    allow: list[ToolUsePatternConfig] = Field(default_factory=list)
    deny: list[ToolUsePatternConfig] = Field(default_factory=list)


class ExecCommandToolConfig(BaseModel):
    """exec_command tool configuration."""

    timeout: int = 300
    output_max_length: int = 1024 * 8
    output_truncated_length: int = 1024 * 2


class TmuxCommandToolConfig(BaseModel):
    """tmux_command tool configuration."""

    binary: str = "tmux"
    timeout: int = 60
    output_max_length: int = 1024 * 8
    capture_delay: float = 2.0


class ReadWebPageToolConfig(BaseModel):
    """read_web_page tool configuration."""

    max_chars: int = 100000
    timeout: float = 30.0


class ToolsConfig(BaseModel):
    """Tools configuration."""

    enabled: list[str] = [
        "exec_command",
        "write_file",
        "patch_file",
        "tmux_command",
        "read_web_page",
        "delegate_to_subagent",
        "report_as_subagent",
    ]
    exec_command: ExecCommandToolConfig = Field(default_factory=ExecCommandToolConfig)
    tmux_command: TmuxCommandToolConfig = Field(default_factory=TmuxCommandToolConfig)
    read_web_page: ReadWebPageToolConfig = Field(default_factory=ReadWebPageToolConfig)


class AgentConfig(BaseModel):
    """Agent runtime configuration."""

    metadata_dir: str = PROJECT_METADATA_DIR
    system_prompt: str = (
        "You are a software engineering agent working in the user's project "
        "directory. Use the available tools to inspect and change the project. "
        "Delegate focused subtasks with delegate_to_subagent when it helps."
    )
    role_dirs: list[str] = ["~/.agentloop/agents", f"{PROJECT_METADATA_DIR}/agents"]
    interrupt_file: str = f"{PROJECT_METADATA_DIR}/interrupt-message.txt"
    messages_dump_file: str = f"{PROJECT_METADATA_DIR}/messages.json"
    max_thinking_continues: int = 5


class UIConfig(BaseModel):
    """UI configuration."""

    show_tokens: bool = True
    streaming: bool = True
    colors: bool = True


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for agentloop."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    approval: ApprovalConfig = Field(default_factory=ApprovalConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    ui: UIConfig = Field(default_factory=UIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="AGENTLOOP_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML values arrive as init kwargs; environment wins over them.
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / PROJECT_METADATA_DIR / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def load(cls) -> "Config":
        """Load configuration; environment variables override YAML values."""
        return cls.from_yaml()

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w", encoding="utf-8") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def resolve_project_path(self, raw: str, runtime_base: Path | str | None = None) -> Path:
        """Resolve a config path, anchoring relative paths to runtime base/cwd."""
        path = Path(raw).expanduser()
        if path.is_absolute():
            return path.resolve()
        anchor = Path(runtime_base).expanduser().resolve() if runtime_base is not None else Path.cwd().resolve()
        return (anchor / path).resolve()


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
