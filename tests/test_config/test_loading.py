from pathlib import Path

import agentloop.config as config_module
from agentloop.config import Config


def test_load_prefers_local_config_yaml(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)

    home_cfg = tmp_path / "home_config.yaml"
    home_cfg.write_text("model:\n  name: gpt-thinking-low\n", encoding="utf-8")
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", home_cfg)

    local_cfg = tmp_path / ".agent" / "config.yaml"
    local_cfg.parent.mkdir()
    local_cfg.write_text(
        (
            "model:\n"
            "  name: local-qwen\n"
            "  custom:\n"
            "    local-qwen:\n"
            "      provider: qwen\n"
            "      params:\n"
            "        model: qwen3-coder\n"
        ),
        encoding="utf-8",
    )

    cfg = Config.load()

    assert cfg.model.name == "local-qwen"
    assert cfg.model.custom["local-qwen"].provider == "qwen"
    assert cfg.model.custom["local-qwen"].params == {"model": "qwen3-coder"}


def test_load_falls_back_to_default_path_when_no_local(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)

    home_cfg = tmp_path / "home_config.yaml"
    home_cfg.write_text(
        (
            "approval:\n"
            "  max_auto_approvals: 3\n"
            "  on_budget_exhausted: deny\n"
            "  deny:\n"
            "    - tool_name: exec_command\n"
            "      input:\n"
            "        command: rm\n"
            "      reason: Never delete files\n"
        ),
        encoding="utf-8",
    )
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", home_cfg)

    cfg = Config.load()

    assert cfg.approval.max_auto_approvals == 3
    assert cfg.approval.on_budget_exhausted == "deny"
    assert cfg.approval.deny[0].input == {"command": "rm"}
    assert cfg.approval.deny[0].reason == "Never delete files"


def test_missing_config_file_gives_defaults(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", tmp_path / "absent.yaml")

    cfg = Config.load()

    assert cfg.model.name == "claude-sonnet-thinking-8k"
    assert cfg.retry.initial_interval == 2.0
    assert cfg.retry.max_interval == 16.0
    assert cfg.retry.max_attempts is None
    assert cfg.stream.verify_event_stream_crc is True
    assert cfg.agent.interrupt_file == ".agent/interrupt-message.txt"
    assert cfg.tools.enabled == [
        "exec_command",
        "write_file",
        "patch_file",
        "tmux_command",
        "read_web_page",
        "delegate_to_subagent",
        "report_as_subagent",
    ]


def test_env_var_overrides_yaml_value(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text("model:\n  name: gpt-thinking-low\nui:\n  streaming: true\n", encoding="utf-8")
    monkeypatch.setenv("AGENTLOOP_MODEL__NAME", "kimi")
    monkeypatch.setenv("AGENTLOOP_UI__STREAMING", "false")

    cfg = Config.from_yaml(cfg_file)

    assert cfg.model.name == "kimi"
    assert cfg.ui.streaming is False


def test_provider_key_from_dotenv(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    (tmp_path / ".env").write_text("AGENTLOOP_PROVIDERS__ANTHROPIC__API_KEY=sk-dotenv\n", encoding="utf-8")

    cfg = Config.from_yaml(tmp_path / "absent.yaml")

    assert cfg.providers.anthropic.api_key == "sk-dotenv"


def test_save_round_trips_through_yaml(tmp_path: Path):
    cfg = Config()
    cfg.model.name = "deepseek"
    cfg.tools.exec_command.timeout = 60

    target = tmp_path / "nested" / "config.yaml"
    cfg.save(target)
    loaded = Config.from_yaml(target)

    assert loaded.model.name == "deepseek"
    assert loaded.tools.exec_command.timeout == 60


def test_resolve_project_path_anchors_relative_to_runtime_base(tmp_path: Path):
    cfg = Config()

    assert cfg.resolve_project_path(".agent/messages.json", tmp_path) == (tmp_path / ".agent" / "messages.json").resolve()
    assert cfg.resolve_project_path(str(tmp_path / "abs.json"), "/elsewhere") == (tmp_path / "abs.json").resolve()
