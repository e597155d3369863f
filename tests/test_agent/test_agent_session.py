import json
from datetime import datetime
from pathlib import Path

import pytest

from agentloop.agent import Agent, create_session_id, create_system_prompt
from agentloop.config import Config
from agentloop.events import MessageEvent, TurnEndEvent
from agentloop.exceptions import AgentError
from agentloop.messages import (
    Message,
    ModelOutput,
    TextContent,
    ThinkingContent,
    ToolResultContent,
    ToolUseContent,
)


class EchoModel:
    def __init__(self) -> None:
        self.closed = False
        self.tools: list[str] = []

    async def complete(self, messages, tools=None, on_partial=None) -> ModelOutput:
        self.tools = [tool.name for tool in tools or []]
        last = messages[-1].content[0]
        return ModelOutput(Message("assistant", [TextContent(f"echo: {last.text}")]), {"input": 3})

    async def close(self) -> None:
        self.closed = True


def _agent(tmp_path: Path, enabled: list[str] | None = None) -> Agent:
    config = Config()
    config.agent.metadata_dir = str(tmp_path / ".agent")
    if enabled is not None:
        config.tools.enabled = enabled
    return Agent(config=config, model=EchoModel(), session_id="2026-01-02-0304", roles={}, working_dir=tmp_path)


def test_create_session_id_uses_minute_precision():
    assert create_session_id(datetime(2026, 1, 2, 3, 4, 59)) == "2026-01-02-0304"


def test_system_prompt_describes_environment(tmp_path: Path):
    prompt = create_system_prompt(Config(), "s1", tmp_path)

    assert "- Session id: s1" in prompt
    assert f"- Current working directory: {tmp_path}" in prompt
    assert "- Memory files: .agent/memory/<session-id>--<kebab-case-title>.md" in prompt


def test_agent_registers_enabled_tools_only(tmp_path: Path):
    agent = _agent(tmp_path, ["exec_command", "write_file", "not_a_tool"])

    assert agent.registry.list_tools() == ["exec_command", "write_file"]
    assert agent.history[0].role == "system"


@pytest.mark.asyncio
async def test_agent_turn_offers_tool_definitions_and_emits_events(tmp_path: Path):
    agent = _agent(tmp_path)

    await agent.handle_user_input("ping")

    assert agent.history[-1].content == [TextContent("echo: ping")]
    assert agent.model.tools == [
        "exec_command",
        "write_file",
        "patch_file",
        "tmux_command",
        "read_web_page",
        "delegate_to_subagent",
        "report_as_subagent",
    ]
    events = agent.events.drain()
    assert isinstance(events[0], MessageEvent)
    assert isinstance(events[-1], TurnEndEvent)
    await agent.close()
    assert agent.model.closed is True


def test_dump_and_load_messages_restore_history(tmp_path: Path):
    agent = _agent(tmp_path)
    agent.history.extend([
        Message.user_text("run ls"),
        Message(
            "assistant",
            [
                ThinkingContent("plan", provider_metadata={"signature": "abc"}),
                ToolUseContent("t1", "exec_command", {"command": "ls"}),
            ],
        ),
        Message("user", [ToolResultContent("t1", "exec_command", [TextContent("a.txt")])]),
    ])

    path = agent.dump_messages()

    assert path == (tmp_path / ".agent" / "messages.json").resolve()
    data = json.loads(path.read_text(encoding="utf-8"))
    assert [item["role"] for item in data] == ["system", "user", "assistant", "user"]

    other = _agent(tmp_path)
    other.history.append(Message.user_text("stale"))
    history_ref = other.history

    count = other.load_messages(path)

    assert count == 3
    assert other.history is history_ref
    assert other.history[0] == agent.history[0]
    assert other.history[1:] == agent.history[1:]
    assert other.loop.pending_tool_uses == []


def test_load_keeps_current_system_prompt(tmp_path: Path):
    dump = tmp_path / "old.json"
    dump.write_text(
        json.dumps([
            {"role": "system", "content": [{"type": "text", "text": "old prompt"}]},
            {"role": "user", "content": [{"type": "text", "text": "hi"}]},
        ]),
        encoding="utf-8",
    )
    agent = _agent(tmp_path)

    agent.load_messages(dump)

    assert agent.history[0].content[0].text != "old prompt"
    assert agent.history[1] == Message.user_text("hi")


@pytest.mark.parametrize(
    "content",
    ["not json", '{"role": "user"}', '[{"role": "system", "content": []}, {"role": "robot", "content": []}]'],
)
def test_load_messages_rejects_bad_files(tmp_path: Path, content: str):
    dump = tmp_path / "bad.json"
    dump.write_text(content, encoding="utf-8")
    agent = _agent(tmp_path)

    with pytest.raises(AgentError, match="Error loading messages"):
        agent.load_messages(dump)

    assert len(agent.history) == 1


def test_load_messages_missing_file(tmp_path: Path):
    with pytest.raises(AgentError, match="Error loading messages"):
        _agent(tmp_path).load_messages(tmp_path / "nope.json")
