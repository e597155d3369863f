from pathlib import Path

import pytest

from agentloop.config import TmuxCommandToolConfig
from agentloop.messages import ToolUseContent
from agentloop.tools.registry import ToolRegistry
from agentloop.tools.tmux_command import TmuxCommandTool, escape_send_keys_args

FAKE_TMUX = """#!/bin/sh
if [ "$1" = "kill-server" ]; then
  echo "no server running" >&2
  exit 1
fi
printf '%s\\n' "$*"
"""


@pytest.fixture
def tool(tmp_path: Path) -> TmuxCommandTool:
    script = tmp_path / "tmux"
    script.write_text(FAKE_TMUX, encoding="utf-8")
    script.chmod(0o755)
    return TmuxCommandTool(TmuxCommandToolConfig(binary=str(script), capture_delay=0))


def test_send_keys_escapes_trailing_semicolons():
    assert escape_send_keys_args(["-t", "a;", "echo hi;", "done\\;", "Enter"]) == [
        "-t",
        "a\\;",
        "echo hi\\;",
        "done\\;",
        "Enter",
    ]
    assert escape_send_keys_args(["x;"]) == ["x;"]


@pytest.mark.asyncio
async def test_new_session_lists_windows_of_the_new_target(tool: TmuxCommandTool):
    result = await tool.execute(command="new-session", args=["-d", "-s", "agent-s1"])

    assert result.content == (
        "<stdout>\nnew-session -d -s agent-s1\n</stdout>\n\n<stderr></stderr>\n\n"
        "<tmux:list-windows>\nlist-windows -t agent-s1\n</tmux:list-windows>"
    )


@pytest.mark.asyncio
async def test_send_keys_captures_the_pane_afterwards(tool: TmuxCommandTool):
    result = await tool.execute(command="send-keys", args=["-t", "agent-s1", "make test;", "Enter"])

    assert result.content.startswith("<stdout>\nsend-keys -t agent-s1 make test\\; Enter\n</stdout>")
    assert result.content.endswith(
        '<tmux:capture-pane target="agent-s1">\ncapture-pane -p -t agent-s1\n</tmux:capture-pane>'
    )


@pytest.mark.asyncio
async def test_failed_command_reports_stderr_and_error(tool: TmuxCommandTool):
    result = await tool.execute(command="kill-server")

    assert result.success is True
    assert result.content.startswith("<stdout></stdout>\n\n<stderr>\nno server running\n</stderr>\n\n<error>\nError: ")
    assert "list-windows" not in result.content


@pytest.mark.asyncio
async def test_long_output_keeps_the_tail(tmp_path: Path):
    script = tmp_path / "tmux"
    script.write_text("#!/bin/sh\nprintf 'head%050dtail' 0\n", encoding="utf-8")
    script.chmod(0o755)
    tool = TmuxCommandTool(TmuxCommandToolConfig(binary=str(script), output_max_length=10))

    result = await tool.execute(command="capture-pane", args=["-p"])

    assert result.content.startswith("<stdout>\n(Output truncated) ...000000tail\n</stdout>")


@pytest.mark.asyncio
async def test_missing_tmux_binary_is_reported(tmp_path: Path):
    tool = TmuxCommandTool(TmuxCommandToolConfig(binary=str(tmp_path / "no-tmux")))

    result = await tool.execute(command="list-sessions")

    assert "<error>\nFileNotFoundError: " in result.content


@pytest.mark.asyncio
async def test_non_string_args_are_rejected_before_running(tool: TmuxCommandTool):
    registry = ToolRegistry()
    registry.register(tool)

    result = await registry.call_tool(ToolUseContent("t1", "tmux_command", {"command": "send-keys", "args": ["-t", 1]}))

    assert result.is_error is True
    assert "args must be an array of strings" in result.text
