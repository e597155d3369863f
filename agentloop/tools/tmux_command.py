"""tmux_command tool: drive long-running processes through tmux sessions."""

import asyncio
from typing import Any

from agentloop.config import TmuxCommandToolConfig, get_config
from agentloop.exceptions import ToolInputError
from agentloop.logging import get_logger
from agentloop.tools.exec_command import run_program
from agentloop.tools.registry import Tool, ToolResult

log = get_logger(__name__)

NEW_TARGET_COMMANDS = {"new-session", "new", "new-window"}


def escape_send_keys_args(args: list[str]) -> list[str]:
    """Escape a trailing ``;`` in send-keys arguments.

    tmux reads a bare trailing semicolon as a command separator. The first
    argument is left alone because it is usually ``-t``.
    """
    escaped = list(args)
    for index in range(1, len(escaped)):
        arg = escaped[index]
        if arg.endswith(";") and not arg.endswith("\\;"):
            escaped[index] = f"{arg[:-1]}\\;"
    return escaped


def _option_value(args: list[str], option: str) -> str | None:
    if option not in args:
        return None
    index = args.index(option) + 1
    return args[index] if index < len(args) else None


class TmuxCommandTool(Tool):
    """Run one tmux subcommand and report what the session looks like afterwards."""

    name = "tmux_command"
    description = "Run a tmux command"
    parameters = {
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": "The tmux command to run",
            },
            "args": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Arguments to pass to the tmux command",
            },
        },
        "required": ["command"],
    }

    def __init__(self, settings: TmuxCommandToolConfig | None = None):
        self.settings = settings or get_config().tools.tmux_command

    def validate_arguments(self, arguments: dict[str, Any]) -> None:
        super().validate_arguments(arguments)
        args = arguments.get("args")
        if args is not None and not all(isinstance(arg, str) for arg in args):
            raise ToolInputError(self.name, "args must be an array of strings")

    def _tail(self, text: str) -> str:
        limit = self.settings.output_max_length
        text = text.strip()
        if len(text) > limit:
            return "(Output truncated) ..." + text[-limit:]
        return text

    async def _tmux(self, args: list[str]) -> tuple[str, str, tuple[str, str] | None]:
        return await run_program(self.settings.binary, args, self.settings.timeout)

    async def execute(self, command: str, args: list[str] | None = None, **kwargs: Any) -> ToolResult:
        """Run ``tmux <command> <args>``; list windows or capture the pane when useful."""
        args = list(args or [])
        if command == "send-keys":
            args = escape_send_keys_args(args)

        log.info("Executing tmux command", command=command, args=args)
        stdout, stderr, error = await self._tmux([command, *args])

        stdout_text = self._tail(stdout)
        stderr_text = self._tail(stderr)
        parts = [
            f"<stdout>\n{stdout_text}\n</stdout>" if stdout_text else "<stdout></stdout>",
            "",
            f"<stderr>\n{stderr_text}\n</stderr>" if stderr_text else "<stderr></stderr>",
        ]
        if error is not None:
            name, message = error
            limit = self.settings.output_max_length
            suffix = "... (Message truncated)" if len(message) > limit else ""
            parts.append(f"\n<error>\n{name}: {message[:limit]}{suffix}</error>")

        if command in NEW_TARGET_COMMANDS:
            target = _option_value(args, "-t" if "window" in command else "-s")
            if target is not None:
                windows, _, list_error = await self._tmux(["list-windows", "-t", target])
                if list_error is not None:
                    log.warning("Failed to list tmux windows", target=target, error=list_error[1])
                parts.append(f"\n<tmux:list-windows>\n{windows}</tmux:list-windows>")

        if command == "send-keys":
            target = _option_value(args, "-t")
            if target is not None:
                # Give the keys time to run before reading the pane.
                await asyncio.sleep(self.settings.capture_delay)
                captured, _, capture_error = await self._tmux(["capture-pane", "-p", "-t", target])
                if capture_error is not None:
                    log.warning("Failed to capture tmux pane", target=target, error=capture_error[1])
                parts.append(
                    f'\n<tmux:capture-pane target="{target}">\n{self._tail(captured)}\n</tmux:capture-pane>'
                )

        return ToolResult(success=True, content="\n".join(parts))
