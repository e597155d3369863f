"""exec_command tool: run a program without a shell."""

import asyncio
import os
from typing import Any

from agentloop.config import ExecCommandToolConfig, get_config
from agentloop.exceptions import ToolInputError
from agentloop.logging import get_logger
from agentloop.tools.registry import Tool, ToolResult
from agentloop.tools.tmpfile import write_tmp_file

log = get_logger(__name__)

# Commands whose non-zero exit is routine (rg exits 1 on no match).
QUIET_EXIT_COMMANDS = {"rg"}


ProgramError = tuple[str, str]


async def run_program(command: str, args: list[str], timeout: float) -> tuple[str, str, ProgramError | None]:
    """Run ``command`` without a shell; return decoded stdout, stderr and an ``(name, message)`` error."""
    env = {key: os.environ[key] for key in ("PWD", "PATH", "HOME") if key in os.environ}
    try:
        process = await asyncio.create_subprocess_exec(
            command,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )
    except OSError as e:
        return "", "", (type(e).__name__, str(e))

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        stdout, stderr = await process.communicate()
        error: ProgramError | None = ("TimeoutError", f"Command timed out after {timeout}s")
    except asyncio.CancelledError:
        process.kill()
        await process.wait()
        raise
    else:
        error = None
        if process.returncode != 0:
            error = ("Error", f"Command failed with exit code {process.returncode}: {command} {' '.join(args)}".rstrip())

    return (
        stdout.decode("utf-8", errors="replace"),
        stderr.decode("utf-8", errors="replace"),
        error,
    )


class ExecCommandTool(Tool):
    """Execute a program with an argument vector."""

    name = "exec_command"
    description = "Run a command without shell interpretation."
    parameters = {
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": "The executable name or path. e.g., rg",
            },
            "args": {
                "type": "array",
                "items": {"type": "string"},
                "description": (
                    "Array of arguments to pass to the command. "
                    "Do not include the command name itself in this array."
                ),
            },
        },
        "required": ["command"],
    }

    def __init__(self, settings: ExecCommandToolConfig | None = None, metadata_dir: str | None = None):
        cfg = get_config()
        self.settings = settings or cfg.tools.exec_command
        self.metadata_dir = metadata_dir or cfg.agent.metadata_dir

    def validate_arguments(self, arguments: dict[str, Any]) -> None:
        super().validate_arguments(arguments)
        if arguments["command"].startswith("-"):
            raise ToolInputError(self.name, "command must not start with '-'")
        args = arguments.get("args")
        if args is not None and not all(isinstance(arg, str) for arg in args):
            raise ToolInputError(self.name, "args must be an array of strings")

    def _format_stream(self, content: str, stream: str) -> str:
        max_length = self.settings.output_max_length
        if len(content) <= max_length:
            return content

        truncated = self.settings.output_truncated_length
        path = write_tmp_file(content, f"exec_command-{stream}", "txt", self.metadata_dir)
        line_count = content.count("\n") + 1
        head = content[:truncated]
        tail = content[max(len(content) - truncated, 0):]
        return "\n\n".join([
            f"Content is too large ({len(content)} characters, {line_count} lines). Saved to {path}.",
            f'<truncated_output part="start" length="{truncated}" total_length="{len(content)}">\n{head}\n</truncated_output>',
            f'<truncated_output part="end" length="{truncated}" total_length="{len(content)}">\n{tail}</truncated_output>\n',
        ])

    def _format_error(self, error_name: str, message: str) -> str:
        limit = self.settings.output_truncated_length
        suffix = "... (Message truncated)" if len(message) > self.settings.output_max_length else ""
        return f"\n<error>\n{error_name}: {message[:limit]}{suffix}</error>"

    async def execute(self, command: str, args: list[str] | None = None, **kwargs: Any) -> ToolResult:
        """Run ``command`` with ``args`` and return tagged stdout/stderr."""
        args = list(args or [])
        log.info("Executing command", command=command, args=args)
        stdout, stderr, error = await run_program(command, args, self.settings.timeout)

        stdout_text = self._format_stream(stdout, "stdout")
        stderr_text = self._format_stream(stderr, "stderr")
        parts = [
            f"<stdout>\n{stdout_text}</stdout>" if stdout_text else "<stdout></stdout>",
            "",
            f"<stderr>\n{stderr_text}</stderr>" if stderr_text else "<stderr></stderr>",
        ]
        if error is not None and QUIET_EXIT_COMMANDS.isdisjoint([command, *args]):
            log.debug("Command reported an error", command=command, error=error[1])
            parts.append(self._format_error(*error))

        return ToolResult(success=True, content="\n".join(parts))
