"""Terminal UI for agentloop."""

import json

from rich.console import Console
from rich.text import Text

from agentloop.config import Config, get_config
from agentloop.events import (
    AgentEvent,
    ErrorEvent,
    MessageEvent,
    PartialContentEvent,
    SubagentStatusEvent,
    TokenUsageEvent,
    ToolUseRequestEvent,
    TurnEndEvent,
)
from agentloop.formatters import format_token_usage, format_tool_result, format_tool_use
from agentloop.logging import get_logger
from agentloop.messages import (
    Message,
    TextContent,
    ThinkingContent,
    ToolResultContent,
    ToolUseContent,
    part_to_dict,
)

log = get_logger(__name__)

HELP_TEXT = """
Commands:
  /help           - Show this help message
  /resume         - Retry the last turn without new input
  /dump [path]    - Save the conversation to JSON
  /load [path]    - Restore a saved conversation
  /exit, /quit    - Exit the application

Answer a tool call request with y / yes to run it once, Y / YES to also
allow it for the rest of the session, or anything else to reject it.
"""


class TerminalUI:
    """Renders agent events on a rich console and reads user input."""

    def __init__(self, console: Console | None = None, config: Config | None = None):
        self.config = config or get_config()
        self.console = console or Console(
            highlight=False,
            no_color=not self.config.ui.colors,
        )
        self._streaming_type: str | None = None
        self._streamed_text = False

    def print_welcome(self, session_id: str, model_name: str) -> None:
        self.console.print(Text("=== agentloop ===", style="bold"))
        self.console.print(f"Session: {session_id}, Model: {model_name}", markup=False)
        self.console.print("Type '/help' for commands.\n")

    def print_help(self) -> None:
        self.console.print(HELP_TEXT, markup=False)

    def print_error(self, error: str) -> None:
        self.console.print(Text(f"Error: {error}", style="red"))

    def print_warning(self, warning: str) -> None:
        self.console.print(Text(warning, style="yellow"))

    def print_success(self, message: str) -> None:
        self.console.print(Text(message, style="green"))

    def prompt(self, prompt_text: str = "> ") -> str:
        return self.console.input(prompt_text)

    def handle_special_command(self, raw: str) -> tuple[str, str] | None:
        """Split ``/command args``; returns ``None`` for plain input.

        ``/resume`` is plain input: the agent handles it.
        """
        text = raw.strip()
        if not text.startswith("/") or text.lower() == "/resume":
            return None
        command, _, args = text.partition(" ")
        command = command.lower()
        if command in ("/exit", "/quit", "/q"):
            return "exit", ""
        if command in ("/help", "/h", "/?"):
            return "help", ""
        if command in ("/dump", "/load"):
            return command[1:], args.strip()
        return "unknown", command

    def render_event(self, event: AgentEvent) -> None:
        if isinstance(event, PartialContentEvent):
            self._render_partial(event)
        elif isinstance(event, MessageEvent):
            self.print_message(event.message)
        elif isinstance(event, ToolUseRequestEvent):
            self.console.print(Text("\nApprove tool calls? (y or feedback)", style="yellow"))
        elif isinstance(event, TokenUsageEvent):
            if self.config.ui.show_tokens:
                self.console.print(Text("\n").append_text(format_token_usage(event.usage)))
        elif isinstance(event, ErrorEvent):
            self.print_error(str(event.error))
        elif isinstance(event, SubagentStatusEvent):
            if event.status is None:
                self.console.print(Text("\nBack to the main agent", style="cyan"))
            else:
                self.console.print(Text(f"\nSubagent: {event.status.name}", style="cyan"))
        elif isinstance(event, TurnEndEvent):
            self._end_stream()

    def _render_partial(self, event: PartialContentEvent) -> None:
        if not self.config.ui.streaming:
            return
        partial = event.partial
        if partial.type not in ("text", "thinking"):
            return
        style = "grey50" if partial.type == "thinking" else None
        if partial.position == "start":
            self._end_stream()
            self._streaming_type = partial.type
            label = "\nThinking:" if partial.type == "thinking" else "\nAgent:"
            self.console.print(Text(label, style="bold"))
            if partial.content:
                self.console.print(Text(partial.content, style=style or ""), end="")
        elif partial.position == "delta" and partial.content:
            self.console.print(Text(partial.content, style=style or ""), end="")
            if partial.type == "text":
                self._streamed_text = True
        elif partial.position == "stop":
            self._end_stream()

    def _end_stream(self) -> None:
        if self._streaming_type is not None:
            self.console.print()
            self._streaming_type = None

    def print_message(self, message: Message) -> None:
        if message.role == "assistant":
            streamed = self._streamed_text
            self._streamed_text = False
            for part in message.content:
                if isinstance(part, TextContent) and not streamed:
                    self.console.print(Text("\nAgent:", style="bold"))
                    self.console.print(part.text, markup=False)
                elif isinstance(part, ToolUseContent):
                    self.console.print(Text("\nTool call:", style="bold"))
                    self.console.print(format_tool_use(part))
                elif isinstance(part, ThinkingContent) and not self.config.ui.streaming:
                    self.console.print(Text(part.thinking, style="grey50"))
            return

        for part in message.content:
            if isinstance(part, ToolResultContent):
                self.console.print(Text("\nTool result:", style="bold"))
                self.console.print(format_tool_result(part))
            elif isinstance(part, TextContent):
                self.console.print(Text("\nUser:", style="bold"))
                self.console.print(part.text, markup=False)
            else:
                self.console.print(Text("\nUnknown Message Format:", style="bold"))
                self.console.print(json.dumps(part_to_dict(part), indent=2), markup=False)
