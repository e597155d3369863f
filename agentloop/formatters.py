"""Console rendering of tool calls, tool results and token usage."""

import json
from typing import Any

from rich.text import Text

from agentloop.messages import ImageContent, TextContent, ToolResultContent, ToolUseContent
from agentloop.tools.patch_file import BLOCK_RE

MAX_DISPLAY_OUTPUT_LENGTH = 1024
IGNORED_USAGE_DETAILS = {"audio_tokens", "accepted_prediction_tokens", "rejected_prediction_tokens"}

_EXEC_TAG_STYLES = [
    (r"(?m)^<stdout>|</stdout>$", "blue"),
    (r"<truncated_output.+?>|</truncated_output>", "yellow"),
    (r"(?m)^<stderr>|</stderr>$", "magenta"),
    (r"(?m)^<error>|</error>$", "red"),
]
_TMUX_TAG_STYLES = [*_EXEC_TAG_STYLES, (r"(?m)^<tmux.*?>|</tmux:.*?>$", "green")]


def format_token_usage(usage: dict[str, Any]) -> Text:
    """Scalar counters on one line, nested breakdowns on the next."""
    header: list[str] = []
    details: list[str] = []
    for key, value in usage.items():
        if isinstance(value, dict):
            if value:
                items = ", ".join(f"{k}: {v}" for k, v in value.items() if k not in IGNORED_USAGE_DETAILS)
                details.append(f"({key}) {items}")
        elif value is not None:
            header.append(f"{key}: {value}")

    lines = [", ".join(header)]
    if details:
        lines.append(" / ".join(details))
    return Text("\n".join(lines), style="grey50")


def _format_patch_file(tool_use: ToolUseContent) -> Text:
    text = Text(f"tool: {tool_use.tool_name}\nfile_path: {tool_use.input.get('file_path')}\ndiff:\n")
    diff = str(tool_use.input.get("diff") or "")
    position = 0
    for match in BLOCK_RE.finditer(diff):
        text.append(diff[position : match.start()])
        text.append("<<<<<<< SEARCH\n")
        text.append(match.group(1), style="red")
        text.append("\n=======\n")
        text.append(match.group(2), style="green")
        text.append("\n>>>>>>> REPLACE")
        position = match.end()
    text.append(diff[position:])
    return text


def format_tool_use(tool_use: ToolUseContent) -> Text:
    tool_input = tool_use.input
    if tool_use.tool_name in ("exec_command", "tmux_command"):
        return Text("\n".join([
            f"tool: {tool_use.tool_name}",
            f"command: {json.dumps(tool_input.get('command'))}",
            f"args: {json.dumps(tool_input.get('args'))}",
        ]))
    if tool_use.tool_name == "write_file":
        return Text("\n".join([
            f"tool: {tool_use.tool_name}",
            f"file_path: {tool_input.get('file_path')}",
            f"content:\n{tool_input.get('content')}",
        ]))
    if tool_use.tool_name == "patch_file":
        return _format_patch_file(tool_use)
    return Text(json.dumps(
        {"tool_use_id": tool_use.tool_use_id, "tool_name": tool_use.tool_name, "input": tool_input},
        indent=2,
        ensure_ascii=False,
    ))


def format_tool_result(result: ToolResultContent) -> Text:
    parts: list[str] = []
    for part in result.content:
        if isinstance(part, TextContent):
            parts.append(part.text)
        elif isinstance(part, ImageContent):
            parts.append(f"data:{part.mime_type};base64,{part.data[:20]}...")
    content = "\n\n".join(parts)

    if result.is_error:
        return Text(content, style="red")

    if result.tool_name in ("exec_command", "tmux_command"):
        text = Text(content)
        styles = _EXEC_TAG_STYLES if result.tool_name == "exec_command" else _TMUX_TAG_STYLES
        for pattern, style in styles:
            text.highlight_regex(pattern, style)
        return text

    if len(content) > MAX_DISPLAY_OUTPUT_LENGTH:
        text = Text(content[:MAX_DISPLAY_OUTPUT_LENGTH])
        text.append("... (Output truncated for display)", style="yellow")
        text.append("\n")
        return text

    return Text(content)
