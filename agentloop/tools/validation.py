"""Batch validation of the tool calls in one assistant message."""

from dataclasses import dataclass, field
from typing import Iterable, Literal

from agentloop.exceptions import ToolInputError
from agentloop.logging import get_logger
from agentloop.messages import ToolResultContent, ToolUseContent, text_result
from agentloop.tools.registry import ToolRegistry

log = get_logger(__name__)

ViolationType = Literal["multiple", "with-others"]

REJECTED = "Tool call rejected"
REJECTED_BY_VALIDATION = "Tool call rejected due to other tool validation error"


@dataclass
class ExclusiveToolValidation:
    is_valid: bool
    violation_type: ViolationType | None = None
    violated_tools: list[str] = field(default_factory=list)
    error_message: str = ""


@dataclass
class ToolValidationResult:
    """Outcome for a whole batch; on failure ``tool_results`` answers every call."""

    is_valid: bool
    error_message: str = ""
    tool_results: list[ToolResultContent] = field(default_factory=list)
    violation_type: str | None = None
    violated_tools: list[str] = field(default_factory=list)


def validate_exclusive_tool_use(
    tool_uses: list[ToolUseContent],
    exclusive_tool_names: Iterable[str],
) -> ExclusiveToolValidation:
    """An exclusive tool must be the only call in its batch."""
    exclusive = set(exclusive_tool_names)
    used_exclusive = [tool_use.tool_name for tool_use in tool_uses if tool_use.tool_name in exclusive]
    if not used_exclusive:
        return ExclusiveToolValidation(is_valid=True)

    if len(used_exclusive) > 1:
        names = ", ".join(used_exclusive)
        log.warning("Rejected multiple exclusive tool use", tools=used_exclusive)
        return ExclusiveToolValidation(
            is_valid=False,
            violation_type="multiple",
            violated_tools=used_exclusive,
            error_message=(
                f"System: {names}, cannot be called together. "
                "Only one of these tools can be called at a time."
            ),
        )

    if len(tool_uses) > 1:
        name = used_exclusive[0]
        log.warning("Rejected exclusive tool use with other tools", tool=name)
        return ExclusiveToolValidation(
            is_valid=False,
            violation_type="with-others",
            violated_tools=used_exclusive,
            error_message=f"System: {name} cannot be called with other tools. It must be called alone.",
        )

    return ExclusiveToolValidation(is_valid=True)


def validate_tool_use(
    tool_uses: list[ToolUseContent],
    registry: ToolRegistry,
    exclusive_tool_names: Iterable[str] = (),
) -> ToolValidationResult:
    """Check tool existence, input, then exclusivity; first failure wins."""
    unknown = [tool_use.tool_name for tool_use in tool_uses if not registry.has_tool(tool_use.tool_name)]
    if unknown:
        log.warning("Rejected unknown tool use", tools=unknown)
        return ToolValidationResult(
            is_valid=False,
            error_message=(
                f"System: Tool not found {', '.join(unknown)}. "
                f"Available tools: {','.join(registry.list_tools())}"
            ),
            tool_results=[text_result(tool_use, REJECTED, is_error=True) for tool_use in tool_uses],
        )

    input_errors: dict[str, str] = {}
    for tool_use in tool_uses:
        try:
            registry.validate_input(tool_use)
        except ToolInputError as e:
            input_errors[tool_use.tool_use_id] = str(e)
    if input_errors:
        log.warning("Rejected invalid tool input", errors=input_errors)
        results = [
            text_result(tool_use, input_errors.get(tool_use.tool_use_id, REJECTED_BY_VALIDATION), is_error=True)
            for tool_use in tool_uses
        ]
        lines = [
            f"- {tool_use.tool_name}: {input_errors[tool_use.tool_use_id]}"
            for tool_use in tool_uses
            if tool_use.tool_use_id in input_errors
        ]
        return ToolValidationResult(
            is_valid=False,
            error_message="System: Invalid tool input.\n" + "\n".join(lines),
            tool_results=results,
        )

    exclusive = validate_exclusive_tool_use(tool_uses, exclusive_tool_names)
    if not exclusive.is_valid:
        return ToolValidationResult(
            is_valid=False,
            error_message=exclusive.error_message,
            tool_results=[text_result(tool_use, REJECTED, is_error=True) for tool_use in tool_uses],
            violation_type=exclusive.violation_type,
            violated_tools=exclusive.violated_tools,
        )

    return ToolValidationResult(is_valid=True)
