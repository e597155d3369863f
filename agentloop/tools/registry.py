"""Tool registry and base tool class."""

import asyncio
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field, model_validator

from agentloop.exceptions import (
    ToolError,
    ToolExecutionError,
    ToolInputError,
    ToolNotFoundError,
)
from agentloop.logging import get_logger
from agentloop.messages import ImageContent, TextContent, ToolDefinition, ToolResultContent, ToolUseContent

log = get_logger(__name__)

_JSON_TYPES: dict[str, type | tuple[type, ...]] = {
    "string": str,
    "number": (int, float),
    "integer": int,
    "boolean": bool,
    "array": list,
    "object": dict,
}


class ToolResult(BaseModel):
    """Result from tool execution."""

    success: bool = True
    content: str = ""
    error: str | None = None
    images: list[Any] = Field(default_factory=list)

    @model_validator(mode="after")
    def _normalize_failure_error(self) -> "ToolResult":
        """Ensure failed results always provide an error message."""
        if not self.success and not (self.error or "").strip():
            fallback = (self.content or "").strip()
            self.error = fallback or "Tool execution failed"
        return self

    def to_content(self, tool_use: ToolUseContent) -> ToolResultContent:
        """Convert into the tool_result part answering ``tool_use``."""
        parts: list[TextContent | ImageContent] = []
        text = self.content if self.success else (self.error or "")
        if text or not self.images:
            parts.append(TextContent(text))
        parts.extend(image for image in self.images if isinstance(image, ImageContent))
        return ToolResultContent(
            tool_use_id=tool_use.tool_use_id,
            tool_name=tool_use.tool_name,
            content=parts,
            is_error=not self.success,
        )


class Tool(ABC):
    """Base class for all tools."""

    name: str = ""
    description: str = ""
    parameters: dict[str, Any] = {}
    timeout_seconds: float | None = None

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool.

        Args:
            **kwargs: Tool-specific arguments

        Returns:
            ToolResult with success status and content
        """
        pass

    def get_definition(self) -> ToolDefinition:
        """Get the tool definition for the model."""
        return ToolDefinition(
            name=self.name,
            description=self.description,
            input_schema=self.parameters,
        )

    def validate_arguments(self, arguments: dict[str, Any]) -> None:
        """Validate tool arguments against the schema's required and typed fields.

        Raises:
            ToolInputError if invalid
        """
        required = self.parameters.get("required", [])
        for field in required:
            if field not in arguments:
                raise ToolInputError(self.name, f"Missing required argument: {field}")

        properties = self.parameters.get("properties", {})
        for key, value in arguments.items():
            expected = _JSON_TYPES.get(str((properties.get(key) or {}).get("type", "")))
            if expected is None or value is None:
                continue
            if not isinstance(value, expected) or (isinstance(value, bool) and expected is not bool):
                raise ToolInputError(self.name, f"{key} must be a {properties[key]['type']}")

    def mask_approval_input(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Input fields to remember when the user approves this call for the session."""
        return dict(arguments)


class ToolRegistry:
    """Registry for managing available tools."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool.

        Args:
            tool: Tool instance to register
        """
        if not tool.name:
            raise ValueError("Tool must have a name")

        log.debug("Registering tool", tool=tool.name)
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    def get(self, name: str) -> Tool:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return tool

    def list_tools(self) -> list[str]:
        return list(self._tools)

    def get_definitions(self) -> list[ToolDefinition]:
        return [tool.get_definition() for tool in self._tools.values()]

    def validate_input(self, tool_use: ToolUseContent) -> None:
        """Raise ``ToolInputError`` when the call's input is unusable."""
        tool = self.get(tool_use.tool_name)
        if tool_use.input_error:
            raise ToolInputError(tool.name, tool_use.input_error)
        tool.validate_arguments(tool_use.input)

    def mask_approval_input(self, tool_use: ToolUseContent) -> ToolUseContent:
        """Copy of ``tool_use`` reduced to the fields a session approval should pin."""
        tool = self._tools.get(tool_use.tool_name)
        masked = tool.mask_approval_input(tool_use.input) if tool else dict(tool_use.input)
        return ToolUseContent(tool_use_id=tool_use.tool_use_id, tool_name=tool_use.tool_name, input=masked)

    async def execute(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        """Execute a tool by name.

        Raises:
            ToolNotFoundError, ToolInputError, ToolExecutionError
        """
        tool = self.get(name)
        tool.validate_arguments(arguments)

        try:
            log.info("Executing tool", tool=name, args=arguments)
            if tool.timeout_seconds:
                result = await asyncio.wait_for(tool.execute(**arguments), timeout=tool.timeout_seconds)
            else:
                result = await tool.execute(**arguments)
        except asyncio.TimeoutError:
            raise ToolExecutionError(name, f"Execution timed out after {tool.timeout_seconds:g}s")
        except ToolError:
            raise
        except Exception as e:
            log.error("Tool execution failed", tool=name, error=str(e))
            raise ToolExecutionError(name, str(e))

        if not isinstance(result, ToolResult):
            raise ToolExecutionError(name, "Tool returned invalid result payload")
        log.info("Tool executed", tool=name, success=result.success)
        return result

    async def call_tool(self, tool_use: ToolUseContent) -> ToolResultContent:
        """Run one call and fold any failure into an error result."""
        try:
            result = await self.execute(tool_use.tool_name, tool_use.input)
        except ToolError as e:
            return ToolResult(success=False, error=str(e)).to_content(tool_use)
        return result.to_content(tool_use)
