"""Conversation data model shared by providers, tools and the turn loop."""

from dataclasses import dataclass, field
from typing import Any, Literal, Union

Role = Literal["system", "user", "assistant"]
PartialPosition = Literal["start", "delta", "stop"]


@dataclass
class TextContent:
    """Plain text part."""

    text: str
    type: Literal["text"] = field(default="text", init=False)


@dataclass
class ImageContent:
    """Base64 image part."""

    mime_type: str
    data: str
    type: Literal["image"] = field(default="image", init=False)


@dataclass
class ThinkingContent:
    """Model reasoning; provider_metadata carries vendor signatures."""

    thinking: str
    provider_metadata: dict[str, Any] | None = None
    type: Literal["thinking"] = field(default="thinking", init=False)


@dataclass
class ToolUseContent:
    """Tool call requested by the model.

    ``input_error`` is set when the streamed argument JSON could not be parsed.
    It stays local and is never sent back to a vendor.
    """

    tool_use_id: str
    tool_name: str
    input: dict[str, Any] = field(default_factory=dict)
    provider_metadata: dict[str, Any] | None = None
    input_error: str | None = None
    type: Literal["tool_use"] = field(default="tool_use", init=False)


@dataclass
class ToolResultContent:
    """Result of one tool call, paired to its call by tool_use_id."""

    tool_use_id: str
    tool_name: str
    content: list[Union[TextContent, ImageContent]] = field(default_factory=list)
    is_error: bool = False
    type: Literal["tool_result"] = field(default="tool_result", init=False)

    @property
    def text(self) -> str:
        return "\n".join(part.text for part in self.content if isinstance(part, TextContent))


ContentPart = Union[TextContent, ImageContent, ThinkingContent, ToolUseContent, ToolResultContent]

_ALLOWED_PARTS: dict[str, tuple[type, ...]] = {
    "system": (TextContent,),
    "user": (TextContent, ImageContent, ToolResultContent),
    "assistant": (ThinkingContent, TextContent, ToolUseContent),
}


@dataclass
class Message:
    """A message in the conversation."""

    role: Role
    content: list[ContentPart] = field(default_factory=list)

    def __post_init__(self) -> None:
        allowed = _ALLOWED_PARTS.get(self.role)
        if allowed is None:
            raise ValueError(f"Unsupported role: {self.role!r}")
        for part in self.content:
            if not isinstance(part, allowed):
                raise ValueError(
                    f"{type(part).__name__} is not allowed in a {self.role} message"
                )

    @property
    def tool_uses(self) -> list[ToolUseContent]:
        return [part for part in self.content if isinstance(part, ToolUseContent)]

    @property
    def tool_results(self) -> list[ToolResultContent]:
        return [part for part in self.content if isinstance(part, ToolResultContent)]

    @classmethod
    def system(cls, text: str) -> "Message":
        return cls(role="system", content=[TextContent(text)])

    @classmethod
    def user_text(cls, text: str) -> "Message":
        return cls(role="user", content=[TextContent(text)])


@dataclass
class ToolDefinition:
    """Definition of a tool for the LLM."""

    name: str
    description: str
    input_schema: dict[str, Any]  # JSON Schema


@dataclass
class PartialMessageContent:
    """Live streaming fragment; never stored in history."""

    type: str
    position: PartialPosition
    content: str | None = None


@dataclass
class ModelOutput:
    """Assistant message plus normalized token usage."""

    message: Message
    usage: dict[str, Any] = field(default_factory=dict)


def text_result(tool_use: ToolUseContent, text: str, is_error: bool = False) -> ToolResultContent:
    """Build a single-text tool result answering ``tool_use``."""
    return ToolResultContent(
        tool_use_id=tool_use.tool_use_id,
        tool_name=tool_use.tool_name,
        content=[TextContent(text)],
        is_error=is_error,
    )


def part_to_dict(part: ContentPart) -> dict[str, Any]:
    """Serialize a content part for the messages dump."""
    if isinstance(part, TextContent):
        return {"type": "text", "text": part.text}
    if isinstance(part, ImageContent):
        return {"type": "image", "mime_type": part.mime_type, "data": part.data}
    if isinstance(part, ThinkingContent):
        data: dict[str, Any] = {"type": "thinking", "thinking": part.thinking}
        if part.provider_metadata:
            data["provider_metadata"] = part.provider_metadata
        return data
    if isinstance(part, ToolUseContent):
        data = {
            "type": "tool_use",
            "tool_use_id": part.tool_use_id,
            "tool_name": part.tool_name,
            "input": part.input,
        }
        if part.provider_metadata:
            data["provider_metadata"] = part.provider_metadata
        if part.input_error:
            data["input_error"] = part.input_error
        return data
    if isinstance(part, ToolResultContent):
        return {
            "type": "tool_result",
            "tool_use_id": part.tool_use_id,
            "tool_name": part.tool_name,
            "content": [part_to_dict(item) for item in part.content],
            "is_error": part.is_error,
        }
    raise TypeError(f"Unsupported content part: {part!r}")


def part_from_dict(data: dict[str, Any]) -> ContentPart:
    """Inverse of ``part_to_dict``."""
    part_type = data.get("type")
    if part_type == "text":
        return TextContent(data["text"])
    if part_type == "image":
        return ImageContent(mime_type=data["mime_type"], data=data["data"])
    if part_type == "thinking":
        return ThinkingContent(data["thinking"], provider_metadata=data.get("provider_metadata"))
    if part_type == "tool_use":
        return ToolUseContent(
            tool_use_id=data["tool_use_id"],
            tool_name=data["tool_name"],
            input=data.get("input") or {},
            provider_metadata=data.get("provider_metadata"),
            input_error=data.get("input_error"),
        )
    if part_type == "tool_result":
        return ToolResultContent(
            tool_use_id=data["tool_use_id"],
            tool_name=data["tool_name"],
            content=[part_from_dict(item) for item in data.get("content", [])],
            is_error=bool(data.get("is_error", False)),
        )
    raise ValueError(f"Unsupported content part type: {part_type!r}")


def message_to_dict(message: Message) -> dict[str, Any]:
    return {"role": message.role, "content": [part_to_dict(part) for part in message.content]}


def message_from_dict(data: dict[str, Any]) -> Message:
    return Message(
        role=data["role"],
        content=[part_from_dict(item) for item in data.get("content", [])],
    )
