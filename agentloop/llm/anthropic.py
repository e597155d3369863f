"""Anthropic Messages API provider (streaming)."""

from typing import Any

from agentloop.exceptions import IncompleteStreamError, LLMAPIError, RetryableLLMError
from agentloop.llm.base import LLMProvider, PartialCallback, StreamAccumulator, parse_tool_arguments
from agentloop.llm.usage import normalize_usage
from agentloop.logging import get_logger
from agentloop.messages import (
    ImageContent,
    Message,
    ModelOutput,
    TextContent,
    ThinkingContent,
    ToolDefinition,
    ToolResultContent,
    ToolUseContent,
)

log = get_logger(__name__)

ANTHROPIC_BASE_URL = "https://api.anthropic.com"
ANTHROPIC_VERSION = "2023-06-01"
CACHE_CONTROL = {"type": "ephemeral"}
RETRYABLE_ERROR_TYPES = {"overloaded_error", "api_error", "rate_limit_error"}


def _convert_part(part: Any) -> dict[str, Any] | None:
    if isinstance(part, TextContent):
        if not part.text:
            return None
        return {"type": "text", "text": part.text}
    if isinstance(part, ImageContent):
        return {
            "type": "image",
            "source": {"type": "base64", "media_type": part.mime_type, "data": part.data},
        }
    if isinstance(part, ThinkingContent):
        metadata = part.provider_metadata or {}
        if metadata.get("redacted_data"):
            return {"type": "redacted_thinking", "data": metadata["redacted_data"]}
        return {"type": "thinking", "thinking": part.thinking, "signature": metadata.get("signature", "")}
    if isinstance(part, ToolUseContent):
        return {"type": "tool_use", "id": part.tool_use_id, "name": part.tool_name, "input": part.input}
    if isinstance(part, ToolResultContent):
        content = [item for item in (_convert_part(p) for p in part.content) if item is not None]
        return {
            "type": "tool_result",
            "tool_use_id": part.tool_use_id,
            "content": content,
            "is_error": part.is_error,
        }
    raise TypeError(f"Unsupported content part: {part!r}")


def build_anthropic_payload(messages: list[Message], tools: list[ToolDefinition]) -> dict[str, Any]:
    """Translate history into ``system``, ``messages`` and ``tools`` fields.

    Cache hints go on the last part of the first system message and on the
    last part of the last two user turns.
    """
    system: list[dict[str, Any]] = []
    converted: list[dict[str, Any]] = []
    first_system = True
    for message in messages:
        parts = [item for item in (_convert_part(p) for p in message.content) if item is not None]
        if message.role == "system":
            if first_system and parts:
                parts[-1]["cache_control"] = dict(CACHE_CONTROL)
            first_system = False
            system.extend(parts)
            continue
        if not parts:
            continue
        converted.append({"role": message.role, "content": parts})

    user_indices = [i for i, item in enumerate(converted) if item["role"] == "user"]
    for index in user_indices[-2:]:
        converted[index]["content"][-1]["cache_control"] = dict(CACHE_CONTROL)

    payload: dict[str, Any] = {"system": system, "messages": converted}
    if tools:
        payload["tools"] = [
            {"name": tool.name, "description": tool.description, "input_schema": tool.input_schema}
            for tool in tools
        ]
    return payload


class AnthropicStreamAccumulator(StreamAccumulator):
    """Folds Messages API stream events."""

    def __init__(self, on_partial: PartialCallback | None = None):
        super().__init__(on_partial)
        self.blocks: dict[int, dict[str, Any]] = {}
        self._input_buffers: dict[int, str] = {}
        self.usage: dict[str, Any] = {}
        self.stop_reason: str | None = None
        self.completed = False

    def feed(self, event: dict[str, Any]) -> None:
        event_type = event.get("type")

        if event_type == "message_start":
            self.usage = dict((event.get("message") or {}).get("usage") or {})

        elif event_type == "content_block_start":
            index = int(event.get("index", len(self.blocks)))
            block = dict(event.get("content_block") or {})
            self.blocks[index] = block
            block_type = block.get("type")
            if block_type == "tool_use":
                self._input_buffers[index] = ""
                self.partials.start("tool_use", block.get("name"))
            elif block_type in ("thinking", "redacted_thinking"):
                self.partials.start("thinking")
            else:
                self.partials.start("text")
                if block.get("text"):
                    self.partials.delta("text", block["text"])

        elif event_type == "content_block_delta":
            index = int(event.get("index", 0))
            block = self.blocks.setdefault(index, {"type": "text", "text": ""})
            delta = event.get("delta") or {}
            delta_type = delta.get("type")
            if delta_type == "text_delta":
                block["text"] = block.get("text", "") + delta.get("text", "")
                self.partials.delta("text", delta.get("text", ""))
            elif delta_type == "thinking_delta":
                block["thinking"] = block.get("thinking", "") + delta.get("thinking", "")
                self.partials.delta("thinking", delta.get("thinking", ""))
            elif delta_type == "signature_delta":
                block["signature"] = delta.get("signature", "")
            elif delta_type == "input_json_delta":
                self._input_buffers[index] = self._input_buffers.get(index, "") + delta.get("partial_json", "")
                self.partials.delta("tool_use", delta.get("partial_json", ""))

        elif event_type == "content_block_stop":
            index = int(event.get("index", 0))
            block = self.blocks.get(index)
            if block is not None and block.get("type") == "tool_use":
                raw = self._input_buffers.pop(index, "")
                if raw:
                    block["input"], block["input_error"] = parse_tool_arguments(raw)
                else:
                    block.setdefault("input", {})
            self.partials.stop()

        elif event_type == "message_delta":
            delta = event.get("delta") or {}
            self.stop_reason = delta.get("stop_reason", self.stop_reason)
            for key, value in (event.get("usage") or {}).items():
                if value is not None:
                    self.usage[key] = value

        elif event_type == "message_stop":
            self.completed = True

        elif event_type == "error":
            error = event.get("error") or {}
            message = f"Anthropic stream error {error.get('type')}: {error.get('message')}"
            if error.get("type") in RETRYABLE_ERROR_TYPES:
                raise RetryableLLMError(message)
            raise LLMAPIError(message)

    def finish(self) -> ModelOutput:
        self.partials.stop()
        if not self.completed:
            raise IncompleteStreamError("Anthropic stream ended before message_stop")

        content: list[Any] = []
        for index in sorted(self.blocks):
            block = self.blocks[index]
            block_type = block.get("type")
            if block_type == "text":
                content.append(TextContent(block.get("text", "")))
            elif block_type == "thinking":
                content.append(
                    ThinkingContent(
                        block.get("thinking", ""),
                        provider_metadata={"signature": block.get("signature", "")},
                    )
                )
            elif block_type == "redacted_thinking":
                content.append(ThinkingContent("", provider_metadata={"redacted_data": block.get("data", "")}))
            elif block_type == "tool_use":
                content.append(
                    ToolUseContent(
                        tool_use_id=block.get("id", ""),
                        tool_name=block.get("name", ""),
                        input=block.get("input") or {},
                        input_error=block.get("input_error"),
                    )
                )
            else:
                log.warning("Ignoring unsupported content block", block_type=block_type)

        usage = self.usage
        return ModelOutput(
            message=Message(role="assistant", content=content),
            usage=normalize_usage(
                input=usage.get("input_tokens"),
                cached=usage.get("cache_read_input_tokens"),
                cache_write=usage.get("cache_creation_input_tokens"),
                output=usage.get("output_tokens"),
                breakdowns={"cache_creation": usage.get("cache_creation")},
            ),
        )


class AnthropicProvider(LLMProvider):
    """Anthropic Messages API with SSE streaming."""

    provider_name = "anthropic"
    default_base_url = ANTHROPIC_BASE_URL
    api_key_env = "ANTHROPIC_API_KEY"

    def build_request(self, messages, tools):
        body: dict[str, Any] = {
            "model": self.model,
            **self.params,
            **build_anthropic_payload(messages, tools),
            "stream": True,
        }
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            **self.settings.headers,
        }
        return f"{self.base_url}/v1/messages", headers, body

    def create_accumulator(self, on_partial):
        return AnthropicStreamAccumulator(on_partial)
