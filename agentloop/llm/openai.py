"""OpenAI Responses API provider (streaming)."""

import json
from typing import Any

from agentloop.exceptions import IncompleteStreamError
from agentloop.llm.base import LLMProvider, PartialCallback, StreamAccumulator, parse_tool_arguments
from agentloop.llm.usage import normalize_usage
from agentloop.messages import (
    ImageContent,
    Message,
    ModelOutput,
    TextContent,
    ThinkingContent,
    ToolDefinition,
    ToolUseContent,
)

OPENAI_BASE_URL = "https://api.openai.com"
FAILED_EVENT_TYPES = {"response.failed", "response.incomplete", "error"}


def _input_image(part: ImageContent) -> dict[str, Any]:
    return {"type": "input_image", "image_url": f"data:{part.mime_type};base64,{part.data}"}


def build_responses_payload(messages: list[Message], tools: list[ToolDefinition]) -> dict[str, Any]:
    """Translate history into ``instructions``, ``input`` items and ``tools``."""
    instructions: list[str] = []
    items: list[dict[str, Any]] = []

    for message in messages:
        if message.role == "system":
            instructions.extend(part.text for part in message.content if isinstance(part, TextContent))
            continue

        if message.role == "user":
            result_images: list[ImageContent] = []
            content: list[dict[str, Any]] = []
            for part in message.content:
                if part.type == "tool_result":
                    texts = [item.text for item in part.content if isinstance(item, TextContent)]
                    result_images.extend(item for item in part.content if isinstance(item, ImageContent))
                    items.append(
                        {
                            "type": "function_call_output",
                            "call_id": part.tool_use_id,
                            "output": "\n\n".join(texts),
                        }
                    )
                elif isinstance(part, TextContent):
                    content.append({"type": "input_text", "text": part.text})
                elif isinstance(part, ImageContent):
                    content.append(_input_image(part))
            content.extend(_input_image(image) for image in result_images)
            if content:
                items.append({"role": "user", "content": content})
            continue

        for part in message.content:
            if isinstance(part, ThinkingContent):
                metadata = part.provider_metadata or {}
                if not metadata.get("id"):
                    continue
                reasoning: dict[str, Any] = {
                    "type": "reasoning",
                    "id": metadata["id"],
                    "summary": [{"type": "summary_text", "text": part.thinking}] if part.thinking else [],
                }
                if metadata.get("encrypted_content"):
                    reasoning["encrypted_content"] = metadata["encrypted_content"]
                items.append(reasoning)
            elif isinstance(part, TextContent):
                items.append(
                    {
                        "type": "message",
                        "role": "assistant",
                        "content": [{"type": "output_text", "text": part.text}],
                    }
                )
            elif isinstance(part, ToolUseContent):
                items.append(
                    {
                        "type": "function_call",
                        "call_id": part.tool_use_id,
                        "name": part.tool_name,
                        "arguments": json.dumps(part.input),
                    }
                )

    payload: dict[str, Any] = {"input": items}
    if instructions:
        payload["instructions"] = "\n\n".join(instructions)
    if tools:
        payload["tools"] = [
            {
                "type": "function",
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.input_schema,
            }
            for tool in tools
        ]
    return payload


class ResponsesStreamAccumulator(StreamAccumulator):
    """Folds Responses API stream events keyed by ``output_index``."""

    def __init__(self, on_partial: PartialCallback | None = None):
        super().__init__(on_partial)
        self.items: dict[int, dict[str, Any]] = {}
        self.usage: dict[str, Any] = {}
        self.completed = False

    def _item(self, event: dict[str, Any], default_type: str) -> dict[str, Any]:
        index = int(event.get("output_index", 0))
        return self.items.setdefault(index, {"type": default_type})

    def feed(self, event: dict[str, Any]) -> None:
        event_type = event.get("type", "")

        if event_type == "response.output_item.added":
            index = int(event.get("output_index", len(self.items)))
            item = event.get("item") or {}
            item_type = item.get("type")
            if item_type == "function_call":
                self.items[index] = {
                    "type": "function_call",
                    "call_id": item.get("call_id", ""),
                    "id": item.get("id"),
                    "name": item.get("name", ""),
                    "arguments": item.get("arguments", ""),
                }
                self.partials.start("tool_use", item.get("name"))
            elif item_type == "reasoning":
                self.items[index] = {"type": "reasoning", "id": item.get("id"), "text": ""}
                self.partials.start("thinking")
            elif item_type == "message":
                self.items[index] = {"type": "message", "text": ""}
                self.partials.start("text")

        elif event_type == "response.output_text.delta":
            item = self._item(event, "message")
            item["text"] = item.get("text", "") + event.get("delta", "")
            self.partials.delta("text", event.get("delta", ""))

        elif event_type == "response.reasoning_summary_text.delta":
            item = self._item(event, "reasoning")
            item["text"] = item.get("text", "") + event.get("delta", "")
            self.partials.delta("thinking", event.get("delta", ""))

        elif event_type == "response.reasoning_summary_part.added":
            item = self._item(event, "reasoning")
            if item.get("text"):
                item["text"] += "\n\n"

        elif event_type == "response.function_call_arguments.delta":
            item = self._item(event, "function_call")
            item["arguments"] = item.get("arguments", "") + event.get("delta", "")
            self.partials.delta("tool_use", event.get("delta", ""))

        elif event_type == "response.function_call_arguments.done":
            item = self._item(event, "function_call")
            if "arguments" in event:
                item["arguments"] = event["arguments"]

        elif event_type == "response.output_item.done":
            done = event.get("item") or {}
            item = self._item(event, done.get("type", "message"))
            if done.get("type") == "reasoning":
                item["id"] = done.get("id", item.get("id"))
                if done.get("encrypted_content"):
                    item["encrypted_content"] = done["encrypted_content"]
            elif done.get("type") == "function_call":
                item["call_id"] = done.get("call_id", item.get("call_id", ""))
                item["name"] = done.get("name", item.get("name", ""))
                if done.get("arguments") is not None:
                    item["arguments"] = done["arguments"]
            self.partials.stop()

        elif event_type == "response.completed":
            response = event.get("response") or {}
            self.usage = dict(response.get("usage") or {})
            self.completed = True

        elif event_type in FAILED_EVENT_TYPES:
            response = event.get("response") or {}
            reason = response.get("error") or response.get("incomplete_details") or event.get("message")
            raise IncompleteStreamError(f"Responses stream ended with {event_type}: {reason}")

    def finish(self) -> ModelOutput:
        self.partials.stop()
        if not self.completed:
            raise IncompleteStreamError("Responses stream ended before response.completed")

        content: list[Any] = []
        for index in sorted(self.items):
            item = self.items[index]
            if item["type"] == "reasoning":
                metadata = {"id": item.get("id")}
                if item.get("encrypted_content"):
                    metadata["encrypted_content"] = item["encrypted_content"]
                content.append(ThinkingContent(item.get("text", ""), provider_metadata=metadata))
            elif item["type"] == "message":
                if item.get("text"):
                    content.append(TextContent(item["text"]))
            elif item["type"] == "function_call":
                tool_input, input_error = parse_tool_arguments(item.get("arguments"))
                content.append(
                    ToolUseContent(
                        tool_use_id=item.get("call_id", ""),
                        tool_name=item.get("name", ""),
                        input=tool_input,
                        provider_metadata={"id": item["id"]} if item.get("id") else None,
                        input_error=input_error,
                    )
                )

        usage = self.usage
        input_details = usage.get("input_tokens_details") or {}
        output_details = usage.get("output_tokens_details") or {}
        cached = int(input_details.get("cached_tokens") or 0)
        return ModelOutput(
            message=Message(role="assistant", content=content),
            usage=normalize_usage(
                input=int(usage.get("input_tokens") or 0) - cached,
                cached=cached,
                output=usage.get("output_tokens"),
                reasoning=output_details.get("reasoning_tokens"),
                total=usage.get("total_tokens"),
                breakdowns={"input_details": input_details, "output_details": output_details},
            ),
        )


class OpenAIProvider(LLMProvider):
    """OpenAI Responses API with SSE streaming."""

    provider_name = "openai"
    default_base_url = OPENAI_BASE_URL
    api_key_env = "OPENAI_API_KEY"

    def build_request(self, messages, tools):
        body: dict[str, Any] = {
            "model": self.model,
            **self.params,
            **build_responses_payload(messages, tools),
            "stream": True,
            "store": False,
            "include": ["reasoning.encrypted_content"],
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
            **self.settings.headers,
        }
        return f"{self.base_url}/v1/responses", headers, body

    def create_accumulator(self, on_partial):
        return ResponsesStreamAccumulator(on_partial)
