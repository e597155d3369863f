"""OpenAI-compatible chat completions provider (streaming)."""

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
    ToolResultContent,
    ToolUseContent,
)
from agentloop.streaming import SSEFrame

DONE_SENTINEL = "[DONE]"

COMPATIBLE_BASE_URLS = {
    "openai": "https://api.openai.com",
    "moonshotai": "https://api.moonshot.ai",
    "deepseek": "https://api.deepseek.com",
    "xai": "https://api.x.ai",
    "zai": "https://api.z.ai/api/paas",
    "minimax": "https://api.minimax.io",
    "qwen": "https://dashscope-intl.aliyuncs.com/compatible-mode",
}


def _image_url(part: ImageContent) -> dict[str, Any]:
    return {"type": "image_url", "image_url": {"url": f"data:{part.mime_type};base64,{part.data}"}}


def _convert_user_message(message: Message) -> list[dict[str, Any]]:
    """Tool results become ``tool`` messages; their images follow in a user message."""
    converted: list[dict[str, Any]] = []
    tool_results = message.tool_results
    if tool_results:
        images: list[ImageContent] = []
        for result in tool_results:
            text_parts: list[str] = []
            for part in result.content:
                if isinstance(part, ImageContent):
                    images.append(part)
                    text_parts.append(f"(Image [{len(images)}] omitted. See next message from user.)")
                elif isinstance(part, TextContent):
                    text_parts.append(part.text)
            converted.append(
                {"role": "tool", "tool_call_id": result.tool_use_id, "content": "\n\n".join(text_parts)}
            )
        if images:
            converted.append({"role": "user", "content": [_image_url(image) for image in images]})

    content: list[dict[str, Any]] = []
    for part in message.content:
        if isinstance(part, TextContent):
            content.append({"type": "text", "text": part.text})
        elif isinstance(part, ImageContent):
            content.append(_image_url(part))
    if content:
        converted.append({"role": "user", "content": content})
    return converted


def _convert_assistant_message(message: Message) -> dict[str, Any]:
    reasoning = "".join(part.thinking for part in message.content if isinstance(part, ThinkingContent))
    text = "\n".join(part.text for part in message.content if isinstance(part, TextContent))
    tool_calls = [
        {
            "id": part.tool_use_id,
            "type": "function",
            "function": {"name": part.tool_name, "arguments": json.dumps(part.input)},
        }
        for part in message.tool_uses
    ]
    converted: dict[str, Any] = {"role": "assistant", "content": text or None}
    if reasoning:
        converted["reasoning_content"] = reasoning
    if tool_calls:
        converted["tool_calls"] = tool_calls
    return converted


def build_chat_completions_payload(messages: list[Message], tools: list[ToolDefinition]) -> dict[str, Any]:
    """Translate history into ``messages`` and ``tools`` fields."""
    converted: list[dict[str, Any]] = []
    for message in messages:
        if message.role == "system":
            converted.append(
                {
                    "role": "system",
                    "content": [{"type": "text", "text": part.text} for part in message.content],
                }
            )
        elif message.role == "user":
            converted.extend(_convert_user_message(message))
        else:
            converted.append(_convert_assistant_message(message))

    payload: dict[str, Any] = {"messages": converted}
    if tools:
        payload["tools"] = [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.input_schema,
                },
            }
            for tool in tools
        ]
    return payload


class ChatCompletionsStreamAccumulator(StreamAccumulator):
    """Folds ``chat.completion.chunk`` events."""

    def __init__(self, on_partial: PartialCallback | None = None):
        super().__init__(on_partial)
        self.reasoning = ""
        self.text = ""
        self.tool_calls: dict[int, dict[str, Any]] = {}
        self.usage: dict[str, Any] = {}
        self.finish_reason: str | None = None
        self.completed = False

    def feed(self, event: dict[str, Any]) -> None:
        if event.get("done"):
            self.completed = True
            return

        if event.get("usage"):
            self.usage = dict(event["usage"])

        for choice in (event.get("choices") or [])[:1]:
            delta = choice.get("delta") or {}
            if delta.get("reasoning_content"):
                self.reasoning += delta["reasoning_content"]
                self.partials.delta("thinking", delta["reasoning_content"])
            if delta.get("content"):
                self.text += delta["content"]
                self.partials.delta("text", delta["content"])
            for call_delta in delta.get("tool_calls") or []:
                index = int(call_delta.get("index", len(self.tool_calls)))
                function = call_delta.get("function") or {}
                call = self.tool_calls.get(index)
                if call is None:
                    call = {"id": call_delta.get("id", ""), "name": function.get("name", ""), "arguments": ""}
                    self.tool_calls[index] = call
                    self.partials.start("tool_use", call["name"])
                elif call_delta.get("id") and not call["id"]:
                    call["id"] = call_delta["id"]
                if function.get("arguments"):
                    call["arguments"] += function["arguments"]
                    self.partials.delta("tool_use", function["arguments"])
            if choice.get("finish_reason"):
                self.finish_reason = choice["finish_reason"]
                self.completed = True

    def finish(self) -> ModelOutput:
        self.partials.stop()
        if not self.completed:
            raise IncompleteStreamError("Chat completions stream ended without finish_reason")

        content: list[Any] = []
        if self.reasoning:
            content.append(ThinkingContent(self.reasoning))
        if self.text:
            content.append(TextContent(self.text))
        for index in sorted(self.tool_calls):
            call = self.tool_calls[index]
            tool_input, input_error = parse_tool_arguments(call["arguments"])
            content.append(
                ToolUseContent(
                    tool_use_id=call["id"],
                    tool_name=call["name"],
                    input=tool_input,
                    input_error=input_error,
                )
            )

        usage = self.usage
        prompt_details = usage.get("prompt_tokens_details") or {}
        completion_details = usage.get("completion_tokens_details") or {}
        cached = int(prompt_details.get("cached_tokens") or 0)
        return ModelOutput(
            message=Message(role="assistant", content=content),
            usage=normalize_usage(
                input=int(usage.get("prompt_tokens") or 0) - cached,
                cached=cached,
                output=usage.get("completion_tokens"),
                reasoning=completion_details.get("reasoning_tokens"),
                total=usage.get("total_tokens"),
                breakdowns={
                    "input_details": prompt_details,
                    "output_details": completion_details,
                },
            ),
        )


def decode_chat_completions_frame(frame: SSEFrame) -> dict[str, Any] | None:
    if not frame.data:
        return None
    if frame.data.strip() == DONE_SENTINEL:
        return {"done": True}
    return frame.json()


class OpenAICompatibleProvider(LLMProvider):
    """Chat completions endpoint of any OpenAI-compatible vendor."""

    provider_name = "openai-compatible"
    default_base_url = COMPATIBLE_BASE_URLS["openai"]
    api_key_env = "OPENAI_API_KEY"

    def build_request(self, messages, tools):
        body: dict[str, Any] = {
            "model": self.model,
            **self.params,
            **build_chat_completions_payload(messages, tools),
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        headers = {"Content-Type": "application/json", **self.settings.headers}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return f"{self.base_url}/v1/chat/completions", headers, body

    def decode_sse_frame(self, frame):
        return decode_chat_completions_frame(frame)

    def create_accumulator(self, on_partial):
        return ChatCompletionsStreamAccumulator(on_partial)
