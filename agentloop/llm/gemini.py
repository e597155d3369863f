"""Gemini generateContent provider (streaming)."""

import copy
import json
import uuid
from typing import Any

from agentloop.exceptions import IncompleteStreamError, NoCandidateError
from agentloop.llm.base import LLMProvider, PartialCallback, StreamAccumulator
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

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com"
SAFETY_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)
UNSUPPORTED_SCHEMA_KEYS = {"$schema", "additionalProperties"}


def _clean_schema(schema: Any) -> Any:
    if isinstance(schema, dict):
        return {
            key: _clean_schema(value)
            for key, value in schema.items()
            if key not in UNSUPPORTED_SCHEMA_KEYS
        }
    if isinstance(schema, list):
        return [_clean_schema(item) for item in schema]
    return schema


def _function_response(result: ToolResultContent) -> dict[str, Any]:
    texts = [part.text for part in result.content if isinstance(part, TextContent)]
    key = "error" if result.is_error else "content"
    return {
        "functionResponse": {
            "name": result.tool_name,
            "response": {"name": result.tool_name, key: "\n\n".join(texts)},
        }
    }


def build_gemini_contents(messages: list[Message]) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """Return ``(system_parts, contents)``.

    All tool results of one user message share a single user content so the
    response count matches the calls of the preceding model turn.
    """
    system_parts: list[dict[str, Any]] = []
    contents: list[dict[str, Any]] = []

    for message in messages:
        if message.role == "system":
            system_parts.extend({"text": part.text} for part in message.content)
            continue

        if message.role == "user":
            responses: list[dict[str, Any]] = []
            parts: list[dict[str, Any]] = []
            for part in message.content:
                if isinstance(part, ToolResultContent):
                    responses.append(_function_response(part))
                    parts.extend(
                        {"inline_data": {"mime_type": item.mime_type, "data": item.data}}
                        for item in part.content
                        if isinstance(item, ImageContent)
                    )
                elif isinstance(part, TextContent):
                    parts.append({"text": part.text})
                elif isinstance(part, ImageContent):
                    parts.append({"inline_data": {"mime_type": part.mime_type, "data": part.data}})
            if responses:
                contents.append({"role": "user", "parts": responses})
            if parts:
                contents.append({"role": "user", "parts": parts})
            continue

        model_parts: list[dict[str, Any]] = []
        for part in message.content:
            if isinstance(part, ThinkingContent):
                signature = (part.provider_metadata or {}).get("thought_signature")
                if not signature:
                    continue
                model_parts.append({"text": part.thinking, "thought": True, "thoughtSignature": signature})
            elif isinstance(part, TextContent):
                if part.text:
                    model_parts.append({"text": part.text})
            elif isinstance(part, ToolUseContent):
                call_part: dict[str, Any] = {"functionCall": {"name": part.tool_name, "args": part.input}}
                signature = (part.provider_metadata or {}).get("thought_signature")
                if signature:
                    call_part["thoughtSignature"] = signature
                model_parts.append(call_part)
        if model_parts:
            contents.append({"role": "model", "parts": model_parts})

    return system_parts, contents


class GeminiStreamAccumulator(StreamAccumulator):
    """Merges parts from every streamed chunk into one model turn."""

    def __init__(self, on_partial: PartialCallback | None = None):
        super().__init__(on_partial)
        self.content: list[Any] = []
        self.usage: dict[str, Any] = {}
        self.chunks = 0
        self.saw_candidate = False
        self.finish_reason: str | None = None

    def _append_text(self, cls: type, text: str, signature: str | None) -> None:
        last = self.content[-1] if self.content else None
        if isinstance(last, cls):
            if cls is ThinkingContent:
                last.thinking += text
            else:
                last.text += text
        elif cls is ThinkingContent:
            last = ThinkingContent(text, provider_metadata={})
            self.content.append(last)
        else:
            last = TextContent(text)
            self.content.append(last)
        if signature and isinstance(last, ThinkingContent):
            last.provider_metadata = {**(last.provider_metadata or {}), "thought_signature": signature}

    def feed(self, event: dict[str, Any]) -> None:
        self.chunks += 1
        if event.get("usageMetadata"):
            self.usage = dict(event["usageMetadata"])

        candidates = event.get("candidates") or []
        if not candidates:
            return
        self.saw_candidate = True
        candidate = candidates[0]

        for part in (candidate.get("content") or {}).get("parts") or []:
            signature = part.get("thoughtSignature")
            if "functionCall" in part:
                call = part["functionCall"] or {}
                args = call.get("args") or {}
                self.partials.start("tool_use", call.get("name"))
                self.partials.delta("tool_use", json.dumps(args))
                self.partials.stop()
                self.content.append(
                    ToolUseContent(
                        tool_use_id=call.get("id") or f"call_{uuid.uuid4().hex[:16]}",
                        tool_name=call.get("name", ""),
                        input=args,
                        provider_metadata={"thought_signature": signature} if signature else None,
                    )
                )
            elif part.get("thought"):
                self._append_text(ThinkingContent, part.get("text", ""), signature)
                self.partials.delta("thinking", part.get("text", ""))
            elif "text" in part:
                self._append_text(TextContent, part["text"], None)
                self.partials.delta("text", part["text"])

        if candidate.get("finishReason"):
            self.finish_reason = candidate["finishReason"]

    def finish(self) -> ModelOutput:
        self.partials.stop()
        if not self.chunks:
            raise IncompleteStreamError("Gemini stream ended without data")
        if not self.saw_candidate:
            raise NoCandidateError("Gemini returned no candidate")
        if self.finish_reason is None:
            raise IncompleteStreamError("Gemini stream ended without finishReason")

        usage = self.usage
        prompt = int(usage.get("promptTokenCount") or 0)
        cached = int(usage.get("cachedContentTokenCount") or 0)
        return ModelOutput(
            message=Message(role="assistant", content=self.content),
            usage=normalize_usage(
                input=prompt - cached,
                cached=cached,
                output=usage.get("candidatesTokenCount"),
                reasoning=usage.get("thoughtsTokenCount"),
                total=usage.get("totalTokenCount"),
            ),
        )


class GeminiProvider(LLMProvider):
    """Gemini streamGenerateContent with SSE streaming."""

    provider_name = "gemini"
    default_base_url = GEMINI_BASE_URL
    api_key_env = "GEMINI_API_KEY"
    sse_delimiter = b"\r\n\r\n"

    def build_request(self, messages, tools):
        system_parts, contents = build_gemini_contents(messages)
        params = copy.deepcopy(self.params)
        generation_config = {"temperature": 0, **params.pop("generationConfig", {})}
        body: dict[str, Any] = {
            "generationConfig": generation_config,
            "safetySettings": [
                {"category": category, "threshold": "BLOCK_NONE"} for category in SAFETY_CATEGORIES
            ],
            **params,
            "contents": contents,
        }
        if system_parts:
            body["system_instruction"] = {"parts": system_parts}
        if tools:
            body["tools"] = [
                {
                    "functionDeclarations": [
                        {
                            "name": tool.name,
                            "description": tool.description,
                            "parameters": _clean_schema(tool.input_schema),
                        }
                        for tool in tools
                    ]
                }
            ]
        headers = {
            "Content-Type": "application/json",
            "x-goog-api-key": self.api_key,
            **self.settings.headers,
        }
        url = f"{self.base_url}/v1beta/models/{self.model}:streamGenerateContent?alt=sse"
        return url, headers, body

    def create_accumulator(self, on_partial):
        return GeminiStreamAccumulator(on_partial)
