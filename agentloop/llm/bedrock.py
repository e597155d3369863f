"""Bedrock gateway provider: binary event-stream framing around vendor events."""

import base64
from typing import Any, AsyncIterator
from urllib.parse import quote

import httpx

from agentloop.config import BedrockProviderConfig, ProviderConfig, RetryConfig, get_config
from agentloop.exceptions import LLMAPIError, RetryableLLMError, StreamDecodeError
from agentloop.llm.anthropic import AnthropicStreamAccumulator, build_anthropic_payload
from agentloop.llm.base import LLMProvider
from agentloop.llm.openai_compatible import ChatCompletionsStreamAccumulator, build_chat_completions_payload
from agentloop.logging import get_logger
from agentloop.streaming import EventStreamFramer, EventStreamMessage, aiter_frames, load_event_json

log = get_logger(__name__)

BEDROCK_ANTHROPIC_VERSION = "bedrock-2023-05-31"
RETRYABLE_EXCEPTIONS = {
    "throttlingException",
    "serviceUnavailableException",
    "internalServerException",
    "modelStreamErrorException",
}


def decode_gateway_payload(message: EventStreamMessage) -> dict[str, Any] | None:
    """Unwrap one gateway frame.

    ``bytes`` payloads carry a base64 JSON vendor event. ``message`` payloads
    are diagnostics and are logged, not yielded. Exception frames raise.
    """
    message_type = message.headers.get(":message-type")
    if message_type == "exception":
        exception_type = message.headers.get(":exception-type", "exception")
        text = message.payload.decode("utf-8", errors="replace")
        if exception_type in RETRYABLE_EXCEPTIONS:
            raise RetryableLLMError(f"Bedrock {exception_type}: {text}")
        raise LLMAPIError(f"Bedrock {exception_type}: {text}")

    if not message.payload.strip():
        return None
    data = load_event_json(message.payload)
    if data.get("bytes"):
        try:
            event_bytes = base64.b64decode(data["bytes"], validate=True)
        except (TypeError, ValueError) as e:
            raise StreamDecodeError(f"Bedrock payload bytes are not valid base64: {e}") from e
        return load_event_json(event_bytes)
    if data.get("message"):
        log.warning("Bedrock message received", message=data["message"])
    return None


class BedrockProvider(LLMProvider):
    """Invoke-with-response-stream endpoint with bearer-token auth.

    ``event_format`` picks the shape of the wrapped events: Anthropic
    Messages events or OpenAI-compatible chat completion chunks.
    """

    provider_name = "bedrock"
    api_key_env = "BEDROCK_API_KEY"

    def __init__(
        self,
        model: str,
        params: dict[str, Any] | None = None,
        settings: ProviderConfig | None = None,
        retry: RetryConfig | None = None,
        client: httpx.AsyncClient | None = None,
        verify_crc: bool | None = None,
    ):
        settings = settings or BedrockProviderConfig()
        super().__init__(model, params=params, settings=settings, retry=retry, client=client)
        self.event_format = getattr(settings, "event_format", "anthropic")
        region = getattr(settings, "region", "us-east-1")
        if not self.base_url:
            self.base_url = f"https://bedrock-runtime.{region}.amazonaws.com"
        if verify_crc is None:
            verify_crc = get_config().stream.verify_event_stream_crc
        self.verify_crc = verify_crc

    def build_request(self, messages, tools):
        if self.event_format == "anthropic":
            body: dict[str, Any] = {
                "anthropic_version": BEDROCK_ANTHROPIC_VERSION,
                **self.params,
                **build_anthropic_payload(messages, tools),
            }
        else:
            body = {**self.params, **build_chat_completions_payload(messages, tools)}
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
            **self.settings.headers,
        }
        url = f"{self.base_url}/model/{quote(self.model, safe='')}/invoke-with-response-stream"
        return url, headers, body

    async def iter_events(self, response: httpx.Response) -> AsyncIterator[dict[str, Any]]:
        framer = EventStreamFramer(verify_crc=self.verify_crc)
        async for message in aiter_frames(response.aiter_bytes(), framer):
            event = decode_gateway_payload(message)
            if event is not None:
                yield event

    def create_accumulator(self, on_partial):
        if self.event_format == "anthropic":
            return AnthropicStreamAccumulator(on_partial)
        return ChatCompletionsStreamAccumulator(on_partial)
