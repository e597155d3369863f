"""Provider base class: streaming transport, retry and partial-content events."""

import asyncio
import json
import os
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Callable

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    stop_never,
    wait_exponential,
)

from agentloop.config import ProviderConfig, RetryConfig
from agentloop.exceptions import LLMAPIError, LLMError, NoCandidateError, RetryableLLMError, StreamDecodeError
from agentloop.logging import get_logger
from agentloop.messages import Message, ModelOutput, PartialMessageContent, ToolDefinition
from agentloop.streaming import SSEFrame, SSEFramer, aiter_frames

log = get_logger(__name__)

PartialCallback = Callable[[PartialMessageContent], None]

CONTINUE_PROMPT = "continue"


def parse_tool_arguments(raw: str | None) -> tuple[dict[str, Any], str | None]:
    """Parse buffered tool-call arguments.

    Returns the parsed object and ``None``, or ``{}`` and an error message.
    An empty buffer means a call without arguments.
    """
    text = (raw or "").strip()
    if not text:
        return {}, None
    try:
        value = json.loads(text)
    except json.JSONDecodeError as e:
        return {}, f"Invalid tool input JSON: {e.msg} (position {e.pos})"
    if not isinstance(value, dict):
        return {}, "Tool input must be a JSON object"
    return value, None


class PartialContentEmitter:
    """Forward partial content so every block reads start, delta..., stop.

    A ``delta`` of a new type opens a block implicitly, and opening a block
    closes the previous one, so a ``stop`` is never missing.
    """

    def __init__(self, callback: PartialCallback | None = None):
        self._callback = callback
        self.current_type: str | None = None

    def _emit(self, partial: PartialMessageContent) -> None:
        if self._callback is not None:
            self._callback(partial)

    def start(self, content_type: str, content: str | None = None) -> None:
        if self.current_type is not None:
            self.stop()
        self.current_type = content_type
        self._emit(PartialMessageContent(type=content_type, position="start", content=content))

    def delta(self, content_type: str, content: str) -> None:
        if self.current_type != content_type:
            self.start(content_type)
        self._emit(PartialMessageContent(type=content_type, position="delta", content=content))

    def stop(self) -> None:
        if self.current_type is None:
            return
        self._emit(PartialMessageContent(type=self.current_type, position="stop"))
        self.current_type = None


class StreamAccumulator(ABC):
    """Folds decoded vendor events into one assistant message."""

    def __init__(self, on_partial: PartialCallback | None = None):
        self.partials = PartialContentEmitter(on_partial)

    @abstractmethod
    def feed(self, event: dict[str, Any]) -> None:
        """Apply one decoded stream event."""

    @abstractmethod
    def finish(self) -> ModelOutput:
        """Build the final output; raises ``IncompleteStreamError`` if unfinished."""


class LLMProvider(ABC):
    """Streaming chat model behind one vendor endpoint.

    Subclasses translate history into the vendor request, decode the stream
    and fold events with their ``StreamAccumulator``. Retry and transport
    handling live here.
    """

    provider_name: str = ""
    default_base_url: str = ""
    api_key_env: str = ""
    sse_delimiter: bytes = b"\n\n"

    def __init__(
        self,
        model: str,
        params: dict[str, Any] | None = None,
        settings: ProviderConfig | None = None,
        retry: RetryConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.model = model
        self.params = dict(params or {})
        self.settings = settings or ProviderConfig()
        self.retry = retry or RetryConfig()
        self.api_key = self.settings.api_key or (os.environ.get(self.api_key_env, "") if self.api_key_env else "")
        self.base_url = (self.settings.base_url or self.default_base_url).rstrip("/")
        self.client = client or httpx.AsyncClient(
            timeout=self.settings.timeout,
            follow_redirects=True,
        )

    @abstractmethod
    def build_request(
        self,
        messages: list[Message],
        tools: list[ToolDefinition],
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        """Return ``(url, headers, body)`` for one streaming call."""

    @abstractmethod
    def create_accumulator(self, on_partial: PartialCallback | None) -> StreamAccumulator:
        pass

    def decode_sse_frame(self, frame: SSEFrame) -> dict[str, Any] | None:
        """Turn one SSE frame into an event dict, or ``None`` to skip it."""
        if not frame.data:
            return None
        return frame.json()

    async def iter_events(self, response: httpx.Response) -> AsyncIterator[dict[str, Any]]:
        framer = SSEFramer(self.sse_delimiter)
        async for frame in aiter_frames(response.aiter_bytes(), framer):
            event = self.decode_sse_frame(frame)
            if event is not None:
                yield event

    async def complete(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        on_partial: PartialCallback | None = None,
    ) -> ModelOutput:
        """Run one model call, retrying transient failures with backoff."""
        history = list(messages)
        attempts = 0
        try:
            async for attempt in self._retrying():
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    try:
                        return await self._complete_once(history, tools or [], on_partial)
                    except NoCandidateError:
                        history = [*history, Message.user_text(CONTINUE_PROMPT)]
                        raise
        except RetryableLLMError as e:
            raise LLMAPIError(
                f"{self.provider_name} call failed after {attempts} attempts: {e}",
                status_code=e.status_code,
            ) from e
        raise LLMError(f"{self.provider_name} call ended without a result")

    def _retrying(self) -> AsyncRetrying:
        max_attempts = self.retry.max_attempts
        return AsyncRetrying(
            sleep=asyncio.sleep,
            reraise=True,
            stop=stop_never if max_attempts is None else stop_after_attempt(max_attempts + 1),
            wait=wait_exponential(
                multiplier=self.retry.initial_interval,
                exp_base=self.retry.multiplier,
                max=self.retry.max_interval,
            ),
            retry=retry_if_exception_type(RetryableLLMError),
            before_sleep=self._log_retry,
        )

    def _log_retry(self, retry_state: RetryCallState) -> None:
        log.warning(
            "Retrying model call",
            provider=self.provider_name,
            model=self.model,
            attempt=retry_state.attempt_number,
            delay=retry_state.next_action.sleep if retry_state.next_action else None,
            reason=str(retry_state.outcome.exception()) if retry_state.outcome else None,
        )

    async def _complete_once(
        self,
        messages: list[Message],
        tools: list[ToolDefinition],
        on_partial: PartialCallback | None,
    ) -> ModelOutput:
        url, headers, body = self.build_request(messages, tools)
        accumulator = self.create_accumulator(on_partial)

        try:
            log.debug("Calling model", provider=self.provider_name, model=self.model, msg_count=len(messages))
            async with self.client.stream("POST", url, json=body, headers=headers) as response:
                if response.status_code == 429 or response.status_code >= 500:
                    error_text = (await response.aread()).decode("utf-8", errors="replace")
                    raise RetryableLLMError(
                        f"{self.provider_name} API error {response.status_code}: {error_text}",
                        status_code=response.status_code,
                    )
                if not response.is_success:
                    error_text = (await response.aread()).decode("utf-8", errors="replace")
                    raise LLMAPIError(
                        f"Failed to call {self.provider_name} model: status={response.status_code}, body={error_text}",
                        status_code=response.status_code,
                    )

                async for event in self.iter_events(response):
                    try:
                        accumulator.feed(event)
                    except (AttributeError, KeyError, TypeError, ValueError) as e:
                        raise StreamDecodeError(
                            f"{self.provider_name} sent a malformed {event.get('type', 'stream')} event: {e}"
                        ) from e
        except httpx.HTTPError as e:
            raise LLMAPIError(f"{self.provider_name} HTTP error: {e}") from e

        return accumulator.finish()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()
