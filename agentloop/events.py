"""Agent events and the channel that carries them to observers."""

import asyncio
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Union

from agentloop.messages import Message, PartialMessageContent, ToolUseContent


@dataclass
class MessageEvent:
    """A message was appended to history."""

    message: Message


@dataclass
class PartialContentEvent:
    partial: PartialMessageContent


@dataclass
class ErrorEvent:
    error: Exception


@dataclass
class ToolUseRequestEvent:
    """Tool calls are waiting for the user's approval."""

    tool_uses: list[ToolUseContent] = field(default_factory=list)


@dataclass
class TurnEndEvent:
    pass


@dataclass
class TokenUsageEvent:
    usage: dict[str, Any]


@dataclass
class SubagentStatus:
    name: str
    goal: str


@dataclass
class SubagentStatusEvent:
    """Delegation started (``status`` set) or ended (``status`` None)."""

    status: SubagentStatus | None


AgentEvent = Union[
    MessageEvent,
    PartialContentEvent,
    ErrorEvent,
    ToolUseRequestEvent,
    TurnEndEvent,
    TokenUsageEvent,
    SubagentStatusEvent,
]


class AgentEventChannel:
    """Unbounded FIFO of agent events.

    Producers call ``emit`` without awaiting; a consumer iterates the channel
    or drains it after a turn.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[AgentEvent] = asyncio.Queue()

    def emit(self, event: AgentEvent) -> None:
        self._queue.put_nowait(event)

    async def get(self) -> AgentEvent:
        return await self._queue.get()

    def drain(self) -> list[AgentEvent]:
        """Return and remove every queued event."""
        events: list[AgentEvent] = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events

    def empty(self) -> bool:
        return self._queue.empty()

    async def __aiter__(self) -> AsyncIterator[AgentEvent]:
        while True:
            yield await self._queue.get()
