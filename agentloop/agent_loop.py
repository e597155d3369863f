"""Turn loop: model dispatch, tool validation, approval and execution."""

import re
from enum import Enum
from typing import Iterable, Protocol, Sequence

from agentloop.events import (
    AgentEventChannel,
    ErrorEvent,
    MessageEvent,
    PartialContentEvent,
    TokenUsageEvent,
    ToolUseRequestEvent,
    TurnEndEvent,
)
from agentloop.exceptions import LLMError
from agentloop.interrupt import FileInterruptSource
from agentloop.llm.base import PartialCallback
from agentloop.logging import get_logger
from agentloop.messages import (
    ImageContent,
    Message,
    ModelOutput,
    PartialMessageContent,
    TextContent,
    ThinkingContent,
    ToolDefinition,
    ToolResultContent,
    ToolUseContent,
    text_result,
)
from agentloop.subagent import DELEGATE_TOOL_NAME, REPORT_TOOL_NAME, SubagentManager
from agentloop.tools.approval import ToolUseApprover
from agentloop.tools.registry import ToolRegistry
from agentloop.tools.validation import REJECTED, validate_tool_use

log = get_logger(__name__)

APPROVE_RE = re.compile(r"^(yes|y|ｙ)$", re.IGNORECASE)
REMEMBER_RE = re.compile(r"^(YES|Y)$")
RESUME_COMMAND = "/resume"
CONTINUE_NUDGE = "System: Continue"
REJECTED_BY_DENIAL = "Tool call rejected due to other denied tool calls"
EXCLUSIVE_TOOL_NAMES = (DELEGATE_TOOL_NAME, REPORT_TOOL_NAME)

UserInput = Sequence[TextContent | ImageContent]


class TurnState(str, Enum):
    AWAITING_INPUT = "awaiting_input"
    DISPATCHING = "dispatching"
    TOOL_APPROVAL_PENDING = "tool_approval_pending"
    EXECUTING = "executing"
    THINKING_CONTINUE = "thinking_continue"
    DONE = "done"


class ModelClient(Protocol):
    async def complete(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        on_partial: PartialCallback | None = None,
    ) -> ModelOutput: ...


class AgentLoop:
    """Runs user turns against one shared message history.

    Entry is serialized: call ``handle_user_input`` again only after the
    previous call returned.
    """

    def __init__(
        self,
        model: ModelClient,
        history: list[Message],
        registry: ToolRegistry,
        approver: ToolUseApprover,
        subagents: SubagentManager,
        events: AgentEventChannel,
        interrupts: FileInterruptSource | None = None,
        exclusive_tool_names: Iterable[str] = EXCLUSIVE_TOOL_NAMES,
        max_thinking_continues: int = 5,
    ):
        self.model = model
        self.history = history
        self.registry = registry
        self.approver = approver
        self.subagents = subagents
        self.events = events
        self.interrupts = interrupts
        self.exclusive_tool_names = tuple(exclusive_tool_names)
        self.max_thinking_continues = max_thinking_continues
        self.state = TurnState.AWAITING_INPUT

    @property
    def pending_tool_uses(self) -> list[ToolUseContent]:
        """Tool calls of the last message when it is still waiting for results."""
        if not self.history or self.history[-1].role != "assistant":
            return []
        return self.history[-1].tool_uses

    def _append(self, message: Message, emit: bool = True) -> None:
        self.history.append(message)
        if emit:
            self.events.emit(MessageEvent(message))

    def _on_partial(self, partial: PartialMessageContent) -> None:
        self.events.emit(PartialContentEvent(partial))

    async def handle_user_input(self, user_input: UserInput | str) -> None:
        """Apply one user input and run the turn until it ends or needs approval."""
        parts: list[TextContent | ImageContent] = (
            [TextContent(user_input)] if isinstance(user_input, str) else list(user_input)
        )
        self.approver.reset_approval_count()

        text = parts[0].text if len(parts) == 1 and isinstance(parts[0], TextContent) else None
        pending = self.pending_tool_uses
        if pending:
            if text is not None and APPROVE_RE.match(text):
                if REMEMBER_RE.match(text):
                    for tool_use in pending:
                        self.approver.allow_tool_use(self.registry.mask_approval_input(tool_use))
                await self._execute_batch(pending)
            else:
                log.info("Tool calls rejected by user", count=len(pending))
                self._append(
                    Message("user", [text_result(tool_use, REJECTED, is_error=True) for tool_use in pending]),
                    emit=False,
                )
                self._append(Message("user", list(parts)), emit=False)
        elif text is not None and text.lower() == RESUME_COMMAND:
            log.info("Resuming turn")
        else:
            self._append(Message("user", list(parts)), emit=False)

        try:
            await self._run_turn_loop()
        finally:
            if self.state is not TurnState.TOOL_APPROVAL_PENDING:
                self.state = TurnState.AWAITING_INPUT
            self.events.emit(TurnEndEvent())

    async def _execute_batch(self, tool_uses: list[ToolUseContent]) -> None:
        self.state = TurnState.EXECUTING
        results: list[ToolResultContent] = []
        for tool_use in tool_uses:
            results.append(await self.registry.call_tool(tool_use))

        report_message = self.subagents.process_tool_results(tool_uses, results, self.history)
        self._append(report_message or Message("user", list(results)))

        if self.interrupts is not None:
            interrupt = self.interrupts.consume()
            if interrupt:
                self._append(Message.user_text(interrupt))

    async def _run_turn_loop(self) -> None:
        thinking_continues = 0
        tool_definitions = self.registry.get_definitions()

        while True:
            self.state = TurnState.DISPATCHING
            try:
                output = await self.model.complete(self.history, tool_definitions, self._on_partial)
            except LLMError as e:
                log.error("Model call failed", error=str(e))
                self.events.emit(ErrorEvent(e))
                self.state = TurnState.DONE
                return

            assistant = output.message
            self._append(assistant)
            self.events.emit(TokenUsageEvent(output.usage))

            if assistant.content and isinstance(assistant.content[-1], ThinkingContent):
                thinking_continues += 1
                if thinking_continues > self.max_thinking_continues:
                    log.warning("Model kept stopping while thinking", limit=self.max_thinking_continues)
                    self.state = TurnState.DONE
                    return
                self.state = TurnState.THINKING_CONTINUE
                self._append(Message.user_text(CONTINUE_NUDGE), emit=False)
                log.warning(
                    "Model is thinking, sending continue",
                    loop=thinking_continues,
                    limit=self.max_thinking_continues,
                )
                continue

            tool_uses = assistant.tool_uses
            if not tool_uses:
                self.state = TurnState.DONE
                return

            validation = validate_tool_use(tool_uses, self.registry, self.exclusive_tool_names)
            if not validation.is_valid:
                self._append(Message("user", list(validation.tool_results)), emit=False)
                self._append(Message.user_text(validation.error_message), emit=False)
                log.warning("Tool use validation failed", message=validation.error_message)
                continue

            decisions = [self.approver.is_allowed_tool_use(tool_use) for tool_use in tool_uses]
            if any(decision.action == "deny" for decision in decisions):
                results = [
                    text_result(
                        tool_use,
                        f"{REJECTED}. {decision.reason}".strip() if decision.action == "deny" else REJECTED_BY_DENIAL,
                        is_error=True,
                    )
                    for tool_use, decision in zip(tool_uses, decisions)
                ]
                self._append(Message("user", results))
                continue

            if not all(decision.action == "allow" for decision in decisions):
                self.state = TurnState.TOOL_APPROVAL_PENDING
                self.events.emit(ToolUseRequestEvent(list(tool_uses)))
                return

            await self._execute_batch(tool_uses)
