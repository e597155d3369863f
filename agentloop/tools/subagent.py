"""Tools that enter and leave subagent mode."""

from typing import Any

from agentloop.exceptions import SubagentError
from agentloop.messages import Message
from agentloop.subagent import DELEGATE_TOOL_NAME, REPORT_TOOL_NAME, SubagentManager
from agentloop.tools.registry import Tool, ToolResult


class DelegateToSubagentTool(Tool):
    """Switch the agent into a subagent working on a narrower goal."""

    name = DELEGATE_TOOL_NAME
    description = "Delegate a subtask to a subagent. You inherit the current context and work on the delegated goal."
    parameters = {
        "type": "object",
        "properties": {
            "name": {
                "type": "string",
                "description": "Role or name of the subagent. Use 'custom:' prefix for ad-hoc roles.",
            },
            "goal": {
                "type": "string",
                "description": "The goal or task for the subagent to achieve.",
            },
        },
        "required": ["name", "goal"],
    }

    def __init__(self, manager: SubagentManager, history: list[Message]):
        self.manager = manager
        # Shared with the turn loop; read at call time for the delegation index.
        self.history = history

    def mask_approval_input(self, arguments: dict[str, Any]) -> dict[str, Any]:
        return {"name": arguments.get("name")}

    async def execute(self, name: str, goal: str, **kwargs: Any) -> ToolResult:
        try:
            return ToolResult(success=True, content=self.manager.delegate_to_subagent(name, goal, self.history))
        except SubagentError as e:
            return ToolResult(success=False, error=str(e))


class ReportAsSubagentTool(Tool):
    name = REPORT_TOOL_NAME
    description = "End the subagent role and report the result to the main agent."
    parameters = {
        "type": "object",
        "properties": {
            "memory_path": {
                "type": "string",
                "description": "Path to the memory file containing the result of the subagent's task.",
            },
        },
        "required": ["memory_path"],
    }

    def __init__(self, manager: SubagentManager):
        self.manager = manager

    async def execute(self, memory_path: str, **kwargs: Any) -> ToolResult:
        try:
            return ToolResult(success=True, content=self.manager.report_as_subagent(memory_path))
        except SubagentError as e:
            return ToolResult(success=False, error=str(e))
