"""Tools package for agentloop."""

from agentloop.tools.approval import ApprovalDecision, ToolUseApprover, ToolUsePattern
from agentloop.tools.exec_command import ExecCommandTool
from agentloop.tools.patch_file import PatchFileTool
from agentloop.tools.read_web_page import ReadWebPageTool
from agentloop.tools.registry import Tool, ToolRegistry, ToolResult
from agentloop.tools.subagent import DelegateToSubagentTool, ReportAsSubagentTool
from agentloop.tools.tmux_command import TmuxCommandTool
from agentloop.tools.validation import ToolValidationResult, validate_tool_use
from agentloop.tools.write_file import WriteFileTool

__all__ = [
    "ApprovalDecision",
    "DelegateToSubagentTool",
    "ExecCommandTool",
    "PatchFileTool",
    "ReadWebPageTool",
    "ReportAsSubagentTool",
    "TmuxCommandTool",
    "Tool",
    "ToolRegistry",
    "ToolResult",
    "ToolUseApprover",
    "ToolUsePattern",
    "ToolValidationResult",
    "WriteFileTool",
    "validate_tool_use",
]
