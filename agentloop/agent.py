"""Agent assembly: history, tools, approval, subagents and the turn loop."""

import json
from datetime import datetime
from pathlib import Path

from agentloop.agent_loop import AgentLoop, ModelClient, UserInput
from agentloop.config import Config, get_config
from agentloop.events import AgentEventChannel
from agentloop.exceptions import AgentError
from agentloop.interrupt import FileInterruptSource
from agentloop.llm.registry import ModelRegistry
from agentloop.logging import get_logger
from agentloop.messages import Message, message_from_dict, message_to_dict
from agentloop.subagent import AgentRole, SubagentManager, load_agent_roles
from agentloop.tools.approval import ToolUseApprover
from agentloop.tools.exec_command import ExecCommandTool
from agentloop.tools.patch_file import PatchFileTool
from agentloop.tools.read_web_page import ReadWebPageTool
from agentloop.tools.registry import Tool, ToolRegistry
from agentloop.tools.subagent import DelegateToSubagentTool, ReportAsSubagentTool
from agentloop.tools.tmux_command import TmuxCommandTool
from agentloop.tools.write_file import WriteFileTool

log = get_logger(__name__)


def create_session_id(now: datetime | None = None) -> str:
    """Session id such as ``2025-12-31-2359``."""
    return (now or datetime.now()).strftime("%Y-%m-%d-%H%M")


def create_system_prompt(config: Config, session_id: str, working_dir: Path) -> str:
    metadata_dir = config.agent.metadata_dir
    return "\n".join([
        config.agent.system_prompt.strip(),
        "",
        "# Environment",
        "",
        f"- Session id: {session_id}",
        f"- Current working directory: {working_dir}",
        "- Use paths relative to the working directory.",
        f"- Memory files: {metadata_dir}/memory/<session-id>--<kebab-case-title>.md",
        f"- Scratch files: {metadata_dir}/tmp/",
        f"- Daemons and interactive programs: run them with tmux_command in the session named agent-{session_id}",
    ])


def build_tool_registry(
    config: Config,
    subagents: SubagentManager,
    history: list[Message],
) -> ToolRegistry:
    """Register the tools listed in ``tools.enabled``."""
    factories = {
        "exec_command": lambda: ExecCommandTool(config.tools.exec_command, config.agent.metadata_dir),
        "write_file": lambda: WriteFileTool(),
        "patch_file": lambda: PatchFileTool(),
        "tmux_command": lambda: TmuxCommandTool(config.tools.tmux_command),
        "read_web_page": lambda: ReadWebPageTool(config.tools.read_web_page, metadata_dir=config.agent.metadata_dir),
        "delegate_to_subagent": lambda: DelegateToSubagentTool(subagents, history),
        "report_as_subagent": lambda: ReportAsSubagentTool(subagents),
    }
    registry = ToolRegistry()
    for name in config.tools.enabled:
        factory = factories.get(name)
        if factory is None:
            log.warning("Unknown tool in config", tool=name)
            continue
        tool: Tool = factory()
        registry.register(tool)
    return registry


class Agent:
    """One interactive session.

    ``history`` is a single list shared by the turn loop, the subagent
    manager and the delegate tool; it is only ever mutated in place.
    """

    def __init__(
        self,
        config: Config | None = None,
        model: ModelClient | None = None,
        session_id: str | None = None,
        roles: dict[str, AgentRole] | None = None,
        working_dir: Path | None = None,
    ):
        self.config = config or get_config()
        self.session_id = session_id or create_session_id()
        self.working_dir = (working_dir or Path.cwd()).resolve()
        metadata_dir = self.config.agent.metadata_dir

        self.events = AgentEventChannel()
        self.history: list[Message] = [
            Message.system(create_system_prompt(self.config, self.session_id, self.working_dir))
        ]
        if roles is None:
            roles = load_agent_roles(self.config.agent.role_dirs)
        self.subagents = SubagentManager(self.events, roles, metadata_dir)
        self.registry = build_tool_registry(self.config, self.subagents, self.history)
        self.approver = ToolUseApprover.from_config(self.config.approval, self.session_id, metadata_dir)
        self.model = model or ModelRegistry.from_config(self.config).create_provider(
            self.config.model.name, self.config
        )
        self.loop = AgentLoop(
            model=self.model,
            history=self.history,
            registry=self.registry,
            approver=self.approver,
            subagents=self.subagents,
            events=self.events,
            interrupts=FileInterruptSource(
                self.config.resolve_project_path(self.config.agent.interrupt_file, self.working_dir)
            ),
            max_thinking_continues=self.config.agent.max_thinking_continues,
        )
        log.info(
            "Agent initialized",
            session_id=self.session_id,
            model=self.config.model.name,
            tools=self.registry.list_tools(),
            roles=len(roles),
        )

    async def handle_user_input(self, user_input: UserInput | str) -> None:
        await self.loop.handle_user_input(user_input)

    def _dump_path(self, path: Path | str | None) -> Path:
        raw = str(path) if path is not None else self.config.agent.messages_dump_file
        return self.config.resolve_project_path(raw, self.working_dir)

    def dump_messages(self, path: Path | str | None = None) -> Path:
        """Write the full history as JSON."""
        target = self._dump_path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w", encoding="utf-8") as f:
            json.dump([message_to_dict(message) for message in self.history], f, indent=2, ensure_ascii=False)
        log.info("Messages dumped", path=str(target), count=len(self.history))
        return target

    def load_messages(self, path: Path | str | None = None) -> int:
        """Replace everything after the system message with a dump's content.

        Returns the number of messages loaded (excluding the system message).
        """
        source = self._dump_path(path)
        try:
            with open(source, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise AgentError(f"Error loading messages: {e}")
        if not isinstance(data, list):
            raise AgentError("Error loading messages: Invalid format in file.")

        try:
            loaded = [message_from_dict(item) for item in data[1:]]
        except (KeyError, TypeError, ValueError) as e:
            raise AgentError(f"Error loading messages: {e}")

        del self.history[1:]
        self.history.extend(loaded)
        log.info("Messages loaded", path=str(source), count=len(loaded))
        return len(loaded)

    async def close(self) -> None:
        close = getattr(self.model, "close", None)
        if close is not None:
            await close()
        if self.registry.has_tool("read_web_page"):
            tool = self.registry.get("read_web_page")
            if isinstance(tool, ReadWebPageTool):
                await tool.close()
