"""Subagent delegation: role registry, delegation stack and history truncation."""

import hashlib
import re
from dataclasses import dataclass
from pathlib import Path

import httpx
import yaml

from agentloop.config import PROJECT_METADATA_DIR
from agentloop.events import AgentEventChannel, SubagentStatus, SubagentStatusEvent
from agentloop.exceptions import SubagentError
from agentloop.logging import get_logger
from agentloop.messages import Message, ToolResultContent, ToolUseContent

log = get_logger(__name__)

DELEGATE_TOOL_NAME = "delegate_to_subagent"
REPORT_TOOL_NAME = "report_as_subagent"
CUSTOM_ROLE_PREFIX = "custom:"
ROLE_CACHE_DIR = Path("~/.agentloop/cache/agents").expanduser()

_FRONT_MATTER_RE = re.compile(r"^---\r?\n(.*?)\r?\n---\r?\n?(.*)$", re.DOTALL)


@dataclass
class AgentRole:
    """Named role prompt loaded from a markdown file."""

    id: str
    description: str
    content: str
    file_path: str
    import_url: str | None = None


@dataclass
class SubagentState:
    name: str
    goal: str
    delegate_result_message_index: int


@dataclass
class SubagentManagerState:
    current: SubagentState | None
    count: int
    is_active: bool


def parse_agent_role(relative_path: str, text: str, file_path: str) -> AgentRole:
    """Build a role from a file body with optional YAML front matter."""
    role_id = relative_path[:-3] if relative_path.endswith(".md") else relative_path
    match = _FRONT_MATTER_RE.match(text)
    if not match:
        return AgentRole(id=role_id, description="", content=text.strip(), file_path=file_path)

    try:
        meta = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as e:
        log.warning("Invalid agent role front matter", path=file_path, error=str(e))
        meta = {}
    if not isinstance(meta, dict):
        meta = {}
    return AgentRole(
        id=role_id,
        description=str(meta.get("description") or ""),
        content=match.group(2).strip(),
        file_path=file_path,
        import_url=str(meta["import"]) if meta.get("import") else None,
    )


def _fetch_remote_role(url: str, cache_dir: Path) -> str:
    cache_path = cache_dir / hashlib.sha256(url.encode("utf-8")).hexdigest()
    if cache_path.is_file():
        return cache_path.read_text(encoding="utf-8")

    response = httpx.get(url, follow_redirects=True, timeout=30.0)
    response.raise_for_status()
    text = response.text
    try:
        cache_dir.mkdir(parents=True, exist_ok=True)
        cache_path.write_text(text, encoding="utf-8")
    except OSError as e:
        log.warning("Failed to cache agent role", url=url, error=str(e))
    return text


def _merge_remote_role(role: AgentRole, url: str, relative_path: str, cache_dir: Path) -> AgentRole:
    try:
        remote_text = _fetch_remote_role(url, cache_dir)
    except (httpx.HTTPError, OSError) as e:
        log.warning("Failed to fetch agent role", url=url, error=str(e))
        return role

    remote = parse_agent_role(relative_path, remote_text, role.file_path)
    return AgentRole(
        id=role.id,
        description=role.description or remote.description,
        content=f"{remote.content}\n\n---\n\n{role.content}".strip(),
        file_path=role.file_path,
        import_url=url,
    )


def load_agent_roles(
    role_dirs: list[str | Path],
    cache_dir: Path = ROLE_CACHE_DIR,
) -> dict[str, AgentRole]:
    """Load ``*.md`` roles recursively; later directories override earlier ones."""
    roles: dict[str, AgentRole] = {}
    for raw_dir in role_dirs:
        base = Path(raw_dir).expanduser()
        if not base.is_dir():
            continue
        for path in sorted(base.rglob("*.md")):
            if not path.is_file():
                continue
            relative = path.relative_to(base).as_posix()
            try:
                text = path.read_text(encoding="utf-8")
            except OSError as e:
                log.warning("Failed to read agent role", path=str(path), error=str(e))
                continue
            role = parse_agent_role(relative, text, str(path))
            if role.import_url:
                role = _merge_remote_role(role, role.import_url, relative, cache_dir)
            roles[role.id] = role
    log.debug("Loaded agent roles", count=len(roles))
    return roles


class SubagentManager:
    """Tracks the delegation stack and rewrites history when a subagent reports.

    A delegation records the history length at the time the delegate call
    was made. When the subagent reports successfully, every message from the
    delegate call onwards is discarded and replaced by one summary message.
    """

    def __init__(
        self,
        events: AgentEventChannel,
        roles: dict[str, AgentRole] | None = None,
        metadata_dir: str = PROJECT_METADATA_DIR,
    ):
        self.events = events
        self.roles = dict(roles or {})
        self.metadata_dir = metadata_dir
        self._stack: list[SubagentState] = []

    def get_state(self) -> SubagentManagerState:
        return SubagentManagerState(
            current=self._stack[-1] if self._stack else None,
            count=len(self._stack),
            is_active=bool(self._stack),
        )

    def _emit_status(self) -> None:
        current = self._stack[-1] if self._stack else None
        status = SubagentStatus(name=current.name, goal=current.goal) if current else None
        self.events.emit(SubagentStatusEvent(status))

    def delegate_to_subagent(self, name: str, goal: str, history: list[Message]) -> str:
        """Enter subagent mode and return the instructions for the model.

        Raises:
            SubagentError: already delegated, or unknown role.
        """
        if self._stack:
            raise SubagentError("Cannot call delegate_to_subagent while already acting as a subagent.")

        is_custom = name.startswith(CUSTOM_ROLE_PREFIX)
        actual_name = name[len(CUSTOM_ROLE_PREFIX):] if is_custom else name

        role_content = ""
        if not is_custom:
            role = self.roles.get(name)
            if role is None:
                available = "\n".join(f"  - {role_id}" for role_id in sorted(self.roles))
                raise SubagentError(
                    f'Agent role "{name}" not found. Available agent roles:\n{available}\n\n'
                    f'To use an ad-hoc role, prefix the name with "{CUSTOM_ROLE_PREFIX}" '
                    f'(e.g., "{CUSTOM_ROLE_PREFIX}researcher").'
                )
            role_content = role.content

        self._stack.append(SubagentState(actual_name, goal, len(history)))
        log.info("Delegated to subagent", name=actual_name)
        self._emit_status()

        role_section = f"\n\nRole: {name}\n---\n{role_content}\n---" if role_content else ""
        return (
            f'✓ Delegation successful. You are now the subagent "{actual_name}".\n\n'
            f"Your goal: {goal}{role_section}\n\n"
            f"Memory file path format: {self.metadata_dir}/memory/<session-id>--{actual_name}--<kebab-case-title>.md "
            "(Replace <kebab-case-title> to match the parent task)\n\n"
            f'Start working on this goal now. When finished, call "{REPORT_TOOL_NAME}" with the memory file path.'
        )

    def report_as_subagent(self, memory_path: str) -> str:
        """Return the memory file content for the active subagent.

        Raises:
            SubagentError: not delegated, path outside the memory dir, or unreadable.
        """
        if not self._stack:
            raise SubagentError("Cannot call report_as_subagent from the main agent.")

        memory_dir = Path(self.metadata_dir, "memory").resolve()
        absolute = Path(memory_path).resolve()
        if absolute != memory_dir and memory_dir not in absolute.parents:
            raise SubagentError(f"Access denied: memoryPath must be within {self.metadata_dir}/memory")

        try:
            return absolute.read_text(encoding="utf-8")
        except OSError as e:
            raise SubagentError(f"Failed to read memory file: {e}")

    def process_tool_results(
        self,
        tool_uses: list[ToolUseContent],
        tool_results: list[ToolResultContent],
        history: list[Message],
    ) -> Message | None:
        """Fold a successful report into one user message.

        Truncates ``history`` in place and returns the message to append, or
        returns ``None`` when the batch holds no successful report.
        """
        report = next((tool_use for tool_use in tool_uses if tool_use.tool_name == REPORT_TOOL_NAME), None)
        if report is None:
            return None
        result = next((item for item in tool_results if item.tool_use_id == report.tool_use_id), None)
        if result is None or result.is_error or not self._stack:
            return None

        state = self._stack.pop()
        del history[max(state.delegate_result_message_index - 1, 0):]
        log.info("Subagent reported", name=state.name, history_len=len(history))
        self._emit_status()

        memory_path = report.input.get("memory_path")
        memory_text = f"\n\nMemory file: {memory_path}" if memory_path else ""
        return Message.user_text(
            f'The subagent "{state.name}" has completed the task.\n\n'
            f"Original goal: {state.goal}{memory_text}\n\n"
            f"Result:\n{result.text}"
        )
