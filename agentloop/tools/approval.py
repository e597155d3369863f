"""Tool-use approval: structural patterns, session allow-list and approval budget.

A pattern names a tool and describes its input with matchers:

* a string matches an equal string,
* a compiled regex (or ``{"$regex": "..."}`` in YAML) searches a string,
* a callable is a predicate over the value,
* a list matches a list index by index (missing items read as ``None``),
* a dict matches a mapping key by key; keys it does not name are free.
"""

import re
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Literal

from agentloop.config import PROJECT_METADATA_DIR, ApprovalConfig, ToolUsePatternConfig
from agentloop.logging import get_logger
from agentloop.messages import ToolUseContent

log = get_logger(__name__)

ApprovalAction = Literal["allow", "ask", "deny"]
REGEX_KEY = "$regex"


class Matcher(ABC):
    """Base class for input matchers."""

    @abstractmethod
    def matches(self, value: Any) -> bool:
        """Return whether ``value`` satisfies this matcher."""


@dataclass(frozen=True)
class LiteralMatcher(Matcher):
    value: Any

    def matches(self, value: Any) -> bool:
        return type(value) is type(self.value) and value == self.value


@dataclass(frozen=True)
class RegexMatcher(Matcher):
    pattern: re.Pattern[str]

    def matches(self, value: Any) -> bool:
        return isinstance(value, str) and self.pattern.search(value) is not None


@dataclass(frozen=True)
class PredicateMatcher(Matcher):
    predicate: Callable[[Any], bool]

    def matches(self, value: Any) -> bool:
        return bool(self.predicate(value))


@dataclass(frozen=True)
class SequenceMatcher(Matcher):
    items: tuple[Matcher, ...]

    def matches(self, value: Any) -> bool:
        if not isinstance(value, (list, tuple)):
            return False
        return all(
            matcher.matches(value[index] if index < len(value) else None)
            for index, matcher in enumerate(self.items)
        )


@dataclass(frozen=True)
class FieldsMatcher(Matcher):
    fields: tuple[tuple[str, Matcher], ...]

    def matches(self, value: Any) -> bool:
        if not isinstance(value, dict):
            return False
        return all(matcher.matches(value.get(key)) for key, matcher in self.fields)


def compile_matcher(raw: Any) -> Matcher:
    """Build a matcher from a Python or YAML pattern value."""
    if isinstance(raw, Matcher):
        return raw
    if isinstance(raw, str):
        return LiteralMatcher(raw)
    if isinstance(raw, re.Pattern):
        return RegexMatcher(raw)
    if isinstance(raw, dict):
        if set(raw) == {REGEX_KEY}:
            return RegexMatcher(re.compile(raw[REGEX_KEY]))
        return FieldsMatcher(tuple((str(key), compile_matcher(value)) for key, value in raw.items()))
    if isinstance(raw, (list, tuple)):
        return SequenceMatcher(tuple(compile_matcher(item) for item in raw))
    if isinstance(raw, (bool, int, float)):
        return LiteralMatcher(raw)
    if callable(raw):
        return PredicateMatcher(raw)
    raise TypeError(f"Unsupported pattern value: {raw!r}")


@dataclass(frozen=True)
class ToolUsePattern:
    """Tool name plus optional input matcher (``None`` accepts any input)."""

    tool_name: str
    input: Matcher | None = None
    reason: str = ""

    @classmethod
    def create(cls, tool_name: str, input: Any = None, reason: str = "") -> "ToolUsePattern":
        return cls(tool_name, compile_matcher(input) if input is not None else None, reason)

    @classmethod
    def from_config(cls, config: ToolUsePatternConfig) -> "ToolUsePattern":
        return cls.create(config.tool_name, config.input, config.reason)

    def matches(self, tool_use: ToolUseContent) -> bool:
        if tool_use.tool_name != self.tool_name:
            return False
        return self.input is None or self.input.matches(tool_use.input)


@dataclass(frozen=True)
class ApprovalDecision:
    action: ApprovalAction
    reason: str = ""


@dataclass
class ToolUseApprover:
    """Decides allow / ask / deny for each tool call.

    Deny patterns are checked first. Allow patterns (static, then those
    remembered for the session) spend one unit of the approval budget per
    match. Over budget the counter resets and the call falls back to
    ``on_budget_exhausted``.
    """

    allowed_patterns: list[ToolUsePattern] = field(default_factory=list)
    denied_patterns: list[ToolUsePattern] = field(default_factory=list)
    max_auto_approvals: int = 20
    on_budget_exhausted: ApprovalAction = "ask"
    session_patterns: list[ToolUsePattern] = field(default_factory=list)
    approval_count: int = 0

    @classmethod
    def from_config(
        cls,
        config: ApprovalConfig,
        session_id: str,
        metadata_dir: str = PROJECT_METADATA_DIR,
    ) -> "ToolUseApprover":
        allowed = [ToolUsePattern.from_config(item) for item in config.allow]
        if config.use_default_patterns:
            allowed = default_allowed_patterns(session_id, metadata_dir) + allowed
        return cls(
            allowed_patterns=allowed,
            denied_patterns=[ToolUsePattern.from_config(item) for item in config.deny],
            max_auto_approvals=config.max_auto_approvals,
            on_budget_exhausted=config.on_budget_exhausted,
        )

    def _spend_budget(self) -> ApprovalDecision:
        self.approval_count += 1
        if self.approval_count <= self.max_auto_approvals:
            return ApprovalDecision("allow")
        self.approval_count = 0
        log.warning("Automatic approval budget exhausted", limit=self.max_auto_approvals)
        return ApprovalDecision(
            self.on_budget_exhausted,
            f"Automatic approval limit of {self.max_auto_approvals} reached for this turn.",
        )

    def is_allowed_tool_use(self, tool_use: ToolUseContent) -> ApprovalDecision:
        for pattern in self.denied_patterns:
            if pattern.matches(tool_use):
                return ApprovalDecision("deny", pattern.reason)
        for pattern in [*self.allowed_patterns, *self.session_patterns]:
            if pattern.matches(tool_use):
                return self._spend_budget()
        return ApprovalDecision("ask")

    def allow_tool_use(self, tool_use: ToolUseContent) -> None:
        """Remember ``tool_use`` (its exact input) as allowed for the session."""
        self.session_patterns.append(
            ToolUsePattern(tool_use.tool_name, FieldsMatcher(_exact_fields(tool_use.input)))
        )

    def reset_approval_count(self) -> None:
        self.approval_count = 0


def _exact_fields(value: dict[str, Any]) -> tuple[tuple[str, Matcher], ...]:
    return tuple((key, _exact(item)) for key, item in value.items())


def _exact(value: Any) -> Matcher:
    if isinstance(value, dict):
        return FieldsMatcher(_exact_fields(value))
    if isinstance(value, (list, tuple)):
        return PredicateMatcher(lambda other, expected=list(value): isinstance(other, list) and other == expected)
    return PredicateMatcher(lambda other, expected=value: type(other) is type(expected) and other == expected)


def is_safe_tool_arg(arg: Any, cwd: Path | None = None, metadata_dir: str = PROJECT_METADATA_DIR) -> bool:
    """True when ``arg`` names a path inside the working directory that git does not ignore."""
    if not isinstance(arg, str):
        return False

    for allowed_dir in (metadata_dir, str(Path(".claude") / "commands")):
        if arg == allowed_dir or arg.startswith(f"{allowed_dir}/"):
            return True

    working_dir = (cwd or Path.cwd()).resolve()
    abs_path = (working_dir / arg).resolve()
    if abs_path != working_dir and working_dir not in abs_path.parents:
        return False

    try:
        completed = subprocess.run(
            ["git", "check-ignore", "--no-index", "-q", str(abs_path)],
            cwd=working_dir,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=False,
        )
    except OSError as e:
        log.warning("git check-ignore failed", arg=arg, error=str(e))
        return False
    # 0: ignored, 1: not ignored, anything else: git error
    return completed.returncode == 1


def _all_safe(metadata_dir: str, extra_check: Callable[[str], bool] | None = None) -> Callable[[Any], bool]:
    def check(args: Any) -> bool:
        return isinstance(args, list) and all(
            is_safe_tool_arg(arg, metadata_dir=metadata_dir) and (extra_check is None or extra_check(arg)) for arg in args
        )

    return check


def default_allowed_patterns(session_id: str, metadata_dir: str = PROJECT_METADATA_DIR) -> list[ToolUsePattern]:
    """Read-only commands that run without asking."""

    def safe_arg(arg: Any) -> bool:
        return is_safe_tool_arg(arg, metadata_dir=metadata_dir)

    patterns: Iterable[tuple[str, Any]] = [
        ("exec_command", {"command": re.compile(r"^(pwd|ls|date|uname)$"), "args": lambda args: not args}),
        ("exec_command", {"command": re.compile(r"^(ls|wc|cat|head|tail)$"), "args": _all_safe(metadata_dir)}),
        (
            "exec_command",
            {
                "command": "fd",
                "args": _all_safe(
                    metadata_dir,
                    lambda arg: arg not in ("-I", "-x")
                    and not arg.startswith("--no-ignore")
                    and not arg.startswith("--exec")
                ),
            },
        ),
        ("exec_command", {"command": "rg", "args": _all_safe(metadata_dir, lambda arg: not arg.startswith("--no-ignore"))}),
        ("exec_command", {"command": "sed", "args": ["-n", re.compile(r"^\d+(,\d+)?p$"), safe_arg]}),
        ("exec_command", {"command": "git", "args": [re.compile(r"^(status|diff|log|show)$")]}),
        ("exec_command", {"command": "git", "args": ["branch", "--show-current"]}),
        ("exec_command", {"command": "docker", "args": [re.compile(r"^(ps)$")]}),
        ("exec_command", {"command": "docker", "args": ["compose", re.compile(r"^(ps|logs)$")]}),
        ("exec_command", {"command": "gh", "args": ["pr", re.compile(r"^(view|diff)$")]}),
        ("tmux_command", {"command": re.compile(r"^(list-sessions|list-windows|capture-pane)$")}),
        (
            "tmux_command",
            {"command": re.compile(r"^(new-session|new)$"), "args": ["-d", "-s", f"agent-{session_id}"]},
        ),
    ]
    return [ToolUsePattern.create(tool_name, input) for tool_name, input in patterns]
