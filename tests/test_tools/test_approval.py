import re

import pytest

from agentloop.config import ApprovalConfig, ToolUsePatternConfig
from agentloop.messages import ToolUseContent
from agentloop.tools.approval import (
    Matcher,
    ToolUseApprover,
    ToolUsePattern,
    compile_matcher,
    default_allowed_patterns,
    is_safe_tool_arg,
)


def _exec(command: str, args=None) -> ToolUseContent:
    tool_input = {"command": command}
    if args is not None:
        tool_input["args"] = args
    return ToolUseContent("t1", "exec_command", tool_input)


def test_compile_matcher_handles_nested_structures():
    matcher = compile_matcher({"command": "git", "args": [re.compile(r"^(status|log)$"), {"$regex": "^-"}]})

    assert matcher.matches({"command": "git", "args": ["log", "-p"], "extra": True})
    assert not matcher.matches({"command": "git", "args": ["push", "-f"]})
    assert not matcher.matches({"command": "git", "args": ["log", "main"]})
    assert not matcher.matches({"command": "git", "args": "log"})


def test_literal_matcher_does_not_confuse_bool_and_int():
    assert compile_matcher(1).matches(1)
    assert not compile_matcher(1).matches(True)


def test_matcher_base_requires_matches():
    class Incomplete(Matcher):
        pass

    with pytest.raises(TypeError):
        Incomplete()
    assert all(isinstance(compile_matcher(raw), Matcher) for raw in ["a", 1, [1], {"a": 1}, len])


def test_deny_patterns_win_over_allow_patterns():
    approver = ToolUseApprover(
        allowed_patterns=[ToolUsePattern.create("exec_command")],
        denied_patterns=[ToolUsePattern.create("exec_command", {"command": "rm"}, reason="No deleting.")],
    )

    decision = approver.is_allowed_tool_use(_exec("rm", ["-rf", "build"]))

    assert decision.action == "deny"
    assert decision.reason == "No deleting."
    assert approver.approval_count == 0


def test_unmatched_tool_use_asks_without_spending_budget():
    approver = ToolUseApprover(allowed_patterns=[ToolUsePattern.create("exec_command", {"command": "ls"})])

    assert approver.is_allowed_tool_use(_exec("make")).action == "ask"
    assert approver.approval_count == 0


def test_budget_exhaustion_falls_back_and_resets_counter():
    approver = ToolUseApprover(
        allowed_patterns=[ToolUsePattern.create("exec_command", {"command": "ls"})],
        max_auto_approvals=2,
    )

    decisions = [approver.is_allowed_tool_use(_exec("ls")) for _ in range(3)]

    assert [d.action for d in decisions] == ["allow", "allow", "ask"]
    assert decisions[2].reason == "Automatic approval limit of 2 reached for this turn."
    assert approver.approval_count == 0
    assert approver.is_allowed_tool_use(_exec("ls")).action == "allow"


def test_budget_exhaustion_can_deny():
    approver = ToolUseApprover(
        allowed_patterns=[ToolUsePattern.create("exec_command")],
        max_auto_approvals=0,
        on_budget_exhausted="deny",
    )

    assert approver.is_allowed_tool_use(_exec("ls")).action == "deny"


def test_remembered_approval_pins_only_given_fields_exactly():
    approver = ToolUseApprover()
    approver.allow_tool_use(ToolUseContent("t0", "write_file", {"file_path": "notes.md"}))

    same_file = ToolUseContent("t1", "write_file", {"file_path": "notes.md", "content": "anything"})
    other_file = ToolUseContent("t2", "write_file", {"file_path": "notes.md.bak", "content": "x"})

    assert approver.is_allowed_tool_use(same_file).action == "allow"
    assert approver.is_allowed_tool_use(other_file).action == "ask"


def test_remembered_args_must_match_whole_list():
    approver = ToolUseApprover()
    approver.allow_tool_use(_exec("make", ["test"]))

    assert approver.is_allowed_tool_use(_exec("make", ["test"])).action == "allow"
    assert approver.is_allowed_tool_use(_exec("make", ["test", "install"])).action == "ask"
    assert approver.is_allowed_tool_use(_exec("make")).action == "ask"


def test_reset_approval_count():
    approver = ToolUseApprover(allowed_patterns=[ToolUsePattern.create("exec_command")])
    approver.is_allowed_tool_use(_exec("ls"))

    approver.reset_approval_count()

    assert approver.approval_count == 0


def test_from_config_reads_yaml_style_patterns():
    config = ApprovalConfig(
        use_default_patterns=False,
        max_auto_approvals=5,
        allow=[ToolUsePatternConfig(tool_name="exec_command", input={"command": {"$regex": "^(make|just)$"}})],
        deny=[ToolUsePatternConfig(tool_name="write_file", input={"file_path": {"$regex": r"\.env$"}}, reason="secrets")],
    )

    approver = ToolUseApprover.from_config(config, session_id="s1")

    assert approver.max_auto_approvals == 5
    assert approver.is_allowed_tool_use(_exec("just", ["build"])).action == "allow"
    denied = approver.is_allowed_tool_use(ToolUseContent("t", "write_file", {"file_path": "app/.env", "content": ""}))
    assert (denied.action, denied.reason) == ("deny", "secrets")


def test_default_patterns_allow_bare_read_only_commands():
    approver = ToolUseApprover(allowed_patterns=default_allowed_patterns("s1"))

    assert approver.is_allowed_tool_use(_exec("pwd")).action == "allow"
    assert approver.is_allowed_tool_use(_exec("date", [])).action == "allow"
    assert approver.is_allowed_tool_use(_exec("uname", ["-a"])).action == "ask"
    assert approver.is_allowed_tool_use(_exec("git", ["status"])).action == "allow"
    assert approver.is_allowed_tool_use(_exec("git", ["push"])).action == "ask"
    assert approver.is_allowed_tool_use(_exec("tmux", ["new-session", "-d", "-s", "agent-s1"])).action == "ask"


def test_default_patterns_allow_tmux_inspection_and_own_session():
    approver = ToolUseApprover(allowed_patterns=default_allowed_patterns("s1"))

    def tmux(command, args=None):
        tool_input = {"command": command} if args is None else {"command": command, "args": args}
        return approver.is_allowed_tool_use(ToolUseContent("t1", "tmux_command", tool_input)).action

    assert tmux("list-sessions") == "allow"
    assert tmux("capture-pane", ["-p", "-t", "agent-s1"]) == "allow"
    assert tmux("new-session", ["-d", "-s", "agent-s1"]) == "allow"
    assert tmux("new", ["-d", "-s", "agent-s1"]) == "allow"
    assert tmux("new-session", ["-d", "-s", "agent-s2"]) == "ask"
    assert tmux("send-keys", ["-t", "agent-s1", "npm start", "Enter"]) == "ask"
    assert tmux("kill-server") == "ask"


@pytest.mark.parametrize(
    "arg,expected",
    [
        (".agent", True),
        (".agent/memory/notes.md", True),
        (".claude/commands/review.md", True),
        ("../outside.txt", False),
        ("/etc/passwd", False),
        (42, False),
    ],
)
def test_is_safe_tool_arg_without_git_lookup(arg, expected, tmp_path):
    assert is_safe_tool_arg(arg, cwd=tmp_path) is expected
