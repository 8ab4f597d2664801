from __future__ import annotations

import pytest

from indokq.engine.tools.approval import (
    UNKNOWN_SAFETY,
    ApprovalEngine,
    ApprovalLevel,
    ApprovalRules,
    classify_command,
    decide,
    split_chain,
)


def _command(level: ApprovalLevel, command: str):
    return decide(level, "execute_command", {"command": command})


def test_high_never_requires_approval() -> None:
    for tool in ("read_file", "write_file", "execute_command", "mcp_docs_search", "mystery"):
        assert not decide(ApprovalLevel.HIGH, tool, {"command": "rm -rf /"}).requires_approval


def test_off_requires_approval_for_everything() -> None:
    decision = decide(ApprovalLevel.OFF, "read_file", {"path": "a"})
    assert decision.requires_approval
    assert decision.reason == "Approval level set to OFF (all tools require approval)"


def test_low_allows_reads_only() -> None:
    assert not decide(ApprovalLevel.LOW, "grep_codebase", {"pattern": "x"}).requires_approval
    decision = decide(ApprovalLevel.LOW, "write_file", {"path": "a", "content": ""})
    assert decision.requires_approval
    assert decision.reason == "Tool modifies state"
    assert _command(ApprovalLevel.LOW, "git status").requires_approval


def test_medium_auto_approves_file_edits() -> None:
    assert not decide(ApprovalLevel.MEDIUM, "edit_file", {"path": "a", "content": "b"}).requires_approval


def test_medium_safe_command_is_auto_approved() -> None:
    assert not _command(ApprovalLevel.MEDIUM, "git status").requires_approval
    assert not _command(ApprovalLevel.MEDIUM, "npm run test").requires_approval
    assert not _command(ApprovalLevel.MEDIUM, "python --version").requires_approval


@pytest.mark.parametrize(
    ("command", "label"),
    [
        ("rm -rf /tmp/x", "rm -rf"),
        ("git push --force", "git push"),
        ("sudo apt-get update", "sudo"),
        ("pip install requests", "pip install"),
        ("echo hi > /dev/sda", "redirect to device"),
    ],
)
def test_medium_dangerous_command_requires_approval(command: str, label: str) -> None:
    decision = _command(ApprovalLevel.MEDIUM, command)
    assert decision.requires_approval
    assert decision.reason == f"Dangerous command detected: {label}"


def test_medium_unknown_command_has_unknown_safety() -> None:
    decision = _command(ApprovalLevel.MEDIUM, "foo-cli run")
    assert decision.requires_approval
    assert decision.reason == UNKNOWN_SAFETY


def test_dangerous_wins_over_safe() -> None:
    # "git status" is safe on its own; the chained push is not
    decision = _command(ApprovalLevel.MEDIUM, "git status && git push")
    assert decision.reason == "Dangerous command detected: git push"


def test_chained_command_is_safe_only_when_every_segment_is() -> None:
    rules = ApprovalRules.default()
    assert not classify_command("git status && git diff | head", rules).requires_approval
    assert classify_command("ls; ./deploy.sh", rules).reason == UNKNOWN_SAFETY


@pytest.mark.parametrize("command", [
    "npm test 2>&1",
    "git status 2>&1",
    "ls -la &>/tmp/out",
    'echo "a;b"',
    "echo 'x && y' | grep x",
])
def test_redirections_and_quoted_separators_stay_in_one_command(command: str) -> None:
    assert not _command(ApprovalLevel.MEDIUM, command).requires_approval


def test_split_chain() -> None:
    assert split_chain("npm test 2>&1 | tail -5") == ["npm test 2>&1", "tail -5"]
    assert split_chain('echo "a;b" ; ls') == ['echo "a;b"', "ls"]
    assert split_chain("make >&2 && ls") == ["make >&2", "ls"]
    assert split_chain("sleep 5 & ./deploy.sh") == ["sleep 5", "./deploy.sh"]
    assert split_chain("a || b |& c\nd") == ["a", "b", "c", "d"]
    assert split_chain(r"echo a\;b") == [r"echo a\;b"]


def test_command_substitution_is_unknown_safety() -> None:
    rules = ApprovalRules.default()
    assert classify_command("echo $(cat secrets)", rules).reason == UNKNOWN_SAFETY
    assert classify_command("echo `whoami`", rules).reason == UNKNOWN_SAFETY


def test_medium_provider_tool_requires_approval() -> None:
    decision = decide(ApprovalLevel.MEDIUM, "mcp_docs_search", {"q": "x"})
    assert decision.requires_approval
    assert decision.reason == "External provider tool"


def test_medium_unclassified_tool_is_auto_approved() -> None:
    assert not decide(ApprovalLevel.MEDIUM, "task_complete", {"summary": "x"}).requires_approval


def test_configured_patterns_extend_builtin_lists() -> None:
    rules = ApprovalRules.build(
        extra_safe=[r"^make\s+test$"],
        extra_dangerous=[r"\bterraform\s+apply\b", "(unclosed"],
    )
    assert not classify_command("make test", rules).requires_approval
    decision = classify_command("terraform apply", rules)
    assert decision.reason == r"Dangerous command detected: \bterraform\s+apply\b"
    # Built-ins still apply
    assert classify_command("git push", rules).requires_approval


def test_level_coercion() -> None:
    assert ApprovalLevel.coerce("medium") is ApprovalLevel.MEDIUM
    assert ApprovalLevel.coerce("HIGH") is ApprovalLevel.HIGH
    assert ApprovalLevel.coerce("1") is ApprovalLevel.LOW
    assert ApprovalLevel.coerce(0) is ApprovalLevel.OFF
    with pytest.raises(ValueError):
        ApprovalLevel.coerce(7)
    with pytest.raises(ValueError):
        ApprovalLevel.coerce("paranoid")


def test_engine_level_update_applies_to_later_decisions() -> None:
    engine = ApprovalEngine(ApprovalLevel.MEDIUM)
    assert engine.decide("execute_command", {"command": "foo-cli"}).requires_approval
    engine.update_level("high")
    assert engine.level_name() == "HIGH"
    assert not engine.decide("execute_command", {"command": "foo-cli"}).requires_approval
