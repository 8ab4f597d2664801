"""Tool approval decisions.

``decide`` is a pure function of (level, tool name, tool input, rules):
no I/O, no hidden state, same answer every time. ``ApprovalEngine``
only adds the mutable current level on top.

Levels:
    OFF     every call requires approval
    LOW     only read-only tools run automatically
    MEDIUM  read-only and file-modification tools run automatically;
            commands are matched against the dangerous list first, then
            the safe list; provider tools always ask
    HIGH    everything runs automatically
"""
from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from ..models import ApprovalDecision

logger = logging.getLogger(__name__)


class ApprovalLevel(IntEnum):
    OFF = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3

    @classmethod
    def coerce(cls, value: int | str | ApprovalLevel) -> ApprovalLevel:
        if isinstance(value, str) and not value.strip().isdigit():
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise ValueError(f"Unknown approval level: {value!r}") from None
        try:
            return cls(int(value))
        except ValueError:
            raise ValueError(
                f"Approval level must be 0-3, got {value!r}"
            ) from None


READ_ONLY_TOOLS = frozenset({
    "read_file", "list_files", "search_files", "grep_codebase",
})
FILE_MODIFICATION_TOOLS = frozenset({
    "write_file", "create_file", "edit_file", "propose_file_changes",
})
COMMAND_TOOLS = frozenset({"execute_command"})
BUILTIN_CLASSIFIED = READ_ONLY_TOOLS | FILE_MODIFICATION_TOOLS | COMMAND_TOOLS

PROVIDER_TOOL_PREFIX = "mcp_"

# (regex, label) pairs; order matters, first match wins
DANGEROUS_COMMAND_PATTERNS: tuple[tuple[str, str], ...] = (
    (r"\brm\s+-(?:[a-z]*r[a-z]*f|[a-z]*f[a-z]*r)[a-z]*\b", "rm -rf"),
    (r"\bgit\s+push\b", "git push"),
    (r"\bnpm\s+install\b", "npm install"),
    (r"\bpip3?\s+install\b", "pip install"),
    (r"\bsudo\b", "sudo"),
    (r">\s*/dev/", "redirect to device"),
    (r"\bmkfs\b", "mkfs"),
    (r"\bdd\s+if=", "dd"),
)

SAFE_COMMAND_PATTERNS: tuple[tuple[str, str], ...] = (
    (r"^git\s+(status|log|diff|show|branch|remote)\b", "git read-only"),
    (r"^npm\s+(run\s+)?(test|build|type-check|lint)\b", "npm script"),
    (r"^(ls|cat|head|tail|grep|find|which|pwd|echo)\b", "inspection"),
    (r"^(python3?|node|cargo|go|rustc|tsc)\s+--version\s*$", "version probe"),
    (r"^node_modules/\.bin/", "local binary"),
)

_SUBSTITUTION = re.compile(r"`|\$\(")

UNKNOWN_SAFETY = "unknown safety"


def split_chain(command: str) -> list[str]:
    """Split one shell line into its commands.

    Separators are ``&&``, ``||``, ``;``, ``|``, ``|&``, a background
    ``&`` and newlines, outside quotes. Redirections such as ``2>&1``,
    ``>&2`` and ``&>file`` stay inside their command.
    """
    segments: list[str] = []
    current: list[str] = []
    quote: str | None = None
    i, n = 0, len(command)

    def flush() -> None:
        segment = "".join(current).strip()
        if segment:
            segments.append(segment)
        current.clear()

    while i < n:
        ch = command[i]
        nxt = command[i + 1] if i + 1 < n else ""
        if quote is not None:
            current.append(ch)
            if ch == "\\" and quote == '"' and nxt:
                current.append(nxt)
                i += 2
                continue
            if ch == quote:
                quote = None
            i += 1
            continue
        if ch in "'\"":
            quote = ch
        elif ch == "\\" and nxt:
            current.extend((ch, nxt))
            i += 2
            continue
        elif ch in ";\n":
            flush()
            i += 1
            continue
        elif ch == "|":
            flush()
            i += 2 if nxt and nxt in "|&" else 1
            continue
        elif ch == "&":
            prev = command[i - 1] if i else ""
            if nxt == "&":
                flush()
                i += 2
                continue
            if prev not in "<>" and nxt != ">":
                flush()
                i += 1
                continue
        current.append(ch)
        i += 1
    flush()
    return segments


def _compile(
    patterns: Iterable[tuple[str, str] | str],
) -> tuple[tuple[re.Pattern[str], str], ...]:
    compiled: list[tuple[re.Pattern[str], str]] = []
    for item in patterns:
        pattern, label = item if isinstance(item, tuple) else (item, item)
        try:
            compiled.append((re.compile(pattern, re.IGNORECASE), label))
        except re.error as exc:
            logger.warning("Invalid command pattern %r: %s", pattern, exc)
    return tuple(compiled)


@dataclass(frozen=True)
class ApprovalRules:
    """Compiled, ordered command pattern lists."""
    dangerous: tuple[tuple[re.Pattern[str], str], ...]
    safe: tuple[tuple[re.Pattern[str], str], ...]

    @classmethod
    def default(cls) -> ApprovalRules:
        return _DEFAULT_RULES

    @classmethod
    def build(
        cls,
        extra_safe: Iterable[str] = (),
        extra_dangerous: Iterable[str] = (),
    ) -> ApprovalRules:
        """Built-in lists with configured patterns appended after them."""
        rules = cls(
            dangerous=_compile(
                list(DANGEROUS_COMMAND_PATTERNS) + list(extra_dangerous)
            ),
            safe=_compile(list(SAFE_COMMAND_PATTERNS) + list(extra_safe)),
        )
        logger.debug(
            "Approval rules: %d dangerous, %d safe patterns",
            len(rules.dangerous), len(rules.safe),
        )
        return rules

    def match_dangerous(self, command: str) -> str | None:
        for pattern, label in self.dangerous:
            if pattern.search(command):
                return label
        return None

    def match_safe(self, command: str) -> str | None:
        for pattern, label in self.safe:
            if pattern.search(command):
                return label
        return None


_DEFAULT_RULES = ApprovalRules.build()


def is_provider_tool(tool_name: str) -> bool:
    """Provider-namespaced and not shadowed by a built-in name."""
    return (
        tool_name.startswith(PROVIDER_TOOL_PREFIX)
        and tool_name not in BUILTIN_CLASSIFIED
    )


def classify_command(command: str, rules: ApprovalRules) -> ApprovalDecision:
    """Dangerous list first, then safe list, else unknown safety.

    A chained line (``a && b | c``) is safe only when every segment is.
    """
    command = command.strip()
    label = rules.match_dangerous(command)
    if label is not None:
        return ApprovalDecision(True, f"Dangerous command detected: {label}")
    if not command or _SUBSTITUTION.search(command):
        return ApprovalDecision(True, UNKNOWN_SAFETY)
    segments = split_chain(command)
    if segments and all(rules.match_safe(s) for s in segments):
        return ApprovalDecision(False)
    return ApprovalDecision(True, UNKNOWN_SAFETY)


def decide(
    level: ApprovalLevel | int,
    tool_name: str,
    tool_input: Mapping[str, Any] | None = None,
    rules: ApprovalRules | None = None,
) -> ApprovalDecision:
    """Decide whether *tool_name* may run without human confirmation."""
    level = ApprovalLevel(level)
    rules = rules or _DEFAULT_RULES

    if level is ApprovalLevel.HIGH:
        return ApprovalDecision(False)
    if level is ApprovalLevel.OFF:
        return ApprovalDecision(
            True, "Approval level set to OFF (all tools require approval)"
        )
    if tool_name in READ_ONLY_TOOLS:
        return ApprovalDecision(False)
    if level is ApprovalLevel.LOW:
        return ApprovalDecision(True, "Tool modifies state")

    # MEDIUM
    if tool_name in FILE_MODIFICATION_TOOLS:
        return ApprovalDecision(False)
    if tool_name in COMMAND_TOOLS:
        command = (tool_input or {}).get("command", "")
        return classify_command(str(command or ""), rules)
    if is_provider_tool(tool_name):
        return ApprovalDecision(True, "External provider tool")
    return ApprovalDecision(False)


class ApprovalEngine:
    """Holds the current level; every decision delegates to ``decide``."""

    def __init__(
        self,
        level: ApprovalLevel | int = ApprovalLevel.MEDIUM,
        rules: ApprovalRules | None = None,
    ) -> None:
        self._level = ApprovalLevel.coerce(level)
        self._rules = rules or ApprovalRules.default()

    @property
    def level(self) -> ApprovalLevel:
        return self._level

    @property
    def rules(self) -> ApprovalRules:
        return self._rules

    def level_name(self) -> str:
        return self._level.name

    def update_level(self, level: ApprovalLevel | int | str) -> None:
        new_level = ApprovalLevel.coerce(level)
        if new_level is not self._level:
            logger.info(
                "Approval level changed: %s -> %s",
                self._level.name, new_level.name,
            )
        self._level = new_level

    def decide(
        self, tool_name: str, tool_input: Mapping[str, Any] | None = None,
    ) -> ApprovalDecision:
        return decide(self._level, tool_name, tool_input, self._rules)
