"""Core data models for the orchestration pipeline.

All dataclasses and enums shared across components live here so the
parser, dispatcher, staging and orchestrator modules can import them
without circular dependencies.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class RunStatus(str, Enum):
    """AgentRun lifecycle states. See lifecycle.py for transition rules."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"
    ABORTED = "aborted"


class Phase(str, Enum):
    """Named stages of an orchestrated task, in pipeline order."""
    PREDICTION = "prediction"
    INTELLIGENCE = "intelligence"
    SYNTHESIS = "synthesis"
    EXECUTION = "execution"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


def _make_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AgentDefinition:
    """Immutable descriptor of a specialized agent.

    ``tool_names`` is the allowlist of tools the agent may invoke and
    ``spawnable_agents`` lists the ids of children it may spawn (empty
    for leaves). ``input_fields`` names optional typed inputs beyond the
    single required ``prompt``.
    """
    agent_id: str
    display_name: str
    system_prompt: str
    tool_names: frozenset[str] = frozenset()
    spawnable_agents: tuple[str, ...] = ()
    spawner_prompt: str = ""
    input_fields: tuple[str, ...] = ()
    # May call connected provider tools (mcp_*) in addition to tool_names
    use_provider_tools: bool = False

    def can_spawn(self, child_id: str) -> bool:
        return child_id in self.spawnable_agents

    def allows_tool(self, tool_name: str) -> bool:
        if tool_name in self.tool_names:
            return True
        return self.use_provider_tools and tool_name.startswith("mcp_")

    @property
    def is_leaf(self) -> bool:
        return not self.spawnable_agents

    def render_prompt(self, **values: Any) -> str:
        """Fill ``{placeholder}`` fields of the system prompt template.

        Unknown placeholders are left untouched.
        """
        text = self.system_prompt
        for key, value in values.items():
            text = text.replace("{" + key + "}", str(value))
        return text


@dataclass(frozen=True)
class SpawnRequest:
    """Request from a parent run to start a child agent."""
    agent_type: str
    prompt: str
    parent_id: str | None = None


@dataclass(frozen=True)
class TextBlock:
    text: str
    type: str = "text"

    def to_block(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class ToolCall:
    """A single tool invocation reconstructed from a model turn."""
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    type: str = "tool_use"

    def to_block(self) -> dict[str, Any]:
        return {
            "type": "tool_use",
            "id": self.id,
            "name": self.name,
            "input": dict(self.input),
        }


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one ToolCall, correlated through ``tool_use_id``."""
    tool_use_id: str
    content: str
    is_error: bool = False

    def to_block(self) -> dict[str, Any]:
        block: dict[str, Any] = {
            "type": "tool_result",
            "tool_use_id": self.tool_use_id,
            "content": self.content,
        }
        if self.is_error:
            block["is_error"] = True
        return block


ContentBlock = TextBlock | ToolCall


@dataclass(frozen=True)
class Turn:
    """One finalized model round.

    ``content`` preserves the relative order of text segments and tool
    blocks as they appeared in the stream. ``complete`` is False when
    the stream was cancelled before its turn-stop event.
    """
    content: tuple[ContentBlock, ...] = ()
    complete: bool = True
    stop_reason: str | None = None
    warnings: tuple[str, ...] = ()

    @property
    def text(self) -> str:
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))

    @property
    def tool_calls(self) -> list[ToolCall]:
        return [b for b in self.content if isinstance(b, ToolCall)]

    def to_message(self) -> Message:
        return Message(
            role=Role.ASSISTANT,
            content=[b.to_block() for b in self.content],
        )


@dataclass
class Message:
    """A conversation history entry in provider wire shape."""
    role: Role
    content: str | list[dict[str, Any]]

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def user(cls, content: str | list[dict[str, Any]]) -> Message:
        return cls(role=Role.USER, content=content)

    @classmethod
    def tool_results(cls, results: list[ToolResult]) -> Message:
        return cls(role=Role.USER, content=[r.to_block() for r in results])


@dataclass(frozen=True)
class ApprovalDecision:
    """Whether a tool call may run without human confirmation."""
    requires_approval: bool
    reason: str | None = None


@dataclass(frozen=True)
class PendingChange:
    """A staged, unapplied file modification awaiting approval."""
    path: str
    old_content: str
    new_content: str
    diff: str
    description: str | None = None
    is_new_file: bool = False
    change_id: str = field(default_factory=_make_id)
    created_at: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class AgentResult:
    """Final outcome of one AgentRun, consumed by its parent."""
    run_id: str
    agent_type: str
    success: bool
    summary: str = ""
    status: RunStatus = RunStatus.COMPLETE
    error: str | None = None
    turns_used: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "agent_type": self.agent_type,
            "success": self.success,
        }
        if self.success:
            payload["result"] = self.summary
        else:
            payload["error"] = self.error or self.status.value
        return payload


@dataclass
class AgentRun:
    """Transient state of one spawned agent.

    History alternates strictly user/assistant after the first entry;
    ``append`` enforces it.
    """
    definition: AgentDefinition
    prompt: str
    parent_id: str | None = None
    depth: int = 0
    run_id: str = field(default_factory=_make_id)
    status: RunStatus = RunStatus.PENDING
    history: list[Message] = field(default_factory=list)
    turns: list[Turn] = field(default_factory=list)
    result: AgentResult | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def agent_type(self) -> str:
        return self.definition.agent_id

    @property
    def turns_used(self) -> int:
        return len(self.turns)

    def append(self, message: Message) -> None:
        if self.history and self.history[-1].role == message.role:
            raise ValueError(
                f"Run {self.run_id}: consecutive {message.role.value} "
                f"messages break role alternation"
            )
        self.history.append(message)

    def transcript(self) -> list[dict[str, Any]]:
        return [m.to_dict() for m in self.history]


@dataclass
class PhaseResult:
    phase: Phase
    results: list[AgentResult] = field(default_factory=list)

    @property
    def succeeded(self) -> list[AgentResult]:
        return [r for r in self.results if r.success]

    @property
    def failed(self) -> list[AgentResult]:
        return [r for r in self.results if not r.success]


@dataclass
class OrchestrationResult:
    """Returned to the caller of Orchestrator.run()."""
    task: str
    success: bool
    output: str = ""
    phases: list[PhaseResult] = field(default_factory=list)
    root: AgentResult | None = None
    aborted: bool = False
    duration_seconds: float = 0.0
