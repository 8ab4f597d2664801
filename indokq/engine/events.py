"""Event types emitted by the orchestration engine.

The engine reports progress as plain dicts through
``EngineConfig.event_callback``; ``dict_to_event`` parses them into
typed dataclasses for front ends that prefer them.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class OrchestratorEvent:
    """Base event from the orchestration engine."""
    event_type: str = ""


@dataclass
class OrchestrationStarted(OrchestratorEvent):
    event_type: str = "orchestration_started"
    task: str = ""
    phases: list[str] = field(default_factory=list)


@dataclass
class OrchestrationFinished(OrchestratorEvent):
    event_type: str = "orchestration_finished"
    success: bool = True
    aborted: bool = False
    output: str = ""
    duration_seconds: float = 0.0


@dataclass
class PhaseStarted(OrchestratorEvent):
    event_type: str = "phase_started"
    phase: str = ""
    agents: list[str] = field(default_factory=list)


@dataclass
class PhaseFinished(OrchestratorEvent):
    event_type: str = "phase_finished"
    phase: str = ""
    succeeded: int = 0
    failed: int = 0


@dataclass
class AgentSpawned(OrchestratorEvent):
    event_type: str = "agent_spawned"
    run_id: str = ""
    agent_type: str = ""
    parent_id: str | None = None
    depth: int = 0
    prompt: str = ""


@dataclass
class AgentStateChanged(OrchestratorEvent):
    event_type: str = "agent_state_changed"
    run_id: str = ""
    agent_type: str = ""
    old_state: str = ""
    new_state: str = ""


@dataclass
class AgentFinished(OrchestratorEvent):
    event_type: str = "agent_finished"
    run_id: str = ""
    agent_type: str = ""
    success: bool = True
    summary: str = ""
    error: str | None = None
    turns_used: int = 0
    duration_seconds: float = 0.0


@dataclass
class TextDelta(OrchestratorEvent):
    event_type: str = "text_delta"
    run_id: str = ""
    text: str = ""


@dataclass
class ToolRequested(OrchestratorEvent):
    event_type: str = "tool_requested"
    run_id: str = ""
    tool_use_id: str = ""
    tool_name: str = ""
    tool_input: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolFinished(OrchestratorEvent):
    event_type: str = "tool_finished"
    run_id: str = ""
    tool_use_id: str = ""
    tool_name: str = ""
    is_error: bool = False
    content: str = ""


@dataclass
class ApprovalRequested(OrchestratorEvent):
    event_type: str = "approval_requested"
    request_id: str = ""
    run_id: str = ""
    tool_name: str = ""
    reason: str = ""
    diff: str | None = None


@dataclass
class ApprovalResolved(OrchestratorEvent):
    event_type: str = "approval_resolved"
    request_id: str = ""
    approved: bool = False


_EVENT_MAP: dict[str, type[OrchestratorEvent]] = {
    "orchestration_started": OrchestrationStarted,
    "orchestration_finished": OrchestrationFinished,
    "phase_started": PhaseStarted,
    "phase_finished": PhaseFinished,
    "agent_spawned": AgentSpawned,
    "agent_state_changed": AgentStateChanged,
    "agent_finished": AgentFinished,
    "text_delta": TextDelta,
    "tool_requested": ToolRequested,
    "tool_finished": ToolFinished,
    "approval_requested": ApprovalRequested,
    "approval_resolved": ApprovalResolved,
}


def dict_to_event(data: dict[str, Any]) -> OrchestratorEvent:
    """Convert an engine callback dict to a typed event dataclass."""
    event_type = data.get("event", "")
    cls = _EVENT_MAP.get(event_type, OrchestratorEvent)
    # Filter dict keys to only those the dataclass accepts
    valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    if "event" in data and "event_type" not in filtered:
        filtered["event_type"] = data["event"]
    return cls(**filtered)
