"""AgentRun lifecycle state machine.

Defines valid transitions and enforces them. Invalid transitions
raise InvalidTransitionError (a ValueError) rather than silently
proceeding.

State Diagram:

    PENDING ──> RUNNING ──┬──> COMPLETE
                          │
                          ├──> ERROR
                          │
                          └──> ABORTED

    PENDING ──> ERROR | ABORTED  (rejected before start)
"""
from __future__ import annotations

from .errors import InvalidTransitionError
from .models import RunStatus

VALID_TRANSITIONS: dict[RunStatus, set[RunStatus]] = {
    RunStatus.PENDING: {
        RunStatus.RUNNING,
        RunStatus.ERROR,
        RunStatus.ABORTED,
    },
    RunStatus.RUNNING: {
        RunStatus.COMPLETE,
        RunStatus.ERROR,
        RunStatus.ABORTED,
    },
    RunStatus.COMPLETE: set(),
    RunStatus.ERROR: set(),
    RunStatus.ABORTED: set(),
}

TERMINAL_STATES = frozenset(
    status for status, targets in VALID_TRANSITIONS.items() if not targets
)


def validate_transition(current: RunStatus, target: RunStatus) -> None:
    """Validate a state transition. Raises InvalidTransitionError if invalid."""
    allowed = VALID_TRANSITIONS.get(current, set())
    if target not in allowed:
        allowed_str = ", ".join(s.value for s in allowed) or "none (terminal)"
        raise InvalidTransitionError(
            f"Invalid state transition: {current.value} -> {target.value}. "
            f"Allowed from {current.value}: {allowed_str}"
        )


def is_terminal(status: RunStatus) -> bool:
    return status in TERMINAL_STATES
