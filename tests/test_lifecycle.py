from __future__ import annotations

import pytest

from indokq.engine.errors import InvalidTransitionError
from indokq.engine.lifecycle import is_terminal, validate_transition
from indokq.engine.models import AgentRun, Message, RunStatus
from indokq.engine.definitions import TERMINUS


def test_valid_paths() -> None:
    validate_transition(RunStatus.PENDING, RunStatus.RUNNING)
    validate_transition(RunStatus.RUNNING, RunStatus.COMPLETE)
    validate_transition(RunStatus.RUNNING, RunStatus.ABORTED)
    validate_transition(RunStatus.PENDING, RunStatus.ERROR)


@pytest.mark.parametrize("terminal", [RunStatus.COMPLETE, RunStatus.ERROR, RunStatus.ABORTED])
def test_terminal_states_are_final(terminal: RunStatus) -> None:
    assert is_terminal(terminal)
    with pytest.raises(InvalidTransitionError):
        validate_transition(terminal, RunStatus.RUNNING)


def test_pending_cannot_complete_directly() -> None:
    with pytest.raises(ValueError):
        validate_transition(RunStatus.PENDING, RunStatus.COMPLETE)


def test_history_must_alternate_roles() -> None:
    run = AgentRun(definition=TERMINUS, prompt="x")
    run.append(Message.user("x"))
    with pytest.raises(ValueError):
        run.append(Message.user("again"))
