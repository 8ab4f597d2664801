"""Tool handler contract shared by the dispatcher and every handler."""
from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from ..cancellation import CancellationToken
from ..models import AgentResult, PendingChange, SpawnRequest

if TYPE_CHECKING:
    from ..config import EngineConfig
    from .staging import ChangeStaging


class ToolCategory(str, Enum):
    """How the dispatcher gates a tool."""
    READ_ONLY = "read_only"
    FILE_MODIFICATION = "file_modification"
    COMMAND = "command"
    PROVIDER = "provider"
    CONTROL = "control"

    @property
    def gated(self) -> bool:
        return self in (
            ToolCategory.FILE_MODIFICATION,
            ToolCategory.COMMAND,
            ToolCategory.PROVIDER,
        )


SpawnFunc = Callable[[list[SpawnRequest]], Awaitable[list[AgentResult]]]


@dataclass(frozen=True)
class HandlerResult:
    """What a handler returns: output text, an error, or a staged change."""
    success: bool
    output: str = ""
    error: str | None = None
    pending_change: PendingChange | None = None

    @classmethod
    def ok(cls, output: str) -> HandlerResult:
        return cls(True, output=output)

    @classmethod
    def fail(cls, error: str, output: str = "") -> HandlerResult:
        return cls(False, output=output, error=error)

    @classmethod
    def staged(cls, change: PendingChange, message: str = "") -> HandlerResult:
        return cls(True, output=message, pending_change=change)

    def render(self) -> str:
        if self.success:
            return self.output
        if self.output:
            return f"Error: {self.error}\n\n{self.output}"
        return f"Error: {self.error}"


@dataclass
class ToolContext:
    """Per-call environment handed to a handler."""
    workspace: Path
    config: EngineConfig
    staging: ChangeStaging
    run_id: str = ""
    agent_type: str = ""
    cancel: CancellationToken | None = None
    spawn: SpawnFunc | None = None


Handler = Callable[[ToolContext, Any], Awaitable[HandlerResult]]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    input_model: type[BaseModel]
    handler: Handler
    category: ToolCategory

    def definition(self) -> dict[str, Any]:
        """Tool definition in the shape the model API expects."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_model.model_json_schema(),
        }
