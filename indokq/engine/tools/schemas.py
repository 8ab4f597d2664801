"""Typed inputs for the built-in tools.

Raw tool input decoded from the model stream is validated against these
models at the dispatcher boundary; handlers only ever see instances.
Unknown keys are ignored and camelCase aliases are accepted.
"""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ToolInput(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @classmethod
    def has_required_fields(cls) -> bool:
        return any(f.is_required() for f in cls.model_fields.values())


class ListFilesInput(ToolInput):
    path: str = Field(".", description="Directory to list, relative to the workspace")


class SearchFilesInput(ToolInput):
    pattern: str = Field(min_length=1, description="Glob pattern, e.g. **/*.py")
    directory: str = Field(".", description="Directory to search from")


class GrepCodebaseInput(ToolInput):
    pattern: str = Field(min_length=1, description="Regular expression to search for")
    flags: str = Field("", description="Regex flags: i (ignore case), m, s")
    max_results: int = Field(15, gt=0, alias="maxResults")


class ReadFileInput(ToolInput):
    path: str = Field(min_length=1)


class WriteFileInput(ToolInput):
    path: str = Field(min_length=1)
    content: str


class CreateFileInput(ToolInput):
    path: str = Field(min_length=1)
    content: str


class EditFileInput(ToolInput):
    path: str = Field(min_length=1)
    content: str = Field(description="Complete new file content")


class FileEdit(ToolInput):
    search: str = Field(min_length=1, description="Exact text to find")
    replace: str


class ProposeFileChangesInput(ToolInput):
    path: str = Field(min_length=1)
    changes: list[FileEdit] = Field(min_length=1)
    description: str | None = None


class ExecuteCommandInput(ToolInput):
    command: str = Field(min_length=1)
    timeout: float | None = Field(None, gt=0, description="Seconds")


class TaskCompleteInput(ToolInput):
    summary: str = Field(min_length=1)
    status: Literal["success", "partial", "failed"] = "success"


class SpawnTarget(ToolInput):
    agent_type: str = Field(min_length=1, alias="agentType")
    prompt: str = Field(min_length=1)


class SpawnAgentsInput(ToolInput):
    agents: list[SpawnTarget] = Field(min_length=1)
