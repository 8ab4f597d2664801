"""File modification tools. Each one only stages a change; the
dispatcher decides when (and whether) it is applied."""
from __future__ import annotations

from .base import HandlerResult, ToolContext
from .schemas import (
    CreateFileInput,
    EditFileInput,
    ProposeFileChangesInput,
    WriteFileInput,
)
from .staging import StagingOutcome


def _to_result(outcome: StagingOutcome) -> HandlerResult:
    if not outcome.success:
        return HandlerResult.fail(outcome.error or "Change could not be staged")
    if outcome.change is None:
        return HandlerResult.ok(outcome.message)
    return HandlerResult.staged(outcome.change, outcome.message)


async def write_file(ctx: ToolContext, params: WriteFileInput) -> HandlerResult:
    return _to_result(ctx.staging.propose(params.path, params.content))


async def create_file(ctx: ToolContext, params: CreateFileInput) -> HandlerResult:
    return _to_result(
        ctx.staging.propose(params.path, params.content, create=True)
    )


async def edit_file(ctx: ToolContext, params: EditFileInput) -> HandlerResult:
    return _to_result(
        ctx.staging.propose(params.path, params.content, create=False)
    )


async def propose_file_changes(
    ctx: ToolContext, params: ProposeFileChangesInput,
) -> HandlerResult:
    edits = [(c.search, c.replace) for c in params.changes]
    return _to_result(
        ctx.staging.propose_edits(
            params.path, edits, description=params.description,
        )
    )
