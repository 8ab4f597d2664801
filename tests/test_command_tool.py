from __future__ import annotations

import asyncio
import dataclasses
from pathlib import Path

import pytest

from indokq.engine.cancellation import CancellationToken
from indokq.engine.tools.base import ToolContext
from indokq.engine.tools.command import _trim_output, execute_command, run_command
from indokq.engine.tools.schemas import ExecuteCommandInput


@pytest.mark.asyncio
async def test_successful_command_returns_stdout(tool_context: ToolContext) -> None:
    result = await execute_command(tool_context, ExecuteCommandInput(command="echo hello"))
    assert result.success
    assert result.output == "hello"


@pytest.mark.asyncio
async def test_command_runs_in_workspace(workspace: Path, tool_context: ToolContext) -> None:
    (workspace / "marker.txt").write_text("", encoding="utf-8")
    result = await execute_command(tool_context, ExecuteCommandInput(command="ls"))
    assert "marker.txt" in result.output


@pytest.mark.asyncio
async def test_nonzero_exit_is_an_error_with_output(tool_context: ToolContext) -> None:
    result = await execute_command(
        tool_context, ExecuteCommandInput(command="echo partial; echo oops >&2; exit 3"),
    )
    assert not result.success
    assert result.error == "Command failed with exit code 3"
    assert "partial" in result.output
    assert "[stderr]\noops" in result.output


@pytest.mark.asyncio
async def test_timeout_terminates_and_keeps_partial_output(tool_context: ToolContext) -> None:
    result = await execute_command(
        tool_context,
        ExecuteCommandInput(command="echo before; sleep 30", timeout=0.5),
    )
    assert not result.success
    assert result.error == "Command timed out after 0.5s"
    assert "before" in result.output


@pytest.mark.asyncio
async def test_output_cap_stops_the_command(tool_context: ToolContext) -> None:
    ctx = dataclasses.replace(
        tool_context,
        config=dataclasses.replace(tool_context.config, command_output_limit_bytes=1024),
    )
    result = await execute_command(ctx, ExecuteCommandInput(command="yes"))
    assert not result.success
    assert result.error == "Command output exceeded 1024 bytes; command terminated"
    assert result.output.startswith("y")


@pytest.mark.asyncio
async def test_cancellation_stops_the_process_group(workspace: Path) -> None:
    cancel = CancellationToken()

    async def cancel_soon() -> None:
        await asyncio.sleep(0.2)
        cancel.cancel("abort")

    canceller = asyncio.create_task(cancel_soon())
    outcome = await run_command(
        "sleep 30 & sleep 30; wait",
        cwd=workspace,
        timeout=10,
        output_limit=1024,
        cancel=cancel,
    )
    await canceller
    assert outcome.cancelled
    assert not outcome.succeeded


def test_trim_output_marks_truncation() -> None:
    text = "x" * 50
    assert _trim_output(text, 100) == text
    trimmed = _trim_output(text, 10)
    assert trimmed == "x" * 10 + "\n... [truncated 40 chars]"
