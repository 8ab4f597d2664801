"""execute_command: shell commands with a wall-clock timeout and output cap.

The command runs in its own session so timeout, overflow and
cancellation can stop the whole process group, not just the shell.
Every non-success path returns the output captured so far.
"""
from __future__ import annotations

import asyncio
import logging
import os
import shutil
import signal
from dataclasses import dataclass
from pathlib import Path

from ..cancellation import CancellationToken
from .base import HandlerResult, ToolContext
from .schemas import ExecuteCommandInput

logger = logging.getLogger(__name__)

READ_CHUNK = 4096
# Characters of output handed back to the model
DISPLAY_LIMIT = 12000
TERM_GRACE_SECONDS = 1.0
READER_DRAIN_SECONDS = 1.0


@dataclass(frozen=True)
class CommandOutcome:
    exit_code: int | None
    stdout: str
    stderr: str
    timed_out: bool = False
    overflowed: bool = False
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return (
            self.exit_code == 0
            and not (self.timed_out or self.overflowed or self.cancelled)
        )

    def combined(self) -> str:
        parts = []
        if self.stdout:
            parts.append(self.stdout.rstrip("\n"))
        if self.stderr:
            parts.append("[stderr]\n" + self.stderr.rstrip("\n"))
        return "\n".join(parts)


class _Capture:
    """Collects both streams under one shared byte budget."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self.used = 0
        self.chunks: dict[str, list[bytes]] = {"stdout": [], "stderr": []}
        self.overflow = asyncio.Event()

    async def read(self, stream: asyncio.StreamReader | None, name: str) -> None:
        if stream is None:
            return
        while not self.overflow.is_set():
            chunk = await stream.read(READ_CHUNK)
            if not chunk:
                return
            room = self.limit - self.used
            if len(chunk) > room:
                self.chunks[name].append(chunk[:max(room, 0)])
                self.used = self.limit
                self.overflow.set()
                return
            self.chunks[name].append(chunk)
            self.used += len(chunk)

    def text(self, name: str) -> str:
        return b"".join(self.chunks[name]).decode(errors="replace")


def _signal_process_group(
    proc: asyncio.subprocess.Process, sig: signal.Signals,
) -> bool:
    """Send a signal to the process group when available."""
    if proc.returncode is not None:
        return False
    try:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, sig)
        else:
            proc.send_signal(sig)
        return True
    except ProcessLookupError:
        return False


async def _stop_process_group(proc: asyncio.subprocess.Process) -> None:
    """SIGTERM, short grace period, then SIGKILL."""
    if not _signal_process_group(proc, signal.SIGTERM):
        return
    try:
        await asyncio.wait_for(proc.wait(), timeout=TERM_GRACE_SECONDS)
        return
    except asyncio.TimeoutError:
        pass
    kill_sig = getattr(signal, "SIGKILL", signal.SIGTERM)
    _signal_process_group(proc, kill_sig)
    await proc.wait()


async def run_command(
    command: str,
    *,
    cwd: Path | str,
    timeout: float,
    output_limit: int,
    cancel: CancellationToken | None = None,
) -> CommandOutcome:
    shell_executable = shutil.which("bash") or None
    proc = await asyncio.create_subprocess_shell(
        command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        stdin=asyncio.subprocess.DEVNULL,
        cwd=str(cwd),
        start_new_session=True,
        executable=shell_executable,
    )
    logger.info(
        "Started command pid=%s timeout=%ss: %s",
        proc.pid, timeout, command if len(command) <= 180 else command[:180] + "...",
    )
    capture = _Capture(output_limit)
    readers = [
        asyncio.create_task(capture.read(proc.stdout, "stdout")),
        asyncio.create_task(capture.read(proc.stderr, "stderr")),
    ]
    exited = asyncio.create_task(proc.wait())
    overflowed = asyncio.create_task(capture.overflow.wait())
    waiters = {exited, overflowed}
    cancelled_task: asyncio.Task | None = None
    if cancel is not None:
        cancelled_task = asyncio.create_task(cancel.wait())
        waiters.add(cancelled_task)

    timed_out = hit_cap = was_cancelled = False
    try:
        done, _ = await asyncio.wait(
            waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED,
        )
        if capture.overflow.is_set():
            hit_cap = True
        elif exited in done:
            pass
        elif cancelled_task is not None and cancelled_task in done:
            was_cancelled = True
        else:
            timed_out = True
    finally:
        for task in waiters:
            if not task.done():
                task.cancel()
        if proc.returncode is None:
            await _stop_process_group(proc)
        _, stuck = await asyncio.wait(readers, timeout=READER_DRAIN_SECONDS)
        for task in stuck:
            task.cancel()
    # Cap may be hit while draining what an exited process left behind
    hit_cap = hit_cap or capture.overflow.is_set()

    if timed_out or hit_cap or was_cancelled:
        logger.warning(
            "Command pid=%s stopped (timeout=%s overflow=%s cancelled=%s)",
            proc.pid, timed_out, hit_cap, was_cancelled,
        )
    return CommandOutcome(
        exit_code=proc.returncode,
        stdout=capture.text("stdout"),
        stderr=capture.text("stderr"),
        timed_out=timed_out,
        overflowed=hit_cap,
        cancelled=was_cancelled,
    )


def _trim_output(text: str, limit: int = DISPLAY_LIMIT) -> str:
    if len(text) <= limit:
        return text
    omitted = len(text) - limit
    return f"{text[:limit]}\n... [truncated {omitted} chars]"


async def execute_command(
    ctx: ToolContext, params: ExecuteCommandInput,
) -> HandlerResult:
    timeout = params.timeout or ctx.config.command_timeout_seconds
    limit = ctx.config.command_output_limit_bytes
    outcome = await run_command(
        params.command,
        cwd=ctx.workspace,
        timeout=timeout,
        output_limit=limit,
        cancel=ctx.cancel,
    )
    output = _trim_output(outcome.combined())
    if outcome.timed_out:
        return HandlerResult.fail(f"Command timed out after {timeout}s", output)
    if outcome.overflowed:
        return HandlerResult.fail(
            f"Command output exceeded {limit} bytes; command terminated", output,
        )
    if outcome.cancelled:
        return HandlerResult.fail("Command cancelled", output)
    if outcome.exit_code != 0:
        return HandlerResult.fail(
            f"Command failed with exit code {outcome.exit_code}", output,
        )
    return HandlerResult.ok(output or "Command completed successfully (no output)")
