"""Per-run turn loop.

One AgentRun is strictly sequential: model call, parse the stream,
dispatch each tool call in order, feed the results back, repeat. The
loop ends when the agent signals completion, the turn budget runs out,
the run is cancelled, or a fatal error (spawn violation) occurs. Every
ending produces an AgentResult; nothing is raised to the caller.
"""
from __future__ import annotations

import logging
import time

from .cancellation import CancellationToken
from .config import EngineConfig, fire_event
from .definitions import SPAWN_AGENTS, TASK_COMPLETE
from .errors import OperationCancelledError, TurnBudgetExceededError
from .lifecycle import validate_transition
from .models import (
    AgentResult,
    AgentRun,
    Message,
    RunStatus,
    ToolCall,
    ToolResult,
    _utcnow,
)
from .providers.base import ModelProvider, ModelRequest
from .stream_parser import parse_stream
from .tools.base import SpawnFunc
from .tools.dispatcher import FATAL_ERRORS, ToolDispatcher

logger = logging.getLogger(__name__)

IDLE_NUDGE = (
    "Please proceed with using the appropriate tools to complete the task, "
    "or call task_complete if you are finished."
)
SKIPPED_AFTER_COMPLETE = "Skipped: task_complete was already called in this turn"


class AgentRunner:
    def __init__(
        self,
        config: EngineConfig,
        provider: ModelProvider,
        dispatcher: ToolDispatcher,
    ) -> None:
        self._config = config
        self._provider = provider
        self._dispatcher = dispatcher

    async def run(
        self,
        run: AgentRun,
        *,
        cancel: CancellationToken,
        spawn: SpawnFunc | None = None,
    ) -> AgentResult:
        started = time.monotonic()
        definition = run.definition
        await self._set_status(run, RunStatus.RUNNING)
        run.started_at = _utcnow()
        run.append(Message.user(run.prompt))

        try:
            tools = await self._dispatcher.definitions(
                definition.tool_names,
                include_providers=definition.use_provider_tools,
            )
            system = definition.render_prompt(
                workspace=self._config.workspace, agent=definition.display_name,
            )
            idle_turns = 0
            while True:
                if cancel.cancelled:
                    return await self._finish(
                        run, RunStatus.ABORTED, started, error="Run cancelled",
                    )
                if run.turns_used >= self._config.max_turns_per_run:
                    raise TurnBudgetExceededError(
                        run.agent_type, self._config.max_turns_per_run,
                    )

                request = ModelRequest(
                    run_id=run.run_id,
                    agent_type=run.agent_type,
                    messages=run.transcript(),
                    tools=tools,
                    system=system if run.turns_used == 0 else None,
                    max_tokens=self._config.max_tokens,
                )
                turn = await parse_stream(
                    self._provider.stream_turn(request),
                    cancel=cancel,
                    on_text=lambda text: fire_event(self._config.event_callback, {
                        "event": "text_delta", "run_id": run.run_id, "text": text,
                    }),
                )
                run.turns.append(turn)
                if not turn.complete:
                    return await self._finish(
                        run, RunStatus.ABORTED, started,
                        summary=self._accumulated_text(run),
                        error="Run cancelled mid-stream",
                    )
                run.append(turn.to_message())

                calls = turn.tool_calls
                if not calls:
                    if (
                        TASK_COMPLETE in definition.tool_names
                        and idle_turns < self._config.max_idle_turns
                    ):
                        idle_turns += 1
                        logger.debug(
                            "Run %s (%s) idle turn %d; nudging",
                            run.run_id[:8], run.agent_type, idle_turns,
                        )
                        run.append(Message.user(IDLE_NUDGE))
                        continue
                    return await self._finish(
                        run, RunStatus.COMPLETE, started,
                        summary=self._accumulated_text(run),
                    )

                idle_turns = 0
                results, completion = await self._dispatch_all(
                    run, calls, cancel=cancel, spawn=spawn,
                )
                run.append(Message.tool_results(results))

                if completion is not None:
                    summary = str(completion.input.get("summary", ""))
                    status = completion.input.get("status", "success")
                    if status == "failed":
                        return await self._finish(
                            run, RunStatus.ERROR, started,
                            summary=summary, error=f"Agent reported failure: {summary}",
                        )
                    return await self._finish(
                        run, RunStatus.COMPLETE, started, summary=summary,
                    )
        except TurnBudgetExceededError as exc:
            logger.warning("%s", exc)
            return await self._finish(run, RunStatus.ERROR, started, error=str(exc))
        except FATAL_ERRORS as exc:
            logger.warning("Run %s (%s) terminated: %s", run.run_id[:8], run.agent_type, exc)
            return await self._finish(run, RunStatus.ERROR, started, error=str(exc))
        except OperationCancelledError as exc:
            return await self._finish(run, RunStatus.ABORTED, started, error=str(exc))
        except Exception as exc:
            logger.exception("Run %s (%s) failed", run.run_id[:8], run.agent_type)
            return await self._finish(
                run, RunStatus.ERROR, started,
                error=f"{type(exc).__name__}: {exc}",
            )

    async def _dispatch_all(
        self,
        run: AgentRun,
        calls: list[ToolCall],
        *,
        cancel: CancellationToken,
        spawn: SpawnFunc | None,
    ) -> tuple[list[ToolResult], ToolCall | None]:
        """Dispatch in issuance order; one result per call, same order."""
        definition = run.definition
        results: list[ToolResult] = []
        completion: ToolCall | None = None
        for call in calls:
            if completion is not None:
                results.append(ToolResult(call.id, SKIPPED_AFTER_COMPLETE, is_error=True))
                continue
            if not definition.allows_tool(call.name):
                results.append(ToolResult(
                    call.id,
                    f"Tool {call.name} is not available to agent {run.agent_type}",
                    is_error=True,
                ))
                continue
            if cancel.cancelled:
                results.append(ToolResult(call.id, "Cancelled before execution", is_error=True))
                continue
            result = await self._dispatcher.dispatch(
                call,
                run_id=run.run_id,
                agent_type=run.agent_type,
                cancel=cancel,
                spawn=spawn if call.name == SPAWN_AGENTS else None,
            )
            results.append(result)
            if (
                call.name == TASK_COMPLETE
                and not result.is_error
                and TASK_COMPLETE in definition.tool_names
            ):
                completion = call
        return results, completion

    @staticmethod
    def _accumulated_text(run: AgentRun) -> str:
        return "\n\n".join(t.text for t in run.turns if t.text).strip()

    async def _set_status(self, run: AgentRun, status: RunStatus) -> None:
        old = run.status
        validate_transition(old, status)
        run.status = status
        await fire_event(self._config.event_callback, {
            "event": "agent_state_changed",
            "run_id": run.run_id,
            "agent_type": run.agent_type,
            "old_state": old.value,
            "new_state": status.value,
        })

    async def _finish(
        self,
        run: AgentRun,
        status: RunStatus,
        started: float,
        *,
        summary: str = "",
        error: str | None = None,
    ) -> AgentResult:
        await self._set_status(run, status)
        run.finished_at = _utcnow()
        result = AgentResult(
            run_id=run.run_id,
            agent_type=run.agent_type,
            success=status is RunStatus.COMPLETE,
            summary=summary,
            status=status,
            error=error,
            turns_used=run.turns_used,
            duration_seconds=time.monotonic() - started,
        )
        run.result = result
        logger.info(
            "Run %s (%s) finished: %s after %d turns",
            run.run_id[:8], run.agent_type, status.value, run.turns_used,
        )
        await fire_event(self._config.event_callback, {
            "event": "agent_finished",
            "run_id": run.run_id,
            "agent_type": run.agent_type,
            "success": result.success,
            "summary": result.summary,
            "error": result.error,
            "turns_used": result.turns_used,
            "duration_seconds": result.duration_seconds,
        })
        return result
