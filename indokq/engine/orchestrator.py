"""Orchestrator: phases, spawn tree and parallel joins.

Two ways to run a task:

* model-driven (``phases=None``): a root ``orchestrator`` agent decides
  which phase agents to spawn through ``spawn_agents``;
* pipeline: the given phases run in order (prediction -> intelligence
  -> synthesis -> execution), each phase spawning its agents directly
  and passing its results on as context to the next.

Children of one spawn run concurrently and are joined with all-settled
semantics: a failing child is recorded as an error entry and never
cancels its siblings. A spawn outside the parent's allowed set, or past
the depth limit, fails before any child starts and ends the parent run.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from collections.abc import Sequence
from typing import Any

from .agent_run import AgentRunner
from .cancellation import CancellationToken
from .config import EngineConfig, fire_event
from .errors import MaxDepthExceededError, SpawnNotAllowedError
from .models import (
    AgentDefinition,
    AgentResult,
    AgentRun,
    OrchestrationResult,
    Phase,
    PhaseResult,
    RunStatus,
    SpawnRequest,
    _make_id,
)
from .providers.base import ModelProvider
from .registry import AgentRegistry
from .tools.dispatcher import ToolDispatcher

logger = logging.getLogger(__name__)

ROOT_AGENT = "orchestrator"

PHASE_AGENTS: dict[Phase, tuple[str, ...]] = {
    Phase.PREDICTION: ("prediction",),
    Phase.INTELLIGENCE: ("terminus", "environment"),
    Phase.SYNTHESIS: ("synthesis",),
    Phase.EXECUTION: ("execution",),
}
DEFAULT_PHASES: tuple[Phase, ...] = tuple(Phase)

DEFAULT_PREDICTION: dict[str, Any] = {
    "category": "general",
    "riskLevel": "medium",
    "estimatedComplexity": "moderate",
    "keyFiles": [],
}

# Extra time given to cooperatively stopped children before a hard cancel
STOP_GRACE_SECONDS = 5.0

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def parse_prediction(text: str) -> dict[str, Any]:
    """First JSON object in *text*, merged over the default prediction."""
    match = _JSON_OBJECT.search(text or "")
    if match:
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            return {**DEFAULT_PREDICTION, **parsed}
    logger.info("Prediction output was not JSON; using default prediction")
    return dict(DEFAULT_PREDICTION)


def _error_result(agent_type: str, error: str, status: RunStatus = RunStatus.ERROR) -> AgentResult:
    return AgentResult(
        run_id=_make_id(),
        agent_type=agent_type,
        success=False,
        status=status,
        error=error,
    )


class Orchestrator:
    def __init__(
        self,
        config: EngineConfig,
        registry: AgentRegistry,
        provider: ModelProvider,
        dispatcher: ToolDispatcher,
    ) -> None:
        self._config = config
        self._registry = registry
        self._runner = AgentRunner(config, provider, dispatcher)
        self._root_cancel = CancellationToken()
        self._active: dict[str, AgentRun] = {}

    @property
    def registry(self) -> AgentRegistry:
        return self._registry

    def active_runs(self) -> list[AgentRun]:
        return list(self._active.values())

    def abort(self, reason: str = "aborted by user") -> None:
        """Cancel every in-flight stream, command and approval below the root.

        An abort that arrives while no run is active applies to the next
        run, which then starts already cancelled.
        """
        logger.info("Orchestration abort requested: %s", reason)
        self._root_cancel.cancel(reason)

    # ── Entry points ───────────────────────────────────────────

    async def run(
        self,
        task: str,
        phases: Sequence[Phase | str] | None = None,
    ) -> OrchestrationResult:
        cancel = self._root_cancel
        try:
            return await self._run(task, phases, cancel)
        finally:
            # Fresh token for whatever comes next
            self._root_cancel = CancellationToken()

    async def _run(
        self,
        task: str,
        phases: Sequence[Phase | str] | None,
        cancel: CancellationToken,
    ) -> OrchestrationResult:
        started = time.monotonic()
        phase_list = [Phase(p) for p in phases] if phases is not None else None
        await fire_event(self._config.event_callback, {
            "event": "orchestration_started",
            "task": task,
            "phases": [p.value for p in phase_list] if phase_list else [],
        })
        if phase_list is None:
            result = await self._run_model_driven(task, cancel)
        else:
            result = await self._run_pipeline(task, phase_list, cancel)
        result.aborted = cancel.cancelled
        result.duration_seconds = time.monotonic() - started
        await fire_event(self._config.event_callback, {
            "event": "orchestration_finished",
            "success": result.success,
            "aborted": result.aborted,
            "output": result.output,
            "duration_seconds": result.duration_seconds,
        })
        return result

    async def run_agent(
        self,
        agent_type: str,
        prompt: str,
        *,
        cancel: CancellationToken | None = None,
        depth: int = 0,
        parent_id: str | None = None,
    ) -> AgentResult:
        """Run one agent (and whatever it spawns) to completion."""
        definition = self._registry.get(agent_type)
        return await self._run_child(
            definition, prompt,
            parent_id=parent_id,
            depth=depth,
            cancel=cancel or self._root_cancel.child(),
        )

    async def _run_model_driven(
        self, task: str, cancel: CancellationToken,
    ) -> OrchestrationResult:
        root = await self.run_agent(ROOT_AGENT, task, cancel=cancel.child())
        return OrchestrationResult(
            task=task,
            success=root.success,
            output=root.summary if root.success else (root.error or ""),
            root=root,
        )

    async def _run_pipeline(
        self,
        task: str,
        phases: list[Phase],
        cancel: CancellationToken,
    ) -> OrchestrationResult:
        result = OrchestrationResult(task=task, success=False)
        context: list[str] = []
        last_output = ""
        for phase in phases:
            agent_types = PHASE_AGENTS[phase]
            await fire_event(self._config.event_callback, {
                "event": "phase_started",
                "phase": phase.value,
                "agents": list(agent_types),
            })
            logger.info("Phase %s starting: %s", phase.value, ", ".join(agent_types))
            prompt = self._phase_prompt(task, context)
            requests = [
                (self._registry.get(agent_type), prompt) for agent_type in agent_types
            ]
            results = await self._run_parallel(
                requests,
                parent_id=None,
                depth=1,
                cancel=cancel,
                timeout=self._config.phase_timeout_seconds or None,
            )
            phase_result = PhaseResult(phase=phase, results=results)
            result.phases.append(phase_result)
            await fire_event(self._config.event_callback, {
                "event": "phase_finished",
                "phase": phase.value,
                "succeeded": len(phase_result.succeeded),
                "failed": len(phase_result.failed),
            })

            if cancel.cancelled:
                logger.info("Pipeline aborted during %s", phase.value)
                return result

            if phase is Phase.PREDICTION:
                # A missing or unreadable prediction never blocks the pipeline
                text = phase_result.succeeded[0].summary if phase_result.succeeded else ""
                prediction = parse_prediction(text)
                context.append(
                    "## Prediction\n" + json.dumps(prediction, indent=2)
                )
                last_output = json.dumps(prediction)
                continue

            if not phase_result.succeeded:
                logger.warning("Phase %s produced no successful agent", phase.value)
                result.output = "\n".join(
                    f"{r.agent_type}: {r.error}" for r in phase_result.failed
                )
                return result

            section = "\n\n".join(
                f"### {r.agent_type}\n{r.summary}" for r in phase_result.succeeded
            )
            failures = "".join(
                f"\n\n### {r.agent_type} (failed)\n{r.error}" for r in phase_result.failed
            )
            context.append(f"## {phase.value.title()} results\n{section}{failures}")
            last_output = "\n\n".join(r.summary for r in phase_result.succeeded)

        result.success = True
        result.output = last_output
        return result

    @staticmethod
    def _phase_prompt(task: str, context: list[str]) -> str:
        if not context:
            return f"Task: {task}"
        return f"Task: {task}\n\n" + "\n\n".join(context)

    # ── Spawning ───────────────────────────────────────────────

    def _validate_spawn(
        self, parent: AgentRun, requests: Sequence[SpawnRequest],
    ) -> list[tuple[SpawnRequest, AgentDefinition | None]]:
        """Check every request before anything starts.

        Raises SpawnNotAllowedError / MaxDepthExceededError (fatal for
        the parent). Unknown agent types map to None and come back as
        error entries.
        """
        depth = parent.depth + 1
        if depth > self._config.max_agent_depth:
            raise MaxDepthExceededError(
                parent.agent_type, depth, self._config.max_agent_depth,
            )
        checked: list[tuple[SpawnRequest, AgentDefinition | None]] = []
        for request in requests:
            if request.agent_type not in self._registry:
                checked.append((request, None))
                continue
            if not parent.definition.can_spawn(request.agent_type):
                raise SpawnNotAllowedError(parent.agent_type, request.agent_type)
            checked.append((request, self._registry.get(request.agent_type)))
        return checked

    async def spawn_children(
        self,
        parent: AgentRun,
        requests: Sequence[SpawnRequest],
        cancel: CancellationToken,
    ) -> list[AgentResult]:
        checked = self._validate_spawn(parent, requests)
        runnable = [(d, r.prompt) for r, d in checked if d is not None]
        results = iter(await self._run_parallel(
            runnable, parent_id=parent.run_id, depth=parent.depth + 1, cancel=cancel,
        ))
        ordered: list[AgentResult] = []
        for request, definition in checked:
            if definition is None:
                ordered.append(_error_result(
                    request.agent_type, f"Unknown agent type: {request.agent_type}",
                ))
            else:
                ordered.append(next(results))
        return ordered

    async def _run_parallel(
        self,
        requests: Sequence[tuple[AgentDefinition, str]],
        *,
        parent_id: str | None,
        depth: int,
        cancel: CancellationToken,
        timeout: float | None = None,
    ) -> list[AgentResult]:
        """Run children concurrently; all-settled join, results in request order."""
        if not requests:
            return []
        tokens = [cancel.child() for _ in requests]
        tasks = [
            asyncio.create_task(self._run_child(
                definition, prompt, parent_id=parent_id, depth=depth, cancel=token,
            ))
            for (definition, prompt), token in zip(requests, tokens)
        ]
        if timeout:
            _, pending = await asyncio.wait(tasks, timeout=timeout)
            if pending:
                logger.warning(
                    "Phase budget of %ss exceeded; stopping %d agent(s)",
                    timeout, len(pending),
                )
                for task, token in zip(tasks, tokens):
                    if task in pending:
                        token.cancel("phase timeout")
                _, stuck = await asyncio.wait(pending, timeout=STOP_GRACE_SECONDS)
                for task in stuck:
                    task.cancel()
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        results: list[AgentResult] = []
        for (definition, _), outcome in zip(requests, outcomes):
            if isinstance(outcome, AgentResult):
                results.append(outcome)
            elif isinstance(outcome, asyncio.CancelledError):
                results.append(_error_result(
                    definition.agent_id, "Agent stopped", RunStatus.ABORTED,
                ))
            else:
                results.append(_error_result(
                    definition.agent_id, f"{type(outcome).__name__}: {outcome}",
                ))
        return results

    async def _run_child(
        self,
        definition: AgentDefinition,
        prompt: str,
        *,
        parent_id: str | None,
        depth: int,
        cancel: CancellationToken,
    ) -> AgentResult:
        run = AgentRun(
            definition=definition, prompt=prompt, parent_id=parent_id, depth=depth,
        )
        self._active[run.run_id] = run
        await fire_event(self._config.event_callback, {
            "event": "agent_spawned",
            "run_id": run.run_id,
            "agent_type": run.agent_type,
            "parent_id": parent_id,
            "depth": depth,
            "prompt": prompt,
        })
        logger.info(
            "Spawned %s run %s (depth %d, parent %s)",
            run.agent_type, run.run_id[:8], depth,
            parent_id[:8] if parent_id else "-",
        )

        async def spawn(requests: list[SpawnRequest]) -> list[AgentResult]:
            return await self.spawn_children(run, requests, cancel)

        try:
            return await self._runner.run(
                run,
                cancel=cancel,
                spawn=spawn if not definition.is_leaf else None,
            )
        finally:
            # Transient: dropped once the parent consumes the result
            self._active.pop(run.run_id, None)
