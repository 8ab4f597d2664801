from __future__ import annotations

import asyncio
import dataclasses
import json
from pathlib import Path

import pytest

from indokq.engine.config import EngineConfig
from indokq.engine.engine import OrchestrationEngine
from indokq.engine.models import AgentDefinition, Phase, RunStatus
from indokq.engine.orchestrator import DEFAULT_PREDICTION, parse_prediction
from indokq.engine.providers.base import ModelRequest
from indokq.engine.providers.scripted import ScriptedProvider
from indokq.engine.registry import AgentRegistry


def _complete(summary: str, status: str = "success") -> dict:
    return {"tool_calls": [{"name": "task_complete", "input": {"summary": summary, "status": status}}]}


def _spawn(*targets: tuple[str, str]) -> dict:
    return {"tool_calls": [{
        "name": "spawn_agents",
        "input": {"agents": [{"agentType": a, "prompt": p} for a, p in targets]},
    }]}


class HangingProvider(ScriptedProvider):
    """Scripted, except the listed agent types stall until cancelled."""

    def __init__(self, script: dict, hang: set[str]) -> None:
        super().__init__(script)
        self.hang = hang

    async def stream_turn(self, request: ModelRequest):
        if request.agent_type in self.hang:
            self.requests.append(request)
            await asyncio.sleep(30)
        async for event in super().stream_turn(request):
            yield event


def _recorder(events: list[dict]):
    async def record(event: dict) -> None:
        events.append(event)
    return record


@pytest.mark.asyncio
async def test_model_driven_run_spawns_and_collects(engine_config: EngineConfig) -> None:
    provider = ScriptedProvider({
        "orchestrator": [_spawn(("execution", "Do the thing")), {"text": "All done."}],
        "execution": [_complete("Thing done")],
    })
    async with OrchestrationEngine(engine_config, provider) as engine:
        result = await engine.run("Do the thing")

    assert result.success
    assert result.output == "All done."
    assert result.root.status is RunStatus.COMPLETE
    orchestrator_second = [r for r in provider.requests if r.agent_type == "orchestrator"][1]
    payload = json.loads(orchestrator_second.messages[-1]["content"][0]["content"])
    assert payload == [{"agent_type": "execution", "success": True, "result": "Thing done"}]


@pytest.mark.asyncio
async def test_disallowed_spawn_fails_parent_before_any_child_starts(engine_config: EngineConfig) -> None:
    events: list[dict] = []
    config = engine_config.with_callbacks(event_callback=_recorder(events))
    planner = AgentDefinition(
        agent_id="planner",
        display_name="Planner",
        system_prompt="",
        tool_names=frozenset({"spawn_agents", "task_complete"}),
        spawnable_agents=("execution",),
    )
    provider = ScriptedProvider({
        "planner": [_spawn(("execution", "ok"), ("synthesis", "not allowed"))],
        "execution": [_complete("should not run")],
        "synthesis": [_complete("should not run")],
    })
    engine = OrchestrationEngine(
        config, provider, registry=AgentRegistry.with_builtins([planner]),
    )

    result = await engine.orchestrator.run_agent("planner", "plan it")

    assert not result.success
    assert result.status is RunStatus.ERROR
    assert "not allowed to spawn synthesis" in result.error
    spawned = [e["agent_type"] for e in events if e["event"] == "agent_spawned"]
    assert spawned == ["planner"]
    assert {r.agent_type for r in provider.requests} == {"planner"}


@pytest.mark.asyncio
async def test_depth_limit_is_enforced(engine_config: EngineConfig) -> None:
    config = dataclasses.replace(engine_config, max_agent_depth=1)
    provider = ScriptedProvider({
        "orchestrator": [_spawn(("intelligence", "look"))],
        "intelligence": [_spawn(("terminus", "look deeper"))],
        "terminus": [_complete("never")],
    })
    engine = OrchestrationEngine(config, provider)

    result = await engine.run("x")

    assert result.success
    intelligence_results = json.loads(
        [r for r in provider.requests if r.agent_type == "orchestrator"][1]
        .messages[-1]["content"][0]["content"]
    )
    assert intelligence_results[0]["success"] is False
    assert "exceeds max 1" in intelligence_results[0]["error"]
    assert all(r.agent_type != "terminus" for r in provider.requests)


@pytest.mark.asyncio
async def test_unknown_child_is_an_error_entry_in_order(engine_config: EngineConfig) -> None:
    provider = ScriptedProvider({
        "orchestrator": [_spawn(("wizard", "?"), ("execution", "go")), {"text": "ok"}],
        "execution": [_complete("went")],
    })
    engine = OrchestrationEngine(engine_config, provider)

    await engine.run("x")

    second = [r for r in provider.requests if r.agent_type == "orchestrator"][1]
    payload = json.loads(second.messages[-1]["content"][0]["content"])
    assert payload[0] == {"agent_type": "wizard", "success": False, "error": "Unknown agent type: wizard"}
    assert payload[1]["success"] is True


@pytest.mark.asyncio
async def test_failing_sibling_does_not_cancel_others(engine_config: EngineConfig) -> None:
    provider = ScriptedProvider({
        "intelligence": [_spawn(("terminus", "a"), ("environment", "b")), _complete("merged")],
        "terminus": [_complete("cannot read", "failed")],
        "environment": [_complete("python 3.12")],
    })
    engine = OrchestrationEngine(engine_config, provider)

    result = await engine.orchestrator.run_agent("intelligence", "gather")

    assert result.success
    second = [r for r in provider.requests if r.agent_type == "intelligence"][1]
    payload = json.loads(second.messages[-1]["content"][0]["content"])
    assert [p["success"] for p in payload] == [False, True]
    assert payload[1]["result"] == "python 3.12"


@pytest.mark.asyncio
async def test_pipeline_passes_context_between_phases(engine_config: EngineConfig) -> None:
    events: list[dict] = []
    config = engine_config.with_callbacks(event_callback=_recorder(events))
    provider = ScriptedProvider({
        "prediction": [{"text": 'Result: {"category": "feature", "keyFiles": ["cli.py"]}'}],
        "terminus": [_complete("cli.py parses args")],
        "environment": [_complete("pytest available")],
        "synthesis": [_complete("Add flag to cli.py")],
    })
    engine = OrchestrationEngine(config, provider)

    result = await engine.run("Add a flag", [Phase.PREDICTION, Phase.INTELLIGENCE, Phase.SYNTHESIS])

    assert result.success
    assert result.output == "Add flag to cli.py"
    assert [p.phase for p in result.phases] == [Phase.PREDICTION, Phase.INTELLIGENCE, Phase.SYNTHESIS]
    synthesis_prompt = [r for r in provider.requests if r.agent_type == "synthesis"][0].messages[0]["content"]
    assert '"category": "feature"' in synthesis_prompt
    assert "### terminus\ncli.py parses args" in synthesis_prompt
    assert "### environment\npytest available" in synthesis_prompt
    phase_events = [e["phase"] for e in events if e["event"] == "phase_started"]
    assert phase_events == ["prediction", "intelligence", "synthesis"]


@pytest.mark.asyncio
async def test_pipeline_stops_when_a_phase_has_no_success(engine_config: EngineConfig) -> None:
    provider = ScriptedProvider({
        "terminus": [_complete("broken", "failed")],
        "environment": [_complete("broken too", "failed")],
        "synthesis": [_complete("never")],
    })
    engine = OrchestrationEngine(engine_config, provider)

    result = await engine.run("x", ["intelligence", "synthesis"])

    assert not result.success
    assert len(result.phases) == 1
    assert "terminus: Agent reported failure: broken" in result.output
    assert all(r.agent_type != "synthesis" for r in provider.requests)


@pytest.mark.asyncio
async def test_phase_timeout_stops_slow_agents(engine_config: EngineConfig) -> None:
    config = dataclasses.replace(engine_config, phase_timeout_seconds=0.3)
    provider = HangingProvider(
        {"terminus": [_complete("fast")]}, hang={"environment"},
    )
    engine = OrchestrationEngine(config, provider)

    result = await engine.run("x", [Phase.INTELLIGENCE])

    assert result.success
    terminus, environment = result.phases[0].results
    assert terminus.success
    assert environment.status is RunStatus.ABORTED


@pytest.mark.asyncio
async def test_abort_cancels_in_flight_runs(engine_config: EngineConfig) -> None:
    provider = HangingProvider({}, hang={"orchestrator"})
    engine = OrchestrationEngine(engine_config, provider)

    async def abort_soon() -> None:
        await asyncio.sleep(0.1)
        assert [r.agent_type for r in engine.orchestrator.active_runs()] == ["orchestrator"]
        engine.abort()

    aborter = asyncio.create_task(abort_soon())
    result = await engine.run("x")
    await aborter

    assert result.aborted
    assert not result.success
    assert result.root.status is RunStatus.ABORTED
    assert engine.orchestrator.active_runs() == []


@pytest.mark.asyncio
async def test_abort_before_run_starts_is_not_lost(engine_config: EngineConfig) -> None:
    provider = ScriptedProvider({"orchestrator": [{"text": "All done."}]})
    engine = OrchestrationEngine(engine_config, provider)

    engine.abort()
    aborted = await engine.run("x")

    assert aborted.aborted
    assert not aborted.success
    assert aborted.root.status is RunStatus.ABORTED
    assert provider.requests == []

    # The abort is consumed; the next run starts clean
    result = await engine.run("y")
    assert result.success
    assert not result.aborted
    assert result.output == "All done."


def test_parse_prediction_falls_back_to_default() -> None:
    assert parse_prediction("no json here") == DEFAULT_PREDICTION
    assert parse_prediction("{broken") == DEFAULT_PREDICTION
    merged = parse_prediction('{"riskLevel": "high"}')
    assert merged["riskLevel"] == "high"
    assert merged["category"] == "general"


@pytest.mark.asyncio
async def test_engine_applies_changes_end_to_end(workspace: Path, engine_config: EngineConfig) -> None:
    (workspace / "app.py").write_text("DEBUG = False\n", encoding="utf-8")
    provider = ScriptedProvider({
        "execution": [
            {"tool_calls": [{
                "name": "propose_file_changes",
                "input": {"path": "app.py", "changes": [{"search": "False", "replace": "True"}]},
            }]},
            _complete("Enabled debug"),
        ],
    })
    async with OrchestrationEngine(engine_config, provider) as engine:
        result = await engine.run("Enable debug", [Phase.EXECUTION])

    assert result.success
    assert (workspace / "app.py").read_text(encoding="utf-8") == "DEBUG = True\n"
