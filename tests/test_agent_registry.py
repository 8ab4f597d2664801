from __future__ import annotations

import pytest

from indokq.engine.errors import AgentGraphCycleError, UnknownAgentError
from indokq.engine.models import AgentDefinition
from indokq.engine.registry import AgentRegistry


def _agent(agent_id: str, *children: str) -> AgentDefinition:
    return AgentDefinition(
        agent_id=agent_id,
        display_name=agent_id.title(),
        system_prompt="",
        spawnable_agents=children,
    )


def test_builtins_form_a_valid_graph() -> None:
    registry = AgentRegistry.with_builtins()
    assert len(registry) == 7
    assert "execution" in registry
    assert registry.get("orchestrator").can_spawn("execution")
    assert not registry.get("execution").can_spawn("synthesis")
    assert registry.get("terminus").is_leaf
    assert registry.max_spawn_depth("orchestrator") == 2


def test_unknown_agent_lookup() -> None:
    with pytest.raises(UnknownAgentError):
        AgentRegistry.with_builtins().get("wizard")


def test_cycle_is_detected() -> None:
    registry = AgentRegistry([_agent("a", "b"), _agent("b", "c"), _agent("c", "a")])
    with pytest.raises(AgentGraphCycleError) as excinfo:
        registry.validate()
    assert excinfo.value.cycle[0] == excinfo.value.cycle[-1]


def test_self_spawn_is_a_cycle() -> None:
    with pytest.raises(AgentGraphCycleError):
        AgentRegistry([_agent("loop", "loop")]).validate()


def test_dangling_child_is_rejected() -> None:
    with pytest.raises(UnknownAgentError):
        AgentRegistry([_agent("a", "ghost")]).validate()


def test_diamond_is_not_a_cycle() -> None:
    registry = AgentRegistry([
        _agent("top", "left", "right"), _agent("left", "leaf"),
        _agent("right", "leaf"), _agent("leaf"),
    ])
    registry.validate()
    assert registry.max_spawn_depth("top") == 2


def test_extra_definitions_replace_builtins() -> None:
    custom = AgentDefinition(
        agent_id="synthesis",
        display_name="Planner",
        system_prompt="Plan for {agent} in {workspace}",
        tool_names=frozenset({"task_complete"}),
    )
    registry = AgentRegistry.with_builtins([custom])
    assert registry.get("synthesis").display_name == "Planner"
    assert custom.render_prompt(agent="Planner", workspace="/w") == "Plan for Planner in /w"


def test_provider_tools_follow_opt_in() -> None:
    registry = AgentRegistry.with_builtins()
    assert registry.get("execution").allows_tool("mcp_docs_search")
    assert not registry.get("terminus").allows_tool("mcp_docs_search")
    assert not registry.get("terminus").allows_tool("write_file")
