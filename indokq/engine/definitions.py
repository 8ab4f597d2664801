"""Built-in agent definitions and their spawn graph.

The orchestrator fans out to the four phase agents; intelligence fans
out again to the codebase (terminus) and environment scouts. Every
other agent is a leaf.
"""
from __future__ import annotations

from .models import AgentDefinition

SPAWN_AGENTS = "spawn_agents"
TASK_COMPLETE = "task_complete"

READ_TOOLS = frozenset({
    "list_files", "search_files", "grep_codebase", "read_file",
})

ORCHESTRATOR = AgentDefinition(
    agent_id="orchestrator",
    display_name="Orchestrator",
    system_prompt=(
        "You coordinate specialized agents to complete the user's task in "
        "{workspace}. Spawn prediction first, then intelligence, synthesis "
        "and execution as needed, passing each the context it requires."
    ),
    tool_names=frozenset({SPAWN_AGENTS}),
    spawnable_agents=("prediction", "intelligence", "synthesis", "execution"),
)

PREDICTION = AgentDefinition(
    agent_id="prediction",
    display_name="Prediction",
    system_prompt=(
        "Classify the task. Reply with a single JSON object with keys "
        "category, riskLevel, estimatedComplexity and keyFiles."
    ),
    spawner_prompt="Analyzes the task and predicts its category and risk.",
)

INTELLIGENCE = AgentDefinition(
    agent_id="intelligence",
    display_name="Intelligence",
    system_prompt=(
        "Gather the context needed for the task by spawning the terminus "
        "(codebase) and environment scouts, then call task_complete with "
        "a summary of their findings."
    ),
    tool_names=frozenset({SPAWN_AGENTS, TASK_COMPLETE}),
    spawnable_agents=("terminus", "environment"),
    spawner_prompt="Collects codebase and environment context in parallel.",
)

TERMINUS = AgentDefinition(
    agent_id="terminus",
    display_name="Terminus",
    system_prompt=(
        "Explore the codebase in {workspace} with the read-only tools. "
        "Call task_complete with the files and facts relevant to the task."
    ),
    tool_names=READ_TOOLS | {TASK_COMPLETE},
    spawner_prompt="Explores source files relevant to the task.",
)

ENVIRONMENT = AgentDefinition(
    agent_id="environment",
    display_name="Environment",
    system_prompt=(
        "Inspect the environment: toolchain versions, build and test "
        "commands, configuration files. Call task_complete with findings."
    ),
    tool_names=frozenset({
        "list_files", "read_file", "execute_command", TASK_COMPLETE,
    }),
    spawner_prompt="Inspects toolchain, build and runtime environment.",
)

SYNTHESIS = AgentDefinition(
    agent_id="synthesis",
    display_name="Synthesis",
    system_prompt=(
        "Combine the gathered context into a concrete, ordered plan of "
        "file changes and commands. Call task_complete with the plan."
    ),
    tool_names=frozenset({TASK_COMPLETE}),
    spawner_prompt="Turns gathered context into an implementation plan.",
)

EXECUTION = AgentDefinition(
    agent_id="execution",
    display_name="Execution",
    system_prompt=(
        "Carry out the plan in {workspace}. Prefer propose_file_changes "
        "for edits, verify with commands, and call task_complete when done."
    ),
    tool_names=READ_TOOLS | {
        "write_file", "create_file", "edit_file", "propose_file_changes",
        "execute_command", TASK_COMPLETE,
    },
    use_provider_tools=True,
    spawner_prompt="Applies file changes and runs commands.",
)

BUILTIN_AGENTS: tuple[AgentDefinition, ...] = (
    ORCHESTRATOR,
    PREDICTION,
    INTELLIGENCE,
    TERMINUS,
    ENVIRONMENT,
    SYNTHESIS,
    EXECUTION,
)
