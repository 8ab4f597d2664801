"""Agent registry.

Static catalog of agent definitions. The spawn graph (definition ->
allowed children) is validated once, before any run starts: every child
id must be registered and the graph must be acyclic.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

from .definitions import BUILTIN_AGENTS
from .errors import AgentGraphCycleError, UnknownAgentError
from .models import AgentDefinition

logger = logging.getLogger(__name__)


class AgentRegistry:
    """Registry of agent definitions keyed by id."""

    def __init__(self, definitions: Iterable[AgentDefinition] = ()) -> None:
        self._definitions: dict[str, AgentDefinition] = {}
        for definition in definitions:
            self.register(definition)

    @classmethod
    def with_builtins(
        cls, extra: Iterable[AgentDefinition] = (),
    ) -> AgentRegistry:
        registry = cls(BUILTIN_AGENTS)
        for definition in extra:
            registry.register(definition)
        registry.validate()
        return registry

    def register(self, definition: AgentDefinition) -> None:
        """Register a definition, replacing any existing one with the same id."""
        if definition.agent_id in self._definitions:
            logger.info("Replacing agent definition: %s", definition.agent_id)
        else:
            logger.debug("Registered agent definition: %s", definition.agent_id)
        self._definitions[definition.agent_id] = definition

    def get(self, agent_id: str) -> AgentDefinition:
        """Raises UnknownAgentError if not found."""
        definition = self._definitions.get(agent_id)
        if definition is None:
            raise UnknownAgentError(agent_id)
        return definition

    def list(self) -> list[AgentDefinition]:
        return sorted(self._definitions.values(), key=lambda d: d.agent_id)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._definitions

    def __iter__(self) -> Iterator[AgentDefinition]:
        return iter(self.list())

    def __len__(self) -> int:
        return len(self._definitions)

    def validate(self) -> None:
        """Check the spawn graph.

        Raises UnknownAgentError for a child id with no definition and
        AgentGraphCycleError if any agent can (transitively) spawn itself.
        """
        for definition in self._definitions.values():
            for child in definition.spawnable_agents:
                if child not in self._definitions:
                    raise UnknownAgentError(child)

        # Iterative DFS with white/grey/black colouring
        done: set[str] = set()
        for root in sorted(self._definitions):
            if root in done:
                continue
            path: list[str] = [root]
            on_path: set[str] = {root}
            stack = [iter(self._definitions[root].spawnable_agents)]
            while stack:
                child = next(stack[-1], None)
                if child is None:
                    stack.pop()
                    finished = path.pop()
                    on_path.discard(finished)
                    done.add(finished)
                    continue
                if child in on_path:
                    cycle = path[path.index(child):] + [child]
                    raise AgentGraphCycleError(cycle)
                if child in done:
                    continue
                path.append(child)
                on_path.add(child)
                stack.append(iter(self._definitions[child].spawnable_agents))
        logger.debug("Agent spawn graph validated (%d agents)", len(self))

    def max_spawn_depth(self, root: str) -> int:
        """Longest spawn chain below *root* (0 for a leaf). Graph must be valid."""
        definition = self.get(root)
        if definition.is_leaf:
            return 0
        return 1 + max(
            self.max_spawn_depth(child) for child in definition.spawnable_agents
        )
