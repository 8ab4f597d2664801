"""Exception hierarchy for the orchestration pipeline.

Components raise these internally; the dispatcher, runner and
orchestrator convert them into structured results at their boundaries.
"""
from __future__ import annotations


class OrchestrationError(Exception):
    """Base exception for all orchestration errors."""


class UnknownAgentError(OrchestrationError):
    """Requested agent definition does not exist."""
    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"Unknown agent type: {agent_id}")


class SpawnNotAllowedError(OrchestrationError):
    """Parent tried to spawn a child outside its spawnable set."""
    def __init__(self, parent_id: str, child_id: str):
        self.parent_id = parent_id
        self.child_id = child_id
        super().__init__(
            f"Agent {parent_id} is not allowed to spawn {child_id}"
        )


class AgentGraphCycleError(OrchestrationError):
    """Agent definitions form a spawn cycle."""
    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Spawn cycle detected: {' -> '.join(cycle)}")


class MaxDepthExceededError(OrchestrationError):
    """Spawn tree exceeded maximum nesting depth."""
    def __init__(self, agent_id: str, depth: int, max_depth: int):
        self.agent_id = agent_id
        self.depth = depth
        self.max_depth = max_depth
        super().__init__(
            f"Agent {agent_id} at depth {depth} exceeds max {max_depth}"
        )


class TurnBudgetExceededError(OrchestrationError):
    """Agent run used all of its turns without completing."""
    def __init__(self, agent_id: str, max_turns: int):
        self.agent_id = agent_id
        self.max_turns = max_turns
        super().__init__(
            f"Agent {agent_id} exhausted its turn budget ({max_turns})"
        )


class StagingError(OrchestrationError):
    """A file change could not be proposed or applied."""
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")


class InvalidTransitionError(OrchestrationError, ValueError):
    """Illegal AgentRun status transition."""


class ProviderError(OrchestrationError):
    """Base exception for external tool-provider failures."""


class ProviderConfigError(ProviderError):
    """Provider configuration is malformed or conflicts with another."""
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class ProviderNotFoundError(ProviderError):
    """No configured provider with this name or id."""
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Provider not found: {name}")


class ProviderAlreadyConnectedError(ProviderError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Provider already connected: {name}")


class ProviderNotConnectedError(ProviderError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Provider not connected: {name}")


class ProviderConnectionError(ProviderError):
    """Transport or session setup with a provider failed."""
    def __init__(self, name: str, reason: str):
        self.name = name
        self.reason = reason
        super().__init__(f"Failed to connect to provider {name}: {reason}")


class OperationCancelledError(OrchestrationError):
    """An awaited operation was interrupted by a cancellation token."""
    def __init__(self, reason: str = "cancelled"):
        self.reason = reason
        super().__init__(f"Operation cancelled: {reason}")


class WorkspacePathError(OrchestrationError):
    """A tool path resolves outside the workspace."""
    def __init__(self, path: str, workspace: str):
        self.path = path
        self.workspace = workspace
        super().__init__(f"Path {path!r} is outside the workspace {workspace}")
