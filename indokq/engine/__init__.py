"""indokq engine: agent orchestration and tool-execution pipeline."""
from .config import EngineConfig
from .errors import (
    AgentGraphCycleError,
    MaxDepthExceededError,
    OperationCancelledError,
    OrchestrationError,
    ProviderAlreadyConnectedError,
    ProviderConfigError,
    ProviderConnectionError,
    ProviderError,
    ProviderNotConnectedError,
    ProviderNotFoundError,
    SpawnNotAllowedError,
    StagingError,
    TurnBudgetExceededError,
    UnknownAgentError,
    WorkspacePathError,
)
from .models import (
    AgentDefinition,
    AgentResult,
    AgentRun,
    ApprovalDecision,
    OrchestrationResult,
    PendingChange,
    Phase,
    RunStatus,
    SpawnRequest,
    ToolCall,
    ToolResult,
    Turn,
)

__all__ = [
    # Core engine (lazy import to keep the models importable on their own)
    "OrchestrationEngine",
    "Orchestrator",
    "AgentRegistry",
    # Models
    "AgentDefinition",
    "AgentResult",
    "AgentRun",
    "ApprovalDecision",
    "OrchestrationResult",
    "PendingChange",
    "Phase",
    "RunStatus",
    "SpawnRequest",
    "ToolCall",
    "ToolResult",
    "Turn",
    # Config
    "EngineConfig",
    "OrchestrationConfig",
    "load_yaml_config",
    # Providers
    "ModelProvider",
    "ScriptedProvider",
    # Errors
    "AgentGraphCycleError",
    "MaxDepthExceededError",
    "OperationCancelledError",
    "OrchestrationError",
    "ProviderAlreadyConnectedError",
    "ProviderConfigError",
    "ProviderConnectionError",
    "ProviderError",
    "ProviderNotConnectedError",
    "ProviderNotFoundError",
    "SpawnNotAllowedError",
    "StagingError",
    "TurnBudgetExceededError",
    "UnknownAgentError",
    "WorkspacePathError",
]


def __getattr__(name: str):
    if name == "OrchestrationEngine":
        from .engine import OrchestrationEngine
        return OrchestrationEngine
    if name == "Orchestrator":
        from .orchestrator import Orchestrator
        return Orchestrator
    if name == "AgentRegistry":
        from .registry import AgentRegistry
        return AgentRegistry
    if name == "OrchestrationConfig":
        from .yaml_config import OrchestrationConfig
        return OrchestrationConfig
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    if name == "ModelProvider":
        from .providers.base import ModelProvider
        return ModelProvider
    if name == "ScriptedProvider":
        from .providers.scripted import ScriptedProvider
        return ScriptedProvider
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
