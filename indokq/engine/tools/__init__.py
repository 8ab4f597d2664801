"""Built-in tools, approval gating and change staging."""
from .approval import ApprovalEngine, ApprovalLevel, ApprovalRules, decide
from .approval_queue import ApprovalQueue, ApprovalRequest
from .base import HandlerResult, ToolCategory, ToolContext, ToolSpec
from .dispatcher import ToolDispatcher, builtin_tools
from .staging import ChangeStaging, StagingOutcome, unified_diff

__all__ = [
    "ApprovalEngine",
    "ApprovalLevel",
    "ApprovalQueue",
    "ApprovalRequest",
    "ApprovalRules",
    "ChangeStaging",
    "HandlerResult",
    "StagingOutcome",
    "ToolCategory",
    "ToolContext",
    "ToolDispatcher",
    "ToolSpec",
    "builtin_tools",
    "decide",
    "unified_diff",
]
