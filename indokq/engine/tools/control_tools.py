"""Control tools: task_complete and spawn_agents."""
from __future__ import annotations

import json
import logging

from ..models import SpawnRequest
from .base import HandlerResult, ToolContext
from .schemas import SpawnAgentsInput, TaskCompleteInput

logger = logging.getLogger(__name__)


async def task_complete(ctx: ToolContext, params: TaskCompleteInput) -> HandlerResult:
    return HandlerResult.ok(
        f"Task completed: {params.summary} (Status: {params.status})"
    )


async def spawn_agents(ctx: ToolContext, params: SpawnAgentsInput) -> HandlerResult:
    """Run the requested children and report each one's outcome as JSON.

    A disallowed child type fails the whole call before anything starts.
    """
    if ctx.spawn is None:
        return HandlerResult.fail("Spawning is not available in this context")
    requests = [
        SpawnRequest(agent_type=a.agent_type, prompt=a.prompt, parent_id=ctx.run_id)
        for a in params.agents
    ]
    results = await ctx.spawn(requests)
    payload = [r.to_dict() for r in results]
    logger.debug(
        "spawn_agents from %s finished: %d ok, %d failed",
        ctx.agent_type,
        sum(1 for r in results if r.success),
        sum(1 for r in results if not r.success),
    )
    return HandlerResult.ok(json.dumps(payload, indent=2))
