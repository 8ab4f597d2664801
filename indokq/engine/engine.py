"""OrchestrationEngine: wires the components together for a front end."""
from __future__ import annotations

import logging
from collections.abc import Sequence

from .config import EngineConfig
from .mcp.manager import ClientFactory, ProviderConnectionManager
from .models import OrchestrationResult, Phase
from .orchestrator import Orchestrator
from .providers.base import ModelProvider
from .registry import AgentRegistry
from .tools.approval import ApprovalEngine, ApprovalLevel, ApprovalRules
from .tools.approval_queue import ApprovalQueue, ApprovalRequest
from .tools.dispatcher import ToolDispatcher
from .tools.provider_tools import ProviderToolRegistry
from .tools.staging import ChangeStaging

logger = logging.getLogger(__name__)


class OrchestrationEngine:
    """Main entry point.

    Usage:
        engine = OrchestrationEngine(EngineConfig.from_env(), provider)
        async with engine:
            result = await engine.run("Add a --verbose flag to the CLI")
    """

    def __init__(
        self,
        config: EngineConfig,
        provider: ModelProvider,
        *,
        registry: AgentRegistry | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self.config = config
        self.provider = provider
        self.registry = registry or AgentRegistry.with_builtins()
        self.registry.validate()

        self.approval = ApprovalEngine(
            config.approval_level,
            ApprovalRules.build(
                config.extra_safe_patterns, config.extra_dangerous_patterns,
            ),
        )
        self.approvals = ApprovalQueue(
            callback=config.approval_callback,
            event_callback=config.event_callback,
        )
        self.staging = ChangeStaging(config.workspace)
        self.providers = ProviderConnectionManager.from_config(
            config, client_factory=client_factory,
        )
        self.dispatcher = ToolDispatcher(
            config,
            approval=self.approval,
            approvals=self.approvals,
            staging=self.staging,
            providers=ProviderToolRegistry(self.providers),
        )
        self.orchestrator = Orchestrator(
            config, self.registry, provider, self.dispatcher,
        )
        self._started = False

    async def start(self) -> dict[str, str | None]:
        """Connect auto-connect providers. Returns per-provider errors."""
        self._started = True
        if not self.config.provider_auto_connect:
            return {}
        return await self.providers.connect_all()

    async def run(
        self,
        task: str,
        phases: Sequence[Phase | str] | None = None,
    ) -> OrchestrationResult:
        if not self._started:
            await self.start()
        logger.info("Running task (%s): %s", "pipeline" if phases else "model-driven", task[:120])
        return await self.orchestrator.run(task, phases)

    def pending_approvals(self) -> list[ApprovalRequest]:
        return self.approvals.pending()

    def resolve_approval(self, request_id: str, approved: bool) -> bool:
        return self.approvals.resolve(request_id, approved)

    def set_approval_level(self, level: ApprovalLevel | int | str) -> None:
        self.approval.update_level(level)

    def abort(self) -> None:
        self.orchestrator.abort()

    async def shutdown(self) -> None:
        self.approvals.reject_all()
        discarded = self.staging.discard_all()
        if discarded:
            logger.info("Discarded %d unapplied change(s)", discarded)
        await self.providers.disconnect_all()
        await self.provider.shutdown()
        self._started = False

    async def __aenter__(self) -> OrchestrationEngine:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()
