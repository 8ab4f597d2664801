"""Tool dispatcher: one ToolCall in, exactly one ToolResult out.

Built-in names are looked up before provider (``mcp_*``) names. Input
is validated against the tool's pydantic model before any handler runs.

Gating by category:
    READ_ONLY / CONTROL   run immediately
    FILE_MODIFICATION     stage the change, consult the approval engine,
                          wait for a decision if required, then apply or
                          reject (rejection is a normal, non-error result)
    COMMAND / PROVIDER    consult the approval engine, wait if required,
                          then execute

Handler failures of any kind become ``is_error`` results. Only a spawn
hierarchy violation escapes, because it ends the calling run.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ..cancellation import CancellationToken
from ..config import EngineConfig, fire_event
from ..errors import (
    MaxDepthExceededError,
    OperationCancelledError,
    OrchestrationError,
    SpawnNotAllowedError,
)
from ..models import ToolCall, ToolResult
from . import command, control_tools, edit_tools, file_tools
from .approval import ApprovalEngine
from .approval_queue import ApprovalQueue, ApprovalRequest
from .base import HandlerResult, SpawnFunc, ToolCategory, ToolContext, ToolSpec
from .provider_tools import ProviderToolRegistry
from .schemas import (
    CreateFileInput,
    EditFileInput,
    ExecuteCommandInput,
    GrepCodebaseInput,
    ListFilesInput,
    ProposeFileChangesInput,
    ReadFileInput,
    SearchFilesInput,
    SpawnAgentsInput,
    TaskCompleteInput,
    WriteFileInput,
)
from .staging import ChangeStaging

logger = logging.getLogger(__name__)

# Errors that terminate the calling run instead of becoming a tool result
FATAL_ERRORS = (SpawnNotAllowedError, MaxDepthExceededError)


def builtin_tools() -> list[ToolSpec]:
    return [
        ToolSpec(
            "list_files", "List a directory as a tree.",
            ListFilesInput, file_tools.list_files, ToolCategory.READ_ONLY,
        ),
        ToolSpec(
            "search_files", "Find files by glob pattern.",
            SearchFilesInput, file_tools.search_files, ToolCategory.READ_ONLY,
        ),
        ToolSpec(
            "grep_codebase", "Search file contents with a regular expression.",
            GrepCodebaseInput, file_tools.grep_codebase, ToolCategory.READ_ONLY,
        ),
        ToolSpec(
            "read_file", "Read a text file.",
            ReadFileInput, file_tools.read_file, ToolCategory.READ_ONLY,
        ),
        ToolSpec(
            "write_file", "Create or overwrite a file.",
            WriteFileInput, edit_tools.write_file, ToolCategory.FILE_MODIFICATION,
        ),
        ToolSpec(
            "create_file", "Create a new file; fails if it exists.",
            CreateFileInput, edit_tools.create_file, ToolCategory.FILE_MODIFICATION,
        ),
        ToolSpec(
            "edit_file", "Replace the full content of an existing file.",
            EditFileInput, edit_tools.edit_file, ToolCategory.FILE_MODIFICATION,
        ),
        ToolSpec(
            "propose_file_changes",
            "Apply ordered search/replace edits to a file (first occurrence each).",
            ProposeFileChangesInput, edit_tools.propose_file_changes,
            ToolCategory.FILE_MODIFICATION,
        ),
        ToolSpec(
            "execute_command", "Run a shell command in the workspace.",
            ExecuteCommandInput, command.execute_command, ToolCategory.COMMAND,
        ),
        ToolSpec(
            "task_complete", "Signal that the assigned task is finished.",
            TaskCompleteInput, control_tools.task_complete, ToolCategory.CONTROL,
        ),
        ToolSpec(
            "spawn_agents", "Run sub-agents in parallel and collect their results.",
            SpawnAgentsInput, control_tools.spawn_agents, ToolCategory.CONTROL,
        ),
    ]


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        loc = ".".join(str(p) for p in error.get("loc", ())) or "input"
        parts.append(f"{loc}: {error.get('msg', 'invalid')}")
    return "Validation failed: " + ", ".join(parts)


class ToolDispatcher:
    def __init__(
        self,
        config: EngineConfig,
        *,
        approval: ApprovalEngine,
        approvals: ApprovalQueue,
        staging: ChangeStaging,
        providers: ProviderToolRegistry | None = None,
        tools: Iterable[ToolSpec] | None = None,
    ) -> None:
        self._config = config
        self._approval = approval
        self._approvals = approvals
        self._staging = staging
        self._providers = providers
        self._workspace = Path(staging.workspace)
        self._tools: dict[str, ToolSpec] = {}
        for spec in builtin_tools() if tools is None else tools:
            self.register(spec)

    @property
    def approval(self) -> ApprovalEngine:
        return self._approval

    @property
    def staging(self) -> ChangeStaging:
        return self._staging

    def register(self, spec: ToolSpec) -> None:
        self._tools[spec.name] = spec

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return sorted(self._tools)

    async def definitions(
        self,
        names: Iterable[str] | None = None,
        *,
        include_providers: bool = False,
    ) -> list[dict[str, Any]]:
        """Tool definitions for a model request, restricted to *names*."""
        wanted = set(self._tools) if names is None else set(names)
        defs = [
            spec.definition()
            for name, spec in sorted(self._tools.items())
            if name in wanted
        ]
        if include_providers and self._providers is not None:
            defs.extend(
                d for d in await self._providers.definitions()
                if d["name"] not in self._tools
            )
        return defs

    async def dispatch(
        self,
        call: ToolCall,
        *,
        run_id: str = "",
        agent_type: str = "",
        cancel: CancellationToken | None = None,
        spawn: SpawnFunc | None = None,
    ) -> ToolResult:
        await fire_event(self._config.event_callback, {
            "event": "tool_requested",
            "run_id": run_id,
            "tool_use_id": call.id,
            "tool_name": call.name,
            "tool_input": call.input,
        })
        ctx = ToolContext(
            workspace=self._workspace,
            config=self._config,
            staging=self._staging,
            run_id=run_id,
            agent_type=agent_type,
            cancel=cancel,
            spawn=spawn,
        )
        try:
            result = await self._dispatch(call, ctx)
        except FATAL_ERRORS:
            raise
        except OperationCancelledError as exc:
            result = HandlerResult.fail(f"Tool call cancelled: {exc.reason}")
        except OrchestrationError as exc:
            result = HandlerResult.fail(str(exc))
        except Exception as exc:
            logger.exception("Tool %s raised", call.name)
            result = HandlerResult.fail(f"{type(exc).__name__}: {exc}")

        tool_result = ToolResult(
            tool_use_id=call.id,
            content=result.render(),
            is_error=not result.success,
        )
        await fire_event(self._config.event_callback, {
            "event": "tool_finished",
            "run_id": run_id,
            "tool_use_id": call.id,
            "tool_name": call.name,
            "is_error": tool_result.is_error,
            "content": tool_result.content,
        })
        return tool_result

    async def _dispatch(self, call: ToolCall, ctx: ToolContext) -> HandlerResult:
        spec = self._tools.get(call.name)
        if spec is None:
            if self._providers is not None and self._providers.handles(call.name):
                return await self._dispatch_provider(call, ctx)
            return HandlerResult.fail(f"Unknown tool: {call.name}")

        if not call.input and spec.input_model.has_required_fields():
            return HandlerResult.fail("Empty tool input")
        try:
            params = spec.input_model.model_validate(call.input)
        except ValidationError as exc:
            return HandlerResult.fail(_validation_message(exc))

        if spec.category is ToolCategory.FILE_MODIFICATION:
            return await self._dispatch_file_change(spec, params, call, ctx)
        if spec.category.gated:
            if not await self._gate(call, ctx):
                return HandlerResult.ok(f"Tool call rejected by user: {call.name}")
        return await spec.handler(ctx, params)

    async def _dispatch_file_change(
        self, spec: ToolSpec, params: Any, call: ToolCall, ctx: ToolContext,
    ) -> HandlerResult:
        staged = await spec.handler(ctx, params)
        change = staged.pending_change
        if not staged.success or change is None:
            return staged
        decision = self._approval.decide(call.name, call.input)
        if decision.requires_approval:
            approved = await self._approvals.request(
                ApprovalRequest(
                    run_id=ctx.run_id,
                    agent_type=ctx.agent_type,
                    tool_name=call.name,
                    tool_input=dict(call.input),
                    reason=decision.reason or "approval required",
                    change=change,
                ),
                cancel=ctx.cancel,
            )
            if not approved:
                message = self._staging.reject(change)
                return HandlerResult.ok(
                    f"{message}. The change was not applied; "
                    "propose a new change if it is still needed."
                )
        message = self._staging.apply(change)
        return HandlerResult.ok(f"{message}\n\n{change.diff}")

    async def _gate(self, call: ToolCall, ctx: ToolContext) -> bool:
        decision = self._approval.decide(call.name, call.input)
        if not decision.requires_approval:
            return True
        return await self._approvals.request(
            ApprovalRequest(
                run_id=ctx.run_id,
                agent_type=ctx.agent_type,
                tool_name=call.name,
                tool_input=dict(call.input),
                reason=decision.reason or "approval required",
            ),
            cancel=ctx.cancel,
        )

    async def _dispatch_provider(self, call: ToolCall, ctx: ToolContext) -> HandlerResult:
        assert self._providers is not None
        if not await self._gate(call, ctx):
            return HandlerResult.ok(f"Tool call rejected by user: {call.name}")
        return await self._providers.execute(call.name, dict(call.input))
