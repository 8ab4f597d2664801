from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from indokq.engine.config import EngineConfig
from indokq.engine.mcp.client import ProviderCallResult
from indokq.engine.mcp.manager import ProviderConnectionManager
from indokq.engine.mcp.types import ProviderTool, parse_system_configs
from indokq.engine.models import ToolCall
from indokq.engine.tools.approval import ApprovalEngine, ApprovalLevel
from indokq.engine.tools.approval_queue import ApprovalQueue
from indokq.engine.tools.dispatcher import ToolDispatcher
from indokq.engine.tools.provider_tools import ProviderToolRegistry, parse_tool_name
from indokq.engine.tools.staging import ChangeStaging


class EchoClient:
    def __init__(self, config) -> None:
        self.config = config
        self.connected = True
        self.lost_reason = None

    async def connect(self) -> None:
        return None

    async def list_tools(self) -> list[ProviderTool]:
        return [ProviderTool(self.config.name, "lookup_symbol", "Find a symbol")]

    async def list_resources(self):
        return []

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> ProviderCallResult:
        if arguments.get("explode"):
            return ProviderCallResult("stack trace", is_error=True)
        return ProviderCallResult(f"{name} -> {arguments.get('symbol')}")

    async def read_resource(self, uri: str) -> str:
        return ""

    async def close(self) -> None:
        return None


async def _registry() -> ProviderToolRegistry:
    manager = ProviderConnectionManager(
        None,
        parse_system_configs([{"name": "code", "command": "code-server"}]),
        client_factory=EchoClient,
    )
    await manager.connect_all()
    return ProviderToolRegistry(manager)


def test_parse_tool_name_splits_on_first_underscore() -> None:
    assert parse_tool_name("mcp_code_lookup_symbol") == ("code", "lookup_symbol")
    assert parse_tool_name("read_file") is None
    assert parse_tool_name("mcp_") is None


@pytest.mark.asyncio
async def test_registry_executes_connected_provider_tools() -> None:
    registry = await _registry()
    assert registry.handles("mcp_code_lookup_symbol")
    assert not registry.handles("mcp_other_lookup")

    defs = await registry.definitions()
    assert defs[0]["name"] == "mcp_code_lookup_symbol"
    assert defs[0]["description"] == "[code] Find a symbol"

    ok = await registry.execute("mcp_code_lookup_symbol", {"symbol": "main"})
    assert ok.success and ok.output == "lookup_symbol -> main"

    failed = await registry.execute("mcp_code_lookup_symbol", {"explode": True})
    assert not failed.success
    assert failed.output == "stack trace"


@pytest.mark.asyncio
async def test_dispatcher_gates_provider_tools_at_medium(workspace: Path) -> None:
    asked: list[str] = []

    async def approve(request) -> bool:
        asked.append(request.reason)
        return True

    config = EngineConfig(workspace_dir=str(workspace))
    dispatcher = ToolDispatcher(
        config,
        approval=ApprovalEngine(ApprovalLevel.MEDIUM),
        approvals=ApprovalQueue(callback=approve),
        staging=ChangeStaging(workspace),
        providers=await _registry(),
    )

    result = await dispatcher.dispatch(
        ToolCall("t1", "mcp_code_lookup_symbol", {"symbol": "run"}),
    )

    assert result.content == "lookup_symbol -> run"
    assert asked == ["External provider tool"]
    defs = await dispatcher.definitions(["read_file"], include_providers=True)
    assert [d["name"] for d in defs] == ["read_file", "mcp_code_lookup_symbol"]
