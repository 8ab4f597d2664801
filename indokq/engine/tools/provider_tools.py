"""Bridge between provider catalogs and the tool dispatcher.

Provider tools are exposed to models as ``mcp_{provider}_{tool}``.
Provider names cannot contain underscores, so the first underscore
after the prefix separates provider from tool.
"""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Any

from ..errors import ProviderError
from ..mcp.manager import ProviderConnectionManager
from .base import HandlerResult

logger = logging.getLogger(__name__)

_QUALIFIED = re.compile(r"^mcp_([^_]+)_(.+)$")


def parse_tool_name(name: str) -> tuple[str, str] | None:
    """Split ``mcp_{provider}_{tool}``; None if *name* is not namespaced."""
    match = _QUALIFIED.match(name)
    if match is None:
        return None
    return match.group(1), match.group(2)


class ProviderToolRegistry:
    def __init__(self, manager: ProviderConnectionManager) -> None:
        self._manager = manager

    @property
    def manager(self) -> ProviderConnectionManager:
        return self._manager

    def handles(self, name: str) -> bool:
        parsed = parse_tool_name(name)
        return parsed is not None and self._manager.is_connected(parsed[0])

    async def definitions(self) -> list[dict[str, Any]]:
        tools = await self._manager.get_all_tools()
        return [tool.definition() for tool in tools]

    async def execute(self, name: str, arguments: dict[str, Any]) -> HandlerResult:
        parsed = parse_tool_name(name)
        if parsed is None:
            return HandlerResult.fail(f"Not a provider tool: {name}")
        provider, tool = parsed
        try:
            result = await self._manager.execute_tool_call(provider, tool, arguments)
        except ProviderError as exc:
            return HandlerResult.fail(str(exc))
        except asyncio.TimeoutError:
            return HandlerResult.fail(f"Provider {provider} timed out running {tool}")
        if result.is_error:
            return HandlerResult.fail(
                f"Provider {provider} reported an error for {tool}", result.content,
            )
        return HandlerResult.ok(result.content or "(no output)")
