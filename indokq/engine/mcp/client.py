"""Single-provider MCP client session.

The transport and ClientSession are opened and closed inside one
dedicated lifecycle task, since the SDK's anyio cancel scopes must be
exited by the task that entered them. Callers talk to the session from
any task; ``close`` signals the lifecycle task to unwind.

A transport that dies under a live session (the server process exits,
the HTTP stream drops) marks the client lost: ``connected`` turns False
and ``lost_reason`` says why, so the manager can drop the connection.
"""
from __future__ import annotations

import asyncio
import logging
import os
from contextlib import AsyncExitStack
from dataclasses import dataclass
from typing import Any, Protocol

import anyio
from mcp import ClientSession, StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamablehttp_client
from mcp.shared.exceptions import McpError
from mcp.types import METHOD_NOT_FOUND
from pydantic import AnyUrl

from ..errors import ProviderConnectionError, ProviderNotConnectedError
from .types import ProviderConfig, ProviderResource, ProviderTool, TransportKind

logger = logging.getLogger(__name__)

CLOSE_TIMEOUT_SECONDS = 5.0

# Raised by the SDK's memory streams once the transport is gone
TRANSPORT_CLOSED_ERRORS: tuple[type[BaseException], ...] = (
    anyio.ClosedResourceError,
    anyio.BrokenResourceError,
    anyio.EndOfStream,
)


def is_method_not_found(exc: BaseException) -> bool:
    """True when a provider answered "method not supported"."""
    if isinstance(exc, McpError) and exc.error.code == METHOD_NOT_FOUND:
        return True
    text = str(exc)
    return str(METHOD_NOT_FOUND) in text or "Method not found" in text


def _is_connection_closed(exc: BaseException) -> bool:
    if isinstance(exc, TRANSPORT_CLOSED_ERRORS):
        return True
    return isinstance(exc, McpError) and "Connection closed" in str(exc)


@dataclass(frozen=True)
class ProviderCallResult:
    content: str
    is_error: bool = False


class ProviderClientProtocol(Protocol):
    """What the connection manager needs from a provider client."""

    @property
    def connected(self) -> bool: ...

    @property
    def lost_reason(self) -> str | None: ...

    async def connect(self) -> None: ...

    async def list_tools(self) -> list[ProviderTool]: ...

    async def list_resources(self) -> list[ProviderResource]: ...

    async def call_tool(
        self, name: str, arguments: dict[str, Any],
    ) -> ProviderCallResult: ...

    async def read_resource(self, uri: str) -> str: ...

    async def close(self) -> None: ...


def _render_content(items: list[Any]) -> str:
    parts: list[str] = []
    for item in items:
        text = getattr(item, "text", None)
        if text is not None:
            parts.append(text)
            continue
        kind = getattr(item, "type", "content")
        mime = getattr(item, "mimeType", None)
        uri = getattr(getattr(item, "resource", None), "uri", None)
        label = uri or mime or ""
        parts.append(f"[{kind}{': ' + str(label) if label else ''}]")
    return "\n".join(parts)


class ProviderClient:
    def __init__(
        self,
        config: ProviderConfig,
        *,
        connect_timeout: float = 30.0,
        call_timeout: float = 30.0,
    ) -> None:
        self.config = config
        self._connect_timeout = connect_timeout
        self._call_timeout = call_timeout
        self._session: ClientSession | None = None
        self._task: asyncio.Task[None] | None = None
        self._ready = asyncio.Event()
        self._closing = asyncio.Event()
        self._lost: str | None = None

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def connected(self) -> bool:
        return (
            self._lost is None
            and self._session is not None
            and self._task is not None
            and not self._task.done()
        )

    @property
    def lost_reason(self) -> str | None:
        return self._lost

    async def connect(self) -> None:
        if self._task is not None:
            raise ProviderConnectionError(self.name, "client already started")
        self._task = asyncio.create_task(
            self._lifecycle(), name=f"mcp-provider-{self.name}"
        )
        self._task.add_done_callback(self._on_lifecycle_done)
        ready = asyncio.create_task(self._ready.wait())
        try:
            done, _ = await asyncio.wait(
                {ready, self._task},
                timeout=self._connect_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            ready.cancel()
        if self._ready.is_set():
            logger.info(
                "Connected to provider %s (%s)", self.name, self.config.transport.value,
            )
            return
        if self._task in done:
            exc = self._task.exception()
            raise ProviderConnectionError(self.name, str(exc) or type(exc).__name__) from exc
        # Stuck in the handshake: nothing to unwind gracefully
        self._task.cancel()
        await asyncio.wait({self._task})
        raise ProviderConnectionError(
            self.name, f"timed out after {self._connect_timeout}s",
        )

    def _on_lifecycle_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if not self._ready.is_set() or self._closing.is_set():
            if exc is not None:
                logger.debug("Provider %s session ended with: %r", self.name, exc)
            return
        self._mark_lost((str(exc) or type(exc).__name__) if exc else "session ended")

    def _mark_lost(self, reason: str) -> None:
        if self._lost is not None:
            return
        self._lost = reason
        logger.warning("Provider %s connection lost: %s", self.name, reason)
        self._closing.set()

    async def _lifecycle(self) -> None:
        if self.config.transport is TransportKind.HTTP:
            try:
                await self._run_session(TransportKind.HTTP)
                return
            except Exception as exc:
                if self._ready.is_set():
                    raise
                logger.info(
                    "Streamable HTTP failed for %s (%s); falling back to SSE",
                    self.name, exc,
                )
            await self._run_session(TransportKind.SSE)
        else:
            await self._run_session(self.config.transport)

    async def _run_session(self, transport: TransportKind) -> None:
        async with AsyncExitStack() as stack:
            read, write = await self._open_transport(stack, transport)
            session = await stack.enter_async_context(ClientSession(read, write))
            await session.initialize()
            self._session = session
            self._ready.set()
            try:
                await self._closing.wait()
            finally:
                self._session = None

    async def _open_transport(
        self, stack: AsyncExitStack, transport: TransportKind,
    ) -> tuple[Any, Any]:
        cfg = self.config
        if transport is TransportKind.STDIO:
            params = StdioServerParameters(
                command=cfg.command or "",
                args=list(cfg.args),
                env={**os.environ, **cfg.resolved_env()},
            )
            read, write = await stack.enter_async_context(stdio_client(params))
            return read, write
        if transport is TransportKind.HTTP:
            read, write, _ = await stack.enter_async_context(
                streamablehttp_client(cfg.url or "", headers=cfg.headers or None)
            )
            return read, write
        read, write = await stack.enter_async_context(
            sse_client(cfg.url or "", headers=cfg.headers or None)
        )
        return read, write

    async def _request(self, method: str, *args: Any) -> Any:
        """Call a session method under the call timeout.

        A closed transport marks the client lost and surfaces as
        ProviderConnectionError.
        """
        if self._session is None or self._lost is not None:
            raise ProviderNotConnectedError(self.name)
        try:
            return await asyncio.wait_for(
                getattr(self._session, method)(*args), self._call_timeout,
            )
        except Exception as exc:
            if not _is_connection_closed(exc):
                raise
            reason = str(exc) or type(exc).__name__
            self._mark_lost(reason)
            raise ProviderConnectionError(self.name, reason) from exc

    async def list_tools(self) -> list[ProviderTool]:
        result = await self._request("list_tools")
        return [
            ProviderTool(
                server=self.name,
                name=tool.name,
                description=tool.description or "",
                input_schema=dict(tool.inputSchema or {}),
            )
            for tool in result.tools
        ]

    async def list_resources(self) -> list[ProviderResource]:
        result = await self._request("list_resources")
        return [
            ProviderResource(
                server=self.name,
                uri=str(resource.uri),
                name=resource.name or "",
                description=resource.description or "",
                mime_type=resource.mimeType,
            )
            for resource in result.resources
        ]

    async def call_tool(
        self, name: str, arguments: dict[str, Any],
    ) -> ProviderCallResult:
        result = await self._request("call_tool", name, arguments)
        return ProviderCallResult(
            content=_render_content(list(result.content or [])),
            is_error=bool(result.isError),
        )

    async def read_resource(self, uri: str) -> str:
        result = await self._request("read_resource", AnyUrl(uri))
        return _render_content(list(result.contents or []))

    async def close(self) -> None:
        """Unwind the session.

        Errors raised while unwinding propagate, except after the
        connection was already lost.
        """
        task = self._task
        if task is None:
            return
        self._closing.set()
        try:
            await asyncio.wait_for(asyncio.shield(task), CLOSE_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("Provider %s did not close in time; cancelling", self.name)
            task.cancel()
            await asyncio.wait({task})
        except Exception as exc:
            if self._lost is None:
                raise
            logger.debug("Provider %s unwound after loss: %s", self.name, exc)
        finally:
            self._session = None
        logger.info("Disconnected from provider %s", self.name)
