"""Provider connection manager.

Holds two config sets: system (from process configuration, read-only)
and user (persisted through ProviderStorage, mutable). The merged view
is keyed by name with user entries overriding system ones; only enabled
entries are exposed.

At most one live connection exists per provider name. Operations on the
same name are serialized by a per-name lock; different names proceed
concurrently. Failures are isolated per provider and recorded in that
provider's status, never raised out of the bulk operations.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..errors import (
    ProviderAlreadyConnectedError,
    ProviderConfigError,
    ProviderConnectionError,
    ProviderNotConnectedError,
    ProviderNotFoundError,
)
from .client import (
    ProviderCallResult,
    ProviderClient,
    ProviderClientProtocol,
    is_method_not_found,
)
from .storage import ProviderStorage
from .types import (
    ConfigOrigin,
    ProviderConfig,
    ProviderResource,
    ProviderStatus,
    ProviderTool,
    make_user_id,
    parse_system_configs,
)

if TYPE_CHECKING:
    from ..config import EngineConfig

logger = logging.getLogger(__name__)

ClientFactory = Callable[[ProviderConfig], ProviderClientProtocol]


@dataclass
class _Connection:
    config: ProviderConfig
    client: ProviderClientProtocol
    tools: list[ProviderTool] | None = None
    resources: list[ProviderResource] | None = None


class ProviderConnectionManager:
    def __init__(
        self,
        storage: ProviderStorage | None = None,
        system_configs: Iterable[ProviderConfig] = (),
        *,
        client_factory: ClientFactory | None = None,
        connect_timeout: float = 30.0,
        call_timeout: float = 30.0,
    ) -> None:
        self._storage = storage
        self._system_configs = list(system_configs)
        self._user_configs: list[ProviderConfig] = []
        self._client_factory = client_factory or self._default_factory
        self._connect_timeout = connect_timeout
        self._call_timeout = call_timeout
        self._connections: dict[str, _Connection] = {}
        self._errors: dict[str, str] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        *,
        client_factory: ClientFactory | None = None,
    ) -> ProviderConnectionManager:
        manager = cls(
            ProviderStorage(config.storage_path),
            parse_system_configs(config.system_providers),
            client_factory=client_factory,
            connect_timeout=config.provider_connect_timeout_seconds,
            call_timeout=config.provider_tool_timeout_seconds,
        )
        manager.load()
        return manager

    def _default_factory(self, config: ProviderConfig) -> ProviderClientProtocol:
        return ProviderClient(
            config,
            connect_timeout=self._connect_timeout,
            call_timeout=self._call_timeout,
        )

    def _lock(self, name: str) -> asyncio.Lock:
        lock = self._locks.get(name)
        if lock is None:
            lock = self._locks[name] = asyncio.Lock()
        return lock

    # ── Configuration ──────────────────────────────────────────

    def load(self) -> None:
        """Read user configs from storage."""
        self._user_configs = self._storage.load() if self._storage else []
        logger.info(
            "Provider configs loaded: %d system, %d user",
            len(self._system_configs), len(self._user_configs),
        )

    def get_all_configs(self) -> list[ProviderConfig]:
        """Merged, enabled configs; user entries override system ones by name."""
        merged: dict[str, ProviderConfig] = {}
        for config in self._system_configs:
            merged[config.name] = config
        for config in self._user_configs:
            merged[config.name] = config
        return [c for c in merged.values() if c.enabled]

    def get_config(self, name: str) -> ProviderConfig:
        for config in self.get_all_configs():
            if config.name == name:
                return config
        raise ProviderNotFoundError(name)

    def is_connected(self, name: str) -> bool:
        return self._live(name) is not None

    def connected_names(self) -> list[str]:
        return [name for name in list(self._connections) if self._live(name)]

    def last_error(self, name: str) -> str | None:
        return self._errors.get(name)

    # ── Connections ────────────────────────────────────────────

    async def connect_server(self, config: ProviderConfig) -> None:
        """Connect one provider. Raises if already connected or unreachable."""
        async with self._lock(config.name):
            await self._connect_locked(config)

    async def _connect_locked(self, config: ProviderConfig) -> None:
        if self._live(config.name) is not None:
            raise ProviderAlreadyConnectedError(config.name)
        client = self._client_factory(config)
        try:
            await client.connect()
        except ProviderConnectionError as exc:
            self._errors[config.name] = exc.reason
            raise
        except Exception as exc:
            self._errors[config.name] = str(exc) or type(exc).__name__
            raise ProviderConnectionError(config.name, self._errors[config.name]) from exc
        self._connections[config.name] = _Connection(config=config, client=client)
        self._errors.pop(config.name, None)
        logger.info("Provider %s connected", config.name)

    async def disconnect_server(self, name: str) -> bool:
        """Disconnect *name*. Returns False if it was not connected."""
        async with self._lock(name):
            return await self._disconnect_locked(name)

    async def _disconnect_locked(self, name: str) -> bool:
        connection = self._connections.pop(name, None)
        if connection is None:
            return False
        try:
            await connection.client.close()
        finally:
            logger.info("Provider %s disconnected", name)
        return True

    async def _connect_quietly(self, config: ProviderConfig) -> str | None:
        try:
            await self.connect_server(config)
        except ProviderAlreadyConnectedError:
            return None
        except Exception as exc:
            logger.warning("Provider %s failed to connect: %s", config.name, exc)
            return self._errors.get(config.name, str(exc))
        return None

    async def connect_all(self) -> dict[str, str | None]:
        """Connect every auto-connect config concurrently.

        Returns provider name -> error (None on success). Never raises
        for an individual provider.
        """
        eligible = [
            c for c in self.get_all_configs()
            if c.auto_connect and self._live(c.name) is None
        ]
        if not eligible:
            return {}
        outcomes = await asyncio.gather(
            *(self._connect_quietly(c) for c in eligible)
        )
        results = {c.name: err for c, err in zip(eligible, outcomes)}
        failed = sum(1 for err in outcomes if err)
        logger.info(
            "connect_all: %d connected, %d failed",
            len(eligible) - failed, failed,
        )
        return results

    async def _disconnect_quietly(self, name: str) -> str | None:
        try:
            await self.disconnect_server(name)
        except Exception as exc:
            logger.warning("Provider %s failed to disconnect cleanly: %s", name, exc)
            return str(exc) or type(exc).__name__
        return None

    async def disconnect_all(self) -> dict[str, str | None]:
        names = list(self._connections)
        outcomes = await asyncio.gather(
            *(self._disconnect_quietly(n) for n in names)
        )
        return dict(zip(names, outcomes))

    async def shutdown(self) -> None:
        await self.disconnect_all()

    # ── Catalogs ───────────────────────────────────────────────

    def _live(self, name: str) -> _Connection | None:
        """The connection for *name*, dropping it first if its session died."""
        connection = self._connections.get(name)
        if connection is None or connection.client.connected:
            return connection
        reason = connection.client.lost_reason or "connection lost"
        self._connections.pop(name, None)
        self._errors[name] = reason
        logger.warning("Provider %s dropped: %s", name, reason)
        return None

    def _require(self, name: str) -> _Connection:
        connection = self._live(name)
        if connection is None:
            raise ProviderNotConnectedError(name)
        return connection

    async def get_server_tools(self, name: str) -> list[ProviderTool]:
        connection = self._require(name)
        if connection.tools is None:
            connection.tools = await connection.client.list_tools()
        return list(connection.tools)

    async def get_server_resources(self, name: str) -> list[ProviderResource]:
        """Resources of *name*; a provider without resource support has none."""
        connection = self._require(name)
        if connection.resources is None:
            try:
                connection.resources = await connection.client.list_resources()
            except Exception as exc:
                if not is_method_not_found(exc):
                    raise
                logger.debug("Provider %s does not support resources", name)
                connection.resources = []
        return list(connection.resources)

    async def get_all_tools(self) -> list[ProviderTool]:
        tools: list[ProviderTool] = []
        for name in self.connected_names():
            try:
                tools.extend(await self.get_server_tools(name))
            except Exception as exc:
                self._errors[name] = str(exc) or type(exc).__name__
                logger.warning("Provider %s tool listing failed: %s", name, exc)
                self._live(name)
        return tools

    def clear_cache(self, name: str | None = None) -> None:
        targets = [name] if name else list(self._connections)
        for target in targets:
            connection = self._connections.get(target)
            if connection is not None:
                connection.tools = None
                connection.resources = None

    async def get_connected_servers(self) -> list[ProviderStatus]:
        """Status for every configured (enabled) provider.

        A provider whose session died since the last check is dropped
        here and reported as disconnected with the loss reason.
        """
        statuses: list[ProviderStatus] = []
        for config in self.get_all_configs():
            if self._live(config.name) is None:
                statuses.append(self._disconnected_status(config))
                continue
            error: str | None = None
            tool_count = resource_count = 0
            try:
                tool_count = len(await self.get_server_tools(config.name))
            except Exception as exc:
                error = f"Tool listing failed: {str(exc) or type(exc).__name__}"
            try:
                resource_count = len(await self.get_server_resources(config.name))
            except Exception as exc:
                error = error or f"Resource listing failed: {str(exc) or type(exc).__name__}"
            if self._live(config.name) is None:
                statuses.append(self._disconnected_status(config))
                continue
            if error:
                logger.warning("Provider %s catalog error: %s", config.name, error)
            statuses.append(ProviderStatus(
                name=config.name,
                config=config,
                connected=True,
                tool_count=tool_count,
                resource_count=resource_count,
                error=error,
            ))
        return statuses

    def _disconnected_status(self, config: ProviderConfig) -> ProviderStatus:
        return ProviderStatus(
            name=config.name,
            config=config,
            connected=False,
            error=self._errors.get(config.name),
        )

    async def execute_tool_call(
        self, name: str, tool: str, arguments: dict[str, Any],
    ) -> ProviderCallResult:
        connection = self._require(name)
        logger.debug("Calling %s on provider %s", tool, name)
        try:
            return await connection.client.call_tool(tool, arguments)
        finally:
            self._live(name)

    async def read_resource(self, name: str, uri: str) -> str:
        connection = self._require(name)
        try:
            return await connection.client.read_resource(uri)
        finally:
            self._live(name)

    # ── User config management ─────────────────────────────────

    async def add_server(
        self, data: dict[str, Any] | ProviderConfig,
    ) -> tuple[ProviderConfig, str | None]:
        """Persist a new user provider, then auto-connect it if configured.

        Returns the stored config and the connection error (if any). A
        failed connection never loses the stored config.
        """
        if self._storage is None:
            raise ProviderConfigError("No provider storage configured")
        if isinstance(data, ProviderConfig):
            config = dataclasses.replace(
                data, id=make_user_id(), added_by=ConfigOrigin.USER,
            )
            config.validate()
        else:
            config = ProviderConfig.from_dict({
                **data, "id": make_user_id(), "addedBy": ConfigOrigin.USER.value,
            })
        self._storage.add(config)
        self._user_configs.append(config)
        logger.info("Provider %s added (%s)", config.name, config.id)

        error: str | None = None
        if config.enabled and config.auto_connect:
            async with self._lock(config.name):
                if config.name in self._connections:
                    # A system entry with this name is live; swap to the override
                    await self._disconnect_locked(config.name)
                try:
                    await self._connect_locked(config)
                except Exception as exc:
                    error = self._errors.get(config.name, str(exc))
                    logger.warning(
                        "Provider %s stored but not connected: %s", config.name, error,
                    )
        return config, error

    def _find_user_config(self, key: str) -> ProviderConfig:
        for config in self._user_configs:
            if config.id == key or config.name == key:
                return config
        for config in self._system_configs:
            if config.id == key or config.name == key:
                raise ProviderConfigError(
                    f"Provider {config.name} is a system provider and cannot be modified"
                )
        raise ProviderNotFoundError(key)

    async def remove_server(self, key: str) -> ProviderConfig:
        """Remove a user provider by id or name.

        Order: disconnect, delete from storage, drop from memory. A crash
        part-way leaves at worst a disconnected but still configured entry.
        """
        config = self._find_user_config(key)
        async with self._lock(config.name):
            try:
                await self._disconnect_locked(config.name)
            except Exception as exc:
                logger.warning(
                    "Provider %s failed to disconnect cleanly: %s", config.name, exc,
                )
            if self._storage is not None:
                self._storage.remove(config.id)
            self._user_configs = [c for c in self._user_configs if c.id != config.id]
            self._errors.pop(config.name, None)
        logger.info("Provider %s removed", config.name)
        return config

    async def update_server(self, key: str, **changes: Any) -> ProviderConfig:
        """Update a user provider; a live connection is re-established."""
        config = self._find_user_config(key)
        if self._storage is None:
            raise ProviderConfigError("No provider storage configured")
        updated = self._storage.update(config.id, **changes)
        self._user_configs = [
            updated if c.id == config.id else c for c in self._user_configs
        ]
        async with self._lock(updated.name):
            was_connected = await self._disconnect_locked(updated.name)
            if was_connected and updated.enabled:
                try:
                    await self._connect_locked(updated)
                except Exception as exc:
                    logger.warning("Provider %s reconnect failed: %s", updated.name, exc)
        return updated
