"""Provider configuration and catalog types."""
from __future__ import annotations

import logging
import os
import random
import string
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..errors import ProviderConfigError
from ..models import _utcnow

logger = logging.getLogger(__name__)

TOOL_NAME_PREFIX = "mcp_"


class TransportKind(str, Enum):
    STDIO = "stdio"
    HTTP = "http"
    SSE = "sse"


class ConfigOrigin(str, Enum):
    SYSTEM = "system"
    USER = "user"


def make_user_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=7))
    return f"user-{int(time.time() * 1000)}-{suffix}"


@dataclass(frozen=True)
class ProviderConfig:
    """One external tool provider. ``name`` is the unique key."""
    id: str
    name: str
    transport: TransportKind
    command: str | None = None
    args: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)
    url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    enabled: bool = True
    auto_connect: bool = True
    added_by: ConfigOrigin = ConfigOrigin.USER
    added_at: str = field(default_factory=lambda: _utcnow().isoformat())

    def validate(self) -> None:
        if not self.name or not self.name.strip():
            raise ProviderConfigError("Provider name cannot be empty")
        if "_" in self.name:
            # Tool names are mcp_{name}_{tool}; the name must not hide the split
            raise ProviderConfigError(
                f"Provider name {self.name!r} must not contain underscores"
            )
        if self.transport is TransportKind.STDIO and not self.command:
            raise ProviderConfigError(
                f"Provider {self.name}: stdio transport requires a command"
            )
        if self.transport in (TransportKind.HTTP, TransportKind.SSE) and not self.url:
            raise ProviderConfigError(
                f"Provider {self.name}: {self.transport.value} transport requires a url"
            )

    def resolved_env(self) -> dict[str, str]:
        """Environment for a stdio child; ``${VAR}`` values are read from os.environ."""
        resolved = {}
        for key, value in self.env.items():
            if value.startswith("${") and value.endswith("}"):
                resolved[key] = os.environ.get(value[2:-1], "")
            else:
                resolved[key] = value
        return resolved

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "transport": self.transport.value,
            "enabled": self.enabled,
            "autoConnect": self.auto_connect,
            "addedBy": self.added_by.value,
            "addedAt": self.added_at,
        }
        if self.command:
            data["command"] = self.command
        if self.args:
            data["args"] = list(self.args)
        if self.env:
            data["env"] = dict(self.env)
        if self.url:
            data["url"] = self.url
        if self.headers:
            data["headers"] = dict(self.headers)
        return data

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        *,
        default_origin: ConfigOrigin = ConfigOrigin.USER,
    ) -> ProviderConfig:
        try:
            transport = TransportKind(str(data.get("transport", "stdio")).lower())
        except ValueError:
            raise ProviderConfigError(
                f"Unknown transport {data.get('transport')!r}"
            ) from None
        auto_connect = data.get("autoConnect", data.get("auto_connect", True))
        added_by = data.get("addedBy", data.get("added_by", default_origin))
        config = cls(
            id=str(data.get("id") or make_user_id()),
            name=str(data.get("name", "")),
            transport=transport,
            command=data.get("command"),
            args=tuple(str(a) for a in data.get("args") or ()),
            env={str(k): str(v) for k, v in (data.get("env") or {}).items()},
            url=data.get("url"),
            headers={str(k): str(v) for k, v in (data.get("headers") or {}).items()},
            enabled=bool(data.get("enabled", True)),
            auto_connect=bool(auto_connect),
            added_by=ConfigOrigin(added_by),
            added_at=str(data.get("addedAt") or data.get("added_at") or _utcnow().isoformat()),
        )
        config.validate()
        return config


def parse_system_configs(entries: list[dict[str, Any]] | tuple[dict[str, Any], ...]) -> list[ProviderConfig]:
    """System configs from process configuration, ids ``system-{i}``.

    Malformed entries are logged and skipped.
    """
    configs: list[ProviderConfig] = []
    for index, entry in enumerate(entries):
        data = {**entry, "id": f"system-{index}", "addedBy": ConfigOrigin.SYSTEM.value}
        try:
            configs.append(ProviderConfig.from_dict(data))
        except (ProviderConfigError, ValueError) as exc:
            logger.warning("Skipping system provider #%d: %s", index, exc)
    return configs


@dataclass(frozen=True)
class ProviderTool:
    server: str
    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)

    @property
    def qualified_name(self) -> str:
        return f"{TOOL_NAME_PREFIX}{self.server}_{self.name}"

    def definition(self) -> dict[str, Any]:
        return {
            "name": self.qualified_name,
            "description": f"[{self.server}] {self.description}".strip(),
            "input_schema": self.input_schema or {"type": "object", "properties": {}},
        }


@dataclass(frozen=True)
class ProviderResource:
    server: str
    uri: str
    name: str = ""
    description: str = ""
    mime_type: str | None = None


@dataclass(frozen=True)
class ProviderStatus:
    """Per-provider entry of ``get_connected_servers``."""
    name: str
    config: ProviderConfig
    connected: bool
    tool_count: int = 0
    resource_count: int = 0
    error: str | None = None
