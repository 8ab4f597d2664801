"""Persistent storage for user-added provider configs.

File layout (``<workspace>/.indokq/mcp-servers.json``)::

    {"version": "1.0.0", "servers": [{...}, ...]}

Every mutation rewrites the whole file atomically. System configs never
pass through here.
"""
from __future__ import annotations

import dataclasses
import json
import logging
from pathlib import Path
from typing import Any

from indokq.shared.durable_write import atomic_write_json

from ..errors import ProviderConfigError, ProviderNotFoundError
from .types import ConfigOrigin, ProviderConfig

logger = logging.getLogger(__name__)

STORAGE_VERSION = "1.0.0"

_UPDATABLE_FIELDS = frozenset({
    "command", "args", "env", "url", "headers", "enabled", "auto_connect",
})


class ProviderStorage:
    """Load and save user provider configs."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> list[ProviderConfig]:
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Failed to load provider storage %s: %s", self._path, exc)
            return []
        servers = data.get("servers", []) if isinstance(data, dict) else []
        configs: list[ProviderConfig] = []
        for entry in servers:
            if not isinstance(entry, dict):
                continue
            try:
                configs.append(ProviderConfig.from_dict(
                    {**entry, "addedBy": ConfigOrigin.USER.value}
                ))
            except (ProviderConfigError, ValueError) as exc:
                logger.warning(
                    "Skipping stored provider %r: %s", entry.get("name"), exc,
                )
        return configs

    def save(self, configs: list[ProviderConfig]) -> None:
        payload: dict[str, Any] = {
            "version": STORAGE_VERSION,
            "servers": [c.to_dict() for c in configs],
        }
        atomic_write_json(self._path, payload)
        logger.debug("Saved %d provider configs to %s", len(configs), self._path)

    def add(self, config: ProviderConfig) -> None:
        configs = self.load()
        if any(c.name == config.name for c in configs):
            raise ProviderConfigError(
                f"A provider named {config.name!r} already exists"
            )
        configs.append(config)
        self.save(configs)

    def remove(self, config_id: str) -> ProviderConfig:
        configs = self.load()
        for index, config in enumerate(configs):
            if config.id == config_id:
                del configs[index]
                self.save(configs)
                return config
        raise ProviderNotFoundError(config_id)

    def update(self, config_id: str, **changes: Any) -> ProviderConfig:
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ProviderConfigError(
                f"Cannot update fields: {', '.join(sorted(unknown))}"
            )
        if "args" in changes:
            changes["args"] = tuple(changes["args"])
        configs = self.load()
        for index, config in enumerate(configs):
            if config.id == config_id:
                updated = dataclasses.replace(config, **changes)
                updated.validate()
                configs[index] = updated
                self.save(configs)
                return updated
        raise ProviderNotFoundError(config_id)
