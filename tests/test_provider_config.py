from __future__ import annotations

import json
from pathlib import Path

import pytest

from indokq.engine.errors import ProviderConfigError, ProviderNotFoundError
from indokq.engine.mcp.storage import ProviderStorage
from indokq.engine.mcp.types import (
    ConfigOrigin,
    ProviderConfig,
    TransportKind,
    parse_system_configs,
)


def _config(name: str = "docs", **extra) -> ProviderConfig:
    return ProviderConfig.from_dict({"name": name, "transport": "stdio", "command": "docs-server", **extra})


def test_name_with_underscore_is_rejected() -> None:
    with pytest.raises(ProviderConfigError):
        _config("my_docs")


def test_transport_requirements() -> None:
    with pytest.raises(ProviderConfigError):
        ProviderConfig.from_dict({"name": "a", "transport": "stdio"})
    with pytest.raises(ProviderConfigError):
        ProviderConfig.from_dict({"name": "a", "transport": "http"})
    with pytest.raises(ProviderConfigError):
        ProviderConfig.from_dict({"name": "a", "transport": "carrier-pigeon", "url": "x"})
    sse = ProviderConfig.from_dict({"name": "a", "transport": "SSE", "url": "http://h/sse"})
    assert sse.transport is TransportKind.SSE


def test_env_placeholders_resolve_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DOCS_TOKEN", "s3cret")
    config = _config(env={"TOKEN": "${DOCS_TOKEN}", "MODE": "fast", "GONE": "${NOT_SET_ANYWHERE}"})
    assert config.resolved_env() == {"TOKEN": "s3cret", "MODE": "fast", "GONE": ""}


def test_to_dict_uses_camel_case_keys() -> None:
    data = _config(args=["--port", "1"]).to_dict()
    assert data["autoConnect"] is True
    assert data["addedBy"] == "user"
    assert data["args"] == ["--port", "1"]
    assert "url" not in data


def test_system_configs_get_positional_ids_and_skip_invalid() -> None:
    configs = parse_system_configs([
        {"name": "fs", "command": "fs-server"},
        {"name": "bad_name", "command": "x"},
        {"name": "web", "transport": "http", "url": "http://h/mcp"},
    ])
    assert [(c.id, c.name) for c in configs] == [("system-0", "fs"), ("system-2", "web")]
    assert all(c.added_by is ConfigOrigin.SYSTEM for c in configs)


def test_storage_round_trip(tmp_path: Path) -> None:
    storage = ProviderStorage(tmp_path / "nested" / "servers.json")
    assert storage.load() == []
    config = _config()
    storage.add(config)

    raw = json.loads(storage.path.read_text(encoding="utf-8"))
    assert raw["version"] == "1.0.0"
    assert storage.load()[0].id == config.id

    with pytest.raises(ProviderConfigError):
        storage.add(_config())


def test_storage_update_and_remove(tmp_path: Path) -> None:
    storage = ProviderStorage(tmp_path / "servers.json")
    config = _config()
    storage.add(config)

    updated = storage.update(config.id, args=["--verbose"], enabled=False)
    assert updated.args == ("--verbose",)
    assert storage.load()[0].enabled is False

    with pytest.raises(ProviderConfigError):
        storage.update(config.id, name="renamed")

    storage.remove(config.id)
    assert storage.load() == []
    with pytest.raises(ProviderNotFoundError):
        storage.remove(config.id)


def test_storage_tolerates_bad_entries(tmp_path: Path) -> None:
    path = tmp_path / "servers.json"
    path.write_text(json.dumps({
        "version": "1.0.0",
        "servers": [
            {"name": "ok", "transport": "http", "url": "http://h"},
            {"name": "", "transport": "http", "url": "http://h"},
            "junk",
        ],
    }), encoding="utf-8")
    assert [c.name for c in ProviderStorage(path).load()] == ["ok"]

    path.write_text("{not json", encoding="utf-8")
    assert ProviderStorage(path).load() == []
