from __future__ import annotations

import os
from pathlib import Path

import pytest
import yaml

from indokq.engine.config import EngineConfig
from indokq.engine.models import Phase
from indokq.engine.yaml_config import load_yaml_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith("INDOKQ_"):
            monkeypatch.delenv(key)


def test_defaults() -> None:
    config = EngineConfig.from_env()
    assert config.approval_level == 2
    assert config.max_turns_per_run == 25
    assert config.command_output_limit_bytes == 10 * 1024 * 1024
    assert config.storage_path == Path(".").resolve() / ".indokq" / "mcp-servers.json"


def test_env_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("INDOKQ_WORKSPACE", str(tmp_path))
    monkeypatch.setenv("INDOKQ_APPROVAL_LEVEL", "3")
    monkeypatch.setenv("INDOKQ_EXECUTION_TIMEOUT", "12.5")
    monkeypatch.setenv("INDOKQ_MCP_AUTO_CONNECT", "no")
    monkeypatch.setenv("INDOKQ_MCP_SERVERS", '[{"name": "fs", "command": "fs-server"}, 7]')

    config = EngineConfig.from_env()

    assert config.workspace == tmp_path.resolve()
    assert config.approval_level == 3
    assert config.command_timeout_seconds == 12.5
    assert config.provider_auto_connect is False
    assert config.system_providers == ({"name": "fs", "command": "fs-server"},)


def test_invalid_env_values_fall_back(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("INDOKQ_MAX_TURNS", "many")
    monkeypatch.setenv("INDOKQ_MCP_SERVERS", "{not json")
    config = EngineConfig.from_env()
    assert config.max_turns_per_run == 25
    assert config.system_providers == ()


def test_out_of_range_approval_level_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("INDOKQ_APPROVAL_LEVEL", "9")
    with pytest.raises(ValueError):
        EngineConfig.from_env()


def test_yaml_config_sections(tmp_path: Path) -> None:
    path = tmp_path / "indokq.yaml"
    path.write_text(yaml.safe_dump({
        "engine": {"max_turns_per_run": "10", "phase_timeout_seconds": 60, "bogus": 1},
        "approval": {"level": "low", "safe_patterns": ["^make test$"]},
        "providers": {"docs": {"transport": "http", "url": "http://h/mcp"}},
        "agents": {
            "reviewer": {
                "display_name": "Reviewer",
                "system_prompt": "Review.",
                "tools": ["read_file", "task_complete"],
            },
        },
        "phases": ["prediction", "execution"],
    }), encoding="utf-8")

    loaded = load_yaml_config(path)

    assert loaded.engine.max_turns_per_run == 10
    assert loaded.engine.phase_timeout_seconds == 60.0
    assert loaded.engine.approval_level == 1
    assert loaded.engine.extra_safe_patterns == ("^make test$",)
    assert loaded.engine.system_providers == (
        {"name": "docs", "transport": "http", "url": "http://h/mcp"},
    )
    assert loaded.engine.source_path == str(path)
    [reviewer] = loaded.agents
    assert reviewer.agent_id == "reviewer"
    assert reviewer.tool_names == frozenset({"read_file", "task_complete"})
    assert loaded.phases == [Phase.PREDICTION, Phase.EXECUTION]


def test_yaml_errors(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_yaml_config(tmp_path / "missing.yaml")

    broken = tmp_path / "broken.yaml"
    broken.write_text("engine: [unclosed", encoding="utf-8")
    with pytest.raises(yaml.YAMLError):
        load_yaml_config(broken)

    scalar = tmp_path / "scalar.yaml"
    scalar.write_text("just a string\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_yaml_config(scalar)


def test_reload_rereads_source_and_keeps_callbacks(tmp_path: Path) -> None:
    path = tmp_path / "indokq.yaml"
    path.write_text("engine:\n  max_turns_per_run: 5\n", encoding="utf-8")

    async def callback(event: dict) -> None:
        return None

    config = load_yaml_config(path).engine.with_callbacks(event_callback=callback)
    path.write_text("engine:\n  max_turns_per_run: 7\n", encoding="utf-8")

    fresh = config.reload()

    assert config.max_turns_per_run == 5
    assert fresh.max_turns_per_run == 7
    assert fresh.event_callback is callback
