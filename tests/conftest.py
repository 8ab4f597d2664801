from __future__ import annotations

from pathlib import Path

import pytest

from indokq.engine.config import EngineConfig
from indokq.engine.tools.base import ToolContext
from indokq.engine.tools.staging import ChangeStaging


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "ws"
    root.mkdir()
    return root


@pytest.fixture
def engine_config(workspace: Path) -> EngineConfig:
    return EngineConfig(
        workspace_dir=str(workspace),
        command_timeout_seconds=5.0,
        provider_auto_connect=False,
    )


@pytest.fixture
def tool_context(workspace: Path, engine_config: EngineConfig) -> ToolContext:
    return ToolContext(
        workspace=workspace.resolve(),
        config=engine_config,
        staging=ChangeStaging(workspace),
        run_id="run-1",
        agent_type="terminus",
    )
