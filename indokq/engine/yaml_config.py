"""YAML configuration loader.

Example ``indokq.yaml``::

    engine:
      approval_level: 2
      max_turns_per_run: 25
      phase_timeout_seconds: 300
      command_timeout_seconds: 30

    approval:
      level: medium          # overrides engine.approval_level
      safe_patterns: ["^make test$"]
      dangerous_patterns: ["\\bterraform\\s+apply\\b"]

    providers:               # system providers (read-only at runtime)
      - name: filesystem
        transport: stdio
        command: npx
        args: ["-y", "@modelcontextprotocol/server-filesystem", "."]

    agents:                  # extra agent definitions
      reviewer:
        display_name: Reviewer
        system_prompt: "Review the proposed changes."
        tools: [read_file, grep_codebase, task_complete]

    phases: [prediction, intelligence, synthesis, execution]

Environment variables are applied on top of the result by the caller
(``with_env_overrides``).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .config import EngineConfig
from .models import AgentDefinition, Phase
from .tools.approval import ApprovalLevel

logger = logging.getLogger(__name__)

_TUPLE_FIELDS = {"extra_safe_patterns", "extra_dangerous_patterns", "system_providers"}
_CALLBACK_FIELDS = {"event_callback", "approval_callback", "source_path"}


@dataclass
class OrchestrationConfig:
    """Parsed YAML configuration."""
    engine: EngineConfig = field(default_factory=EngineConfig)
    agents: list[AgentDefinition] = field(default_factory=list)
    phases: list[Phase] | None = None


def _engine_kwargs(engine_raw: dict[str, Any]) -> dict[str, Any]:
    known = {f.name for f in fields(EngineConfig)}
    kwargs: dict[str, Any] = {}
    for key, value in engine_raw.items():
        if key not in known or key in _CALLBACK_FIELDS:
            logger.warning("load_yaml_config: ignoring unknown engine key %r", key)
            continue
        default = getattr(EngineConfig, key, None)
        if key in _TUPLE_FIELDS:
            kwargs[key] = tuple(value or ())
        elif isinstance(default, bool):
            kwargs[key] = bool(value)
        elif isinstance(default, int):
            kwargs[key] = int(value)
        elif isinstance(default, float):
            kwargs[key] = float(value)
        else:
            kwargs[key] = value if value is None else str(value)
    return kwargs


def _parse_agent(agent_id: str, raw: dict[str, Any]) -> AgentDefinition:
    return AgentDefinition(
        agent_id=agent_id,
        display_name=str(raw.get("display_name", agent_id.title())),
        system_prompt=str(raw.get("system_prompt", "")),
        tool_names=frozenset(raw.get("tools", []) or []),
        spawnable_agents=tuple(raw.get("spawnable_agents", []) or []),
        spawner_prompt=str(raw.get("spawner_prompt", "")),
        input_fields=tuple(raw.get("input_fields", []) or []),
        use_provider_tools=bool(raw.get("use_provider_tools", False)),
    )


def load_yaml_config(path: str | Path) -> OrchestrationConfig:
    """Load and parse a YAML config file."""
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error("load_yaml_config: config file not found at %s", path.absolute())
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top level must be a mapping")

    logger.info(
        "Parsed YAML config %s (sections: %s)",
        path.name, ", ".join(sorted(raw)) or "(empty)",
    )

    # ── Engine ─────────────────────────────────────────────────
    engine_kwargs = _engine_kwargs(raw.get("engine") or {})

    approval_raw = raw.get("approval") or {}
    if "level" in approval_raw:
        engine_kwargs["approval_level"] = int(
            ApprovalLevel.coerce(approval_raw["level"])
        )
    if approval_raw.get("safe_patterns"):
        engine_kwargs["extra_safe_patterns"] = tuple(approval_raw["safe_patterns"])
    if approval_raw.get("dangerous_patterns"):
        engine_kwargs["extra_dangerous_patterns"] = tuple(
            approval_raw["dangerous_patterns"]
        )

    # ── Providers ──────────────────────────────────────────────
    providers_raw = raw.get("providers") or []
    if isinstance(providers_raw, dict):
        # Mapping form: name -> settings
        providers_raw = [
            {"name": name, **(cfg or {})} for name, cfg in providers_raw.items()
        ]
    if providers_raw:
        engine_kwargs["system_providers"] = tuple(
            dict(p) for p in providers_raw if isinstance(p, dict)
        )

    engine = EngineConfig(source_path=str(path), **engine_kwargs)
    engine.validate()

    # ── Agents ─────────────────────────────────────────────────
    agents = [
        _parse_agent(str(agent_id), cfg or {})
        for agent_id, cfg in (raw.get("agents") or {}).items()
    ]

    # ── Phases ─────────────────────────────────────────────────
    phases_raw = raw.get("phases")
    phases = [Phase(str(p)) for p in phases_raw] if phases_raw else None

    return OrchestrationConfig(engine=engine, agents=agents, phases=phases)
