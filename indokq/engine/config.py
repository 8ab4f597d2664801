"""Engine configuration.

A single immutable snapshot is built at startup (defaults, then an
optional YAML file, then INDOKQ_* environment variables) and passed to
every component that needs it. ``reload()`` produces a new snapshot;
nothing re-reads the environment implicitly.
"""
from __future__ import annotations

import dataclasses
import json
import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .tools.approval_queue import ApprovalRequest

logger = logging.getLogger(__name__)


# Optional async callback for real-time event observation.
# Signature: async def callback(event: dict[str, Any]) -> None
EventCallback = Callable[[dict[str, Any]], Awaitable[None]]

# Optional async callback answering approval requests.
# Signature: async def callback(request: ApprovalRequest) -> bool
ApprovalCallback = Callable[["ApprovalRequest"], Awaitable[bool]]

ENV_PREFIX = "INDOKQ_"
DEFAULT_STORAGE_RELPATH = ".indokq/mcp-servers.json"


async def fire_event(
    callback: EventCallback | None,
    event: dict[str, Any],
) -> None:
    """Fire an event callback if set. Callback errors are logged, never raised."""
    if callback is None:
        return
    try:
        await callback(event)
    except Exception:
        logger.debug(
            "Event callback failed for %s", event.get("event"), exc_info=True
        )


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not an integer", name, raw)
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not a number", name, raw)
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_json_list(name: str) -> tuple[dict[str, Any], ...] | None:
    raw = os.getenv(name)
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Ignoring %s: invalid JSON (%s)", name, exc)
        return None
    if not isinstance(parsed, list):
        logger.warning("Ignoring %s: expected a JSON list", name)
        return None
    return tuple(item for item in parsed if isinstance(item, dict))


@dataclass(frozen=True)
class EngineConfig:
    """Orchestration engine configuration snapshot."""

    # Workspace every built-in file/command tool is confined to
    workspace_dir: str = "."

    # Approval level 0-3 (OFF, LOW, MEDIUM, HIGH)
    approval_level: int = 2
    # Appended after the built-in pattern lists
    extra_safe_patterns: tuple[str, ...] = ()
    extra_dangerous_patterns: tuple[str, ...] = ()

    # Agent turn loop
    max_turns_per_run: int = 25
    # Text-only turns tolerated before an agent with task_complete stops
    max_idle_turns: int = 2
    max_agent_depth: int = 3
    # 0 disables the per-phase budget
    phase_timeout_seconds: float = 0.0
    max_tokens: int = 8192

    # Command execution
    command_timeout_seconds: float = 30.0
    command_output_limit_bytes: int = 10 * 1024 * 1024

    # External tool providers
    provider_connect_timeout_seconds: float = 30.0
    provider_tool_timeout_seconds: float = 30.0
    provider_auto_connect: bool = True
    provider_storage_path: str | None = None
    system_providers: tuple[dict[str, Any], ...] = ()

    log_level: str = "INFO"

    # YAML file this snapshot was loaded from, used by reload()
    source_path: str | None = None

    # Front-end hooks (not loaded from env or YAML)
    event_callback: EventCallback | None = field(
        default=None, compare=False, repr=False,
    )
    approval_callback: ApprovalCallback | None = field(
        default=None, compare=False, repr=False,
    )

    @property
    def workspace(self) -> Path:
        return Path(self.workspace_dir).expanduser().resolve()

    @property
    def storage_path(self) -> Path:
        if self.provider_storage_path:
            path = Path(self.provider_storage_path).expanduser()
            return path if path.is_absolute() else self.workspace / path
        return self.workspace / DEFAULT_STORAGE_RELPATH

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load configuration from defaults plus INDOKQ_* environment variables."""
        return cls().with_env_overrides()

    def with_env_overrides(self) -> EngineConfig:
        """Return a copy with INDOKQ_* environment variables applied on top."""
        env_vars = {
            k: v for k, v in os.environ.items() if k.startswith(ENV_PREFIX)
        }
        if env_vars:
            logger.info(
                "EngineConfig: env overrides: %s",
                ", ".join(sorted(env_vars)),
            )
        else:
            logger.debug("EngineConfig: no %s* env vars set", ENV_PREFIX)

        system_providers = _env_json_list("INDOKQ_MCP_SERVERS")
        config = dataclasses.replace(
            self,
            workspace_dir=os.getenv("INDOKQ_WORKSPACE", self.workspace_dir),
            approval_level=_env_int(
                "INDOKQ_APPROVAL_LEVEL", self.approval_level
            ),
            max_turns_per_run=_env_int(
                "INDOKQ_MAX_TURNS", self.max_turns_per_run
            ),
            max_idle_turns=_env_int(
                "INDOKQ_MAX_IDLE_TURNS", self.max_idle_turns
            ),
            max_agent_depth=_env_int(
                "INDOKQ_MAX_AGENT_DEPTH", self.max_agent_depth
            ),
            phase_timeout_seconds=_env_float(
                "INDOKQ_PHASE_TIMEOUT", self.phase_timeout_seconds
            ),
            max_tokens=_env_int("INDOKQ_MAX_TOKENS", self.max_tokens),
            command_timeout_seconds=_env_float(
                "INDOKQ_EXECUTION_TIMEOUT", self.command_timeout_seconds
            ),
            command_output_limit_bytes=_env_int(
                "INDOKQ_COMMAND_OUTPUT_LIMIT", self.command_output_limit_bytes
            ),
            provider_connect_timeout_seconds=_env_float(
                "INDOKQ_MCP_CONNECT_TIMEOUT",
                self.provider_connect_timeout_seconds,
            ),
            provider_tool_timeout_seconds=_env_float(
                "INDOKQ_MCP_TOOL_TIMEOUT", self.provider_tool_timeout_seconds
            ),
            provider_auto_connect=_env_bool(
                "INDOKQ_MCP_AUTO_CONNECT", self.provider_auto_connect
            ),
            provider_storage_path=os.getenv(
                "INDOKQ_MCP_STORAGE", self.provider_storage_path or ""
            ) or None,
            system_providers=(
                system_providers
                if system_providers is not None
                else self.system_providers
            ),
            log_level=os.getenv("INDOKQ_LOG_LEVEL", self.log_level),
        )
        config.validate()
        return config

    def validate(self) -> None:
        if not 0 <= self.approval_level <= 3:
            raise ValueError(
                f"approval_level must be between 0 and 3, got {self.approval_level}"
            )
        if self.max_turns_per_run < 1:
            raise ValueError("max_turns_per_run must be at least 1")
        if self.max_agent_depth < 1:
            raise ValueError("max_agent_depth must be at least 1")

    def reload(self) -> EngineConfig:
        """Build a fresh snapshot from the same sources.

        Front-end callbacks carry over; everything else is re-read.
        """
        if self.source_path:
            from .yaml_config import load_yaml_config
            base = load_yaml_config(self.source_path).engine
        else:
            base = EngineConfig()
        fresh = dataclasses.replace(
            base,
            event_callback=self.event_callback,
            approval_callback=self.approval_callback,
        ).with_env_overrides()
        logger.info("EngineConfig reloaded (source=%s)", self.source_path or "env")
        return fresh

    def with_callbacks(
        self,
        *,
        event_callback: EventCallback | None = None,
        approval_callback: ApprovalCallback | None = None,
    ) -> EngineConfig:
        return dataclasses.replace(
            self,
            event_callback=event_callback or self.event_callback,
            approval_callback=approval_callback or self.approval_callback,
        )
