"""CLI entry point for the orchestration engine.

Usage:
    indokq run "Add a --verbose flag" --script turns.yaml
    indokq run "Fix the failing test" --script turns.yaml --phases prediction,execution
    indokq agents
    indokq approval check "git push --force" --level 2
    indokq mcp list
    indokq mcp add docs --transport http --url http://localhost:8000/mcp
    indokq mcp remove docs
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from rich.console import Console
from rich.prompt import Confirm
from rich.syntax import Syntax
from rich.table import Table

from .config import EngineConfig
from .errors import OrchestrationError
from .event_bus import EventBus
from .events import (
    AgentFinished,
    AgentSpawned,
    OrchestratorEvent,
    PhaseFinished,
    PhaseStarted,
    ToolFinished,
    ToolRequested,
)
from .models import Phase
from .registry import AgentRegistry
from .tools.approval import ApprovalLevel, ApprovalRules, decide
from .tools.approval_queue import ApprovalRequest

logger = logging.getLogger(__name__)

console = Console()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="indokq",
        description="Multi-agent orchestration with gated tool execution",
    )
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="YAML config file (default: defaults plus INDOKQ_* env vars)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run a task")
    run.add_argument("task", help="The task to orchestrate")
    run.add_argument(
        "--script", "-s",
        required=True,
        help="YAML file of scripted model turns per agent type",
    )
    run.add_argument(
        "--phases",
        default=None,
        help="Comma-separated phase pipeline (default: model-driven)",
    )
    run.add_argument(
        "--approval-level",
        default=None,
        help="0-3 or off/low/medium/high",
    )
    run.add_argument(
        "--yes", "-y",
        action="store_true",
        help="Approve every gated tool call without asking",
    )

    sub.add_parser("agents", help="List agent definitions")

    approval = sub.add_parser("approval", help="Approval policy helpers")
    approval_sub = approval.add_subparsers(dest="approval_command", required=True)
    check = approval_sub.add_parser(
        "check", help="Show whether a command would need approval",
    )
    check.add_argument("shell_command", metavar="COMMAND")
    check.add_argument("--level", default=None, help="0-3 or off/low/medium/high")
    check.add_argument("--tool", default="execute_command")

    mcp = sub.add_parser("mcp", help="Manage external tool providers")
    mcp_sub = mcp.add_subparsers(dest="mcp_command", required=True)
    mcp_sub.add_parser("list", help="List configured providers")
    add = mcp_sub.add_parser("add", help="Add a user provider")
    add.add_argument("name")
    add.add_argument(
        "--transport", choices=("stdio", "http", "sse"), default="stdio",
    )
    add.add_argument("--command", dest="provider_command", default=None)
    add.add_argument(
        "--arg", dest="provider_args", action="append", default=[],
        help="Argument for a stdio command (repeatable)",
    )
    add.add_argument(
        "--env", action="append", default=[], metavar="KEY=VALUE",
    )
    add.add_argument("--url", default=None)
    add.add_argument(
        "--no-connect", action="store_true",
        help="Store without connecting",
    )
    remove = mcp_sub.add_parser("remove", help="Remove a user provider")
    remove.add_argument("key", help="Provider name or id")
    return parser


def _load_config(path: str | None):
    """Return (engine config, extra agents, configured phases)."""
    if path is None:
        return EngineConfig.from_env(), [], None
    from .yaml_config import load_yaml_config

    loaded = load_yaml_config(path)
    return loaded.engine.with_env_overrides(), loaded.agents, loaded.phases


def _log_level(verbose: bool, configured: str) -> int:
    if verbose:
        return logging.DEBUG
    level = logging.getLevelName(configured.upper())
    if isinstance(level, int):
        return level
    logger.warning("Unknown log level %r; using INFO", configured)
    return logging.INFO


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        config, agents, phases = _load_config(args.config)
        logging.basicConfig(
            level=_log_level(args.verbose, config.log_level),
            format="%(asctime)s %(name)s %(levelname)s %(message)s",
            datefmt="%H:%M:%S",
        )
        if args.command == "run":
            return asyncio.run(_run(args, config, agents, phases))
        if args.command == "agents":
            return _agents(agents)
        if args.command == "approval":
            return _approval_check(args, config)
        if args.command == "mcp":
            return asyncio.run(_mcp(args, config))
    except (OrchestrationError, ValueError, FileNotFoundError) as exc:
        console.print(f"[red]Error:[/red] {exc}")
        return 1
    except KeyboardInterrupt:
        console.print("\nInterrupted.")
        return 130
    parser.error(f"unknown command {args.command!r}")
    return 2


# ── run ────────────────────────────────────────────────────────


def _render_event(event: OrchestratorEvent) -> None:
    if isinstance(event, PhaseStarted):
        console.rule(f"[bold]{event.phase}[/bold] ({', '.join(event.agents)})")
    elif isinstance(event, PhaseFinished):
        console.print(
            f"[dim]{event.phase}: {event.succeeded} succeeded, {event.failed} failed[/dim]"
        )
    elif isinstance(event, AgentSpawned):
        indent = "  " * event.depth
        console.print(f"{indent}[cyan]> {event.agent_type}[/cyan] [dim]{event.run_id[:8]}[/dim]")
    elif isinstance(event, ToolRequested):
        console.print(f"  [yellow]tool[/yellow] {event.tool_name}")
    elif isinstance(event, ToolFinished) and event.is_error:
        console.print(f"  [red]{event.tool_name} failed:[/red] {event.content[:200]}")
    elif isinstance(event, AgentFinished):
        status = "[green]done[/green]" if event.success else "[red]failed[/red]"
        console.print(
            f"  {event.agent_type} {status} after {event.turns_used} turn(s)"
        )


async def _consume(bus: EventBus) -> None:
    async for event in bus.consume():
        _render_event(event)


def _make_approver(auto_approve: bool):
    async def approve(request: ApprovalRequest) -> bool:
        if auto_approve:
            return True
        console.print(
            f"\n[bold yellow]Approval needed[/bold yellow] "
            f"{request.tool_name} ({request.agent_type}): {request.reason}"
        )
        if request.diff:
            console.print(Syntax(request.diff, "diff", theme="ansi_dark"))
        elif "command" in request.tool_input:
            console.print(f"  $ {request.tool_input['command']}")
        return await asyncio.to_thread(Confirm.ask, "Allow?", console=console)

    return approve


async def _run(args, config: EngineConfig, agents, phases) -> int:
    from .engine import OrchestrationEngine
    from .providers.scripted import ScriptedProvider

    if args.approval_level is not None:
        import dataclasses
        config = dataclasses.replace(
            config, approval_level=int(ApprovalLevel.coerce(args.approval_level)),
        )
    if args.phases:
        phases = [Phase(p.strip()) for p in args.phases.split(",") if p.strip()]

    bus = EventBus()
    config = config.with_callbacks(
        event_callback=bus.make_callback(),
        approval_callback=_make_approver(args.yes),
    )
    engine = OrchestrationEngine(
        config,
        ScriptedProvider.from_file(args.script),
        registry=AgentRegistry.with_builtins(agents),
    )
    consumer = asyncio.create_task(_consume(bus))
    try:
        async with engine:
            result = await engine.run(args.task, phases)
    finally:
        bus.close()
        await consumer

    console.print("\n=== Orchestration Result ===\n")
    if result.aborted:
        console.print("[yellow]Aborted[/yellow]")
    console.print(result.output or "(no output)")
    console.print(f"[dim]{result.duration_seconds:.1f}s[/dim]")
    return 0 if result.success else 1


# ── agents ─────────────────────────────────────────────────────


def _agents(extra) -> int:
    registry = AgentRegistry.with_builtins(extra)
    table = Table(title="Agents")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Tools")
    table.add_column("Can spawn")
    for definition in registry.list():
        table.add_row(
            definition.agent_id,
            definition.display_name,
            ", ".join(sorted(definition.tool_names)) or "-",
            ", ".join(definition.spawnable_agents) or "-",
        )
    console.print(table)
    return 0


# ── approval check ─────────────────────────────────────────────


def _approval_check(args, config: EngineConfig) -> int:
    level = ApprovalLevel.coerce(
        args.level if args.level is not None else config.approval_level
    )
    rules = ApprovalRules.build(
        config.extra_safe_patterns, config.extra_dangerous_patterns,
    )
    decision = decide(level, args.tool, {"command": args.shell_command}, rules)
    if decision.requires_approval:
        console.print(
            f"[yellow]requires approval[/yellow] at {level.name}: {decision.reason}"
        )
    else:
        console.print(f"[green]auto-approved[/green] at {level.name}")
    return 0


# ── mcp ────────────────────────────────────────────────────────


def _parse_env(pairs: list[str]) -> dict[str, str]:
    env: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Invalid --env {pair!r}; expected KEY=VALUE")
        env[key] = value
    return env


async def _mcp(args, config: EngineConfig) -> int:
    from .mcp.manager import ProviderConnectionManager

    manager = ProviderConnectionManager.from_config(config)
    try:
        if args.mcp_command == "list":
            table = Table(title="Tool providers")
            table.add_column("Name", style="cyan")
            table.add_column("Transport")
            table.add_column("Target")
            table.add_column("Origin")
            table.add_column("Auto-connect")
            for provider in manager.get_all_configs():
                target = provider.url or " ".join(
                    [provider.command or "", *provider.args]
                ).strip()
                table.add_row(
                    provider.name,
                    provider.transport.value,
                    target,
                    provider.added_by.value,
                    "yes" if provider.auto_connect else "no",
                )
            console.print(table)
            return 0

        if args.mcp_command == "add":
            _, error = await manager.add_server({
                "name": args.name,
                "transport": args.transport,
                "command": args.provider_command,
                "args": args.provider_args,
                "env": _parse_env(args.env),
                "url": args.url,
                "autoConnect": not args.no_connect,
            })
            console.print(f"Added provider [cyan]{args.name}[/cyan]")
            if error:
                console.print(f"[yellow]Stored but not connected:[/yellow] {error}")
            return 0

        if args.mcp_command == "remove":
            removed = await manager.remove_server(args.key)
            console.print(f"Removed provider [cyan]{removed.name}[/cyan]")
            return 0
    finally:
        await manager.shutdown()
    return 2


if __name__ == "__main__":
    sys.exit(main())
