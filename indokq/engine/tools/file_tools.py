"""Read-only file tools: list_files, search_files, grep_codebase, read_file.

Filesystem walks run in a worker thread so parallel agents keep
streaming while one of them scans a large tree.
"""
from __future__ import annotations

import asyncio
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path

from .base import HandlerResult, ToolContext
from .schemas import (
    GrepCodebaseInput,
    ListFilesInput,
    ReadFileInput,
    SearchFilesInput,
)
from .workspace import display_path, read_verbatim, resolve_in_workspace

logger = logging.getLogger(__name__)

IGNORED_DIRS = frozenset({"node_modules", ".git", "dist", "build"})
IGNORED_SUFFIXES = (".log",)
MAX_TREE_DEPTH = 6
MAX_TREE_ENTRIES = 2000
MAX_LINE_CHARS = 200
# Overall scan cap is this multiple of the requested result count
GREP_SCAN_FACTOR = 20

_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}


def _visible(name: str) -> bool:
    return not name.startswith(".") and name != "node_modules"


def build_tree(root: Path, *, max_depth: int = MAX_TREE_DEPTH) -> str:
    lines = [f"{root.name or root}/"]
    budget = [MAX_TREE_ENTRIES]

    def walk(directory: Path, prefix: str, depth: int) -> None:
        try:
            entries = sorted(
                (e for e in directory.iterdir() if _visible(e.name)),
                key=lambda e: e.name,
            )
        except OSError as exc:
            lines.append(f"{prefix}[unreadable: {exc.strerror}]")
            return
        for index, entry in enumerate(entries):
            if budget[0] <= 0:
                lines.append(f"{prefix}...")
                return
            budget[0] -= 1
            last = index == len(entries) - 1
            connector = "└── " if last else "├── "
            if entry.is_dir():
                lines.append(f"{prefix}{connector}{entry.name}/")
                if depth < max_depth:
                    walk(entry, prefix + ("    " if last else "│   "), depth + 1)
            else:
                lines.append(f"{prefix}{connector}{entry.name}")

    walk(root, "", 1)
    return "\n".join(lines)


async def list_files(ctx: ToolContext, params: ListFilesInput) -> HandlerResult:
    target = resolve_in_workspace(ctx.workspace, params.path)
    if not target.exists():
        return HandlerResult.fail(f"Path does not exist: {params.path}")
    if not target.is_dir():
        return HandlerResult.fail(f"Path is not a directory: {params.path}")
    tree = await asyncio.to_thread(build_tree, target)
    return HandlerResult.ok(tree)


def _glob(base: Path, workspace: Path, pattern: str) -> list[str]:
    found: list[str] = []
    for path in base.glob(pattern):
        rel_parts = path.relative_to(base).parts
        if any(part in IGNORED_DIRS or part.startswith(".") for part in rel_parts):
            continue
        if path.is_file():
            found.append(display_path(workspace, path))
    return sorted(found)


async def search_files(ctx: ToolContext, params: SearchFilesInput) -> HandlerResult:
    base = resolve_in_workspace(ctx.workspace, params.directory)
    if not base.is_dir():
        return HandlerResult.fail(f"Path is not a directory: {params.directory}")
    try:
        files = await asyncio.to_thread(_glob, base, ctx.workspace, params.pattern)
    except ValueError as exc:
        return HandlerResult.fail(f"Invalid glob pattern: {exc}")
    if not files:
        return HandlerResult.ok(f"No files matching {params.pattern}")
    return HandlerResult.ok(
        f"Found {len(files)} files:\n" + "\n".join(files)
    )


@dataclass(frozen=True)
class GrepMatch:
    path: str
    line: int
    content: str


def _compile_pattern(pattern: str, flags: str) -> re.Pattern[str]:
    value = 0
    for flag in flags:
        if flag in _REGEX_FLAGS:
            value |= _REGEX_FLAGS[flag]
    return re.compile(pattern, value)


def grep_tree(
    root: Path, regex: re.Pattern[str], cap: int,
) -> tuple[list[GrepMatch], bool]:
    """Scan text files under *root*; returns (matches, truncated)."""
    matches: list[GrepMatch] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(
            d for d in dirnames if d not in IGNORED_DIRS and not d.startswith(".")
        )
        for filename in sorted(filenames):
            if filename.endswith(IGNORED_SUFFIXES) or filename.startswith("."):
                continue
            path = Path(dirpath) / filename
            try:
                with open(path, encoding="utf-8") as f:
                    for number, line in enumerate(f, start=1):
                        if regex.search(line):
                            matches.append(GrepMatch(
                                display_path(root, path),
                                number,
                                line.rstrip("\r\n")[:MAX_LINE_CHARS],
                            ))
                            if len(matches) >= cap:
                                return matches, True
            except (UnicodeDecodeError, OSError):
                # binary or unreadable
                continue
    return matches, False


async def grep_codebase(ctx: ToolContext, params: GrepCodebaseInput) -> HandlerResult:
    try:
        regex = _compile_pattern(params.pattern, params.flags)
    except re.error as exc:
        return HandlerResult.fail(f"Invalid regular expression: {exc}")
    cap = params.max_results * GREP_SCAN_FACTOR
    matches, truncated = await asyncio.to_thread(
        grep_tree, ctx.workspace, regex, cap,
    )
    if not matches:
        return HandlerResult.ok(f"No matches found for pattern: {params.pattern}")
    shown = matches[: params.max_results]
    total = f"at least {len(matches)}" if truncated else str(len(matches))
    body = "\n".join(f"{m.path}:{m.line}: {m.content}" for m in shown)
    return HandlerResult.ok(
        f"Found {total} matches (showing first {len(shown)}):\n\n{body}"
    )


async def read_file(ctx: ToolContext, params: ReadFileInput) -> HandlerResult:
    target = resolve_in_workspace(ctx.workspace, params.path)
    if not target.exists():
        return HandlerResult.fail(f"File not found: {params.path}")
    if not target.is_file():
        return HandlerResult.fail(f"Path is not a file: {params.path}")
    try:
        content = await asyncio.to_thread(read_verbatim, target)
    except UnicodeDecodeError:
        return HandlerResult.fail(f"File is not valid UTF-8 text: {params.path}")
    return HandlerResult.ok(content)
