"""Workspace path confinement for built-in tools."""
from __future__ import annotations

from pathlib import Path

from ..errors import WorkspacePathError


def resolve_in_workspace(workspace: Path, path: str | Path) -> Path:
    """Resolve *path* against *workspace*; reject anything that escapes it.

    Symlinks are resolved first, so a link pointing outside the
    workspace is rejected as well.
    """
    root = Path(workspace).resolve()
    candidate = Path(path).expanduser()
    if not candidate.is_absolute():
        candidate = root / candidate
    resolved = candidate.resolve()
    if resolved != root and root not in resolved.parents:
        raise WorkspacePathError(str(path), str(root))
    return resolved


def display_path(workspace: Path, path: Path) -> str:
    """Workspace-relative POSIX path for output shown to the model."""
    try:
        rel = path.resolve().relative_to(Path(workspace).resolve())
    except ValueError:
        return str(path)
    return rel.as_posix() or "."


def read_verbatim(path: Path) -> str:
    """Read UTF-8 text without newline translation."""
    with open(path, encoding="utf-8", newline="") as f:
        return f.read()
