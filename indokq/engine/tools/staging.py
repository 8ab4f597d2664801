"""Diff-based change staging.

Proposals never touch disk: they read the current content, compute the
new content and a unified diff, and hold the result as a PendingChange.
Only ``apply`` writes, atomically, and only for a change this stager
still holds. A rejected change is dropped; the agent has to propose
again.
"""
from __future__ import annotations

import difflib
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from indokq.shared.durable_write import atomic_write_text

from ..errors import StagingError
from ..models import PendingChange
from .workspace import display_path, read_verbatim, resolve_in_workspace

logger = logging.getLogger(__name__)

NO_NEWLINE_MARKER = "\\ No newline at end of file\n"


def unified_diff(
    path: str,
    old_content: str,
    new_content: str,
    *,
    old_label: str = "original",
    new_label: str = "modified",
    context: int = 3,
) -> str:
    """Line-based unified diff with ``---``/``+++`` headers and ``@@`` hunks."""
    lines = difflib.unified_diff(
        old_content.splitlines(keepends=True),
        new_content.splitlines(keepends=True),
        fromfile=path,
        tofile=path,
        fromfiledate=old_label,
        tofiledate=new_label,
        n=context,
    )
    out: list[str] = []
    for line in lines:
        if line.endswith("\n"):
            out.append(line)
        else:
            out.append(line + "\n")
            out.append(NO_NEWLINE_MARKER)
    return "".join(out)


@dataclass(frozen=True)
class StagingOutcome:
    """Result of a proposal.

    ``change`` is None both on failure and when the content is already
    identical (``success`` tells them apart). ``missing`` holds the
    1-based indexes of search fragments that were not found.
    """
    success: bool
    message: str = ""
    change: PendingChange | None = None
    error: str | None = None
    missing: tuple[int, ...] = ()

    @property
    def diff(self) -> str | None:
        return self.change.diff if self.change else None

    @property
    def unchanged(self) -> bool:
        return self.success and self.change is None


class ChangeStaging:
    def __init__(self, workspace: Path | str) -> None:
        self._workspace = Path(workspace).resolve()
        self._pending: dict[str, PendingChange] = {}

    @property
    def workspace(self) -> Path:
        return self._workspace

    def pending(self) -> list[PendingChange]:
        return list(self._pending.values())

    def get(self, change_id: str) -> PendingChange | None:
        return self._pending.get(change_id)

    def propose(
        self,
        path: str,
        new_content: str,
        *,
        create: bool | None = None,
        description: str | None = None,
    ) -> StagingOutcome:
        """Stage a whole-file replacement.

        ``create=True`` requires the file to be absent, ``create=False``
        requires it to exist, ``None`` accepts either.
        """
        target = resolve_in_workspace(self._workspace, path)
        shown = display_path(self._workspace, target)
        exists = target.exists()
        if exists and not target.is_file():
            return StagingOutcome(False, error=f"Path is not a file: {shown}")
        if create is True and exists:
            return StagingOutcome(
                False,
                error=f"File already exists: {shown}. Use edit_file to modify it.",
            )
        if create is False and not exists:
            return StagingOutcome(
                False,
                error=f"File not found: {shown}. Use create_file to create it.",
            )

        if not exists:
            diff = unified_diff(
                shown, "", new_content,
                old_label="original (file does not exist)",
                new_label="new file",
            )
            return self._stage(target, "", new_content, diff, description, True)

        old_content = read_verbatim(target)
        if old_content == new_content:
            return StagingOutcome(True, message=f"No changes needed for: {shown}")
        diff = unified_diff(shown, old_content, new_content)
        return self._stage(target, old_content, new_content, diff, description, False)

    def propose_edits(
        self,
        path: str,
        edits: Sequence[tuple[str, str]],
        *,
        description: str | None = None,
    ) -> StagingOutcome:
        """Stage ordered search/replace edits, first occurrence only.

        A missing file is treated as empty content. If none of the
        search fragments is found the whole proposal fails and lists
        every missing index; a partial match stages what was found.
        """
        target = resolve_in_workspace(self._workspace, path)
        shown = display_path(self._workspace, target)
        exists = target.exists()
        if exists and not target.is_file():
            return StagingOutcome(False, error=f"Path is not a file: {shown}")
        old_content = read_verbatim(target) if exists else ""

        new_content = old_content
        missing: list[int] = []
        for index, (search, replace) in enumerate(edits, start=1):
            if search and search in new_content:
                new_content = new_content.replace(search, replace, 1)
            else:
                missing.append(index)

        failures = "; ".join(
            f"Change {i}: Search pattern not found" for i in missing
        )
        if edits and len(missing) == len(edits):
            return StagingOutcome(
                False,
                error=f"No changes could be applied. {failures}",
                missing=tuple(missing),
            )
        if new_content == old_content:
            return StagingOutcome(
                True,
                message=f"No changes needed for: {shown}",
                missing=tuple(missing),
            )
        diff = unified_diff(shown, old_content, new_content)
        outcome = self._stage(
            target, old_content, new_content, diff, description, not exists,
        )
        if missing:
            return StagingOutcome(
                True,
                message=f"{outcome.message} (skipped: {failures})",
                change=outcome.change,
                missing=tuple(missing),
            )
        return outcome

    def apply(self, change: PendingChange) -> str:
        """Write a staged change. Returns a confirmation message.

        Raises StagingError if the change is not (or no longer) staged,
        or if the file changed on disk since it was proposed.
        """
        if self._pending.get(change.change_id) is not change:
            raise StagingError(change.path, "change is not pending")
        target = Path(change.path)
        shown = display_path(self._workspace, target)
        current = self._current_content(target)
        expected = None if change.is_new_file else change.old_content
        if current != expected:
            self._pending.pop(change.change_id, None)
            raise StagingError(
                shown, "file changed on disk since the change was proposed",
            )
        try:
            atomic_write_text(target, change.new_content)
        except OSError as exc:
            raise StagingError(shown, f"write failed: {exc}") from exc
        self._pending.pop(change.change_id, None)
        logger.info("Applied change %s to %s", change.change_id, shown)
        return f"Successfully applied changes to: {shown}"

    def reject(self, change: PendingChange) -> str:
        self._pending.pop(change.change_id, None)
        shown = display_path(self._workspace, Path(change.path))
        logger.info("Rejected change %s to %s", change.change_id, shown)
        return f"Change rejected: {shown}"

    def discard_all(self) -> int:
        count = len(self._pending)
        self._pending.clear()
        return count

    def _stage(
        self,
        target: Path,
        old_content: str,
        new_content: str,
        diff: str,
        description: str | None,
        is_new_file: bool,
    ) -> StagingOutcome:
        change = PendingChange(
            path=str(target),
            old_content=old_content,
            new_content=new_content,
            diff=diff,
            description=description,
            is_new_file=is_new_file,
        )
        self._pending[change.change_id] = change
        shown = display_path(self._workspace, target)
        logger.debug("Staged change %s for %s", change.change_id, shown)
        return StagingOutcome(
            True, message=f"Proposed changes to: {shown}", change=change,
        )

    @staticmethod
    def _current_content(target: Path) -> str | None:
        try:
            return read_verbatim(target)
        except FileNotFoundError:
            return None
