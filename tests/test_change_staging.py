from __future__ import annotations

from pathlib import Path

import pytest

from indokq.engine.errors import StagingError, WorkspacePathError
from indokq.engine.tools.staging import ChangeStaging, unified_diff


@pytest.fixture
def staging(tmp_path: Path) -> ChangeStaging:
    return ChangeStaging(tmp_path)


def test_proposal_does_not_touch_disk(tmp_path: Path, staging: ChangeStaging) -> None:
    target = tmp_path / "app.py"
    target.write_text("print('a')\n", encoding="utf-8")

    outcome = staging.propose("app.py", "print('b')\n", create=False)

    assert outcome.success
    assert outcome.change is not None
    assert target.read_text(encoding="utf-8") == "print('a')\n"
    assert "-print('a')" in outcome.diff
    assert "+print('b')" in outcome.diff
    assert staging.pending() == [outcome.change]


def test_identical_content_yields_no_change(tmp_path: Path, staging: ChangeStaging) -> None:
    (tmp_path / "same.txt").write_text("x\n", encoding="utf-8")

    outcome = staging.propose("same.txt", "x\n")

    assert outcome.success
    assert outcome.unchanged
    assert outcome.message == "No changes needed for: same.txt"
    assert staging.pending() == []


def test_apply_writes_and_clears_pending(tmp_path: Path, staging: ChangeStaging) -> None:
    target = tmp_path / "notes.md"
    target.write_text("one\n", encoding="utf-8")
    change = staging.propose("notes.md", "one\ntwo\n").change

    message = staging.apply(change)

    assert message == "Successfully applied changes to: notes.md"
    assert target.read_text(encoding="utf-8") == "one\ntwo\n"
    assert staging.pending() == []
    with pytest.raises(StagingError):
        staging.apply(change)


def test_reject_leaves_disk_untouched(tmp_path: Path, staging: ChangeStaging) -> None:
    target = tmp_path / "keep.txt"
    target.write_text("keep\n", encoding="utf-8")
    change = staging.propose("keep.txt", "gone\n").change

    assert staging.reject(change) == "Change rejected: keep.txt"
    assert target.read_text(encoding="utf-8") == "keep\n"
    with pytest.raises(StagingError):
        staging.apply(change)


def test_create_refuses_existing_file(tmp_path: Path, staging: ChangeStaging) -> None:
    (tmp_path / "exists.txt").write_text("", encoding="utf-8")
    outcome = staging.propose("exists.txt", "new", create=True)
    assert not outcome.success
    assert outcome.error == "File already exists: exists.txt. Use edit_file to modify it."


def test_edit_refuses_missing_file(staging: ChangeStaging) -> None:
    outcome = staging.propose("nope.txt", "new", create=False)
    assert not outcome.success
    assert outcome.error == "File not found: nope.txt. Use create_file to create it."


def test_new_file_diff_uses_new_file_labels(tmp_path: Path, staging: ChangeStaging) -> None:
    outcome = staging.propose("pkg/new.py", "x = 1\n", create=True)
    assert outcome.change.is_new_file
    assert "original (file does not exist)" in outcome.diff
    assert "new file" in outcome.diff
    staging.apply(outcome.change)
    assert (tmp_path / "pkg" / "new.py").read_text(encoding="utf-8") == "x = 1\n"


def test_edits_with_no_matching_fragment_fail(tmp_path: Path, staging: ChangeStaging) -> None:
    target = tmp_path / "config.ini"
    target.write_text("[main]\nkey=1\n", encoding="utf-8")

    outcome = staging.propose_edits("config.ini", [("absent", "x"), ("also absent", "y")])

    assert not outcome.success
    assert outcome.missing == (1, 2)
    assert outcome.error == (
        "No changes could be applied. "
        "Change 1: Search pattern not found; Change 2: Search pattern not found"
    )
    assert target.read_text(encoding="utf-8") == "[main]\nkey=1\n"
    assert staging.pending() == []


def test_partial_edits_stage_what_was_found(tmp_path: Path, staging: ChangeStaging) -> None:
    (tmp_path / "a.txt").write_text("alpha beta alpha\n", encoding="utf-8")

    outcome = staging.propose_edits("a.txt", [("alpha", "ALPHA"), ("gamma", "G")])

    assert outcome.success
    assert outcome.missing == (2,)
    # First occurrence only
    assert outcome.change.new_content == "ALPHA beta alpha\n"
    assert "skipped" in outcome.message


def test_edits_apply_in_order(tmp_path: Path, staging: ChangeStaging) -> None:
    (tmp_path / "b.txt").write_text("x\n", encoding="utf-8")
    outcome = staging.propose_edits("b.txt", [("x", "y"), ("y", "z")])
    assert outcome.change.new_content == "z\n"


def test_apply_detects_stale_file(tmp_path: Path, staging: ChangeStaging) -> None:
    target = tmp_path / "race.txt"
    target.write_text("v1\n", encoding="utf-8")
    change = staging.propose("race.txt", "v2\n").change
    target.write_text("someone else\n", encoding="utf-8")

    with pytest.raises(StagingError, match="changed on disk"):
        staging.apply(change)
    assert target.read_text(encoding="utf-8") == "someone else\n"


def test_crlf_content_is_preserved(tmp_path: Path, staging: ChangeStaging) -> None:
    target = tmp_path / "win.txt"
    target.write_bytes(b"a\r\nb\r\n")
    outcome = staging.propose_edits("win.txt", [("b", "c")])
    staging.apply(outcome.change)
    assert target.read_bytes() == b"a\r\nc\r\n"


def test_path_outside_workspace_is_rejected(staging: ChangeStaging) -> None:
    with pytest.raises(WorkspacePathError):
        staging.propose("../escape.txt", "x")


def test_unified_diff_marks_missing_trailing_newline() -> None:
    diff = unified_diff("f.txt", "a\n", "a\nb")
    assert diff.startswith("--- f.txt\toriginal\n+++ f.txt\tmodified\n")
    assert "@@" in diff
    assert diff.endswith("+b\n\\ No newline at end of file\n")
