"""Unit tests for staging directory moves."""

from __future__ import annotations

from datetime import datetime, timezone
import os
from pathlib import Path

import pytest

from core.errors import LabIntakeStageError
from ingest.stage_directory import StageDirectoryManager


def _incoming_file(stages: StageDirectoryManager, name: str = "results.csv"):
    incoming_dir = stages.ensure_stage("incoming")
    path = incoming_dir / name
    path.write_text("Site,Variable\n", encoding="utf-8")
    return stages.describe(path, "incoming")


def test_ensure_stage_creates_directory(tmp_path: Path) -> None:
    """Ensuring a stage should create its directory."""
    stages = StageDirectoryManager(tmp_path)

    stage_dir = stages.ensure_stage("processing")

    assert stage_dir.is_dir() and stage_dir == tmp_path / "processing"


def test_ensure_stage_rejects_unknown_stage(tmp_path: Path) -> None:
    """Unknown stage names should raise a stage error."""
    stages = StageDirectoryManager(tmp_path)

    with pytest.raises(LabIntakeStageError):
        stages.ensure_stage("elsewhere")  # type: ignore[arg-type]


def test_ensure_stage_fails_when_path_is_a_file(tmp_path: Path) -> None:
    """A file squatting on the stage path should make the stage unavailable."""
    (tmp_path / "archive").write_text("not a directory", encoding="utf-8")
    stages = StageDirectoryManager(tmp_path)

    with pytest.raises(LabIntakeStageError):
        stages.ensure_stage("archive")


def test_move_renames_into_target_stage(tmp_path: Path) -> None:
    """Move should leave the file in exactly one stage directory."""
    stages = StageDirectoryManager(tmp_path)
    intake_file = _incoming_file(stages)

    moved = stages.move(intake_file, "processing")

    assert moved.path.exists() and not intake_file.path.exists() and moved.stage == "processing"


def test_move_replaces_existing_destination(tmp_path: Path) -> None:
    """An existing file at the destination should be replaced."""
    stages = StageDirectoryManager(tmp_path)
    intake_file = _incoming_file(stages)
    stale = stages.ensure_stage("processing") / "results.csv"
    stale.write_text("stale\n", encoding="utf-8")

    moved = stages.move(intake_file, "processing")

    assert moved.path.read_text(encoding="utf-8") == "Site,Variable\n"


def test_move_is_noop_when_already_moved(tmp_path: Path) -> None:
    """A retried move whose source is gone but destination exists is a no-op."""
    stages = StageDirectoryManager(tmp_path)
    intake_file = _incoming_file(stages)
    stages.move(intake_file, "processing")

    moved_again = stages.move(intake_file, "processing")

    assert moved_again.stage == "processing" and moved_again.path.exists()


def test_move_leaves_handle_unchanged_when_file_vanished(tmp_path: Path) -> None:
    """A move with neither source nor destination should not invent a file."""
    stages = StageDirectoryManager(tmp_path)
    intake_file = _incoming_file(stages)
    intake_file.path.unlink()

    result = stages.move(intake_file, "processing")

    assert result == intake_file


def test_move_falls_back_to_copy_when_rename_fails(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Cross-device rename failures should fall back to copy then delete."""
    stages = StageDirectoryManager(tmp_path)
    intake_file = _incoming_file(stages)
    real_replace = os.replace

    def _replace(source, target):
        if Path(source) == intake_file.path:
            raise OSError(18, "Invalid cross-device link")
        return real_replace(source, target)

    monkeypatch.setattr("ingest.stage_directory.os.replace", _replace)

    moved = stages.move(intake_file, "archive")

    assert moved.path.exists() and not intake_file.path.exists()


def test_move_keeps_source_when_copy_fails(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """A failed fallback copy must not delete the source file."""
    stages = StageDirectoryManager(tmp_path)
    intake_file = _incoming_file(stages)

    def _replace(source, target):
        raise OSError(18, "Invalid cross-device link")

    def _copy(source, target):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr("ingest.stage_directory.os.replace", _replace)
    monkeypatch.setattr("ingest.stage_directory.shutil.copy2", _copy)

    with pytest.raises(LabIntakeStageError):
        stages.move(intake_file, "archive")

    assert intake_file.path.exists()


def test_monthly_subdirs_target_month_year_directory(tmp_path: Path) -> None:
    """Monthly mode should file moves under month-year subdirectories."""
    fixed_now = datetime(2024, 3, 9, tzinfo=timezone.utc)
    stages = StageDirectoryManager(tmp_path, monthly_subdirs=True, now=lambda: fixed_now)
    intake_file = _incoming_file(stages)

    moved = stages.move(intake_file, "failed")

    assert moved.path.parent == tmp_path / "failed" / "3-2024"


def test_receive_copies_outside_file_into_incoming(tmp_path: Path) -> None:
    """Receiving should copy an outside file into incoming."""
    source = tmp_path / "upload.csv"
    source.write_text("a,b\n", encoding="utf-8")
    stages = StageDirectoryManager(tmp_path / "intake")

    received = stages.receive(source)

    assert received.stage == "incoming" and received.path.exists() and source.exists()


def test_list_files_returns_oldest_first(tmp_path: Path) -> None:
    """Listing should order files by modification time."""
    stages = StageDirectoryManager(tmp_path)
    newer = _incoming_file(stages, "b.csv")
    older = _incoming_file(stages, "a.csv")
    os.utime(older.path, (1_000, 1_000))
    os.utime(newer.path, (2_000, 2_000))

    files = stages.list_files("incoming")

    assert [intake_file.filename for intake_file in files] == ["a.csv", "b.csv"]


def test_claim_moves_file_into_owner_area(tmp_path: Path) -> None:
    """Claimed files should sit in a processing area private to the owner."""
    stages = StageDirectoryManager(tmp_path)
    intake_file = _incoming_file(stages)

    claimed = stages.claim(intake_file, "job-1")

    assert claimed.path == tmp_path / "processing" / ".uploads" / "job-1" / "results.csv"
    assert claimed.stage == "processing" and not intake_file.path.exists()


def test_claim_rejects_second_file_for_same_owner(tmp_path: Path) -> None:
    """An owner may not claim a file name it already holds."""
    stages = StageDirectoryManager(tmp_path)
    stages.claim(_incoming_file(stages), "job-1")

    with pytest.raises(LabIntakeStageError, match="already exists"):
        stages.claim(_incoming_file(stages), "job-1")


def test_list_files_skips_claimed_uploads(tmp_path: Path) -> None:
    """Files claimed by upload jobs should not be listed with processing files."""
    stages = StageDirectoryManager(tmp_path)
    stages.claim(_incoming_file(stages, "upload.csv"), "job-1")
    stages.move(_incoming_file(stages, "stuck.csv"), "processing")

    files = stages.list_files("processing")

    assert [intake_file.filename for intake_file in files] == ["stuck.csv"]


def test_release_claim_removes_empty_owner_area(tmp_path: Path) -> None:
    """Releasing a claim should remove the owner's emptied directory."""
    stages = StageDirectoryManager(tmp_path)
    claimed = stages.claim(_incoming_file(stages), "job-1")
    stages.move(claimed, "archive")

    stages.release_claim("job-1")

    assert not (tmp_path / "processing" / ".uploads" / "job-1").exists()
