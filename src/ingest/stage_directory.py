"""Staging directory state machine.

This module owns the four staging areas a CSV file moves through
and performs the atomic moves between them.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
import os
from pathlib import Path
import shutil
import tempfile
from typing import Callable

from core.constants import (
    MONTHLY_STAGES,
    STAGE_DIR_MODE,
    STAGE_INCOMING,
    STAGE_NAMES,
    STAGE_PROCESSING,
    UPLOAD_CLAIMS_DIR_NAME,
)
from core.errors import LabIntakeStageError
from core.logging_config import get_logger
from core.types import IntakeFile, StageName

_LOGGER = get_logger(__name__)


class StageDirectoryManager:
    """Filesystem-backed staging area manager."""

    def __init__(
        self,
        intake_root: Path,
        monthly_subdirs: bool = False,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._intake_root = intake_root
        self._monthly_subdirs = monthly_subdirs
        self._now = now or (lambda: datetime.now(timezone.utc))

    @property
    def intake_root(self) -> Path:
        return self._intake_root

    def ensure_stage(self, stage: StageName) -> Path:
        """Create the stage directory if needed and verify it is writable.

        Args:
            stage: Stage name.

        Returns:
            Stage directory path, including the month subdirectory when enabled.

        Raises:
            LabIntakeStageError: If the directory is unknown, missing, or not writable.
        """
        stage_dir = self._stage_dir(stage)
        try:
            stage_dir.mkdir(mode=STAGE_DIR_MODE, parents=True, exist_ok=True)
        except OSError as error:
            raise LabIntakeStageError(
                f"Failed to create stage directory {stage_dir}: {error}. "
                "Check intake root permissions and retry."
            ) from error
        if not stage_dir.is_dir() or not os.access(stage_dir, os.W_OK | os.X_OK):
            raise LabIntakeStageError(
                f"Stage directory {stage_dir} is not writable. "
                "Fix directory permissions; the file will be retried later."
            )
        return stage_dir

    def ensure_all(self) -> None:
        """Ensure every stage directory exists and is writable."""
        for stage in STAGE_NAMES:
            self.ensure_stage(stage)

    def move(self, intake_file: IntakeFile, to_stage: StageName) -> IntakeFile:
        """Move a file into another stage.

        A missing source with an existing destination is treated as an
        already-completed move. A missing source without destination is
        left for whichever worker owns the file and returned unchanged.

        Args:
            intake_file: File to move.
            to_stage: Destination stage.

        Returns:
            File handle describing the new location.

        Raises:
            LabIntakeStageError: If the destination is unusable or the copy fails.
        """
        target_dir = self.ensure_stage(to_stage)
        return self._move_to(intake_file, target_dir / intake_file.filename, to_stage)

    def claim(self, intake_file: IntakeFile, owner: str) -> IntakeFile:
        """Move a file into a private processing area owned by one upload job.

        Claimed files live under ``processing/.uploads/<owner>/`` so they
        are never listed for the automated worker and two jobs with the
        same file name never share a path.

        Args:
            intake_file: File to claim.
            owner: Job identifier owning the claim.

        Returns:
            File handle describing the claimed location.

        Raises:
            LabIntakeStageError: If the owner already holds a file of that
                name or the claim area is unusable.
        """
        claim_dir = self._claim_dir(owner)
        try:
            claim_dir.mkdir(mode=STAGE_DIR_MODE, parents=True, exist_ok=True)
        except OSError as error:
            raise LabIntakeStageError(
                f"Failed to create upload claim directory {claim_dir}: {error}. "
                "Check intake root permissions and retry."
            ) from error
        target_path = claim_dir / intake_file.filename
        if target_path.exists() and target_path != intake_file.path:
            raise LabIntakeStageError(
                f"Upload claim {target_path} already exists. "
                "Finish or remove the earlier upload before reusing its job id."
            )
        return self._move_to(intake_file, target_path, STAGE_PROCESSING)

    def release_claim(self, owner: str) -> None:
        """Remove an owner's claim directory once it is empty."""
        claim_dir = self._claim_dir(owner)
        try:
            claim_dir.rmdir()
        except FileNotFoundError:
            return
        except OSError as error:
            _LOGGER.warning("upload_claim_not_released", owner=owner, error=str(error))

    def _move_to(
        self,
        intake_file: IntakeFile,
        target_path: Path,
        to_stage: StageName,
    ) -> IntakeFile:
        moved_file = replace(intake_file, path=target_path, stage=to_stage)
        source_path = intake_file.path
        if source_path == target_path:
            return moved_file
        if not source_path.exists():
            if target_path.exists():
                _LOGGER.info(
                    "stage_move_already_done", filename=intake_file.filename, stage=to_stage
                )
                return moved_file
            _LOGGER.warning(
                "stage_move_source_missing",
                filename=intake_file.filename,
                source=str(source_path),
                stage=to_stage,
            )
            return intake_file
        try:
            os.replace(source_path, target_path)
        except OSError:
            _copy_then_delete(source_path, target_path)
        _LOGGER.info(
            "stage_move_completed",
            filename=intake_file.filename,
            from_stage=intake_file.stage,
            to_stage=to_stage,
        )
        return moved_file

    def receive(self, source_path: Path) -> IntakeFile:
        """Copy an external file into the incoming stage.

        Args:
            source_path: Uploaded or dropped CSV file.

        Returns:
            File handle in the incoming stage.

        Raises:
            LabIntakeStageError: If the source is missing or the copy fails.
        """
        if not source_path.is_file():
            raise LabIntakeStageError(
                f"Cannot stage {source_path}: file does not exist. Provide an existing CSV file."
            )
        target_path = self.ensure_stage(STAGE_INCOMING) / source_path.name
        _atomic_copy(source_path, target_path)
        return self.describe(target_path, STAGE_INCOMING)

    def describe(self, path: Path, stage: StageName) -> IntakeFile:
        """Build a file handle for a path already inside a stage."""
        return IntakeFile(
            path=path,
            filename=path.name,
            modified_at=path.stat().st_mtime,
            stage=stage,
        )

    def locate(self, path: Path) -> IntakeFile | None:
        """Return a file handle when the path lies in a stage directory."""
        resolved = path.expanduser().resolve()
        for stage in STAGE_NAMES:
            stage_root = self._intake_root / stage
            if resolved.parent == stage_root or resolved.parent.parent == stage_root:
                return self.describe(resolved, stage)
        return None

    def list_files(self, stage: StageName) -> list[IntakeFile]:
        """List CSV files in a stage, oldest first.

        Args:
            stage: Stage name.

        Returns:
            File handles sorted by modification time.
        """
        stage_root = self._intake_root / stage
        if not stage_root.exists():
            return []
        files = [
            self.describe(path, stage)
            for path in stage_root.rglob("*.csv")
            if path.is_file() and not _is_hidden(path.relative_to(stage_root))
        ]
        return sorted(files, key=lambda intake_file: (intake_file.modified_at, intake_file.filename))

    def _stage_dir(self, stage: StageName) -> Path:
        if stage not in STAGE_NAMES:
            raise LabIntakeStageError(
                f"Unknown stage '{stage}'. Use one of {STAGE_NAMES}."
            )
        stage_dir = self._intake_root / stage
        if self._monthly_subdirs and stage in MONTHLY_STAGES:
            current = self._now()
            stage_dir = stage_dir / f"{current.month}-{current.year}"
        return stage_dir

    def _claim_dir(self, owner: str) -> Path:
        return self._intake_root / STAGE_PROCESSING / UPLOAD_CLAIMS_DIR_NAME / owner


def _is_hidden(relative_path: Path) -> bool:
    """Return whether any directory in a stage-relative path is dot-prefixed."""
    return any(part.startswith(".") for part in relative_path.parts[:-1])


def _copy_then_delete(source_path: Path, target_path: Path) -> None:
    """Copy across volumes, deleting the source only after a full copy."""
    _atomic_copy(source_path, target_path)
    try:
        source_path.unlink()
    except FileNotFoundError:
        pass
    except OSError as error:
        raise LabIntakeStageError(
            f"Copied {source_path} to {target_path} but could not remove the source: {error}. "
            "Remove the source file manually."
        ) from error


def _atomic_copy(source_path: Path, target_path: Path) -> None:
    """Copy into a temp file beside the target, then rename into place."""
    handle, temp_name = tempfile.mkstemp(
        prefix=f".{target_path.name}.", suffix=".part", dir=target_path.parent
    )
    os.close(handle)
    temp_path = Path(temp_name)
    try:
        shutil.copy2(source_path, temp_path)
        os.replace(temp_path, target_path)
    except OSError as error:
        temp_path.unlink(missing_ok=True)
        raise LabIntakeStageError(
            f"Failed to copy {source_path} to {target_path}: {error}. "
            "The source file was left in place; retry the move."
        ) from error
