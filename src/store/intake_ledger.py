"""Intake ledger for automated files.

Each processed file gets one entry keyed by filename and source
modification time, which is how re-delivered duplicates are detected.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, cast

from core.constants import LEDGER_DIR_NAME
from core.errors import LabIntakeStoreError
from core.types import IntakeFile, LedgerEntry, LedgerStatus
from store.json_io import key_file_name, read_json_object, write_json_atomic

_TERMINAL_STATUSES = ("success", "failed")


class IntakeLedger:
    """Filesystem-backed ledger of automated intake runs."""

    def __init__(self, store_root: Path, now: Callable[[], datetime] | None = None) -> None:
        self._ledger_dir = store_root / LEDGER_DIR_NAME
        self._ledger_dir.mkdir(parents=True, exist_ok=True)
        self._now = now or (lambda: datetime.now(timezone.utc))

    def find(self, filename: str, modified_at: float) -> LedgerEntry | None:
        payload = read_json_object(self._entry_path(filename, modified_at))
        if payload is None:
            return None
        return _entry_from_payload(payload, self._entry_path(filename, modified_at))

    def is_duplicate(self, intake_file: IntakeFile) -> bool:
        """Return whether the same file version already reached a terminal status."""
        entry = self.find(intake_file.filename, intake_file.modified_at)
        return entry is not None and entry.status in _TERMINAL_STATUSES

    def start(self, intake_file: IntakeFile, process_type: str = "automatic") -> LedgerEntry:
        """Record that a file entered processing."""
        existing = self.find(intake_file.filename, intake_file.modified_at)
        entry = LedgerEntry(
            filename=intake_file.filename,
            path=str(intake_file.path),
            refname=existing.refname if existing else None,
            status="processing",
            process_type=process_type,
            source_modified_at=intake_file.modified_at,
            uploaded_at=existing.uploaded_at if existing else self._now(),
        )
        self._write(entry)
        return entry

    def finish(
        self,
        intake_file: IntakeFile,
        status: LedgerStatus,
        refname: str | None = None,
    ) -> LedgerEntry:
        """Record the status of a file after a processing attempt.

        Args:
            intake_file: File in its final location.
            status: New ledger status.
            refname: First grouping key seen in the file, if any.

        Returns:
            Updated ledger entry.
        """
        entry = self.find(intake_file.filename, intake_file.modified_at) or self.start(
            intake_file
        )
        updated = replace(
            entry,
            path=str(intake_file.path),
            refname=refname or entry.refname,
            status=status,
            processed_at=self._now() if status in _TERMINAL_STATUSES else None,
        )
        self._write(updated)
        return updated

    def entries(self) -> list[LedgerEntry]:
        """Return all ledger entries, oldest first."""
        entries = []
        for entry_path in self._ledger_dir.glob("*.json"):
            payload = read_json_object(entry_path)
            if payload is not None:
                entries.append(_entry_from_payload(payload, entry_path))
        return sorted(entries, key=lambda entry: (entry.uploaded_at, entry.filename))

    def purge(self, limit: int | None = None) -> int:
        """Delete the oldest terminal entries.

        Args:
            limit: Maximum entries to delete; all terminal entries when ``None``.

        Returns:
            Number of deleted entries.
        """
        deleted = 0
        for entry in self.entries():
            if limit is not None and deleted >= limit:
                break
            if entry.status not in _TERMINAL_STATUSES:
                continue
            self._entry_path(entry.filename, entry.source_modified_at).unlink(missing_ok=True)
            deleted += 1
        return deleted

    def _write(self, entry: LedgerEntry) -> None:
        write_json_atomic(
            self._entry_path(entry.filename, entry.source_modified_at), _entry_to_payload(entry)
        )

    def _entry_path(self, filename: str, modified_at: float) -> Path:
        return self._ledger_dir / key_file_name(f"{filename}@{modified_at!r}")


def _entry_to_payload(entry: LedgerEntry) -> dict[str, Any]:
    return {
        "filename": entry.filename,
        "path": entry.path,
        "refname": entry.refname,
        "status": entry.status,
        "process_type": entry.process_type,
        "source_modified_at": entry.source_modified_at,
        "uploaded_at": entry.uploaded_at.isoformat(),
        "processed_at": entry.processed_at.isoformat() if entry.processed_at else None,
    }


def _entry_from_payload(payload: dict[str, Any], entry_path: Path) -> LedgerEntry:
    """Deserialize a ledger entry payload."""
    try:
        processed_at = payload.get("processed_at")
        return LedgerEntry(
            filename=str(payload["filename"]),
            path=str(payload["path"]),
            refname=payload.get("refname"),
            status=cast(LedgerStatus, str(payload["status"])),
            process_type=str(payload["process_type"]),
            source_modified_at=float(payload["source_modified_at"]),
            uploaded_at=datetime.fromisoformat(str(payload["uploaded_at"])),
            processed_at=datetime.fromisoformat(str(processed_at)) if processed_at else None,
        )
    except (KeyError, TypeError, ValueError) as error:
        raise LabIntakeStoreError(
            f"Invalid ledger entry at {entry_path}: {error}. Remove the corrupt entry and retry."
        ) from error
