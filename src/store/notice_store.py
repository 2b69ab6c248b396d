"""Notice persistence.

Notices are appended to a JSON lines index and rendered to one
human-readable text artifact each.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from core.constants import (
    NOTICE_PREVIEW_COLUMNS,
    NOTICE_PREVIEW_VALUE_LENGTH,
    NOTICES_DIR_NAME,
    NOTICES_FILE_NAME,
)
from core.errors import LabIntakeStoreError
from core.types import Notice


class NoticeSink(Protocol):
    """Notice sink contract consumed by the reporter."""

    def publish(self, notice: Notice) -> None:
        ...


class FileNoticeStore:
    """Filesystem-backed notice sink."""

    def __init__(self, store_root: Path) -> None:
        self._notices_dir = store_root / NOTICES_DIR_NAME
        self._notices_dir.mkdir(parents=True, exist_ok=True)

    def publish(self, notice: Notice) -> None:
        """Persist a notice and its text artifact.

        Raises:
            LabIntakeStoreError: If either file cannot be written.
        """
        try:
            with self._index_path().open("a", encoding="utf-8") as index_file:
                index_file.write(json.dumps(_notice_to_payload(notice), sort_keys=True) + "\n")
            self.artifact_path(notice).write_text(render_notice_text(notice), encoding="utf-8")
        except OSError as error:
            raise LabIntakeStoreError(
                f"Failed to persist notice {notice.notice_id} under {self._notices_dir}: {error}. "
                "Check store root permissions."
            ) from error

    def list_notices(self, limit: int | None = None) -> list[Notice]:
        """Return persisted notices, newest last.

        Args:
            limit: Optional maximum number of most recent notices.

        Returns:
            Notices in publication order.
        """
        index_path = self._index_path()
        if not index_path.exists():
            return []
        notices: list[Notice] = []
        for line_number, line in enumerate(index_path.read_text(encoding="utf-8").splitlines(), 1):
            if not line.strip():
                continue
            notices.append(_notice_from_line(index_path, line, line_number))
        if limit is not None:
            return notices[-limit:] if limit > 0 else []
        return notices

    def artifact_path(self, notice: Notice) -> Path:
        return self._notices_dir / f"{notice.notice_id}.txt"

    def _index_path(self) -> Path:
        return self._notices_dir / NOTICES_FILE_NAME


def render_notice_text(notice: Notice) -> str:
    """Render a notice as a human-readable report.

    Args:
        notice: Notice to render.

    Returns:
        Multi-line text with messages and a preview of the offending row.
    """
    location = notice.source_filename
    if notice.line_number is not None:
        location = f"{location} (line {notice.line_number})"
    lines = [
        notice.title,
        f"File: {location}",
        f"Submitted by: {notice.submitter}",
        f"Created: {notice.created_at.isoformat()}",
    ]
    if notice.group_key:
        lines.append(f"Pack reference: {notice.group_key}")
    lines.extend(["", "Please correct these errors on the CSV file and re-upload.", ""])
    lines.extend(f"- {message}" for message in notice.messages)
    preview = _build_preview(notice)
    if preview:
        lines.extend(["", "Sample data preview:"])
        lines.extend(preview)
    return "\n".join(lines) + "\n"


def _build_preview(notice: Notice) -> list[str]:
    """Preview up to ten accepted columns of the raw row."""
    preview: list[str] = []
    positions = sorted(notice.header_snapshot)
    for position in positions[:NOTICE_PREVIEW_COLUMNS]:
        if position >= len(notice.raw_cells):
            continue
        value = notice.raw_cells[position]
        if len(value) > NOTICE_PREVIEW_VALUE_LENGTH:
            value = value[:NOTICE_PREVIEW_VALUE_LENGTH] + "..."
        preview.append(f"  {notice.header_snapshot[position]}: {value}")
    if preview and len(positions) > NOTICE_PREVIEW_COLUMNS:
        preview.append("Additional columns omitted for brevity.")
    return preview


def _notice_to_payload(notice: Notice) -> dict[str, Any]:
    return {
        "notice_id": notice.notice_id,
        "title": notice.title,
        "messages": list(notice.messages),
        "raw_cells": list(notice.raw_cells),
        "header_snapshot": {str(key): value for key, value in notice.header_snapshot.items()},
        "submitter": notice.submitter,
        "created_at": notice.created_at.isoformat(),
        "source_filename": notice.source_filename,
        "line_number": notice.line_number,
        "group_key": notice.group_key,
    }


def _notice_from_line(index_path: Path, line: str, line_number: int) -> Notice:
    """Parse one notice index line."""
    try:
        payload = json.loads(line)
        return Notice(
            notice_id=str(payload["notice_id"]),
            title=str(payload["title"]),
            messages=tuple(str(message) for message in payload["messages"]),
            raw_cells=tuple(str(cell) for cell in payload["raw_cells"]),
            header_snapshot={
                int(key): str(value) for key, value in payload["header_snapshot"].items()
            },
            submitter=str(payload["submitter"]),
            created_at=datetime.fromisoformat(str(payload["created_at"])),
            source_filename=str(payload["source_filename"]),
            line_number=payload.get("line_number"),
            group_key=payload.get("group_key"),
        )
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as error:
        raise LabIntakeStoreError(
            f"Failed to parse notice index at {index_path}:{line_number}: {error}. "
            "Remove the corrupt line and retry."
        ) from error
