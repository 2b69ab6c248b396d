"""Quarantine notice reporting.

The reporter turns row, group, and file failures into persisted
notices. Publishing is best-effort: a sink failure is logged and the
failure still counts toward the file's error total. A reporter may hold
its notices until the caller knows the file reached a final stage.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Mapping, Sequence
import uuid

from core.errors import LabIntakeStoreError
from core.logging_config import get_logger
from core.types import Notice
from store.notice_store import NoticeSink

_LOGGER = get_logger(__name__)

DEFAULT_NOTICE_TITLE = "CSV upload error"


class NoticeReporter:
    """Per-file notice reporter with an error counter."""

    def __init__(
        self,
        sink: NoticeSink,
        submitter: str,
        source_filename: str,
        now: Callable[[], datetime] | None = None,
        defer_publish: bool = False,
    ) -> None:
        self._sink = sink
        self._submitter = submitter
        self._source_filename = source_filename
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._errors = 0
        self._defer_publish = defer_publish
        self._pending: list[Notice] = []

    @property
    def errors(self) -> int:
        """Notices recorded by this reporter."""
        return self._errors

    def record(
        self,
        raw_cells: Sequence[str],
        header_snapshot: Mapping[int, str],
        messages: Sequence[str],
        title: str = DEFAULT_NOTICE_TITLE,
        line_number: int | None = None,
        group_key: str | None = None,
    ) -> Notice:
        """Record one failure as a notice.

        Args:
            raw_cells: Offending raw row, or empty for file-level failures.
            header_snapshot: Accepted header map at the time of failure.
            messages: Error messages.
            title: Notice title.
            line_number: Line of the offending row, when known.
            group_key: Grouping key, when the failure is group-scoped.

        Returns:
            The notice, whether or not publishing succeeded. Held notices
            are published by ``flush``.
        """
        notice = Notice(
            notice_id=uuid.uuid4().hex,
            title=title,
            messages=tuple(messages),
            raw_cells=tuple(raw_cells),
            header_snapshot=dict(header_snapshot),
            submitter=self._submitter,
            created_at=self._now(),
            source_filename=self._source_filename,
            line_number=line_number,
            group_key=group_key,
        )
        self._errors += 1
        if self._defer_publish:
            self._pending.append(notice)
        else:
            self._publish(notice)
        return notice

    def flush(self) -> int:
        """Publish held notices and return how many were published."""
        pending, self._pending = self._pending, []
        for notice in pending:
            self._publish(notice)
        return len(pending)

    def discard(self) -> int:
        """Drop held notices and return how many were dropped."""
        dropped = len(self._pending)
        self._pending = []
        return dropped

    def _publish(self, notice: Notice) -> None:
        try:
            self._sink.publish(notice)
        except (LabIntakeStoreError, OSError) as error:
            _LOGGER.error(
                "notice_publish_failed",
                notice_id=notice.notice_id,
                filename=self._source_filename,
                error=str(error),
            )
