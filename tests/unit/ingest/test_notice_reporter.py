"""Unit tests for notice reporting."""

from __future__ import annotations

from pathlib import Path

from core.errors import LabIntakeStoreError
from core.types import Notice
from ingest.notice_reporter import NoticeReporter
from store.notice_store import FileNoticeStore


class _FailingSink:
    def publish(self, notice: Notice) -> None:
        raise LabIntakeStoreError("disk full")


def test_record_publishes_notice_and_counts_it(tmp_path: Path) -> None:
    """Recorded notices should be persisted and counted."""
    store = FileNoticeStore(tmp_path)
    reporter = NoticeReporter(store, "ann", "results.csv")

    notice = reporter.record(("PK1", "7"), {0: "pack_reference_number"}, ["bad row"], line_number=3)

    assert reporter.errors == 1
    assert [stored.notice_id for stored in store.list_notices()] == [notice.notice_id]


def test_publish_failure_still_counts_as_error(tmp_path: Path) -> None:
    """A sink failure should be logged but still counted."""
    reporter = NoticeReporter(_FailingSink(), "ann", "results.csv")

    reporter.record((), {}, ["file failed"])
    reporter.record((), {}, ["file failed again"])

    assert reporter.errors == 2


def test_deferred_reporter_holds_notices_until_flush(tmp_path: Path) -> None:
    """A deferring reporter should count notices but publish only on flush."""
    store = FileNoticeStore(tmp_path)
    reporter = NoticeReporter(store, "ann", "results.csv", defer_publish=True)
    reporter.record((), {}, ["row failed"])
    held = store.list_notices()

    published = reporter.flush()

    assert held == [] and published == 1 and reporter.errors == 1
    assert [notice.messages for notice in store.list_notices()] == [("row failed",)]


def test_discard_drops_held_notices(tmp_path: Path) -> None:
    """Discarded notices should never reach the sink."""
    store = FileNoticeStore(tmp_path)
    reporter = NoticeReporter(store, "ann", "results.csv", defer_publish=True)
    reporter.record((), {}, ["row failed"])

    dropped = reporter.discard()

    assert dropped == 1 and reporter.flush() == 0 and store.list_notices() == []
