"""Unit tests for the chunked upload driver."""

from __future__ import annotations

from pathlib import Path

import pytest

from core.errors import LabIntakeJobStateError
from core.types import Submitter
from ingest.chunked_driver import ChunkedUploadDriver
from ingest.dispatcher import ClientKeyResolver, Dispatcher
from ingest.profiles import build_profile, sample_upload_profile
from ingest.stage_directory import StageDirectoryManager
from store.client_directory import ClientDirectory
from store.job_state_store import FileJobStateStore
from store.notice_store import FileNoticeStore
from store.record_store import JsonRecordStore
from tests.fixture_paths import fixture_path

_UPLOADER = Submitter(name="ann")


class _Harness:
    def __init__(self, tmp_path: Path, row_limit: int, profile=None) -> None:
        store_root = tmp_path / "store"
        self.stages = StageDirectoryManager(tmp_path / "intake")
        self.samples = JsonRecordStore(store_root, "samples")
        self.clients = ClientDirectory(JsonRecordStore(store_root, "clients"))
        self.jobs = FileJobStateStore(store_root)
        self.notices = FileNoticeStore(store_root)
        self.driver = ChunkedUploadDriver(
            stages=self.stages,
            state_store=self.jobs,
            profile=profile or sample_upload_profile(),
            dispatcher_factory=lambda submitter: Dispatcher(
                self.samples, ClientKeyResolver(self.clients, submitter)
            ),
            notices=self.notices,
            row_limit=row_limit,
        )

    def start(self, job_id: str, submitter: Submitter = _UPLOADER, relative_path: str = "samples/upload.csv"):
        intake_file = self.stages.receive(fixture_path(relative_path))
        return self.driver.start(intake_file, job_id, submitter)


def test_chunked_totals_match_single_pass(tmp_path: Path) -> None:
    """Running in small chunks should give the same totals as one pass."""
    chunked = _Harness(tmp_path / "chunked", row_limit=2)
    single = _Harness(tmp_path / "single", row_limit=1000)
    chunked.start("job-1")
    single.start("job-1")

    chunked_outcome = chunked.driver.run_to_completion("job-1")
    single_outcome = single.driver.run_to_completion("job-1")

    assert chunked_outcome.state.summary == single_outcome.state.summary
    assert chunked_outcome.state.summary.processed == 4
    assert chunked_outcome.state.summary.empty_lines == 1
    assert chunked_outcome.state.summary.committed == 4
    assert chunked_outcome.file is not None and chunked_outcome.file.stage == "archive"


def test_state_is_persisted_between_chunks(tmp_path: Path) -> None:
    """An unfinished chunk should save a cursor past the consumed rows."""
    harness = _Harness(tmp_path, row_limit=2)
    harness.start("job-1")

    first = harness.driver.run_chunk("job-1")

    saved = harness.jobs.load("job-1")
    assert not first.finished and first.rows_read == 2
    assert saved is not None and saved.phase == "in_progress"
    assert saved.offset > 0 and saved.line_number == 5
    assert saved.summary.committed == 2 and saved.summary.empty_lines == 1
    assert harness.samples.count() == 2


def test_resumed_job_finishes_and_deletes_state(tmp_path: Path) -> None:
    """A fresh driver should resume from the saved cursor."""
    harness = _Harness(tmp_path, row_limit=2)
    harness.start("job-1")
    harness.driver.run_chunk("job-1")

    resumed = _Harness(tmp_path, row_limit=2).driver.run_chunk("job-1")

    assert resumed.finished and resumed.rows_read == 2
    assert resumed.state.phase == "done"
    assert harness.jobs.load("job-1") is None
    assert harness.samples.count() == 4


def test_rows_of_one_group_are_not_split_across_chunks(tmp_path: Path) -> None:
    """The row limit should extend to the end of the current key run."""
    harness = _Harness(tmp_path, row_limit=1)
    source = tmp_path / "runs.csv"
    source.write_text(
        "Pack Reference Number,Postcode\n102-1,AB1\n102-1,AB2\n102-2,CD1\n",
        encoding="utf-8",
    )
    harness.driver.start(harness.stages.receive(source), "job-1", _UPLOADER)

    first = harness.driver.run_chunk("job-1")

    assert first.rows_read == 2 and [result.group_key for result in first.results] == ["102-1"]
    record = harness.samples.find_by_natural_key("102-1")
    assert record is not None and record.fields["postcode"] == "AB2"


def test_user_upload_rejects_admin_columns(tmp_path: Path) -> None:
    """Admin-only columns should be dropped for ordinary users."""
    harness = _Harness(tmp_path, row_limit=100)
    harness.start("job-1")

    outcome = harness.driver.run_to_completion("job-1")

    assert outcome.state.results["rejected_columns"] == ["customer_id"]
    record = harness.samples.find_by_natural_key("102-0001")
    assert record is not None and "customer_id" not in record.fields


def test_admin_upload_keeps_admin_columns(tmp_path: Path) -> None:
    """Admin submitters should be able to set admin-only columns."""
    harness = _Harness(tmp_path, row_limit=100)
    harness.start("job-1", submitter=Submitter(name="root", access="admin"))

    harness.driver.run_to_completion("job-1")

    record = harness.samples.find_by_natural_key("102-0001")
    assert record is not None and record.fields["customer_id"] == "C-1"


def test_registry_override_changes_column_access(tmp_path: Path) -> None:
    """A field registry file should be able to restrict extra columns."""
    profile = build_profile("sample_upload", fixture_path("registry/admin_postcode.yaml"))
    harness = _Harness(tmp_path, row_limit=100, profile=profile)
    harness.start("job-1")

    outcome = harness.driver.run_to_completion("job-1")

    assert outcome.state.results["rejected_columns"] == ["postcode"]
    record = harness.samples.find_by_natural_key("102-0001")
    assert record is not None and record.fields["customer_id"] == "C-1"


def test_sample_records_resolve_clients_and_dates(tmp_path: Path) -> None:
    """Sample records should get a client key and normalized dates."""
    harness = _Harness(tmp_path, row_limit=100)
    harness.start("job-1")

    outcome = harness.driver.run_to_completion("job-1")

    first = harness.samples.find_by_natural_key("102-0001")
    unlinked = harness.samples.find_by_natural_key("005-0003")
    undated = harness.samples.find_by_natural_key("006-0004")
    assert first is not None and first.fields["client_id"] == "ann@example.com"
    assert first.fields["date_sent"] == "2024-02-01T00:00:00"
    assert unlinked is not None and unlinked.fields["ucr"] == "pending"
    assert unlinked.fields["pack_type"] == "worcesterbosch_contract"
    assert undated is not None and "date_sent" not in undated.fields
    assert outcome.state.results["warnings"] == 1


def test_start_rejects_existing_job_id(tmp_path: Path) -> None:
    """Job ids must be unique while the job is pending."""
    harness = _Harness(tmp_path, row_limit=2)
    harness.start("job-1")

    with pytest.raises(LabIntakeJobStateError, match="already exists"):
        harness.start("job-1")


def test_run_chunk_without_state_raises(tmp_path: Path) -> None:
    """Resuming an unknown job should fail clearly."""
    harness = _Harness(tmp_path, row_limit=2)

    with pytest.raises(LabIntakeJobStateError, match="Start the upload"):
        harness.driver.run_chunk("missing")


def test_missing_anchor_completes_job_as_failed(tmp_path: Path) -> None:
    """A header without pack references should fail the upload once."""
    harness = _Harness(tmp_path, row_limit=2)
    harness.start("job-1", relative_path="lab/missing_anchor.csv")

    outcome = harness.driver.run_chunk("job-1")

    assert outcome.finished and outcome.file is not None and outcome.file.stage == "failed"
    assert len(harness.notices.list_notices()) == 1


def test_claimed_upload_is_hidden_from_processing_listing(tmp_path: Path) -> None:
    """A started upload should not be listed for the automated worker."""
    harness = _Harness(tmp_path, row_limit=2)
    state = harness.start("job-1")

    listed = harness.stages.list_files("processing")

    assert listed == []
    assert Path(state.source_path).parent == tmp_path / "intake" / "processing" / ".uploads" / "job-1"


def test_same_filename_uploads_keep_separate_sources(tmp_path: Path) -> None:
    """Two pending jobs for files with one name should not overwrite each other."""
    harness = _Harness(tmp_path, row_limit=1)
    first_source = tmp_path / "first" / "batch.csv"
    second_source = tmp_path / "second" / "batch.csv"
    first_source.parent.mkdir()
    second_source.parent.mkdir()
    first_source.write_text(
        "Pack Reference Number,Postcode\n201-1,AB1\n201-2,AB2\n201-3,AB3\n", encoding="utf-8"
    )
    second_source.write_text("Pack Reference Number,Postcode\n301-1,CD1\n", encoding="utf-8")
    harness.driver.start(harness.stages.receive(first_source), "job-1", _UPLOADER)
    harness.driver.run_chunk("job-1")
    harness.driver.start(harness.stages.receive(second_source), "job-2", _UPLOADER)

    second = harness.driver.run_to_completion("job-2")
    first = harness.driver.run_to_completion("job-1")

    assert first.finished and first.state.summary.committed == 3
    assert second.finished and second.state.summary.committed == 1
    keys = ["201-1", "201-2", "201-3", "301-1"]
    assert all(harness.samples.find_by_natural_key(key) is not None for key in keys)
    assert not (tmp_path / "intake" / "processing" / ".uploads" / "job-1").exists()


def test_run_chunk_rejects_changed_source(tmp_path: Path) -> None:
    """A source replaced after the job started should stop the job."""
    harness = _Harness(tmp_path, row_limit=2)
    state = harness.start("job-1")
    harness.driver.run_chunk("job-1")
    with Path(state.source_path).open("a", encoding="utf-8") as handle:
        handle.write("999-0001,,,,,,,\n")

    with pytest.raises(LabIntakeJobStateError, match="changed since the job started"):
        harness.driver.run_chunk("job-1")


def test_run_chunk_rejects_missing_source(tmp_path: Path) -> None:
    """A claimed file removed mid-job should fail with a job state error."""
    harness = _Harness(tmp_path, row_limit=2)
    state = harness.start("job-1")
    Path(state.source_path).unlink()

    with pytest.raises(LabIntakeJobStateError, match="is missing"):
        harness.driver.run_chunk("job-1")
