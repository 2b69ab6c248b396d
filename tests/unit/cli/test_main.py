"""Unit tests for CLI command handling."""

from __future__ import annotations

from pathlib import Path

import pytest

from cli.main import main
from tests.fixture_paths import fixture_path


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("LABINTAKE_SINK_URL", "LABINTAKE_FIELD_REGISTRY", "LABINTAKE_MONTHLY_SUBDIRS"):
        monkeypatch.delenv(name, raising=False)


def _root_args(tmp_path: Path) -> list[str]:
    return ["--intake-root", str(tmp_path / "intake"), "--store-root", str(tmp_path / "store")]


def test_cli_process_archives_valid_file(tmp_path, capsys) -> None:
    """CLI process should print the archived status and counters."""
    args = [*_root_args(tmp_path), "process", str(fixture_path("lab/valid_results.csv"))]

    exit_code = main(args)
    output = capsys.readouterr().out.splitlines()

    assert exit_code == 0
    assert "status=archived" in output and "committed=2" in output and "empty_lines=1" in output


def test_cli_process_returns_failure_for_rejected_file(tmp_path, capsys) -> None:
    """CLI process should exit non-zero when the file lands in failed."""
    args = [*_root_args(tmp_path), "process", str(fixture_path("lab/all_zero.csv"))]

    exit_code = main(args)
    output = capsys.readouterr().out.splitlines()

    assert exit_code == 1 and "stage=failed" in output


def test_cli_upload_then_resume(tmp_path, capsys) -> None:
    """A single-chunk upload should be resumable from the CLI."""
    upload_args = [
        *_root_args(tmp_path),
        "upload",
        str(fixture_path("samples/upload.csv")),
        "--job-id",
        "job-1",
        "--chunk-rows",
        "2",
        "--single-chunk",
    ]

    upload_code = main(upload_args)
    upload_output = capsys.readouterr().out.splitlines()
    resume_code = main([*_root_args(tmp_path), "resume", "job-1"])
    resume_output = capsys.readouterr().out.splitlines()

    assert upload_code == 0 and "finished=false" in upload_output
    assert resume_code == 0 and "finished=true" in resume_output
    assert "stage=archive" in resume_output and "committed=4" in resume_output


def test_cli_resume_unknown_job_prints_error(tmp_path, capsys) -> None:
    """Domain errors should be printed and mapped to exit code 1."""
    exit_code = main([*_root_args(tmp_path), "resume", "missing"])
    output = capsys.readouterr().out.strip()

    assert exit_code == 1 and output.startswith("error=No upload job state found")


def test_cli_ledger_and_notices_list_entries(tmp_path, capsys) -> None:
    """Ledger and notice listings should reflect processed files."""
    main([*_root_args(tmp_path), "process", str(fixture_path("lab/missing_anchor.csv"))])
    capsys.readouterr()

    main([*_root_args(tmp_path), "ledger"])
    ledger_output = capsys.readouterr().out
    main([*_root_args(tmp_path), "notices"])
    notice_output = capsys.readouterr().out

    assert "missing_anchor.csv\tfailed" in ledger_output
    assert "CSV upload error" in notice_output
