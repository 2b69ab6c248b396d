"""Unit tests for group dispatch."""

from __future__ import annotations

from pathlib import Path
from typing import Mapping

from core.errors import LabIntakeSinkError
from core.types import FieldError, RowGroup, Submitter, ValidationOutcome
from ingest.dispatcher import (
    ClientKeyResolver,
    Dispatcher,
    SampleKeyResolver,
    build_sink_payload,
)
from store.client_directory import ClientDirectory
from store.record_store import JsonRecordStore


class _RecordingSink:
    def __init__(self, error: Exception | None = None) -> None:
        self.payloads: list[Mapping[str, object]] = []
        self._error = error

    def send(self, payload: Mapping[str, object]) -> int:
        if self._error is not None:
            raise self._error
        self.payloads.append(payload)
        return 201


def _outcome(group_key: str, record: dict[str, object], errors=()) -> ValidationOutcome:
    return ValidationOutcome(
        group=RowGroup(group_key=group_key, rows=()),
        record=record,
        errors=tuple(errors),
    )


def _lab_dispatcher(tmp_path: Path, sink=None) -> tuple[Dispatcher, JsonRecordStore, JsonRecordStore]:
    samples = JsonRecordStore(tmp_path, "samples")
    results = JsonRecordStore(tmp_path, "results")
    dispatcher = Dispatcher(
        results,
        SampleKeyResolver(samples),
        sink=sink,
        placeholder_fields={"email": "intake@example.com"},
    )
    return dispatcher, samples, results


def test_invalid_group_is_skipped_without_store_write(tmp_path: Path) -> None:
    """Invalid groups should never reach the record store."""
    dispatcher, _, results = _lab_dispatcher(tmp_path)
    outcome = _outcome("PK9", {}, [FieldError("results", "No valid test result data.")])

    result = dispatcher.dispatch(outcome)

    assert result.status == "skipped" and result.reason == "No valid test result data."
    assert results.count() == 0


def test_repeated_dispatch_updates_single_record(tmp_path: Path) -> None:
    """Re-dispatching the same group should converge on one record."""
    dispatcher, _, results = _lab_dispatcher(tmp_path)

    dispatcher.dispatch(_outcome("PK1", {"pack_reference_number": "PK1", "ph_result": "7.2"}))
    second = dispatcher.dispatch(
        _outcome("PK1", {"pack_reference_number": "PK1", "ph_result": "7.3"})
    )

    assert results.count() == 1
    assert second.record is not None and second.record.revision == 2
    assert second.record.fields["ph_result"] == "7.3"


def test_unresolved_key_uses_placeholder_with_warning(tmp_path: Path) -> None:
    """A missing sample should commit with the placeholder key and a warning."""
    dispatcher, _, _ = _lab_dispatcher(tmp_path)

    result = dispatcher.dispatch(_outcome("PK1", {"pack_reference_number": "PK1"}))

    assert result.status == "committed" and len(result.warnings) == 1
    assert result.record is not None
    assert result.record.fields["ucr"] == "pending"
    assert result.record.fields["email"] == "intake@example.com"


def test_sample_resolver_links_lab_reference_and_returns_ucr(tmp_path: Path) -> None:
    """A stored sample should supply the key and receive the lab reference."""
    dispatcher, samples, _ = _lab_dispatcher(tmp_path)
    samples.create_or_update("PK1", {"ucr": "123456"})

    result = dispatcher.dispatch(
        _outcome("PK1", {"pack_reference_number": "PK1", "lab_reference": "LAB-1"})
    )

    assert result.record is not None and result.record.fields["ucr"] == "123456"
    sample = samples.find_by_natural_key("PK1")
    assert sample is not None and sample.fields["lab_ref"] == "LAB-1"


def test_sink_failure_keeps_committed_record(tmp_path: Path) -> None:
    """A remote failure should mark the group failed without rollback."""
    sink = _RecordingSink(error=LabIntakeSinkError("sink down"))
    dispatcher, _, results = _lab_dispatcher(tmp_path, sink=sink)

    result = dispatcher.dispatch(_outcome("PK1", {"ph_result": "7.2"}))

    assert result.status == "failed" and result.reason == "sink down"
    assert results.find_by_natural_key("PK1") is not None


def test_sink_receives_numeric_key_as_integer(tmp_path: Path) -> None:
    """Numeric secondary keys should be sent as integers."""
    sink = _RecordingSink()
    dispatcher, samples, _ = _lab_dispatcher(tmp_path, sink=sink)
    samples.create_or_update("PK1", {"ucr": "123456"})

    dispatcher.dispatch(_outcome("PK1", {"pack_reference_number": "PK1", "ph_result": "7.2"}))

    assert sink.payloads[0]["ucr"] == 123456


def test_build_sink_payload_keeps_placeholder_as_text(tmp_path: Path) -> None:
    """Non-numeric keys should be passed through."""
    record = JsonRecordStore(tmp_path, "results").create_or_update("PK1", {"ucr": "pending"})

    assert build_sink_payload(record, "ucr")["ucr"] == "pending"


def test_client_resolver_prefers_installer_email(tmp_path: Path) -> None:
    """Installer email should win over company email."""
    clients = ClientDirectory(JsonRecordStore(tmp_path, "clients"))
    resolver = ClientKeyResolver(clients, Submitter(name="ann"))

    resolved = resolver.resolve(
        {"installer_email": "Fit@Example.com", "company_email": "office@example.com"}
    )

    assert resolved is not None and resolved.fields["client_id"] == "fit@example.com"
    assert clients.find("office@example.com") is None


def test_client_resolver_falls_back_to_submitter(tmp_path: Path) -> None:
    """Without a valid email the submitter's client should be used."""
    clients = ClientDirectory(JsonRecordStore(tmp_path, "clients"))
    submitter = Submitter(name="ann", client_id="c-9", client_name="Acme", ucr="555000")
    resolver = ClientKeyResolver(clients, submitter)

    resolved = resolver.resolve({"installer_email": "not-an-email"})

    assert resolved is not None and resolved.value == "555000"
    assert resolved.fields["client_name"] == "Acme"


def test_client_resolver_returns_none_without_any_client(tmp_path: Path) -> None:
    """No email and no submitter client means the key is unresolved."""
    resolver = ClientKeyResolver(
        ClientDirectory(JsonRecordStore(tmp_path, "clients")), Submitter(name="ann")
    )

    assert resolver.resolve({}) is None
