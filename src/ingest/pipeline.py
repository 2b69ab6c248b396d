"""Intake pipeline wiring.

This module builds the stores, profiles, dispatchers, and drivers for
a runtime configuration, and runs the automated worker over staged files.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from core.config import LabIntakeConfig
from core.constants import (
    CLIENTS_COLLECTION,
    RESULTS_COLLECTION,
    SAMPLES_COLLECTION,
    STAGE_INCOMING,
    STAGE_PROCESSING,
)
from core.logging_config import get_logger
from core.types import FileOutcome, IntakeFile, Submitter
from ingest.automated_worker import AutomatedIntakeWorker
from ingest.chunked_driver import ChunkedUploadDriver
from ingest.dispatcher import ClientKeyResolver, Dispatcher, SampleKeyResolver
from ingest.profiles import LAB_RESULT_PROFILE, SAMPLE_UPLOAD_PROFILE, build_profile
from ingest.stage_directory import StageDirectoryManager
from store.client_directory import ClientDirectory
from store.intake_ledger import IntakeLedger
from store.job_state_store import FileJobStateStore
from store.notice_store import FileNoticeStore
from store.record_store import JsonRecordStore
from store.remote_sink import HttpResultSink, ResultSink

_LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class IntakeRuntime:
    """Wired collaborators for one configuration.

    Attributes:
        stages: Staging directory manager.
        samples: Sample record collection.
        results: Lab result record collection.
        clients: Client directory.
        notices: Notice store.
        ledger: Intake ledger.
        jobs: Resumable job state store.
        worker: Automated lab-result worker.
        uploads: Chunked sample-upload driver.
    """

    stages: StageDirectoryManager
    samples: JsonRecordStore
    results: JsonRecordStore
    clients: ClientDirectory
    notices: FileNoticeStore
    ledger: IntakeLedger
    jobs: FileJobStateStore
    worker: AutomatedIntakeWorker
    uploads: ChunkedUploadDriver


def build_runtime(config: LabIntakeConfig, sink: ResultSink | None = None) -> IntakeRuntime:
    """Build all pipeline collaborators from configuration.

    Args:
        config: Runtime configuration.
        sink: Optional result sink overriding the configured HTTP sink.

    Returns:
        Wired runtime.

    Raises:
        LabIntakeConfigError: If the field registry file is invalid.
    """
    stages = StageDirectoryManager(config.intake_root, config.monthly_subdirs)
    samples = JsonRecordStore(config.store_root, SAMPLES_COLLECTION)
    results = JsonRecordStore(config.store_root, RESULTS_COLLECTION)
    clients = ClientDirectory(JsonRecordStore(config.store_root, CLIENTS_COLLECTION))
    notices = FileNoticeStore(config.store_root)
    ledger = IntakeLedger(config.store_root)
    jobs = FileJobStateStore(config.store_root)
    result_sink = sink if sink is not None else _build_http_sink(config)
    placeholder_fields = {"installer_email": config.system_email} if config.system_email else {}
    lab_dispatcher = Dispatcher(
        records=results,
        resolver=SampleKeyResolver(samples),
        sink=result_sink,
        placeholder_fields=placeholder_fields,
    )
    worker = AutomatedIntakeWorker(
        stages=stages,
        ledger=ledger,
        profile=build_profile(LAB_RESULT_PROFILE, config.field_registry_path),
        dispatcher=lab_dispatcher,
        notices=notices,
        time_budget_seconds=config.time_budget_seconds,
    )
    uploads = ChunkedUploadDriver(
        stages=stages,
        state_store=jobs,
        profile=build_profile(SAMPLE_UPLOAD_PROFILE, config.field_registry_path),
        dispatcher_factory=_sample_dispatcher_factory(samples, clients),
        notices=notices,
        row_limit=config.chunk_row_limit,
    )
    return IntakeRuntime(
        stages=stages,
        samples=samples,
        results=results,
        clients=clients,
        notices=notices,
        ledger=ledger,
        jobs=jobs,
        worker=worker,
        uploads=uploads,
    )


def stage_source_file(stages: StageDirectoryManager, source_path: Path) -> IntakeFile:
    """Return a staged handle, copying outside files into incoming first."""
    located = stages.locate(source_path)
    if located is not None:
        return located
    return stages.receive(source_path.expanduser().resolve())


def process_pending_files(
    runtime: IntakeRuntime,
    include_processing: bool = False,
) -> list[FileOutcome]:
    """Run the automated worker over every incoming file.

    Args:
        runtime: Wired runtime.
        include_processing: Also retry files left in processing.

    Returns:
        One outcome per file, in processing order.
    """
    pending = runtime.stages.list_files(STAGE_INCOMING)
    if include_processing:
        pending = runtime.stages.list_files(STAGE_PROCESSING) + pending
    outcomes = [runtime.worker.process(intake_file) for intake_file in pending]
    _LOGGER.info(
        "intake_scan_completed",
        files=len(outcomes),
        archived=sum(1 for outcome in outcomes if outcome.status == "archived"),
        deferred=sum(1 for outcome in outcomes if outcome.status == "deferred"),
    )
    return outcomes


def _build_http_sink(config: LabIntakeConfig) -> HttpResultSink | None:
    if not config.sink_base_url:
        return None
    return HttpResultSink(
        base_url=config.sink_base_url,
        api_key=config.sink_api_key,
        timeout_seconds=config.sink_timeout_seconds,
    )


def _sample_dispatcher_factory(
    samples: JsonRecordStore,
    clients: ClientDirectory,
) -> Callable[[Submitter], Dispatcher]:
    """Build per-submitter dispatchers for sample uploads."""

    def factory(submitter: Submitter) -> Dispatcher:
        return Dispatcher(records=samples, resolver=ClientKeyResolver(clients, submitter))

    return factory
