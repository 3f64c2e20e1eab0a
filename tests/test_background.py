"""Tests for the background task registry and built-in jobs."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from pathlib import Path

import pytest

from conftest import FakeContentStore, FakeMetadataService, captured, make_item
from reelkeeper.background import (
    DownloadOutcome,
    ExtractionOutcome,
    TaskHandle,
    TaskRegistry,
    TaskStatus,
    UnknownTaskError,
    bulk_download,
    bulk_extract,
    generate_manifests,
)
from reelkeeper.ingestion import RetryingExtractionClient
from reelkeeper.manifests import ManifestGenerator
from reelkeeper.organization import ChronologicalOrganizer, ProcessedItem
from reelkeeper.sources.errors import ExtractionError


def _client(service: FakeMetadataService) -> RetryingExtractionClient:
    return RetryingExtractionClient(service, sleep=lambda _: None)


def _wait(registry: TaskRegistry, task_id: str) -> None:
    assert registry.wait(task_id, timeout=5)


def test_manual_task_lifecycle() -> None:
    registry = TaskRegistry()
    task_id = registry.submit("Index archive", "index", total_units=4)

    assert registry.get(task_id).status is TaskStatus.QUEUED
    running = registry.update_progress(task_id, 10)
    assert running.status is TaskStatus.RUNNING
    assert running.processed_units == 4
    assert running.started_at is not None

    done = registry.complete(task_id)
    assert done.status is TaskStatus.COMPLETED
    assert done.progress_percent == 100.0
    assert registry.clear_finished() == [task_id]
    assert registry.list_tasks() == []


def test_unknown_task_raises() -> None:
    with pytest.raises(UnknownTaskError):
        TaskRegistry().get("task_missing")


def test_bulk_extract_records_per_item_outcomes() -> None:
    service = FakeMetadataService({"a.mov": captured(2024, 1, 1), "b.mov": ExtractionError("bad")})
    registry = TaskRegistry()
    items = [make_item("a.mov"), make_item("b.mov"), make_item("c.mov")]

    work = bulk_extract(items, _client(service))
    task_id = registry.submit("Extract", "extract", len(items), work)
    _wait(registry, task_id)

    task = registry.get(task_id)
    assert task.status is TaskStatus.COMPLETED
    assert task.processed_units == 3
    outcomes = registry.results(task_id)
    assert [outcome.identity for outcome in outcomes] == ["a.mov", "b.mov", "c.mov"]
    assert isinstance(outcomes[0], ExtractionOutcome)
    assert outcomes[0].metadata is not None
    assert outcomes[1].error == "bad"


def test_pause_and_resume_continue_from_completed_units() -> None:
    service = FakeMetadataService({f"{i}.mov": captured(2024, 1, i + 1) for i in range(5)})
    registry = TaskRegistry()
    ready = threading.Event()
    task_ids: list[str] = []

    def _pause_after_second(identity: str) -> None:
        ready.wait(timeout=5)
        if len(service.calls) == 2:
            registry.pause(task_ids[0])

    service.before_extract = _pause_after_second
    items = [make_item(f"{i}.mov") for i in range(5)]
    task_ids.append(registry.submit("Extract", "extract", 5, bulk_extract(items, _client(service))))
    ready.set()
    _wait(registry, task_ids[0])

    paused = registry.get(task_ids[0])
    assert paused.status is TaskStatus.PAUSED
    assert paused.processed_units == 2

    registry.resume(task_ids[0])
    _wait(registry, task_ids[0])

    task = registry.get(task_ids[0])
    assert task.status is TaskStatus.COMPLETED
    assert task.processed_units == 5
    assert service.calls == [f"{i}.mov" for i in range(5)]
    assert len(registry.results(task_ids[0])) == 5


def test_pausing_one_task_leaves_others_running() -> None:
    registry = TaskRegistry()
    gate = threading.Event()

    def _blocked(handle: TaskHandle) -> None:
        while not gate.wait(0.01):
            handle.checkpoint()

    def _quick(handle: TaskHandle) -> None:
        handle.advance()

    slow_id = registry.submit("Slow", "custom", 1, _blocked)
    fast_id = registry.submit("Fast", "custom", 1, _quick)
    registry.pause(slow_id)
    _wait(registry, fast_id)
    _wait(registry, slow_id)

    assert registry.get(fast_id).status is TaskStatus.COMPLETED
    assert registry.get(slow_id).status is TaskStatus.PAUSED
    with pytest.raises(ValueError):
        registry.pause(fast_id)
    gate.set()


def test_failed_task_can_be_retried_from_scratch() -> None:
    registry = TaskRegistry()
    attempts: list[int] = []

    def _flaky(handle: TaskHandle) -> None:
        attempts.append(handle.start_index)
        handle.advance()
        if len(attempts) == 1:
            raise RuntimeError("disk full")
        handle.advance()

    task_id = registry.submit("Flaky", "custom", 2, _flaky)
    _wait(registry, task_id)
    failed = registry.get(task_id)
    assert failed.status is TaskStatus.FAILED
    assert failed.error_detail == "disk full"

    reset = registry.retry(task_id)
    assert reset.processed_units == 0
    assert reset.error_detail is None
    _wait(registry, task_id)

    assert registry.get(task_id).status is TaskStatus.COMPLETED
    assert attempts == [0, 0]


def test_cancel_removes_the_task() -> None:
    registry = TaskRegistry()
    gate = threading.Event()

    def _blocked(handle: TaskHandle) -> None:
        while not gate.wait(0.01):
            handle.checkpoint()

    task_id = registry.submit("Slow", "custom", 1, _blocked)
    registry.cancel(task_id)

    with pytest.raises(UnknownTaskError):
        registry.get(task_id)
    assert registry.list_tasks() == []
    gate.set()


def test_bulk_download_writes_files_and_records_failures(tmp_path: Path) -> None:
    registry = TaskRegistry()
    content = FakeContentStore(fail_download=("b.mov",))
    items = [make_item("a.mov"), make_item("b.mov"), make_item("dir/c.mov")]

    task_id = registry.submit(
        "Download", "download", len(items), bulk_download(items, content, tmp_path)
    )
    _wait(registry, task_id)

    outcomes = registry.results(task_id)
    assert registry.get(task_id).status is TaskStatus.COMPLETED
    assert all(isinstance(outcome, DownloadOutcome) for outcome in outcomes)
    assert outcomes[0].size_bytes == 100
    assert outcomes[0].path is not None and outcomes[0].path.read_bytes().startswith(b"x")
    assert outcomes[1].error is not None and outcomes[1].path is None
    assert outcomes[2].path == tmp_path / "dir_c.mov"
    assert not (tmp_path / "b.mov").exists()


def test_generate_manifests_job(tmp_path: Path) -> None:
    plan = ChronologicalOrganizer().organize(
        [
            ProcessedItem(
                identity="a.mov",
                original_name="a.mov",
                captured_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            )
        ]
    )
    registry = TaskRegistry()

    task_id = registry.submit(
        "Manifests", "manifests", 1, generate_manifests(plan.items, ManifestGenerator(), tmp_path)
    )
    _wait(registry, task_id)

    files = registry.results(task_id)
    assert registry.get(task_id).status is TaskStatus.COMPLETED
    assert [manifest.kind for manifest in files] == ["capcut"]
    assert files[0].path.exists()
