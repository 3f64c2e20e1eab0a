"""Registry of independent, individually controllable background tasks."""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from .models import BackgroundTask, TaskStatus

LOGGER = logging.getLogger(__name__)

TaskWork = Callable[["TaskHandle"], None]


class UnknownTaskError(KeyError):
    """Raised when a task id is not present in the registry."""


class TaskInterrupted(Exception):
    """Raised inside a worker once its task has been paused or cancelled."""


@dataclass(slots=True)
class _Worker:
    work: Optional[TaskWork]
    cancel_event: threading.Event = field(default_factory=threading.Event)
    thread: Optional[threading.Thread] = None
    results: list[Any] = field(default_factory=list)
    generation: int = 0


class TaskHandle:
    """View of a task handed to its work function.

    Attributes:
        task_id: Identifier of the task.
        start_index: Units already completed when this worker started; work
            functions skip that many units.
        results: List the work function appends its per-unit results to.
    """

    def __init__(
        self,
        registry: "TaskRegistry",
        task_id: str,
        cancel_event: threading.Event,
        generation: int,
        results: list[Any],
    ) -> None:
        self._registry = registry
        self._cancel_event = cancel_event
        self.generation = generation
        self.task_id = task_id
        self.start_index = 0
        self.results = results

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def checkpoint(self) -> None:
        """Raise ``TaskInterrupted`` if the task was paused or cancelled."""
        if self._cancel_event.is_set():
            raise TaskInterrupted(self.task_id)

    def advance(self, units: int = 1) -> None:
        """Record ``units`` more completed units of work."""
        if not self._registry._advance(self.task_id, self.generation, units):
            raise TaskInterrupted(self.task_id)


class TaskRegistry:
    """Track background tasks and run their work on daemon threads.

    Every task owns its own cancellation event, so pausing or cancelling one
    task never affects another task or the pipeline run.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tasks: dict[str, BackgroundTask] = {}
        self._workers: dict[str, _Worker] = {}

    def submit(
        self,
        label: str,
        kind: str,
        total_units: int,
        work: Optional[TaskWork] = None,
    ) -> str:
        """Register a task and start its work, if any.

        Args:
            label: Human-readable description.
            kind: Job category.
            total_units: Units of work the task will perform.
            work: Callable run on a daemon thread with a ``TaskHandle``. Tasks
                without work are driven through ``update_progress``,
                ``complete`` and ``fail``.

        Returns:
            str: Identifier of the new task.
        """
        task_id = f"task_{uuid.uuid4().hex[:12]}"
        with self._lock:
            self._tasks[task_id] = BackgroundTask(
                id=task_id, label=label, kind=kind, total_units=max(0, total_units)
            )
            self._workers[task_id] = _Worker(work=work)
            if work is not None:
                self._start(task_id)
        LOGGER.info("Submitted task %s (%s): %s", task_id, kind, label)
        return task_id

    def update_progress(self, task_id: str, processed_units: int) -> BackgroundTask:
        """Set the number of completed units; a queued task becomes running."""
        with self._lock:
            task = self._require(task_id)
            task.processed_units = max(0, min(processed_units, task.total_units))
            if task.status is TaskStatus.QUEUED:
                task.status = TaskStatus.RUNNING
                task.started_at = task.started_at or _utcnow()
            return task.model_copy()

    def complete(self, task_id: str) -> BackgroundTask:
        with self._lock:
            task = self._require(task_id)
            task.status = TaskStatus.COMPLETED
            task.processed_units = task.total_units
            task.ended_at = _utcnow()
            return task.model_copy()

    def fail(self, task_id: str, detail: str) -> BackgroundTask:
        with self._lock:
            task = self._require(task_id)
            task.status = TaskStatus.FAILED
            task.error_detail = detail
            task.ended_at = _utcnow()
            return task.model_copy()

    def pause(self, task_id: str) -> BackgroundTask:
        """Interrupt the current unit of work; completed units are kept.

        Raises:
            UnknownTaskError: If the task does not exist.
            ValueError: If the task is not queued or running.
        """
        with self._lock:
            task = self._require(task_id)
            if task.status not in (TaskStatus.QUEUED, TaskStatus.RUNNING):
                raise ValueError(f"Task {task_id} is {task.status.value}; cannot pause")
            self._workers[task_id].cancel_event.set()
            task.status = TaskStatus.PAUSED
            LOGGER.info("Paused task %s at %d/%d", task_id, task.processed_units, task.total_units)
            return task.model_copy()

    def resume(self, task_id: str) -> BackgroundTask:
        """Re-queue a paused task; work continues from ``processed_units``.

        Raises:
            UnknownTaskError: If the task does not exist.
            ValueError: If the task is not paused.
        """
        with self._lock:
            task = self._require(task_id)
            if task.status is not TaskStatus.PAUSED:
                raise ValueError(f"Task {task_id} is {task.status.value}; cannot resume")
            task.status = TaskStatus.QUEUED
            if self._workers[task_id].work is not None:
                self._start(task_id)
            LOGGER.info("Resumed task %s", task_id)
            return task.model_copy()

    def cancel(self, task_id: str) -> None:
        """Stop the task and remove it from the registry.

        Raises:
            UnknownTaskError: If the task does not exist.
        """
        with self._lock:
            self._require(task_id)
            worker = self._workers.pop(task_id)
            worker.cancel_event.set()
            del self._tasks[task_id]
        LOGGER.info("Cancelled task %s", task_id)

    def retry(self, task_id: str) -> BackgroundTask:
        """Reset progress and error and re-queue the task from the beginning.

        Raises:
            UnknownTaskError: If the task does not exist.
        """
        with self._lock:
            task = self._require(task_id)
            self._workers[task_id].cancel_event.set()
            task.processed_units = 0
            task.error_detail = None
            task.ended_at = None
            task.status = TaskStatus.QUEUED
            worker = self._workers[task_id]
            worker.generation += 1
            worker.results = []
            if worker.work is not None:
                self._start(task_id)
            LOGGER.info("Retrying task %s", task_id)
            return task.model_copy()

    def get(self, task_id: str) -> BackgroundTask:
        with self._lock:
            return self._require(task_id).model_copy()

    def list_tasks(self) -> list[BackgroundTask]:
        """Return snapshots of every task in submission order."""
        with self._lock:
            return [task.model_copy() for task in self._tasks.values()]

    def results(self, task_id: str) -> list[Any]:
        with self._lock:
            self._require(task_id)
            return list(self._workers[task_id].results)

    def clear_finished(self) -> list[str]:
        """Remove completed and failed tasks and return their ids."""
        with self._lock:
            finished = [
                task_id
                for task_id, task in self._tasks.items()
                if task.status in (TaskStatus.COMPLETED, TaskStatus.FAILED)
            ]
            for task_id in finished:
                del self._tasks[task_id]
                del self._workers[task_id]
            return finished

    def wait(self, task_id: str, timeout: Optional[float] = None) -> bool:
        """Wait for the task's current worker thread; return True once it has stopped."""
        with self._lock:
            self._require(task_id)
            thread = self._workers[task_id].thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    def _require(self, task_id: str) -> BackgroundTask:
        task = self._tasks.get(task_id)
        if task is None:
            raise UnknownTaskError(task_id)
        return task

    def _start(self, task_id: str) -> None:
        worker = self._workers[task_id]
        previous = worker.thread
        worker.cancel_event = threading.Event()
        handle = TaskHandle(self, task_id, worker.cancel_event, worker.generation, worker.results)
        worker.thread = threading.Thread(
            target=self._run_worker,
            args=(task_id, handle, worker.work, previous),
            name=f"reelkeeper-{task_id}",
            daemon=True,
        )
        worker.thread.start()

    def _run_worker(
        self,
        task_id: str,
        handle: TaskHandle,
        work: TaskWork,
        previous: Optional[threading.Thread],
    ) -> None:
        # The interrupted worker may still be finishing its current unit.
        if previous is not None and previous is not threading.current_thread():
            previous.join()

        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or handle.cancelled:
                return
            handle.start_index = task.processed_units
            task.status = TaskStatus.RUNNING
            task.started_at = task.started_at or _utcnow()

        try:
            work(handle)
        except TaskInterrupted:
            LOGGER.debug("Task %s interrupted", task_id)
            return
        except Exception as exc:
            LOGGER.warning("Task %s failed: %s", task_id, exc)
            with self._lock:
                task = self._tasks.get(task_id)
                if task is not None and not handle.cancelled:
                    task.status = TaskStatus.FAILED
                    task.error_detail = str(exc) or exc.__class__.__name__
                    task.ended_at = _utcnow()
            return

        with self._lock:
            task = self._tasks.get(task_id)
            if task is not None and not handle.cancelled:
                task.status = TaskStatus.COMPLETED
                task.ended_at = _utcnow()
        LOGGER.info("Task %s completed", task_id)

    def _advance(self, task_id: str, generation: int, units: int) -> bool:
        with self._lock:
            task = self._tasks.get(task_id)
            worker = self._workers.get(task_id)
            if task is None or worker is None or worker.generation != generation:
                return False
            task.processed_units = min(task.processed_units + units, task.total_units)
            return True


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


__all__ = ["TaskRegistry", "TaskHandle", "TaskInterrupted", "UnknownTaskError", "TaskWork"]
