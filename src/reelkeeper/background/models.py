"""Background task data models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from reelkeeper.sources.models import ExtractedMetadata


class TaskStatus(str, Enum):
    """Lifecycle of a background task."""

    QUEUED = "queued"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


class BackgroundTask(BaseModel):
    """A long-running job tracked by the registry.

    Attributes:
        id: Registry-assigned identifier.
        label: Human-readable description.
        kind: Job category (``extract``, ``download``, ``manifests`` ...).
        status: Current lifecycle status.
        total_units: Units of work the task will perform.
        processed_units: Units completed so far.
        started_at: When the task first started running.
        ended_at: When the task completed or failed.
        error_detail: Failure message, if the task failed.
    """

    id: str
    label: str
    kind: str
    status: TaskStatus = TaskStatus.QUEUED
    total_units: int = 0
    processed_units: int = 0
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    error_detail: Optional[str] = None

    @property
    def progress_percent(self) -> float:
        if self.total_units <= 0:
            return 100.0 if self.status is TaskStatus.COMPLETED else 0.0
        return round(min(self.processed_units, self.total_units) * 100 / self.total_units, 2)


class ExtractionOutcome(BaseModel):
    """Per-item result of a bulk extraction job."""

    identity: str
    metadata: Optional[ExtractedMetadata] = None
    error: Optional[str] = None


class DownloadOutcome(BaseModel):
    """Per-item result of a bulk download job."""

    identity: str
    path: Optional[Path] = None
    size_bytes: int = 0
    error: Optional[str] = None


__all__ = ["TaskStatus", "BackgroundTask", "ExtractionOutcome", "DownloadOutcome"]
