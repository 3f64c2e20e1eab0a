"""Independent background jobs with per-task pause, resume, cancel and retry."""

from .jobs import bulk_download, bulk_extract, generate_manifests
from .models import BackgroundTask, DownloadOutcome, ExtractionOutcome, TaskStatus
from .registry import TaskHandle, TaskInterrupted, TaskRegistry, UnknownTaskError

__all__ = [
    "BackgroundTask",
    "DownloadOutcome",
    "ExtractionOutcome",
    "TaskHandle",
    "TaskInterrupted",
    "TaskRegistry",
    "TaskStatus",
    "UnknownTaskError",
    "bulk_download",
    "bulk_extract",
    "generate_manifests",
]
