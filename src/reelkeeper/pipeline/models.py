"""Pipeline state and run result models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from reelkeeper.config.models import BucketStrategy, ReelkeeperConfig
from reelkeeper.manifests.models import ManifestFile
from reelkeeper.organization.models import BucketSummary, ProcessedItem
from reelkeeper.state.models import LedgerCommitSummary


class PipelineStatus(str, Enum):
    """Status values of the pipeline state machine."""

    IDLE = "idle"
    VERIFYING = "verifying"
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    ORGANIZING = "organizing"
    RENAMING = "renaming"
    GENERATING = "generating"
    PREVIEWING = "previewing"
    COMMITTING = "committing"
    COMPLETED = "completed"
    ERROR = "error"


class Counters(BaseModel):
    """Running totals for the active run."""

    model_config = ConfigDict(frozen=True)

    downloaded: int = 0
    processed: int = 0
    total_bytes: int = 0
    moved_bytes: int = 0


class Exclusion(BaseModel):
    """An item dropped from a run, with the reason and the stage that dropped it."""

    model_config = ConfigDict(frozen=True)

    identity: str
    name: str
    reason: str
    stage: str


class PipelineState(BaseModel):
    """Snapshot of the orchestrator; replaced, never mutated, on every change.

    Attributes:
        status: Current state machine status.
        step_index: One-based index of the current stage (0 when idle).
        total_steps: Number of stages in a run.
        progress_percent: Weighted progress across stages, 0 to 100.
        current_item_label: Item currently being worked on, if any.
        eta_seconds: Estimated seconds remaining; None until one item completed.
        counters: Running totals.
        started_at: When the run started.
        paused: Whether the run is paused at a checkpoint.
        last_error: Last human-readable failure cause.
        failed_stage: Stage that failed when ``status`` is ``error``.
        exclusions: Items excluded so far.
        remaining_items: Eligible items left for a later run because of the cap.
        run_id: Identifier of the current run.
    """

    model_config = ConfigDict(frozen=True)

    status: PipelineStatus = PipelineStatus.IDLE
    step_index: int = 0
    total_steps: int = 8
    progress_percent: float = 0.0
    current_item_label: Optional[str] = None
    eta_seconds: Optional[float] = None
    counters: Counters = Field(default_factory=Counters)
    started_at: Optional[datetime] = None
    paused: bool = False
    last_error: Optional[str] = None
    failed_stage: Optional[PipelineStatus] = None
    exclusions: Tuple[Exclusion, ...] = ()
    remaining_items: int = 0
    run_id: Optional[str] = None


class RunOptions(BaseModel):
    """Per-run settings, usually derived from the configuration.

    Attributes:
        project_name: Name used when a ledger has to be created at commit time.
        source_scope: Store scope recorded on a newly created ledger.
        bucket_strategy: Date bucketing granularity.
        flat_folder_name: Folder used by the ``flat`` strategy.
        rename_files: Whether items receive timestamped names.
        max_items_per_run: Cap on new items scheduled per run.
        download_batch_size: Items per download sub-batch.
        inter_batch_delay_seconds: Pause between sub-batches.
        pause_poll_interval_seconds: Poll interval while paused.
        staging_dir: Where downloads are streamed; content is only counted when None.
        manifest_dir: Where manifests are written; skipped when None.
        media_root: Absolute folder committed paths are relative to, for manifests.
        notify_recipient: Recipient of the best-effort completion summary.
    """

    project_name: str = "Untitled project"
    source_scope: Optional[str] = None
    bucket_strategy: BucketStrategy = "year-month"
    flat_folder_name: str = "Media"
    rename_files: bool = True
    max_items_per_run: int = Field(default=100, ge=1)
    download_batch_size: int = Field(default=10, ge=1)
    inter_batch_delay_seconds: float = Field(default=0.5, ge=0)
    pause_poll_interval_seconds: float = Field(default=0.1, gt=0)
    staging_dir: Optional[Path] = None
    manifest_dir: Optional[Path] = None
    media_root: Optional[str] = None
    notify_recipient: Optional[str] = None

    @classmethod
    def from_config(cls, config: ReelkeeperConfig, **overrides: Any) -> "RunOptions":
        """Build options from configuration, applying non-None overrides."""
        values: dict[str, Any] = {
            "project_name": config.manifests.project_name,
            "bucket_strategy": config.organization.bucket_strategy,
            "flat_folder_name": config.organization.flat_folder_name,
            "rename_files": config.organization.rename_files,
            "max_items_per_run": config.pipeline.max_items_per_run,
            "download_batch_size": config.pipeline.download_batch_size,
            "inter_batch_delay_seconds": config.pipeline.inter_batch_delay_seconds,
            "pause_poll_interval_seconds": config.pipeline.pause_poll_interval_seconds,
            "notify_recipient": config.pipeline.notify_recipient,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)


class RunResult(BaseModel):
    """Outcome of a run, returned at preview and again after commit."""

    run_id: str
    status: PipelineStatus
    items: List[ProcessedItem] = Field(default_factory=list)
    buckets: List[BucketSummary] = Field(default_factory=list)
    exclusions: List[Exclusion] = Field(default_factory=list)
    already_processed: List[str] = Field(default_factory=list)
    remaining_items: int = 0
    manifests: List[ManifestFile] = Field(default_factory=list)
    notes: List[str] = Field(default_factory=list)
    batch_message: Optional[str] = None
    ledger_summary: Optional[LedgerCommitSummary] = None


__all__ = [
    "PipelineStatus",
    "Counters",
    "Exclusion",
    "PipelineState",
    "RunOptions",
    "RunResult",
]
