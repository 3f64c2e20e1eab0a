"""Configuration models describing Reelkeeper settings."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

BucketStrategy = Literal["year-month", "year", "flat"]

DEFAULT_MEDIA_EXTENSIONS = [
    ".mov",
    ".mp4",
    ".m4v",
    ".3gp",
    ".avi",
    ".mkv",
    ".jpg",
    ".jpeg",
    ".heic",
    ".png",
    ".tif",
    ".tiff",
]


class ReelkeeperBaseModel(BaseModel):
    """Shared configuration for Reelkeeper Pydantic models."""

    model_config = ConfigDict(extra="forbid")


class PipelineSettings(ReelkeeperBaseModel):
    """Batching and pacing options for a pipeline run.

    Attributes:
        max_items_per_run: Maximum number of new items scheduled in a single run.
        download_batch_size: Number of items downloaded per sub-batch.
        inter_batch_delay_seconds: Pause inserted between download sub-batches.
        pause_poll_interval_seconds: Poll interval used while a run is paused.
        staging_dirname: Directory (under the state directory) used for downloads.
        notify_recipient: Who receives the completion summary; no notification when unset.
    """

    max_items_per_run: int = Field(default=100, ge=1)
    download_batch_size: int = Field(default=10, ge=1)
    inter_batch_delay_seconds: float = Field(default=0.5, ge=0)
    pause_poll_interval_seconds: float = Field(default=0.1, gt=0)
    staging_dirname: str = "staging"
    notify_recipient: Optional[str] = None


class ExtractionSettings(ReelkeeperBaseModel):
    """Retry policy for the metadata extraction service.

    Attributes:
        max_attempts: Total attempts made for transient failures.
        backoff_seconds: Delay before the second attempt; doubles afterwards.
    """

    max_attempts: int = Field(default=3, ge=1)
    backoff_seconds: float = Field(default=1.0, ge=0)


class OrganizationOptions(ReelkeeperBaseModel):
    """Settings that govern bucketing and renaming.

    Attributes:
        bucket_strategy: Granularity used to group items into folders.
        flat_folder_name: Folder used when the strategy is ``flat``.
        rename_files: Whether items receive timestamped names.
        destination_folder_name: Folder created under the target root for organized media.
    """

    bucket_strategy: BucketStrategy = "year-month"
    flat_folder_name: str = "Media"
    rename_files: bool = True
    destination_folder_name: str = "Organized_Media"


class ManifestSettings(ReelkeeperBaseModel):
    """Options for edit-ready project manifests.

    Attributes:
        capcut: Whether a CapCut project is generated.
        premiere: Whether a Premiere Pro (FCP7 XML) project is generated.
        project_name: Base name for generated projects.
        frame_rate: Timeline frame rate.
        resolution: Timeline resolution in ``WIDTHxHEIGHT`` form.
        group_by_date: Whether bins/subsequences are grouped by bucket.
        create_subsequences: Whether CapCut subsequences are emitted per bucket.
    """

    capcut: bool = True
    premiere: bool = False
    project_name: str = "Organized_Media"
    frame_rate: int = Field(default=30, ge=1)
    resolution: str = Field(default="1920x1080", pattern=r"^\d+x\d+$")
    group_by_date: bool = True
    create_subsequences: bool = True


class ProcessingOptions(ReelkeeperBaseModel):
    """Discovery options for the local media store.

    Attributes:
        recurse_directories: Whether to recurse into subdirectories.
        process_hidden_files: Whether hidden files should be included.
        follow_symlinks: Whether to traverse symbolic links.
        extensions: File suffixes treated as media.
    """

    recurse_directories: bool = True
    process_hidden_files: bool = False
    follow_symlinks: bool = False
    extensions: List[str] = Field(default_factory=lambda: list(DEFAULT_MEDIA_EXTENSIONS))


class LedgerSettings(ReelkeeperBaseModel):
    """Where project ledgers are persisted.

    Attributes:
        directory: Directory that holds one JSON document per project.
    """

    directory: str = "~/.reelkeeper/projects"


class LoggingSettings(ReelkeeperBaseModel):
    """Runtime logging configuration.

    Attributes:
        level: Logging verbosity level.
        max_size_mb: Maximum log size before rotation.
        backup_count: Number of historical log files to retain.
    """

    level: str = "WARNING"
    max_size_mb: int = 100
    backup_count: int = 5


class CLIOptions(ReelkeeperBaseModel):
    """CLI behavior defaults and presentation preferences.

    Attributes:
        quiet_default: Whether commands suppress non-error output by default.
        summary_default: Whether commands only print summary lines by default.
    """

    quiet_default: bool = False
    summary_default: bool = False


class ReelkeeperConfig(ReelkeeperBaseModel):
    """Top-level configuration struct for Reelkeeper."""

    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    extraction: ExtractionSettings = Field(default_factory=ExtractionSettings)
    organization: OrganizationOptions = Field(default_factory=OrganizationOptions)
    manifests: ManifestSettings = Field(default_factory=ManifestSettings)
    processing: ProcessingOptions = Field(default_factory=ProcessingOptions)
    ledger: LedgerSettings = Field(default_factory=LedgerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    cli: CLIOptions = Field(default_factory=CLIOptions)


__all__ = [
    "BucketStrategy",
    "DEFAULT_MEDIA_EXTENSIONS",
    "ReelkeeperBaseModel",
    "PipelineSettings",
    "ExtractionSettings",
    "OrganizationOptions",
    "ManifestSettings",
    "ProcessingOptions",
    "LedgerSettings",
    "LoggingSettings",
    "CLIOptions",
    "ReelkeeperConfig",
]
