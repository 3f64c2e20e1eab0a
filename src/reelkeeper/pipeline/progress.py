"""Progress weighting, ETA estimation and display formatting."""

from __future__ import annotations

from typing import Dict, Optional, Tuple

from .models import PipelineStatus

# Each stage owns a fixed slice of the 0-100 range.
STAGE_SLICES: Dict[PipelineStatus, Tuple[float, float]] = {
    PipelineStatus.IDLE: (0.0, 0.0),
    PipelineStatus.VERIFYING: (0.0, 20.0),
    PipelineStatus.DOWNLOADING: (20.0, 50.0),
    PipelineStatus.EXTRACTING: (50.0, 60.0),
    PipelineStatus.ORGANIZING: (60.0, 70.0),
    PipelineStatus.RENAMING: (70.0, 80.0),
    PipelineStatus.GENERATING: (80.0, 90.0),
    PipelineStatus.PREVIEWING: (90.0, 90.0),
    PipelineStatus.COMMITTING: (90.0, 100.0),
    PipelineStatus.COMPLETED: (100.0, 100.0),
}

STAGE_ORDER = (
    PipelineStatus.VERIFYING,
    PipelineStatus.DOWNLOADING,
    PipelineStatus.EXTRACTING,
    PipelineStatus.ORGANIZING,
    PipelineStatus.RENAMING,
    PipelineStatus.GENERATING,
    PipelineStatus.PREVIEWING,
    PipelineStatus.COMMITTING,
)
TOTAL_STEPS = len(STAGE_ORDER)


def step_index(status: PipelineStatus) -> int:
    """Return the one-based stage index, 0 for idle and the step count once completed."""
    if status is PipelineStatus.COMPLETED:
        return TOTAL_STEPS
    if status in STAGE_ORDER:
        return STAGE_ORDER.index(status) + 1
    return 0


def stage_progress(status: PipelineStatus, fraction: float = 0.0) -> float:
    """Map progress within ``status`` (0.0 to 1.0) onto the overall percentage."""
    start, end = STAGE_SLICES.get(status, (0.0, 0.0))
    fraction = min(max(fraction, 0.0), 1.0)
    return round(start + (end - start) * fraction, 2)


def estimate_eta(completed: int, remaining: int, elapsed_seconds: float) -> Optional[float]:
    """Return ``(remaining / completed) * elapsed``; None until one unit has completed."""
    if completed <= 0:
        return None
    return max(0.0, (remaining / completed) * elapsed_seconds)


def format_bytes(size: float) -> str:
    """Render a byte count with a binary unit (``1.5 MB``)."""
    if size <= 0:
        return "0 Bytes"
    units = ("Bytes", "KB", "MB", "GB", "TB")
    index = 0
    value = float(size)
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    if index == 0:
        return f"{int(value)} Bytes"
    return f"{value:.2f}".rstrip("0").rstrip(".") + f" {units[index]}"


def format_duration(seconds: Optional[float]) -> str:
    """Render seconds as ``M:SS`` or ``H:MM:SS``; ``calculating...`` when unknown."""
    if seconds is None:
        return "calculating..."
    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


__all__ = [
    "STAGE_SLICES",
    "STAGE_ORDER",
    "TOTAL_STEPS",
    "step_index",
    "stage_progress",
    "estimate_eta",
    "format_bytes",
    "format_duration",
]
