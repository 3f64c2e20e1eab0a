from __future__ import annotations

import pytest

from reelkeeper.pipeline import PipelineStatus
from reelkeeper.pipeline.progress import (
    TOTAL_STEPS,
    estimate_eta,
    format_bytes,
    format_duration,
    stage_progress,
    step_index,
)


@pytest.mark.parametrize(
    ("size", "expected"),
    [
        (0, "0 Bytes"),
        (-5, "0 Bytes"),
        (512, "512 Bytes"),
        (1024, "1 KB"),
        (1536, "1.5 KB"),
        (5 * 1024**3, "5 GB"),
        (1234567, "1.18 MB"),
    ],
)
def test_format_bytes(size: int, expected: str) -> None:
    assert format_bytes(size) == expected


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [(None, "calculating..."), (0, "0:00"), (75.9, "1:15"), (3723, "1:02:03")],
)
def test_format_duration(seconds, expected: str) -> None:
    assert format_duration(seconds) == expected


def test_stage_progress_maps_into_stage_slices() -> None:
    assert stage_progress(PipelineStatus.VERIFYING, 0.5) == 10.0
    assert stage_progress(PipelineStatus.DOWNLOADING, 1.0) == 50.0
    assert stage_progress(PipelineStatus.DOWNLOADING, 2.0) == 50.0
    assert stage_progress(PipelineStatus.COMMITTING, -1.0) == 90.0
    assert stage_progress(PipelineStatus.ERROR) == 0.0


def test_step_index() -> None:
    assert step_index(PipelineStatus.IDLE) == 0
    assert step_index(PipelineStatus.VERIFYING) == 1
    assert step_index(PipelineStatus.COMMITTING) == TOTAL_STEPS
    assert step_index(PipelineStatus.COMPLETED) == TOTAL_STEPS


def test_estimate_eta() -> None:
    assert estimate_eta(0, 10, 5.0) is None
    assert estimate_eta(2, 6, 4.0) == 12.0
    assert estimate_eta(3, 0, 9.0) == 0.0
