"""Tests for local capture-time extraction."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pytest

from conftest import write_jpeg, write_quicktime
from reelkeeper.ingestion.extractors import (
    QUICKTIME_EPOCH_OFFSET,
    LocalMetadataExtractor,
    parse_exif_datetime,
    quicktime_to_datetime,
)
from reelkeeper.sources.errors import ExtractionError


def test_jpeg_exif_original_time_is_used(tmp_path: Path) -> None:
    write_jpeg(tmp_path / "trip" / "IMG_0001.jpg", "2024:01:15 10:00:00", offset="+02:00")

    metadata = LocalMetadataExtractor(tmp_path).extract("trip/IMG_0001.jpg")

    assert metadata.captured_at == datetime(
        2024, 1, 15, 10, 0, tzinfo=timezone(timedelta(hours=2))
    )
    assert metadata.extraction_method == "exif:DateTimeOriginal"
    assert metadata.device == "Canon EOS R5"
    assert (metadata.width, metadata.height) == (8, 6)
    assert metadata.codec == "jpeg"


def test_jpeg_without_capture_time_reports_none(tmp_path: Path) -> None:
    write_jpeg(tmp_path / "scan.jpg", None)

    metadata = LocalMetadataExtractor(tmp_path).extract("scan.jpg")

    assert metadata.captured_at is None
    assert metadata.extraction_method is None


def test_undecodable_image_has_no_capture_time(tmp_path: Path) -> None:
    (tmp_path / "broken.jpg").write_bytes(b"not really a jpeg")

    metadata = LocalMetadataExtractor(tmp_path).extract("broken.jpg")

    assert metadata.captured_at is None
    assert metadata.codec == "jpg"


def test_quicktime_creation_time_and_duration(tmp_path: Path) -> None:
    recorded = datetime(2023, 6, 1, 18, 45, tzinfo=timezone.utc)
    write_quicktime(tmp_path / "clip.mov", recorded, duration_seconds=12.5)

    metadata = LocalMetadataExtractor(tmp_path).extract("clip.mov")

    assert metadata.captured_at == recorded
    assert metadata.duration_seconds == 12.5
    assert (metadata.width, metadata.height) == (1920, 1080)
    assert metadata.extraction_method == "quicktime:mvhd"


def test_quicktime_with_unset_creation_time(tmp_path: Path) -> None:
    write_quicktime(tmp_path / "clip.mp4", None)

    metadata = LocalMetadataExtractor(tmp_path).extract("clip.mp4")

    assert metadata.captured_at is None
    assert metadata.duration_seconds == 5.0


def test_filesystem_timestamps_are_never_used(tmp_path: Path) -> None:
    (tmp_path / "notes.avi").write_bytes(b"\x00" * 16)

    metadata = LocalMetadataExtractor(tmp_path).extract("notes.avi")

    assert metadata.captured_at is None
    assert metadata.codec == "avi"


@pytest.mark.parametrize("identity", ["missing.jpg", "../outside.jpg"])
def test_unreachable_files_raise_permanent_errors(tmp_path: Path, identity: str) -> None:
    root = tmp_path / "media"
    root.mkdir()
    write_jpeg(tmp_path / "outside.jpg")

    with pytest.raises(ExtractionError) as excinfo:
        LocalMetadataExtractor(root).extract(identity)

    assert excinfo.value.error_class == "permanent"
    assert excinfo.value.identity == identity


@pytest.mark.parametrize(
    ("raw", "offset", "expected"),
    [
        ("2024:01:15 10:00:00", None, datetime(2024, 1, 15, 10, tzinfo=timezone.utc)),
        (
            "2024:01:15 10:00:00\x00",
            "-05:30",
            datetime(2024, 1, 15, 10, tzinfo=timezone(-timedelta(hours=5, minutes=30))),
        ),
        ("0000:00:00 00:00:00", None, None),
        ("yesterday", None, None),
        ("", None, None),
    ],
)
def test_parse_exif_datetime(
    raw: str, offset: Optional[str], expected: Optional[datetime]
) -> None:
    assert parse_exif_datetime(raw, offset) == expected


def test_quicktime_epoch_conversion() -> None:
    assert quicktime_to_datetime(0) is None
    assert quicktime_to_datetime(QUICKTIME_EPOCH_OFFSET) is None
    expected = datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)
    assert quicktime_to_datetime(QUICKTIME_EPOCH_OFFSET + 1_700_000_000) == expected
