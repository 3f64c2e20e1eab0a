"""Tests for chronological naming, bucketing and plan building."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from reelkeeper.organization import ChronologicalOrganizer, ProcessedItem
from reelkeeper.organization.naming import (
    assigned_name,
    bucket_key,
    bucket_path,
    display_name,
    sanitize_name,
    with_suffix_counter,
)
from reelkeeper.sources.models import ExtractedMetadata, MediaItem


def _processed(identity: str, when: datetime, name: str | None = None) -> ProcessedItem:
    return ProcessedItem(identity=identity, original_name=name or identity, captured_at=when)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("My Clip (1).mov", "My_Clip_(1).mov"),
        ('a<b>c?:"d.mp4', "a_b_c_d.mp4"),
        ("  spaced   out  .jpg", "spaced_out_.jpg"),
        ("CON.mp4", "CON_.mp4"),
        ("lpt3", "lpt3_"),
        ("...", "unnamed"),
        (".hidden.mov", "hidden.mov"),
    ],
)
def test_sanitize_name(raw: str, expected: str) -> None:
    assert sanitize_name(raw) == expected


def test_sanitize_name_truncates_and_keeps_extension() -> None:
    result = sanitize_name("x" * 300 + ".mp4")

    assert len(result) == 200
    assert result.endswith(".mp4")


def test_assigned_name_uses_capture_wall_clock() -> None:
    when = datetime(2024, 1, 15, 10, 30, 5, tzinfo=timezone.utc)

    assert assigned_name(when, "IMG 001.MOV") == "2024-01-15_10-30-05_IMG_001.MOV"


def test_assigned_name_is_deterministic_for_offset_times() -> None:
    when = datetime(2023, 12, 31, 23, 59, 59, tzinfo=timezone(timedelta(hours=-5)))

    assert assigned_name(when, "clip.mp4") == assigned_name(when, "clip.mp4")
    assert assigned_name(when, "clip.mp4").startswith("2023-12-31_23-59-59_")


def test_bucket_keys_and_paths_per_strategy() -> None:
    when = datetime(2024, 2, 29, 8, 0, tzinfo=timezone.utc)

    assert bucket_key(when, "year-month") == "2024-02"
    assert bucket_path(when, "year-month") == "2024/02-February"
    assert bucket_key(when, "year") == "2024"
    assert bucket_path(when, "year") == "2024"
    assert bucket_key(when, "flat") == "all"
    assert bucket_path(when, "flat", "My Media") == "My_Media"


def test_unknown_strategy_is_rejected() -> None:
    with pytest.raises(ValueError):
        bucket_key(datetime(2024, 1, 1, tzinfo=timezone.utc), "weekly")  # type: ignore[arg-type]


def test_display_names() -> None:
    assert display_name("2024-01") == "January 2024"
    assert display_name("2023") == "2023"
    assert display_name("all") == "All media"


def test_with_suffix_counter() -> None:
    assert with_suffix_counter("clip.mp4", 2) == "clip-2.mp4"
    assert with_suffix_counter("archive.tar.gz", 1) == "archive.tar-1.gz"
    assert with_suffix_counter("noext", 1) == "noext-1"


def test_bucket_sorts_by_capture_time_with_identity_tiebreak() -> None:
    same = datetime(2024, 1, 10, 9, 0, tzinfo=timezone.utc)
    candidates = [
        _processed("z.mp4", datetime(2024, 2, 1, tzinfo=timezone.utc)),
        _processed("b.mp4", same),
        _processed("a.mp4", same),
        _processed("old.mp4", datetime(2023, 12, 24, tzinfo=timezone.utc)),
    ]

    ordered, buckets = ChronologicalOrganizer().bucket(candidates)

    assert [item.identity for item in ordered] == ["old.mp4", "a.mp4", "b.mp4", "z.mp4"]
    assert [bucket.key for bucket in buckets] == ["2023-12", "2024-01", "2024-02"]
    assert buckets[1].identities == ["a.mp4", "b.mp4"]
    assert buckets[1].path == "2024/01-January"
    assert buckets[1].display_name == "January 2024"
    assert all(item.bucket_key and item.bucket_path for item in ordered)
    # Candidates are not mutated.
    assert candidates[0].bucket_key is None


def test_assign_names_resolves_collisions_within_a_folder() -> None:
    when = datetime(2024, 5, 1, 7, 0, tzinfo=timezone.utc)
    organizer = ChronologicalOrganizer()
    ordered, buckets = organizer.bucket(
        [
            _processed("b/clip.mp4", when, "clip.mp4"),
            _processed("a/clip.mp4", when, "clip.mp4"),
            _processed("c/CLIP.MP4", when, "CLIP.MP4"),
        ]
    )

    named = organizer.assign_names(ordered)
    plan = organizer.build_plan(named, buckets)

    assert [item.final_name for item in named] == [
        "2024-05-01_07-00-00_clip.mp4",
        "2024-05-01_07-00-00_clip-1.mp4",
        "2024-05-01_07-00-00_CLIP-2.MP4",
    ]
    assert [move.conflict_applied for move in plan.moves] == [False, True, True]
    assert any("collision" in note for note in plan.notes)


def test_same_name_in_different_folders_does_not_collide() -> None:
    organizer = ChronologicalOrganizer()
    plan = organizer.organize(
        [
            _processed("x/clip.mp4", datetime(2024, 1, 1, tzinfo=timezone.utc), "clip.mp4"),
            _processed("y/clip.mp4", datetime(2024, 2, 1, tzinfo=timezone.utc), "clip.mp4"),
        ],
        rename=False,
    )

    assert [move.destination_name for move in plan.moves] == ["clip.mp4", "clip.mp4"]
    assert [move.bucket_path for move in plan.moves] == ["2024/01-January", "2024/02-February"]
    assert not any(move.conflict_applied for move in plan.moves)


def test_processed_item_requires_capture_time() -> None:
    with pytest.raises(ValueError):
        ProcessedItem.from_extraction(
            MediaItem(identity="a.mp4", name="a.mp4"), ExtractedMetadata()
        )


def test_naive_capture_times_are_treated_as_utc() -> None:
    item = _processed("a.mp4", datetime(2024, 3, 1, 12, 0))

    assert item.captured_at.tzinfo is not None
    assert item.captured_at.utcoffset() == timedelta(0)
