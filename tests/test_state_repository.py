"""Project ledger and repository tests."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from reelkeeper.organization import ProcessedItem
from reelkeeper.state import (
    LedgerError,
    LedgerRepository,
    MissingLedgerError,
    OperationEvent,
    ProjectLedger,
    batch_status_message,
    bucket_counts,
    check_processed,
)


def _item(identity: str, key: str) -> ProcessedItem:
    year, month = (int(part) for part in key.split("-"))
    return ProcessedItem(
        identity=identity,
        original_name=identity,
        captured_at=datetime(year, month, 3, tzinfo=timezone.utc),
        bucket_key=key,
    )


def test_save_and_load_round_trip(tmp_path: Path) -> None:
    """Ensure save followed by load returns the same ledger.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    repo = LedgerRepository(tmp_path)
    ledger = ProjectLedger(name="Holiday")
    ledger.commit([_item("a.mp4", "2024-01"), _item("b.mp4", "2024-02")], "run1")

    path = repo.save(ledger)
    loaded = repo.load(ledger.id)

    assert path == tmp_path / f"{ledger.id}.json"
    assert loaded.processed_identities == {"a.mp4", "b.mp4"}
    assert loaded.buckets.keys() == {"2024-01", "2024-02"}
    assert loaded.buckets["2024-01"].display_name == "January 2024"
    assert loaded.total_runs_completed == 1
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["processed_identities"] == ["a.mp4", "b.mp4"]
    assert not list(tmp_path.glob("*.tmp"))


def test_load_missing_ledger_raises(tmp_path: Path) -> None:
    repo = LedgerRepository(tmp_path)

    with pytest.raises(MissingLedgerError):
        repo.load("project_1_abc")


def test_load_invalid_ledger_raises(tmp_path: Path) -> None:
    """Ensure unreadable JSON and invalid fields both raise LedgerError.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    repo = LedgerRepository(tmp_path)
    (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
    (tmp_path / "invalid.json").write_text(json.dumps({"name": 3}), encoding="utf-8")

    with pytest.raises(LedgerError):
        repo.load("broken")
    with pytest.raises(LedgerError):
        repo.load("invalid")
    assert repo.list_projects() == []


def test_ledger_id_cannot_escape_directory(tmp_path: Path) -> None:
    with pytest.raises(LedgerError):
        LedgerRepository(tmp_path).load("../outside")


def test_commit_is_idempotent_across_reload(tmp_path: Path) -> None:
    """A reloaded ledger never double counts an identity committed earlier.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    repo = LedgerRepository(tmp_path)
    ledger = repo.create("Trip")
    ledger.commit([_item("a.mp4", "2024-01")], "run1")
    repo.save(ledger)

    reloaded = repo.load(ledger.id)
    summary = reloaded.commit([_item("a.mp4", "2024-01"), _item("c.mp4", "2024-01")], "run2")

    assert summary.added == ["c.mp4"]
    assert summary.skipped == ["a.mp4"]
    assert summary.updated_buckets == ["2024-01"]
    assert reloaded.buckets["2024-01"].item_count == 2
    assert reloaded.buckets["2024-01"].contributing_run_ids == ["run1", "run2"]
    assert reloaded.total_items_processed == 2
    assert reloaded.total_runs_completed == 2


def test_commit_grows_monotonically_and_keeps_folder_ids() -> None:
    ledger = ProjectLedger(name="Archive")
    first = ledger.commit([_item("a.mp4", "2023-12")], "r1", folder_ids={"2023-12": "2023/12"})
    before = set(ledger.processed_identities)

    second = ledger.commit(
        [_item("b.mp4", "2023-12"), _item("c.mp4", "2024-01")],
        "r2",
        folder_ids={"2023-12": "elsewhere", "2024-01": "2024/01-January"},
    )

    assert first.created_buckets == ["2023-12"]
    assert second.created_buckets == ["2024-01"]
    assert before < ledger.processed_identities
    assert ledger.buckets["2023-12"].remote_folder_id == "2023/12"
    assert ledger.buckets["2024-01"].remote_folder_id == "2024/01-January"


def test_commit_rejects_unbucketed_items() -> None:
    ledger = ProjectLedger(name="Archive")
    item = _item("a.mp4", "2024-01").model_copy(update={"bucket_key": None})

    with pytest.raises(ValueError):
        ledger.commit([item], "r1")


def test_clear_identities_allows_reprocessing() -> None:
    ledger = ProjectLedger(name="Archive")
    ledger.commit([_item("a.mp4", "2024-01")], "r1")

    cleared = ledger.clear_identities(["a.mp4", "missing.mp4"])

    assert cleared == ["a.mp4"]
    assert ledger.check_processed(["a.mp4"]).new == ["a.mp4"]
    assert ledger.buckets["2024-01"].item_count == 1


def test_check_processed_preserves_order_and_deduplicates() -> None:
    ledger = ProjectLedger(name="Archive")
    ledger.commit([_item("b.mp4", "2024-01")], "r1")

    check = check_processed(ledger, ["c.mp4", "b.mp4", "a.mp4", "c.mp4"])

    assert check.new == ["c.mp4", "a.mp4"]
    assert check.already_processed == ["b.mp4"]
    assert check.existing_buckets == ["2024-01"]
    assert check_processed(None, ["x", "x", "y"]).new == ["x", "y"]


def test_current_pointer_list_stats_and_delete(tmp_path: Path) -> None:
    """Exercise project selection, listing, statistics and deletion.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    repo = LedgerRepository(tmp_path)
    first = repo.create("First")
    second = repo.create("Second")
    second.commit([_item("a.mp4", "2024-01"), _item("b.mp4", "2024-03")], "r1")
    repo.save(second)

    assert repo.current_id() == second.id
    assert [ledger.id for ledger in repo.list_projects()] == [second.id, first.id]

    stats = repo.stats()
    assert stats.project_count == 2
    assert stats.total_files_processed == 2
    assert stats.total_buckets == 2

    repo.delete(second.id)
    assert repo.current_id() is None
    assert repo.load_current() is None
    assert not repo.exists(second.id)
    with pytest.raises(MissingLedgerError):
        repo.delete(second.id)


def test_history_is_appended_and_limited(tmp_path: Path) -> None:
    repo = LedgerRepository(tmp_path)
    ledger = repo.create("History")
    events = [
        OperationEvent(operation="move", identity=f"{index}.mp4", destination=f"2024/{index}.mp4")
        for index in range(3)
    ]

    repo.append_history(ledger.id, events[:2])
    repo.append_history(ledger.id, events[2:])

    assert [event.identity for event in repo.read_history(ledger.id)] == [
        "0.mp4",
        "1.mp4",
        "2.mp4",
    ]
    assert [event.identity for event in repo.read_history(ledger.id, limit=1)] == ["2.mp4"]


def test_batch_status_message_variants() -> None:
    ledger = ProjectLedger(name="Archive")
    ledger.commit([_item("a.mp4", "2024-01")], "r1")

    assert batch_status_message(None, 1, {"2024-01": 3}) == "Batch 1: Processing 3 items"
    assert (
        batch_status_message(ledger, 2, {"2024-01": 4, "2024-02": 1})
        == "Batch 2: Adding 4 items to existing January 2024 folder"
    )
    assert (
        batch_status_message(ledger, 2, {"2024-05": 2, "2024-06": 1})
        == "Batch 2: Creating 2 new date folders for 3 items"
    )


def test_bucket_counts_preserves_first_seen_order() -> None:
    items = [_item("a", "2024-02"), _item("b", "2024-01"), _item("c", "2024-02")]

    assert list(bucket_counts(items).items()) == [("2024-02", 2), ("2024-01", 1)]
