"""Tests for the filesystem-backed media store."""

from __future__ import annotations

from pathlib import Path

import pytest

from reelkeeper.config.models import ProcessingOptions
from reelkeeper.sources import ContentError
from reelkeeper.sources.local import CHUNK_SIZE, LocalMediaStore


@pytest.fixture()
def source_root(tmp_path: Path) -> Path:
    root = tmp_path / "source"
    (root / "sub").mkdir(parents=True)
    (root / "Organized").mkdir()
    (root / "a.jpg").write_bytes(b"a" * 10)
    (root / "sub" / "b.mov").write_bytes(b"b" * 20)
    (root / ".hidden.jpg").write_bytes(b"h")
    (root / "notes.txt").write_text("not media", encoding="utf-8")
    (root / "Organized" / "done.jpg").write_bytes(b"d")
    return root


def _store(source_root: Path, **kwargs) -> LocalMediaStore:
    return LocalMediaStore(
        source_root,
        source_root / "Organized",
        exclude_dirnames=["Organized"],
        **kwargs,
    )


def test_list_skips_hidden_excluded_and_non_media(source_root: Path) -> None:
    items = _store(source_root).list()

    assert [(item.identity, item.name, item.size_bytes) for item in items] == [
        ("a.jpg", "a.jpg", 10),
        ("sub/b.mov", "b.mov", 20),
    ]
    assert items[0].mime_type == "image/jpeg"


def test_list_scope_keeps_root_relative_identities(source_root: Path) -> None:
    assert [item.identity for item in _store(source_root).list("sub")] == ["sub/b.mov"]


def test_list_scope_outside_the_source_root_raises(source_root: Path) -> None:
    (source_root.parent / "elsewhere").mkdir()

    with pytest.raises(ContentError, match="outside"):
        _store(source_root).list("../elsewhere")


def test_list_without_recursion(source_root: Path) -> None:
    store = _store(source_root, processing=ProcessingOptions(recurse_directories=False))

    assert [item.identity for item in store.list()] == ["a.jpg"]


def test_download_streams_chunks(source_root: Path) -> None:
    payload = bytes(range(256)) * (CHUNK_SIZE // 128)
    (source_root / "big.mp4").write_bytes(payload)

    chunks = list(_store(source_root).download("big.mp4"))

    assert len(chunks) == 2
    assert b"".join(chunks) == payload


def test_download_missing_file_raises(source_root: Path) -> None:
    with pytest.raises(ContentError):
        list(_store(source_root).download("nope.jpg"))


def test_paths_are_confined_to_the_source_root(source_root: Path) -> None:
    with pytest.raises(ContentError):
        _store(source_root).path_for("../escape.jpg")


def test_move_places_file_under_bucket(source_root: Path) -> None:
    store = _store(source_root)

    destination = store.move("sub/b.mov", "2024-01-05_09-30-00_b.mov", "2024/01-January")

    assert destination == "2024/01-January/2024-01-05_09-30-00_b.mov"
    assert (source_root / "Organized" / destination).read_bytes() == b"b" * 20
    assert not (source_root / "sub" / "b.mov").exists()


def test_copy_mode_leaves_source_in_place(source_root: Path) -> None:
    store = _store(source_root, copy_mode=True)

    destination = store.move("a.jpg", "renamed.jpg", "2024")

    assert (source_root / "a.jpg").exists()
    assert (source_root / "Organized" / destination).exists()


def test_move_refuses_to_overwrite(source_root: Path) -> None:
    store = _store(source_root, copy_mode=True)
    store.move("a.jpg", "same.jpg", "2024")

    with pytest.raises(ContentError):
        store.move("a.jpg", "same.jpg", "2024")


def test_move_missing_source_raises(source_root: Path) -> None:
    with pytest.raises(ContentError):
        _store(source_root).move("gone.jpg", "x.jpg", "2024")
