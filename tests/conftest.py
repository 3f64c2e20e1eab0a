"""Shared fakes for the Reelkeeper test suite."""

from __future__ import annotations

import struct
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator, Mapping, Optional, Union

from PIL import Image

from reelkeeper.ingestion.extractors import QUICKTIME_EPOCH_OFFSET
from reelkeeper.sources.errors import ContentError, ExtractionError
from reelkeeper.sources.models import ExtractedMetadata, MediaItem

Response = Union[ExtractedMetadata, ExtractionError]


def make_item(identity: str, *, size_bytes: int = 100, name: Optional[str] = None) -> MediaItem:
    """Return a listed media item whose name defaults to its identity."""
    return MediaItem(identity=identity, name=name or identity, size_bytes=size_bytes)


def captured(year: int, month: int, day: int, hour: int = 12, minute: int = 0) -> ExtractedMetadata:
    """Return extraction metadata carrying a UTC capture time."""
    return ExtractedMetadata(
        captured_at=datetime(year, month, day, hour, minute, tzinfo=timezone.utc),
        duration_seconds=10.0,
    )


class FakeMetadataService:
    """Metadata service returning scripted responses per identity.

    A response list is consumed one entry per call; the last entry repeats.
    """

    def __init__(self, responses: Mapping[str, Union[Response, list[Response]]]) -> None:
        self.responses = {
            key: list(value) if isinstance(value, list) else [value]
            for key, value in responses.items()
        }
        self.calls: list[str] = []
        self.before_extract: Optional[Callable[[str], None]] = None

    def extract(self, identity: str) -> ExtractedMetadata:
        self.calls.append(identity)
        if self.before_extract is not None:
            self.before_extract(identity)
        queue = self.responses.get(identity)
        if not queue:
            return ExtractedMetadata()
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, ExtractionError):
            raise response
        return response


class FakeContentStore:
    """In-memory content service recording downloads and moves."""

    def __init__(self, *, fail_download: tuple[str, ...] = (), fail_move: tuple[str, ...] = ()):
        self.fail_download = set(fail_download)
        self.fail_move = set(fail_move)
        self.downloads: list[str] = []
        self.moves: list[tuple[str, str, str]] = []
        self._lock = threading.Lock()

    def download(self, identity: str) -> Iterator[bytes]:
        with self._lock:
            self.downloads.append(identity)
        if identity in self.fail_download:
            raise ContentError(f"{identity} unavailable")
        yield b"x" * 64
        yield b"y" * 36

    def move(self, identity: str, new_name: str, bucket_path: str) -> str:
        if identity in self.fail_move:
            raise ContentError(f"store rejected move of {identity}")
        with self._lock:
            self.moves.append((identity, new_name, bucket_path))
        return f"{bucket_path}/{new_name}"


class RecordingNotifier:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.messages: list[tuple[str, str]] = []

    def notify(self, recipient: str, summary: str) -> None:
        if self.fail:
            raise RuntimeError("mail server down")
        self.messages.append((recipient, summary))


def write_jpeg(
    path: Path,
    original: Optional[str] = "2024:01:15 10:00:00",
    *,
    offset: Optional[str] = None,
    size: tuple[int, int] = (8, 6),
) -> Path:
    """Write a small JPEG, tagging ``DateTimeOriginal`` when ``original`` is given."""
    path.parent.mkdir(parents=True, exist_ok=True)
    exif = Image.Exif()
    exif[271] = "Canon"
    exif[272] = "EOS R5"
    if original is not None:
        exif_ifd = exif.get_ifd(0x8769)
        exif_ifd[36867] = original
        if offset is not None:
            exif_ifd[36881] = offset
    Image.new("RGB", size, "red").save(path, format="JPEG", exif=exif)
    return path


def _atom(kind: bytes, payload: bytes) -> bytes:
    return struct.pack(">I4s", 8 + len(payload), kind) + payload


def write_quicktime(
    path: Path,
    captured_at: Optional[datetime],
    *,
    duration_seconds: float = 5.0,
    dimensions: tuple[int, int] = (1920, 1080),
) -> Path:
    """Write a minimal QuickTime container with ``mvhd`` and ``tkhd`` atoms."""
    creation = int(captured_at.timestamp()) + QUICKTIME_EPOCH_OFFSET if captured_at else 0
    timescale = 600
    mvhd = (
        bytes(4)
        + struct.pack(">IIII", creation, creation, timescale, int(duration_seconds * timescale))
        + bytes(80)
    )
    width, height = dimensions
    tkhd = bytes(76) + struct.pack(">II", width << 16, height << 16)
    moov = _atom(b"moov", _atom(b"mvhd", mvhd) + _atom(b"trak", _atom(b"tkhd", tkhd)))
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(_atom(b"ftyp", b"qt  " + bytes(4)) + moov + _atom(b"mdat", bytes(32)))
    return path
