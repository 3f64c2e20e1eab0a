"""Capture metadata extraction for media stored on the local filesystem."""

from __future__ import annotations

import logging
import struct
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Tuple

from PIL import Image, UnidentifiedImageError

from reelkeeper.sources.errors import ExtractionError
from reelkeeper.sources.models import ExtractedMetadata

LOGGER = logging.getLogger(__name__)

QUICKTIME_SUFFIXES = {".mov", ".mp4", ".m4v", ".3gp"}
IMAGE_SUFFIXES = {".jpg", ".jpeg", ".tif", ".tiff", ".png", ".heic", ".webp"}

# Seconds between the QuickTime epoch (1904-01-01) and the Unix epoch.
QUICKTIME_EPOCH_OFFSET = 2_082_844_800

_EXIF_IFD = 0x8769
_TAG_MAKE = 271
_TAG_MODEL = 272
_TAG_DATETIME_ORIGINAL = 36867
_TAG_DATETIME_DIGITIZED = 36868
_TAG_OFFSET_TIME_ORIGINAL = 36881
_CONTAINER_ATOMS = {b"moov", b"trak", b"mdia", b"minf", b"stbl", b"udta", b"edts"}

_MIN_CAPTURE = datetime(1970, 1, 2, tzinfo=timezone.utc)
_MAX_CAPTURE = datetime(2100, 1, 1, tzinfo=timezone.utc)


class LocalMetadataExtractor:
    """Extract original capture timestamps from files under a root directory.

    Images are read for EXIF ``DateTimeOriginal`` (falling back to
    ``DateTimeDigitized``); QuickTime family containers are searched for the
    ``mvhd`` creation time. Filesystem timestamps are never consulted.
    """

    def __init__(self, root: Path) -> None:
        self.root = root.expanduser().resolve()

    def extract(self, identity: str) -> ExtractedMetadata:
        """Return metadata for the file identified by its path relative to the root.

        Args:
            identity: POSIX path relative to the extractor root.

        Returns:
            ExtractedMetadata: Extracted values; ``captured_at`` is None when the
            file carries no usable original capture time.

        Raises:
            ExtractionError: If the file is missing or cannot be opened.
        """
        path = self._resolve(identity)
        if not path.is_file():
            raise ExtractionError(
                f"{identity}: file not found", error_class="permanent", identity=identity
            )

        suffix = path.suffix.lower()
        try:
            if suffix in QUICKTIME_SUFFIXES:
                return self._extract_quicktime(path)
            if suffix in IMAGE_SUFFIXES:
                return self._extract_image(path)
        except PermissionError as exc:
            raise ExtractionError(
                f"{identity}: permission denied", error_class="permanent", identity=identity
            ) from exc
        except OSError as exc:
            raise ExtractionError(
                f"{identity}: {exc}", error_class="permanent", identity=identity
            ) from exc

        LOGGER.debug("No metadata reader available for %s", identity)
        return ExtractedMetadata(codec=suffix.lstrip(".") or None)

    # ------------------------------------------------------------------ #
    # Images                                                             #
    # ------------------------------------------------------------------ #

    def _extract_image(self, path: Path) -> ExtractedMetadata:
        try:
            with Image.open(path) as img:
                width, height = img.size
                image_format = img.format
                exif = img.getexif()
        except UnidentifiedImageError:
            LOGGER.info("Pillow cannot decode %s; no capture time available", path.name)
            return ExtractedMetadata(codec=path.suffix.lstrip(".").lower())

        metadata = ExtractedMetadata(
            width=width,
            height=height,
            codec=(image_format or path.suffix.lstrip(".")).lower(),
        )
        if not exif:
            return metadata

        make = str(exif.get(_TAG_MAKE, "")).strip("\x00 ")
        model = str(exif.get(_TAG_MODEL, "")).strip("\x00 ")
        device = " ".join(part for part in (make, model) if part) or None

        exif_ifd = exif.get_ifd(_EXIF_IFD)
        captured_at = None
        method = None
        for tag, label in (
            (_TAG_DATETIME_ORIGINAL, "exif:DateTimeOriginal"),
            (_TAG_DATETIME_DIGITIZED, "exif:DateTimeDigitized"),
        ):
            raw = exif_ifd.get(tag)
            if raw:
                captured_at = parse_exif_datetime(str(raw), exif_ifd.get(_TAG_OFFSET_TIME_ORIGINAL))
                if captured_at is not None:
                    method = label
                    break

        return metadata.model_copy(
            update={"captured_at": captured_at, "device": device, "extraction_method": method}
        )

    # ------------------------------------------------------------------ #
    # QuickTime / MP4                                                    #
    # ------------------------------------------------------------------ #

    def _extract_quicktime(self, path: Path) -> ExtractedMetadata:
        file_size = path.stat().st_size
        captured_at: Optional[datetime] = None
        duration: Optional[float] = None
        width: Optional[int] = None
        height: Optional[int] = None

        with path.open("rb") as fh:
            for atom_type, payload_start, payload_end in _walk_atoms(fh, 0, file_size):
                if atom_type == b"mvhd" and captured_at is None:
                    captured_at, duration = _read_mvhd(fh, payload_start, payload_end)
                elif atom_type == b"tkhd" and width is None:
                    dims = _read_tkhd_dimensions(fh, payload_start, payload_end)
                    if dims is not None:
                        width, height = dims

        return ExtractedMetadata(
            captured_at=captured_at,
            duration_seconds=duration,
            width=width,
            height=height,
            codec=path.suffix.lstrip(".").lower(),
            extraction_method="quicktime:mvhd" if captured_at else None,
        )

    def _resolve(self, identity: str) -> Path:
        candidate = (self.root / identity).resolve()
        if self.root not in candidate.parents and candidate != self.root:
            raise ExtractionError(
                f"{identity}: outside of media root {self.root}",
                error_class="permanent",
                identity=identity,
            )
        return candidate


def parse_exif_datetime(value: str, offset: object | None = None) -> Optional[datetime]:
    """Parse an EXIF ``YYYY:MM:DD HH:MM:SS`` value, honoring an optional UTC offset."""
    text = value.strip("\x00 ")
    if not text or text.startswith("0000"):
        return None
    try:
        parsed = datetime.strptime(text[:19], "%Y:%m:%d %H:%M:%S")
    except ValueError:
        return None

    tzinfo = timezone.utc
    if isinstance(offset, str) and len(offset.strip("\x00 ")) == 6:
        raw = offset.strip("\x00 ")
        try:
            sign = -1 if raw[0] == "-" else 1
            hours, minutes = int(raw[1:3]), int(raw[4:6])
            tzinfo = timezone(sign * timedelta(hours=hours, minutes=minutes))
        except ValueError:
            tzinfo = timezone.utc
    return parsed.replace(tzinfo=tzinfo)


def quicktime_to_datetime(seconds: int) -> Optional[datetime]:
    """Convert seconds since the QuickTime epoch, rejecting unset or implausible values."""
    if seconds <= 0:
        return None
    unix_seconds = seconds - QUICKTIME_EPOCH_OFFSET
    try:
        value = datetime.fromtimestamp(unix_seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
    if not (_MIN_CAPTURE <= value < _MAX_CAPTURE):
        return None
    return value


def _walk_atoms(fh: BinaryIO, start: int, end: int) -> Iterator[Tuple[bytes, int, int]]:
    """Yield ``(type, payload_start, payload_end)`` for atoms in ``[start, end)``, depth first."""
    offset = start
    while offset + 8 <= end:
        fh.seek(offset)
        header = fh.read(8)
        if len(header) < 8:
            return
        size, atom_type = struct.unpack(">I4s", header)
        header_size = 8
        if size == 1:
            extended = fh.read(8)
            if len(extended) < 8:
                return
            size = struct.unpack(">Q", extended)[0]
            header_size = 16
        elif size == 0:
            size = end - offset
        if size < header_size:
            return

        atom_end = min(offset + size, end)
        payload_start = offset + header_size
        yield atom_type, payload_start, atom_end
        if atom_type in _CONTAINER_ATOMS:
            yield from _walk_atoms(fh, payload_start, atom_end)
        offset += size


def _read_mvhd(fh: BinaryIO, start: int, end: int) -> Tuple[Optional[datetime], Optional[float]]:
    fh.seek(start)
    data = fh.read(min(end - start, 32))
    if len(data) < 20:
        return None, None
    version = data[0]
    if version == 0:
        creation, _modified, timescale, duration = struct.unpack(">IIII", data[4:20])
    elif version == 1 and len(data) >= 32:
        creation, _modified, timescale, duration = struct.unpack(">QQIQ", data[4:32])
    else:
        return None, None
    seconds = duration / timescale if timescale else None
    return quicktime_to_datetime(creation), seconds


def _read_tkhd_dimensions(fh: BinaryIO, start: int, end: int) -> Optional[Tuple[int, int]]:
    fh.seek(start)
    data = fh.read(min(end - start, 96))
    if not data:
        return None
    # width/height are the last two 16.16 fixed-point fields of the atom.
    offset = 76 if data[0] == 0 else 88
    if len(data) < offset + 8:
        return None
    width, height = struct.unpack(">II", data[offset : offset + 8])
    width >>= 16
    height >>= 16
    if not width or not height:
        return None
    return width, height


__all__ = [
    "LocalMetadataExtractor",
    "QUICKTIME_EPOCH_OFFSET",
    "parse_exif_datetime",
    "quicktime_to_datetime",
]
