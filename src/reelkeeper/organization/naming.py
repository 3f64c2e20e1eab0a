"""Deterministic naming and date bucketing helpers."""

from __future__ import annotations

import re
from datetime import datetime

from reelkeeper.config.models import BucketStrategy

# Fixed English names so folder layout never depends on the process locale.
MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)

FLAT_BUCKET_KEY = "all"
DEFAULT_FLAT_FOLDER = "Media"
FALLBACK_NAME = "unnamed"
TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"
MAX_NAME_LENGTH = 200

_INVALID_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_WHITESPACE = re.compile(r"\s+")
_REPEATED_UNDERSCORES = re.compile(r"_{2,}")
_RESERVED_NAMES = {
    "CON",
    "PRN",
    "AUX",
    "NUL",
    *(f"COM{index}" for index in range(1, 10)),
    *(f"LPT{index}" for index in range(1, 10)),
}


def sanitize_name(name: str) -> str:
    """Return ``name`` made safe for the most restrictive supported filesystem.

    Characters invalid on Windows and runs of whitespace become ``_``, repeated
    underscores collapse, leading and trailing dots/underscores are stripped and
    reserved device names receive a ``_`` suffix on their stem.

    Args:
        name: Original file name, extension included.

    Returns:
        str: Sanitized name; ``unnamed`` when nothing usable remains.
    """
    cleaned = _INVALID_CHARS.sub("_", name)
    cleaned = _WHITESPACE.sub("_", cleaned)
    cleaned = _REPEATED_UNDERSCORES.sub("_", cleaned)
    cleaned = cleaned.strip("._ ")
    if not cleaned:
        return FALLBACK_NAME

    stem, dot, suffix = cleaned.partition(".")
    if stem.upper() in _RESERVED_NAMES:
        cleaned = f"{stem}_{dot}{suffix}"

    if len(cleaned) > MAX_NAME_LENGTH:
        stem, dot, suffix = cleaned.rpartition(".")
        if dot and len(suffix) < 16:
            cleaned = f"{stem[: MAX_NAME_LENGTH - len(suffix) - 1]}.{suffix}"
        else:
            cleaned = cleaned[:MAX_NAME_LENGTH]
    return cleaned


def assigned_name(captured_at: datetime, original_name: str) -> str:
    """Return ``YYYY-MM-DD_HH-MM-SS_<sanitized original name>``.

    The timestamp is rendered in the wall-clock time of ``captured_at`` so the
    result depends only on the two arguments.
    """
    return f"{captured_at.strftime(TIMESTAMP_FORMAT)}_{sanitize_name(original_name)}"


def bucket_key(captured_at: datetime, strategy: BucketStrategy) -> str:
    """Return the ledger key for ``captured_at``: ``YYYY-MM``, ``YYYY`` or ``all``."""
    if strategy == "year-month":
        return f"{captured_at.year:04d}-{captured_at.month:02d}"
    if strategy == "year":
        return f"{captured_at.year:04d}"
    if strategy == "flat":
        return FLAT_BUCKET_KEY
    raise ValueError(f"Unknown bucket strategy: {strategy}")


def bucket_path(
    captured_at: datetime,
    strategy: BucketStrategy,
    flat_folder_name: str = DEFAULT_FLAT_FOLDER,
) -> str:
    """Return the folder path: ``YYYY/MM-MonthName``, ``YYYY`` or the flat folder."""
    if strategy == "year-month":
        month = captured_at.month
        return f"{captured_at.year:04d}/{month:02d}-{MONTH_NAMES[month - 1]}"
    if strategy == "year":
        return f"{captured_at.year:04d}"
    if strategy == "flat":
        return sanitize_name(flat_folder_name)
    raise ValueError(f"Unknown bucket strategy: {strategy}")


def display_name(key: str) -> str:
    """Return a human-readable label for a bucket key (``2024-01`` -> ``January 2024``)."""
    parts = key.split("-")
    if len(parts) == 2 and all(part.isdigit() for part in parts):
        month = int(parts[1])
        if 1 <= month <= 12:
            return f"{MONTH_NAMES[month - 1]} {parts[0]}"
    if key == FLAT_BUCKET_KEY:
        return "All media"
    return key


def with_suffix_counter(name: str, counter: int) -> str:
    """Insert ``-<counter>`` before the extension of ``name``."""
    stem, dot, suffix = name.rpartition(".")
    if not dot or not stem:
        return f"{name}-{counter}"
    return f"{stem}-{counter}.{suffix}"


__all__ = [
    "MONTH_NAMES",
    "FLAT_BUCKET_KEY",
    "FALLBACK_NAME",
    "sanitize_name",
    "assigned_name",
    "bucket_key",
    "bucket_path",
    "display_name",
    "with_suffix_counter",
]
