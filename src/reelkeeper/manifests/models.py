"""Manifest generation data models."""

from __future__ import annotations

import uuid
from pathlib import Path
from typing import Iterable, Literal

from pydantic import BaseModel

from reelkeeper.organization.models import ProcessedItem

ManifestKind = Literal["capcut", "premiere", "export"]

# Namespace for identifiers derived from item identities.
MANIFEST_NAMESPACE = uuid.UUID("5d1f3c52-8a0e-4a55-9a6e-5be0f1f0c7d1")

# Timeline length given to items that report no duration (stills).
STILL_DURATION_SECONDS = 5.0


class ManifestFile(BaseModel):
    """A generated project file."""

    kind: ManifestKind
    path: Path
    item_count: int


def stable_id(*parts: str) -> str:
    """Return a UUID derived from ``parts`` so regeneration yields identical ids."""
    return str(uuid.uuid5(MANIFEST_NAMESPACE, "\x1f".join(parts)))


def clip_duration(item: ProcessedItem) -> float:
    duration = item.duration_seconds
    if duration is None or duration <= 0:
        return STILL_DURATION_SECONDS
    return float(duration)


def clip_path(item: ProcessedItem) -> str:
    """Return where the item lives (or will live) once committed."""
    if item.uploaded_path:
        return item.uploaded_path
    if item.bucket_path:
        return f"{item.bucket_path}/{item.final_name}"
    return item.final_name


def is_chronological(items: Iterable[ProcessedItem]) -> bool:
    previous = None
    for item in items:
        if previous is not None and item.captured_at < previous:
            return False
        previous = item.captured_at
    return True


__all__ = [
    "ManifestKind",
    "ManifestFile",
    "STILL_DURATION_SECONDS",
    "stable_id",
    "clip_duration",
    "clip_path",
    "is_chronological",
]
