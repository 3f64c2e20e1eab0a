"""Organization plan data models."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from reelkeeper.sources.models import ExtractedMetadata, MediaItem, ensure_aware


class ProcessedItem(BaseModel):
    """An item that made it through download and extraction.

    Attributes:
        identity: Store identity of the item.
        original_name: Name the item was listed with.
        assigned_name: Timestamped name; equals the original name until assigned.
        captured_at: Verified original capture time.
        bucket_key: Ledger key of the date bucket (``YYYY-MM``, ``YYYY`` or ``all``).
        bucket_path: Folder path the item is placed under.
        uploaded_path: Destination reported by the store once committed.
        size_bytes: Declared size of the item.
        media_meta: Metadata returned by extraction.
    """

    identity: str
    original_name: str
    assigned_name: Optional[str] = None
    captured_at: datetime
    bucket_key: Optional[str] = None
    bucket_path: Optional[str] = None
    uploaded_path: Optional[str] = None
    size_bytes: int = 0
    media_meta: ExtractedMetadata = Field(default_factory=ExtractedMetadata)

    @field_validator("captured_at")
    @classmethod
    def _attach_timezone(cls, value: datetime) -> datetime:
        return ensure_aware(value)  # type: ignore[return-value]

    @classmethod
    def from_extraction(cls, item: MediaItem, metadata: ExtractedMetadata) -> "ProcessedItem":
        """Build a candidate from a listed item and its verified metadata."""
        if metadata.captured_at is None:
            raise ValueError(f"{item.identity} has no verified capture time")
        if metadata.duration_seconds is None and item.duration_seconds is not None:
            metadata = metadata.model_copy(update={"duration_seconds": item.duration_seconds})
        return cls(
            identity=item.identity,
            original_name=item.name,
            captured_at=metadata.captured_at,
            size_bytes=item.size_bytes,
            media_meta=metadata,
        )

    @property
    def final_name(self) -> str:
        return self.assigned_name or self.original_name

    @property
    def duration_seconds(self) -> Optional[float]:
        return self.media_meta.duration_seconds


class MoveOperation(BaseModel):
    """Represents placing an item into its bucket folder under its assigned name.

    Attributes:
        identity: Store identity of the item to move.
        source_name: Name before the move.
        bucket_path: Destination folder path.
        destination_name: Name after the move.
        conflict_applied: Indicates whether a collision suffix was added.
        reasoning: Optional explanation for the move.
    """

    identity: str
    source_name: str
    bucket_path: str
    destination_name: str
    conflict_applied: bool = False
    reasoning: Optional[str] = None

    @property
    def destination(self) -> str:
        return f"{self.bucket_path}/{self.destination_name}"


class BucketSummary(BaseModel):
    """Items grouped under one bucket key, in timeline order."""

    key: str
    path: str
    display_name: str
    identities: List[str] = Field(default_factory=list)
    first_captured_at: Optional[datetime] = None
    last_captured_at: Optional[datetime] = None

    @property
    def item_count(self) -> int:
        return len(self.identities)


class OperationPlan(BaseModel):
    """Aggregated organization plan."""

    items: List[ProcessedItem] = Field(default_factory=list)
    moves: List[MoveOperation] = Field(default_factory=list)
    buckets: List[BucketSummary] = Field(default_factory=list)
    notes: List[str] = Field(default_factory=list)


__all__ = ["ProcessedItem", "MoveOperation", "BucketSummary", "OperationPlan"]
