"""Data models exchanged with external media stores and extraction services."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def ensure_aware(value: datetime | None) -> datetime | None:
    """Return ``value`` with UTC attached when it carries no timezone."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class MediaItem(BaseModel):
    """A media file as listed by the external store.

    Store-provided timestamps are informational only; they are never used as
    the capture time of the item.

    Attributes:
        identity: Opaque identifier assigned by the store.
        name: Display name (usually the original filename).
        size_bytes: Declared size in bytes.
        duration_seconds: Declared duration, when the store exposes one.
        mime_type: Declared MIME type, if known.
        created_at: Store upload/creation time.
        modified_at: Store modification time.
    """

    model_config = ConfigDict(frozen=True)

    identity: str
    name: str
    size_bytes: int = 0
    duration_seconds: Optional[float] = None
    mime_type: Optional[str] = None
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None


class ExtractedMetadata(BaseModel):
    """Metadata returned by the extraction service for one item.

    Attributes:
        captured_at: Original capture time recorded by the device, if any.
        device: Make/model of the recording device.
        width: Frame width in pixels.
        height: Frame height in pixels.
        duration_seconds: Media duration.
        frame_rate: Frames per second for video.
        codec: Codec or container description.
        latitude: Capture latitude.
        longitude: Capture longitude.
        extraction_method: Which reader produced ``captured_at``.
        extra: Additional provider-specific values.
    """

    captured_at: Optional[datetime] = None
    device: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    duration_seconds: Optional[float] = None
    frame_rate: Optional[float] = None
    codec: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    extraction_method: Optional[str] = None
    extra: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("captured_at")
    @classmethod
    def _attach_timezone(cls, value: datetime | None) -> datetime | None:
        return ensure_aware(value)

    @property
    def resolution(self) -> Optional[str]:
        """Return ``WIDTHxHEIGHT`` when both dimensions are known."""
        if self.width and self.height:
            return f"{self.width}x{self.height}"
        return None


__all__ = ["MediaItem", "ExtractedMetadata", "ensure_aware"]
