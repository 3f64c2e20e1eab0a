"""Collaborator interfaces consumed by the organization pipeline."""

from __future__ import annotations

import logging
from typing import Iterator, Protocol, runtime_checkable

from .models import ExtractedMetadata, MediaItem

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class ListingService(Protocol):
    """Enumerates the media items available within a scope."""

    def list(self, scope: str | None = None) -> list[MediaItem]:
        """Return the items under ``scope`` (the whole store when None)."""
        ...


@runtime_checkable
class ContentService(Protocol):
    """Transfers and relocates item content."""

    def download(self, identity: str) -> Iterator[bytes]:
        """Yield the content of ``identity`` in chunks."""
        ...

    def move(self, identity: str, new_name: str, bucket_path: str) -> str:
        """Place ``identity`` at ``bucket_path/new_name`` and return the resulting path."""
        ...


@runtime_checkable
class MetadataService(Protocol):
    """Extracts capture metadata; raises ``ExtractionError`` on failure."""

    def extract(self, identity: str) -> ExtractedMetadata:
        """Return the metadata for ``identity``."""
        ...


@runtime_checkable
class Notifier(Protocol):
    """Best-effort run summary delivery."""

    def notify(self, recipient: str, summary: str) -> None:
        """Deliver ``summary`` to ``recipient``."""
        ...


class LoggingNotifier:
    """Notifier that writes summaries to the log instead of sending them."""

    def notify(self, recipient: str, summary: str) -> None:
        LOGGER.info("Run summary for %s: %s", recipient, summary)


__all__ = [
    "ListingService",
    "ContentService",
    "MetadataService",
    "Notifier",
    "LoggingNotifier",
]
