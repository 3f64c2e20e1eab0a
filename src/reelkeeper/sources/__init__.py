"""External collaborator contracts: listing, content, extraction and notification."""

from .base import ContentService, ListingService, LoggingNotifier, MetadataService, Notifier
from .errors import (
    ContentError,
    CredentialsExpiredError,
    ErrorClass,
    ExtractionError,
    SourceError,
)
from .models import ExtractedMetadata, MediaItem, ensure_aware

__all__ = [
    "ContentService",
    "ListingService",
    "LoggingNotifier",
    "MetadataService",
    "Notifier",
    "ContentError",
    "CredentialsExpiredError",
    "ErrorClass",
    "ExtractionError",
    "SourceError",
    "ExtractedMetadata",
    "MediaItem",
    "ensure_aware",
]
