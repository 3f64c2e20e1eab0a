"""Built-in background jobs."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Sequence

from reelkeeper.ingestion.retry import RetryingExtractionClient
from reelkeeper.manifests import ManifestGenerator
from reelkeeper.organization.models import ProcessedItem
from reelkeeper.organization.naming import sanitize_name
from reelkeeper.sources.base import ContentService
from reelkeeper.sources.errors import ContentError, ExtractionError
from reelkeeper.sources.models import MediaItem

from .models import DownloadOutcome, ExtractionOutcome
from .registry import TaskHandle, TaskWork

LOGGER = logging.getLogger(__name__)


def bulk_extract(items: Iterable[MediaItem], client: RetryingExtractionClient) -> TaskWork:
    """Return work that extracts metadata for every item, one unit per item.

    Per-item extraction failures are recorded in the results; a credentials
    failure fails the whole task.
    """
    ordered = list(items)

    def _work(handle: TaskHandle) -> None:
        for item in ordered[handle.start_index :]:
            handle.checkpoint()
            try:
                metadata = client.extract(item.identity)
            except ExtractionError as exc:
                handle.results.append(ExtractionOutcome(identity=item.identity, error=str(exc)))
            else:
                handle.results.append(ExtractionOutcome(identity=item.identity, metadata=metadata))
            handle.advance()

    return _work


def bulk_download(
    items: Iterable[MediaItem], content: ContentService, staging_dir: Path
) -> TaskWork:
    """Return work that downloads every item into ``staging_dir``."""
    ordered = list(items)

    def _work(handle: TaskHandle) -> None:
        staging_dir.mkdir(parents=True, exist_ok=True)
        for item in ordered[handle.start_index :]:
            handle.checkpoint()
            target = staging_dir / sanitize_name(item.identity)
            size = 0
            try:
                with target.open("wb") as fh:
                    for chunk in content.download(item.identity):
                        fh.write(chunk)
                        size += len(chunk)
            except (ContentError, OSError) as exc:
                target.unlink(missing_ok=True)
                LOGGER.warning("Download of %s failed: %s", item.identity, exc)
                handle.results.append(DownloadOutcome(identity=item.identity, error=str(exc)))
            else:
                handle.results.append(
                    DownloadOutcome(identity=item.identity, path=target, size_bytes=size)
                )
            handle.advance()

    return _work


def generate_manifests(
    items: Sequence[ProcessedItem], generator: ManifestGenerator, output_dir: Path
) -> TaskWork:
    """Return single-unit work that writes the configured manifests."""
    ordered = list(items)

    def _work(handle: TaskHandle) -> None:
        if handle.start_index >= 1:
            return
        handle.checkpoint()
        handle.results.extend(generator.generate(ordered, output_dir))
        handle.advance()

    return _work


__all__ = ["bulk_extract", "bulk_download", "generate_manifests"]
