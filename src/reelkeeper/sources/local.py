"""Filesystem-backed media store implementing listing and content operations."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Iterable, Iterator

from reelkeeper.config.models import ProcessingOptions
from reelkeeper.ingestion.discovery import DirectoryScanner

from .errors import ContentError
from .models import MediaItem

LOGGER = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class LocalMediaStore:
    """Expose a local directory tree as a media store.

    Items are identified by their POSIX path relative to ``source_root``. Moves
    place content under ``target_root``; in copy mode the source tree is left
    untouched.
    """

    def __init__(
        self,
        source_root: Path,
        target_root: Path,
        *,
        copy_mode: bool = False,
        processing: ProcessingOptions | None = None,
        exclude_dirnames: Iterable[str] = (),
    ) -> None:
        """Initialize the store.

        Args:
            source_root: Directory scanned for media.
            target_root: Directory that receives organized media.
            copy_mode: Copy files instead of moving them.
            processing: Discovery options; defaults are used when omitted.
            exclude_dirnames: Directory names skipped while scanning.
        """
        self.source_root = source_root.expanduser().resolve()
        self.target_root = target_root.expanduser().resolve()
        self.copy_mode = copy_mode
        options = processing or ProcessingOptions()
        self.scanner = DirectoryScanner(
            recursive=options.recurse_directories,
            include_hidden=options.process_hidden_files,
            follow_symlinks=options.follow_symlinks,
            extensions=options.extensions,
            exclude_dirnames=exclude_dirnames,
        )

    def list(self, scope: str | None = None) -> list[MediaItem]:
        """Return items under ``scope`` (a relative subdirectory) or the whole source root.

        Raises:
            ContentError: If ``scope`` points outside the source root.
        """
        if scope:
            base = (self.source_root / scope).resolve()
            try:
                prefix = base.relative_to(self.source_root).as_posix()
            except ValueError as exc:
                raise ContentError(f"Scope {scope!r} is outside {self.source_root}") from exc
            items = []
            for item in self.scanner.scan(base):
                identity = f"{prefix}/{item.identity}" if prefix != "." else item.identity
                items.append(item.model_copy(update={"identity": identity}))
            return items
        return list(self.scanner.scan(self.source_root))

    def download(self, identity: str) -> Iterator[bytes]:
        """Yield the file content for ``identity`` in fixed-size chunks.

        Raises:
            ContentError: If the file is missing or unreadable.
        """
        path = self.path_for(identity)
        try:
            with path.open("rb") as fh:
                while True:
                    chunk = fh.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    yield chunk
        except OSError as exc:
            raise ContentError(f"Unable to read {identity}: {exc}") from exc

    def move(self, identity: str, new_name: str, bucket_path: str) -> str:
        """Place ``identity`` at ``target_root/bucket_path/new_name``.

        Returns:
            str: Destination path relative to the target root.

        Raises:
            ContentError: If the source is missing or the destination already exists.
        """
        source = self.path_for(identity)
        if not source.is_file():
            raise ContentError(f"Source file is missing: {identity}")

        destination_dir = self.target_root / bucket_path
        destination = destination_dir / new_name
        if destination.exists():
            raise ContentError(f"Destination already exists: {destination}")

        try:
            destination_dir.mkdir(parents=True, exist_ok=True)
            if self.copy_mode:
                shutil.copy2(source, destination)
            else:
                shutil.move(str(source), str(destination))
        except OSError as exc:
            raise ContentError(f"Unable to place {identity} at {destination}: {exc}") from exc

        LOGGER.debug("%s %s -> %s", "Copied" if self.copy_mode else "Moved", identity, destination)
        return destination.relative_to(self.target_root).as_posix()

    def path_for(self, identity: str) -> Path:
        """Return the absolute source path for ``identity``, confined to the source root."""
        candidate = (self.source_root / identity).resolve()
        if self.source_root not in candidate.parents:
            raise ContentError(f"{identity} is outside of {self.source_root}")
        return candidate


__all__ = ["LocalMediaStore", "CHUNK_SIZE"]
