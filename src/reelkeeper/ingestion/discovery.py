"""Local media discovery utilities."""

from __future__ import annotations

import mimetypes
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator

from reelkeeper.sources.models import MediaItem


def _is_hidden(path: Path) -> bool:
    return any(part.startswith(".") for part in path.parts if part not in (".", ".."))


class DirectoryScanner:
    """Discover media files within a directory tree subject to configuration filters."""

    def __init__(
        self,
        *,
        recursive: bool,
        include_hidden: bool,
        follow_symlinks: bool,
        extensions: Iterable[str] | None = None,
        exclude_dirnames: Iterable[str] = (),
    ) -> None:
        self.recursive = recursive
        self.include_hidden = include_hidden
        self.follow_symlinks = follow_symlinks
        self.extensions = {ext.lower() for ext in extensions} if extensions else None
        self.exclude_dirnames = set(exclude_dirnames)

    def scan(self, root: Path) -> Iterator[MediaItem]:
        """Yield media items discovered under root, identified by their relative POSIX path."""
        root = root.expanduser().resolve()
        if not root.exists():
            return

        for path in sorted(self._iter_paths(root)):
            if not path.is_file() and not (self.follow_symlinks and path.is_symlink()):
                continue
            try:
                relative = path.relative_to(root) if path != root else Path(path.name)
            except ValueError:
                relative = Path(path.name)
            if not self.include_hidden and _is_hidden(relative):
                continue
            if self.exclude_dirnames.intersection(relative.parts[:-1]):
                continue
            if self.extensions is not None and path.suffix.lower() not in self.extensions:
                continue
            try:
                stat = path.stat(follow_symlinks=self.follow_symlinks)
            except OSError:
                continue

            mime_type, _ = mimetypes.guess_type(path.name)
            yield MediaItem(
                identity=relative.as_posix(),
                name=path.name,
                size_bytes=stat.st_size,
                mime_type=mime_type,
                created_at=datetime.fromtimestamp(stat.st_ctime, tz=timezone.utc),
                modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            )

    def _iter_paths(self, root: Path) -> Iterable[Path]:
        """Internal helper to iterate candidate paths."""
        if root.is_file():
            yield root
            return

        if self.recursive:
            yield from root.rglob("*")
        else:
            yield from root.iterdir()


__all__ = ["DirectoryScanner"]
