"""Project ledger persistence helpers."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional

from pydantic import BaseModel, ValidationError

from .errors import LedgerError, MissingLedgerError
from .models import (
    DateBucket,
    LedgerCommitSummary,
    OperationEvent,
    ProcessedCheck,
    ProjectLedger,
    new_project_id,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_LEDGER_DIR = Path("~/.reelkeeper/projects")
CURRENT_POINTER = "current.json"
HISTORY_DIRNAME = "history"


class LedgerStats(BaseModel):
    """Aggregate figures across every stored project."""

    project_count: int = 0
    total_files_processed: int = 0
    total_buckets: int = 0


class LedgerRepository:
    """Manage one JSON document per project ledger inside a directory."""

    def __init__(self, directory: Path = DEFAULT_LEDGER_DIR) -> None:
        """Initialize the repository.

        Args:
            directory: Directory that stores the ledger documents.
        """
        self._directory = directory.expanduser()

    @property
    def directory(self) -> Path:
        """Return the directory holding ledger documents.

        Returns:
            Path: Ledger storage directory.
        """
        return self._directory

    def create(self, name: str, source_scope: Optional[str] = None) -> ProjectLedger:
        """Create, persist and select a new empty ledger.

        Args:
            name: Human-readable project name.
            source_scope: Store scope the project draws items from.

        Returns:
            ProjectLedger: The new ledger.
        """
        ledger = ProjectLedger(name=name, source_scope=source_scope)
        self.save(ledger)
        self.set_current(ledger.id)
        LOGGER.info("Created project ledger %s (%s)", ledger.id, name)
        return ledger

    def load(self, project_id: str) -> ProjectLedger:
        """Load the ledger stored under ``project_id``.

        Args:
            project_id: Identifier of the project.

        Returns:
            ProjectLedger: Deserialized ledger.

        Raises:
            MissingLedgerError: If no ledger is stored under the id.
            LedgerError: If the stored data cannot be parsed.
        """
        path = self._ledger_path(project_id)
        if not path.exists():
            raise MissingLedgerError(f"No project ledger found at {path}")

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise LedgerError(f"Invalid project ledger data: {exc}") from exc

        try:
            return ProjectLedger.model_validate(data)
        except ValidationError as exc:
            raise LedgerError(f"Invalid project ledger data: {exc}") from exc

    def save(self, ledger: ProjectLedger) -> Path:
        """Persist ``ledger`` atomically.

        The document is written to a temporary file in the same directory and
        then moved over the previous version, so readers never observe a
        partially written ledger.

        Args:
            ledger: Ledger to serialize.

        Returns:
            Path: Location of the stored document.
        """
        self._directory.mkdir(parents=True, exist_ok=True)
        path = self._ledger_path(ledger.id)
        payload = json.dumps(ledger.model_dump(mode="json"), indent=2)
        self._atomic_write(path, payload)
        return path

    def exists(self, project_id: str) -> bool:
        return self._ledger_path(project_id).exists()

    def delete(self, project_id: str) -> None:
        """Remove a ledger, its history and the current pointer when it points at it.

        Raises:
            MissingLedgerError: If no ledger is stored under the id.
        """
        path = self._ledger_path(project_id)
        if not path.exists():
            raise MissingLedgerError(f"No project ledger found at {path}")
        path.unlink()
        history = self._history_path(project_id)
        if history.exists():
            history.unlink()
        if self.current_id() == project_id:
            (self._directory / CURRENT_POINTER).unlink(missing_ok=True)
        LOGGER.info("Deleted project ledger %s", project_id)

    def list_projects(self) -> list[ProjectLedger]:
        """Return every readable ledger, most recently updated first."""
        if not self._directory.exists():
            return []
        ledgers: list[ProjectLedger] = []
        for path in self._directory.glob("*.json"):
            if path.name == CURRENT_POINTER:
                continue
            try:
                ledgers.append(self.load(path.stem))
            except LedgerError as exc:
                LOGGER.warning("Skipping unreadable ledger %s: %s", path.name, exc)
        ledgers.sort(key=lambda ledger: ledger.last_updated_at, reverse=True)
        return ledgers

    def set_current(self, project_id: str) -> None:
        """Remember ``project_id`` as the project used when none is specified."""
        self._directory.mkdir(parents=True, exist_ok=True)
        self._atomic_write(
            self._directory / CURRENT_POINTER, json.dumps({"project_id": project_id})
        )

    def current_id(self) -> Optional[str]:
        pointer = self._directory / CURRENT_POINTER
        if not pointer.exists():
            return None
        try:
            data = json.loads(pointer.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise LedgerError(f"Invalid current project pointer: {exc}") from exc
        project_id = data.get("project_id") if isinstance(data, dict) else None
        return project_id if isinstance(project_id, str) else None

    def load_current(self) -> Optional[ProjectLedger]:
        """Load the current project, or None when no project has been selected."""
        project_id = self.current_id()
        if project_id is None:
            return None
        try:
            return self.load(project_id)
        except MissingLedgerError:
            LOGGER.warning("Current project %s no longer exists", project_id)
            return None

    def stats(self) -> LedgerStats:
        """Return totals across all stored projects."""
        projects = self.list_projects()
        return LedgerStats(
            project_count=len(projects),
            total_files_processed=sum(ledger.total_items_processed for ledger in projects),
            total_buckets=sum(len(ledger.buckets) for ledger in projects),
        )

    def append_history(self, project_id: str, events: Iterable[OperationEvent]) -> None:
        """Append commit events to the project's JSON-lines history file.

        Args:
            project_id: Identifier of the project.
            events: Events recorded while committing a run.
        """
        history_path = self._history_path(project_id)
        history_path.parent.mkdir(parents=True, exist_ok=True)
        with history_path.open("a", encoding="utf-8") as handle:
            for event in events:
                handle.write(event.model_dump_json())
                handle.write("\n")

    def read_history(self, project_id: str, limit: Optional[int] = None) -> list[OperationEvent]:
        """Return recorded history events, oldest first.

        Raises:
            LedgerError: If a history line cannot be parsed.
        """
        history_path = self._history_path(project_id)
        if not history_path.exists():
            return []
        events: list[OperationEvent] = []
        for line in history_path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                events.append(OperationEvent.model_validate_json(line))
            except ValidationError as exc:
                raise LedgerError(f"Invalid history entry: {exc}") from exc
        if limit is not None:
            events = events[-limit:]
        return events

    def _ledger_path(self, project_id: str) -> Path:
        if not project_id or "/" in project_id or "\\" in project_id or project_id.startswith("."):
            raise LedgerError(f"Invalid project id: {project_id!r}")
        return self._directory / f"{project_id}.json"

    def _history_path(self, project_id: str) -> Path:
        return self._directory / HISTORY_DIRNAME / f"{project_id}.jsonl"

    def _atomic_write(self, path: Path, payload: str) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


def check_processed(ledger: Optional[ProjectLedger], identities: Iterable[str]) -> ProcessedCheck:
    """Partition identities against ``ledger``; everything is new when there is no ledger."""
    if ledger is None:
        return ProcessedCheck(new=list(dict.fromkeys(identities)))
    return ledger.check_processed(identities)


def batch_status_message(
    ledger: Optional[ProjectLedger],
    batch_number: int,
    counts_by_bucket: Mapping[str, int],
) -> str:
    """Describe how a batch will merge into the ledger's existing buckets.

    Args:
        ledger: Current project ledger, if any.
        batch_number: One-based number of the batch within the project.
        counts_by_bucket: New item counts keyed by bucket key.

    Returns:
        str: Message such as ``Batch 3: Adding 4 items to existing January 2024 folder``.
    """
    total = sum(counts_by_bucket.values())
    if ledger is None:
        return f"Batch {batch_number}: Processing {total} items"

    existing: list[str] = []
    new_folders = 0
    for key, count in counts_by_bucket.items():
        bucket = ledger.buckets.get(key)
        if bucket is not None:
            existing.append(f"Adding {count} items to existing {bucket.display_name} folder")
        else:
            new_folders += 1

    if existing:
        return f"Batch {batch_number}: " + " | ".join(existing)
    if new_folders:
        return f"Batch {batch_number}: Creating {new_folders} new date folders for {total} items"
    return f"Batch {batch_number}: Processing {total} items"


def bucket_counts(items: Iterable[object]) -> Dict[str, int]:
    """Count items per ``bucket_key`` attribute, in first-seen order."""
    counts: Dict[str, int] = {}
    for item in items:
        key = getattr(item, "bucket_key", None)
        if key is not None:
            counts[key] = counts.get(key, 0) + 1
    return counts


__all__ = [
    "LedgerRepository",
    "LedgerStats",
    "DEFAULT_LEDGER_DIR",
    "DateBucket",
    "LedgerCommitSummary",
    "OperationEvent",
    "ProcessedCheck",
    "ProjectLedger",
    "LedgerError",
    "MissingLedgerError",
    "batch_status_message",
    "bucket_counts",
    "check_processed",
    "new_project_id",
]
