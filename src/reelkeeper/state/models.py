"""Project ledger data models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Literal, Optional, Set

from pydantic import BaseModel, Field, field_serializer

from reelkeeper.organization.models import ProcessedItem
from reelkeeper.organization.naming import display_name


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_project_id() -> str:
    """Return an opaque identifier for a new project ledger."""
    return f"project_{int(_utcnow().timestamp() * 1000)}_{uuid.uuid4().hex[:9]}"


class OperationEvent(BaseModel):
    """Represents a single commit operation applied to an item."""

    timestamp: datetime = Field(default_factory=_utcnow)
    operation: Literal["move", "skip", "export"]
    identity: str
    destination: Optional[str] = None
    run_id: Optional[str] = None
    notes: List[str] = Field(default_factory=list)


class DateBucket(BaseModel):
    """A date-derived folder that has received items across one or more runs.

    Attributes:
        bucket_key: Ledger key (``YYYY-MM``, ``YYYY`` or ``all``).
        display_name: Human-readable label.
        remote_folder_id: Folder identifier reported by the store, once known.
        item_count: Number of items placed into the bucket over all runs.
        first_seen_at: When the bucket was created.
        last_updated_at: When items were last added.
        contributing_run_ids: Runs that added items, in commit order.
    """

    bucket_key: str
    display_name: str
    remote_folder_id: Optional[str] = None
    item_count: int = 0
    first_seen_at: datetime = Field(default_factory=_utcnow)
    last_updated_at: datetime = Field(default_factory=_utcnow)
    contributing_run_ids: List[str] = Field(default_factory=list)


class ProcessedCheck(BaseModel):
    """Partition of identities into new and already-processed ones."""

    new: List[str] = Field(default_factory=list)
    already_processed: List[str] = Field(default_factory=list)
    existing_buckets: List[str] = Field(default_factory=list)


class LedgerCommitSummary(BaseModel):
    """What a single commit added to the ledger."""

    run_id: str
    added: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    created_buckets: List[str] = Field(default_factory=list)
    updated_buckets: List[str] = Field(default_factory=list)


class ProjectLedger(BaseModel):
    """Cross-run record of processed identities and the buckets they went to.

    ``processed_identities`` only ever grows through ``commit``; the single
    way to let an identity be processed again is ``clear_identities``.
    """

    id: str = Field(default_factory=new_project_id)
    name: str
    created_at: datetime = Field(default_factory=_utcnow)
    last_updated_at: datetime = Field(default_factory=_utcnow)
    processed_identities: Set[str] = Field(default_factory=set)
    buckets: Dict[str, DateBucket] = Field(default_factory=dict)
    total_runs_completed: int = 0
    total_items_processed: int = 0
    source_scope: Optional[str] = None

    @field_serializer("processed_identities")
    def _serialize_identities(self, value: Set[str]) -> List[str]:
        return sorted(value)

    def check_processed(self, identities: Iterable[str]) -> ProcessedCheck:
        """Split identities into new and already-processed ones, preserving order."""
        check = ProcessedCheck()
        seen: set[str] = set()
        for identity in identities:
            if identity in seen:
                continue
            seen.add(identity)
            if identity in self.processed_identities:
                check.already_processed.append(identity)
            else:
                check.new.append(identity)
        check.existing_buckets = sorted(self.buckets)
        return check

    def commit(
        self,
        items: Iterable[ProcessedItem],
        run_id: str,
        *,
        folder_ids: Optional[Dict[str, str]] = None,
    ) -> LedgerCommitSummary:
        """Record processed items, growing buckets additively.

        Args:
            items: Items that completed the run, with bucket keys assigned.
            run_id: Identifier of the committing run.
            folder_ids: Optional store folder identifiers keyed by bucket key;
                only used for buckets that have none yet.

        Returns:
            LedgerCommitSummary: Identities added or skipped and buckets touched.

        Raises:
            ValueError: If an item has no bucket key.
        """
        now = _utcnow()
        summary = LedgerCommitSummary(run_id=run_id)
        folder_ids = folder_ids or {}
        for item in items:
            if item.bucket_key is None:
                raise ValueError(f"{item.identity} has not been bucketed")
            if item.identity in self.processed_identities:
                summary.skipped.append(item.identity)
                continue

            bucket = self.buckets.get(item.bucket_key)
            if bucket is None:
                bucket = DateBucket(
                    bucket_key=item.bucket_key,
                    display_name=display_name(item.bucket_key),
                    first_seen_at=now,
                )
                self.buckets[item.bucket_key] = bucket
                summary.created_buckets.append(item.bucket_key)
            elif (
                item.bucket_key not in summary.updated_buckets
                and item.bucket_key not in summary.created_buckets
            ):
                summary.updated_buckets.append(item.bucket_key)

            bucket.item_count += 1
            bucket.last_updated_at = now
            if run_id not in bucket.contributing_run_ids:
                bucket.contributing_run_ids.append(run_id)
            if bucket.remote_folder_id is None and item.bucket_key in folder_ids:
                bucket.remote_folder_id = folder_ids[item.bucket_key]

            self.processed_identities.add(item.identity)
            summary.added.append(item.identity)

        self.total_runs_completed += 1
        self.total_items_processed += len(summary.added)
        self.last_updated_at = now
        return summary

    def clear_identities(self, identities: Iterable[str]) -> List[str]:
        """Forget identities so a later run may process them again; bucket counts are kept."""
        cleared = [identity for identity in identities if identity in self.processed_identities]
        self.processed_identities.difference_update(cleared)
        if cleared:
            self.last_updated_at = _utcnow()
        return cleared


__all__ = [
    "OperationEvent",
    "DateBucket",
    "ProcessedCheck",
    "LedgerCommitSummary",
    "ProjectLedger",
    "new_project_id",
]
