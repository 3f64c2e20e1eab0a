"""Chronological ordering, bucketing and renaming of processed items."""

from __future__ import annotations

import logging
from typing import Iterable, List, Tuple

from reelkeeper.config.models import BucketStrategy

from . import naming
from .models import BucketSummary, MoveOperation, OperationPlan, ProcessedItem

LOGGER = logging.getLogger(__name__)


class ChronologicalOrganizer:
    """Sort candidates by capture time and derive their buckets and names."""

    def __init__(
        self,
        strategy: BucketStrategy = "year-month",
        flat_folder_name: str = naming.DEFAULT_FLAT_FOLDER,
    ) -> None:
        self.strategy = strategy
        self.flat_folder_name = flat_folder_name

    def sort(self, candidates: Iterable[ProcessedItem]) -> List[ProcessedItem]:
        """Return candidates in ascending capture order (identity breaks ties)."""
        return sorted(candidates, key=lambda item: (item.captured_at, item.identity))

    def bucket(
        self, candidates: Iterable[ProcessedItem]
    ) -> Tuple[List[ProcessedItem], List[BucketSummary]]:
        """Assign bucket keys and paths.

        Args:
            candidates: Items with verified capture times, in any order.

        Returns:
            Tuple[List[ProcessedItem], List[BucketSummary]]: Sorted copies of the
            items with ``bucket_key``/``bucket_path`` set, and one summary per
            bucket in timeline order.
        """
        ordered: List[ProcessedItem] = []
        summaries: dict[str, BucketSummary] = {}
        for item in self.sort(candidates):
            key = naming.bucket_key(item.captured_at, self.strategy)
            path = naming.bucket_path(item.captured_at, self.strategy, self.flat_folder_name)
            ordered.append(item.model_copy(update={"bucket_key": key, "bucket_path": path}))

            summary = summaries.get(key)
            if summary is None:
                summary = BucketSummary(
                    key=key,
                    path=path,
                    display_name=naming.display_name(key),
                    first_captured_at=item.captured_at,
                )
                summaries[key] = summary
            summary.identities.append(item.identity)
            summary.last_captured_at = item.captured_at

        return ordered, list(summaries.values())

    def assign_names(
        self, items: Iterable[ProcessedItem], *, rename: bool = True
    ) -> List[ProcessedItem]:
        """Assign deterministic names, suffixing collisions within a bucket path.

        Args:
            items: Bucketed items in timeline order.
            rename: When False, items keep their sanitized original name.

        Returns:
            List[ProcessedItem]: Copies of the items with ``assigned_name`` set.
        """
        occupied: set[tuple[str, str]] = set()
        named: List[ProcessedItem] = []
        for item in items:
            if rename:
                candidate = naming.assigned_name(item.captured_at, item.original_name)
            else:
                candidate = naming.sanitize_name(item.original_name)
            folder = item.bucket_path or ""
            resolved = self._resolve_conflict(folder, candidate, occupied)
            occupied.add((folder, resolved.lower()))
            named.append(item.model_copy(update={"assigned_name": resolved}))
        return named

    def organize(
        self, candidates: Iterable[ProcessedItem], *, rename: bool = True
    ) -> OperationPlan:
        """Sort, bucket and name candidates and return the resulting plan."""
        ordered, buckets = self.bucket(candidates)
        named = self.assign_names(ordered, rename=rename)
        return self.build_plan(named, buckets, rename=rename)

    def build_plan(
        self,
        named: List[ProcessedItem],
        buckets: List[BucketSummary],
        *,
        rename: bool = True,
    ) -> OperationPlan:
        """Wrap named, bucketed items into an ordered plan of move operations."""
        plan = OperationPlan(items=named, buckets=buckets)
        for item in named:
            base_name = (
                naming.assigned_name(item.captured_at, item.original_name)
                if rename
                else naming.sanitize_name(item.original_name)
            )
            plan.moves.append(
                MoveOperation(
                    identity=item.identity,
                    source_name=item.original_name,
                    bucket_path=item.bucket_path or "",
                    destination_name=item.final_name,
                    conflict_applied=item.final_name != base_name,
                    reasoning=f"Captured {item.captured_at.isoformat()}",
                )
            )

        collisions = sum(1 for move in plan.moves if move.conflict_applied)
        if collisions:
            plan.notes.append(f"{collisions} name collision(s) resolved with numeric suffixes.")
        plan.notes.append(
            f"{len(named)} item(s) organized into {len(buckets)} {self.strategy} bucket(s)."
        )
        LOGGER.info("Organized %d item(s) into %d bucket(s)", len(named), len(buckets))
        return plan

    # ------------------------------------------------------------------ #
    # Helpers                                                            #
    # ------------------------------------------------------------------ #

    def _resolve_conflict(
        self,
        folder: str,
        candidate: str,
        occupied: set[tuple[str, str]],
    ) -> str:
        counter = 1
        final_candidate = candidate
        while (folder, final_candidate.lower()) in occupied:
            final_candidate = naming.with_suffix_counter(candidate, counter)
            counter += 1
        return final_candidate


__all__ = ["ChronologicalOrganizer"]
