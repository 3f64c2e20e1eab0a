"""Executor for organization plans."""

from __future__ import annotations

import logging
import posixpath
from typing import Callable, Dict, Optional

from reelkeeper.sources.base import ContentService
from reelkeeper.state import OperationEvent

from .models import MoveOperation, OperationPlan, ProcessedItem

LOGGER = logging.getLogger(__name__)


class CommitExecutor:
    """Apply an operation plan through the content service.

    Items that already carry an ``uploaded_path`` are skipped, so re-applying
    a plan after a failure only performs the moves that did not happen yet.
    """

    def __init__(self, content: ContentService) -> None:
        self.content = content

    def apply(
        self,
        plan: OperationPlan,
        *,
        run_id: Optional[str] = None,
        on_moved: Optional[Callable[[ProcessedItem], None]] = None,
    ) -> list[OperationEvent]:
        """Move every planned item into its bucket folder.

        Args:
            plan: Plan produced by the organizer; its items are updated in place.
            run_id: Identifier recorded on the emitted events.
            on_moved: Optional callback invoked with each item once placed.

        Returns:
            list[OperationEvent]: Events for the moves performed and skipped.

        Raises:
            ContentError: If the store rejects a move; earlier moves stay recorded.
        """
        items: Dict[str, ProcessedItem] = {item.identity: item for item in plan.items}
        events: list[OperationEvent] = []

        for move_op in plan.moves:
            item = items.get(move_op.identity)
            if item is None:
                raise ValueError(f"Plan has no item for move of {move_op.identity}")
            if item.uploaded_path is not None:
                events.append(
                    OperationEvent(
                        operation="skip",
                        identity=item.identity,
                        destination=item.uploaded_path,
                        run_id=run_id,
                        notes=["already placed"],
                    )
                )
                continue

            destination = self.content.move(
                move_op.identity, move_op.destination_name, move_op.bucket_path
            )
            item.uploaded_path = destination
            events.append(
                OperationEvent(
                    operation="move",
                    identity=item.identity,
                    destination=destination,
                    run_id=run_id,
                    notes=self._notes_from_operation(move_op),
                )
            )
            if on_moved is not None:
                on_moved(item)

        LOGGER.info("Applied %d move(s)", sum(1 for e in events if e.operation == "move"))
        return events

    def _notes_from_operation(self, operation: MoveOperation) -> list[str]:
        notes = [operation.reasoning] if operation.reasoning else []
        if operation.conflict_applied:
            notes.append("name collision suffix applied")
        return notes


def folder_ids(plan: OperationPlan) -> Dict[str, str]:
    """Return the store folder of each bucket, derived from the placed items."""
    result: Dict[str, str] = {}
    for item in plan.items:
        if item.bucket_key and item.uploaded_path and item.bucket_key not in result:
            result[item.bucket_key] = posixpath.dirname(item.uploaded_path) or item.uploaded_path
    return result


__all__ = ["CommitExecutor", "folder_ids"]
