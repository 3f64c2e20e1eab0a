"""Chronological organization: naming, bucketing, planning and commit."""

from .models import BucketSummary, MoveOperation, OperationPlan, ProcessedItem
from .naming import assigned_name, bucket_key, bucket_path, sanitize_name
from .planner import ChronologicalOrganizer

__all__ = [
    "BucketSummary",
    "MoveOperation",
    "OperationPlan",
    "ProcessedItem",
    "assigned_name",
    "bucket_key",
    "bucket_path",
    "sanitize_name",
    "ChronologicalOrganizer",
]
