"""Verification data models."""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from reelkeeper.sources.models import ExtractedMetadata, MediaItem

NO_CAPTURE_DATE_REASON = "no original capture date in metadata"


class VerificationStatus(str, Enum):
    """Outcome of probing an item for an original capture timestamp."""

    PENDING = "pending"
    VERIFIED = "verified"
    UNVERIFIABLE = "unverifiable"
    ERROR = "error"


class VerificationResult(BaseModel):
    """Per-item verification record, updated in place while verification runs.

    Attributes:
        item: Item being verified.
        status: Current verification status.
        captured_at: Capture time when verified (mirrors the payload).
        extraction_payload: Metadata returned by the extraction service.
        error_detail: Reason an item is unverifiable or failed.
    """

    item: MediaItem
    status: VerificationStatus = VerificationStatus.PENDING
    extraction_payload: Optional[ExtractedMetadata] = None
    error_detail: Optional[str] = None

    @property
    def captured_at(self):
        if self.extraction_payload is None:
            return None
        return self.extraction_payload.captured_at

    @property
    def identity(self) -> str:
        return self.item.identity


class VerificationReport(BaseModel):
    """Ordered collection of verification results for one session."""

    results: List[VerificationResult] = Field(default_factory=list)
    aborted: bool = False
    abort_reason: Optional[str] = None

    def get(self, identity: str) -> Optional[VerificationResult]:
        for result in self.results:
            if result.item.identity == identity:
                return result
        return None

    def by_identity(self) -> Dict[str, VerificationResult]:
        return {result.item.identity: result for result in self.results}

    def verified(self) -> List[VerificationResult]:
        return [r for r in self.results if r.status is VerificationStatus.VERIFIED]

    def rejected(self) -> List[VerificationResult]:
        return [
            r
            for r in self.results
            if r.status in (VerificationStatus.UNVERIFIABLE, VerificationStatus.ERROR)
        ]

    def counts(self) -> Dict[str, int]:
        """Return the number of results per status value."""
        totals = {status.value: 0 for status in VerificationStatus}
        for result in self.results:
            totals[result.status.value] += 1
        return totals


__all__ = [
    "NO_CAPTURE_DATE_REASON",
    "VerificationStatus",
    "VerificationResult",
    "VerificationReport",
]
