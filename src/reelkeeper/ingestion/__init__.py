"""Discovery, metadata extraction and capture timestamp verification."""

from .models import (
    NO_CAPTURE_DATE_REASON,
    VerificationReport,
    VerificationResult,
    VerificationStatus,
)
from .retry import RetryingExtractionClient
from .verifier import TimestampVerifier

__all__ = [
    "NO_CAPTURE_DATE_REASON",
    "RetryingExtractionClient",
    "TimestampVerifier",
    "VerificationReport",
    "VerificationResult",
    "VerificationStatus",
]
