"""Capture timestamp verification for candidate media items."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional

from reelkeeper.sources.errors import CredentialsExpiredError, ExtractionError
from reelkeeper.sources.models import MediaItem

from .models import (
    NO_CAPTURE_DATE_REASON,
    VerificationReport,
    VerificationResult,
    VerificationStatus,
)
from .retry import RetryingExtractionClient

LOGGER = logging.getLogger(__name__)

_RETARGETED = (VerificationStatus.UNVERIFIABLE, VerificationStatus.ERROR)


class TimestampVerifier:
    """Classify items by whether they carry a trustworthy original capture time."""

    def __init__(self, client: RetryingExtractionClient) -> None:
        """Initialize the verifier.

        Args:
            client: Retrying extraction client used to inspect each item.
        """
        self.client = client

    def verify(
        self,
        items: Iterable[MediaItem],
        *,
        previous: Optional[VerificationReport] = None,
        targeted: bool = False,
        checkpoint: Optional[Callable[[], None]] = None,
        on_result: Optional[Callable[[VerificationResult], None]] = None,
    ) -> VerificationReport:
        """Verify items, either all of them or only the previously rejected ones.

        Args:
            items: Items to verify. In targeted mode, items missing from
                ``previous`` are appended and verified.
            previous: Report from an earlier session; required for targeted mode.
            targeted: When True, only entries currently ``unverifiable`` or
                ``error`` are re-verified. Other entries are left untouched.
            checkpoint: Callable invoked before each item; may block (pause)
                or raise (cancel).
            on_result: Callback invoked after each item has been classified.

        Returns:
            VerificationReport: The report, updated in place when targeted.

        Raises:
            ValueError: If targeted mode is requested without a previous report.
            CredentialsExpiredError: If the store rejects the credentials; the
                remaining items are not inspected.
        """
        if targeted:
            if previous is None:
                raise ValueError("Targeted verification requires a previous report")
            report = previous
            known = report.by_identity()
            for item in items:
                if item.identity not in known:
                    result = VerificationResult(item=item)
                    report.results.append(result)
                    known[item.identity] = result
            pending = [
                result
                for result in report.results
                if result.status in _RETARGETED or result.status is VerificationStatus.PENDING
            ]
        else:
            report = VerificationReport(results=[VerificationResult(item=item) for item in items])
            pending = list(report.results)

        report.aborted = False
        report.abort_reason = None
        LOGGER.info(
            "Verifying %d item(s) (%s mode)", len(pending), "targeted" if targeted else "full"
        )

        for result in pending:
            if checkpoint is not None:
                checkpoint()
            try:
                self._verify_one(result)
            except CredentialsExpiredError as exc:
                report.aborted = True
                report.abort_reason = str(exc)
                LOGGER.error("Verification aborted: %s", exc)
                raise
            if on_result is not None:
                on_result(result)

        counts = report.counts()
        LOGGER.info(
            "Verification finished: %d verified, %d unverifiable, %d error",
            counts["verified"],
            counts["unverifiable"],
            counts["error"],
        )
        return report

    def _verify_one(self, result: VerificationResult) -> None:
        identity = result.item.identity
        result.status = VerificationStatus.PENDING
        result.error_detail = None
        result.extraction_payload = None
        try:
            payload = self.client.extract(identity)
        except ExtractionError as exc:
            result.status = VerificationStatus.ERROR
            result.error_detail = str(exc) or exc.__class__.__name__
            LOGGER.warning("Verification failed for %s: %s", identity, result.error_detail)
            return

        result.extraction_payload = payload
        if payload.captured_at is None:
            result.status = VerificationStatus.UNVERIFIABLE
            result.error_detail = NO_CAPTURE_DATE_REASON
            LOGGER.info("No capture date for %s", identity)
        else:
            result.status = VerificationStatus.VERIFIED


__all__ = ["TimestampVerifier"]
