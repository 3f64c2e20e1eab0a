"""Bounded retry wrapper around the metadata extraction service."""

from __future__ import annotations

import logging
import time
from typing import Callable

from reelkeeper.sources.base import MetadataService
from reelkeeper.sources.errors import CredentialsExpiredError, ExtractionError
from reelkeeper.sources.models import ExtractedMetadata

LOGGER = logging.getLogger(__name__)


class RetryingExtractionClient:
    """Retry transient extraction failures with exponential backoff.

    Only ``transient`` errors are retried. Authentication failures surface as
    ``CredentialsExpiredError`` immediately, and every other failure is raised
    on the first attempt. The client holds no per-identity state, so a single
    instance can serve concurrent callers.
    """

    def __init__(
        self,
        service: MetadataService,
        *,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.service = service
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    def delay_before(self, attempt: int) -> float:
        """Return the delay applied before ``attempt`` (1-based); the first attempt waits 0s."""
        if attempt <= 1:
            return 0.0
        return self.backoff_seconds * (2 ** (attempt - 2))

    def extract(self, identity: str) -> ExtractedMetadata:
        """Extract metadata for ``identity``, retrying transient failures.

        Raises:
            CredentialsExpiredError: If the service rejects the credentials.
            ExtractionError: When the failure is permanent or retries are exhausted.
        """
        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                delay = self.delay_before(attempt)
                LOGGER.info(
                    "Retrying extraction for %s (attempt %d/%d) in %.1fs",
                    identity,
                    attempt,
                    self.max_attempts,
                    delay,
                )
                self._sleep(delay)
            try:
                return self.service.extract(identity)
            except ExtractionError as exc:
                if exc.error_class == "authentication":
                    raise CredentialsExpiredError(
                        f"Credentials expired while extracting {identity}: {exc}"
                    ) from exc
                if not exc.transient:
                    raise
                if attempt == self.max_attempts:
                    LOGGER.warning(
                        "Giving up on %s after %d attempt(s): %s", identity, attempt, exc
                    )
                    raise
                LOGGER.warning("Transient extraction failure for %s: %s", identity, exc)
        raise ExtractionError(f"No extraction attempt made for {identity}", identity=identity)


__all__ = ["RetryingExtractionClient"]
