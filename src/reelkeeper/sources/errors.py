"""Errors raised by external store and extraction collaborators."""

from __future__ import annotations

from typing import Literal

ErrorClass = Literal["transient", "permanent", "authentication"]


class SourceError(Exception):
    """Base exception for failures reported by external collaborators."""


class ExtractionError(SourceError):
    """Raised when metadata extraction fails for an item.

    Attributes:
        error_class: ``transient`` for capacity/overload failures worth retrying,
            ``authentication`` when credentials are no longer accepted, and
            ``permanent`` for everything else.
        identity: Identity of the item being extracted, when known.
    """

    def __init__(
        self,
        message: str,
        *,
        error_class: ErrorClass = "permanent",
        identity: str | None = None,
    ) -> None:
        super().__init__(message)
        self.error_class = error_class
        self.identity = identity

    @property
    def transient(self) -> bool:
        """Return True when the failure is worth retrying."""
        return self.error_class == "transient"


class CredentialsExpiredError(SourceError):
    """Raised when the store rejects credentials; the caller must re-authenticate."""


class ContentError(SourceError):
    """Raised when downloading or moving content fails."""


__all__ = [
    "ErrorClass",
    "SourceError",
    "ExtractionError",
    "CredentialsExpiredError",
    "ContentError",
]
