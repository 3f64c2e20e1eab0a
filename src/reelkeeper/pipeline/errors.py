"""Pipeline orchestration errors."""

from __future__ import annotations


class PipelineError(Exception):
    """Raised when a pipeline stage fails.

    Attributes:
        stage: Stage that was running when the failure occurred, if any.
    """

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        super().__init__(message)
        self.stage = stage


class InvalidTransitionError(PipelineError):
    """Raised when an operation is not allowed in the current pipeline status."""


class RunCancelledError(PipelineError):
    """Raised at a checkpoint once the run has been cancelled."""


__all__ = ["PipelineError", "InvalidTransitionError", "RunCancelledError"]
