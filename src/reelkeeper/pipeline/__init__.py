"""Pipeline orchestration: state machine, progress and run results."""

from .errors import InvalidTransitionError, PipelineError, RunCancelledError
from .models import Counters, Exclusion, PipelineState, PipelineStatus, RunOptions, RunResult
from .orchestrator import RUN_CANCELLED, PipelineOrchestrator

__all__ = [
    "Counters",
    "Exclusion",
    "InvalidTransitionError",
    "PipelineError",
    "PipelineOrchestrator",
    "PipelineState",
    "PipelineStatus",
    "RUN_CANCELLED",
    "RunCancelledError",
    "RunOptions",
    "RunResult",
]
