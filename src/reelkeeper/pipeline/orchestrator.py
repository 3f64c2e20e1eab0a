"""Pipeline orchestrator: the run state machine."""

from __future__ import annotations

import logging
import shutil
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from reelkeeper.ingestion.models import (
    NO_CAPTURE_DATE_REASON,
    VerificationReport,
    VerificationResult,
    VerificationStatus,
)
from reelkeeper.ingestion.retry import RetryingExtractionClient
from reelkeeper.ingestion.verifier import TimestampVerifier
from reelkeeper.manifests import ManifestGenerator, export_local
from reelkeeper.manifests.models import ManifestFile
from reelkeeper.organization.executor import CommitExecutor, folder_ids
from reelkeeper.organization.models import BucketSummary, OperationPlan, ProcessedItem
from reelkeeper.organization.naming import sanitize_name
from reelkeeper.organization.planner import ChronologicalOrganizer
from reelkeeper.sources.base import ContentService, Notifier
from reelkeeper.sources.errors import ContentError, CredentialsExpiredError, ExtractionError
from reelkeeper.sources.models import ExtractedMetadata, MediaItem
from reelkeeper.state import (
    LedgerCommitSummary,
    LedgerRepository,
    OperationEvent,
    ProjectLedger,
    batch_status_message,
    bucket_counts,
    check_processed,
)

from .errors import InvalidTransitionError, PipelineError, RunCancelledError
from .models import Counters, Exclusion, PipelineState, PipelineStatus, RunOptions, RunResult
from .progress import STAGE_SLICES, TOTAL_STEPS, estimate_eta, stage_progress, step_index

LOGGER = logging.getLogger(__name__)

RUN_CANCELLED = "Run cancelled"

_S = PipelineStatus
_TRANSITIONS: dict[PipelineStatus, set[PipelineStatus]] = {
    _S.IDLE: {_S.VERIFYING, _S.DOWNLOADING, _S.ERROR},
    _S.VERIFYING: {_S.IDLE, _S.ERROR},
    _S.DOWNLOADING: {_S.EXTRACTING, _S.IDLE, _S.ERROR},
    _S.EXTRACTING: {_S.ORGANIZING, _S.IDLE, _S.ERROR},
    _S.ORGANIZING: {_S.RENAMING, _S.IDLE, _S.ERROR},
    _S.RENAMING: {_S.GENERATING, _S.IDLE, _S.ERROR},
    _S.GENERATING: {_S.PREVIEWING, _S.IDLE, _S.ERROR},
    _S.PREVIEWING: {_S.COMMITTING, _S.IDLE, _S.ERROR},
    _S.COMMITTING: {_S.COMPLETED, _S.ERROR},
    _S.COMPLETED: {_S.IDLE},
    _S.ERROR: {_S.IDLE, _S.ORGANIZING, _S.RENAMING, _S.GENERATING, _S.COMMITTING},
}
_RETRYABLE = (_S.ORGANIZING, _S.RENAMING, _S.GENERATING, _S.COMMITTING)
_PAUSABLE = {
    _S.VERIFYING,
    _S.DOWNLOADING,
    _S.EXTRACTING,
    _S.ORGANIZING,
    _S.RENAMING,
    _S.GENERATING,
    _S.COMMITTING,
}
_REJECTED = (VerificationStatus.UNVERIFIABLE, VerificationStatus.ERROR)
# Entries a targeted verification checks again; pending ones remain after an aborted batch.
_RECHECKED = (*_REJECTED, VerificationStatus.PENDING)


@dataclass(slots=True)
class _RunContext:
    """Working data of one run, retained until the next run or a discard."""

    run_id: str
    options: RunOptions
    started_monotonic: float
    scheduled: list[MediaItem]
    already_processed: list[str]
    remaining: int
    pending: list[MediaItem] = field(default_factory=list)
    downloaded: list[tuple[MediaItem, ExtractedMetadata]] = field(default_factory=list)
    candidates: list[ProcessedItem] = field(default_factory=list)
    ordered: list[ProcessedItem] = field(default_factory=list)
    buckets: list[BucketSummary] = field(default_factory=list)
    plan: Optional[OperationPlan] = None
    manifests: list[ManifestFile] = field(default_factory=list)
    exclusions: list[Exclusion] = field(default_factory=list)
    events: list[OperationEvent] = field(default_factory=list)
    batch_message: Optional[str] = None
    ledger_summary: Optional[LedgerCommitSummary] = None
    units_done: int = 0
    staging_dir: Optional[Path] = None


class PipelineOrchestrator:
    """Sequence verification, download, organization, preview and commit.

    A single run proceeds through its stages one at a time on the calling
    thread. ``pause``, ``resume`` and ``cancel`` may be called from any other
    thread; the run honors them at checkpoints between items and between
    download sub-batches. The project ledger is passed in explicitly, read
    before any work is scheduled and written only when a run commits.
    """

    def __init__(
        self,
        extractor: RetryingExtractionClient,
        *,
        content: Optional[ContentService] = None,
        ledger: Optional[ProjectLedger] = None,
        repository: Optional[LedgerRepository] = None,
        notifier: Optional[Notifier] = None,
        manifest_generator: Optional[ManifestGenerator] = None,
        options: Optional[RunOptions] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            extractor: Retrying client used for verification and inline extraction.
            content: Store used to download and place items; commit only
                updates the ledger when omitted.
            ledger: Ledger of the current project, if one exists.
            repository: Repository used to persist the ledger on commit.
            notifier: Best-effort recipient of run summaries.
            manifest_generator: Generator used in the generating stage.
            options: Default run options.
            sleep: Sleep function used between download sub-batches.
            clock: Monotonic clock used for ETA estimates.
        """
        self.extractor = extractor
        self.verifier = TimestampVerifier(extractor)
        self.content = content
        self.ledger = ledger
        self.repository = repository
        self.notifier = notifier
        self.manifest_generator = manifest_generator
        self.options = options or RunOptions()
        self._sleep = sleep
        self._clock = clock

        self._lock = threading.RLock()
        self._state = PipelineState(total_steps=TOTAL_STEPS)
        self._subscribers: list[Callable[[PipelineState], None]] = []
        self._resume_event = threading.Event()
        self._resume_event.set()
        self._cancel_event = threading.Event()
        self._active = False
        self._poll_interval = self.options.pause_poll_interval_seconds
        self._verification: Optional[VerificationReport] = None
        self._run: Optional[_RunContext] = None

    # ------------------------------------------------------------------ #
    # Public API                                                         #
    # ------------------------------------------------------------------ #

    @property
    def verification(self) -> Optional[VerificationReport]:
        """Return the stored verification report, if any."""
        return self._verification

    def get_state(self) -> PipelineState:
        with self._lock:
            return self._state

    def subscribe(self, callback: Callable[[PipelineState], None]) -> Callable[[], None]:
        """Register ``callback`` for every state change and return an unsubscribe function."""
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def verify(self, items: Iterable[MediaItem], *, targeted: bool = False) -> VerificationReport:
        """Verify capture timestamps and store the report for the next run.

        Args:
            items: Candidate items.
            targeted: Re-verify only items the stored report rejected.

        Returns:
            VerificationReport: The stored report.

        Raises:
            CredentialsExpiredError: If the store rejects the credentials.
            RunCancelledError: If the verification was cancelled.
            PipelineError: If targeted mode is requested without a stored report.
        """
        items = list(items)
        with self._lock:
            previous = self._verification
            if targeted and previous is None:
                raise PipelineError("No stored verification to re-verify", stage="verifying")
            self._prepare_for_new_work()
            self._begin()

        if targeted and previous is not None:
            known = previous.by_identity()
            total = sum(1 for result in previous.results if result.status in _RECHECKED) + sum(
                1 for item in items if item.identity not in known
            )
        else:
            total = len(items)
        done = 0

        def _on_result(result: VerificationResult) -> None:
            nonlocal done
            done += 1
            self._publish(
                current_item_label=result.item.name,
                progress_percent=stage_progress(_S.VERIFYING, done / total if total else 1.0),
            )

        try:
            self._transition(
                _S.VERIFYING,
                started_at=datetime.now(timezone.utc),
                run_id=None,
                counters=Counters(),
                exclusions=(),
                remaining_items=0,
                last_error=None,
                failed_stage=None,
                eta_seconds=None,
            )
            report = self.verifier.verify(
                items,
                previous=previous if targeted else None,
                targeted=targeted,
                checkpoint=self._checkpoint,
                on_result=_on_result,
            )
        except RunCancelledError:
            self._finish_cancel()
            raise
        except CredentialsExpiredError as exc:
            self._fail(_S.VERIFYING, f"Credentials expired: {exc}")
            raise
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            self._fail(_S.VERIFYING, message)
            raise PipelineError(f"verifying failed: {message}", stage=_S.VERIFYING.value) from exc
        finally:
            late_cancel = self._end()

        if late_cancel:
            self._finish_cancel()
            raise RunCancelledError(RUN_CANCELLED)
        self._verification = report
        self._transition(_S.IDLE, progress_percent=STAGE_SLICES[_S.VERIFYING][1])
        return report

    def start_run(
        self, items: Iterable[MediaItem], options: Optional[RunOptions] = None
    ) -> RunResult:
        """Run every stage up to the preview and return its result.

        Already-processed items are reported and never scheduled. At most
        ``max_items_per_run`` new items are scheduled; the rest are counted in
        ``remaining_items``.

        Args:
            items: Candidate items, typically from a listing service.
            options: Run options; the orchestrator defaults are used when omitted.

        Returns:
            RunResult: Result in ``previewing`` status.

        Raises:
            CredentialsExpiredError: If the store rejects the credentials.
            RunCancelledError: If the run was cancelled; partial results are discarded.
            PipelineError: If a stage failed; the orchestrator is left in ``error``.
        """
        options = options or self.options
        unique: dict[str, MediaItem] = {}
        for item in items:
            unique.setdefault(item.identity, item)

        with self._lock:
            self._prepare_for_new_work()
            self._begin()
        self._poll_interval = options.pause_poll_interval_seconds

        try:
            check = check_processed(self.ledger, list(unique))
            new_items = [unique[identity] for identity in check.new]
            scheduled = new_items[: options.max_items_per_run]
            remaining = len(new_items) - len(scheduled)
            if check.already_processed:
                LOGGER.info("Skipping %d already processed item(s)", len(check.already_processed))
            if remaining:
                LOGGER.info("%d eligible item(s) left for a later run", remaining)

            run_id = uuid.uuid4().hex[:12]
            ctx = _RunContext(
                run_id=run_id,
                options=options,
                started_monotonic=self._clock(),
                scheduled=scheduled,
                already_processed=check.already_processed,
                remaining=remaining,
                staging_dir=options.staging_dir / run_id if options.staging_dir else None,
            )
            self._run = ctx
            self._transition(
                _S.DOWNLOADING,
                run_id=run_id,
                started_at=datetime.now(timezone.utc),
                counters=Counters(),
                exclusions=(),
                remaining_items=remaining,
                last_error=None,
                failed_stage=None,
                eta_seconds=None,
            )
            LOGGER.info("Run %s scheduled %d item(s)", run_id, len(scheduled))

            for item in scheduled:
                stored = self._verification.get(item.identity) if self._verification else None
                if stored is not None and stored.status in _REJECTED:
                    self._exclude(
                        ctx, item, stored.error_detail or stored.status.value, _S.VERIFYING
                    )
                    ctx.units_done += 1
                else:
                    ctx.pending.append(item)

            self._run_stages(_S.DOWNLOADING)
        finally:
            self._settle_preview()
        return self._result()

    def pause(self) -> None:
        """Pause the active run at its next checkpoint.

        Raises:
            InvalidTransitionError: If no pausable stage is running.
        """
        with self._lock:
            if not self._active or self._state.status not in _PAUSABLE:
                raise InvalidTransitionError(
                    f"Cannot pause while {self._state.status.value}"
                )
            self._resume_event.clear()
        LOGGER.info("Pause requested")
        self._publish(paused=True)

    def resume(self) -> None:
        """Resume a paused run; a no-op when the run is not paused."""
        with self._lock:
            if self._resume_event.is_set():
                return
            self._resume_event.set()
        LOGGER.info("Resumed")
        self._publish(paused=False)

    def cancel(self) -> None:
        """Cancel the current run and return to ``idle``.

        An active run stops at its next checkpoint; a run waiting in
        ``previewing`` or ``error`` is discarded immediately.

        Raises:
            InvalidTransitionError: If the run is committing.
        """
        with self._lock:
            status = self._state.status
            if status is _S.COMMITTING:
                raise InvalidTransitionError("Cannot cancel while committing")
            if self._active:
                self._cancel_event.set()
                self._resume_event.set()
                LOGGER.info("Cancellation requested")
                return
            if status in (_S.IDLE, _S.COMPLETED):
                return
        self._finish_cancel()

    def confirm_commit(self) -> RunResult:
        """Commit the previewed run: place items, update and save the ledger, notify.

        Returns:
            RunResult: Result in ``completed`` status.

        Raises:
            InvalidTransitionError: If no preview is waiting.
            PipelineError: If the commit failed; ``retry_failed_stage`` retries it.
        """
        with self._lock:
            if self._active or self._state.status is not _S.PREVIEWING:
                raise InvalidTransitionError(
                    f"Cannot commit while {self._state.status.value}"
                )
            self._begin()
        try:
            self._commit_stage()
        finally:
            self._end()
        return self._result()

    def discard_preview(self) -> None:
        """Drop the previewed run without committing and return to ``idle``."""
        with self._lock:
            if self._active or self._state.status is not _S.PREVIEWING:
                raise InvalidTransitionError(
                    f"Cannot discard while {self._state.status.value}"
                )
        LOGGER.info("Preview discarded")
        self._discard()
        self._transition(_S.IDLE, last_error=None)

    def retry_failed_stage(self) -> RunResult:
        """Re-run the stage that failed, keeping every result computed before it.

        Returns:
            RunResult: Result in ``previewing`` (or ``completed`` for a commit retry).

        Raises:
            InvalidTransitionError: If the orchestrator is not in ``error``.
            PipelineError: If the failed stage precedes organization; those
                failures need a new run.
        """
        with self._lock:
            if self._active or self._state.status is not _S.ERROR:
                raise InvalidTransitionError("No failed stage to retry")
            failed = self._state.failed_stage
            if failed not in _RETRYABLE or self._run is None:
                stage = failed.value if failed else None
                raise PipelineError(
                    f"Stage {stage} cannot be retried; start a new run", stage=stage
                )
            self._begin()
        LOGGER.info("Retrying failed stage %s", failed.value)
        try:
            if failed is _S.COMMITTING:
                self._commit_stage()
            else:
                self._run_stages(failed)
        finally:
            self._settle_preview()
        return self._result()

    def export_local(self, path: Path) -> ManifestFile:
        """Export the run's processed items to a local JSON file.

        Raises:
            PipelineError: If the current run has no processed items.
        """
        ctx = self._run
        if ctx is None:
            raise PipelineError("No run to export")
        if ctx.plan is not None:
            items = ctx.plan.items
        else:
            items = sorted(ctx.candidates, key=lambda item: (item.captured_at, item.identity))
        if not items:
            raise PipelineError("No processed items to export")
        return export_local(items, path, run_id=ctx.run_id)

    # ------------------------------------------------------------------ #
    # Stages                                                             #
    # ------------------------------------------------------------------ #

    def _run_stages(self, first: PipelineStatus) -> None:
        stages: list[tuple[PipelineStatus, Callable[[_RunContext], None]]] = [
            (_S.DOWNLOADING, self._download_stage),
            (_S.EXTRACTING, self._extract_stage),
            (_S.ORGANIZING, self._organize_stage),
            (_S.RENAMING, self._rename_stage),
            (_S.GENERATING, self._generate_stage),
        ]
        ctx = self._require_run()
        start = [status for status, _ in stages].index(first)
        stage = first
        try:
            for stage, runner in stages[start:]:
                if self.get_state().status is not stage:
                    self._transition(stage)
                runner(ctx)
            self._checkpoint()
            self._transition(_S.PREVIEWING, eta_seconds=0.0)
        except RunCancelledError:
            self._finish_cancel()
            raise
        except CredentialsExpiredError as exc:
            self._fail(stage, f"Credentials expired: {exc}")
            raise
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            self._fail(stage, message)
            raise PipelineError(f"{stage.value} failed: {message}", stage=stage.value) from exc

    def _download_stage(self, ctx: _RunContext) -> None:
        total = len(ctx.scheduled)
        batch_size = ctx.options.download_batch_size
        for start in range(0, len(ctx.pending), batch_size):
            if start:
                self._checkpoint()
                self._sleep(ctx.options.inter_batch_delay_seconds)
            batch = ctx.pending[start : start + batch_size]
            LOGGER.debug("Download sub-batch %d (%d item(s))", start // batch_size + 1, len(batch))
            for item in batch:
                self._checkpoint()
                self._publish(current_item_label=item.name)
                self._download_one(ctx, item)
                ctx.units_done += 1
                self._publish(
                    progress_percent=stage_progress(_S.DOWNLOADING, ctx.units_done / total),
                    eta_seconds=estimate_eta(
                        ctx.units_done,
                        total - ctx.units_done,
                        self._clock() - ctx.started_monotonic,
                    ),
                )

    def _download_one(self, ctx: _RunContext, item: MediaItem) -> None:
        if self.content is not None:
            try:
                size = self._fetch(self.content, ctx, item)
            except ContentError as exc:
                self._exclude(ctx, item, f"download failed: {exc}", _S.DOWNLOADING)
                return
            self._publish(counters_delta={"downloaded": 1, "total_bytes": size})

        stored = self._verification.get(item.identity) if self._verification else None
        metadata: Optional[ExtractedMetadata] = None
        if stored is not None and stored.status is VerificationStatus.VERIFIED:
            metadata = stored.extraction_payload
        if metadata is None:
            try:
                metadata = self.extractor.extract(item.identity)
            except ExtractionError as exc:
                self._exclude(ctx, item, f"extraction failed: {exc}", _S.DOWNLOADING)
                return
        ctx.downloaded.append((item, metadata))

    def _fetch(self, content: ContentService, ctx: _RunContext, item: MediaItem) -> int:
        size = 0
        if ctx.staging_dir is None:
            for chunk in content.download(item.identity):
                size += len(chunk)
            return size

        target = ctx.staging_dir / sanitize_name(item.identity)
        try:
            ctx.staging_dir.mkdir(parents=True, exist_ok=True)
            with target.open("wb") as handle:
                for chunk in content.download(item.identity):
                    handle.write(chunk)
                    size += len(chunk)
        except OSError as exc:
            raise ContentError(f"Unable to stage {item.identity}: {exc}") from exc
        return size

    def _extract_stage(self, ctx: _RunContext) -> None:
        ctx.candidates = []
        total = len(ctx.downloaded) or 1
        for index, (item, metadata) in enumerate(ctx.downloaded, start=1):
            self._checkpoint()
            if metadata.captured_at is None:
                self._exclude(ctx, item, NO_CAPTURE_DATE_REASON, _S.EXTRACTING)
            else:
                ctx.candidates.append(ProcessedItem.from_extraction(item, metadata))
                self._publish(counters_delta={"processed": 1})
            self._publish(progress_percent=stage_progress(_S.EXTRACTING, index / total))

    def _organize_stage(self, ctx: _RunContext) -> None:
        self._checkpoint()
        ctx.ordered, ctx.buckets = self._organizer(ctx).bucket(ctx.candidates)
        self._publish(progress_percent=stage_progress(_S.ORGANIZING, 1.0))

    def _rename_stage(self, ctx: _RunContext) -> None:
        self._checkpoint()
        organizer = self._organizer(ctx)
        rename = ctx.options.rename_files
        named = organizer.assign_names(ctx.ordered, rename=rename)
        ctx.plan = organizer.build_plan(named, ctx.buckets, rename=rename)
        batch_number = self.ledger.total_runs_completed + 1 if self.ledger else 1
        ctx.batch_message = batch_status_message(self.ledger, batch_number, bucket_counts(named))
        self._publish(progress_percent=stage_progress(_S.RENAMING, 1.0))

    def _generate_stage(self, ctx: _RunContext) -> None:
        self._checkpoint()
        if self.manifest_generator is None or ctx.options.manifest_dir is None:
            LOGGER.debug("Manifest generation not configured for run %s", ctx.run_id)
            return
        plan = self._require_plan(ctx, _S.GENERATING)
        ctx.manifests = self.manifest_generator.generate(
            plan.items,
            ctx.options.manifest_dir,
            media_root=ctx.options.media_root,
        )
        self._publish(progress_percent=stage_progress(_S.GENERATING, 1.0))

    def _commit_stage(self) -> None:
        ctx = self._require_run()
        plan = self._require_plan(ctx, _S.COMMITTING)
        self._transition(_S.COMMITTING)
        total = len(plan.items) or 1
        placed = sum(1 for item in plan.items if item.uploaded_path is not None)

        def _on_moved(item: ProcessedItem) -> None:
            nonlocal placed
            placed += 1
            self._publish(
                counters_delta={"moved_bytes": item.size_bytes},
                current_item_label=item.final_name,
                progress_percent=stage_progress(_S.COMMITTING, placed / total),
            )
            self._checkpoint(cancellable=False)

        try:
            if self.content is not None:
                events = CommitExecutor(self.content).apply(
                    plan, run_id=ctx.run_id, on_moved=_on_moved
                )
                ctx.events.extend(event for event in events if event.operation == "move")
            else:
                LOGGER.info("No content service; run %s only updates the ledger", ctx.run_id)
            self._commit_ledger(ctx, plan)
        except CredentialsExpiredError as exc:
            self._fail(_S.COMMITTING, f"Credentials expired: {exc}")
            raise
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            self._fail(_S.COMMITTING, message)
            raise PipelineError(f"Commit failed: {message}", stage=_S.COMMITTING.value) from exc

        self._notify(ctx, plan)
        self._cleanup_staging(ctx)
        self._transition(_S.COMPLETED, eta_seconds=0.0)
        LOGGER.info("Run %s completed with %d item(s)", ctx.run_id, len(plan.items))

    def _commit_ledger(self, ctx: _RunContext, plan: OperationPlan) -> None:
        if ctx.ledger_summary is None:
            if self.ledger is None:
                if self.repository is None:
                    LOGGER.warning(
                        "No project ledger configured; run %s will not be remembered", ctx.run_id
                    )
                    return
                self.ledger = self.repository.create(
                    ctx.options.project_name, ctx.options.source_scope
                )
            ctx.ledger_summary = self.ledger.commit(
                plan.items, ctx.run_id, folder_ids=folder_ids(plan)
            )
        if self.repository is not None and self.ledger is not None:
            self.repository.save(self.ledger)
            if ctx.events:
                self.repository.append_history(self.ledger.id, ctx.events)
                ctx.events = []

    def _notify(self, ctx: _RunContext, plan: OperationPlan) -> None:
        recipient = ctx.options.notify_recipient
        if self.notifier is None or not recipient:
            return
        summary = (
            f"Run {ctx.run_id}: {len(plan.items)} item(s) organized into "
            f"{len(plan.buckets)} folder(s); {len(ctx.exclusions)} excluded"
        )
        try:
            self.notifier.notify(recipient, summary)
        except Exception as exc:  # notification is best effort
            LOGGER.warning("Notification to %s failed: %s", recipient, exc)

    # ------------------------------------------------------------------ #
    # Helpers                                                            #
    # ------------------------------------------------------------------ #

    def _organizer(self, ctx: _RunContext) -> ChronologicalOrganizer:
        return ChronologicalOrganizer(ctx.options.bucket_strategy, ctx.options.flat_folder_name)

    def _checkpoint(self, *, cancellable: bool = True) -> None:
        """Block while paused; raise ``RunCancelledError`` once cancelled."""
        if cancellable and self._cancel_event.is_set():
            raise RunCancelledError(RUN_CANCELLED)
        while not self._resume_event.wait(self._poll_interval):
            if cancellable and self._cancel_event.is_set():
                raise RunCancelledError(RUN_CANCELLED)
        if cancellable and self._cancel_event.is_set():
            raise RunCancelledError(RUN_CANCELLED)

    def _exclude(
        self, ctx: _RunContext, item: MediaItem, reason: str, stage: PipelineStatus
    ) -> None:
        exclusion = Exclusion(
            identity=item.identity, name=item.name, reason=reason, stage=stage.value
        )
        ctx.exclusions.append(exclusion)
        LOGGER.warning("Excluding %s during %s: %s", item.identity, stage.value, reason)
        self._publish(exclusions=tuple(ctx.exclusions))

    def _prepare_for_new_work(self) -> None:
        if self._active:
            raise InvalidTransitionError("A run is already in progress")
        status = self._state.status
        if status in (_S.COMPLETED, _S.ERROR):
            self._discard()
            self._transition(_S.IDLE)
        elif status is not _S.IDLE:
            raise InvalidTransitionError(f"Cannot start new work while {status.value}")

    def _begin(self) -> None:
        self._active = True
        self._cancel_event.clear()
        self._resume_event.set()

    def _end(self) -> bool:
        """Mark the work finished; return True if a cancel arrived that no checkpoint saw."""
        with self._lock:
            self._active = False
            late_cancel = self._cancel_event.is_set()
            self._cancel_event.clear()
            self._resume_event.set()
            paused = self._state.paused
        if paused:
            self._publish(paused=False)
        return late_cancel

    def _settle_preview(self) -> None:
        """End the run, applying a cancel that arrived after its last checkpoint."""
        late_cancel = self._end()
        if late_cancel and self.get_state().status is _S.PREVIEWING:
            self._finish_cancel()
            raise RunCancelledError(RUN_CANCELLED)

    def _require_run(self) -> _RunContext:
        ctx = self._run
        if ctx is None:
            raise PipelineError("No run in progress")
        return ctx

    def _require_plan(self, ctx: _RunContext, stage: PipelineStatus) -> OperationPlan:
        if ctx.plan is None:
            raise PipelineError(f"No operation plan for run {ctx.run_id}", stage=stage.value)
        return ctx.plan

    def _fail(self, stage: PipelineStatus, message: str) -> None:
        LOGGER.error("Stage %s failed: %s", stage.value, message)
        self._transition(
            _S.ERROR,
            last_error=message,
            failed_stage=stage,
            paused=False,
            eta_seconds=None,
        )

    def _finish_cancel(self) -> None:
        LOGGER.info(RUN_CANCELLED)
        self._discard()
        self._transition(
            _S.IDLE,
            last_error=RUN_CANCELLED,
            counters=Counters(),
            exclusions=(),
            remaining_items=0,
            run_id=None,
            eta_seconds=None,
        )

    def _discard(self) -> None:
        ctx = self._run
        self._run = None
        if ctx is not None:
            self._cleanup_staging(ctx)

    def _cleanup_staging(self, ctx: _RunContext) -> None:
        if ctx.staging_dir is not None and ctx.staging_dir.exists():
            shutil.rmtree(ctx.staging_dir, ignore_errors=True)

    def _result(self) -> RunResult:
        ctx = self._run
        state = self.get_state()
        if ctx is None:
            raise PipelineError("No run result available")
        plan = ctx.plan
        return RunResult(
            run_id=ctx.run_id,
            status=state.status,
            items=list(plan.items) if plan is not None else list(ctx.candidates),
            buckets=list(ctx.buckets),
            exclusions=list(ctx.exclusions),
            already_processed=list(ctx.already_processed),
            remaining_items=ctx.remaining,
            manifests=list(ctx.manifests),
            notes=list(plan.notes) if plan is not None else [],
            batch_message=ctx.batch_message,
            ledger_summary=ctx.ledger_summary,
        )

    def _transition(self, status: PipelineStatus, **changes: Any) -> PipelineState:
        with self._lock:
            current = self._state.status
            if status not in _TRANSITIONS[current]:
                raise InvalidTransitionError(
                    f"Cannot move from {current.value} to {status.value}"
                )
            update: dict[str, Any] = {"status": status, "current_item_label": None}
            if status is _S.IDLE:
                update.update(step_index=0, progress_percent=0.0, paused=False)
            elif status is not _S.ERROR:
                update.update(
                    step_index=step_index(status), progress_percent=stage_progress(status)
                )
                if current is _S.ERROR:
                    update.update(last_error=None, failed_stage=None)
            update.update(changes)
            self._state = self._state.model_copy(update=update)
            state = self._state
            subscribers = list(self._subscribers)
        LOGGER.info("Pipeline %s -> %s", current.value, status.value)
        self._notify_subscribers(state, subscribers)
        return state

    def _publish(
        self, counters_delta: Optional[dict[str, int]] = None, **changes: Any
    ) -> PipelineState:
        with self._lock:
            if counters_delta:
                counters = self._state.counters
                changes["counters"] = counters.model_copy(
                    update={
                        key: getattr(counters, key) + value
                        for key, value in counters_delta.items()
                    }
                )
            self._state = self._state.model_copy(update=changes)
            state = self._state
            subscribers = list(self._subscribers)
        self._notify_subscribers(state, subscribers)
        return state

    def _notify_subscribers(
        self, state: PipelineState, subscribers: list[Callable[[PipelineState], None]]
    ) -> None:
        for callback in subscribers:
            try:
                callback(state)
            except Exception:
                LOGGER.exception("Pipeline state subscriber failed")


__all__ = ["PipelineOrchestrator", "RUN_CANCELLED"]
