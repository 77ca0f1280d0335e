from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from typing import Any

from ..config.loader import TransferSettings
from ..destination.batch_insert import BatchMetrics
from ..destination.column_mapper import validate_mappings
from ..logging.events import (
    CompositeEventSink,
    EventSink,
    JobLogSink,
    LoggingEventSink,
    NullEventSink,
    TransferEvent,
)
from ..models.job import (
    ColumnMapping,
    DestinationRef,
    DryRunSummary,
    ErrorType,
    JobStatus,
    SourceRef,
    TransferError,
    TransferJob,
)
from .capabilities import DestinationWriter, ImageSource, JobStore, SourceReader
from .orchestrator import Capabilities, NextAction, RunState, run_steps, step

"""Transfer service: the surface the application layer calls.

create_job -> execute_job (runs the step machine to a terminal state)
get_job polls the persisted record; cancel_job requests cooperative
cancellation that takes effect at the next batch boundary.
"""

__all__ = [
    "JobNotFoundError",
    "JobStateError",
    "SourcePreview",
    "TransferService",
]

logger = logging.getLogger(__name__)

ITEMS_PER_MINUTE = 100
PREVIEW_SAMPLE_ROWS = 10


class JobNotFoundError(Exception):
    pass


class JobStateError(Exception):
    """Operation not allowed in the job's current status."""
    pass


@dataclass(frozen=True)
class SourcePreview:
    header_row_index: int
    headers: list[str]
    sample_rows: list[list[Any]]
    total_rows: int
    total_images: int
    inaccessible_images: int  # extrapolated from the validated sample
    estimated_time: int  # minutes


def _estimated_minutes(rows: int, images: int) -> int:
    return math.ceil((rows + images) / ITEMS_PER_MINUTE)


class TransferService:
    def __init__(
        self,
        store: JobStore,
        source: SourceReader,
        images: ImageSource,
        destination: DestinationWriter,
        *,
        settings: TransferSettings | None = None,
        events: EventSink | None = None,
        sleep: Callable[[float], None] = time.sleep,
        on_batch_metrics: Callable[[BatchMetrics], None] | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or TransferSettings()
        self.events = events or CompositeEventSink([LoggingEventSink(), JobLogSink(store)])
        self.caps = Capabilities(
            source=source,
            images=images,
            destination=destination,
            events=self.events,
            settings=self.settings,
            sleep=sleep,
            on_batch_metrics=on_batch_metrics,
        )

    def _emit(self, job_id: str, level: str, kind: str, message: str, **details: Any) -> None:
        self.events.emit(TransferEvent(job_id, level, kind, message, details or None))

    def _require(self, job_id: str) -> TransferJob:
        job = self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(f"transfer job not found: {job_id}")
        return job

    # ------------------------------------------------------------------
    # Exposed operations
    # ------------------------------------------------------------------
    def create_job(
        self,
        source: SourceRef,
        destination: DestinationRef,
        column_mappings: Sequence[ColumnMapping] = (),
        dry_run: bool = False,
        header_row_index: int | None = None,
        selected_columns: Sequence[int] | None = None,
    ) -> str:
        if not source.tabs:
            raise ValueError("at least one source tab is required")
        if destination.sheet_id is None and not destination.new_sheet_name:
            raise ValueError("destination needs a sheet_id or a new_sheet_name")
        if header_row_index is not None and header_row_index < 0:
            raise ValueError(f"header_row_index must be >= 0 (got {header_row_index})")
        validate_mappings(column_mappings)

        job = TransferJob.new(
            source,
            destination,
            list(column_mappings),
            dry_run=dry_run,
            header_row_index=header_row_index,
            selected_columns=list(selected_columns) if selected_columns is not None else None,
        )
        self.store.create(job)
        self._emit(
            job.id, "info", "job_created",
            f"{'dry run' if dry_run else 'transfer'} job created for {len(source.tabs)} tab(s)",
            tabs=list(source.tabs), dry_run=dry_run,
        )
        return job.id

    def get_job(self, job_id: str) -> TransferJob:
        return self._require(job_id)

    def cancel_job(self, job_id: str) -> TransferJob:
        job = self._require(job_id)
        if job.status.is_terminal:
            return job
        self.store.update_status(job_id, JobStatus.CANCELLED)
        self._emit(job_id, "warn", "cancel_requested", "cancellation requested")
        return self._require(job_id)

    def execute_job(self, job_id: str) -> TransferJob:
        """Run the job to a terminal state and return the persisted record.

        Raises:
            JobNotFoundError: unknown id.
            JobStateError: the job is not pending.
        """
        job = self._require(job_id)
        if job.status is not JobStatus.PENDING:
            raise JobStateError(f"job {job_id} is {job.status.value}; only pending jobs can be executed")

        self.store.update_status(job_id, JobStatus.RUNNING)
        job = replace(job, status=JobStatus.RUNNING)
        self._emit(
            job_id, "info", "transfer_started",
            f"{'dry run' if job.dry_run else 'transfer'} started",
            dry_run=job.dry_run,
        )

        state = RunState.initial(job)
        try:
            final = run_steps(state, self.caps, self._checkpoint, lambda: self._is_cancelled(job_id))
        except Exception as e:
            return self._fail(job_id, e)

        if final.job.status is JobStatus.CANCELLED:
            self._persist_progress(job_id, final.job.progress)
        else:
            self.store.save(final.job)
            self.store.update_status(job_id, final.job.status, final.job.progress)
        return self._require(job_id)

    def get_dry_run_summary(self, job_id: str) -> DryRunSummary | None:
        job = self._require(job_id)
        if not job.dry_run:
            return None
        p = job.progress
        return DryRunSummary(
            total_rows=p.total_rows,
            total_images=p.total_images,
            inaccessible_images=job.inaccessible_images_estimate or 0,
            estimated_time=_estimated_minutes(p.total_rows, p.total_images),
            warnings=[e.message for e in p.errors] + [w.message for w in p.warnings],
            column_mappings=list(job.column_mappings),
        )

    def preview_source(self, source: SourceRef, header_row_index: int | None = None) -> SourcePreview:
        """Read the source without creating a job: headers, sample rows, image access."""
        probe = TransferJob.new(source, DestinationRef(sheet_id=None), [], dry_run=True,
                                header_row_index=header_row_index)
        caps = replace(self.caps, events=NullEventSink())
        state = RunState.initial(probe)
        while state.next_action in (NextAction.RESOLVE_HEADER, NextAction.EXTRACT):
            state, _ = step(state, caps)

        rows = [row for batch in state.batches for row in batch.rows]
        images = [c for row in rows for c in row.cells if c.is_image]
        sample = images[: self.settings.preview_image_sample_size]
        inaccessible = 0
        for cell in sample:
            result = self.caps.images.validate_image_access(cell.image_ref.url, cell.image_ref.source_id)
            if not result.accessible:
                inaccessible += 1
        if sample and len(images) > len(sample):
            inaccessible = round(inaccessible / len(sample) * len(images))

        return SourcePreview(
            header_row_index=state.header_row_index or 0,
            headers=list(state.headers or ()),
            sample_rows=[[c.value for c in row.cells] for row in rows[:PREVIEW_SAMPLE_ROWS]],
            total_rows=len(rows),
            total_images=len(images),
            inaccessible_images=inaccessible,
            estimated_time=_estimated_minutes(len(rows), len(images)),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _is_cancelled(self, job_id: str) -> bool:
        current = self.store.get(job_id)
        return current is not None and current.status is JobStatus.CANCELLED

    def _persist_progress(self, job_id: str, progress: Any) -> None:
        try:
            self.store.update_progress(job_id, progress)
        except Exception as e:
            logger.warning(f"progress update failed for job {job_id} (continuing): {e}")

    def _checkpoint(self, state: RunState) -> None:
        if state.next_action in (NextAction.RECONCILE, NextAction.PROCESS_BATCH,
                                 NextAction.VALIDATE_IMAGES, NextAction.COMPLETE):
            if state.job.source_info is not None:
                self.store.save(state.job)
        self._persist_progress(state.job.id, state.job.progress)

    def _fail(self, job_id: str, exc: Exception) -> TransferJob:
        logger.debug("transfer failed", exc_info=True)
        current = self._require(job_id)
        progress = current.progress.with_errors(
            TransferError(
                type=ErrorType.GENERAL_ERROR,
                message=f"Transfer failed: {exc}",
                details={"exception": type(exc).__name__},
            )
        )
        self.store.update_status(job_id, JobStatus.FAILED, progress)
        self._emit(job_id, "error", "transfer_failed", f"transfer failed: {exc}",
                   exception=type(exc).__name__)
        return self._require(job_id)
