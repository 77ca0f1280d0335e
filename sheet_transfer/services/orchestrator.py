from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ..config.loader import TransferSettings
from ..destination.batch_insert import (
    BatchMetrics,
    RowFailure,
    chunk_rows,
    insert_batch,
    insert_row_with_retry,
)
from ..destination.column_mapper import (
    generate_mappings,
    new_sheet_columns,
    reconcile_mappings,
    select_columns,
    verify_mappings_exist,
)
from ..logging.events import EventSink, NullEventSink, TransferEvent
from ..models.cells import SourceCell
from ..models.job import (
    ColumnMapping,
    ErrorType,
    JobStatus,
    SourceInfo,
    TransferError,
    TransferJob,
    TransferWarning,
)
from ..models.row_data import ConvertedRow
from ..source.classifier import classify_row
from ..source.header import clean_header_row, detect_header_row, generic_label
from .capabilities import (
    AccessRevokedError,
    DestinationWriter,
    ImageSource,
    SourceReader,
    SourceUnavailableError,
    TokenExpiredError,
)
from .conversion import convert_row
from .images import ImageFallbackPipeline

"""Transfer orchestration as an explicit step machine.

``step(state, caps)`` performs exactly one action and returns the new state
together with the next action; ``run_steps`` drives it until DONE, calling a
checkpoint after every step and checking for cancellation before each batch
and before completion.

Action order:
    RESOLVE_HEADER -> EXTRACT -> RECONCILE -> PROCESS_BATCH ... -> COMPLETE -> DONE
    (dry run: RECONCILE -> VALIDATE_IMAGES -> COMPLETE)

When the job names a new destination sheet, RECONCILE first creates it with
one column per mapping (a dry run only reports the planned columns).

Fatal conditions (expired token, revoked access, schema mismatch, no readable
tab) propagate as exceptions; the caller marks the job failed.
"""

__all__ = [
    "Capabilities",
    "ExtractedRow",
    "NextAction",
    "PlannedBatch",
    "RunState",
    "cancel",
    "run_steps",
    "step",
]

logger = logging.getLogger(__name__)

MAPPING_SAMPLE_ROWS = 20


class NextAction(Enum):
    RESOLVE_HEADER = "resolve_header"
    EXTRACT = "extract"
    RECONCILE = "reconcile"
    PROCESS_BATCH = "process_batch"
    VALIDATE_IMAGES = "validate_images"
    COMPLETE = "complete"
    DONE = "done"


@dataclass(frozen=True)
class Capabilities:
    source: SourceReader
    images: ImageSource
    destination: DestinationWriter
    events: EventSink = field(default_factory=NullEventSink)
    settings: TransferSettings = field(default_factory=TransferSettings)
    sleep: Callable[[float], None] = time.sleep
    on_batch_metrics: Callable[[BatchMetrics], None] | None = None


@dataclass(frozen=True)
class ExtractedRow:
    correlation_token: str
    tab: str
    source_row: int  # 1-based row number in the source tab
    cells: tuple[SourceCell, ...]


@dataclass(frozen=True)
class PlannedBatch:
    number: int  # 1-based across all tabs
    tab: str
    rows: tuple[ExtractedRow, ...]


@dataclass(frozen=True)
class RunState:
    job: TransferJob
    next_action: NextAction = NextAction.RESOLVE_HEADER
    header_row_index: int | None = None
    headers: tuple[str, ...] | None = None
    mappings: tuple[ColumnMapping, ...] = ()
    batches: tuple[PlannedBatch, ...] = ()
    next_batch: int = 0

    @staticmethod
    def initial(job: TransferJob) -> RunState:
        return RunState(job=job)

    @property
    def finished(self) -> bool:
        return self.next_action is NextAction.DONE


def _emit(caps: Capabilities, state: RunState, level: str, kind: str, message: str, **details: Any) -> None:
    caps.events.emit(TransferEvent(state.job.id, level, kind, message, details or None))


def _with_progress(state: RunState, progress: Any, **changes: Any) -> RunState:
    return replace(state, job=replace(state.job, progress=progress), **changes)


def _general_error(message: str, **details: Any) -> TransferError:
    return TransferError(type=ErrorType.GENERAL_ERROR, message=message, details=details or None)


def _image_cells(state: RunState) -> list[SourceCell]:
    indexes = [m.source_column_index for m in state.mappings]
    cells: list[SourceCell] = []
    for batch in state.batches:
        for row in batch.rows:
            for index in indexes:
                if index < len(row.cells) and row.cells[index].is_image:
                    cells.append(row.cells[index])
    return cells


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

def _resolve_header(state: RunState, caps: Capabilities) -> RunState:
    job = state.job
    if job.header_row_index is not None:
        _emit(
            caps, state, "info", "header_detected",
            f"using header row {job.header_row_index + 1} (override)",
            row_index=job.header_row_index, source="override",
        )
        return replace(state, header_row_index=job.header_row_index, next_action=NextAction.EXTRACT)

    first_tab = job.source.tabs[0]
    try:
        candidates = caps.source.fetch_header_candidates(
            job.source.spreadsheet_id, first_tab, caps.settings.header_scan_rows
        )
    except (TokenExpiredError, AccessRevokedError, SourceUnavailableError):
        raise
    except Exception as e:
        raise SourceUnavailableError(f"could not read header rows of tab '{first_tab}': {e}") from e

    detection = detect_header_row(candidates, caps.settings.header_scan_rows)
    _emit(
        caps, state, "info", "header_detected",
        f"detected header row {detection.row_index + 1} in '{first_tab}' (score {detection.score})",
        row_index=detection.row_index, score=detection.score, headers=list(detection.headers),
        source="detected",
    )
    return replace(
        state,
        header_row_index=detection.row_index,
        headers=tuple(detection.headers) if detection.headers else None,
        next_action=NextAction.EXTRACT,
    )


def _extract(state: RunState, caps: Capabilities) -> RunState:
    job = state.job
    header_row_index = state.header_row_index or 0
    headers = list(state.headers) if state.headers is not None else None
    errors: list[TransferError] = []
    grids: list[tuple[str, list[list[Any]]]] = []

    for tab in job.source.tabs:
        try:
            grid = caps.source.fetch_tab_data(job.source.spreadsheet_id, tab, header_row_index)
        except (TokenExpiredError, AccessRevokedError):
            raise
        except Exception as e:
            message = f"tab '{tab}' could not be read: {e}"
            errors.append(_general_error(message, tab=tab))
            _emit(caps, state, "error", "tab_read_failed", message, tab=tab)
            continue
        grids.append((tab, grid))
        if headers is None:
            headers = clean_header_row([getattr(c, "value", c) for c in (grid[0] if grid else [])])

    if not grids:
        raise SourceUnavailableError(
            f"none of the {len(job.source.tabs)} source tab(s) could be read"
        )

    headers = headers or []
    width = max([len(headers)] + [len(r) for _, g in grids for r in g[1:]])
    headers = headers + [generic_label(i) for i in range(len(headers), width)]

    extracted: dict[str, list[ExtractedRow]] = {}
    for tab, grid in grids:
        rows: list[ExtractedRow] = []
        for offset, raw_row in enumerate(grid[1:], start=1):
            cells = classify_row(raw_row, width)
            if all(c.is_empty for c in cells):
                continue
            source_row = header_row_index + offset + 1
            rows.append(
                ExtractedRow(
                    correlation_token=f"{tab}#{source_row}",
                    tab=tab,
                    source_row=source_row,
                    cells=tuple(cells),
                )
            )
        extracted[tab] = rows

    warnings: list[TransferWarning] = []
    if job.column_mappings:
        mappings = list(job.column_mappings)
    else:
        sample = [r.cells for rows in extracted.values() for r in rows][:MAPPING_SAMPLE_ROWS]
        mappings, warnings = generate_mappings(headers, sample)
    mappings = select_columns(mappings, job.selected_columns)

    batches: list[PlannedBatch] = []
    for tab, rows in extracted.items():
        for chunk in chunk_rows(rows, caps.settings.batch_size):
            batches.append(PlannedBatch(number=len(batches) + 1, tab=tab, rows=tuple(chunk)))

    new_state = replace(
        state,
        headers=tuple(headers),
        mappings=tuple(mappings),
        batches=tuple(batches),
        next_batch=0,
    )
    total_rows = sum(len(rows) for rows in extracted.values())
    total_images = len(_image_cells(new_state))

    progress = (
        job.progress.with_totals(
            total_rows=total_rows, total_images=total_images, total_batches=len(batches)
        )
        .with_errors(*errors)
        .with_warnings(*warnings)
    )
    source_info = SourceInfo(
        tab_names=tuple(tab for tab, _ in grids),
        header_row_index=header_row_index,
        headers=tuple(headers),
        total_data_rows=total_rows,
        total_images=total_images,
    )
    new_job = replace(
        job,
        progress=progress,
        source_info=source_info,
        column_mappings=tuple(mappings),
        header_row_index=header_row_index,
    )
    _emit(
        caps, state, "info", "extraction_completed",
        f"extracted {total_rows} rows and {total_images} images from {len(grids)} tab(s)",
        total_rows=total_rows, total_images=total_images, total_batches=len(batches),
        tabs=[tab for tab, _ in grids],
    )
    return replace(new_state, job=new_job, next_action=NextAction.RECONCILE)


def _create_destination(state: RunState, caps: Capabilities) -> RunState:
    job = state.job
    name = job.destination.new_sheet_name
    columns = new_sheet_columns(state.mappings, state.headers or ())
    sheet_id = caps.destination.create_sheet(name, columns)
    _emit(
        caps, state, "info", "destination_created",
        f"created destination sheet '{name}' with {len(columns)} columns",
        sheet_id=sheet_id, columns=[c.title for c in columns],
    )
    return replace(state, job=replace(job, destination=replace(job.destination, sheet_id=sheet_id)))


def _reconcile(state: RunState, caps: Capabilities) -> RunState:
    if state.job.destination.needs_creation:
        if state.job.dry_run:
            columns = new_sheet_columns(state.mappings, state.headers or ())
            _emit(
                caps, state, "info", "destination_planned",
                f"dry run: would create sheet '{state.job.destination.new_sheet_name}' "
                f"with {len(columns)} columns",
                columns=[c.title for c in columns],
            )
            return replace(state, next_action=NextAction.VALIDATE_IMAGES)
        state = _create_destination(state, caps)
    job = state.job
    schema = caps.destination.fetch_schema(job.destination.sheet_id)
    mappings = reconcile_mappings(state.mappings, schema)
    _emit(
        caps, state, "info", "mappings_reconciled",
        f"{len(mappings)} column mappings reconciled against {len(schema)} destination columns",
        mapped=len(mappings), destination_columns=len(schema),
    )
    if job.dry_run:
        next_action = NextAction.VALIDATE_IMAGES
    elif state.batches:
        next_action = NextAction.PROCESS_BATCH
    else:
        next_action = NextAction.COMPLETE
    return replace(
        state,
        job=replace(job, column_mappings=tuple(mappings)),
        mappings=tuple(mappings),
        next_action=next_action,
    )


def _insert_with_row_fallback(
    caps: Capabilities, sheet_id: Any, converted: list[ConvertedRow]
) -> tuple[dict[str, Any], list[RowFailure]]:
    result = insert_batch(caps.destination, sheet_id, converted, caps.on_batch_metrics)
    row_ids = dict(result.row_ids)
    failures = list(result.failures)
    if not (failures and result.inserted == 0 and caps.settings.row_retry_on_batch_failure):
        return row_ids, failures

    by_token = {r.correlation_token: r for r in converted}
    remaining: list[RowFailure] = []
    for failure in failures:
        retry = insert_row_with_retry(
            caps.destination,
            sheet_id,
            by_token[failure.correlation_token],
            max_retries=caps.settings.row_retry_attempts,
            base_delay=caps.settings.retry_base_delay_seconds,
            sleep=caps.sleep,
        )
        if retry.success and retry.row_id is not None:
            row_ids[failure.correlation_token] = retry.row_id
        else:
            remaining.append(
                RowFailure(failure.correlation_token, failure.source_row, retry.error or failure.message)
            )
    return row_ids, remaining


def _process_batch(state: RunState, caps: Capabilities) -> RunState:
    job = state.job
    sheet_id = job.destination.sheet_id
    batch = state.batches[state.next_batch]

    if caps.settings.revalidate_schema_each_batch:
        verify_mappings_exist(state.mappings, caps.destination.fetch_schema(sheet_id))

    converted = [
        convert_row(
            list(row.cells),
            state.mappings,
            correlation_token=row.correlation_token,
            source_row=row.source_row,
            batch_local_row_index=position,
            tab=row.tab,
        )
        for position, row in enumerate(batch.rows)
    ]

    started = time.monotonic()
    row_ids, failures = _insert_with_row_fallback(caps, sheet_id, converted)
    insert_seconds = time.monotonic() - started

    errors = [
        TransferError(
            type=ErrorType.ROW_INSERT_FAILED,
            message=f"row {f.source_row} in '{batch.tab}' was not inserted: {f.message}",
            row=f.source_row,
            details={"tab": batch.tab},
        )
        for f in failures
    ]
    cell_warnings = [
        replace(w, message=f"row {row.source_row} in '{batch.tab}': {w.message}")
        for row in converted
        for w in row.warnings
    ]
    level = "info" if not failures else "error"
    _emit(
        caps, state, level, "batch_inserted",
        f"batch {batch.number}/{len(state.batches)}: {len(row_ids)} inserted, {len(failures)} failed",
        batch=batch.number, total_batches=len(state.batches), tab=batch.tab,
        inserted=len(row_ids), failed=len(failures), warnings=len(cell_warnings),
        elapsed_seconds=round(insert_seconds, 3),
    )

    entries = [entry for row in converted for entry in row.images]
    pipeline = ImageFallbackPipeline(caps.images, caps.destination, caps.events, job.id)
    outcome = pipeline.process(sheet_id, entries, row_ids)
    if entries:
        _emit(
            caps, state, "info", "images_processed",
            f"batch {batch.number}: {outcome.successful} images attached, "
            f"{outcome.fallback} linked, {outcome.failed} failed",
            batch=batch.number, successful=outcome.successful,
            fallback=outcome.fallback, failed=outcome.failed,
        )

    progress = (
        job.progress.advanced(
            processed_rows=len(row_ids),
            processed_images=outcome.queued,
            successful_images=outcome.successful,
            fallback_images=outcome.fallback,
            failed_images=outcome.failed,
            current_batch=1,
        )
        .with_errors(*errors, *outcome.errors)
        .with_warnings(*cell_warnings, *outcome.warnings)
    )
    next_batch = state.next_batch + 1
    next_action = NextAction.PROCESS_BATCH if next_batch < len(state.batches) else NextAction.COMPLETE
    return _with_progress(state, progress, next_batch=next_batch, next_action=next_action)


def _validate_images(state: RunState, caps: Capabilities) -> RunState:
    """Dry run: check accessibility of a sample and extrapolate."""
    job = state.job
    cells = _image_cells(state)
    sample = cells[: caps.settings.dry_run_image_sample_size]
    inaccessible: list[TransferError] = []
    for cell in sample:
        ref = cell.image_ref
        try:
            result = caps.images.validate_image_access(ref.url, ref.source_id)
            accessible, error = result.accessible, result.error
        except (TokenExpiredError, AccessRevokedError):
            raise
        except Exception as e:
            accessible, error = False, str(e)
        if not accessible:
            inaccessible.append(
                TransferError(
                    type=ErrorType.IMAGE_ACCESS_DENIED,
                    message=f"Image not accessible: {error}",
                    details={"url": ref.url},
                )
            )

    total_images = len(cells)
    if sample and total_images > len(sample):
        estimate = round(len(inaccessible) / len(sample) * total_images)
    else:
        estimate = len(inaccessible)

    progress = job.progress.advanced(
        processed_rows=max(job.progress.total_rows - job.progress.processed_rows, 0),
        processed_images=max(job.progress.total_images - job.progress.processed_images, 0),
    ).with_errors(*inaccessible)
    _emit(
        caps, state, "info", "images_validated",
        f"dry run: {len(inaccessible)}/{len(sample)} sampled images inaccessible, "
        f"estimated {estimate} of {total_images}",
        sampled=len(sample), inaccessible=len(inaccessible), estimate=estimate,
    )
    return replace(
        state,
        job=replace(job, progress=progress, inaccessible_images_estimate=estimate),
        next_action=NextAction.COMPLETE,
    )


def _complete(state: RunState, caps: Capabilities) -> RunState:
    job = state.job
    p = job.progress
    _emit(
        caps, state, "success", "transfer_completed",
        f"{'dry run' if job.dry_run else 'transfer'} completed: {p.processed_rows}/{p.total_rows} rows, "
        f"{p.successful_images} images, {p.fallback_images} links, {len(p.errors)} errors",
        processed_rows=p.processed_rows, errors=len(p.errors), warnings=len(p.warnings),
    )
    return replace(
        state,
        job=replace(job, status=JobStatus.COMPLETED, completed_at=datetime.now(UTC)),
        next_action=NextAction.DONE,
    )


_ACTIONS: dict[NextAction, Callable[[RunState, Capabilities], RunState]] = {
    NextAction.RESOLVE_HEADER: _resolve_header,
    NextAction.EXTRACT: _extract,
    NextAction.RECONCILE: _reconcile,
    NextAction.PROCESS_BATCH: _process_batch,
    NextAction.VALIDATE_IMAGES: _validate_images,
    NextAction.COMPLETE: _complete,
}


def step(state: RunState, caps: Capabilities) -> tuple[RunState, NextAction]:
    """Perform ``state.next_action`` and return the new state and the action after it."""
    if state.next_action is NextAction.DONE:
        return state, NextAction.DONE
    new_state = _ACTIONS[state.next_action](state, caps)
    return new_state, new_state.next_action


def cancel(state: RunState, caps: Capabilities) -> RunState:
    p = state.job.progress
    _emit(
        caps, state, "warn", "transfer_cancelled",
        f"cancelled after {p.current_batch}/{p.total_batches} batches",
        current_batch=p.current_batch,
    )
    return replace(
        state,
        job=replace(state.job, status=JobStatus.CANCELLED, completed_at=datetime.now(UTC)),
        next_action=NextAction.DONE,
    )


def run_steps(
    state: RunState,
    caps: Capabilities,
    checkpoint: Callable[[RunState], None] | None = None,
    is_cancelled: Callable[[], bool] | None = None,
) -> RunState:
    """Drive ``step`` until DONE.

    Cancellation is cooperative: it is checked before each batch and before
    completion, so a batch already submitted always finishes.
    """
    while not state.finished:
        if (
            is_cancelled is not None
            and state.next_action in (NextAction.PROCESS_BATCH, NextAction.COMPLETE)
            and is_cancelled()
        ):
            return cancel(state, caps)
        state, _ = step(state, caps)
        if checkpoint is not None:
            try:
                checkpoint(state)
            except Exception as e:
                logger.warning(f"progress checkpoint failed (continuing): {e}")
    return state
