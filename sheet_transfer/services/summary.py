from __future__ import annotations

from ..models.job import TransferJob
from ..models.processing_result import BatchStatsAccumulator

"""SUMMARY line rendering for the transfer CLI.

Format::

    SUMMARY job={id8} status={status} rows={processed}/{total} images={ok}/{total}
    fallback={n} failed_images={n} errors={n} warnings={n} batches={n}
    avg_batch_sec={s} p95_batch_sec={s}

(one line; wrapped here for readability)
"""


def _fmt_seconds(value: float) -> str:
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        # avoid scientific notation for very small numbers
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.3f}".rstrip("0").rstrip(".")


def render_summary_line(job: TransferJob, stats: BatchStatsAccumulator | None = None) -> str:
    """Render the SUMMARY line for a finished job.

    Examples:
        >>> from sheet_transfer.models.job import DestinationRef, SourceRef, TransferJob
        >>> job = TransferJob.new(SourceRef("sheet", ("Tab",)), DestinationRef(1), [])
        >>> render_summary_line(job)  # doctest: +ELLIPSIS
        'SUMMARY job=... status=pending rows=0/0 images=0/0 fallback=0 failed_images=0 errors=0 ...'
    """
    p = job.progress
    batches, avg, p95 = stats.get_stats() if stats is not None else (p.current_batch, 0.0, 0.0)
    return (
        f"SUMMARY job={job.id[:8]} "
        f"status={job.status.value} "
        f"rows={p.processed_rows}/{p.total_rows} "
        f"images={p.successful_images}/{p.total_images} "
        f"fallback={p.fallback_images} "
        f"failed_images={p.failed_images} "
        f"errors={len(p.errors)} "
        f"warnings={len(p.warnings)} "
        f"batches={batches} "
        f"avg_batch_sec={_fmt_seconds(avg)} "
        f"p95_batch_sec={_fmt_seconds(p95)}"
    )
