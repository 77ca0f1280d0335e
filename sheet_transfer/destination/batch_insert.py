from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..models.row_data import ConvertedRow
from ..services.capabilities import AccessRevokedError, DestinationWriter, TokenExpiredError

"""Batched row insertion into the destination sheet.

Rows are submitted one batch per call. The destination returns assigned row
ids in submission order; the inserter pairs them with each row's correlation
token so the image pipeline resolves rows by token instead of array index.

A failed batch marks every row in it as failed with the batch-level message.
Whole batches are never retried automatically (rows may already have been
written); ``insert_row_with_retry`` is the narrow single-row recovery path.
"""

__all__ = [
    "BatchInsertError",
    "BatchInsertResult",
    "BatchMetrics",
    "DEFAULT_BATCH_SIZE",
    "RowFailure",
    "RowRetryResult",
    "chunk_rows",
    "insert_batch",
    "insert_row_with_retry",
]

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50


class BatchInsertError(Exception):
    pass


@dataclass(frozen=True)
class BatchMetrics:
    """Metrics data for a single batch insert call."""
    batch_size: int  # Number of rows in this batch
    elapsed_seconds: float  # Time spent on the insert call
    start_time: float  # Start timestamp (time.time())
    end_time: float  # End timestamp (time.time())


@dataclass(frozen=True)
class RowFailure:
    correlation_token: str
    source_row: int
    message: str


@dataclass(frozen=True)
class BatchInsertResult:
    submitted: int
    row_ids: dict[str, Any] = field(default_factory=dict)  # correlation token -> destination row id
    ordered_row_ids: list[Any] = field(default_factory=list)
    failures: list[RowFailure] = field(default_factory=list)

    @property
    def inserted(self) -> int:
        return len(self.row_ids)


@dataclass(frozen=True)
class RowRetryResult:
    success: bool
    row_id: Any = None
    error: str | None = None
    attempts: int = 0


def chunk_rows(rows: Sequence[Any], batch_size: int = DEFAULT_BATCH_SIZE) -> Iterator[Sequence[Any]]:
    if batch_size < 1:
        raise BatchInsertError(f"batch_size must be >= 1 (got {batch_size})")
    for start in range(0, len(rows), batch_size):
        yield rows[start:start + batch_size]


def insert_batch(
    destination: DestinationWriter,
    sheet_id: Any,
    rows: Sequence[ConvertedRow],
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> BatchInsertResult:
    """Insert ``rows`` with a single destination call.

    Credential failures (TokenExpiredError / AccessRevokedError) propagate so
    the orchestrator can fail the job; any other failure is recorded per row.
    """
    if not rows:
        return BatchInsertResult(submitted=0)

    start_time = time.time()
    try:
        returned = list(destination.insert_rows(sheet_id, [r.payload() for r in rows]))
    except (TokenExpiredError, AccessRevokedError):
        raise
    except Exception as e:
        logger.warning(f"batch insert failed ({len(rows)} rows): {e}")
        return BatchInsertResult(
            submitted=len(rows),
            failures=[RowFailure(r.correlation_token, r.source_row, str(e)) for r in rows],
        )
    finally:
        end_time = time.time()
        if metrics_callback is not None:
            metrics_callback(
                BatchMetrics(
                    batch_size=len(rows),
                    elapsed_seconds=end_time - start_time,
                    start_time=start_time,
                    end_time=end_time,
                )
            )

    row_ids: dict[str, Any] = {}
    failures: list[RowFailure] = []
    # N 番目の行 ID は N 番目に送信した行に対応する
    for position, row in enumerate(rows):
        if position < len(returned) and returned[position] is not None:
            row_ids[row.correlation_token] = returned[position]
        else:
            failures.append(
                RowFailure(row.correlation_token, row.source_row, "destination returned no row id")
            )
    return BatchInsertResult(
        submitted=len(rows), row_ids=row_ids, ordered_row_ids=returned, failures=failures
    )


def insert_row_with_retry(
    destination: DestinationWriter,
    sheet_id: Any,
    row: ConvertedRow,
    max_retries: int = 2,
    base_delay: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> RowRetryResult:
    """Insert one row, retrying with exponential backoff (1s, 2s, ...)."""
    last_error: str | None = None
    for attempt in range(max_retries + 1):
        try:
            returned = destination.insert_rows(sheet_id, [row.payload()])
            row_id = returned[0] if returned else None
            return RowRetryResult(success=True, row_id=row_id, attempts=attempt + 1)
        except (TokenExpiredError, AccessRevokedError):
            raise
        except Exception as e:
            last_error = str(e)
            if attempt < max_retries:
                delay = base_delay * (2 ** attempt)
                logger.debug(f"row {row.source_row} insert failed, retrying in {delay}s: {e}")
                sleep(delay)
    return RowRetryResult(
        success=False, error=last_error or "failed after retries", attempts=max_retries + 1
    )
