from __future__ import annotations

import statistics
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..destination.batch_insert import BatchMetrics

"""Batch timing statistics for the transfer summary.

The CLI passes ``BatchStatsAccumulator.record`` as the batch inserter's
metrics callback; the SUMMARY line then reports avg / p95 insert latency.
Only the bulk insert call is timed (image uploads are not included).
"""

__all__ = [
    "BatchStatsAccumulator",
]


class BatchStatsAccumulator:
    def __init__(self) -> None:
        self.batch_times: list[float] = []
        self.rows = 0

    def add_batch_time(self, elapsed_seconds: float, rows: int = 0) -> None:
        self.batch_times.append(elapsed_seconds)
        self.rows += rows

    def record(self, metrics: BatchMetrics) -> None:
        self.add_batch_time(metrics.elapsed_seconds, metrics.batch_size)

    @property
    def rows_per_second(self) -> float:
        total = sum(self.batch_times)
        return self.rows / total if total > 0 else 0.0

    def get_stats(self) -> tuple[int, float, float]:
        """Return (batches, avg_batch_seconds, p95_batch_seconds); zeros when empty."""
        if not self.batch_times:
            return (0, 0.0, 0.0)

        batches = len(self.batch_times)
        avg = statistics.mean(self.batch_times)
        if batches == 1:
            p95 = self.batch_times[0]
        else:
            # 19th of the 20 inclusive cut points
            p95 = statistics.quantiles(self.batch_times, n=20, method="inclusive")[18]
        return (batches, avg, p95)
