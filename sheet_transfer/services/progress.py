from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

from ..logging.events import TransferEvent

"""Batch progress display with tqdm (TTY only).

The bar is an event sink: it opens when extraction reports the batch count,
advances on every ``batch_inserted`` event and closes on any terminal event.
In non-TTY environments (CI, redirected output) nothing is drawn.
"""

__all__ = [
    "BatchProgressBar",
    "is_tty_enabled",
]

_TERMINAL_KINDS = ("transfer_completed", "transfer_failed", "transfer_cancelled")


def is_tty_enabled() -> bool:
    """Check if TTY output is enabled.

    Returns:
        True if stdout is a TTY and progress should be displayed, False otherwise
    """
    return sys.stdout.isatty()


class BatchProgressBar:
    """Progress bar over the batches of one job."""

    def __init__(self, *, description: str = "Transferring", enabled: bool | None = None) -> None:
        self.description = description
        self.enabled = is_tty_enabled() if enabled is None else enabled
        self.pbar: TqdmType[Any] | None = None
        self.batches_done = 0

    def _open(self, total_batches: int) -> None:
        if self.enabled and self.pbar is None:
            self.pbar = tqdm(
                total=total_batches,
                desc=self.description,
                unit="batch",
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )

    def emit(self, event: TransferEvent) -> None:
        details = event.details or {}
        if event.kind == "extraction_completed":
            self._open(int(details.get("total_batches", 0)))
        elif event.kind == "batch_inserted":
            self.batches_done += 1
            if self.pbar is not None:
                self.pbar.update(1)
                self.pbar.set_postfix(inserted=details.get("inserted", 0), failed=details.get("failed", 0))
        elif event.kind in _TERMINAL_KINDS:
            self.close()

    def close(self) -> None:
        """Close the progress bar."""
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> BatchProgressBar:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
