from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .job import TransferWarning

"""Destination-side row models.

A ConvertedRow is one source data row after conversion into destination cells.
Each row carries a correlation token assigned at conversion time; image queue
entries reference that token, and the batch inserter resolves tokens to the
destination row ids returned by the insert call.
"""

__all__ = [
    "ConvertedRow",
    "DestinationCell",
    "HyperlinkValue",
    "ImageQueueEntry",
    "IMAGE_PLACEHOLDER",
]

IMAGE_PLACEHOLDER = "Loading image..."


@dataclass(frozen=True)
class HyperlinkValue:
    url: str
    text: str | None = None


@dataclass(frozen=True)
class DestinationCell:
    column_id: Any
    value: Any = ""
    hyperlink: HyperlinkValue | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"columnId": self.column_id, "value": self.value}
        if self.hyperlink is not None:
            payload["hyperlink"] = {"url": self.hyperlink.url}
        return payload


@dataclass(frozen=True)
class ImageQueueEntry:
    """Transient work item for the image pipeline (never persisted)."""
    correlation_token: str
    batch_local_row_index: int
    destination_column_id: Any
    image_url: str
    source_file_id: str | None = None
    source_row: int | None = None  # 1-based row in the source tab, for messages
    tab: str | None = None


@dataclass(frozen=True)
class ConvertedRow:
    correlation_token: str
    source_row: int
    cells: list[DestinationCell]
    images: list[ImageQueueEntry] = field(default_factory=list)
    warnings: list[TransferWarning] = field(default_factory=list)

    def payload(self) -> list[dict[str, Any]]:
        return [c.to_payload() for c in self.cells]
