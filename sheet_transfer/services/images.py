from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..logging.events import EventSink, NullEventSink, TransferEvent
from ..models.job import ErrorType, TransferError, TransferWarning, WarningType
from ..models.row_data import ImageQueueEntry
from .capabilities import (
    AccessRevokedError,
    DestinationWriter,
    ImageAccessDeniedError,
    ImageSource,
    TokenExpiredError,
)

"""Per-cell image transfer with hyperlink fallback.

For each queued image the pipeline downloads the bytes from the source and
attaches them to the destination cell of the inserted row. When that fails the
cell is rewritten as a hyperlink to the original URL; when even that fails a
hard error is recorded and the placeholder text stays in the cell.

Every entry resolves to exactly one outcome: successful, fallback, or failed.
"""

__all__ = [
    "ImageBatchOutcome",
    "ImageFallbackPipeline",
    "ImageOutcome",
]

logger = logging.getLogger(__name__)

SUCCESSFUL = "successful"
FALLBACK = "fallback"
FAILED = "failed"


@dataclass(frozen=True)
class ImageOutcome:
    entry: ImageQueueEntry
    result: str  # successful | fallback | failed
    error: str | None = None
    error_type: ErrorType | None = None  # cause classification for failed outcomes


@dataclass(frozen=True)
class ImageBatchOutcome:
    queued: int
    successful: int = 0
    fallback: int = 0
    failed: int = 0
    errors: list[TransferError] = field(default_factory=list)
    warnings: list[TransferWarning] = field(default_factory=list)
    outcomes: list[ImageOutcome] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.successful + self.fallback + self.failed != self.queued:
            raise ValueError(
                f"image outcomes do not add up: {self.successful}+{self.fallback}+{self.failed} != {self.queued}"
            )


def _cause_error_type(exc: BaseException) -> ErrorType:
    if isinstance(exc, ImageAccessDeniedError):
        return ErrorType.IMAGE_ACCESS_DENIED
    return ErrorType.IMAGE_UPLOAD_FAILED


def _where(entry: ImageQueueEntry) -> str:
    tab = f"{entry.tab}!" if entry.tab else ""
    return f"{tab}row {entry.source_row}" if entry.source_row is not None else f"{tab}row ?"


class ImageFallbackPipeline:
    """Download → attach, falling back to a hyperlink rewrite."""

    def __init__(
        self,
        images: ImageSource,
        destination: DestinationWriter,
        events: EventSink | None = None,
        job_id: str = "",
    ) -> None:
        self.images = images
        self.destination = destination
        self.events = events or NullEventSink()
        self.job_id = job_id

    def _emit(self, level: str, kind: str, message: str, **details: Any) -> None:
        self.events.emit(TransferEvent(self.job_id, level, kind, message, details or None))

    def process(
        self,
        sheet_id: Any,
        entries: Sequence[ImageQueueEntry],
        row_ids: Mapping[str, Any],
    ) -> ImageBatchOutcome:
        """Resolve every entry against ``row_ids`` (correlation token → row id).

        Credential failures (expired token, revoked access) propagate; all
        other failures are isolated to the single image.
        """
        outcomes: list[ImageOutcome] = []
        errors: list[TransferError] = []
        warnings: list[TransferWarning] = []

        for entry in entries:
            row_id = row_ids.get(entry.correlation_token)
            if row_id is None:
                message = f"image at {_where(entry)} not transferred: row was not inserted"
                outcomes.append(ImageOutcome(entry, FAILED, message))
                errors.append(
                    TransferError(
                        type=ErrorType.IMAGE_UPLOAD_FAILED,
                        message=message,
                        row=entry.source_row,
                        details={"url": entry.image_url},
                    )
                )
                continue
            outcome = self._process_one(sheet_id, entry, row_id)
            outcomes.append(outcome)
            if outcome.result == FALLBACK:
                warnings.append(
                    TransferWarning(
                        type=WarningType.IMAGE_FALLBACK,
                        message=f"image at {_where(entry)} linked instead of embedded: {outcome.error}",
                    )
                )
            elif outcome.result == FAILED:
                errors.append(self._hard_error(entry, outcome))

        return ImageBatchOutcome(
            queued=len(entries),
            successful=sum(1 for o in outcomes if o.result == SUCCESSFUL),
            fallback=sum(1 for o in outcomes if o.result == FALLBACK),
            failed=sum(1 for o in outcomes if o.result == FAILED),
            errors=errors,
            warnings=warnings,
            outcomes=outcomes,
        )

    def _hard_error(self, entry: ImageQueueEntry, outcome: ImageOutcome) -> TransferError:
        return TransferError(
            type=outcome.error_type or ErrorType.IMAGE_UPLOAD_FAILED,
            message=f"image at {_where(entry)} failed and link fallback failed: {outcome.error}",
            row=entry.source_row,
            details={"url": entry.image_url},
        )

    def _process_one(self, sheet_id: Any, entry: ImageQueueEntry, row_id: Any) -> ImageOutcome:
        try:
            self._emit("debug", "image_download", f"downloading image {entry.image_url}", row_id=row_id)
            image = self.images.download_image(entry.image_url, entry.source_file_id)
            self.destination.attach_image_to_cell(
                sheet_id,
                row_id,
                entry.destination_column_id,
                image.content,
                image.filename,
                image.mime_type,
            )
            self._emit("debug", "image_attached", f"image attached to row {row_id}", row_id=row_id)
            return ImageOutcome(entry, SUCCESSFUL)
        except (TokenExpiredError, AccessRevokedError):
            raise
        except Exception as e:
            cause_type = _cause_error_type(e)
            self._emit(
                "warn",
                "image_fallback",
                f"image at {_where(entry)} failed ({e}); falling back to link",
                url=entry.image_url,
            )
            try:
                self.destination.update_cell_as_hyperlink(
                    sheet_id, row_id, entry.destination_column_id, entry.image_url
                )
                return ImageOutcome(entry, FALLBACK, str(e))
            except (TokenExpiredError, AccessRevokedError):
                raise
            except Exception as fallback_error:
                logger.debug(f"link fallback failed for {entry.image_url}: {fallback_error}")
                return ImageOutcome(
                    entry, FAILED, f"{e}; fallback: {fallback_error}", error_type=cause_type
                )
