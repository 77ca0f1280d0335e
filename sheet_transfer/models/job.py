from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

"""TransferJob aggregate and its progress/error records.

The job is persisted by an external JobStore between steps. All records here
are frozen dataclasses; updates produce new instances via the ``with_*`` / ``advanced``
helpers so that counters stay monotonic and error/warning lists stay append-only.

State transitions: pending → running → (completed | failed | cancelled)
"""

__all__ = [
    "ColumnMapping",
    "DataType",
    "DestinationRef",
    "DryRunSummary",
    "ErrorType",
    "JobStatus",
    "SourceInfo",
    "SourceRef",
    "TransferError",
    "TransferJob",
    "TransferLog",
    "TransferProgress",
    "TransferWarning",
    "WarningType",
]


class JobStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class DataType(Enum):
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    IMAGE = "image"
    HYPERLINK = "hyperlink"


class ErrorType(Enum):
    IMAGE_ACCESS_DENIED = "image_access_denied"
    IMAGE_UPLOAD_FAILED = "image_upload_failed"
    ROW_INSERT_FAILED = "row_insert_failed"
    GENERAL_ERROR = "general_error"


class WarningType(Enum):
    IMAGE_FALLBACK = "image_fallback"
    DATA_TRUNCATION = "data_truncation"
    TYPE_CONVERSION = "type_conversion"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _iso(ts: datetime | None) -> str | None:
    return ts.isoformat().replace("+00:00", "Z") if ts is not None else None


def _parse_iso(raw: str | None) -> datetime | None:
    if not raw:
        return None
    return datetime.fromisoformat(raw.replace("Z", "+00:00"))


@dataclass(frozen=True)
class ColumnMapping:
    """Source column → destination column association.

    ``destination_column_id`` is provisional (may be None or stale) until the
    column mapper reconciles it against the real destination schema.
    """
    source_column_index: int
    destination_column_id: Any
    data_type: DataType = DataType.TEXT
    source_column_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_column_index": self.source_column_index,
            "destination_column_id": self.destination_column_id,
            "data_type": self.data_type.value,
            "source_column_name": self.source_column_name,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ColumnMapping:
        return ColumnMapping(
            source_column_index=int(data["source_column_index"]),
            destination_column_id=data.get("destination_column_id"),
            data_type=DataType(data.get("data_type", "text")),
            source_column_name=data.get("source_column_name"),
        )


@dataclass(frozen=True)
class TransferError:
    type: ErrorType
    message: str
    row: int | None = None  # 1-based source sheet row when known
    column: str | None = None
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "message": self.message,
            "row": self.row,
            "column": self.column,
            "details": self.details,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> TransferError:
        return TransferError(
            type=ErrorType(data["type"]),
            message=data["message"],
            row=data.get("row"),
            column=data.get("column"),
            details=data.get("details"),
        )


@dataclass(frozen=True)
class TransferWarning:
    type: WarningType
    message: str
    count: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "message": self.message, "count": self.count}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> TransferWarning:
        return TransferWarning(
            type=WarningType(data["type"]), message=data["message"], count=data.get("count")
        )


_COUNTERS = (
    "total_rows",
    "processed_rows",
    "total_images",
    "processed_images",
    "successful_images",
    "fallback_images",
    "failed_images",
    "current_batch",
    "total_batches",
)


@dataclass(frozen=True)
class TransferProgress:
    """Mutable-by-replacement progress record polled by clients."""
    total_rows: int = 0
    processed_rows: int = 0
    total_images: int = 0
    processed_images: int = 0
    successful_images: int = 0
    fallback_images: int = 0
    failed_images: int = 0
    current_batch: int = 0
    total_batches: int = 0
    errors: tuple[TransferError, ...] = ()
    warnings: tuple[TransferWarning, ...] = ()

    def advanced(self, **deltas: int) -> TransferProgress:
        """Return a copy with counters increased by ``deltas`` (never decreased)."""
        changes: dict[str, int] = {}
        for name, delta in deltas.items():
            if name not in _COUNTERS:
                raise KeyError(f"unknown progress counter: {name}")
            if delta < 0:
                raise ValueError(f"progress counter {name} cannot decrease")
            changes[name] = getattr(self, name) + delta
        return replace(self, **changes)

    def with_totals(self, *, total_rows: int, total_images: int, total_batches: int) -> TransferProgress:
        return replace(
            self,
            total_rows=max(self.total_rows, total_rows),
            total_images=max(self.total_images, total_images),
            total_batches=max(self.total_batches, total_batches),
        )

    def with_errors(self, *errors: TransferError) -> TransferProgress:
        if not errors:
            return self
        return replace(self, errors=self.errors + tuple(errors))

    def with_warnings(self, *warnings: TransferWarning) -> TransferProgress:
        if not warnings:
            return self
        return replace(self, warnings=self.warnings + tuple(warnings))

    def errors_of(self, error_type: ErrorType) -> list[TransferError]:
        return [e for e in self.errors if e.type is error_type]

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {name: getattr(self, name) for name in _COUNTERS}
        data["errors"] = [e.to_dict() for e in self.errors]
        data["warnings"] = [w.to_dict() for w in self.warnings]
        return data

    @staticmethod
    def from_dict(data: dict[str, Any] | None) -> TransferProgress:
        data = data or {}
        return TransferProgress(
            **{name: int(data.get(name, 0) or 0) for name in _COUNTERS},
            errors=tuple(TransferError.from_dict(e) for e in data.get("errors", [])),
            warnings=tuple(TransferWarning.from_dict(w) for w in data.get("warnings", [])),
        )


@dataclass(frozen=True)
class TransferLog:
    timestamp: datetime
    level: str  # info | warn | error | success
    message: str
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": _iso(self.timestamp),
            "level": self.level,
            "message": self.message,
            "details": self.details,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> TransferLog:
        return TransferLog(
            timestamp=_parse_iso(data["timestamp"]) or _utcnow(),
            level=data["level"],
            message=data["message"],
            details=data.get("details"),
        )


@dataclass(frozen=True)
class SourceRef:
    """Where rows come from: a spreadsheet id (or workbook path) plus tab names."""
    spreadsheet_id: str
    tabs: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"spreadsheet_id": self.spreadsheet_id, "tabs": list(self.tabs)}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> SourceRef:
        return SourceRef(spreadsheet_id=str(data["spreadsheet_id"]), tabs=tuple(data.get("tabs", [])))


@dataclass(frozen=True)
class DestinationRef:
    """Existing sheet (``sheet_id``) or a sheet to create from the mappings (``new_sheet_name``)."""
    sheet_id: Any
    new_sheet_name: str | None = None

    @property
    def needs_creation(self) -> bool:
        return self.sheet_id is None and bool(self.new_sheet_name)

    def to_dict(self) -> dict[str, Any]:
        return {"sheet_id": self.sheet_id, "new_sheet_name": self.new_sheet_name}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> DestinationRef:
        return DestinationRef(sheet_id=data.get("sheet_id"), new_sheet_name=data.get("new_sheet_name"))


@dataclass(frozen=True)
class SourceInfo:
    """Snapshot of what extraction found; filled in once per execution."""
    tab_names: tuple[str, ...]
    header_row_index: int
    headers: tuple[str, ...]
    total_data_rows: int
    total_images: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "tab_names": list(self.tab_names),
            "header_row_index": self.header_row_index,
            "headers": list(self.headers),
            "total_data_rows": self.total_data_rows,
            "total_images": self.total_images,
        }

    @staticmethod
    def from_dict(data: dict[str, Any] | None) -> SourceInfo | None:
        if not data:
            return None
        return SourceInfo(
            tab_names=tuple(data.get("tab_names", [])),
            header_row_index=int(data.get("header_row_index", 0)),
            headers=tuple(data.get("headers", [])),
            total_data_rows=int(data.get("total_data_rows", 0)),
            total_images=int(data.get("total_images", 0)),
        )


@dataclass(frozen=True)
class TransferJob:
    id: str
    source: SourceRef
    destination: DestinationRef
    column_mappings: tuple[ColumnMapping, ...]
    status: JobStatus = JobStatus.PENDING
    progress: TransferProgress = field(default_factory=TransferProgress)
    dry_run: bool = False
    header_row_index: int | None = None  # explicit override; None = detect
    selected_columns: tuple[int, ...] | None = None
    logs: tuple[TransferLog, ...] = ()
    source_info: SourceInfo | None = None
    inaccessible_images_estimate: int | None = None  # dry run only
    created_at: datetime = field(default_factory=_utcnow)
    completed_at: datetime | None = None

    @staticmethod
    def new(
        source: SourceRef,
        destination: DestinationRef,
        column_mappings: list[ColumnMapping] | tuple[ColumnMapping, ...],
        *,
        dry_run: bool = False,
        header_row_index: int | None = None,
        selected_columns: list[int] | tuple[int, ...] | None = None,
    ) -> TransferJob:
        return TransferJob(
            id=str(uuid.uuid4()),
            source=source,
            destination=destination,
            column_mappings=tuple(column_mappings),
            dry_run=dry_run,
            header_row_index=header_row_index,
            selected_columns=tuple(selected_columns) if selected_columns is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source.to_dict(),
            "destination": self.destination.to_dict(),
            "column_mappings": [m.to_dict() for m in self.column_mappings],
            "status": self.status.value,
            "progress": self.progress.to_dict(),
            "dry_run": self.dry_run,
            "header_row_index": self.header_row_index,
            "selected_columns": list(self.selected_columns) if self.selected_columns is not None else None,
            "logs": [entry.to_dict() for entry in self.logs],
            "source_info": self.source_info.to_dict() if self.source_info else None,
            "inaccessible_images_estimate": self.inaccessible_images_estimate,
            "created_at": _iso(self.created_at),
            "completed_at": _iso(self.completed_at),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> TransferJob:
        selected = data.get("selected_columns")
        return TransferJob(
            id=data["id"],
            source=SourceRef.from_dict(data["source"]),
            destination=DestinationRef.from_dict(data["destination"]),
            column_mappings=tuple(ColumnMapping.from_dict(m) for m in data.get("column_mappings", [])),
            status=JobStatus(data.get("status", "pending")),
            progress=TransferProgress.from_dict(data.get("progress")),
            dry_run=bool(data.get("dry_run", False)),
            header_row_index=data.get("header_row_index"),
            selected_columns=tuple(selected) if selected is not None else None,
            logs=tuple(TransferLog.from_dict(entry) for entry in data.get("logs", [])),
            source_info=SourceInfo.from_dict(data.get("source_info")),
            inaccessible_images_estimate=data.get("inaccessible_images_estimate"),
            created_at=_parse_iso(data.get("created_at")) or _utcnow(),
            completed_at=_parse_iso(data.get("completed_at")),
        )


@dataclass(frozen=True)
class DryRunSummary:
    total_rows: int
    total_images: int
    inaccessible_images: int  # extrapolated estimate
    estimated_time: int  # minutes, at roughly 100 rows or images per minute
    warnings: list[str]
    column_mappings: list[ColumnMapping]
