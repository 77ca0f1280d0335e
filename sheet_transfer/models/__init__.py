"""Domain models for the sheet transfer engine.

This package contains the job aggregate, progress records, and the source and
destination cell models shared by the detector, classifier, inserter and
image pipeline.
"""

from .cells import CellKind, ImageRef, RawCell, RichCellMetadata, SourceCell
from .job import (
    ColumnMapping,
    DataType,
    DestinationRef,
    DryRunSummary,
    ErrorType,
    JobStatus,
    SourceInfo,
    SourceRef,
    TransferError,
    TransferJob,
    TransferLog,
    TransferProgress,
    TransferWarning,
    WarningType,
)
from .row_data import ConvertedRow, DestinationCell, HyperlinkValue, ImageQueueEntry

__all__ = [
    # Source cells
    "CellKind",
    "ImageRef",
    "RawCell",
    "RichCellMetadata",
    "SourceCell",
    # Job aggregate
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
    # Destination rows
    "ConvertedRow",
    "DestinationCell",
    "HyperlinkValue",
    "ImageQueueEntry",
]
