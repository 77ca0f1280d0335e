from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Any

import pandas as pd

from ..models.cells import SourceCell
from ..models.job import ColumnMapping, DataType, TransferWarning, WarningType
from ..models.row_data import (
    IMAGE_PLACEHOLDER,
    ConvertedRow,
    DestinationCell,
    HyperlinkValue,
    ImageQueueEntry,
)

"""Source row → destination row conversion.

Image cells become a placeholder text plus an ImageQueueEntry keyed by the
row's correlation token; hyperlink cells keep their link when the column is
mapped as ``hyperlink``; everything else is formatted per the mapping's data
type. Coercion failures keep the original text and raise a ``type_conversion``
warning instead of failing the row.
"""

__all__ = [
    "MAX_CELL_TEXT_LENGTH",
    "coerce_date",
    "coerce_number",
    "convert_row",
    "format_cell_value",
]

MAX_CELL_TEXT_LENGTH = 4000


def coerce_number(value: Any) -> float | int | None:
    """Parse ``value`` as a number (commas, currency and % tolerated)."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if not isinstance(value, str):
        return None
    text = value.strip().replace(",", "").lstrip("$€£¥").strip()
    if not text:
        return None
    percent = text.endswith("%")
    if percent:
        text = text[:-1]
    try:
        number = float(text)
    except ValueError:
        return None
    if not math.isfinite(number):
        # "nan" / "inf" parse as floats but cannot be sent as JSON numbers
        return None
    if percent:
        return number / 100
    return int(number) if number.is_integer() and "." not in text and "e" not in text.lower() else number


def coerce_date(value: Any) -> str | None:
    """Parse ``value`` as a date and return ``YYYY-MM-DD`` (None if not a date)."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        if not value.strip() or coerce_number(value) is not None:
            return None
    elif isinstance(value, (int, float)):
        return None
    parsed = pd.to_datetime(value, errors="coerce")
    if pd.isna(parsed):
        return None
    return parsed.date().isoformat()


def format_cell_value(value: Any, data_type: DataType) -> tuple[Any, TransferWarning | None]:
    """Format a plain value for the destination column type."""
    if value is None:
        return "", None
    if isinstance(value, str) and value.strip() == "":
        return "", None

    if data_type is DataType.NUMBER:
        number = coerce_number(value)
        if number is None:
            return str(value), TransferWarning(
                type=WarningType.TYPE_CONVERSION,
                message=f"value {str(value)[:40]!r} is not a number; kept as text",
            )
        return number, None

    if data_type is DataType.DATE:
        date = coerce_date(value)
        if date is None:
            return str(value), TransferWarning(
                type=WarningType.TYPE_CONVERSION,
                message=f"value {str(value)[:40]!r} is not a date; kept as text",
            )
        return date, None

    text = str(value)
    if len(text) > MAX_CELL_TEXT_LENGTH:
        return text[:MAX_CELL_TEXT_LENGTH], TransferWarning(
            type=WarningType.DATA_TRUNCATION,
            message=f"cell text truncated from {len(text)} to {MAX_CELL_TEXT_LENGTH} characters",
        )
    return text, None


def convert_row(
    cells: Sequence[SourceCell],
    mappings: Sequence[ColumnMapping],
    *,
    correlation_token: str,
    source_row: int,
    batch_local_row_index: int,
    tab: str | None = None,
) -> ConvertedRow:
    """Convert one classified source row into destination cells."""
    out: list[DestinationCell] = []
    images: list[ImageQueueEntry] = []
    warnings: list[TransferWarning] = []

    for mapping in mappings:
        index = mapping.source_column_index
        cell = cells[index] if index < len(cells) else None
        column_id = mapping.destination_column_id

        if cell is None:
            out.append(DestinationCell(column_id=column_id, value=""))
            continue

        if cell.is_image and cell.image_ref is not None:
            out.append(DestinationCell(column_id=column_id, value=IMAGE_PLACEHOLDER))
            images.append(
                ImageQueueEntry(
                    correlation_token=correlation_token,
                    batch_local_row_index=batch_local_row_index,
                    destination_column_id=column_id,
                    image_url=cell.image_ref.url,
                    source_file_id=cell.image_ref.source_id,
                    source_row=source_row,
                    tab=tab,
                )
            )
        elif cell.hyperlink is not None and mapping.data_type is DataType.HYPERLINK:
            text = cell.value if cell.value not in (None, "") else cell.hyperlink
            out.append(
                DestinationCell(
                    column_id=column_id,
                    value=text,
                    hyperlink=HyperlinkValue(url=cell.hyperlink, text=str(text)),
                )
            )
        else:
            value, warning = format_cell_value(cell.value, mapping.data_type)
            out.append(DestinationCell(column_id=column_id, value=value))
            if warning is not None:
                warnings.append(warning)

    return ConvertedRow(
        correlation_token=correlation_token,
        source_row=source_row,
        cells=out,
        images=images,
        warnings=warnings,
    )
