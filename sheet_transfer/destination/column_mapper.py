from __future__ import annotations

from collections.abc import Iterable, Sequence

from ..models.cells import SourceCell
from ..models.job import ColumnMapping, DataType, TransferWarning, WarningType
from ..services.capabilities import DestinationColumn
from ..services.conversion import coerce_date, coerce_number
from ..source.header import generic_label, is_generic_label

"""Column mapping reconciliation against the destination schema.

Declared (or auto-generated) mappings carry provisional destination column
ids. Before any row is written the mapper rewrites each mapping's id to the
real id at the same ordinal position on the destination sheet. A destination
with fewer columns than mappings is an error: columns are never dropped
silently.
"""

__all__ = [
    "ColumnMappingError",
    "MAX_COLUMN_TITLE_LENGTH",
    "generate_mappings",
    "infer_data_type",
    "new_sheet_columns",
    "reconcile_mappings",
    "select_columns",
    "validate_mappings",
    "verify_mappings_exist",
]

MAX_COLUMN_TITLE_LENGTH = 50


class ColumnMappingError(Exception):
    """Raised when mappings cannot be reconciled with the destination schema."""


def _ordered(mappings: Iterable[ColumnMapping]) -> list[ColumnMapping]:
    return sorted(mappings, key=lambda m: m.source_column_index)


def validate_mappings(mappings: Sequence[ColumnMapping]) -> None:
    """Reject many-to-one mappings (one source column mapped twice)."""
    seen: set[int] = set()
    for mapping in mappings:
        if mapping.source_column_index < 0:
            raise ColumnMappingError(
                f"invalid source column index: {mapping.source_column_index}"
            )
        if mapping.source_column_index in seen:
            raise ColumnMappingError(
                f"source column {mapping.source_column_index} is mapped more than once"
            )
        seen.add(mapping.source_column_index)


def reconcile_mappings(
    mappings: Sequence[ColumnMapping], schema: Sequence[DestinationColumn]
) -> list[ColumnMapping]:
    """Rewrite destination column ids by ordinal position.

    Idempotent: reconciling an already-reconciled list returns an equal list.

    Raises:
        ColumnMappingError: destination has fewer columns than mappings, or a
            source column is mapped twice.
    """
    validate_mappings(mappings)
    ordered = _ordered(mappings)
    if len(schema) < len(ordered):
        raise ColumnMappingError(
            f"destination sheet has {len(schema)} columns but {len(ordered)} column mappings were declared"
        )
    reconciled: list[ColumnMapping] = []
    for mapping, column in zip(ordered, schema):
        if mapping.destination_column_id == column.column_id:
            reconciled.append(mapping)
        else:
            reconciled.append(
                ColumnMapping(
                    source_column_index=mapping.source_column_index,
                    destination_column_id=column.column_id,
                    data_type=mapping.data_type,
                    source_column_name=mapping.source_column_name,
                )
            )
    return reconciled


def new_sheet_columns(
    mappings: Sequence[ColumnMapping], headers: Sequence[str] = ()
) -> list[DestinationColumn]:
    """Column definitions for a destination sheet created from ``mappings``.

    Columns follow reconciliation order, so reconciling against the new sheet
    pairs every mapping with the column made for it. Titles come from the
    mapping, else the source header, else ``Column N``; duplicates get a
    ``(2)``, ``(3)``... suffix because sheet column titles must be unique.
    """
    columns: list[DestinationColumn] = []
    seen: set[str] = set()
    for mapping in _ordered(mappings):
        index = mapping.source_column_index
        title = mapping.source_column_name or (headers[index] if index < len(headers) else "")
        title = (title.strip() or generic_label(index))[:MAX_COLUMN_TITLE_LENGTH]
        unique, n = title, 2
        while unique.lower() in seen:
            suffix = f" ({n})"
            unique = title[: MAX_COLUMN_TITLE_LENGTH - len(suffix)] + suffix
            n += 1
        seen.add(unique.lower())
        column_type = "DATE" if mapping.data_type is DataType.DATE else "TEXT_NUMBER"
        columns.append(DestinationColumn(column_id=None, title=unique, type=column_type))
    return columns


def verify_mappings_exist(
    mappings: Sequence[ColumnMapping], schema: Sequence[DestinationColumn]
) -> None:
    """Fail if any mapped destination column no longer exists."""
    existing = {c.column_id for c in schema}
    missing = [m.destination_column_id for m in mappings if m.destination_column_id not in existing]
    if missing:
        raise ColumnMappingError(f"destination columns no longer exist: {missing}")


def select_columns(
    mappings: Sequence[ColumnMapping], selected: Sequence[int] | None
) -> list[ColumnMapping]:
    """Restrict mappings to the selected source column indexes (None = all)."""
    if selected is None:
        return list(mappings)
    wanted = set(selected)
    return [m for m in mappings if m.source_column_index in wanted]


def infer_data_type(cells: Sequence[SourceCell]) -> DataType:
    """Guess a column's data type from sample cells."""
    filled = [c for c in cells if not c.is_empty]
    if not filled:
        return DataType.TEXT
    if any(c.is_image for c in filled):
        return DataType.IMAGE
    if any(c.hyperlink is not None for c in filled):
        return DataType.HYPERLINK
    if all(coerce_number(c.value) is not None for c in filled):
        return DataType.NUMBER
    if all(coerce_date(c.value) is not None for c in filled):
        return DataType.DATE
    return DataType.TEXT


def generate_mappings(
    headers: Sequence[str],
    sample_rows: Sequence[Sequence[SourceCell]] = (),
) -> tuple[list[ColumnMapping], list[TransferWarning]]:
    """Build provisional mappings (one per header) with inferred data types.

    Destination ids are left as None; reconciliation assigns them.
    """
    mappings: list[ColumnMapping] = []
    warnings: list[TransferWarning] = []
    generic = 0
    for index, header in enumerate(headers):
        column_cells = [row[index] for row in sample_rows if index < len(row)]
        title = header
        if len(title) > MAX_COLUMN_TITLE_LENGTH:
            title = title[:MAX_COLUMN_TITLE_LENGTH]
            warnings.append(
                TransferWarning(
                    type=WarningType.DATA_TRUNCATION,
                    message=f"column title truncated to {MAX_COLUMN_TITLE_LENGTH} characters: {header[:20]}...",
                )
            )
        if is_generic_label(header):
            generic += 1
        mappings.append(
            ColumnMapping(
                source_column_index=index,
                destination_column_id=None,
                data_type=infer_data_type(column_cells),
                source_column_name=title,
            )
        )
    if generic:
        warnings.append(
            TransferWarning(
                type=WarningType.DATA_TRUNCATION,
                message=f"{generic} column(s) had no usable header label and were named generically",
                count=generic,
            )
        )
    return mappings, warnings
