from __future__ import annotations

import json

import pytest

from sheet_transfer.models.cells import ImageRef, SourceCell
from sheet_transfer.models.job import ColumnMapping, DataType, WarningType
from sheet_transfer.models.row_data import IMAGE_PLACEHOLDER
from sheet_transfer.services.conversion import (
    MAX_CELL_TEXT_LENGTH,
    coerce_date,
    coerce_number,
    convert_row,
    format_cell_value,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("12", 12),
        ("1,250", 1250),
        ("$3.50", 3.5),
        ("12.0", 12.0),
        ("50%", 0.5),
        (7, 7),
        (2.5, 2.5),
        ("abc", None),
        ("", None),
        (True, None),
        (None, None),
        ("nan", None),
        ("NaN", None),
        ("inf", None),
        ("-Infinity", None),
        ("1e400", None),
        (float("nan"), None),
        (float("inf"), None),
    ],
)
def test_coerce_number(raw, expected):
    assert coerce_number(raw) == expected


def test_coerce_date():
    assert coerce_date("2024-03-01") == "2024-03-01"
    assert coerce_date("March 1, 2024") == "2024-03-01"
    assert coerce_date("42") is None
    assert coerce_date(42) is None
    assert coerce_date("not a date") is None
    assert coerce_date("") is None


def test_format_number_column_keeps_text_on_failure():
    value, warning = format_cell_value("n/a", DataType.NUMBER)
    assert value == "n/a"
    assert warning.type is WarningType.TYPE_CONVERSION


def test_format_date_column():
    assert format_cell_value("2024-01-31", DataType.DATE) == ("2024-01-31", None)
    value, warning = format_cell_value("someday", DataType.DATE)
    assert value == "someday"
    assert warning.type is WarningType.TYPE_CONVERSION


def test_format_text_truncates_long_values():
    value, warning = format_cell_value("x" * (MAX_CELL_TEXT_LENGTH + 10), DataType.TEXT)
    assert len(value) == MAX_CELL_TEXT_LENGTH
    assert warning.type is WarningType.DATA_TRUNCATION


def test_format_empty_values():
    assert format_cell_value(None, DataType.NUMBER) == ("", None)
    assert format_cell_value("  ", DataType.DATE) == ("", None)


def _mappings():
    return [
        ColumnMapping(source_column_index=0, destination_column_id=10, data_type=DataType.TEXT),
        ColumnMapping(source_column_index=1, destination_column_id=11, data_type=DataType.NUMBER),
        ColumnMapping(source_column_index=2, destination_column_id=12, data_type=DataType.IMAGE),
        ColumnMapping(source_column_index=3, destination_column_id=13, data_type=DataType.HYPERLINK),
    ]


def test_convert_row_queues_images_by_token():
    cells = [
        SourceCell(value="Bolt"),
        SourceCell(value="12"),
        SourceCell(is_image=True, image_ref=ImageRef(url="https://drive.google.com/file/d/ABC/view", source_id="ABC")),
        SourceCell(value="Spec", hyperlink="https://example.com/spec"),
    ]
    row = convert_row(cells, _mappings(), correlation_token="Orders#3", source_row=3,
                      batch_local_row_index=0, tab="Orders")
    assert [c.value for c in row.cells] == ["Bolt", 12, IMAGE_PLACEHOLDER, "Spec"]
    assert row.cells[3].hyperlink.url == "https://example.com/spec"
    assert len(row.images) == 1
    entry = row.images[0]
    assert entry.correlation_token == "Orders#3"
    assert entry.destination_column_id == 12
    assert entry.source_file_id == "ABC"
    assert entry.tab == "Orders"
    assert row.warnings == []


def test_convert_row_short_row_and_warnings():
    row = convert_row([SourceCell(value="Nut"), SourceCell(value="lots")], _mappings(),
                      correlation_token="t", source_row=9, batch_local_row_index=4)
    assert [c.value for c in row.cells] == ["Nut", "lots", "", ""]
    assert len(row.warnings) == 1
    assert row.images == []


def test_hyperlink_in_text_column_keeps_display_text():
    mappings = [ColumnMapping(source_column_index=0, destination_column_id=1)]
    row = convert_row([SourceCell(value="Docs", hyperlink="https://example.com")], mappings,
                      correlation_token="t", source_row=2, batch_local_row_index=0)
    assert row.cells[0].value == "Docs"
    assert row.cells[0].hyperlink is None
    assert row.payload() == [{"columnId": 1, "value": "Docs"}]


@pytest.mark.parametrize("raw", ["NaN", "inf", "-Infinity"])
def test_format_number_column_keeps_non_finite_text(raw):
    value, warning = format_cell_value(raw, DataType.NUMBER)
    assert value == raw
    assert warning.type is WarningType.TYPE_CONVERSION


def test_convert_row_payload_is_strict_json_for_non_finite_text():
    mappings = [
        ColumnMapping(source_column_index=0, destination_column_id=1, data_type=DataType.NUMBER),
        ColumnMapping(source_column_index=1, destination_column_id=2, data_type=DataType.NUMBER),
    ]
    row = convert_row([SourceCell(value="NaN"), SourceCell(value="inf")], mappings,
                      correlation_token="Orders#2", source_row=2, batch_local_row_index=0)
    assert [c.value for c in row.cells] == ["NaN", "inf"]
    assert [w.type for w in row.warnings] == [WarningType.TYPE_CONVERSION] * 2
    json.dumps(row.payload(), allow_nan=False)
