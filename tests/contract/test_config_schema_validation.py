from __future__ import annotations

import json
import pathlib

import pytest
import yaml

try:
    import jsonschema  # type: ignore
    from jsonschema.exceptions import ValidationError  # type: ignore
except ImportError:  # pragma: no cover
    jsonschema = None  # type: ignore
    ValidationError = Exception  # type: ignore

"""Config schema contract test (sheet_transfer/contracts/config_schema.json)."""

ROOT = pathlib.Path(__file__).resolve().parents[2]
SCHEMA_PATH = ROOT / "sheet_transfer" / "contracts" / "config_schema.json"
EXAMPLE_PATH = ROOT / "config" / "transfer.example.yml"


def _schema() -> dict:
    return json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))


@pytest.mark.skipif(jsonschema is None, reason="jsonschema library not installed")
def test_config_schema_valid_example():
    config = {
        "source": {"type": "google_sheets", "spreadsheet_id": "sheet-123", "tabs": ["Orders", "Returns"]},
        "destination": {"sheet_id": 1234567890123456},
        "column_mappings": [
            {"source_column_index": 0, "data_type": "text", "source_column_name": "Name"},
            {"source_column_index": 3, "destination_column_id": 987, "data_type": "image"},
        ],
        "header_row_index": 2,
        "selected_columns": [0, 3],
        "dry_run": True,
        "settings": {"batch_size": 100, "row_retry_on_batch_failure": True},
        "database": {"host": "localhost", "port": 5432, "user": "app", "database": "transfers"},
    }
    jsonschema.validate(config, _schema())  # type: ignore


@pytest.mark.skipif(jsonschema is None, reason="jsonschema library not installed")
def test_config_schema_xlsx_source():
    config = {"source": {"type": "xlsx", "path": "data/orders.xlsx", "tabs": ["Orders"]},
              "destination": {"sheet_id": "555"}}
    jsonschema.validate(config, _schema())  # type: ignore


@pytest.mark.skipif(jsonschema is None, reason="jsonschema library not installed")
def test_config_schema_missing_destination():
    config = {"source": {"spreadsheet_id": "sheet-123", "tabs": ["Orders"]}}
    with pytest.raises(ValidationError):
        jsonschema.validate(config, _schema())  # type: ignore


@pytest.mark.skipif(jsonschema is None, reason="jsonschema library not installed")
def test_config_schema_requires_exactly_one_source_location():
    both = {"spreadsheet_id": "sheet-123", "path": "a.xlsx", "tabs": ["Orders"]}
    neither = {"tabs": ["Orders"]}
    for source in (both, neither):
        with pytest.raises(ValidationError):
            jsonschema.validate({"source": source, "destination": {"sheet_id": 1}}, _schema())  # type: ignore


@pytest.mark.skipif(jsonschema is None, reason="jsonschema library not installed")
def test_config_schema_rejects_extra_key():
    config = {
        "source": {"spreadsheet_id": "sheet-123", "tabs": ["Orders"]},
        "destination": {"sheet_id": 1},
        "extra_field": "not allowed",
    }
    with pytest.raises(ValidationError):
        jsonschema.validate(config, _schema())  # type: ignore


@pytest.mark.skipif(jsonschema is None, reason="jsonschema library not installed")
def test_config_schema_rejects_oversized_batch():
    config = {
        "source": {"spreadsheet_id": "sheet-123", "tabs": ["Orders"]},
        "destination": {"sheet_id": 1},
        "settings": {"batch_size": 501},
    }
    with pytest.raises(ValidationError):
        jsonschema.validate(config, _schema())  # type: ignore


@pytest.mark.skipif(jsonschema is None, reason="jsonschema library not installed")
def test_config_schema_validates_from_sample_yaml(sample_config_yaml: str):
    """The sample config from conftest.py validates against the schema."""
    jsonschema.validate(yaml.safe_load(sample_config_yaml), _schema())  # type: ignore


@pytest.mark.skipif(jsonschema is None, reason="jsonschema library not installed")
def test_config_schema_validates_shipped_example():
    jsonschema.validate(yaml.safe_load(EXAMPLE_PATH.read_text(encoding="utf-8")), _schema())  # type: ignore


@pytest.mark.skipif(jsonschema is None, reason="jsonschema library not installed")
def test_config_schema_destination_is_sheet_id_or_new_sheet_name():
    source = {"spreadsheet_id": "sheet-123", "tabs": ["Orders"]}
    jsonschema.validate({"source": source, "destination": {"new_sheet_name": "Orders copy"}}, _schema())  # type: ignore
    for destination in ({}, {"sheet_id": 1, "new_sheet_name": "Orders copy"}, {"new_sheet_name": "x" * 51}):
        with pytest.raises(ValidationError):
            jsonschema.validate({"source": source, "destination": destination}, _schema())  # type: ignore
