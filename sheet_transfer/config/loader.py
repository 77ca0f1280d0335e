from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from ..models.job import ColumnMapping, DataType

"""Transfer job configuration loader.

Responsibilities:
- Load the YAML job file (default ``config/transfer.yml``)
- Validate it against ``contracts/config_schema.json``
- Apply defaults for tuning parameters (batch size, sample sizes, retries)
"""

if TYPE_CHECKING:
    import jsonschema
    from jsonschema.exceptions import ValidationError
else:
    try:
        import jsonschema
        from jsonschema.exceptions import ValidationError
    except ImportError:  # pragma: no cover
        jsonschema = None  # type: ignore[assignment]
        ValidationError = Exception  # type: ignore[misc,assignment]


# sheet_transfer/config/loader.py -> sheet_transfer/contracts/config_schema.json
SCHEMA_PATH = Path(__file__).resolve().parent.parent / "contracts" / "config_schema.json"

SOURCE_TYPES = ("google_sheets", "xlsx")


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class TransferSettings:
    """Tuning parameters. Defaults match the values the service shipped with."""
    batch_size: int = 50
    dry_run_image_sample_size: int = 50
    preview_image_sample_size: int = 20
    header_scan_rows: int = 10
    row_retry_attempts: int = 2
    retry_base_delay_seconds: float = 1.0
    request_timeout_seconds: float = 30.0
    revalidate_schema_each_batch: bool = False
    row_retry_on_batch_failure: bool = False


@dataclass(frozen=True)
class DatabaseConfig:
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class SourceConfig:
    type: str  # google_sheets | xlsx
    spreadsheet_id: str  # spreadsheet id, or workbook path for xlsx
    tabs: tuple[str, ...]


@dataclass(frozen=True)
class DestinationConfig:
    sheet_id: Any = None
    new_sheet_name: str | None = None  # create the sheet from the mappings instead


@dataclass(frozen=True)
class TransferConfig:
    source: SourceConfig
    destination: DestinationConfig
    column_mappings: tuple[ColumnMapping, ...] = ()
    dry_run: bool = False
    header_row_index: int | None = None
    selected_columns: tuple[int, ...] | None = None
    settings: TransferSettings = field(default_factory=TransferSettings)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against JSON schema.

    Raises:
        ConfigError: jsonschema missing, schema file missing/invalid, or the
            data fails validation.
    """
    if jsonschema is None:
        raise ConfigError("jsonschema library is required for config validation")

    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def _parse_mappings(raw: list[dict[str, Any]]) -> tuple[ColumnMapping, ...]:
    return tuple(
        ColumnMapping(
            source_column_index=int(m["source_column_index"]),
            destination_column_id=m.get("destination_column_id"),
            data_type=DataType(m.get("data_type", "text")),
            source_column_name=m.get("source_column_name"),
        )
        for m in raw
    )


def parse_config(data: dict[str, Any]) -> TransferConfig:
    """Build a TransferConfig from an already-loaded mapping (validated first)."""
    _validate_config_schema(data)

    src = data["source"]
    settings_raw = data.get("settings", {}) or {}
    db_raw = data.get("database", {}) or {}
    selected = data.get("selected_columns")
    return TransferConfig(
        source=SourceConfig(
            type=src.get("type", "google_sheets"),
            spreadsheet_id=str(src.get("spreadsheet_id") or src.get("path")),
            tabs=tuple(src["tabs"]),
        ),
        destination=DestinationConfig(
            sheet_id=data["destination"].get("sheet_id"),
            new_sheet_name=data["destination"].get("new_sheet_name"),
        ),
        column_mappings=_parse_mappings(data.get("column_mappings", []) or []),
        dry_run=bool(data.get("dry_run", False)),
        header_row_index=data.get("header_row_index"),
        selected_columns=tuple(selected) if selected is not None else None,
        settings=TransferSettings(**settings_raw),
        database=DatabaseConfig(
            host=db_raw.get("host"),
            port=db_raw.get("port"),
            user=db_raw.get("user"),
            password=db_raw.get("password"),
            database=db_raw.get("database"),
            dsn=db_raw.get("dsn"),
        ),
    )


def load_config(path: Path) -> TransferConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config root must be a mapping")
    return parse_config(data)
