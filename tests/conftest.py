# Shared pytest fixtures and capability fakes
from __future__ import annotations

import logging
import tempfile
from pathlib import Path
from typing import Any

import pytest

import sheet_transfer.logging.init as log_init
from sheet_transfer.config.loader import TransferSettings
from sheet_transfer.logging.events import RecordingEventSink
from sheet_transfer.models.cells import RawCell
from sheet_transfer.services.capabilities import (
    DestinationColumn,
    DestinationError,
    DownloadedImage,
    ImageAccessDeniedError,
    ImageAccessResult,
    ImageNotFoundError,
    SourceUnavailableError,
)
from sheet_transfer.services.transfer import TransferService
from sheet_transfer.store.memory import InMemoryJobStore


def _raw(cell: Any) -> RawCell:
    if isinstance(cell, RawCell):
        return cell
    if isinstance(cell, str) and cell.startswith("="):
        return RawCell(value="", formula=cell)
    return RawCell(value="" if cell is None else cell)


class FakeSourceReader:
    """Source tabs as lists of rows; strings starting with '=' become formulas."""

    def __init__(self, tabs: dict[str, list[list[Any]]], fail_tabs: dict[str, Exception] | None = None) -> None:
        self.tabs = tabs
        self.fail_tabs = fail_tabs or {}
        self.calls: list[tuple[str, str, int]] = []

    def _rows(self, tab: str) -> list[list[Any]]:
        if tab in self.fail_tabs:
            raise self.fail_tabs[tab]
        if tab not in self.tabs:
            raise SourceUnavailableError(f"no such tab: {tab}")
        return self.tabs[tab]

    def fetch_header_candidates(self, spreadsheet_id: str, tab: str, max_rows: int) -> list[list[Any]]:
        self.calls.append(("header", tab, max_rows))
        return [[_raw(c).value for c in row] for row in self._rows(tab)[:max_rows]]

    def fetch_tab_data(self, spreadsheet_id: str, tab: str, start_row: int) -> list[list[RawCell]]:
        self.calls.append(("data", tab, start_row))
        return [[_raw(c) for c in row] for row in self._rows(tab)[start_row:]]


class FakeImageSource:
    def __init__(
        self,
        denied: set[str] | None = None,
        missing: set[str] | None = None,
        inaccessible: set[str] | None = None,
    ) -> None:
        self.denied = denied or set()
        self.missing = missing or set()
        self.inaccessible = inaccessible if inaccessible is not None else set(self.denied | self.missing)
        self.downloads: list[str] = []
        self.validated: list[str] = []

    def download_image(self, image_url: str, source_id: str | None = None) -> DownloadedImage:
        self.downloads.append(image_url)
        if image_url in self.denied:
            raise ImageAccessDeniedError(f"Access denied to {image_url}")
        if image_url in self.missing:
            raise ImageNotFoundError(f"not found: {image_url}")
        return DownloadedImage(content=b"\x89PNG", mime_type="image/png", filename="image.png")

    def validate_image_access(self, image_url: str, source_id: str | None = None) -> ImageAccessResult:
        self.validated.append(image_url)
        if image_url in self.inaccessible:
            return ImageAccessResult(image_url, False, "Access denied")
        return ImageAccessResult(image_url, True, None)


class FakeDestination:
    """Destination sheet recording every write; row ids count up from 1001."""

    def __init__(
        self,
        columns: int = 2,
        *,
        fail_insert_calls: set[int] | None = None,
        fail_attach: bool = False,
        fail_hyperlink: bool = False,
        insert_error: Exception | None = None,
    ) -> None:
        self.columns = [DestinationColumn(column_id=9000 + i, title=f"Col {i + 1}") for i in range(columns)]
        self.fail_insert_calls = fail_insert_calls or set()
        self.fail_attach = fail_attach
        self.fail_hyperlink = fail_hyperlink
        self.insert_error = insert_error
        self.insert_calls = 0
        self.schema_reads = 0
        self.rows: dict[int, list[dict[str, Any]]] = {}
        self.attachments: list[tuple[Any, Any, str]] = []
        self.hyperlinks: list[tuple[Any, Any, str]] = []
        self.insert_sheet_ids: list[Any] = []
        self.created: list[tuple[str, list[DestinationColumn]]] = []
        self._next_id = 1001

    def fetch_schema(self, sheet_id: Any) -> list[DestinationColumn]:
        self.schema_reads += 1
        return list(self.columns)

    def create_sheet(self, name: str, columns: list[DestinationColumn]) -> Any:
        self.created.append((name, list(columns)))
        self.columns = [
            DestinationColumn(column_id=9000 + i, title=c.title, type=c.type) for i, c in enumerate(columns)
        ]
        return 777

    def insert_rows(self, sheet_id: Any, rows: list[list[dict[str, Any]]]) -> list[Any]:
        self.insert_calls += 1
        self.insert_sheet_ids.append(sheet_id)
        if self.insert_error is not None:
            raise self.insert_error
        if self.insert_calls in self.fail_insert_calls:
            raise DestinationError("HTTP 400: row limit exceeded")
        ids = []
        for cells in rows:
            self.rows[self._next_id] = cells
            ids.append(self._next_id)
            self._next_id += 1
        return ids

    def attach_image_to_cell(
        self, sheet_id: Any, row_id: Any, column_id: Any, content: bytes, filename: str, mime_type: str
    ) -> Any:
        if self.fail_attach:
            raise DestinationError("HTTP 415: unsupported image")
        self.attachments.append((row_id, column_id, filename))
        return f"img-{row_id}-{column_id}"

    def update_cell_as_hyperlink(self, sheet_id: Any, row_id: Any, column_id: Any, url: str) -> None:
        if self.fail_hyperlink:
            raise DestinationError("HTTP 500: update failed")
        self.hyperlinks.append((row_id, column_id, url))


@pytest.fixture(autouse=True)
def fresh_logging():
    """Each test starts without the package handler installed by setup_logging()."""
    log_init.reset_logging()
    yield
    log_init.reset_logging()
    logger = logging.getLogger(log_init.LOGGER_NAME)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """source:
  type: google_sheets
  spreadsheet_id: sheet-123
  tabs: [Orders]
destination:
  sheet_id: 555
column_mappings:
  - {source_column_index: 0, data_type: text}
  - {source_column_index: 1, data_type: number}
settings:
  batch_size: 25
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "transfer.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture()
def recorder() -> RecordingEventSink:
    return RecordingEventSink()


@pytest.fixture()
def make_service(store: InMemoryJobStore, recorder: RecordingEventSink):
    """Build a TransferService over fakes; returns (service, source, images, destination)."""

    def _make(
        tabs: dict[str, list[list[Any]]],
        *,
        destination: FakeDestination | None = None,
        images: FakeImageSource | None = None,
        settings: TransferSettings | None = None,
        fail_tabs: dict[str, Exception] | None = None,
    ):
        source = FakeSourceReader(tabs, fail_tabs)
        images = images or FakeImageSource()
        destination = destination or FakeDestination()
        service = TransferService(
            store,
            source,
            images,
            destination,
            settings=settings or TransferSettings(retry_base_delay_seconds=0),
            events=recorder,
            sleep=lambda _s: None,
        )
        return service, source, images, destination

    return _make
