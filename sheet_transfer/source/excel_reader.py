from __future__ import annotations

import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any

import openpyxl
import pandas as pd

from ..models.cells import RawCell, RichCellMetadata
from ..services.capabilities import SourceUnavailableError

"""Local .xlsx workbook as a transfer source.

Values come from pandas (cached results of formulas, as the sheet displays
them); formulas and cell hyperlinks come from openpyxl. The workbook path
plays the role of the spreadsheet id.
"""

logger = logging.getLogger(__name__)


def _format_value(value: Any) -> str:
    """Render a pandas cell the way a spreadsheet would display it."""
    if value is None or value is pd.NaT:
        return ""
    if isinstance(value, float):
        if pd.isna(value):
            return ""
        if value.is_integer():
            return str(int(value))
        return str(value)
    if isinstance(value, (pd.Timestamp, datetime)):
        if value.hour == value.minute == value.second == 0:
            return value.strftime("%Y-%m-%d")
        return value.isoformat(sep=" ")
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


class WorkbookReader:
    def __init__(self) -> None:
        self._formula_books: dict[Path, Any] = {}

    def _path(self, spreadsheet_id: str) -> Path:
        path = Path(spreadsheet_id)
        if not path.exists():
            raise SourceUnavailableError(f"workbook not found: {path}")
        return path

    def _frame(self, path: Path, tab: str, nrows: int | None = None) -> pd.DataFrame:
        try:
            return pd.read_excel(
                path, sheet_name=tab, header=None, nrows=nrows, dtype=object, keep_default_na=False
            )
        except ValueError as e:
            # pandas raises ValueError for an unknown sheet name
            raise SourceUnavailableError(f"tab '{tab}' not found in {path.name}: {e}") from e

    def _formula_sheet(self, path: Path, tab: str) -> Any:
        book = self._formula_books.get(path)
        if book is None:
            book = openpyxl.load_workbook(path, data_only=False)
            self._formula_books[path] = book
        return book[tab]

    def list_tabs(self, spreadsheet_id: str) -> list[str]:
        return [str(name) for name in pd.ExcelFile(self._path(spreadsheet_id)).sheet_names]

    def fetch_header_candidates(self, spreadsheet_id: str, tab: str, max_rows: int) -> list[list[Any]]:
        df = self._frame(self._path(spreadsheet_id), tab, nrows=max_rows)
        return [[_format_value(v) for v in row] for row in df.itertuples(index=False, name=None)]

    def fetch_tab_data(self, spreadsheet_id: str, tab: str, start_row: int) -> list[list[RawCell]]:
        path = self._path(spreadsheet_id)
        df = self._frame(path, tab)
        ws = self._formula_sheet(path, tab)

        grid: list[list[RawCell]] = []
        for r, row in enumerate(df.itertuples(index=False, name=None)):
            if r < start_row:
                continue
            cells: list[RawCell] = []
            for c, value in enumerate(row):
                ws_cell = ws.cell(row=r + 1, column=c + 1)
                raw = ws_cell.value
                formula = raw if isinstance(raw, str) and raw.startswith("=") else None
                link = ws_cell.hyperlink.target if ws_cell.hyperlink is not None else None
                text = _format_value(value)
                rich = RichCellMetadata(hyperlink=link, display_text=text or None) if link else None
                cells.append(RawCell(value=text, formula=formula, rich=rich))
            while cells and cells[-1] == RawCell():
                cells.pop()
            grid.append(cells)
        while grid and not grid[-1]:
            grid.pop()
        logger.debug(f"read {len(grid)} rows from {path.name}!{tab}")
        return grid
