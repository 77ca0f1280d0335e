from __future__ import annotations

import logging
from typing import Any

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..models.cells import RawCell, RichCellMetadata
from ..services.capabilities import (
    AccessRevokedError,
    SourceUnavailableError,
    TokenExpiredError,
    TokenProvider,
)

"""Google Sheets source reader (google-api-python-client)."""

logger = logging.getLogger(__name__)

LAST_COLUMN = "ZZ"


def _quote_tab(tab: str) -> str:
    return "'" + tab.replace("'", "''") + "'"


def translate_http_error(error: HttpError, what: str) -> Exception:
    status = getattr(error.resp, "status", None)
    if status == 401:
        return TokenExpiredError(f"{what}: access token expired or invalid")
    if status == 403:
        return AccessRevokedError(f"{what}: access to the spreadsheet was revoked")
    return SourceUnavailableError(f"{what}: HTTP {status}: {error}")


class GoogleSheetsReader:
    """Reads header candidates and full tab grids.

    Formatted values and formulas come from two ``values.get`` calls over the
    same range; hyperlinks attached to cells (not via a formula) come from the
    grid data of ``spreadsheets.get``.
    """

    def __init__(self, token_provider: TokenProvider | None = None, service: Any = None) -> None:
        if service is None:
            if token_provider is None:
                raise ValueError("either token_provider or service is required")
            credentials = Credentials(token=token_provider.get_token())
            service = build("sheets", "v4", credentials=credentials, cache_discovery=False)
        self._service = service

    def _values(self, spreadsheet_id: str, range_: str, render: str) -> list[list[Any]]:
        response = (
            self._service.spreadsheets()
            .values()
            .get(spreadsheetId=spreadsheet_id, range=range_, valueRenderOption=render)
            .execute()
        )
        return response.get("values", [])

    def list_tabs(self, spreadsheet_id: str) -> list[str]:
        try:
            response = (
                self._service.spreadsheets()
                .get(spreadsheetId=spreadsheet_id, fields="sheets(properties(title))")
                .execute()
            )
        except HttpError as e:
            raise translate_http_error(e, f"spreadsheet {spreadsheet_id}") from e
        return [s["properties"]["title"] for s in response.get("sheets", [])]

    def fetch_header_candidates(self, spreadsheet_id: str, tab: str, max_rows: int) -> list[list[Any]]:
        try:
            return self._values(spreadsheet_id, f"{_quote_tab(tab)}!1:{max_rows}", "FORMATTED_VALUE")
        except HttpError as e:
            raise translate_http_error(e, f"tab '{tab}'") from e

    def _hyperlinks(self, spreadsheet_id: str, range_: str) -> list[list[dict[str, Any]]]:
        response = (
            self._service.spreadsheets()
            .get(
                spreadsheetId=spreadsheet_id,
                ranges=[range_],
                includeGridData=True,
                fields="sheets(data(rowData(values(hyperlink,formattedValue))))",
            )
            .execute()
        )
        rows: list[list[dict[str, Any]]] = []
        for sheet in response.get("sheets", []):
            for data in sheet.get("data", []):
                for row_data in data.get("rowData", []):
                    rows.append(row_data.get("values", []))
        return rows

    def fetch_tab_data(self, spreadsheet_id: str, tab: str, start_row: int) -> list[list[RawCell]]:
        range_ = f"{_quote_tab(tab)}!A{start_row + 1}:{LAST_COLUMN}"
        try:
            formatted = self._values(spreadsheet_id, range_, "FORMATTED_VALUE")
            formulas = self._values(spreadsheet_id, range_, "FORMULA")
            links = self._hyperlinks(spreadsheet_id, range_)
        except HttpError as e:
            raise translate_http_error(e, f"tab '{tab}'") from e

        grid: list[list[RawCell]] = []
        # formatted values omit trailing rows that hold only a blank-valued formula such as =IMAGE(...)
        for r in range(max(len(formatted), len(formulas))):
            row = formatted[r] if r < len(formatted) else []
            formula_row = formulas[r] if r < len(formulas) else []
            link_row = links[r] if r < len(links) else []
            width = max(len(row), len(formula_row))
            cells: list[RawCell] = []
            for c in range(width):
                value = row[c] if c < len(row) else ""
                raw_formula = formula_row[c] if c < len(formula_row) else None
                formula = raw_formula if isinstance(raw_formula, str) and raw_formula.startswith("=") else None
                link = link_row[c].get("hyperlink") if c < len(link_row) else None
                rich = RichCellMetadata(hyperlink=link, display_text=value or None) if link else None
                cells.append(RawCell(value=value, formula=formula, rich=rich))
            grid.append(cells)
        logger.debug(f"read {len(grid)} rows from tab '{tab}' starting at row {start_row + 1}")
        return grid
