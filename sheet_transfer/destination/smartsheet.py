from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import requests

from ..services.capabilities import (
    AccessRevokedError,
    DestinationColumn,
    DestinationError,
    TokenExpiredError,
    TokenProvider,
)

"""Smartsheet REST client implementing the destination writer contract.

Sheets are addressed by numeric id. New sheets are created in the caller's
home folder; the first column becomes the primary column.
"""

logger = logging.getLogger(__name__)

BASE_URL = "https://api.smartsheet.com/2.0"
REQUEST_TIMEOUT_SECONDS = 30
UPLOAD_TIMEOUT_SECONDS = 60
FALLBACK_LINK_TEXT = "Image Link"
DEFAULT_COLUMN_TYPE = "TEXT_NUMBER"


class SmartsheetClient:
    def __init__(
        self,
        token_provider: TokenProvider,
        *,
        session: requests.Session | None = None,
        base_url: str = BASE_URL,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        upload_timeout: float = UPLOAD_TIMEOUT_SECONDS,
    ) -> None:
        self._tokens = token_provider
        self._session = session or requests.Session()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.upload_timeout = upload_timeout

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        data: bytes | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> Any:
        all_headers = {"Authorization": f"Bearer {self._tokens.get_token()}"}
        all_headers.update(headers or {})
        url = f"{self.base_url}{path}"
        try:
            response = self._session.request(
                method, url, json=json, data=data, headers=all_headers, timeout=timeout or self.timeout
            )
        except requests.RequestException as e:
            raise DestinationError(f"{method} {path} failed: {e}") from e

        if response.status_code == 401:
            raise TokenExpiredError("Smartsheet access token expired or invalid")
        if response.status_code == 403:
            raise AccessRevokedError(f"Smartsheet denied access to {path}")
        if response.status_code >= 400:
            try:
                message = response.json().get("message", response.text)
            except ValueError:
                message = response.text
            logger.debug(f"{method} {path} -> {response.status_code}: {message}")
            raise DestinationError(f"{method} {path} failed: HTTP {response.status_code}: {message}")
        return response.json() if response.content else {}

    def fetch_schema(self, sheet_id: Any) -> list[DestinationColumn]:
        sheet = self._request("GET", f"/sheets/{sheet_id}")
        columns = sorted(sheet.get("columns", []), key=lambda c: c.get("index", 0))
        return [
            DestinationColumn(column_id=c["id"], title=c.get("title", ""), type=c.get("type", "TEXT_NUMBER"))
            for c in columns
        ]

    def create_sheet(self, name: str, columns: Sequence[DestinationColumn]) -> Any:
        if not columns:
            raise DestinationError(f"cannot create sheet '{name}' without columns")
        body = {
            "name": name,
            "columns": [
                {
                    "title": c.title,
                    # the primary column must be TEXT_NUMBER
                    "type": DEFAULT_COLUMN_TYPE if index == 0 else (c.type or DEFAULT_COLUMN_TYPE),
                    "primary": index == 0,
                }
                for index, c in enumerate(columns)
            ],
        }
        response = self._request("POST", "/sheets", json=body)
        sheet_id = response.get("result", {}).get("id")
        if sheet_id is None:
            raise DestinationError(f"sheet '{name}' was created but no id was returned")
        logger.info(f"created destination sheet '{name}' ({sheet_id}) with {len(columns)} columns")
        return sheet_id

    def insert_rows(self, sheet_id: Any, rows: Sequence[list[dict[str, Any]]]) -> list[Any]:
        body = [{"toBottom": True, "cells": cells} for cells in rows]
        response = self._request("POST", f"/sheets/{sheet_id}/rows", json=body)
        result = response.get("result", [])
        if isinstance(result, dict):
            result = [result]
        return [r.get("id") for r in result]

    def attach_image_to_cell(
        self,
        sheet_id: Any,
        row_id: Any,
        column_id: Any,
        content: bytes,
        filename: str,
        mime_type: str,
    ) -> Any:
        response = self._request(
            "POST",
            f"/sheets/{sheet_id}/rows/{row_id}/columns/{column_id}/cellimages",
            data=content,
            headers={
                "Content-Type": mime_type,
                "Content-Disposition": f'attachment; filename="{filename}"',
            },
            timeout=self.upload_timeout,
        )
        result = response.get("result", {})
        return result.get("id") if isinstance(result, dict) else None

    def update_cell_as_hyperlink(self, sheet_id: Any, row_id: Any, column_id: Any, url: str) -> None:
        body = [
            {
                "id": row_id,
                "cells": [{"columnId": column_id, "value": FALLBACK_LINK_TEXT, "hyperlink": {"url": url}}],
            }
        ]
        self._request("PUT", f"/sheets/{sheet_id}/rows", json=body)
