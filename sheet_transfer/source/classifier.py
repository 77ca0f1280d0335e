from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from typing import Any

from ..models.cells import ImageRef, RawCell, RichCellMetadata, SourceCell

"""Cell classification: image reference, hyperlink, or plain value.

Rules, first match wins:
1. IMAGE(...) formula, or HYPERLINK(..., IMAGE(...)) formula → image
2. HYPERLINK formula whose target is a storage "file" URL → image
3. HYPERLINK formula → hyperlink
4. rich-cell hyperlink pointing at a storage image URL → image
5. raw value holding a storage file URL or a bare storage file id → image
   (a rich-cell hyperlink that is not an image becomes a plain hyperlink here)
6. plain value

The classifier never raises: anything unexpected degrades to a plain value.
"""

__all__ = [
    "classify_cell",
    "classify_row",
    "extract_storage_file_id",
    "is_storage_file_url",
    "is_storage_image_url",
    "storage_view_url",
]

logger = logging.getLogger(__name__)

_IMAGE_FORMULA_RE = re.compile(r'=\s*IMAGE\s*\(\s*"([^"]+)"[^)]*\)', re.IGNORECASE)
_HYPERLINK_IMAGE_FORMULA_RE = re.compile(
    r'=\s*HYPERLINK\s*\([^,]+,\s*IMAGE\s*\(\s*"([^"]+)"[^)]*\)\s*\)', re.IGNORECASE
)
_HYPERLINK_FORMULA_RE = re.compile(r'=\s*HYPERLINK\s*\(\s*"([^"]+)"[^)]*\)', re.IGNORECASE)
_IMAGE_CALL_RE = re.compile(r"\bIMAGE\s*\(", re.IGNORECASE)

# /file/d/<id> (any host) or ?id=<id> / &id=<id>
_STORAGE_FILE_ID_RE = re.compile(r"(?:/file/d/|[?&]id=)([A-Za-z0-9_-]+)")
_STORAGE_FILE_URL_RE = re.compile(r"/file/d/[A-Za-z0-9_-]+|/open\?(?:[^#\s]*&)?id=[A-Za-z0-9_-]+")
_URL_IN_TEXT_RE = re.compile(r"https?://[^\s\"'<>]+")
_IMAGE_HOST_RE = re.compile(r"^https?://lh\d*\.googleusercontent\.com/", re.IGNORECASE)
_IMAGE_EXT_RE = re.compile(r"\.(png|jpe?g|gif|webp|bmp|svg|tiff?|heic)(\?.*)?$", re.IGNORECASE)
_UC_DOWNLOAD_RE = re.compile(r"/uc\?(?:[^#\s]*&)?id=[A-Za-z0-9_-]+")
# Storage file ids are fixed-length opaque tokens (33 chars current, 44 legacy)
_BARE_FILE_ID_RE = re.compile(r"^(?=.*\d)(?=.*[A-Za-z])(?:[A-Za-z0-9_-]{33}|[A-Za-z0-9_-]{44})$")


def extract_storage_file_id(url: str) -> str | None:
    match = _STORAGE_FILE_ID_RE.search(url)
    return match.group(1) if match else None


def is_storage_file_url(url: str) -> bool:
    """True for storage "file" links (``/file/d/<id>`` or ``open?id=<id>``)."""
    return bool(_STORAGE_FILE_URL_RE.search(url))


def is_storage_image_url(url: str) -> bool:
    """True for URLs that resolve to image bytes held by the storage provider."""
    return bool(
        is_storage_file_url(url)
        or _UC_DOWNLOAD_RE.search(url)
        or _IMAGE_HOST_RE.match(url)
        or _IMAGE_EXT_RE.search(url)
    )


def storage_view_url(file_id: str) -> str:
    return f"https://drive.google.com/file/d/{file_id}/view"


def _image_cell(value: Any, formula: str | None, url: str) -> SourceCell:
    return SourceCell(
        value=value,
        formula=formula,
        is_image=True,
        image_ref=ImageRef(url=url, source_id=extract_storage_file_id(url)),
    )


def _classify(value: Any, formula: str | None, rich: RichCellMetadata | None) -> SourceCell:
    if rich is not None and rich.display_text:
        value = rich.display_text
    if value is None:
        value = ""
    if formula is not None and (not isinstance(formula, str) or formula == value or not formula.strip()):
        formula = None

    if formula:
        match = _IMAGE_FORMULA_RE.search(formula) or _HYPERLINK_IMAGE_FORMULA_RE.search(formula)
        if match:
            return _image_cell(value, formula, match.group(1))

        link = _HYPERLINK_FORMULA_RE.search(formula)
        if link and not _IMAGE_CALL_RE.search(formula):
            target = link.group(1)
            if is_storage_file_url(target):
                return _image_cell(value, formula, target)
            return SourceCell(value=value, formula=formula, hyperlink=target)

    rich_link = rich.hyperlink if rich is not None else None
    if rich_link and is_storage_image_url(rich_link):
        return _image_cell(value, formula, rich_link)

    if isinstance(value, str):
        text = value.strip()
        for url in _URL_IN_TEXT_RE.findall(text):
            if extract_storage_file_id(url) and is_storage_image_url(url):
                return _image_cell(value, formula, url)
        if _BARE_FILE_ID_RE.match(text):
            return SourceCell(
                value=value,
                formula=formula,
                is_image=True,
                image_ref=ImageRef(url=storage_view_url(text), source_id=text),
            )

    if rich_link:
        return SourceCell(value=value, formula=formula, hyperlink=rich_link)

    return SourceCell(value=value, formula=formula)


def classify_cell(
    value: Any,
    formula: str | None = None,
    rich: RichCellMetadata | None = None,
) -> SourceCell:
    """Classify one source cell. Never raises."""
    try:
        return _classify(value, formula, rich)
    except Exception as e:  # pragma: no cover - regexes on str only
        logger.debug(f"cell classification degraded to plain value: {e}")
        return SourceCell(value="" if value is None else value)


def classify_row(raw_cells: Sequence[RawCell | None], width: int) -> list[SourceCell]:
    """Classify a row, padding (or trimming) it to exactly ``width`` cells."""
    row: list[SourceCell] = []
    for index in range(width):
        raw = raw_cells[index] if index < len(raw_cells) else None
        if raw is None:
            row.append(SourceCell(value=""))
        else:
            row.append(classify_cell(raw.value, raw.formula, raw.rich))
    return row
