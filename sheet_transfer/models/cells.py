from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

"""Source cell models for the sheet transfer engine.

A RawCell is what a source reader hands back (formatted value, formula, rich
metadata). The classifier turns each RawCell into an immutable SourceCell that
is exactly one of: image reference, hyperlink, or plain value.
"""

__all__ = [
    "CellKind",
    "ImageRef",
    "RawCell",
    "RichCellMetadata",
    "SourceCell",
]


class CellKind(Enum):
    """Classification result for a single source cell."""
    IMAGE = "image"
    HYPERLINK = "hyperlink"
    PLAIN = "plain"


@dataclass(frozen=True)
class RichCellMetadata:
    """Optional per-cell metadata exposed by the source grid API."""
    hyperlink: str | None = None  # link target attached to the cell (non-formula)
    display_text: str | None = None  # override text shown instead of the raw value


@dataclass(frozen=True)
class RawCell:
    """Cell as returned by a SourceReader before classification."""
    value: Any = ""
    formula: str | None = None
    rich: RichCellMetadata | None = None


@dataclass(frozen=True)
class ImageRef:
    url: str
    source_id: str | None = None  # storage file id when the URL has a known shape


@dataclass(frozen=True)
class SourceCell:
    """Classified source cell.

    Attributes:
        value: formatted text/number, "" for empty cells
        formula: formula string if the cell had one that differs from the value
        is_image: True when the cell references an image
        image_ref: image URL and optional storage file id (only when is_image)
        hyperlink: link target (only for hyperlink cells)
    """
    value: Any = ""
    formula: str | None = None
    is_image: bool = False
    image_ref: ImageRef | None = None
    hyperlink: str | None = None

    def __post_init__(self) -> None:
        if self.is_image and self.hyperlink is not None:
            raise ValueError("a cell cannot be both an image and a hyperlink")
        if self.is_image != (self.image_ref is not None):
            raise ValueError("image_ref must be set exactly when is_image is True")

    @property
    def kind(self) -> CellKind:
        if self.is_image:
            return CellKind.IMAGE
        if self.hyperlink is not None:
            return CellKind.HYPERLINK
        return CellKind.PLAIN

    @property
    def is_empty(self) -> bool:
        return not self.is_image and self.hyperlink is None and (
            self.value is None or (isinstance(self.value, str) and self.value.strip() == "")
        )
