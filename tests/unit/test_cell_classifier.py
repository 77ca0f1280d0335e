from __future__ import annotations

import pytest

from sheet_transfer.models.cells import CellKind, ImageRef, RawCell, RichCellMetadata, SourceCell
from sheet_transfer.source.classifier import (
    classify_cell,
    classify_row,
    extract_storage_file_id,
    is_storage_file_url,
    is_storage_image_url,
    storage_view_url,
)

BARE_ID = "a1" * 16 + "b"  # 33 chars


def test_image_formula_yields_storage_id():
    cell = classify_cell("", '=IMAGE("https://storage.example/file/d/ABC123")')
    assert cell.is_image
    assert cell.image_ref == ImageRef(url="https://storage.example/file/d/ABC123", source_id="ABC123")
    assert cell.hyperlink is None
    assert cell.kind is CellKind.IMAGE


def test_image_formula_with_sizing_arguments():
    cell = classify_cell("", '=image("https://cdn.example/photos/a.jpg", 4, 100, 100)')
    assert cell.is_image
    assert cell.image_ref.url == "https://cdn.example/photos/a.jpg"
    assert cell.image_ref.source_id is None


def test_hyperlink_wrapping_image_is_an_image():
    formula = '=HYPERLINK("https://shop.example/item/1", IMAGE("https://img.example/item1.png"))'
    cell = classify_cell("", formula)
    assert cell.is_image
    assert cell.image_ref.url == "https://img.example/item1.png"
    assert cell.formula == formula


def test_hyperlink_to_storage_file_is_promoted_to_image():
    cell = classify_cell("photo", '=HYPERLINK("https://drive.google.com/file/d/XYZ789/view","photo")')
    assert cell.is_image
    assert cell.image_ref.source_id == "XYZ789"
    assert cell.value == "photo"


def test_plain_hyperlink_formula():
    cell = classify_cell("Docs", '=HYPERLINK("https://example.com/page","Docs")')
    assert not cell.is_image
    assert cell.hyperlink == "https://example.com/page"
    assert cell.kind is CellKind.HYPERLINK


def test_rich_link_to_image_host_is_image():
    rich = RichCellMetadata(hyperlink="https://lh3.googleusercontent.com/d/abc=w200")
    cell = classify_cell("thumb", None, rich)
    assert cell.is_image
    assert cell.image_ref.url == rich.hyperlink


def test_rich_link_to_image_extension_is_image():
    cell = classify_cell("pic", None, RichCellMetadata(hyperlink="https://cdn.example/a/b.PNG?v=2"))
    assert cell.is_image


def test_rich_link_to_page_is_hyperlink():
    cell = classify_cell("site", None, RichCellMetadata(hyperlink="https://example.com/about"))
    assert cell.hyperlink == "https://example.com/about"
    assert not cell.is_image


def test_rich_display_text_overrides_value():
    cell = classify_cell("raw", None, RichCellMetadata(display_text="Shown"))
    assert cell.value == "Shown"
    assert cell.kind is CellKind.PLAIN


def test_storage_url_in_plain_text_is_image():
    cell = classify_cell("see https://drive.google.com/file/d/FILEID123/view for details")
    assert cell.is_image
    assert cell.image_ref.source_id == "FILEID123"
    assert cell.image_ref.url == "https://drive.google.com/file/d/FILEID123/view"


def test_bare_storage_id_is_image():
    cell = classify_cell(BARE_ID)
    assert cell.is_image
    assert cell.image_ref == ImageRef(url=storage_view_url(BARE_ID), source_id=BARE_ID)


@pytest.mark.parametrize("value", ["x" * 33, "1" * 33, BARE_ID + "c", "Widget", 42, 3.5])
def test_plain_values(value):
    cell = classify_cell(value)
    assert cell.kind is CellKind.PLAIN
    assert cell.value == value
    assert cell.image_ref is None and cell.hyperlink is None


def test_none_value_becomes_empty_string():
    cell = classify_cell(None)
    assert cell.value == ""
    assert cell.is_empty


def test_formula_equal_to_value_is_dropped():
    assert classify_cell("=A1", "=A1").formula is None
    assert classify_cell("5", "   ").formula is None
    assert classify_cell("5", "=2+3").formula == "=2+3"


def test_classifications_are_mutually_exclusive():
    samples = [
        classify_cell("", '=IMAGE("https://img.example/a.png")'),
        classify_cell("x", '=HYPERLINK("https://example.com")'),
        classify_cell("plain"),
    ]
    for cell in samples:
        assert sum([cell.is_image, cell.hyperlink is not None]) <= 1


def test_source_cell_rejects_image_and_hyperlink():
    with pytest.raises(ValueError):
        SourceCell(is_image=True, image_ref=ImageRef(url="u"), hyperlink="h")
    with pytest.raises(ValueError):
        SourceCell(is_image=True)


def test_classify_row_pads_short_rows():
    row = classify_row([RawCell("a")], 3)
    assert [c.value for c in row] == ["a", "", ""]


def test_classify_row_trims_long_rows_and_handles_none():
    row = classify_row([RawCell("a"), None, RawCell("c"), RawCell("d")], 2)
    assert [c.value for c in row] == ["a", ""]


def test_classify_row_applies_rules_per_cell():
    raws = [RawCell("Bolt"), RawCell("", '=IMAGE("https://drive.google.com/file/d/ID42/view")')]
    row = classify_row(raws, 2)
    assert not row[0].is_image
    assert row[1].image_ref.source_id == "ID42"


def test_url_helpers():
    assert extract_storage_file_id("https://drive.google.com/open?id=QQ11") == "QQ11"
    assert extract_storage_file_id("https://example.com/x") is None
    assert is_storage_file_url("https://drive.google.com/open?usp=x&id=Z9")
    assert not is_storage_file_url("https://drive.google.com/uc?id=Z9")
    assert is_storage_image_url("https://drive.google.com/uc?export=view&id=Z9")
    assert not is_storage_image_url("https://example.com/page.html")
