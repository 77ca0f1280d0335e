#!/usr/bin/env python3
"""Generate noisy sample workbooks for manual and performance testing.

Each sheet looks like a real-world export rather than a clean table:
- Row 1: report title, row 2: blank
- Row 3: header row (the transfer must detect it)
- Data rows with IMAGE() / HYPERLINK() formulas in some cells

The workbook can be used directly as an ``xlsx`` source in config/transfer.yml.
"""
from __future__ import annotations

import argparse
import string
import sys
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

HEADERS = ["Name", "SKU", "Quantity", "Unit Price", "Order Date", "Status", "Photo", "Product Link"]
STATUSES = ["Open", "Shipped", "Delivered", "Cancelled", "Backorder"]
_ID_ALPHABET = list(string.ascii_letters + string.digits + "-_")


def _file_id(rng: np.random.Generator) -> str:
    # 33-character storage ids, like the ones inserted images point to
    return "1" + "".join(rng.choice(_ID_ALPHABET, 32))


def generate_rows(rows: int, rng: np.random.Generator, image_ratio: float = 0.3) -> list[list[Any]]:
    """Generate data rows; roughly ``image_ratio`` of them carry an image formula."""
    dates = pd.date_range("2024-01-01", "2024-12-31", periods=120)
    data: list[list[Any]] = []
    for i in range(rows):
        photo: Any = ""
        if rng.random() < image_ratio:
            photo = f'=IMAGE("https://drive.google.com/file/d/{_file_id(rng)}/view")'
        link = f'=HYPERLINK("https://shop.example.com/items/{i + 1}","item {i + 1}")'
        data.append(
            [
                f"Item {rng.integers(1000, 9999)}",
                f"SKU-{i + 1:06d}",
                int(rng.integers(1, 500)),
                round(float(rng.uniform(0.5, 999.99)), 2),
                pd.Timestamp(rng.choice(dates)).strftime("%Y-%m-%d"),
                str(rng.choice(STATUSES)),
                photo,
                link,
            ]
        )
    return data


def create_workbook(
    output_path: Path,
    rows: int,
    sheets: list[str] | None = None,
    title: str = "Monthly Order Export",
    seed: int = 42,
    image_ratio: float = 0.3,
) -> None:
    if sheets is None:
        sheets = ["Orders"]
    rng = np.random.default_rng(seed)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    width = len(HEADERS)
    with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
        for sheet_name in sheets:
            sheet_data: list[list[Any]] = [
                [title] + [""] * (width - 1),
                [""] * width,
                list(HEADERS),
            ]
            sheet_data.extend(generate_rows(rows, rng, image_ratio))
            pd.DataFrame(sheet_data).to_excel(writer, sheet_name=sheet_name, header=False, index=False)

    print(f"Created workbook: {output_path}")
    print(f"  Sheets: {len(sheets)} ({', '.join(sheets)})")
    print(f"  Rows per sheet: {rows} (header on row 3)")


def main() -> int:
    parser = argparse.ArgumentParser(description="Generate noisy sample workbooks for sheet transfer")
    parser.add_argument("output", type=Path, help="Output .xlsx path")
    parser.add_argument("--rows", type=int, default=500, help="Data rows per sheet (default: 500)")
    parser.add_argument("--sheets", nargs="+", default=["Orders"], help="Sheet names (default: Orders)")
    parser.add_argument("--title", default="Monthly Order Export", help="Title row text")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    parser.add_argument("--image-ratio", type=float, default=0.3, help="Share of rows with an image (default: 0.3)")
    args = parser.parse_args()

    if args.rows <= 0:
        print("Error: --rows must be positive", file=sys.stderr)
        return 1
    if not 0.0 <= args.image_ratio <= 1.0:
        print("Error: --image-ratio must be between 0 and 1", file=sys.stderr)
        return 1

    create_workbook(args.output, args.rows, args.sheets, args.title, args.seed, args.image_ratio)
    return 0


if __name__ == "__main__":
    sys.exit(main())
