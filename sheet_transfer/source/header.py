from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

"""Header row detection.

Spreadsheets handed to the transfer tool rarely start with the header on row 1:
title banners, notes and blank rows come first. This module scores each of the
first rows as a header candidate and returns the best one.

The detector is a pure function of its input (no I/O, no randomness) and never
raises; when nothing looks like a header it falls back to generic
``Column N`` labels sized to the widest row.
"""

__all__ = [
    "DEFAULT_SCAN_ROWS",
    "HEADER_VOCABULARY",
    "HeaderDetection",
    "clean_header_row",
    "detect_header_row",
    "generic_label",
    "is_generic_label",
    "score_header_row",
]

DEFAULT_SCAN_ROWS = 10

_GENERIC_RE = re.compile(r"^Column \d+$")

# 見出しではない内容 (数値のみ / セル参照 / ページ番号 / 集計行 / 注記)
_NON_HEADER_PATTERNS = [
    re.compile(r"^\d+$"),
    re.compile(r"^[A-Z]{1,2}\d+$"),
    re.compile(r"^Page \d+", re.IGNORECASE),
    re.compile(r"^(Grand\s+)?(Total|Subtotal|Sum|Average)\s*[:=]", re.IGNORECASE),
    re.compile(r"^(Total|Subtotal|Sum|Average)\s+[-+$€£]?\d", re.IGNORECASE),
    re.compile(r"^Notes?:", re.IGNORECASE),
]

_NUMERIC_RE = re.compile(r"^[-+]?[$€£¥]?\s?\d[\d,]*(\.\d+)?%?$|^[-+]?\.\d+%?$")
_DATE_RES = [
    re.compile(r"^\d{4}-\d{1,2}-\d{1,2}([ T]\d{1,2}:\d{2}(:\d{2})?)?"),
    re.compile(r"^\d{1,2}[/.-]\d{1,2}[/.-]\d{2,4}$"),
    re.compile(
        r"^(jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\.? \d{1,2},? \d{4}$",
        re.IGNORECASE,
    ),
]

# Vocabulary grouped by domain; a label scores when it contains any word as a
# standalone token (letters on either side break the match, "_" does not).
HEADER_VOCABULARY: dict[str, tuple[str, ...]] = {
    "identity": ("id", "name", "title", "code", "sku", "reference", "ref", "number", "no", "key"),
    "descriptive": ("description", "type", "category", "group", "class", "comment", "note", "notes", "tag", "label"),
    "temporal": ("date", "time", "created", "updated", "modified", "due", "start", "end", "year", "month"),
    "status": ("status", "state", "stage", "priority", "owner", "assignee", "approved"),
    "financial": ("amount", "price", "cost", "total", "balance", "tax", "fee", "rate", "budget", "currency"),
    "inventory": ("quantity", "qty", "item", "product", "service", "unit", "stock", "weight", "size", "color"),
    "contact": ("email", "phone", "contact", "address", "city", "state", "country", "zip", "postal", "company"),
    "organisation": ("department", "location", "region", "team", "project", "customer", "vendor", "supplier"),
    "media": ("image", "photo", "picture", "link", "url", "file", "attachment"),
}


def _vocabulary_pattern(vocabulary: Mapping[str, Sequence[str]]) -> re.Pattern[str]:
    words = sorted({w.lower() for group in vocabulary.values() for w in group}, key=len, reverse=True)
    return re.compile(r"(?<![a-z])(" + "|".join(re.escape(w) for w in words) + r")(?![a-z])", re.IGNORECASE)


_DEFAULT_VOCABULARY_RE = _vocabulary_pattern(HEADER_VOCABULARY)


@dataclass(frozen=True)
class HeaderDetection:
    headers: list[str]
    row_index: int  # 0-based within the scanned rows
    score: int = 0


def generic_label(index: int) -> str:
    """Placeholder label for 0-based column ``index``."""
    return f"Column {index + 1}"


def is_generic_label(label: str) -> bool:
    return bool(_GENERIC_RE.match(label))


def _is_numeric_text(text: str) -> bool:
    return bool(_NUMERIC_RE.match(text.strip()))


def _is_date_text(text: str) -> bool:
    stripped = text.strip()
    return any(p.match(stripped) for p in _DATE_RES)


def _is_numeric_cell(cell: Any) -> bool:
    if isinstance(cell, bool):
        return False
    if isinstance(cell, (int, float)):
        return True
    return isinstance(cell, str) and _is_numeric_text(cell)


def _is_non_header_content(text: str) -> bool:
    if not text:
        return True
    return any(p.search(text) for p in _NON_HEADER_PATTERNS)


def clean_header_row(row: Sequence[Any]) -> list[str]:
    """Map each cell to its label or a generic ``Column N`` placeholder."""
    labels: list[str] = []
    for index, cell in enumerate(row):
        if not isinstance(cell, str):
            labels.append(generic_label(index))
            continue
        cleaned = cell.strip()
        if _is_non_header_content(cleaned):
            labels.append(generic_label(index))
        else:
            labels.append(cleaned)
    return labels


def _has_type_shift(labels: Sequence[str], next_row: Sequence[Any] | None) -> bool:
    if not next_row:
        return False
    for index, label in enumerate(labels):
        if is_generic_label(label) or index >= len(next_row):
            continue
        if _is_numeric_text(label) or _is_date_text(label):
            continue
        if _is_numeric_cell(next_row[index]):
            return True
    return False


def score_header_row(
    labels: Sequence[str],
    next_row: Sequence[Any] | None = None,
    *,
    vocabulary_re: re.Pattern[str] | None = None,
) -> int:
    """Score cleaned ``labels`` as a header candidate.

    ``next_row`` is the raw row directly below, used for the type-shift bonus
    (textual label above a numeric value).
    """
    vocab = vocabulary_re or _DEFAULT_VOCABULARY_RE
    non_generic = [label for label in labels if not is_generic_label(label)]
    score = 2 * len(non_generic)

    for label in non_generic:
        if 2 <= len(label) <= 30:
            score += 1
        if len(label) > 50:
            score -= 2
        if vocab.search(label):
            score += 3

    if _has_type_shift(labels, next_row):
        score += 3

    if labels and len(non_generic) / len(labels) >= 0.7:
        score += 3

    if 3 <= len(labels) <= 50:
        score += 2

    if non_generic and all(_is_numeric_text(label) or _is_date_text(label) for label in non_generic):
        score -= 10

    return score


def detect_header_row(
    rows: Sequence[Sequence[Any]],
    max_rows: int = DEFAULT_SCAN_ROWS,
    *,
    extra_vocabulary: Mapping[str, Sequence[str]] | None = None,
) -> HeaderDetection:
    """Pick the most header-like row among the first ``max_rows`` rows.

    Ties keep the lowest index. If no row scores above zero, generic labels
    are synthesised from the widest scanned row and ``row_index`` is 0.
    """
    candidates = [list(r or []) for r in list(rows)[:max_rows]]
    vocabulary_re = None
    if extra_vocabulary:
        merged: dict[str, tuple[str, ...]] = dict(HEADER_VOCABULARY)
        for group, words in extra_vocabulary.items():
            merged[group] = tuple(merged.get(group, ())) + tuple(words)
        vocabulary_re = _vocabulary_pattern(merged)

    best: HeaderDetection | None = None
    for index, row in enumerate(candidates):
        labels = clean_header_row(row)
        next_row = candidates[index + 1] if index + 1 < len(candidates) else None
        score = score_header_row(labels, next_row, vocabulary_re=vocabulary_re)
        if best is None or score > best.score:
            best = HeaderDetection(headers=labels, row_index=index, score=score)

    if best is None:
        return HeaderDetection(headers=[], row_index=0, score=0)

    if best.score <= 0:
        width = max(len(r) for r in candidates)
        return HeaderDetection(
            headers=[generic_label(i) for i in range(width)], row_index=0, score=best.score
        )
    return best
