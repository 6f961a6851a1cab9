"""Turn transcribed text into parsed rows using the confirmed columns.

Used for manual text and CSV intake. Rows have the same shape an
extraction backend reports::

    {"row_index": 0, "columns": {"owner_name": "John Smith", ...},
     "confidence": 0.5, "raw_text": "John Smith   1860"}

Column keys are the column's data type when that type is known and used by
only one column, otherwise its header or ``"Column N"``.
"""
from __future__ import annotations

import csv
import io
import logging
import re
from collections import Counter
from typing import Any

from .models import Column, ColumnDataType

logger = logging.getLogger(__name__)

ILLEGIBLE_MARKERS = ("illegible", "[?]", "???", "[unclear]")

_CELL_SPLIT = re.compile(r"\s{2,}|\t")


def column_keys(columns: list[Column]) -> list[str]:
    counts = Counter(c.data_type for c in columns)
    keys = []
    for column in columns:
        if column.data_type != ColumnDataType.UNKNOWN and counts[column.data_type] == 1:
            keys.append(column.data_type.value)
        else:
            keys.append(column.header_guess or f"Column {column.position}")
    return keys


def is_illegible(row: dict[str, Any]) -> bool:
    if row.get("illegible"):
        return True
    values = row.get("columns") if isinstance(row.get("columns"), dict) else row
    for value in values.values():
        if isinstance(value, str) and any(m in value.lower() for m in ILLEGIBLE_MARKERS):
            return True
    return False


def _is_header_line(cells: list[str], columns: list[Column]) -> bool:
    headers = {(c.header_guess or "").strip().lower() for c in columns if c.header_guess}
    return bool(headers) and any(cell.strip().lower() in headers for cell in cells)


def _row_from_cells(index: int, cells: list[str], columns: list[Column], keys: list[str], raw: str) -> dict[str, Any]:
    values = {keys[i]: cells[i] for i in range(min(len(cells), len(columns))) if cells[i]}
    row: dict[str, Any] = {
        "row_index": index,
        "columns": values,
        "confidence": round(len(values) / len(columns), 2),
        "raw_text": raw,
    }
    if is_illegible(row):
        row["illegible"] = True
    return row


def _split_rows(text: str, as_csv: bool) -> list[tuple[list[str], str]]:
    if as_csv:
        reader = csv.reader(io.StringIO(text))
        return [([c.strip() for c in record], ",".join(record)) for record in reader if any(c.strip() for c in record)]
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    return [([c.strip() for c in _CELL_SPLIT.split(line) if c.strip()], line) for line in lines]


def parse_rows(text: str, columns: list[Column], as_csv: bool = False) -> list[dict[str, Any]]:
    """Split ``text`` into rows and assign cells to columns left to right.

    Cells are separated by two or more spaces or a tab (or by commas when
    ``as_csv``). A first line that repeats a known header is skipped.
    Confidence is the share of columns that received a value.
    """
    if not text or not text.strip():
        return []
    if not columns:
        logger.warning("No columns defined for parsing")
        return []

    ordered = sorted(columns, key=lambda c: c.position)
    keys = column_keys(ordered)
    rows: list[dict[str, Any]] = []
    for i, (cells, raw) in enumerate(_split_rows(text, as_csv)):
        if i == 0 and _is_header_line(cells, ordered):
            continue
        row = _row_from_cells(len(rows), cells, ordered, keys, raw)
        if row["columns"]:
            rows.append(row)
    logger.debug(f"Parsed {len(rows)} rows across {len(ordered)} columns")
    return rows
