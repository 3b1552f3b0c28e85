#!/usr/bin/env python3
"""
csv_tables.py — Header-driven CSV reading for the game datasets

The board and the card decks are authored as spreadsheets and exported as
delimited text. This module turns such text into a list of row dicts keyed by
the (trimmed) header names.

Supported:
- quoted fields containing the delimiter, doubled quotes as escapes
- delimiter guessing among  , TAB | ;
- whitespace trimming of headers and values
- skipping blank lines
- dynamic typing: integers, floats and true/false become Python values,
  empty cells become ""

by Sziller
"""

from __future__ import annotations

import csv
import io
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence, TypedDict

from errors import DataIntegrityError


CANDIDATE_DELIMITERS = ",\t|;"

_NUMBER_RE = re.compile(r"^-?\d*\.?\d+$")


class ParsedTableTD(TypedDict):
    fields: List[str]
    rows: List[Dict[str, Any]]


# -----------------------------
# Cell typing
# -----------------------------
def coerce_value(value: str) -> Any:
    """
    Convert a raw cell into int / float / bool when it unambiguously is one.
    Anything else is returned trimmed.
    """
    s = value.strip()
    if not s:
        return ""

    if _NUMBER_RE.match(s):
        if "." in s:
            return float(s)
        return int(s)

    low = s.lower()
    if low == "true":
        return True
    if low == "false":
        return False

    return s


def guess_delimiter(text: str) -> str:
    """Pick the delimiter from the header line; defaults to comma."""
    first_line = next((ln for ln in text.splitlines() if ln.strip()), "")
    try:
        dialect = csv.Sniffer().sniff(first_line, delimiters=CANDIDATE_DELIMITERS)
        return dialect.delimiter
    except csv.Error:
        counts = {d: first_line.count(d) for d in CANDIDATE_DELIMITERS}
        best = max(counts, key=lambda d: counts[d])
        return best if counts[best] > 0 else ","


# -----------------------------
# Parsing
# -----------------------------
def parse_csv_text(
    text: str,
    *,
    dynamic_typing: bool = True,
    delimiter: str | None = None,
) -> ParsedTableTD:
    """
    Parse delimited text with a header row into row dicts.

    Rows shorter than the header are padded with "" ; extra cells beyond the
    header are dropped.
    """
    if not text or not text.strip():
        return {"fields": [], "rows": []}

    delim = delimiter or guess_delimiter(text)
    reader = csv.reader(io.StringIO(text), delimiter=delim, quotechar='"', doublequote=True)

    header: List[str] | None = None
    rows: List[Dict[str, Any]] = []

    for raw in reader:
        if not raw or all(not cell.strip() for cell in raw):
            continue

        if header is None:
            header = [h.strip() for h in raw]
            continue

        row: Dict[str, Any] = {}
        for i, name in enumerate(header):
            if not name:
                continue
            cell = raw[i] if i < len(raw) else ""
            row[name] = coerce_value(cell) if dynamic_typing else cell.strip()
        rows.append(row)

    return {"fields": [h for h in (header or []) if h], "rows": rows}


def require_columns(table: ParsedTableTD, required: Sequence[str], *, source: str) -> None:
    """Raise DataIntegrityError listing every required column that is missing."""
    present = set(table["fields"])
    missing = [c for c in required if c not in present]
    if missing:
        raise DataIntegrityError(f"{source}: missing columns: {', '.join(missing)}")


def read_csv_file(path: Path, *, required: Iterable[str] = ()) -> ParsedTableTD:
    """
    Read and parse a CSV file from disk.
    Unreadable files and missing required columns raise DataIntegrityError.
    """
    try:
        text = path.read_text(encoding="utf-8-sig")
    except FileNotFoundError as exc:
        raise DataIntegrityError(f"Dataset not found: {path}") from exc
    except OSError as exc:
        raise DataIntegrityError(f"Unable to read dataset: {path}") from exc

    try:
        table = parse_csv_text(text)
    except csv.Error as exc:
        raise DataIntegrityError(f"Malformed CSV in {path}: {exc}") from exc

    required = list(required)
    if required:
        require_columns(table, required, source=path.name)
    return table


def cell_text(row: Dict[str, Any], column: str) -> str:
    """Return a cell as trimmed text ("" when missing); numbers are stringified."""
    v = row.get(column, "")
    if v is None:
        return ""
    if isinstance(v, bool):
        return "true" if v else "false"
    return str(v).strip()
