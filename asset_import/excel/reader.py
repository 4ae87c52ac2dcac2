from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable
from dataclasses import dataclass, field
from io import BytesIO
from typing import Any

import numpy as np
import pandas as pd

"""Workbook reader for the asset import template.

The first row of every sheet is the header row; data starts on the second
row. Header cells are normalized to keys (lowercase, accents stripped,
non-alphanumerics collapsed to '_'), so "Código del activo" becomes
"codigo_del_activo" and "Asset Tag" becomes "asset_tag".

Row numbers are reported as a human sees them in the spreadsheet: the header
is row 1, the first data row is row 2. Blank rows are skipped but still
consume a row number.
"""

__all__ = [
    "WorkbookReadError",
    "HeaderCell",
    "SheetRow",
    "SheetData",
    "normalize_header_key",
    "read_workbook",
    "extract_sheet",
]

_NON_ALNUM = re.compile(r"[^0-9a-zA-Z]+")


class WorkbookReadError(Exception):
    """Raised when the payload is not a readable spreadsheet."""


@dataclass(frozen=True)
class HeaderCell:
    index: int
    original: str
    key: str | None


@dataclass(frozen=True)
class SheetRow:
    row_number: int
    values: dict[str, Any]


@dataclass
class SheetData:
    sheet_name: str
    present: bool
    headers: list[HeaderCell] = field(default_factory=list)
    rows: list[SheetRow] = field(default_factory=list)

    @property
    def header_keys(self) -> set[str]:
        return {h.key for h in self.headers if h.key}


def normalize_header_key(value: Any) -> str | None:
    if _is_blank_cell(value):
        return None
    raw = str(value).strip()
    decomposed = unicodedata.normalize("NFKD", raw)
    without_marks = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    key = _NON_ALNUM.sub("_", without_marks).strip("_").lower()
    return key or None


def _is_blank_cell(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _clean_cell(value: Any) -> Any:
    """Convert a raw pandas cell into a plain Python value (None for blanks)."""
    if _is_blank_cell(value):
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, np.generic):
        return value.item()
    return value


def read_workbook(payload: bytes, target_sheets: Iterable[str] | None = None) -> dict[str, pd.DataFrame]:
    """Parse a workbook binary into raw DataFrames keyed by sheet name.

    Parameters
    ----------
    payload: workbook bytes (.xlsx)
    target_sheets: restrict to these sheet names (None reads every sheet)

    Cells are read with dtype=object and without pandas' default NA strings so
    that values such as "NA" or "N/A" survive as text.
    """
    if not payload:
        raise WorkbookReadError("empty workbook payload")
    wanted = set(target_sheets) if target_sheets is not None else None
    try:
        xls = pd.ExcelFile(BytesIO(payload))
        frames: dict[str, pd.DataFrame] = {}
        for name in xls.sheet_names:
            if wanted is not None and str(name) not in wanted:
                continue
            frames[str(name)] = xls.parse(name, header=None, dtype=object, keep_default_na=False)
    except Exception as e:
        raise WorkbookReadError(f"unreadable workbook: {e}") from e
    return frames


def extract_sheet(frames: dict[str, pd.DataFrame], sheet_name: str) -> SheetData:
    """Turn one raw DataFrame into header cells and numbered row records."""
    df = frames.get(sheet_name)
    if df is None:
        return SheetData(sheet_name=sheet_name, present=False)
    if df.shape[0] == 0:
        return SheetData(sheet_name=sheet_name, present=True)

    headers = [
        HeaderCell(
            index=idx,
            original="" if _is_blank_cell(val) else str(val).strip(),
            key=normalize_header_key(val),
        )
        for idx, val in enumerate(df.iloc[0].tolist())
    ]

    rows: list[SheetRow] = []
    for position, raw in enumerate(df.iloc[1:].itertuples(index=False, name=None)):
        cells = [_clean_cell(v) for v in raw]
        if all(c is None for c in cells):
            continue
        record: dict[str, Any] = {}
        for header in headers:
            if not header.key:
                continue
            record[header.key] = cells[header.index] if header.index < len(cells) else None
        rows.append(SheetRow(row_number=position + 2, values=record))

    return SheetData(sheet_name=sheet_name, present=True, headers=headers, rows=rows)
