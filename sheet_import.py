"""Turn uploaded spreadsheet bytes into :class:`Sheet` objects.

The format is sniffed from the content: xlsx workbooks are ZIP archives,
legacy xls workbooks are OLE2 compound files, anything else must be UTF-8
text and is read as CSV. Header cells are kept exactly as written, so
duplicate names survive and only the first positional match is used when
binding fields to columns.
"""

from __future__ import annotations

import csv
import io
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any

import pandas as pd

from errors import ParseError
from template_model import Sheet

logger = logging.getLogger(__name__)

ACCEPTED_EXTENSIONS = (".xlsx", ".xls", ".csv")

_ZIP_MAGIC = b"PK\x03\x04"
_OLE2_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"


def filename_accepted(filename: str | None) -> bool:
    return Path(filename or "").suffix.lower() in ACCEPTED_EXTENSIONS


def normalize_cell(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    if isinstance(value, (pd.Timestamp, datetime, date)):
        return value.isoformat()
    if hasattr(value, "item"):
        # numpy scalar
        value = value.item()
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _trim_row(values: list[Any]) -> list[Any]:
    row = [normalize_cell(v) for v in values]
    while row and (row[-1] is None or row[-1] == ""):
        row.pop()
    return row


def _build_sheet(name: str, raw_rows: list[list[Any]]) -> Sheet | None:
    if not raw_rows:
        return None
    header = _trim_row(raw_rows[0])
    if not header:
        return None
    columns = ["" if v is None else str(v) for v in header]
    rows = [_trim_row(r) for r in raw_rows[1:]]
    return Sheet(name=name, columns=columns, rows=rows)


def _read_excel(data: bytes) -> list[Sheet]:
    try:
        xls = pd.ExcelFile(io.BytesIO(data))
    except Exception as exc:
        raise ParseError(f"Unreadable workbook: {exc}") from exc

    sheets: list[Sheet] = []
    for name in xls.sheet_names:
        try:
            df = xls.parse(name, header=None, dtype=object)
        except Exception as exc:
            raise ParseError(f"Unreadable sheet {name!r}: {exc}") from exc
        sheet = _build_sheet(str(name), df.values.tolist())
        if sheet is None:
            logger.info("Skipping sheet %r: empty header row", name)
            continue
        sheets.append(sheet)
    return sheets


def _read_csv(data: bytes) -> list[Sheet]:
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ParseError("File is neither a workbook nor UTF-8 CSV text.") from exc
    if "\x00" in text:
        raise ParseError("File is neither a workbook nor UTF-8 CSV text.")
    try:
        raw_rows = [list(r) for r in csv.reader(io.StringIO(text, newline=""))]
    except csv.Error as exc:
        raise ParseError(f"Malformed CSV: {exc}") from exc
    sheet = _build_sheet("Sheet1", raw_rows)
    return [sheet] if sheet is not None else []


def parse_workbook(data: bytes) -> list[Sheet]:
    """Parse every usable sheet in ``data``; raises ParseError on junk input."""
    if not data:
        raise ParseError("Uploaded file is empty.")
    if data.startswith(_ZIP_MAGIC) or data.startswith(_OLE2_MAGIC):
        sheets = _read_excel(data)
    else:
        sheets = _read_csv(data)
    logger.info("Parsed %d sheet(s): %s", len(sheets), [s.name for s in sheets])
    return sheets


def auto_select(sheets: list[Sheet]) -> Sheet | None:
    """The only sheet when exactly one was parsed; otherwise the caller asks."""
    return sheets[0] if len(sheets) == 1 else None
