from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from fill_engine import stringify_cell
from template_model import Sheet


@dataclass
class SearchResult:
    rows: list[list[Any]] = field(default_factory=list)
    visible: bool = False


def row_matches(row: list[Any], needle: str) -> bool:
    return any(needle in stringify_cell(cell).casefold() for cell in row)


def search_rows(rows: list[list[Any]], term: str) -> SearchResult:
    """Rows with any cell containing ``term`` (case-insensitive), in sheet order.

    A blank term is "no search" and is never visible, even though every row
    would technically match it.
    """
    if not term or not term.strip():
        return SearchResult()
    needle = term.casefold()
    return SearchResult(rows=[row for row in rows if row_matches(row, needle)], visible=True)


def search(sheet: Sheet, term: str) -> SearchResult:
    return search_rows(sheet.rows, term)
