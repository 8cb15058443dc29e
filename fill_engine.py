"""Field values for certificate generation.

Fill-state maps ``element_<field id>`` to the text currently shown for that
field. It starts from each field's literal text and is changed by manual
edits or by applying a spreadsheet row. Applying a row merges: a field whose
mapped cell is empty keeps whatever value it already had.
"""

from __future__ import annotations

from typing import Any

from template_model import CanvasData, Sheet, TemplateField

FillState = dict[str, str]


def field_key(field: TemplateField | str) -> str:
    field_id = field if isinstance(field, str) else field.id
    return f"element_{field_id}"


def stringify_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def seed_fill_state(canvas: CanvasData) -> FillState:
    return {field_key(field): field.text or "" for field in canvas.elements}


def compute_display(field: TemplateField, fill_state: FillState) -> str:
    value = fill_state.get(field_key(field))
    if value:
        return value
    return field.text or ""


def set_value(fill_state: FillState, field_id: str, value: str) -> FillState:
    updated = dict(fill_state)
    updated[field_key(field_id)] = value
    return updated


def column_index(columns: list[str], name: str) -> int:
    """First positional match of ``name`` in ``columns``, or -1."""
    try:
        return columns.index(name)
    except ValueError:
        return -1


def apply_row(
    canvas: CanvasData,
    row: list[Any],
    columns: list[str],
    fill_state: FillState,
) -> FillState:
    updated = dict(fill_state)
    for field in canvas.elements:
        if not field.mapped_column:
            continue
        idx = column_index(columns, field.mapped_column)
        if idx < 0:
            continue
        value = stringify_cell(Sheet.cell(row, idx))
        if value:
            updated[field_key(field)] = value
    return updated
