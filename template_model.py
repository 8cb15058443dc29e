"""Certificate template data model.

A template is a canvas (size, background, ordered text fields) plus the
spreadsheet snapshot captured when it was saved. JSON uses camelCase names
(``fontSize``, ``mappedColumn``, ``canvasData``...), Python uses snake_case.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

CellValue = Any

DEFAULT_CANVAS_WIDTH = 800.0
DEFAULT_CANVAS_HEIGHT = 600.0


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )


class Sheet(CamelModel):
    name: str
    columns: list[str] = Field(default_factory=list)
    rows: list[list[CellValue]] = Field(default_factory=list)

    @staticmethod
    def cell(row: list[CellValue], index: int) -> CellValue:
        """Cell at ``index``; positions past the end of a short row read as ''."""
        if index < 0 or index >= len(row):
            return ""
        return row[index]


class TemplateField(CamelModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    text: str = "Sample Text"
    x: float = 50
    y: float = 50
    width: float = 200
    height: float = 40
    font_size: float = 16
    font_family: str = "Arial"
    color: str = "#000000"
    is_bold: bool = False
    is_italic: bool = False
    mapped_column: str | None = None


class CanvasData(CamelModel):
    width: float = DEFAULT_CANVAS_WIDTH
    height: float = DEFAULT_CANVAS_HEIGHT
    background_color: str = "#ffffff"
    background_image: str | None = None
    elements: list[TemplateField] = Field(default_factory=list)

    def get_field(self, field_id: str) -> TemplateField | None:
        for field in self.elements:
            if field.id == field_id:
                return field
        return None

    def add_field(self) -> TemplateField:
        field = TemplateField()
        # ids must stay unique within the canvas
        while self.get_field(field.id) is not None:
            field = TemplateField()
        self.elements.append(field)
        return field

    def update_field(self, field_id: str, **changes: Any) -> None:
        """Merge ``changes`` into the field; an unknown ``field_id`` is ignored.

        Keys may be snake_case attribute names or their camelCase aliases.
        """
        field = self.get_field(field_id)
        if field is None:
            return
        for key, value in changes.items():
            name = _field_name(key)
            if name == "id":
                continue
            setattr(field, name, value)

    def remove_field(self, field_id: str) -> None:
        self.elements = [field for field in self.elements if field.id != field_id]


def _field_name(key: str) -> str:
    if key in TemplateField.model_fields:
        return key
    for name, info in TemplateField.model_fields.items():
        if info.alias == key:
            return name
    raise ValueError(f"Unknown field attribute: {key}")


class ExcelData(CamelModel):
    columns: list[str] = Field(default_factory=list)
    data: list[list[CellValue]] = Field(default_factory=list)
    selected_sheet: str = ""

    @classmethod
    def from_sheet(cls, sheet: Sheet | None) -> ExcelData:
        if sheet is None:
            return cls()
        return cls(columns=list(sheet.columns), data=[list(r) for r in sheet.rows], selected_sheet=sheet.name)

    def as_sheet(self) -> Sheet:
        return Sheet(name=self.selected_sheet, columns=self.columns, rows=self.data)


class TemplateRecord(CamelModel):
    id: str
    owner_id: str
    name: str
    canvas_data: CanvasData = Field(default_factory=CanvasData)
    excel_data: ExcelData = Field(default_factory=ExcelData)
    created_at: datetime
    updated_at: datetime
