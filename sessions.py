"""Stateful authoring and certificate-generation sessions.

A session owns exactly one in-memory template at a time and talks to the
template store handed to it; nothing here is shared between sessions.
"""

from __future__ import annotations

from typing import Any

import fill_engine
import render_projector
from certificate_render import export_certificate
from render_projector import RenderNode
from row_search import search_rows
from sheet_import import auto_select, parse_workbook
from template_model import CanvasData, ExcelData, Sheet, TemplateField, TemplateRecord
from template_store import TemplateStore


class AuthoringSession:
    def __init__(self, store: TemplateStore, owner_id: str) -> None:
        self.store = store
        self.owner_id = owner_id
        self.name = ""
        self.canvas = CanvasData()
        self.sheets: list[Sheet] = []
        self.active_sheet: Sheet | None = None
        self.selected_field_id: str | None = None
        self.saving = False

    def load_workbook(self, data: bytes) -> list[Sheet]:
        self.sheets = parse_workbook(data)
        only = auto_select(self.sheets)
        if only is not None:
            self.active_sheet = only
        return self.sheets

    def select_sheet(self, name: str) -> Sheet | None:
        for sheet in self.sheets:
            if sheet.name == name:
                self.active_sheet = sheet
                return sheet
        return None

    @property
    def columns(self) -> list[str]:
        return list(self.active_sheet.columns) if self.active_sheet else []

    def add_field(self) -> TemplateField:
        field = self.canvas.add_field()
        self.selected_field_id = field.id
        return field

    def update_field(self, field_id: str, **changes: Any) -> None:
        self.canvas.update_field(field_id, **changes)

    def remove_field(self, field_id: str) -> None:
        self.canvas.remove_field(field_id)
        if self.selected_field_id == field_id:
            self.selected_field_id = None

    @property
    def selected_field(self) -> TemplateField | None:
        if self.selected_field_id is None:
            return None
        return self.canvas.get_field(self.selected_field_id)

    def save(self) -> TemplateRecord:
        if not self.name.strip():
            raise ValueError("Please enter a template name")
        self.saving = True
        try:
            return self.store.create(
                self.owner_id,
                self.name,
                self.canvas,
                ExcelData.from_sheet(self.active_sheet),
            )
        finally:
            self.saving = False


class GeneratorSession:
    def __init__(self, store: TemplateStore, owner_id: str) -> None:
        self.store = store
        self.owner_id = owner_id
        self.templates: list[TemplateRecord] = []
        self.selected: TemplateRecord | None = None
        self.fill_state: fill_engine.FillState = {}
        self.search_term = ""
        self.results: list[list[Any]] = []
        self.results_visible = False
        self.generating = False
        self.deleting = False

    def load_templates(self) -> list[TemplateRecord]:
        self.templates = self.store.list(self.owner_id)
        return self.templates

    def select_template(self, template_id: str) -> TemplateRecord:
        """Select a template and start a fresh fill-state from its literal texts."""
        record = next((t for t in self.templates if t.id == template_id), None)
        if record is None:
            record = self.store.get(template_id, self.owner_id)
        self.selected = record
        self.fill_state = fill_engine.seed_fill_state(record.canvas_data)
        self.search_term = ""
        self.results = list(record.excel_data.data)
        self.results_visible = False
        return record

    def clear_selection(self) -> None:
        self.selected = None
        self.fill_state = {}

    def search(self, term: str) -> list[list[Any]]:
        self.search_term = term
        if self.selected is None:
            return []
        result = search_rows(self.selected.excel_data.data, term)
        if result.visible:
            self.results = result.rows
        self.results_visible = result.visible
        return result.rows

    def select_row(self, row: list[Any]) -> fill_engine.FillState:
        if self.selected is None:
            return self.fill_state
        self.fill_state = fill_engine.apply_row(
            self.selected.canvas_data,
            row,
            self.selected.excel_data.columns,
            self.fill_state,
        )
        self.results_visible = False
        self.search_term = ""
        return self.fill_state

    def update_value(self, field_id: str, value: str) -> None:
        self.fill_state = fill_engine.set_value(self.fill_state, field_id, value)

    def delete_template(self, template_id: str) -> None:
        self.deleting = True
        try:
            self.store.delete(template_id, self.owner_id)
        finally:
            self.deleting = False
        self.templates = [t for t in self.templates if t.id != template_id]
        if self.selected is not None and self.selected.id == template_id:
            self.clear_selection()

    def preview(self) -> RenderNode | None:
        if self.selected is None:
            return None
        return render_projector.preview(self.selected.canvas_data, self.fill_state)

    def export_source(self) -> RenderNode | None:
        if self.selected is None:
            return None
        return render_projector.export_source(self.selected.canvas_data, self.fill_state)

    def download(self, fmt: str) -> tuple[bytes, str] | None:
        if self.selected is None:
            return None
        self.generating = True
        try:
            return export_certificate(self.selected.canvas_data, self.fill_state, fmt)
        finally:
            self.generating = False
