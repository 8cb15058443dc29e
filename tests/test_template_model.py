import pytest

from template_model import CanvasData, ExcelData, Sheet, TemplateField, TemplateRecord


def test_new_field_defaults():
    field = TemplateField()
    assert field.text == "Sample Text"
    assert (field.x, field.y, field.width, field.height) == (50, 50, 200, 40)
    assert field.font_size == 16
    assert field.font_family == "Arial"
    assert field.color == "#000000"
    assert not field.is_bold and not field.is_italic
    assert field.mapped_column is None


def test_add_field_ids_are_unique():
    canvas = CanvasData()
    ids = {canvas.add_field().id for _ in range(25)}
    assert len(ids) == 25
    assert len(canvas.elements) == 25


def test_update_field_accepts_camel_and_snake_keys():
    canvas = CanvasData()
    field = canvas.add_field()
    canvas.update_field(field.id, fontSize=24, is_bold=True, mappedColumn="Name")
    assert field.font_size == 24
    assert field.is_bold
    assert field.mapped_column == "Name"


def test_update_field_never_changes_id():
    canvas = CanvasData()
    field = canvas.add_field()
    original = field.id
    canvas.update_field(original, id="other", text="Hello")
    assert field.id == original
    assert field.text == "Hello"


def test_update_unknown_field_is_noop():
    canvas = CanvasData()
    canvas.add_field()
    before = canvas.model_dump()
    canvas.update_field("missing", text="x")
    assert canvas.model_dump() == before


def test_update_unknown_attribute_raises():
    canvas = CanvasData()
    field = canvas.add_field()
    with pytest.raises(ValueError):
        canvas.update_field(field.id, rotation=45)


def test_remove_field():
    canvas = CanvasData()
    keep = canvas.add_field()
    drop = canvas.add_field()
    canvas.remove_field(drop.id)
    assert [f.id for f in canvas.elements] == [keep.id]
    canvas.remove_field("missing")
    assert len(canvas.elements) == 1


def test_sheet_cell_reads_short_rows_as_empty():
    assert Sheet.cell(["a"], 0) == "a"
    assert Sheet.cell(["a"], 3) == ""
    assert Sheet.cell([], 0) == ""


def test_excel_data_from_missing_sheet_is_empty():
    assert ExcelData.from_sheet(None) == ExcelData()


def test_excel_data_round_trips_sheet():
    sheet = Sheet(name="Students", columns=["Name"], rows=[["Ada"], []])
    data = ExcelData.from_sheet(sheet)
    assert data.selected_sheet == "Students"
    assert data.as_sheet() == sheet


def test_record_json_uses_camel_case(canvas, excel_data):
    record = TemplateRecord(
        id="t1",
        owner_id="u1",
        name="Award",
        canvas_data=canvas,
        excel_data=excel_data,
        created_at="2024-01-01T00:00:00Z",
        updated_at="2024-01-01T00:00:00Z",
    )
    dumped = record.model_dump(mode="json", by_alias=True)
    assert {"ownerId", "canvasData", "excelData", "createdAt", "updatedAt"} <= dumped.keys()
    element = dumped["canvasData"]["elements"][0]
    assert element["fontSize"] == 36
    assert element["mappedColumn"] == "Name"
    assert dumped["excelData"]["selectedSheet"] == "Students"
    assert TemplateRecord.model_validate(dumped) == record
