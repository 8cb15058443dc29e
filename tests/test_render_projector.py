import pytest

from fill_engine import seed_fill_state
from render_projector import PREVIEW_SCALE, Geometry, export_source, preview, project_geometry
from template_model import TemplateField


def test_preview_is_export_scaled(canvas):
    state = seed_fill_state(canvas)
    small = preview(canvas, state)
    full = export_source(canvas, state)

    assert full.width == canvas.width
    assert small.width == pytest.approx(canvas.width * PREVIEW_SCALE)
    assert small.height == pytest.approx(canvas.height * PREVIEW_SCALE)
    for p, e in zip(small.elements, full.elements):
        assert p.text == e.text
        assert p.field_id == e.field_id
        for attr in ("x", "y", "width", "height", "font_size"):
            assert getattr(p.geometry, attr) == pytest.approx(getattr(e.geometry, attr) * PREVIEW_SCALE)


def test_views_show_fill_values(canvas):
    state = seed_fill_state(canvas)
    state["element_name"] = "Ada Lovelace"
    node = export_source(canvas, state)
    texts = {el.field_id: el.text for el in node.elements}
    assert texts == {
        "name": "Ada Lovelace",
        "course": "Course",
        "footer": "Issued by the Academy",
    }


def test_element_order_follows_canvas(canvas):
    node = preview(canvas, {})
    assert [el.field_id for el in node.elements] == ["name", "course", "footer"]


def test_scaled_geometry_has_no_float_noise(canvas):
    geometry = project_geometry(canvas.get_field("name"), PREVIEW_SCALE)
    assert geometry.x == 60
    assert geometry.font_size == pytest.approx(21.6)


def test_preview_scale_of_a_known_box():
    field = TemplateField(x=100, y=50, width=200, height=40, font_size=20)
    assert project_geometry(field, PREVIEW_SCALE) == Geometry(60, 30, 120, 24, 12)
    assert project_geometry(field, 1.0) == Geometry(100, 50, 200, 40, 20)
