"""Derive the on-screen preview and the export source from one canvas.

Both views are pure functions of the same canvas and fill-state; the only
difference between them is ``PREVIEW_SCALE``, applied to every geometric
quantity (position, size and font size).
"""

from __future__ import annotations

from dataclasses import dataclass, field

from fill_engine import FillState, compute_display
from template_model import CanvasData, TemplateField

PREVIEW_SCALE = 0.6
EXPORT_SCALE = 1.0


@dataclass(frozen=True)
class Geometry:
    x: float
    y: float
    width: float
    height: float
    font_size: float


@dataclass(frozen=True)
class RenderedElement:
    field_id: str
    text: str
    geometry: Geometry
    font_family: str
    color: str
    bold: bool
    italic: bool


@dataclass(frozen=True)
class RenderNode:
    width: float
    height: float
    scale: float
    background_color: str
    background_image: str | None
    elements: list[RenderedElement] = field(default_factory=list)


def _scaled(value: float, scale: float) -> float:
    # round away float noise such as 100 * 0.6 == 60.00000000000001
    return round(value * scale, 6)


def project_geometry(template_field: TemplateField, scale: float) -> Geometry:
    return Geometry(
        x=_scaled(template_field.x, scale),
        y=_scaled(template_field.y, scale),
        width=_scaled(template_field.width, scale),
        height=_scaled(template_field.height, scale),
        font_size=_scaled(template_field.font_size, scale),
    )


def render(canvas: CanvasData, fill_state: FillState, scale: float) -> RenderNode:
    return RenderNode(
        width=_scaled(canvas.width, scale),
        height=_scaled(canvas.height, scale),
        scale=scale,
        background_color=canvas.background_color or "#ffffff",
        background_image=canvas.background_image,
        elements=[
            RenderedElement(
                field_id=el.id,
                text=compute_display(el, fill_state),
                geometry=project_geometry(el, scale),
                font_family=el.font_family or "Arial",
                color=el.color or "#000000",
                bold=el.is_bold,
                italic=el.is_italic,
            )
            for el in canvas.elements
        ],
    )


def preview(canvas: CanvasData, fill_state: FillState) -> RenderNode:
    return render(canvas, fill_state, PREVIEW_SCALE)


def export_source(canvas: CanvasData, fill_state: FillState) -> RenderNode:
    """Full-scale node fed to the export pipeline.

    Text is centred in its box, wrapped on word boundaries and clipped to the
    box; it is never shrunk to fit.
    """
    return render(canvas, fill_state, EXPORT_SCALE)
