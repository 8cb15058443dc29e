import argparse
import base64
import binascii
import io
import json
import logging
import re
import zipfile
from pathlib import Path

import fitz
from PIL import Image
from pypdf import PdfReader, PdfWriter
from reportlab.lib.colors import Color
from reportlab.lib.pagesizes import landscape, portrait
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.pdfgen import canvas

from errors import ExportError
from fill_engine import FillState, apply_row, seed_fill_state
from render_projector import RenderedElement, RenderNode, export_source
from template_model import CanvasData, TemplateRecord

logger = logging.getLogger(__name__)

EXPORT_FORMATS = {
    "pdf": "application/pdf",
    "png": "image/png",
    "jpg": "image/jpeg",
}
RASTER_SCALE = 2.0
LINE_HEIGHT = 1.2

_BASE14_FONTS = {
    "Courier",
    "Courier-Bold",
    "Courier-Oblique",
    "Courier-BoldOblique",
    "Helvetica",
    "Helvetica-Bold",
    "Helvetica-Oblique",
    "Helvetica-BoldOblique",
    "Times-Roman",
    "Times-Bold",
    "Times-Italic",
    "Times-BoldItalic",
    "Symbol",
    "ZapfDingbats",
}

# CSS family (normalized) -> base-14 family
_CSS_FAMILIES = {
    "arial": "Helvetica",
    "helvetica": "Helvetica",
    "verdana": "Helvetica",
    "sansserif": "Helvetica",
    "timesnewroman": "Times-Roman",
    "times": "Times-Roman",
    "georgia": "Times-Roman",
    "serif": "Times-Roman",
    "couriernew": "Courier",
    "courier": "Courier",
    "monospace": "Courier",
}

_STYLED_FACES = {
    "Helvetica": ("Helvetica", "Helvetica-Bold", "Helvetica-Oblique", "Helvetica-BoldOblique"),
    "Times-Roman": ("Times-Roman", "Times-Bold", "Times-Italic", "Times-BoldItalic"),
    "Courier": ("Courier", "Courier-Bold", "Courier-Oblique", "Courier-BoldOblique"),
}

_registered_font_dirs: set[Path] = set()


def _normalize_font_name(name: str) -> str:
    return "".join(ch for ch in name.lower() if ch.isalnum())


def _font_is_available(font_name: str) -> bool:
    if font_name in _BASE14_FONTS:
        return True
    try:
        pdfmetrics.getFont(font_name)
        return True
    except Exception:
        return False


def register_fonts_from_directory(fonts_dir: Path | None) -> dict[str, str]:
    """Register every .ttf/.otf in ``fonts_dir`` under its file stem (once per dir)."""
    font_map: dict[str, str] = {}
    if fonts_dir is None or not fonts_dir.exists():
        return font_map
    fonts_dir = fonts_dir.resolve()
    if fonts_dir in _registered_font_dirs:
        return font_map

    for font_file in sorted([*fonts_dir.glob("*.ttf"), *fonts_dir.glob("*.otf")]):
        try:
            pdfmetrics.registerFont(TTFont(font_file.stem, str(font_file)))
            font_map[font_file.stem] = str(font_file)
            logger.info("Registered font: %s", font_file.stem)
        except Exception as exc:
            logger.warning("Failed to register %s: %s", font_file.name, exc)
    _registered_font_dirs.add(fonts_dir)
    return font_map


def available_font_families() -> list[str]:
    custom = [
        name for name in pdfmetrics.getRegisteredFontNames() if name not in _BASE14_FONTS
    ]
    return sorted({"Arial", "Times New Roman", "Courier New", "Georgia", "Verdana", *custom})


def resolve_font_face(family: str | None, bold: bool, italic: bool) -> str:
    """Pick the PDF font for a CSS family plus emphasis flags.

    Custom registered fonts are used as-is; bold/italic only select faces of
    the base-14 families.
    """
    primary = (family or "").split(",")[0].strip().strip("'\"")
    if primary in _BASE14_FONTS and primary not in _STYLED_FACES:
        return primary
    if primary and primary not in _BASE14_FONTS and _font_is_available(primary):
        return primary

    normalized = _normalize_font_name(primary)
    for candidate in pdfmetrics.getRegisteredFontNames():
        if candidate not in _BASE14_FONTS and _normalize_font_name(candidate) == normalized:
            return candidate

    base = primary if primary in _STYLED_FACES else _CSS_FAMILIES.get(normalized)
    if base is None:
        if primary:
            logger.warning("Font '%s' is unavailable. Falling back to 'Helvetica'.", primary)
        base = "Helvetica"
    regular, bold_face, italic_face, bold_italic = _STYLED_FACES[base]
    if bold and italic:
        return bold_italic
    if bold:
        return bold_face
    if italic:
        return italic_face
    return regular


def parse_css_color(value: str, fallback: tuple[float, float, float]) -> tuple[float, float, float]:
    if not isinstance(value, str):
        return fallback
    s = value.strip().lower()
    named = {
        "black": (0.0, 0.0, 0.0),
        "white": (1.0, 1.0, 1.0),
        "red": (1.0, 0.0, 0.0),
        "green": (0.0, 0.5, 0.0),
        "blue": (0.0, 0.0, 1.0),
        "yellow": (1.0, 1.0, 0.0),
        "gray": (0.5, 0.5, 0.5),
        "grey": (0.5, 0.5, 0.5),
    }
    if s in named:
        return named[s]
    if s.startswith("#"):
        hexv = s[1:]
        if len(hexv) == 3:
            hexv = "".join(ch * 2 for ch in hexv)
        if len(hexv) == 6 and all(ch in "0123456789abcdef" for ch in hexv):
            return (
                int(hexv[0:2], 16) / 255.0,
                int(hexv[2:4], 16) / 255.0,
                int(hexv[4:6], 16) / 255.0,
            )
    m = re.match(r"rgb\(\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})\s*\)", s)
    if m:
        return (
            max(0, min(255, int(m.group(1)))) / 255.0,
            max(0, min(255, int(m.group(2)))) / 255.0,
            max(0, min(255, int(m.group(3)))) / 255.0,
        )
    return fallback


def wrap_text_to_lines(font_name: str, text: str, size: float, max_width: float) -> list[str]:
    """Greedy word-wrap of *text* into lines no wider than *max_width*.

    Explicit newlines are kept. A single word wider than the box stays on its
    own line and is clipped when drawn.
    """
    result: list[str] = []
    for paragraph in text.split("\n"):
        if not paragraph:
            result.append("")
            continue
        current = ""
        for word in paragraph.split(" "):
            candidate = f"{current} {word}" if current else word
            if pdfmetrics.stringWidth(candidate, font_name, size) <= max_width:
                current = candidate
            else:
                if current:
                    result.append(current)
                current = word
        if current:
            result.append(current)
    return result if result else [""]


def decode_data_uri(uri: str) -> tuple[str, bytes]:
    m = re.match(r"data:([^;,]*)(;base64)?,(.*)", uri, re.DOTALL)
    if not m:
        raise ExportError("Background image is not a data URI.")
    mime = m.group(1) or "text/plain"
    try:
        payload = base64.b64decode(m.group(3)) if m.group(2) else m.group(3).encode("utf-8")
    except (binascii.Error, ValueError) as exc:
        raise ExportError(f"Background image is not valid base64: {exc}") from exc
    return mime, payload


def draw_background_image(c: canvas.Canvas, image_bytes: bytes, page_w: float, page_h: float) -> None:
    """Scale to cover the page, centred; the overflow falls off the page edge."""
    reader = ImageReader(io.BytesIO(image_bytes))
    img_w, img_h = reader.getSize()
    if img_w <= 0 or img_h <= 0:
        return
    scale = max(page_w / img_w, page_h / img_h)
    draw_w, draw_h = img_w * scale, img_h * scale
    c.drawImage(
        reader,
        (page_w - draw_w) / 2.0,
        (page_h - draw_h) / 2.0,
        width=draw_w,
        height=draw_h,
        mask="auto",
    )


def draw_element(c: canvas.Canvas, element: RenderedElement, page_h: float) -> None:
    geom = element.geometry
    if geom.width <= 0 or geom.height <= 0:
        return
    font_name = resolve_font_face(element.font_family, element.bold, element.italic)
    size = geom.font_size if geom.font_size > 0 else 1.0
    lines = wrap_text_to_lines(font_name, element.text, size, geom.width)

    # geometry is top-left based, PDF space is bottom-left based
    box_top = page_h - geom.y
    box_bottom = box_top - geom.height
    line_height = size * LINE_HEIGHT
    block_top = box_top - (geom.height - len(lines) * line_height) / 2.0
    ascent, descent = pdfmetrics.getAscentDescent(font_name, size)
    glyph_offset = (line_height - (ascent - descent)) / 2.0 + ascent

    c.saveState()
    clip = c.beginPath()
    clip.rect(geom.x, box_bottom, geom.width, geom.height)
    c.clipPath(clip, stroke=0, fill=0)
    c.setFillColor(Color(*parse_css_color(element.color, (0.0, 0.0, 0.0))))
    c.setFont(font_name, size)
    center_x = geom.x + geom.width / 2.0
    for i, line in enumerate(lines):
        baseline = block_top - i * line_height - glyph_offset
        c.drawCentredString(center_x, baseline, line)
    c.restoreState()


def draw_node(node: RenderNode, include_background: bool = True) -> bytes:
    packet = io.BytesIO()
    c = canvas.Canvas(packet, pagesize=(node.width, node.height))
    if include_background:
        c.setFillColor(Color(*parse_css_color(node.background_color, (1.0, 1.0, 1.0))))
        c.rect(0, 0, node.width, node.height, stroke=0, fill=1)
        if node.background_image:
            _, image_bytes = decode_data_uri(node.background_image)
            draw_background_image(c, image_bytes, node.width, node.height)
    for element in node.elements:
        draw_element(c, element, node.height)
    c.showPage()
    c.save()
    packet.seek(0)
    return packet.read()


def render_pdf(canvas_data: CanvasData, fill_state: FillState) -> bytes:
    """Vector render of the full-scale export source.

    A PDF background is used as an underlay page: it is scaled to the canvas
    size and the field overlay is merged on top of it.
    """
    node = export_source(canvas_data, fill_state)
    underlay: bytes | None = None
    if node.background_image:
        mime, payload = decode_data_uri(node.background_image)
        if mime == "application/pdf":
            underlay = payload

    if underlay is None:
        return draw_node(node)

    overlay_bytes = draw_node(node, include_background=False)
    reader = PdfReader(io.BytesIO(underlay))
    if not reader.pages:
        raise ExportError("Background PDF has no pages.")
    page = reader.pages[0]
    page.scale_to(node.width, node.height)
    page.merge_page(PdfReader(io.BytesIO(overlay_bytes)).pages[0])
    writer = PdfWriter()
    writer.add_page(page)
    out = io.BytesIO()
    writer.write(out)
    return out.getvalue()


def rasterize(pdf_bytes: bytes, scale: float = RASTER_SCALE) -> Image.Image:
    with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
        pix = doc[0].get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
        return Image.frombytes("RGB", (pix.width, pix.height), pix.samples)


def pdf_orientation(width: float, height: float) -> str:
    return "landscape" if width > height else "portrait"


def encode(bitmap: Image.Image, fmt: str) -> bytes:
    fmt = fmt.lower()
    out = io.BytesIO()
    if fmt == "png":
        bitmap.save(out, format="PNG")
    elif fmt == "jpg":
        bitmap.convert("RGB").save(out, format="JPEG", quality=95)
    elif fmt == "pdf":
        width, height = bitmap.size
        orient = landscape if pdf_orientation(width, height) == "landscape" else portrait
        c = canvas.Canvas(out, pagesize=orient((width, height)))
        c.drawImage(ImageReader(bitmap), 0, 0, width=width, height=height)
        c.showPage()
        c.save()
    else:
        raise ExportError(f"Unsupported export format: {fmt}")
    return out.getvalue()


def export_certificate(
    canvas_data: CanvasData,
    fill_state: FillState,
    fmt: str,
    scale: float = RASTER_SCALE,
) -> tuple[bytes, str]:
    """Render, rasterize and encode one certificate -> (bytes, download name)."""
    fmt = fmt.lower()
    if fmt not in EXPORT_FORMATS:
        raise ExportError(f"Unsupported export format: {fmt}")
    try:
        bitmap = rasterize(render_pdf(canvas_data, fill_state), scale=scale)
        return encode(bitmap, fmt), f"certificate.{fmt}"
    except ExportError:
        raise
    except Exception as exc:
        logger.exception("Certificate export failed")
        raise ExportError(f"Failed to generate certificate: {exc}") from exc


def export_batch(
    canvas_data: CanvasData,
    columns: list[str],
    rows: list[list],
    fmt: str,
    scale: float = RASTER_SCALE,
) -> bytes:
    """One certificate per row, zipped as certificate_0001.<ext>, ...

    Every row starts from the template's literal texts so values never leak
    from one row into the next.
    """
    if not rows:
        raise ExportError("No spreadsheet rows to generate certificates from.")
    seed = seed_fill_state(canvas_data)
    packet = io.BytesIO()
    with zipfile.ZipFile(packet, "w", zipfile.ZIP_DEFLATED) as zipf:
        for idx, row in enumerate(rows, start=1):
            state = apply_row(canvas_data, row, columns, seed)
            data, _ = export_certificate(canvas_data, state, fmt, scale=scale)
            zipf.writestr(f"certificate_{idx:04d}.{fmt.lower()}", data)
            logger.info("  [%d/%d] certificate generated", idx, len(rows))
    return packet.getvalue()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Render a saved certificate template (JSON) to PDF, PNG or JPG."
    )
    parser.add_argument("--template", required=True, help="Path to a template record JSON file.")
    parser.add_argument("--output", required=True, help="Output file (or .zip with --batch).")
    parser.add_argument("--format", default="pdf", choices=sorted(EXPORT_FORMATS))
    parser.add_argument("--row", type=int, default=None, help="Spreadsheet row index to fill from.")
    parser.add_argument(
        "--batch",
        action="store_true",
        help="Generate one certificate per spreadsheet row into a ZIP archive.",
    )
    parser.add_argument("--scale", type=float, default=RASTER_SCALE, help="Raster scale factor.")
    parser.add_argument("--fonts-dir", help="Directory of .ttf/.otf fonts to register.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    args = parse_args(argv)
    if args.batch and args.row is not None:
        raise ValueError("Use either --row or --batch, not both.")

    register_fonts_from_directory(
        Path(args.fonts_dir) if args.fonts_dir else Path(__file__).parent / "fonts"
    )
    record = TemplateRecord.model_validate(
        json.loads(Path(args.template).read_text(encoding="utf-8"))
    )
    sheet = record.excel_data.as_sheet()
    output_path = Path(args.output)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    if args.batch:
        output_path.write_bytes(
            export_batch(record.canvas_data, sheet.columns, sheet.rows, args.format, args.scale)
        )
        logger.info("Wrote %d certificates to %s", len(sheet.rows), output_path)
        return

    state = seed_fill_state(record.canvas_data)
    if args.row is not None:
        if args.row < 0 or args.row >= len(sheet.rows):
            raise IndexError(f"Row index {args.row} out of range. Sheet has {len(sheet.rows)} row(s).")
        state = apply_row(record.canvas_data, sheet.rows[args.row], sheet.columns, state)
    data, _ = export_certificate(record.canvas_data, state, args.format, args.scale)
    output_path.write_bytes(data)
    logger.info("Wrote: %s", output_path)


if __name__ == "__main__":
    main()
