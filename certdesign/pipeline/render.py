from __future__ import annotations

import base64
import binascii
import io
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

import fitz  # PyMuPDF
from PIL import Image, UnidentifiedImageError
from reportlab.lib import colors
from reportlab.lib.pagesizes import landscape, portrait
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from .. import config
from ..design.elements import (
    ArrowElement,
    CircleElement,
    Element,
    ImageElement,
    LineElement,
    RectElement,
    StarElement,
    TextElement,
)
from ..design.fields import DisplayMode, apply_mode
from ..design.stage import Stage, element_matrix
from ..design.template import element_to_mm, element_to_px
from ..design.units import CoordinateConverter


logger = logging.getLogger(__name__)

OVERLAY_COLOR = "#3B82F6"
NO_PAINT = {"", "none", "transparent"}


def _hex(value: Optional[str], default: Optional[colors.Color] = colors.black) -> Optional[colors.Color]:
    if value is None:
        return default
    text = str(value).strip()
    if text.lower() in NO_PAINT:
        return None
    try:
        if text.startswith("#"):
            return colors.HexColor(text, hasAlpha=len(text) == 9)
        return colors.toColor(text)
    except (ValueError, TypeError, AttributeError):
        return default


@dataclass(frozen=True)
class Raster:
    png: bytes
    width: int
    height: int
    warnings: Tuple[str, ...] = ()


# -------------------- images --------------------


def _image_bytes(src: str) -> bytes:
    if src.startswith("data:"):
        _, _, encoded = src.partition(",")
        return base64.b64decode(encoded)
    path = Path(src)
    if len(src) < 1024 and path.is_file():
        return path.read_bytes()
    return base64.b64decode(src, validate=True)


def decode_image(src: str) -> ImageReader:
    if not src:
        raise ValueError("Image element has no source")
    try:
        data = _image_bytes(src)
        img = Image.open(io.BytesIO(data))
        img.load()
    except (binascii.Error, OSError, UnidentifiedImageError, ValueError) as e:
        raise ValueError(f"Cannot decode image: {type(e).__name__}: {e}") from e
    if img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGBA")
    return ImageReader(img)


# -------------------- painter --------------------


class _Painter:
    """Draws a stage onto a reportlab canvas whose user space is stage pixels, y down."""

    def __init__(self, canv: canvas.Canvas, target: Stage, images: Dict[str, Optional[ImageReader]]) -> None:
        self.canv = canv
        self.target = target
        self.images = images
        self.warnings: List[str] = []

    def paint(self, include_overlay: bool) -> None:
        canv = self.canv
        canv.transform(1, 0, 0, -1, 0, self.target.height)
        background = _hex(self.target.background_color, colors.white)
        if background is not None:
            canv.setFillColor(background)
            canv.rect(0, 0, self.target.width, self.target.height, stroke=0, fill=1)
        for el in self.target.elements:
            canv.saveState()
            canv.transform(*element_matrix(el))
            opacity = max(0.0, min(1.0, float(el.opacity)))
            canv.setFillAlpha(opacity)
            canv.setStrokeAlpha(opacity)
            self._draw(el)
            canv.restoreState()
        if include_overlay and self.target.overlay_visible:
            self._draw_overlay()

    def _draw(self, el: Element) -> None:
        if isinstance(el, TextElement):
            self._text(el)
        elif isinstance(el, RectElement):
            stroke, fill = self._paint_style(el.fill, el.stroke, el.stroke_width)
            if el.corner_radius > 0:
                self.canv.roundRect(0, 0, el.width, el.height, radius=el.corner_radius, stroke=stroke, fill=fill)
            else:
                self.canv.rect(0, 0, el.width, el.height, stroke=stroke, fill=fill)
        elif isinstance(el, CircleElement):
            stroke, fill = self._paint_style(el.fill, el.stroke, el.stroke_width)
            self.canv.circle(0, 0, el.radius, stroke=stroke, fill=fill)
        elif isinstance(el, StarElement):
            stroke, fill = self._paint_style(el.fill, el.stroke, el.stroke_width)
            self._polygon(el.vertices(), stroke, fill)
        elif isinstance(el, ArrowElement):
            self._line(el)
            self._arrow_head(el)
        elif isinstance(el, LineElement):
            self._line(el)
        elif isinstance(el, ImageElement):
            self._image(el)

    def _paint_style(self, fill: Optional[str], stroke: Optional[str], stroke_width: float) -> Tuple[int, int]:
        fill_color = _hex(fill, None)
        stroke_color = _hex(stroke, None) if stroke_width > 0 else None
        if fill_color is not None:
            self.canv.setFillColor(fill_color)
        if stroke_color is not None:
            self.canv.setStrokeColor(stroke_color)
            self.canv.setLineWidth(stroke_width)
        return (1 if stroke_color is not None else 0, 1 if fill_color is not None else 0)

    def _polygon(self, vertices: List[Tuple[float, float]], stroke: int, fill: int) -> None:
        if not vertices or not (stroke or fill):
            return
        path = self.canv.beginPath()
        path.moveTo(*vertices[0])
        for x, y in vertices[1:]:
            path.lineTo(x, y)
        path.close()
        self.canv.drawPath(path, stroke=stroke, fill=fill)

    def _line(self, el: LineElement) -> None:
        pairs = el.pairs()
        stroke, _ = self._paint_style(None, el.stroke, el.stroke_width)
        if len(pairs) < 2 or not stroke:
            return
        self.canv.setLineCap({"butt": 0, "round": 1, "square": 2}.get(el.line_cap, 1))
        self.canv.setLineJoin({"miter": 0, "round": 1, "bevel": 2}.get(el.line_join, 1))
        path = self.canv.beginPath()
        path.moveTo(*pairs[0])
        for x, y in pairs[1:]:
            path.lineTo(x, y)
        self.canv.drawPath(path, stroke=1, fill=0)

    def _arrow_head(self, el: ArrowElement) -> None:
        pairs = el.pairs()
        if len(pairs) < 2:
            return
        (x0, y0), (x1, y1) = pairs[-2], pairs[-1]
        length = ((x1 - x0) ** 2 + (y1 - y0) ** 2) ** 0.5
        if length == 0:
            return
        ux, uy = (x1 - x0) / length, (y1 - y0) / length
        bx, by = x1 - ux * el.pointer_length, y1 - uy * el.pointer_length
        half = el.pointer_width / 2.0
        head = [(x1, y1), (bx - uy * half, by + ux * half), (bx + uy * half, by - ux * half)]
        stroke, fill = self._paint_style(el.fill, el.stroke, el.stroke_width)
        self._polygon(head, stroke, fill)

    def _text(self, el: TextElement) -> None:
        layout = self.target.text_layout(el)
        color = _hex(el.fill, colors.black)
        if color is None or not el.text:
            return
        canv = self.canv
        canv.setFillColor(color)
        canv.setFont(layout.font, el.font_size)
        line_box = el.font_size * el.line_height
        for i, line in enumerate(layout.lines):
            # baseline sits about 80% down the glyph box, centred in the line box
            baseline = i * line_box + (line_box - el.font_size) / 2 + el.font_size * 0.8
            canv.saveState()
            canv.translate(0, baseline)
            canv.scale(1, -1)
            if el.align == "center":
                canv.drawCentredString(layout.width / 2, 0, line)
            elif el.align == "right":
                canv.drawRightString(layout.width, 0, line)
            else:
                canv.drawString(0, 0, line)
            canv.restoreState()

    def _image(self, el: ImageElement) -> None:
        if el.src not in self.images:
            try:
                self.images[el.src] = decode_image(el.src)
            except ValueError as e:
                self.images[el.src] = None
                logger.warning("Skipping image %s: %s", el.id, e)
        reader = self.images[el.src]
        if reader is None:
            self.warnings.append(f"Image {el.id} could not be decoded and was skipped")
            return
        canv = self.canv
        canv.saveState()
        canv.translate(0, el.height)
        canv.scale(1, -1)
        canv.drawImage(reader, 0, 0, width=el.width, height=el.height, mask="auto")
        canv.restoreState()

    def _draw_overlay(self) -> None:
        selected = self.target.selected()
        if not selected:
            return
        canv = self.canv
        canv.saveState()
        canv.setStrokeColor(_hex(OVERLAY_COLOR))
        canv.setLineWidth(1)
        canv.setDash(4, 2)
        for el in selected:
            x, y, w, h = self.target.bounds(el)
            canv.rect(x, y, w, h, stroke=1, fill=0)
        canv.restoreState()


# -------------------- vector / raster --------------------


def draw_vector(
    target: Stage,
    include_overlay: bool = False,
    images: Optional[Dict[str, Optional[ImageReader]]] = None,
) -> Tuple[bytes, List[str]]:
    """One-page PDF of the stage at 1pt per stage pixel, plus any warnings."""
    buffer = io.BytesIO()
    canv = canvas.Canvas(buffer, pagesize=(target.width, target.height))
    painter = _Painter(canv, target, images if images is not None else {})
    painter.paint(include_overlay)
    canv.showPage()
    canv.save()
    return buffer.getvalue(), painter.warnings


def page_layout(target: Stage) -> Stage:
    """
    ``target`` re-laid on a grid with its page's aspect ratio, the same number
    of millimetres per pixel on both axes. Positions keep their place on the
    page while glyphs and circles keep their shape. A bare canvas, or one that
    already matches its page, comes back unchanged.
    """
    page = target.page_size_mm
    if page is None:
        return target
    height = target.width * page[1] / page[0]
    if abs(height - target.height) < 1e-6:
        return target
    on_stage = CoordinateConverter(page, target.size)
    on_page = CoordinateConverter(page, (target.width, height))
    elements = [element_to_px(element_to_mm(el, on_stage), on_page) for el in target.elements]
    laid = Stage(elements, target.width, height, target.background_color, page_size_mm=page)
    laid.overlay_visible = False
    return laid


def rasterize(
    target: Stage,
    pixel_ratio: float = config.PIXEL_RATIO,
    include_overlay: bool = False,
    images: Optional[Dict[str, Optional[ImageReader]]] = None,
    fit_page: bool = False,
) -> Raster:
    """PNG of ``target``; with ``fit_page`` shaped like its page, ready to fill a PDF page."""
    if fit_page:
        target = page_layout(target)
    pdf, warnings = draw_vector(target, include_overlay=include_overlay, images=images)
    with fitz.open(stream=pdf, filetype="pdf") as doc:
        page = doc.load_page(0)
        pix = page.get_pixmap(matrix=fitz.Matrix(pixel_ratio, pixel_ratio), alpha=False)
        return Raster(pix.tobytes("png"), pix.width, pix.height, tuple(warnings))


@contextmanager
def capture(target: Stage, record: Optional[Mapping[str, str]] = None) -> Iterator[Stage]:
    """
    Prepare ``target`` for one capture: overlay hidden and, with a record,
    dynamic texts substituted. Everything is put back on exit, texts byte for
    byte, even when the capture fails.
    """
    was_visible = target.overlay_visible
    originals: Dict[str, Tuple[str, Optional[str]]] = {}
    target.overlay_visible = False
    try:
        if record is not None:
            for el in target.dynamic_text():
                originals[el.id] = (el.text, el.template_text)
                apply_mode(el, DisplayMode.ACTUAL, record)
        target.invalidate()
        yield target
    finally:
        for el in target.elements:
            if el.id in originals and isinstance(el, TextElement):
                el.text, el.template_text = originals[el.id]
        target.overlay_visible = was_visible
        target.invalidate()


def render(
    target: Stage,
    record: Optional[Mapping[str, str]] = None,
    pixel_ratio: float = config.PIXEL_RATIO,
) -> bytes:
    with capture(target, record):
        raster = rasterize(target, pixel_ratio=pixel_ratio, fit_page=True)
    for warning in raster.warnings:
        logger.warning(warning)
    return raster.png


def render_preview(target: Stage, pixel_ratio: float = 1) -> bytes:
    """Interactive view, selection overlay included."""
    return rasterize(target, pixel_ratio=pixel_ratio, include_overlay=True).png


def render_thumbnail(
    target: Stage,
    max_side: int = config.THUMBNAIL_MAX_SIDE,
    record: Optional[Mapping[str, str]] = None,
) -> bytes:
    zoom = float(max_side) / float(max(target.width, target.height))
    with capture(target, record):
        return rasterize(target, pixel_ratio=zoom).png


# -------------------- PDF composition --------------------


def pdf_page_size(page_size_mm: Tuple[float, float], orientation: str = "landscape") -> Tuple[float, float]:
    size = (page_size_mm[0] * mm, page_size_mm[1] * mm)
    return landscape(size) if orientation == "landscape" else portrait(size)


class PdfComposer:
    """Builds a PDF whose every page is one full-bleed raster."""

    def __init__(self, page_size_mm: Tuple[float, float], orientation: str = "landscape") -> None:
        self.page_size = pdf_page_size(page_size_mm, orientation)
        self._buffer = io.BytesIO()
        self._canvas = canvas.Canvas(self._buffer, pagesize=self.page_size)
        self.pages = 0

    def add_page(self, png: bytes) -> None:
        pw, ph = self.page_size
        self._canvas.drawImage(ImageReader(io.BytesIO(png)), 0, 0, width=pw, height=ph)
        self._canvas.showPage()
        self.pages += 1

    def finish(self) -> bytes:
        if self.pages == 0:
            raise ValueError("PDF has no pages")
        self._canvas.save()
        return self._buffer.getvalue()


def to_pdf(png: bytes, page_size_mm: Tuple[float, float], orientation: str = "landscape") -> bytes:
    composer = PdfComposer(page_size_mm, orientation)
    composer.add_page(png)
    return composer.finish()
