from __future__ import annotations

import asyncio
import copy
import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from reportlab.pdfbase.pdfmetrics import stringWidth

from .. import config
from .elements import Element, TextElement


Matrix = Tuple[float, float, float, float, float, float]
Rect = Tuple[float, float, float, float]

FONT_FAMILIES: Dict[str, Tuple[str, str, str, str]] = {
    # normal, bold, italic, bold italic
    "helvetica": ("Helvetica", "Helvetica-Bold", "Helvetica-Oblique", "Helvetica-BoldOblique"),
    "arial": ("Helvetica", "Helvetica-Bold", "Helvetica-Oblique", "Helvetica-BoldOblique"),
    "times": ("Times-Roman", "Times-Bold", "Times-Italic", "Times-BoldItalic"),
    "times new roman": ("Times-Roman", "Times-Bold", "Times-Italic", "Times-BoldItalic"),
    "georgia": ("Times-Roman", "Times-Bold", "Times-Italic", "Times-BoldItalic"),
    "courier": ("Courier", "Courier-Bold", "Courier-Oblique", "Courier-BoldOblique"),
    "courier new": ("Courier", "Courier-Bold", "Courier-Oblique", "Courier-BoldOblique"),
}


def font_name(family: str, style: str = "normal") -> str:
    variants = FONT_FAMILIES.get((family or "").strip().lower(), FONT_FAMILIES["helvetica"])
    style = (style or "").lower()
    bold = "bold" in style
    italic = "italic" in style or "oblique" in style
    return variants[(1 if bold else 0) + (2 if italic else 0)]


def wrap_text(text: str, font: str, size: float, max_width: Optional[float]) -> List[str]:
    """Word wrap each hard line to ``max_width``; a single long word keeps its own line."""
    out: List[str] = []
    for raw in (text or "").split("\n"):
        if max_width is None:
            out.append(raw)
            continue
        words = raw.split()
        if not words:
            out.append("")
            continue
        cur: List[str] = []
        for w in words:
            test = " ".join(cur + [w])
            if stringWidth(test, font, size) <= max_width:
                cur.append(w)
                continue
            if cur:
                out.append(" ".join(cur))
                cur = [w]
            else:
                out.append(w)
        if cur:
            out.append(" ".join(cur))
    return out or [""]


@dataclass(frozen=True)
class TextLayout:
    key: tuple
    lines: Tuple[str, ...]
    width: float
    height: float
    font: str


def _text_key(el: TextElement) -> tuple:
    return (el.text, el.font_family, el.font_style, el.font_size, el.width, el.line_height)


def _mul(m1: Matrix, m2: Matrix) -> Matrix:
    a1, b1, c1, d1, e1, f1 = m1
    a2, b2, c2, d2, e2, f2 = m2
    return (
        a1 * a2 + c1 * b2,
        b1 * a2 + d1 * b2,
        a1 * c2 + c1 * d2,
        b1 * c2 + d1 * d2,
        a1 * e2 + c1 * f2 + e1,
        b1 * e2 + d1 * f2 + f1,
    )


def element_matrix(element: Element) -> Matrix:
    """Local -> stage transform, y pointing down: translate . rotate . skew . scale."""
    theta = math.radians(element.rotation)
    cos, sin = math.cos(theta), math.sin(theta)
    m: Matrix = (1.0, 0.0, 0.0, 1.0, element.x, element.y)
    m = _mul(m, (cos, sin, -sin, cos, 0.0, 0.0))
    m = _mul(m, (1.0, element.skew_y, element.skew_x, 1.0, 0.0, 0.0))
    m = _mul(m, (element.scale_x, 0.0, 0.0, element.scale_y, 0.0, 0.0))
    return m


def apply(m: Matrix, x: float, y: float) -> Tuple[float, float]:
    a, b, c, d, e, f = m
    return (a * x + c * y + e, b * x + d * y + f)


def rects_intersect(r1: Rect, r2: Rect) -> bool:
    x1, y1, w1, h1 = r1
    x2, y2, w2, h2 = r2
    return not (x2 > x1 + w1 or x2 + w2 < x1 or y2 > y1 + h1 or y2 + h2 < y1)


def normalize_rect(rect: Rect) -> Rect:
    x, y, w, h = rect
    if w < 0:
        x, w = x + w, -w
    if h < 0:
        y, h = y + h, -h
    return (x, y, w, h)


class Stage:
    """
    Pixel-space render target: the ordered element buffer plus the
    selection overlay and a frame clock.

    Changing what is on the stage goes through ``invalidate``; the layout
    pass runs on the next loop iteration and ``frame_committed`` resolves once
    it has. Without a running event loop the pass runs immediately.
    """

    def __init__(
        self,
        elements: Sequence[Element] = (),
        width: float = config.STAGE_WIDTH,
        height: float = config.STAGE_HEIGHT,
        background_color: str = "#ffffff",
        page_size_mm: Optional[Tuple[float, float]] = None,
    ) -> None:
        self.elements: List[Element] = list(elements)
        self.width = width
        self.height = height
        self.background_color = background_color
        self._page_size_mm = page_size_mm
        self.overlay_visible = True
        self.selected_ids: List[str] = []
        self.frames = 0
        self._layout: Dict[str, TextLayout] = {}
        self._pending: Optional[asyncio.Future] = None
        self.layout()

    @property
    def size(self) -> Tuple[float, float]:
        return (self.width, self.height)

    @property
    def page_size_mm(self) -> Optional[Tuple[float, float]]:
        """Page the stage stands for, in mm; None for a bare canvas."""
        return self._page_size_mm

    def find(self, element_id: str) -> Element:
        for el in self.elements:
            if el.id == element_id:
                return el
        raise KeyError(element_id)

    def index_of(self, element_id: str) -> int:
        for i, el in enumerate(self.elements):
            if el.id == element_id:
                return i
        raise KeyError(element_id)

    def ids(self) -> List[str]:
        return [el.id for el in self.elements]

    # -------------------- frame clock --------------------

    def invalidate(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._commit_frame()
            return
        pending = self._pending
        # a future left by a previous event loop never resolves in this one
        if pending is None or pending.done() or pending.get_loop() is not loop:
            self._pending = loop.create_future()
            loop.call_soon(self._commit_frame)

    def _commit_frame(self) -> None:
        self.layout()
        self.frames += 1
        pending = self._pending
        if pending is not None and not pending.done():
            pending.set_result(self.frames)

    async def frame_committed(self) -> int:
        pending = self._pending
        if pending is None or pending.done() or pending.get_loop() is not asyncio.get_running_loop():
            return self.frames
        return await pending

    # -------------------- layout --------------------

    def layout(self) -> None:
        table: Dict[str, TextLayout] = {}
        for el in self.elements:
            if isinstance(el, TextElement):
                table[el.id] = self._layout_text(el)
        self._layout = table

    @staticmethod
    def _layout_text(el: TextElement) -> TextLayout:
        font = font_name(el.font_family, el.font_style)
        lines = wrap_text(el.text, font, el.font_size, el.width)
        width = el.width if el.width is not None else max(stringWidth(l, font, el.font_size) for l in lines)
        height = el.font_size * el.line_height * len(lines)
        return TextLayout(_text_key(el), tuple(lines), float(width), float(height), font)

    def text_layout(self, el: TextElement) -> TextLayout:
        cached = self._layout.get(el.id)
        # stale when the element changed since the last frame
        if cached is None or cached.key != _text_key(el):
            cached = self._layout_text(el)
        return cached

    def bounds(self, el: Element) -> Rect:
        """Axis-aligned box of ``el`` on the stage, after its transform."""
        text_height = self.text_layout(el).height if isinstance(el, TextElement) else None
        left, top, w, h = el.local_box(text_height)
        if isinstance(el, TextElement) and el.width is None:
            w = self.text_layout(el).width
        m = element_matrix(el)
        corners = [apply(m, x, y) for x, y in ((left, top), (left + w, top), (left, top + h), (left + w, top + h))]
        xs = [c[0] for c in corners]
        ys = [c[1] for c in corners]
        return (min(xs), min(ys), max(xs) - min(xs), max(ys) - min(ys))

    def elements_in(self, rect: Rect, include_locked: bool = False) -> List[Element]:
        area = normalize_rect(rect)
        return [
            el
            for el in self.elements
            if (include_locked or not el.locked) and rects_intersect(area, self.bounds(el))
        ]

    def selected(self) -> List[Element]:
        wanted = set(self.selected_ids)
        return [el for el in self.elements if el.id in wanted]

    def offscreen(self) -> "Stage":
        """Private copy of this stage for one render job, overlay hidden."""
        clone = Stage(
            copy.deepcopy(self.elements),
            self.width,
            self.height,
            self.background_color,
            page_size_mm=self.page_size_mm,
        )
        clone.overlay_visible = False
        return clone

    def dynamic_text(self) -> Iterable[TextElement]:
        return (el for el in self.elements if isinstance(el, TextElement) and el.is_dynamic and el.data_field)
