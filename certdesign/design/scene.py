from __future__ import annotations

import copy
import itertools
import logging
import math
from contextlib import contextmanager
from dataclasses import dataclass, fields
from typing import Iterator, List, Mapping, Optional, Sequence, Tuple

from .. import config
from .elements import (
    ELEMENT_TYPES,
    CircleElement,
    Element,
    ImageElement,
    LineElement,
    RectElement,
    StarElement,
    TextElement,
)
from .fields import DisplayMode, apply_mode, canonical_text, placeholder
from .history import HistoryManager
from .stage import Rect, Stage
from .template import Template, elements_to_mm, elements_to_px, page_size
from .units import CoordinateConverter


logger = logging.getLogger(__name__)

MIN_SIZE = 5.0


class SceneBusyError(RuntimeError):
    pass


@dataclass(frozen=True)
class TransformResult:
    """What the manipulation layer reports when a drag/resize/rotate ends."""

    x: float
    y: float
    scale_x: float = 1.0
    scale_y: float = 1.0
    rotation: float = 0.0
    skew_x: float = 0.0
    skew_y: float = 0.0


class Scene(Stage):
    """
    Editing session over one page.

    Every structural change commits the full element list to ``history``
    exactly once; transient drags and stroke previews do not. While an export
    holds the scene (``exclusive``) every editing call raises SceneBusyError.
    """

    def __init__(
        self,
        elements: Sequence[Element] = (),
        width: float = config.STAGE_WIDTH,
        height: float = config.STAGE_HEIGHT,
        background_color: str = "#ffffff",
        name: str = "Untitled Design",
        orientation: str = config.DEFAULT_ORIENTATION,
        format: str = config.DEFAULT_FORMAT,
        history_limit: Optional[int] = None,
    ) -> None:
        super().__init__(elements, width, height, background_color)
        ids = self.ids()
        if len(ids) != len(set(ids)):
            raise ValueError("Element ids must be unique within a scene")
        self.name = name
        self.orientation = orientation
        self.format = format
        self.history = HistoryManager(self.elements, limit=history_limit)
        self.busy = False
        self.display_mode = DisplayMode.PLACEHOLDER
        self.headers: List[str] = []
        self.records: List[dict] = []
        self.preview_index = 0
        self._counter = itertools.count(len(self.elements))
        self._drag: Optional[Tuple[str, float, float]] = None
        self._stroke: Optional[LineElement] = None

    # -------------------- template <-> scene --------------------

    @classmethod
    def from_template(
        cls,
        template: Template,
        canvas_size: Optional[Tuple[float, float]] = None,
        history_limit: Optional[int] = None,
    ) -> "Scene":
        size = canvas_size or template.stage_size
        conv = template.converter(size)
        return cls(
            elements_to_px(template.elements, conv),
            width=size[0],
            height=size[1],
            background_color=template.background_color,
            name=template.name,
            orientation=template.orientation,
            format=template.format,
            history_limit=history_limit,
        )

    def to_template(self) -> Template:
        elements = elements_to_mm(self.elements, self.converter)
        for el in elements:
            if isinstance(el, TextElement):
                el.text = canonical_text(el)
                el.template_text = None
        return Template(
            name=self.name,
            orientation=self.orientation,
            format=self.format,
            background_color=self.background_color,
            stage_width=int(self.width),
            stage_height=int(self.height),
            elements=elements,
        )

    @property
    def page_size_mm(self) -> Tuple[float, float]:
        return page_size(self.format, self.orientation)

    @property
    def converter(self) -> CoordinateConverter:
        return CoordinateConverter(self.page_size_mm, self.size)

    # -------------------- bookkeeping --------------------

    def _check_editable(self) -> None:
        if self.busy:
            raise SceneBusyError("Scene is locked by a running export")

    def _commit(self) -> None:
        self.invalidate()
        self.history.commit(self.elements)

    def new_id(self, prefix: str) -> str:
        existing = set(self.ids())
        while True:
            candidate = f"{prefix}-{next(self._counter)}"
            if candidate not in existing:
                return candidate

    def _editable(self, element_id: str) -> Element:
        self._check_editable()
        el = self.find(element_id)
        if el.locked:
            raise ValueError(f"Element {element_id} is locked")
        return el

    # -------------------- adding --------------------

    def add(self, element: Element, select: bool = True) -> Element:
        self._check_editable()
        if element.id in self.ids():
            raise ValueError(f"Duplicate element id: {element.id}")
        self.elements.append(element)
        if select:
            self.selected_ids = [element.id]
        self._commit()
        return element

    def create(self, type_name: str, **attrs) -> Element:
        cls = ELEMENT_TYPES.get(type_name)
        if cls is None:
            raise ValueError(f"Unknown element type: {type_name!r}")
        element_id = attrs.pop("id", None) or self.new_id(type_name)
        return self.add(cls(id=element_id, **attrs))

    def add_dynamic_field(self, field: str, x: float, y: float, **attrs) -> TextElement:
        """Drop a CSV column onto the canvas as a centred placeholder text."""
        if not (0 <= x <= self.width and 0 <= y <= self.height):
            raise ValueError(f"Drop position ({x}, {y}) is outside the stage")
        params = {
            "text": placeholder(field),
            "x": x,
            "y": y,
            "font_size": 30.0,
            "font_family": "Helvetica",
            "align": "center",
            "width": 300.0,
            "is_dynamic": True,
            "data_field": field,
        }
        params.update(attrs)
        return self.create("text", **params)

    def add_emoji(self, emoji: str, x: float = 100.0, y: float = 100.0, size: float = 48.0) -> TextElement:
        return self.create("text", text=emoji, x=x, y=y, font_size=size)

    def duplicate(self, element_id: str, offset: float = 20.0) -> Element:
        self._check_editable()
        source = self.find(element_id)
        copy_el = source.clone(id=self.new_id(source.type), x=source.x + offset, y=source.y + offset, locked=False)
        return self.add(copy_el)

    # -------------------- changing --------------------

    def update(self, element_id: str, **attrs) -> Element:
        self._check_editable()
        el = self.find(element_id)
        names = {f.name for f in fields(el)} - {"id"} - set(el.transient_fields)
        unknown = set(attrs) - names
        if unknown:
            raise ValueError(f"Unknown attribute(s) for {el.type}: {', '.join(sorted(unknown))}")
        changed = False
        for key, value in attrs.items():
            if getattr(el, key) != value:
                setattr(el, key, copy.deepcopy(value))
                changed = True
        if changed and "text" in attrs and isinstance(el, TextElement):
            # typed text becomes the element's own content
            el.template_text = None
        if changed:
            self._commit()
        return el

    def move(self, element_id: str, x: float, y: float) -> Element:
        el = self._editable(element_id)
        if (el.x, el.y) == (x, y):
            return el
        el.x, el.y = x, y
        self._commit()
        return el

    def begin_drag(self, element_id: str) -> None:
        el = self._editable(element_id)
        self._drag = (element_id, el.x, el.y)

    def drag_to(self, x: float, y: float) -> None:
        if self._drag is None:
            raise RuntimeError("No drag in progress")
        self._check_editable()
        el = self.find(self._drag[0])
        el.x, el.y = x, y
        self.invalidate()

    def end_drag(self) -> Element:
        if self._drag is None:
            raise RuntimeError("No drag in progress")
        element_id, start_x, start_y = self._drag
        self._drag = None
        el = self.find(element_id)
        if (el.x, el.y) != (start_x, start_y):
            self._commit()
        return el

    def apply_transform(self, element_id: str, result: TransformResult) -> Element:
        """
        Fold a finished resize/rotate into absolute geometry.

        Scale is relative to the last committed size and never kept on the
        element. Images keep its sign as their mirror state; the reported
        position is already the on-canvas anchor for that state.
        """
        el = self._editable(element_id)
        sx, sy = abs(result.scale_x), abs(result.scale_y)
        if isinstance(el, (RectElement, ImageElement)):
            el.width = max(MIN_SIZE, el.width * sx)
            el.height = max(MIN_SIZE, el.height * sy)
        elif isinstance(el, TextElement):
            width = el.width if el.width is not None else self.text_layout(el).width
            el.width = max(MIN_SIZE, width * sx)
        elif isinstance(el, CircleElement):
            el.radius = max(MIN_SIZE / 2, el.radius * max(sx, sy))
        elif isinstance(el, StarElement):
            factor = max(sx, sy)
            el.inner_radius = el.inner_radius * factor
            el.outer_radius = max(MIN_SIZE / 2, el.outer_radius * factor)
        elif isinstance(el, LineElement):
            el.points = [p * (sx if i % 2 == 0 else sy) for i, p in enumerate(el.points)]

        if el.flippable:
            el.scale_x = math.copysign(1.0, result.scale_x)
            el.scale_y = math.copysign(1.0, result.scale_y)
        else:
            el.scale_x = el.scale_y = 1.0
        el.x, el.y = result.x, result.y
        el.rotation = result.rotation
        el.skew_x, el.skew_y = result.skew_x, result.skew_y
        self._commit()
        return el

    def flip(self, element_id: str, axis: str = "x") -> Element:
        """Mirror an image in place; its visual box does not move."""
        el = self._editable(element_id)
        if not el.flippable:
            raise ValueError(f"Elements of type {el.type} cannot be flipped")
        ox, oy = el.axis_offset(axis)
        if axis == "x":
            el.scale_x = -el.scale_x
            mirrored = el.scale_x < 0
        else:
            el.scale_y = -el.scale_y
            mirrored = el.scale_y < 0
        direction = 1.0 if mirrored else -1.0
        el.x += direction * ox
        el.y += direction * oy
        self._commit()
        return el

    def toggle_lock(self, element_id: str) -> Element:
        self._check_editable()
        el = self.find(element_id)
        el.locked = not el.locked
        self._commit()
        return el

    # -------------------- removing --------------------

    def remove(self, element_ids: Sequence[str]) -> List[Element]:
        self._check_editable()
        doomed = set(element_ids)
        removed = [el for el in self.elements if el.id in doomed]
        if not removed:
            return []
        self.elements = [el for el in self.elements if el.id not in doomed]
        self.selected_ids = [i for i in self.selected_ids if i not in doomed]
        self._commit()
        return removed

    def delete_selected(self) -> List[Element]:
        return self.remove(list(self.selected_ids))

    # -------------------- z-order --------------------

    def _reorder(self, element_id: str, target: int) -> None:
        self._check_editable()
        index = self.index_of(element_id)
        target = max(0, min(target, len(self.elements) - 1))
        if index == target:
            return
        el = self.elements.pop(index)
        self.elements.insert(target, el)
        self._commit()

    def bring_to_front(self, element_id: str) -> None:
        self._reorder(element_id, len(self.elements) - 1)

    def send_to_back(self, element_id: str) -> None:
        self._reorder(element_id, 0)

    def bring_forward(self, element_id: str) -> None:
        self._reorder(element_id, self.index_of(element_id) + 1)

    def send_backward(self, element_id: str) -> None:
        self._reorder(element_id, self.index_of(element_id) - 1)

    # -------------------- pen strokes --------------------

    def begin_stroke(self, x: float, y: float, stroke: str = "#000000", stroke_width: float = 3.0) -> LineElement:
        self._check_editable()
        # points stay absolute while drawing; element origin is the stage origin
        self._stroke = LineElement(id=self.new_id("pen"), points=[x, y], stroke=stroke, stroke_width=stroke_width)
        return self._stroke

    def extend_stroke(self, x: float, y: float) -> None:
        if self._stroke is None:
            raise RuntimeError("No stroke in progress")
        self._stroke.points.extend([x, y])

    def end_stroke(self) -> Optional[LineElement]:
        stroke, self._stroke = self._stroke, None
        if stroke is None or len(stroke.points) < 4:
            return None
        self.add(stroke, select=False)
        return stroke

    # -------------------- selection --------------------

    def select(self, element_id: str, additive: bool = False) -> List[str]:
        self.find(element_id)
        if not additive:
            self.selected_ids = [element_id]
        elif element_id in self.selected_ids:
            self.selected_ids = [i for i in self.selected_ids if i != element_id]
        else:
            self.selected_ids = self.selected_ids + [element_id]
        return list(self.selected_ids)

    def click(self, element_id: Optional[str], additive: bool = False) -> List[str]:
        """Pointer click on an element, or on empty canvas when ``element_id`` is None."""
        if element_id is None:
            self.clear_selection()
            return []
        return self.select(element_id, additive=additive)

    def select_in_rect(self, rect: Rect, additive: bool = False) -> List[str]:
        hits = [el.id for el in self.elements_in(rect)]
        if additive:
            hits = self.selected_ids + [i for i in hits if i not in self.selected_ids]
        self.selected_ids = hits
        return list(self.selected_ids)

    def clear_selection(self) -> None:
        self.selected_ids = []

    # -------------------- history --------------------

    def _restore(self, snapshot: Optional[List[Element]]) -> bool:
        if snapshot is None:
            return False
        self.elements = snapshot
        dynamic = list(self.dynamic_text())
        if dynamic:
            showing_values = any(el.template_text is not None for el in dynamic)
            self.display_mode = DisplayMode.ACTUAL if showing_values else DisplayMode.PLACEHOLDER
        self.clear_selection()
        self.invalidate()
        return True

    def undo(self) -> bool:
        self._check_editable()
        return self._restore(self.history.undo())

    def redo(self) -> bool:
        self._check_editable()
        return self._restore(self.history.redo())

    # -------------------- dynamic data preview --------------------

    def set_dataset(self, headers: Sequence[str], records: Sequence[Mapping[str, str]]) -> None:
        self.headers = list(headers)
        self.records = [dict(r) for r in records]
        self.preview_index = 0

    @property
    def preview_record(self) -> Optional[dict]:
        if not self.records:
            return None
        return self.records[self.preview_index]

    def set_display_mode(self, mode: DisplayMode) -> None:
        """Rewrite every dynamic text for ``mode``; one history entry."""
        self._check_editable()
        mode = DisplayMode(mode)
        record = self.preview_record if mode == DisplayMode.ACTUAL else None
        for el in self.dynamic_text():
            apply_mode(el, mode, record)
        self.display_mode = mode
        logger.debug("Display mode %s, preview record %d", mode.value, self.preview_index + 1)
        self._commit()

    def show_record(self, index: int) -> Optional[dict]:
        if not self.records:
            return None
        self.preview_index = max(0, min(index, len(self.records) - 1))
        if self.display_mode == DisplayMode.ACTUAL:
            self.set_display_mode(DisplayMode.ACTUAL)
        return self.preview_record

    def next_record(self) -> Optional[dict]:
        return self.show_record(self.preview_index + 1)

    def previous_record(self) -> Optional[dict]:
        return self.show_record(self.preview_index - 1)

    # -------------------- exports --------------------

    @contextmanager
    def exclusive(self) -> Iterator["Scene"]:
        """Hold the live scene for an export: no selection, no overlay, no edits."""
        if self.busy:
            raise SceneBusyError("Scene is already held by another export")
        logger.debug("Scene %s held for export", self.name)
        was_visible = self.overlay_visible
        self.clear_selection()
        self.overlay_visible = False
        self.busy = True
        self.invalidate()
        try:
            yield self
        finally:
            self.busy = False
            self.overlay_visible = was_visible
            self.invalidate()
