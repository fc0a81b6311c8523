from __future__ import annotations

import copy
import math
from dataclasses import asdict, dataclass, field, fields
from typing import ClassVar, Dict, List, Optional, Tuple, Type


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


@dataclass
class Element:
    """
    One visual object on a page.

    Geometry is in millimetres inside a Template and in canvas pixels while
    the element sits on a stage; the ``x_lengths``/``y_lengths``/``point_fields``
    class attributes tell the converter which fields follow which axis.
    """

    type: ClassVar[str] = ""
    x_lengths: ClassVar[Tuple[str, ...]] = ()
    y_lengths: ClassVar[Tuple[str, ...]] = ()
    point_fields: ClassVar[Tuple[str, ...]] = ()
    font_fields: ClassVar[Tuple[str, ...]] = ()
    stroke_fields: ClassVar[Tuple[str, ...]] = ()
    # editor state that never goes into a template
    transient_fields: ClassVar[Tuple[str, ...]] = ()
    flippable: ClassVar[bool] = False

    id: str
    x: float = 0.0
    y: float = 0.0
    rotation: float = 0.0
    scale_x: float = 1.0
    scale_y: float = 1.0
    skew_x: float = 0.0
    skew_y: float = 0.0
    locked: bool = False
    opacity: float = 1.0

    def local_box(self, text_height: Optional[float] = None) -> Tuple[float, float, float, float]:
        """(left, top, width, height) before the element's own transform."""
        return (0.0, 0.0, 0.0, 0.0)

    def axis_offset(self, axis: str) -> Tuple[float, float]:
        """Shift of the visual anchor when the element mirrors about ``axis``."""
        _, _, width, height = self.local_box()
        theta = math.radians(self.rotation)
        if axis == "x":
            return (width * math.cos(theta), width * math.sin(theta))
        if axis == "y":
            return (-height * math.sin(theta), height * math.cos(theta))
        raise ValueError(f"Unknown axis: {axis!r}")

    def flip_offset(self) -> Tuple[float, float]:
        """Combined anchor shift for every currently mirrored axis."""
        dx = dy = 0.0
        if self.scale_x < 0:
            ox, oy = self.axis_offset("x")
            dx += ox
            dy += oy
        if self.scale_y < 0:
            ox, oy = self.axis_offset("y")
            dx += ox
            dy += oy
        return dx, dy

    def to_dict(self) -> dict:
        data = {"id": self.id, "type": self.type}
        for key, value in asdict(self).items():
            if key == "id" or key in self.transient_fields:
                continue
            data[_camel(key)] = copy.deepcopy(value)
        return data

    def clone(self, **changes) -> "Element":
        duplicate = copy.deepcopy(self)
        for key, value in changes.items():
            setattr(duplicate, key, value)
        return duplicate


@dataclass
class TextElement(Element):
    type: ClassVar[str] = "text"
    x_lengths: ClassVar[Tuple[str, ...]] = ("width",)
    font_fields: ClassVar[Tuple[str, ...]] = ("font_size",)
    transient_fields: ClassVar[Tuple[str, ...]] = ("template_text",)

    text: str = "Text"
    font_size: float = 16.0
    font_family: str = "Helvetica"
    font_style: str = "normal"
    fill: str = "#000000"
    align: str = "left"
    width: Optional[float] = None
    line_height: float = 1.0
    is_dynamic: bool = False
    data_field: Optional[str] = None
    # token form of ``text`` while record values are shown in its place
    template_text: Optional[str] = field(default=None, repr=False, compare=False)

    def local_box(self, text_height: Optional[float] = None) -> Tuple[float, float, float, float]:
        lines = max(1, len(self.text.split("\n")))
        height = text_height if text_height is not None else self.font_size * self.line_height * lines
        width = self.width if self.width is not None else self.font_size * 0.6 * max(len(l) for l in self.text.split("\n"))
        return (0.0, 0.0, float(width), float(height))


@dataclass
class RectElement(Element):
    type: ClassVar[str] = "rectangle"
    x_lengths: ClassVar[Tuple[str, ...]] = ("width", "corner_radius")
    y_lengths: ClassVar[Tuple[str, ...]] = ("height",)
    stroke_fields: ClassVar[Tuple[str, ...]] = ("stroke_width",)

    width: float = 100.0
    height: float = 50.0
    fill: str = "transparent"
    stroke: str = "#000000"
    stroke_width: float = 1.0
    corner_radius: float = 0.0

    def local_box(self, text_height: Optional[float] = None) -> Tuple[float, float, float, float]:
        return (0.0, 0.0, self.width, self.height)


@dataclass
class CircleElement(Element):
    type: ClassVar[str] = "circle"
    x_lengths: ClassVar[Tuple[str, ...]] = ("radius",)
    stroke_fields: ClassVar[Tuple[str, ...]] = ("stroke_width",)

    radius: float = 50.0
    fill: str = "transparent"
    stroke: str = "#000000"
    stroke_width: float = 1.0

    def local_box(self, text_height: Optional[float] = None) -> Tuple[float, float, float, float]:
        return (-self.radius, -self.radius, 2 * self.radius, 2 * self.radius)


@dataclass
class StarElement(Element):
    type: ClassVar[str] = "star"
    x_lengths: ClassVar[Tuple[str, ...]] = ("inner_radius", "outer_radius")
    stroke_fields: ClassVar[Tuple[str, ...]] = ("stroke_width",)

    num_points: int = 5
    inner_radius: float = 30.0
    outer_radius: float = 60.0
    fill: str = "transparent"
    stroke: str = "#000000"
    stroke_width: float = 1.0

    def vertices(self) -> List[Tuple[float, float]]:
        # first point straight up, alternating outer/inner, clockwise on screen
        out: List[Tuple[float, float]] = []
        count = max(2, int(self.num_points)) * 2
        for i in range(count):
            radius = self.outer_radius if i % 2 == 0 else self.inner_radius
            angle = math.pi * i / (count / 2) - math.pi / 2
            out.append((radius * math.cos(angle), radius * math.sin(angle)))
        return out

    def local_box(self, text_height: Optional[float] = None) -> Tuple[float, float, float, float]:
        r = max(self.outer_radius, self.inner_radius)
        return (-r, -r, 2 * r, 2 * r)


@dataclass
class LineElement(Element):
    type: ClassVar[str] = "line"
    point_fields: ClassVar[Tuple[str, ...]] = ("points",)
    stroke_fields: ClassVar[Tuple[str, ...]] = ("stroke_width",)

    points: List[float] = field(default_factory=lambda: [0.0, 0.0, 100.0, 0.0])
    stroke: str = "#000000"
    stroke_width: float = 1.0
    line_cap: str = "round"
    line_join: str = "round"

    def pairs(self) -> List[Tuple[float, float]]:
        pts = list(self.points)
        return [(pts[i], pts[i + 1]) for i in range(0, len(pts) - 1, 2)]

    def local_box(self, text_height: Optional[float] = None) -> Tuple[float, float, float, float]:
        pairs = self.pairs() or [(0.0, 0.0)]
        xs = [p[0] for p in pairs]
        ys = [p[1] for p in pairs]
        pad = self.stroke_width / 2.0
        return (min(xs) - pad, min(ys) - pad, max(xs) - min(xs) + 2 * pad, max(ys) - min(ys) + 2 * pad)


@dataclass
class ArrowElement(LineElement):
    type: ClassVar[str] = "arrow"

    fill: str = "#000000"
    pointer_length: float = 10.0
    pointer_width: float = 10.0


@dataclass
class ImageElement(Element):
    type: ClassVar[str] = "image"
    x_lengths: ClassVar[Tuple[str, ...]] = ("width",)
    y_lengths: ClassVar[Tuple[str, ...]] = ("height",)
    flippable: ClassVar[bool] = True

    src: str = ""
    width: float = 100.0
    height: float = 100.0

    def local_box(self, text_height: Optional[float] = None) -> Tuple[float, float, float, float]:
        return (0.0, 0.0, self.width, self.height)


ELEMENT_TYPES: Dict[str, Type[Element]] = {
    cls.type: cls
    for cls in (TextElement, RectElement, CircleElement, StarElement, LineElement, ArrowElement, ImageElement)
}

# names written by older editor builds
TYPE_ALIASES: Dict[str, str] = {"rect": "rectangle"}
FIELD_ALIASES: Dict[str, str] = {
    "fillColor": "fill",
    "borderColor": "stroke",
    "borderWidth": "strokeWidth",
    "thickness": "strokeWidth",
    "font": "fontFamily",
    "color": "fill",
}


def element_from_dict(data: dict) -> Element:
    raw_type = str(data.get("type", "")).strip()
    type_name = TYPE_ALIASES.get(raw_type, raw_type)
    cls = ELEMENT_TYPES.get(type_name)
    if cls is None:
        raise ValueError(f"Unknown element type: {raw_type!r}")
    if not data.get("id"):
        raise ValueError(f"Element of type {type_name!r} has no id")

    normalized = {}
    for key, value in data.items():
        target = FIELD_ALIASES.get(key, key)
        # canonical keys win over legacy aliases
        if target in normalized and target != key:
            continue
        normalized[target] = value

    if cls is TextElement and "fontStyle" not in normalized and ("bold" in data or "italic" in data):
        bold = bool(data.get("bold"))
        italic = bool(data.get("italic"))
        normalized["fontStyle"] = " ".join(p for p in ("bold" if bold else "", "italic" if italic else "") if p) or "normal"

    kwargs = {}
    for f in fields(cls):
        if f.name in cls.transient_fields:
            continue
        key = _camel(f.name)
        if key in normalized and normalized[key] is not None:
            kwargs[f.name] = copy.deepcopy(normalized[key])
    kwargs["id"] = str(data["id"])
    return cls(**kwargs)


def elements_from_dicts(items: List[dict]) -> List[Element]:
    seen = set()
    out: List[Element] = []
    for item in items:
        element = element_from_dict(item)
        if element.id in seen:
            raise ValueError(f"Duplicate element id: {element.id}")
        seen.add(element.id)
        out.append(element)
    return out
