from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .. import config
from .elements import Element, elements_from_dicts
from .units import CoordinateConverter


ORIENTATIONS = ("landscape", "portrait")


def page_size(fmt: str, orientation: str) -> Tuple[float, float]:
    key = (fmt or "").strip().lower()
    if key not in config.PAGE_FORMATS:
        raise ValueError(f"Unsupported page format: {fmt}")
    if orientation not in ORIENTATIONS:
        raise ValueError(f"Unsupported orientation: {orientation}")
    short, long = sorted(config.PAGE_FORMATS[key])
    return (long, short) if orientation == "landscape" else (short, long)


@dataclass
class Template:
    """Serializable page definition; element geometry is in millimetres."""

    name: str = "Untitled Design"
    orientation: str = config.DEFAULT_ORIENTATION
    format: str = config.DEFAULT_FORMAT
    background_color: str = "#ffffff"
    stage_width: int = config.STAGE_WIDTH
    stage_height: int = config.STAGE_HEIGHT
    elements: List[Element] = field(default_factory=list)
    version: int = config.FORMAT_VERSION

    @property
    def page_size_mm(self) -> Tuple[float, float]:
        return page_size(self.format, self.orientation)

    @property
    def stage_size(self) -> Tuple[int, int]:
        return (self.stage_width, self.stage_height)

    def converter(self, canvas_size: Optional[Tuple[float, float]] = None) -> CoordinateConverter:
        return CoordinateConverter(self.page_size_mm, canvas_size or self.stage_size)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "orientation": self.orientation,
            "format": self.format,
            "backgroundColor": self.background_color,
            "stageWidth": self.stage_width,
            "stageHeight": self.stage_height,
            "elements": [el.to_dict() for el in self.elements],
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Template":
        if not isinstance(data, dict):
            raise ValueError("Template must be a JSON object")
        items = data.get("elements") or []
        if not isinstance(items, list):
            raise ValueError("Template elements must be a list")
        template = cls(
            name=str(data.get("name") or "Untitled Design"),
            orientation=str(data.get("orientation") or config.DEFAULT_ORIENTATION),
            format=str(data.get("format") or config.DEFAULT_FORMAT).lower(),
            background_color=str(data.get("backgroundColor") or "#ffffff"),
            stage_width=int(data.get("stageWidth") or config.STAGE_WIDTH),
            stage_height=int(data.get("stageHeight") or config.STAGE_HEIGHT),
            elements=elements_from_dicts(items),
            version=int(data.get("version") or config.FORMAT_VERSION),
        )
        page_size(template.format, template.orientation)
        return template

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json(cls, text: str) -> "Template":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid template JSON: {e}") from e
        return cls.from_dict(data)


def load_template(path: Path) -> Template:
    if not path.exists():
        raise FileNotFoundError(f"Template not found: {path}")
    return Template.from_json(path.read_text(encoding="utf-8"))


def write_template(template: Template, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(template.to_json(), encoding="utf-8")
    return path


def element_to_px(element: Element, conv: CoordinateConverter) -> Element:
    out = copy.deepcopy(element)
    # mirrored content is anchored on its far edge while on canvas
    dx, dy = element.flip_offset() if element.flippable else (0.0, 0.0)
    out.x = conv.x_to_px(element.x + dx)
    out.y = conv.y_to_px(element.y + dy)
    for name in element.x_lengths:
        value = getattr(element, name)
        if value is not None:
            setattr(out, name, conv.x_to_px(value))
    for name in element.y_lengths:
        value = getattr(element, name)
        if value is not None:
            setattr(out, name, conv.y_to_px(value))
    for name in element.point_fields:
        setattr(out, name, conv.points_to_px(getattr(element, name)))
    for name in element.font_fields:
        setattr(out, name, conv.font_to_px(getattr(element, name)))
    for name in element.stroke_fields:
        setattr(out, name, conv.stroke_to_px(getattr(element, name)))
    return out


def element_to_mm(element: Element, conv: CoordinateConverter) -> Element:
    digits = config.ROUND_DIGITS
    out = copy.deepcopy(element)
    for name in element.x_lengths:
        value = getattr(element, name)
        if value is not None:
            setattr(out, name, round(conv.x_to_mm(value), digits))
    for name in element.y_lengths:
        value = getattr(element, name)
        if value is not None:
            setattr(out, name, round(conv.y_to_mm(value), digits))
    for name in element.point_fields:
        setattr(out, name, [round(p, digits) for p in conv.points_to_mm(getattr(element, name))])
    for name in element.font_fields:
        setattr(out, name, conv.font_to_pt(getattr(element, name)))
    for name in element.stroke_fields:
        setattr(out, name, conv.stroke_to_pt(getattr(element, name)))
    # offset measured with the stored (mm) size so loading reverses it exactly
    dx, dy = out.flip_offset() if element.flippable else (0.0, 0.0)
    out.x = round(conv.x_to_mm(element.x) - dx, digits)
    out.y = round(conv.y_to_mm(element.y) - dy, digits)
    return out


def elements_to_px(elements: Sequence[Element], conv: CoordinateConverter) -> List[Element]:
    return [element_to_px(el, conv) for el in elements]


def elements_to_mm(elements: Sequence[Element], conv: CoordinateConverter) -> List[Element]:
    return [element_to_mm(el, conv) for el in elements]
