from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Mapping, Optional, Union

from .. import config
from .elements import TextElement


logger = logging.getLogger(__name__)

TOKEN_RE = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")


class DisplayMode(str, Enum):
    PLACEHOLDER = "placeholder"
    ACTUAL = "actual"


@dataclass(frozen=True)
class Literal:
    text: str


@dataclass(frozen=True)
class FieldRef:
    name: str


Segment = Union[Literal, FieldRef]


def placeholder(field: str) -> str:
    return "{{" + field + "}}"


def missing_marker(field: str) -> str:
    return config.MISSING_FIELD_MARKER.format(field=field)


def parse_segments(text: str) -> List[Segment]:
    """Split ``text`` into literal runs and ``{{field}}`` references."""
    out: List[Segment] = []
    pos = 0
    for match in TOKEN_RE.finditer(text or ""):
        if match.start() > pos:
            out.append(Literal(text[pos : match.start()]))
        out.append(FieldRef(match.group(1)))
        pos = match.end()
    if pos < len(text or ""):
        out.append(Literal(text[pos:]))
    return out


def join_segments(segments: List[Segment]) -> str:
    return "".join(s.text if isinstance(s, Literal) else placeholder(s.name) for s in segments)


def record_value(record: Optional[Mapping[str, str]], field: str) -> Optional[str]:
    if record is None:
        return None
    value = record.get(field)
    if value is None:
        return None
    return str(value)


def source_text(element: TextElement) -> str:
    """Token form of the element's content, whatever it currently shows."""
    if element.template_text is not None:
        return element.template_text
    return element.text


def element_segments(element: TextElement) -> List[Segment]:
    """
    Segments of a dynamic element's token form.

    A dynamic element bound to a column but holding no reference at all
    (older templates stored sample data there) stands for the bare value.
    """
    segments = parse_segments(source_text(element))
    if not element.is_dynamic or not element.data_field:
        return segments
    if any(isinstance(s, FieldRef) for s in segments):
        return segments
    return [FieldRef(element.data_field)]


def _render(segments: List[Segment], mode: DisplayMode, record: Optional[Mapping[str, str]]) -> str:
    parts: List[str] = []
    for seg in segments:
        if isinstance(seg, Literal):
            parts.append(seg.text)
            continue
        if mode == DisplayMode.PLACEHOLDER:
            parts.append(placeholder(seg.name))
            continue
        value = record_value(record, seg.name)
        if value is None:
            logger.debug("No value for field %s, rendering marker", seg.name)
            parts.append(missing_marker(seg.name))
        else:
            parts.append(value)
    return "".join(parts)


def resolve_display_text(
    element: TextElement,
    mode: DisplayMode,
    record: Optional[Mapping[str, str]] = None,
) -> str:
    """Text to show for ``element`` in ``mode``; ``record`` supplies actual values."""
    if not isinstance(element, TextElement) or not element.is_dynamic or not element.data_field:
        return element.text if isinstance(element, TextElement) else ""
    return _render(element_segments(element), DisplayMode(mode), record)


def canonical_text(element: TextElement) -> str:
    """Placeholder form, suitable for storing in a template."""
    if not element.is_dynamic or not element.data_field:
        return element.text
    return join_segments(element_segments(element))


def apply_mode(element: TextElement, mode: DisplayMode, record: Optional[Mapping[str, str]] = None) -> None:
    """Write the text for ``mode`` into ``element``, keeping its token form alongside."""
    canonical = canonical_text(element)
    element.text = resolve_display_text(element, mode, record)
    element.template_text = canonical if DisplayMode(mode) == DisplayMode.ACTUAL else None


def dynamic_elements(elements) -> List[TextElement]:
    return [el for el in elements if isinstance(el, TextElement) and el.is_dynamic and el.data_field]


def referenced_fields(elements) -> List[str]:
    out: List[str] = []
    for el in dynamic_elements(elements):
        for seg in element_segments(el):
            if isinstance(seg, FieldRef) and seg.name not in out:
                out.append(seg.name)
    return out
