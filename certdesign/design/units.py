from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Tuple

from .. import config


def to_pixels(mm: float, page_size_mm: float, canvas_size_px: float) -> float:
    if page_size_mm <= 0:
        raise ValueError(f"Page size must be positive, got {page_size_mm}")
    return float(mm) * (float(canvas_size_px) / float(page_size_mm))


def to_mm(px: float, page_size_mm: float, canvas_size_px: float) -> float:
    if canvas_size_px <= 0:
        raise ValueError(f"Canvas size must be positive, got {canvas_size_px}")
    return float(px) * (float(page_size_mm) / float(canvas_size_px))


@dataclass(frozen=True)
class CoordinateConverter:
    """
    Per-axis linear mm <-> px mapping for one page on one canvas.

    The page size must be the one declared by the Template being edited, not
    whatever the current canvas would default to, or geometry drifts when a
    template moves between canvases of different sizes.
    """

    page_size_mm: Tuple[float, float]
    canvas_size_px: Tuple[float, float]

    @property
    def scale_x(self) -> float:
        return float(self.canvas_size_px[0]) / float(self.page_size_mm[0])

    @property
    def scale_y(self) -> float:
        return float(self.canvas_size_px[1]) / float(self.page_size_mm[1])

    def x_to_px(self, mm: float) -> float:
        return to_pixels(mm, self.page_size_mm[0], self.canvas_size_px[0])

    def y_to_px(self, mm: float) -> float:
        return to_pixels(mm, self.page_size_mm[1], self.canvas_size_px[1])

    def x_to_mm(self, px: float) -> float:
        return to_mm(px, self.page_size_mm[0], self.canvas_size_px[0])

    def y_to_mm(self, px: float) -> float:
        return to_mm(px, self.page_size_mm[1], self.canvas_size_px[1])

    def points_to_px(self, points: Sequence[float]) -> List[float]:
        # flat [x0, y0, x1, y1, ...]
        return [self.x_to_px(p) if i % 2 == 0 else self.y_to_px(p) for i, p in enumerate(points)]

    def points_to_mm(self, points: Sequence[float]) -> List[float]:
        return [self.x_to_mm(p) if i % 2 == 0 else self.y_to_mm(p) for i, p in enumerate(points)]

    @staticmethod
    def font_to_px(size: float) -> float:
        return float(size) * config.FONT_SCALE

    @staticmethod
    def font_to_pt(size: float) -> float:
        return round(float(size) / config.FONT_SCALE, config.ROUND_DIGITS)

    @staticmethod
    def stroke_to_px(width: float) -> float:
        return float(width) * config.STROKE_SCALE

    @staticmethod
    def stroke_to_pt(width: float) -> float:
        return round(float(width) / config.STROKE_SCALE, config.ROUND_DIGITS)
