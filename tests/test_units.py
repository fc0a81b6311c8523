from __future__ import annotations

import pytest

from certdesign.design.units import CoordinateConverter, to_mm, to_pixels


@pytest.mark.parametrize(
    "page,canvas",
    [(297.0, 1000.0), (210.0, 700.0), (215.9, 800.0), (279.4, 612.0)],
)
def test_mm_pixel_round_trip(page: float, canvas: float) -> None:
    for value in (0.0, 0.1, 12.5, 148.5, page):
        assert to_mm(to_pixels(value, page, canvas), page, canvas) == pytest.approx(value)
        assert to_pixels(to_mm(value, page, canvas), page, canvas) == pytest.approx(value)


def test_non_positive_sizes_are_rejected() -> None:
    with pytest.raises(ValueError):
        to_pixels(10, 0, 1000)
    with pytest.raises(ValueError):
        to_mm(10, 297, 0)


def test_converter_maps_each_axis_separately() -> None:
    conv = CoordinateConverter((297.0, 210.0), (1000.0, 700.0))
    assert conv.x_to_px(297.0) == pytest.approx(1000.0)
    assert conv.y_to_px(210.0) == pytest.approx(700.0)
    assert conv.points_to_px([29.7, 21.0, 0.0, 0.0]) == pytest.approx([100.0, 70.0, 0.0, 0.0])
    assert conv.points_to_mm([100.0, 70.0]) == pytest.approx([29.7, 21.0])


def test_font_and_stroke_boost_divides_back_out() -> None:
    assert CoordinateConverter.font_to_px(24) == 36
    assert CoordinateConverter.font_to_pt(CoordinateConverter.font_to_px(24)) == 24
    assert CoordinateConverter.font_to_pt(CoordinateConverter.font_to_px(13.3333)) == 13.3333
    assert CoordinateConverter.stroke_to_pt(CoordinateConverter.stroke_to_px(0.75)) == 0.75
