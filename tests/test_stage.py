from __future__ import annotations

import asyncio

import pytest

from certdesign.design.elements import RectElement, TextElement
from certdesign.design.stage import Stage, font_name, wrap_text


def test_frame_committed_waits_for_layout_pass() -> None:
    async def scenario() -> None:
        stage = Stage([TextElement(id="t", text="short")])
        before = stage.frames
        stage.find("t").text = "a much longer line"
        stage.invalidate()
        stage.invalidate()
        assert stage.frames == before
        await stage.frame_committed()
        assert stage.frames == before + 1
        assert await stage.frame_committed() == before + 1

    asyncio.run(scenario())


def test_invalidate_without_loop_lays_out_now() -> None:
    stage = Stage()
    stage.invalidate()
    assert stage.frames == 1


def test_frame_clock_survives_a_new_event_loop() -> None:
    stage = Stage([TextElement(id="t")])

    async def touch() -> int:
        stage.invalidate()
        return await stage.frame_committed()

    first = asyncio.run(touch())
    assert asyncio.run(touch()) == first + 1


def test_offscreen_copy_is_private() -> None:
    stage = Stage([TextElement(id="t", text="{{name}}", is_dynamic=True, data_field="name")])
    stage.selected_ids = ["t"]
    copy = stage.offscreen()
    copy.find("t").text = "changed"
    assert stage.find("t").text == "{{name}}"
    assert copy.overlay_visible is False
    assert copy.selected_ids == []


def test_bounds_follow_rotation() -> None:
    stage = Stage([RectElement(id="r", x=100, y=100, width=100, height=50, rotation=90)])
    assert stage.bounds(stage.find("r")) == pytest.approx((50, 100, 50, 100))


def test_wrap_text() -> None:
    lines = wrap_text("alpha beta gamma delta", "Helvetica", 10, 60)
    assert len(lines) > 1
    assert " ".join(lines) == "alpha beta gamma delta"
    assert wrap_text("one\ntwo", "Helvetica", 10, None) == ["one", "two"]
    assert wrap_text("", "Helvetica", 10, 50) == [""]


def test_font_names() -> None:
    assert font_name("Arial", "bold") == "Helvetica-Bold"
    assert font_name("Times New Roman", "bold italic") == "Times-BoldItalic"
    assert font_name("Comic Sans", "italic") == "Helvetica-Oblique"
