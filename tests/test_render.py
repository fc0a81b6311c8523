from __future__ import annotations

import base64
import io

import fitz  # PyMuPDF
import pytest
from PIL import Image
from reportlab.lib import colors

from certdesign import config
from certdesign.design.elements import CircleElement, ImageElement, RectElement, TextElement
from certdesign.design.scene import Scene
from certdesign.design.stage import Stage
from certdesign.design.template import Template
from certdesign.pipeline.render import (
    PdfComposer,
    _hex,
    capture,
    draw_vector,
    page_layout,
    rasterize,
    render,
    render_preview,
    render_thumbnail,
    to_pdf,
)


def _png_data_url(size=(8, 8), color=(200, 30, 30)) -> str:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


def _default_scene() -> Scene:
    return Scene.from_template(Template.from_dict(config.load_default_template()))


def _pdf_text(pdf: bytes) -> str:
    with fitz.open(stream=pdf, filetype="pdf") as doc:
        return "".join(page.get_text() for page in doc)


def test_capture_substitutes_and_restores() -> None:
    stage = Stage([TextElement(id="t", text="{{name}}", is_dynamic=True, data_field="name")])
    stage.selected_ids = ["t"]
    with capture(stage, {"name": "Ada"}):
        assert stage.find("t").text == "Ada"
        assert stage.overlay_visible is False
    assert stage.find("t").text == "{{name}}"
    assert stage.overlay_visible is True


def test_capture_restores_after_failure() -> None:
    original = "Dear {{ name }},"
    stage = Stage([TextElement(id="t", text=original, is_dynamic=True, data_field="name")])
    with pytest.raises(RuntimeError):
        with capture(stage, {"name": "Grace"}):
            assert stage.find("t").text == "Dear Grace,"
            raise RuntimeError("rasterizer crashed")
    assert stage.find("t").text == original
    assert stage.overlay_visible is True


def test_vector_page_carries_record_text() -> None:
    scene = _default_scene()
    with capture(scene, {"name": "Ada Lovelace", "course": "Algorithms"}):
        pdf, warnings = draw_vector(scene)
    text = _pdf_text(pdf)
    assert "Certificate of Completion" in text
    assert "Ada Lovelace" in text
    assert "for completing Algorithms" in text
    assert warnings == []
    assert scene.find("recipient").text == "{{name}}"


def test_overlay_never_reaches_export() -> None:
    scene = _default_scene()
    plain = render(scene, pixel_ratio=0.5)
    scene.select("title")
    assert render(scene, pixel_ratio=0.5) == plain
    assert render_preview(scene, pixel_ratio=0.5) != render_preview(Stage(scene.elements, scene.width, scene.height), pixel_ratio=0.5)


def test_raster_size_follows_pixel_ratio() -> None:
    stage = Stage([RectElement(id="r", fill="#ff0000")], width=100, height=50)
    raster = rasterize(stage, pixel_ratio=2)
    assert (raster.width, raster.height) == (200, 100)
    assert Image.open(io.BytesIO(raster.png)).size == (200, 100)


def test_bad_image_is_skipped_with_warning() -> None:
    stage = Stage(
        [
            ImageElement(id="broken", src="not-an-image!!"),
            ImageElement(id="logo", src=_png_data_url(), scale_x=-1.0, x=100.0),
        ],
        width=200,
        height=120,
    )
    raster = rasterize(stage, pixel_ratio=1)
    assert raster.warnings == ("Image broken could not be decoded and was skipped",)
    assert raster.width == 200


def test_pdf_page_matches_template_size() -> None:
    png = rasterize(Stage(width=100, height=70), pixel_ratio=1).png
    with fitz.open(stream=to_pdf(png, (297.0, 210.0), "landscape"), filetype="pdf") as doc:
        rect = doc[0].rect
    assert rect.width == pytest.approx(297 / 25.4 * 72, abs=0.01)
    assert rect.height == pytest.approx(210 / 25.4 * 72, abs=0.01)

    with fitz.open(stream=to_pdf(png, (215.9, 279.4), "portrait"), filetype="pdf") as doc:
        assert doc[0].rect.width == pytest.approx(612, abs=0.01)


def test_composer_needs_pages() -> None:
    composer = PdfComposer((297.0, 210.0))
    with pytest.raises(ValueError):
        composer.finish()


def test_thumbnail_fits_max_side() -> None:
    size = Image.open(io.BytesIO(render_thumbnail(_default_scene(), max_side=150))).size
    assert abs(size[0] - 150) <= 1
    assert abs(size[1] - 105) <= 1


def test_hex_colors() -> None:
    assert _hex("transparent") is None
    assert _hex("") is None
    assert _hex("#ff0000") == colors.HexColor("#ff0000")
    assert _hex("red") == colors.red
    assert _hex("no-such-colour", colors.black) == colors.black


def test_page_layout_keeps_shapes_round() -> None:
    stage = Stage(
        [
            CircleElement(id="c", x=500.0, y=350.0, radius=50.0),
            RectElement(id="r", x=100.0, y=700.0 - 70.0, width=200.0, height=70.0),
        ],
        width=1000,
        height=700,
        page_size_mm=(297.0, 210.0),
    )
    laid = page_layout(stage)
    assert laid.width == 1000
    assert laid.height == pytest.approx(1000 * 210 / 297)
    circle = laid.find("c")
    assert circle.radius == pytest.approx(50.0, abs=1e-3)
    assert (circle.x, circle.y) == (pytest.approx(500.0, abs=1e-3), pytest.approx(laid.height / 2, abs=1e-3))
    rect = laid.find("r")
    # bottom edge still sits on the bottom of the page
    assert rect.y + rect.height == pytest.approx(laid.height, abs=1e-3)
    assert stage.find("c").y == 350.0


def test_page_layout_leaves_bare_canvas_alone() -> None:
    stage = Stage(width=100, height=70)
    assert page_layout(stage) is stage
    matching = Stage(width=297, height=210, page_size_mm=(297.0, 210.0))
    assert page_layout(matching) is matching


def test_pdf_raster_has_page_aspect() -> None:
    scene = _default_scene()
    raster = rasterize(scene.offscreen(), pixel_ratio=0.5, fit_page=True)
    assert raster.width == 500
    assert raster.width / raster.height == pytest.approx(297 / 210, abs=0.01)
    assert rasterize(scene.offscreen(), pixel_ratio=0.5).height == 350
