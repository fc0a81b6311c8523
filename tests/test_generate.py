from __future__ import annotations

import asyncio
import io
from typing import List

import fitz  # PyMuPDF
import pytest
from PIL import Image

from certdesign import config
from certdesign.design.fields import DisplayMode
from certdesign.design.scene import Scene
from certdesign.design.stage import Stage
from certdesign.design.template import Template
from certdesign.pipeline.generate import (
    BatchCancelled,
    CancelToken,
    generate_batch,
    preview_batch,
)
from certdesign.pipeline.ingest import parse_csv
from certdesign.pipeline.render import Raster, draw_vector, rasterize


def _tiny_png() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (4, 3), (255, 255, 255)).save(buffer, format="PNG")
    return buffer.getvalue()


PNG = _tiny_png()


def _scene() -> Scene:
    return Scene.from_template(Template.from_dict(config.load_default_template()))


class RecordingRasterizer:
    """Notes what the target looked like at capture time."""

    def __init__(self, fail_on: int = -1) -> None:
        self.calls: List[dict] = []
        self.fail_on = fail_on

    def __call__(self, target: Stage, pixel_ratio: float) -> Raster:
        snapshot = {el.id: el.text for el in target.dynamic_text()}
        snapshot["_overlay"] = target.overlay_visible
        snapshot["_target"] = target
        self.calls.append(snapshot)
        if len(self.calls) - 1 == self.fail_on:
            raise RuntimeError("raster backend failed")
        return Raster(PNG, 4, 3)


RECORDS = [
    {"name": "Ada Lovelace", "course": "Algorithms"},
    {"name": "Grace Hopper", "course": "Compilers"},
    {"name": "Alan Turing"},
]


def test_one_artifact_per_record_in_order() -> None:
    scene = _scene()
    rasterizer = RecordingRasterizer()
    result = asyncio.run(generate_batch(scene, RECORDS, rasterizer=rasterizer))

    assert len(result) == 3
    assert [a.filename for a in result] == [
        "certificate_Ada_Lovelace_1.pdf",
        "certificate_Grace_Hopper_2.pdf",
        "certificate_Alan_Turing_3.pdf",
    ]
    assert [a.record_index for a in result] == [0, 1, 2]
    assert [c["recipient"] for c in rasterizer.calls] == ["Ada Lovelace", "Grace Hopper", "Alan Turing"]
    assert rasterizer.calls[2]["course"] == "for completing [course - missing]"
    assert not any(c["_overlay"] for c in rasterizer.calls)
    assert all(a.data.startswith(b"%PDF") for a in result)


def test_live_scene_is_untouched_by_offscreen_batch() -> None:
    scene = _scene()
    scene.select("title")
    entries = len(scene.history)
    rasterizer = RecordingRasterizer()
    asyncio.run(generate_batch(scene, RECORDS[:1], rasterizer=rasterizer))
    assert rasterizer.calls[0]["_target"] is not scene
    assert scene.find("recipient").text == "{{name}}"
    assert scene.selected_ids == ["title"]
    assert len(scene.history) == entries


def test_live_scene_batch_holds_editing() -> None:
    scene = _scene()
    scene.select("title")

    seen = []

    def rasterizer(target: Stage, pixel_ratio: float) -> Raster:
        seen.append((target is scene, scene.busy, list(scene.selected_ids)))
        return Raster(PNG, 4, 3)

    asyncio.run(generate_batch(scene, RECORDS[:2], offscreen=False, rasterizer=rasterizer))
    assert seen == [(True, True, []), (True, True, [])]
    assert scene.busy is False
    assert scene.overlay_visible is True
    assert scene.find("recipient").text == "{{name}}"


def test_ada_lovelace_scenario() -> None:
    dataset = parse_csv("name,course\nAda Lovelace,Algorithms\n")
    scene = _scene()
    texts: List[str] = []

    def rasterizer(target: Stage, pixel_ratio: float) -> Raster:
        pdf, _ = draw_vector(target)
        with fitz.open(stream=pdf, filetype="pdf") as doc:
            texts.append(doc[0].get_text())
        return rasterize(target, pixel_ratio=0.25)

    result = asyncio.run(
        generate_batch(scene, dataset.records, headers=dataset.headers, rasterizer=rasterizer)
    )
    assert [a.filename for a in result] == ["certificate_Ada_Lovelace_1.pdf"]
    assert "Ada Lovelace" in texts[0]
    assert "{{name}}" not in texts[0]
    with fitz.open(stream=result.artifacts[0].data, filetype="pdf") as doc:
        assert doc.page_count == 1


def test_combined_mode() -> None:
    result = asyncio.run(generate_batch(_scene(), RECORDS, mode="combined", rasterizer=RecordingRasterizer()))
    assert len(result) == 1
    artifact = result.artifacts[0]
    assert artifact.filename == config.COMBINED_FILENAME
    assert artifact.record_indices == (0, 1, 2)
    assert artifact.record_index is None
    with fitz.open(stream=artifact.data, filetype="pdf") as doc:
        assert doc.page_count == 3


def test_failed_record_does_not_stop_batch() -> None:
    rasterizer = RecordingRasterizer(fail_on=1)
    scene = _scene()
    result = asyncio.run(generate_batch(scene, RECORDS, rasterizer=rasterizer))
    assert [a.record_index for a in result] == [0, 2]
    assert [f.record_index for f in result.failures] == [1]
    assert "raster backend failed" in result.failures[0].error
    assert result.produced == 2


def test_cancel_between_records() -> None:
    token = CancelToken()
    calls = []

    def rasterizer(target: Stage, pixel_ratio: float) -> Raster:
        calls.append(target)
        token.cancel()
        return Raster(PNG, 4, 3)

    with pytest.raises(BatchCancelled) as info:
        asyncio.run(generate_batch(_scene(), RECORDS, cancel_token=token, rasterizer=rasterizer))
    assert len(calls) == 1
    assert len(info.value.result) == 1


def test_unknown_mode() -> None:
    with pytest.raises(ValueError):
        asyncio.run(generate_batch(_scene(), RECORDS, mode="zip"))


def test_preview_batch() -> None:
    previews = asyncio.run(preview_batch(_scene(), RECORDS, limit=2, max_side=100))
    assert len(previews) == 2
    assert Image.open(io.BytesIO(previews[0])).size[0] in (99, 100, 101)
    assert previews[0] != previews[1]


def test_batch_after_previewing_an_empty_value() -> None:
    records = [{"name": "Ada", "course": ""}, {"name": "Grace", "course": "Compilers"}]
    scene = _scene()
    scene.set_dataset(["name", "course"], records)
    scene.set_display_mode(DisplayMode.ACTUAL)
    assert scene.find("course").text == "for completing "

    rasterizer = RecordingRasterizer()
    asyncio.run(generate_batch(scene, records, rasterizer=rasterizer))

    assert [c["course"] for c in rasterizer.calls] == ["for completing ", "for completing Compilers"]
    assert scene.find("course").text == "for completing "
    saved = {el.id: el.text for el in scene.to_template().elements if getattr(el, "is_dynamic", False)}
    assert saved["course"] == "for completing {{course}}"


def test_batch_after_previewing_a_missing_value() -> None:
    records = [{"name": "Ada"}, {"name": "Grace", "course": "Compilers"}]
    scene = _scene()
    scene.set_dataset(["name", "course"], records)
    scene.set_display_mode(DisplayMode.ACTUAL)

    rasterizer = RecordingRasterizer()
    asyncio.run(generate_batch(scene, records, offscreen=False, rasterizer=rasterizer))

    assert [c["course"] for c in rasterizer.calls] == [
        "for completing [course - missing]",
        "for completing Compilers",
    ]
    assert scene.find("course").text == "for completing [course - missing]"
    assert scene.find("course").template_text == "for completing {{course}}"
