from __future__ import annotations

import logging
from contextlib import nullcontext
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Mapping, Optional, Sequence, Tuple

from .. import config
from ..design.scene import Scene
from ..design.stage import Stage
from .metadata import build_filename
from .render import PdfComposer, Raster, capture, rasterize, to_pdf


logger = logging.getLogger(__name__)

PER_RECORD = "per_record"
COMBINED = "combined"
MODES = (PER_RECORD, COMBINED)

Rasterizer = Callable[[Stage, float], Raster]


@dataclass(frozen=True)
class BatchArtifact:
    data: bytes
    filename: str
    # 0-based records rendered into this file, one per page
    record_indices: Tuple[int, ...]
    warnings: Tuple[str, ...] = ()

    @property
    def record_index(self) -> Optional[int]:
        return self.record_indices[0] if len(self.record_indices) == 1 else None

    @property
    def pages(self) -> int:
        return len(self.record_indices)


@dataclass(frozen=True)
class BatchFailure:
    record_index: int
    error: str


@dataclass
class BatchResult:
    mode: str = PER_RECORD
    artifacts: List[BatchArtifact] = field(default_factory=list)
    failures: List[BatchFailure] = field(default_factory=list)

    def __iter__(self) -> Iterator[BatchArtifact]:
        return iter(self.artifacts)

    def __len__(self) -> int:
        return len(self.artifacts)

    @property
    def produced(self) -> int:
        """Records that made it into an artifact."""
        return sum(a.pages for a in self.artifacts)


class BatchCancelled(RuntimeError):
    def __init__(self, message: str, result: BatchResult) -> None:
        super().__init__(message)
        self.result = result


class CancelToken:
    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


def default_rasterizer(target: Stage, pixel_ratio: float) -> Raster:
    return rasterize(target, pixel_ratio=pixel_ratio, fit_page=True)


async def capture_record(
    target: Stage,
    record: Optional[Mapping[str, str]],
    rasterizer: Rasterizer = default_rasterizer,
    pixel_ratio: float = config.PIXEL_RATIO,
) -> Raster:
    """Substitute, wait for the frame, rasterize, restore."""
    with capture(target, record):
        await target.frame_committed()
        return rasterizer(target, pixel_ratio)


async def generate_batch(
    scene: Scene,
    records: Sequence[Mapping[str, str]],
    filename_pattern: str = config.DEFAULT_FILENAME_PATTERN,
    headers: Optional[Sequence[str]] = None,
    mode: str = PER_RECORD,
    offscreen: bool = True,
    cancel_token: Optional[CancelToken] = None,
    rasterizer: Rasterizer = default_rasterizer,
    pixel_ratio: float = config.PIXEL_RATIO,
) -> BatchResult:
    """
    Render one page per record, strictly in record order.

    ``per_record`` yields one PDF per record named from ``filename_pattern``;
    ``combined`` yields a single multi-page PDF. A record that fails is logged
    and listed in ``failures``; the batch goes on with the next one.

    With ``offscreen`` the pages are drawn on a private copy of the scene and
    editing stays possible. Otherwise the live scene is held exclusively until
    the batch ends.
    """
    if mode not in MODES:
        raise ValueError(f"Unknown batch mode: {mode!r}")
    page_size = scene.page_size_mm
    result = BatchResult(mode=mode)
    composer = PdfComposer(page_size, scene.orientation) if mode == COMBINED else None
    pages: List[int] = []
    page_warnings: List[str] = []

    target: Stage = scene.offscreen() if offscreen else scene
    guard = nullcontext(target) if offscreen else scene.exclusive()
    logger.info("Generating %d record(s) for %s (%s)", len(records), scene.name, mode)

    with guard:
        for position, record in enumerate(records):
            if cancel_token is not None and cancel_token.cancelled:
                logger.info("Batch cancelled after %d record(s)", position)
                raise BatchCancelled(f"Batch cancelled before record {position + 1}", result)
            try:
                raster = await capture_record(target, record, rasterizer, pixel_ratio)
                if composer is not None:
                    composer.add_page(raster.png)
                    pages.append(position)
                    page_warnings.extend(raster.warnings)
                    continue
                filename = build_filename(filename_pattern, record, position + 1, headers)
                result.artifacts.append(
                    BatchArtifact(
                        data=to_pdf(raster.png, page_size, scene.orientation),
                        filename=filename,
                        record_indices=(position,),
                        warnings=raster.warnings,
                    )
                )
            except Exception as exc:
                logger.exception("Record %d failed", position + 1)
                result.failures.append(BatchFailure(position, f"{type(exc).__name__}: {exc}"))

        if composer is not None and composer.pages:
            result.artifacts.append(
                BatchArtifact(
                    data=composer.finish(),
                    filename=config.COMBINED_FILENAME,
                    record_indices=tuple(pages),
                    warnings=tuple(page_warnings),
                )
            )

    logger.info("Batch produced %d artifact(s), %d failure(s)", len(result.artifacts), len(result.failures))
    return result


async def preview_batch(
    scene: Scene,
    records: Sequence[Mapping[str, str]],
    limit: int = 3,
    max_side: int = config.THUMBNAIL_MAX_SIDE,
) -> List[bytes]:
    """PNG previews of the first ``limit`` records, drawn offscreen."""
    target = scene.offscreen()
    zoom = float(max_side) / float(max(target.width, target.height))
    previews: List[bytes] = []
    for record in list(records)[:limit]:
        raster = await capture_record(target, record, pixel_ratio=zoom)
        previews.append(raster.png)
    return previews
