from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
import logging
import shutil
from typing import List, Optional, Sequence, Set, Tuple

from .. import config
from ..design.scene import Scene
from ..models import BatchRun, RunStatus, get_session, init_db
from ..storage import artifact_path, pdf_path, record_artifacts
from .credits import CreditGate, require_credits
from .generate import (
    COMBINED,
    PER_RECORD,
    BatchArtifact,
    BatchCancelled,
    BatchResult,
    CancelToken,
    Rasterizer,
    default_rasterizer,
    generate_batch,
)
from .ingest import BatchDataset, slug_from_name
from .metadata import build_metadata_rows, write_metadata
from .package import create_bundle


logger = logging.getLogger(__name__)

GENERATE_OPERATION = "generatePDF"

ArtifactEntry = Tuple[str, Path, Optional[int]]


@dataclass
class RunReport:
    run: BatchRun
    result: Optional[BatchResult] = None
    run_dir: Optional[Path] = None
    charged: int = 0
    # artifacts as written, under their final unique filenames
    artifacts: List[BatchArtifact] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.run.status == RunStatus.READY


def _write_error(slug: str, message: str) -> None:
    error_path = artifact_path(slug, "error", base_dir=config.OUT_DIR)
    error_path.write_text(message, encoding="utf-8")


def _prepare_temp_dir(slug: str) -> Path:
    temp_dir = config.OUT_DIR / f"{slug}.tmp"
    if temp_dir.exists():
        shutil.rmtree(temp_dir)
    temp_dir.mkdir(parents=True, exist_ok=True)
    return temp_dir


def _finalize_artifacts(temp_dir: Path, final_dir: Path, artifacts: List[ArtifactEntry]) -> List[ArtifactEntry]:
    if final_dir.exists():
        shutil.rmtree(final_dir)
    temp_dir.replace(final_dir)
    return [(kind, final_dir / path.relative_to(temp_dir), index) for kind, path, index in artifacts]


def unique_filenames(filenames: Sequence[str]) -> List[str]:
    """Suffix repeated names with -2, -3, ... before the extension."""
    seen: Set[str] = set()
    out: List[str] = []
    for name in filenames:
        stem, dot, ext = name.rpartition(".")
        if not dot:
            stem, ext = name, ""
        candidate, n = name, 1
        while candidate in seen:
            n += 1
            candidate = f"{stem}-{n}{dot}{ext}"
        seen.add(candidate)
        out.append(candidate)
    if out != list(filenames):
        logger.warning("Filename pattern produced duplicate names; suffixes added")
    return out


def write_outputs(
    scene: Scene,
    dataset: BatchDataset,
    result: BatchResult,
    temp_dir: Path,
) -> Tuple[List[ArtifactEntry], List[BatchArtifact]]:
    """
    PDFs, metadata.csv, template.json and bundle.zip into ``temp_dir``.
    Returns the entries to record plus renamed copies of the written artifacts.
    """
    entries: List[ArtifactEntry] = []
    filenames = unique_filenames([a.filename for a in result.artifacts])
    written = [replace(a, filename=name) for a, name in zip(result.artifacts, filenames)]
    pdf_paths: List[Path] = []
    for artifact in written:
        path = pdf_path("", artifact.filename, base_dir=temp_dir, include_slug=False)
        path.write_bytes(artifact.data)
        pdf_paths.append(path)
        kind = "combined_pdf" if result.mode == COMBINED else "pdf"
        entries.append((kind, path, artifact.record_index))

    row_names: List[str] = []
    row_records = []
    for artifact in written:
        for index in artifact.record_indices:
            row_names.append(artifact.filename)
            row_records.append(dataset.records[index])
    rows = build_metadata_rows(row_names, row_records, dataset.headers)
    if result.mode == COMBINED:
        for page, row in enumerate(rows, start=1):
            row["page"] = str(page)
    metadata_path = write_metadata("", rows, base_dir=temp_dir, include_slug=False)
    entries.append(("metadata", metadata_path, None))

    template_path = artifact_path("", "template", base_dir=temp_dir, include_slug=False)
    template_path.write_text(scene.to_template().to_json(), encoding="utf-8")
    entries.append(("template", template_path, None))

    bundle_path = create_bundle("", pdf_paths + [metadata_path], base_dir=temp_dir, include_slug=False)
    entries.append(("bundle", bundle_path, None))
    return entries, written


async def run_batch(
    scene: Scene,
    dataset: BatchDataset,
    gate: CreditGate,
    filename_pattern: str = config.DEFAULT_FILENAME_PATTERN,
    mode: str = PER_RECORD,
    cancel_token: Optional[CancelToken] = None,
    rasterizer: Rasterizer = default_rasterizer,
    pixel_ratio: float = config.PIXEL_RATIO,
) -> RunReport:
    """
    Gated batch run. Credits are checked for every record before anything is
    rendered and charged afterwards for the records that produced output.
    """
    if not dataset.records:
        raise ValueError("Batch needs at least one record")
    require_credits(gate, GENERATE_OPERATION, len(dataset.records))

    init_db()
    with get_session() as session:
        run = BatchRun(template_name=scene.name, slug="", mode=mode, record_count=len(dataset.records))
        session.add(run)
        session.commit()
        session.refresh(run)
        run.slug = f"{slug_from_name(scene.name)}-{run.id}"
        session.add(run)
        session.commit()
        session.refresh(run)

    report = RunReport(run=run)
    temp_dir = _prepare_temp_dir(run.slug)
    errors: List[str] = []
    artifacts: List[ArtifactEntry] = []
    fail_code = "PIPELINE_ERROR"
    try:
        result = await generate_batch(
            scene,
            dataset.records,
            filename_pattern=filename_pattern,
            headers=dataset.headers,
            mode=mode,
            cancel_token=cancel_token,
            rasterizer=rasterizer,
            pixel_ratio=pixel_ratio,
        )
        report.result = result
        errors = [f"Record {f.record_index + 1}: {f.error}" for f in result.failures]
        if result.produced == 0:
            fail_code = "RENDER_FAILED"
        else:
            entries, written = write_outputs(scene, dataset, result, temp_dir)
            final_dir = config.OUT_DIR / run.slug
            artifacts = _finalize_artifacts(temp_dir, final_dir, entries)
            report.artifacts = written
            report.run_dir = final_dir
    except BatchCancelled as exc:
        report.result = exc.result
        fail_code = "CANCELLED"
        errors = [str(exc)]
    except Exception as exc:
        logger.exception("Batch run failed for %s", run.slug)
        errors = [f"{type(exc).__name__}: {exc}"]

    with get_session() as session:
        if report.run_dir is not None:
            run.status = RunStatus.READY
            run.artifact_count = len(report.artifacts)
            run.fail_code = None
            run.fail_detail = errors[0] if errors else None
        else:
            shutil.rmtree(temp_dir, ignore_errors=True)
            run.status = RunStatus.FAILED
            run.fail_code = fail_code
            run.fail_detail = errors[0] if errors else "Unknown error"
        session.add(run)
        session.commit()
        session.refresh(run)

    if run.status == RunStatus.READY:
        record_artifacts(run, artifacts)
        report.charged = gate.confirm(GENERATE_OPERATION, report.result.produced)
        with get_session() as session:
            run.credits_charged = report.charged
            session.add(run)
            session.commit()
            session.refresh(run)
        if errors:
            _write_error(run.slug, "\n".join(errors))
        logger.info("Run %s READY: %d artifact(s), %d credit(s)", run.slug, run.artifact_count, report.charged)
    else:
        _write_error(run.slug, "\n".join(errors) if errors else "Unknown error")
        logger.warning("Run %s FAILED: %s", run.slug, run.fail_detail)
    return report
