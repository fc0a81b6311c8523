from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional

from . import config
from .models import Artifact, BatchRun, get_session


ARTIFACT_NAMES = {
    "metadata": "metadata.csv",
    "bundle": "bundle.zip",
    "template": "template.json",
    "error": "error.log",
    "thumbnail": "thumbnail.png",
}


def run_dir(slug: str, base_dir: Path | None = None, include_slug: bool = True) -> Path:
    root = base_dir or config.OUT_DIR
    path = root / slug if include_slug else root
    path.mkdir(parents=True, exist_ok=True)
    return path


def artifact_path(
    slug: str,
    artifact_type: str,
    base_dir: Path | None = None,
    include_slug: bool = True,
) -> Path:
    filename = ARTIFACT_NAMES[artifact_type]
    return run_dir(slug, base_dir=base_dir, include_slug=include_slug) / filename


def pdf_path(slug: str, filename: str, base_dir: Path | None = None, include_slug: bool = True) -> Path:
    name = Path(filename).name
    if not name or name in (".", ".."):
        raise ValueError(f"Invalid artifact filename: {filename!r}")
    return run_dir(slug, base_dir=base_dir, include_slug=include_slug) / name


def record_artifacts(run: BatchRun, artifacts: Iterable[tuple[str, Path, Optional[int]]]) -> None:
    with get_session() as session:
        for artifact_type, path, record_index in artifacts:
            session.add(
                Artifact(
                    run_id=run.id,
                    type=artifact_type,
                    path=str(path.relative_to(config.OUT_DIR)),
                    record_index=record_index,
                )
            )
        session.commit()
