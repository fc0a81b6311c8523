from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Mapping, Sequence, Tuple
import zipfile

from ..storage import artifact_path
from .generate import BatchArtifact


# fixed timestamp so the same inputs give the same bytes
ZIP_DATE_TIME = (1980, 1, 1, 0, 0, 0)

FormEntry = Tuple[str, Tuple[str, bytes, str]]


def create_bundle(
    slug: str,
    files: Sequence[Path],
    base_dir: Path | None = None,
    include_slug: bool = True,
) -> Path:
    """
    Zip a run's PDFs and metadata.csv.

    Entries keep the order of ``files`` and store only basenames.
    """
    bundle_path = artifact_path(slug, "bundle", base_dir=base_dir, include_slug=include_slug)
    missing = [p for p in files if not p.exists()]
    if missing:
        missing_list = ", ".join(str(p) for p in missing)
        raise FileNotFoundError(f"[{slug}] bundle inputs missing: {missing_list}")
    names = [p.name for p in files]
    if len(names) != len(set(names)):
        raise ValueError(f"[{slug}] bundle inputs share a file name")

    with zipfile.ZipFile(bundle_path, "w", compression=zipfile.ZIP_DEFLATED) as bundle:
        for p in files:
            info = zipfile.ZipInfo(p.name, date_time=ZIP_DATE_TIME)
            info.compress_type = zipfile.ZIP_DEFLATED
            bundle.writestr(info, p.read_bytes())
    return bundle_path


def build_upload_form(artifacts: Iterable[BatchArtifact], metadata: bytes) -> List[FormEntry]:
    """Multipart entries: one ``certificates`` part per PDF, one ``metadata`` CSV part."""
    form: List[FormEntry] = [
        ("certificates", (artifact.filename, artifact.data, "application/pdf")) for artifact in artifacts
    ]
    if not form:
        raise ValueError("Nothing to upload")
    form.append(("metadata", ("metadata.csv", metadata, "text/csv")))
    return form


@dataclass
class MetadataMatch:
    matched: List[str] = field(default_factory=list)
    # PDFs with no metadata row
    missing_in_csv: List[str] = field(default_factory=list)
    # metadata rows with no PDF
    missing_files: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return bool(self.matched) and not self.missing_in_csv and not self.missing_files


def match_metadata(pdf_filenames: Iterable[str], metadata_rows: Iterable[Mapping[str, str]]) -> MetadataMatch:
    """Pair files and rows by exact filename."""
    files = list(dict.fromkeys(pdf_filenames))
    rows = list(dict.fromkeys((row.get("filename") or "") for row in metadata_rows))
    file_set, row_set = set(files), set(rows)
    return MetadataMatch(
        matched=[name for name in files if name in row_set],
        missing_in_csv=[name for name in files if name not in row_set],
        missing_files=[name for name in rows if name and name not in file_set],
    )
