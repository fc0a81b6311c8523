from __future__ import annotations

import argparse
import csv
from pathlib import Path
from typing import Dict, List

import fitz  # PyMuPDF

from certdesign.pipeline.metadata import read_metadata_csv
from certdesign.pipeline.package import match_metadata


def _page_count(pdf_path: Path) -> int:
    with fitz.open(pdf_path) as doc:
        return int(doc.page_count)


def check_run_dir(run_dir: Path) -> List[Dict[str, str]]:
    """
    Check a finished batch run against the upload contract: every PDF has
    exactly one metadata row with the same filename, and the other way round.
    Returns one manifest row per PDF.
    """
    metadata_path = run_dir / "metadata.csv"
    if not metadata_path.exists():
        raise FileNotFoundError(f"metadata.csv not found in {run_dir}")
    rows = read_metadata_csv(metadata_path.read_bytes())
    pdfs = sorted(p.name for p in run_dir.glob("*.pdf"))
    match = match_metadata(pdfs, rows)
    if not match.ok:
        problems = []
        if match.missing_in_csv:
            problems.append("PDFs without a metadata row: " + ", ".join(match.missing_in_csv))
        if match.missing_files:
            problems.append("metadata rows without a PDF: " + ", ".join(match.missing_files))
        if not match.matched:
            problems.append("nothing to upload")
        raise ValueError("; ".join(problems))

    rows_per_file: Dict[str, int] = {}
    for row in rows:
        rows_per_file[row["filename"]] = rows_per_file.get(row["filename"], 0) + 1
    manifest: List[Dict[str, str]] = []
    for name in match.matched:
        pages = _page_count(run_dir / name)
        if pages != rows_per_file[name]:
            raise ValueError(f"{name}: {pages} page(s) but {rows_per_file[name]} metadata row(s)")
        manifest.append({"filename": name, "pages": str(pages), "bytes": str((run_dir / name).stat().st_size)})
    return manifest


def main() -> None:
    parser = argparse.ArgumentParser(description="Check a batch run directory before upload")
    parser.add_argument("run_dir", type=str, help="Finished run directory (out/<slug>)")
    parser.add_argument("--out", dest="out_csv", type=str, default=None, help="Optional manifest CSV")
    args = parser.parse_args()

    run_dir = Path(args.run_dir)
    manifest = check_run_dir(run_dir)

    if args.out_csv:
        out_path = Path(args.out_csv)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        with out_path.open("w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=["filename", "pages", "bytes"])
            writer.writeheader()
            writer.writerows(manifest)

    print(f"OK: {len(manifest)} PDF(s) paired with metadata in {run_dir}")


if __name__ == "__main__":
    main()
