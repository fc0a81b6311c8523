from __future__ import annotations

import tempfile
from pathlib import Path

import pytest

from certdesign.pipeline.metadata import (
    build_filename,
    build_metadata_rows,
    build_single_document_row,
    metadata_csv,
    read_metadata_csv,
    sanitize_value,
    write_metadata,
)


class Unprintable:
    def __str__(self) -> str:
        raise RuntimeError("no text form")


def test_sanitize_value() -> None:
    assert sanitize_value("Ada Lovelace") == "Ada_Lovelace"
    assert sanitize_value("O'Brien, Jr.") == "OBrien_Jr"
    assert sanitize_value("  tabs\tand\nnewlines ") == "_tabs_and_newlines_"
    assert sanitize_value(None) == ""
    assert sanitize_value(Unprintable()) == ""
    assert sanitize_value(42) == "42"
    assert len(sanitize_value("x" * 80)) == 50


def test_default_pattern() -> None:
    record = {"name": "Ada Lovelace", "course": "Algorithms"}
    assert build_filename("certificate_{{name}}_{{index}}.pdf", record, 1) == "certificate_Ada_Lovelace_1.pdf"


def test_name_fallbacks() -> None:
    assert build_filename("{{name}}.pdf", {"Name": "Grace Hopper"}, 1) == "Grace_Hopper.pdf"
    assert build_filename("{{name}}.pdf", {"name": ""}, 3) == "record_3.pdf"


def test_column_tokens() -> None:
    record = {"name": "Ada", "course": "Intro to C++"}
    assert build_filename("{{course}}-{{index}}.pdf", record, 2) == "Intro_to_C-2.pdf"
    assert build_filename("cert_{{nope}}.pdf", record, 1) == "cert_.pdf"


def test_filenames_match_metadata_rows() -> None:
    headers = ["name", "course"]
    records = [
        {"name": "Ada Lovelace", "course": "Algorithms"},
        {"name": "Dr. Grace M. Hopper!", "course": "COBOL, vol. 2"},
        {"name": "", "course": ""},
        {"name": "Zoë  O'Neil", "course": "a/b\\c"},
    ]
    pattern = "{{name}}_{{course}}_{{index}}.pdf"
    filenames = [build_filename(pattern, r, i) for i, r in enumerate(records, start=1)]
    rows = read_metadata_csv(metadata_csv(build_metadata_rows(filenames, records, headers)))
    assert [row["filename"] for row in rows] == filenames
    assert list(rows[0].keys()) == ["filename", "name", "course"]
    assert rows[1]["course"] == "COBOL, vol. 2"


def test_metadata_errors() -> None:
    with pytest.raises(ValueError):
        metadata_csv([])
    with pytest.raises(ValueError):
        build_metadata_rows(["a.pdf"], [], None)
    with pytest.raises(ValueError):
        read_metadata_csv(b"name\nAda\n")


def test_single_document_row() -> None:
    row = build_single_document_row("award.pdf", "ada@example.org", title="Award", completion_date="2024-05-01")
    assert row["filename"] == "award.pdf"
    assert row["course"] == "Award"
    assert row["completion_date"] == "2024-05-01"
    with pytest.raises(ValueError):
        build_single_document_row("award.pdf", "")


def test_write_metadata() -> None:
    with tempfile.TemporaryDirectory() as temp_dir:
        path = write_metadata("run", [{"filename": "a.pdf", "name": "Ada"}], base_dir=Path(temp_dir))
        assert path == Path(temp_dir) / "run" / "metadata.csv"
        assert path.read_text(encoding="utf-8") == "filename,name\na.pdf,Ada\n"
