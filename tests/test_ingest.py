from __future__ import annotations

import tempfile
from pathlib import Path

import pytest

from certdesign.pipeline.ingest import (
    CsvValidationError,
    load_csv,
    parse_csv,
    slug_from_name,
    validate_upload_headers,
    validate_upload_rows,
)


def test_parse_csv_pads_short_rows() -> None:
    dataset = parse_csv("name, course ,grade\r\nAda Lovelace,Algorithms\n\n  Grace Hopper , Compilers , A , extra \n")
    assert dataset.headers == ["name", "course", "grade"]
    assert dataset.records == [
        {"name": "Ada Lovelace", "course": "Algorithms", "grade": ""},
        {"name": "Grace Hopper", "course": "Compilers", "grade": "A"},
    ]
    assert len(dataset) == 2


def test_parse_csv_has_no_quoting() -> None:
    dataset = parse_csv('name,city\n"Lovelace, Ada",London\n')
    assert dataset.records[0] == {"name": '"Lovelace', "city": 'Ada"'}


def test_parse_empty_input() -> None:
    assert parse_csv("").headers == []
    assert parse_csv("\n\n").records == []


def test_load_csv_errors() -> None:
    with tempfile.TemporaryDirectory() as temp_dir:
        path = Path(temp_dir) / "people.csv"
        with pytest.raises(FileNotFoundError):
            load_csv(path)
        path.write_text("name,course\n", encoding="utf-8")
        with pytest.raises(ValueError):
            load_csv(path)
        path.write_text("\ufeffname,course\nAda,Algorithms\n", encoding="utf-8")
        assert load_csv(path).headers == ["name", "course"]


def test_slug_from_name() -> None:
    assert slug_from_name("Certificate of Completion") == "certificate-of-completion"
    assert len(slug_from_name("!!!")) == 12


def test_upload_headers_by_alias() -> None:
    headers = ["Student_Name", "Sex", "EMAIL", "dob", "docType", "certId"]
    mapping = validate_upload_headers(headers)
    assert mapping == {
        "name": "Student_Name",
        "gender": "Sex",
        "email": "EMAIL",
        "birthdate": "dob",
        "documentType": "docType",
        "documentId": "certId",
    }
    with pytest.raises(CsvValidationError) as info:
        validate_upload_headers(["name", "email"])
    assert info.value.missing_fields == ["gender", "birthdate", "documentType", "documentId"]


def test_upload_rows() -> None:
    mapping = validate_upload_headers(["name", "gender", "email", "birthdate", "documentType", "documentId"])
    good = {
        "name": "Ada",
        "gender": "Female",
        "email": "ada@example.org",
        "birthdate": "12/10/1815",
        "documentType": "certificate",
        "documentId": "C-1",
    }
    validate_upload_rows([good], mapping)

    bad = dict(good, email="ada-at-example", birthdate="1815-13-40", documentId="")
    with pytest.raises(CsvValidationError) as info:
        validate_upload_rows([good, bad], mapping)
    errors = info.value.row_errors
    assert "Row 2: Invalid email format: ada-at-example" in errors
    assert "Row 2: Missing value for documentId" in errors
    assert any("Invalid birthdate" in e for e in errors)
