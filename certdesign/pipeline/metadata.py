from __future__ import annotations

import csv
import io
import logging
import re
from datetime import date
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from .. import config
from ..storage import artifact_path


logger = logging.getLogger(__name__)

WHITESPACE_RE = re.compile(r"\s+")
UNSAFE_RE = re.compile(r"[^A-Za-z0-9_-]")
TOKEN_RE = re.compile(r"\{\{([^{}]*)\}\}")


def sanitize_value(value) -> str:
    """
    Filename-safe form of one record value.

    Shared by artifact naming and the metadata ``filename`` column; it never
    raises and returns "" for anything unusable.
    """
    if value is None:
        return ""
    try:
        text = str(value)
    except Exception:
        return ""
    text = WHITESPACE_RE.sub("_", text)
    text = UNSAFE_RE.sub("", text)
    return text[: config.FILENAME_MAX_LENGTH]


def build_filename(
    pattern: str,
    record: Mapping[str, str],
    index: int,
    headers: Optional[Sequence[str]] = None,
) -> str:
    """
    Resolve ``{{name}}``, ``{{index}}`` (1-based) and ``{{column}}`` tokens.

    ``{{name}}`` falls back to ``Name`` and then to ``record_<index>``.
    Tokens naming no column are dropped.
    """
    name_value = record.get("name") or record.get("Name") or f"record_{index}"
    filename = pattern.replace("{{name}}", sanitize_value(name_value))
    filename = filename.replace("{{index}}", str(index))
    for key in list(headers or []) + [k for k in record if k not in (headers or [])]:
        filename = filename.replace("{{" + key + "}}", sanitize_value(record.get(key)))
    leftover = TOKEN_RE.findall(filename)
    if leftover:
        logger.warning("Filename pattern tokens without data: %s", ", ".join(leftover))
        filename = TOKEN_RE.sub("", filename)
    return filename


def build_metadata_rows(
    filenames: Sequence[str],
    records: Sequence[Mapping[str, str]],
    headers: Optional[Sequence[str]] = None,
) -> List[Dict[str, str]]:
    """One row per produced file: ``filename`` first, then the record's columns."""
    if len(filenames) != len(records):
        raise ValueError(f"Got {len(filenames)} filenames for {len(records)} records")
    rows: List[Dict[str, str]] = []
    for filename, record in zip(filenames, records):
        columns = list(headers) if headers else list(record.keys())
        row = {"filename": filename}
        for column in columns:
            if column == "filename":
                continue
            row[column] = record.get(column, "") or ""
        rows.append(row)
    return rows


def metadata_csv(rows: Sequence[Mapping[str, str]]) -> bytes:
    if not rows:
        raise ValueError("Metadata needs at least one row")
    fieldnames: List[str] = []
    for row in rows:
        for key in row:
            if key not in fieldnames:
                fieldnames.append(key)
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=fieldnames, lineterminator="\n")
    writer.writeheader()
    for row in rows:
        writer.writerow({k: row.get(k, "") for k in fieldnames})
    return buffer.getvalue().encode("utf-8")


def read_metadata_csv(data: bytes) -> List[Dict[str, str]]:
    reader = csv.DictReader(io.StringIO(data.decode("utf-8-sig")))
    if reader.fieldnames is None or "filename" not in reader.fieldnames:
        raise ValueError("CSV must contain a 'filename' column")
    return [dict(row) for row in reader]


def build_single_document_row(
    pdf_filename: str,
    email: str,
    title: str = "Certificate",
    identity_birthday: str = "1990-01-01",
    identity_gender: str = "Not specified",
    course: Optional[str] = None,
    grade: str = "",
    credits: str = "",
    gpa: str = "",
    completion_date: Optional[str] = None,
) -> Dict[str, str]:
    """Metadata row for uploading one exported PDF outside a batch."""
    if not pdf_filename or not email:
        raise ValueError("PDF filename and user email are required")
    course_name = course or title
    return {
        "filename": pdf_filename,
        "identityEmail": email,
        "email": email,
        "identityBirthday": identity_birthday,
        "birthday": identity_birthday,
        "identityGender": identity_gender,
        "gender": identity_gender,
        "course": course_name,
        "course_name": course_name,
        "grade": grade,
        "credits": credits,
        "gpa": gpa,
        "completion_date": completion_date or date.today().isoformat(),
    }


def write_metadata(slug: str, rows: Iterable[Mapping[str, str]], base_dir: Path | None = None, include_slug: bool = True) -> Path:
    path = artifact_path(slug, "metadata", base_dir=base_dir, include_slug=include_slug)
    path.write_bytes(metadata_csv(list(rows)))
    return path
