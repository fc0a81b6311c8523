from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Dict, List, Mapping, Sequence

from slugify import slugify


@dataclass
class BatchDataset:
    headers: List[str] = field(default_factory=list)
    records: List[Dict[str, str]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.records)


def parse_csv(text: str) -> BatchDataset:
    """
    Plain comma split, one record per line.

    No quoting and no embedded commas. The first non-empty line is the
    header row; short rows are padded with empty strings and surplus cells
    are dropped.
    """
    lines = [line.strip() for line in (text or "").replace("\r\n", "\n").replace("\r", "\n").split("\n")]
    lines = [line for line in lines if line]
    if not lines:
        return BatchDataset()
    headers = [cell.strip() for cell in lines[0].split(",")]
    records: List[Dict[str, str]] = []
    for line in lines[1:]:
        cells = [cell.strip() for cell in line.split(",")]
        records.append({h: (cells[i] if i < len(cells) else "") for i, h in enumerate(headers)})
    return BatchDataset(headers=headers, records=records)


def load_csv(csv_path: Path) -> BatchDataset:
    if not csv_path.exists():
        raise FileNotFoundError(f"CSV not found: {csv_path}")
    dataset = parse_csv(csv_path.read_text(encoding="utf-8-sig"))
    if not dataset.headers:
        raise ValueError("CSV has no header")
    if not dataset.records:
        raise ValueError("CSV has no data rows")
    return dataset


def slug_from_name(name: str) -> str:
    slug = slugify(name)
    slug = re.sub(r"[^a-z0-9-]+", "-", slug.lower()).strip("-")
    if not slug:
        slug = hashlib.md5(name.encode("utf-8")).hexdigest()[:12]
    if ".." in slug or "/" in slug or "\\" in slug:
        raise ValueError("Invalid slug generated from name")
    return slug


# -------------------- upload metadata checks --------------------

REQUIRED_UPLOAD_FIELDS: Dict[str, List[str]] = {
    "name": ["name", "studentName", "student_name", "full_name", "fullname"],
    "gender": ["gender", "sex"],
    "email": ["email", "email_address", "identityEmail"],
    "birthdate": ["birthdate", "birthday", "date_of_birth", "dob", "identityBirthday"],
    "documentType": ["documentType", "docType", "document_type", "type", "certificateType"],
    "documentId": ["documentId", "docId", "document_id", "id", "certificate_id", "certId"],
}

VALID_GENDERS = {"male", "female", "m", "f", "other", "prefer not to say", "non-binary"}
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MAX_REPORTED_ERRORS = 10


class CsvValidationError(ValueError):
    def __init__(self, message: str, missing_fields: Sequence[str] = (), row_errors: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.missing_fields = list(missing_fields)
        self.row_errors = list(row_errors)


def validate_upload_headers(headers: Sequence[str]) -> Dict[str, str]:
    """Map each required upload field to the header that carries it (case-insensitive aliases)."""
    lowered = {h.strip().lower(): h for h in headers}
    mapping: Dict[str, str] = {}
    missing: List[str] = []
    for field_name, aliases in REQUIRED_UPLOAD_FIELDS.items():
        found = next((lowered[a.lower()] for a in aliases if a.lower() in lowered), None)
        if found is None:
            missing.append(field_name)
        else:
            mapping[field_name] = found
    if missing:
        raise CsvValidationError(f"Missing required CSV columns: {', '.join(missing)}", missing_fields=missing)
    return mapping


def _looks_like_date(value: str) -> bool:
    value = value.strip()
    try:
        date.fromisoformat(value)
        return True
    except ValueError:
        pass
    parts = value.split("/")
    if len(parts) != 3 or not all(p.isdigit() for p in parts):
        return False
    month, day, year = (int(p) for p in parts)
    try:
        date(year, month, day)
    except ValueError:
        return False
    return True


def validate_upload_rows(records: Sequence[Mapping[str, str]], mapping: Mapping[str, str]) -> None:
    errors: List[str] = []
    for index, row in enumerate(records, start=1):
        for field_name, column in mapping.items():
            value = (row.get(column) or "").strip()
            if not value:
                errors.append(f"Row {index}: Missing value for {field_name}")
                continue
            if field_name == "email" and not EMAIL_RE.match(value):
                errors.append(f"Row {index}: Invalid email format: {value}")
            elif field_name == "gender" and value.lower() not in VALID_GENDERS:
                errors.append(f"Row {index}: Invalid gender value: {value}")
            elif field_name == "birthdate" and not _looks_like_date(value):
                errors.append(f"Row {index}: Invalid birthdate format: {value}. Use YYYY-MM-DD or MM/DD/YYYY")
    if errors:
        preview = "\n".join(errors[:MAX_REPORTED_ERRORS])
        more = len(errors) - MAX_REPORTED_ERRORS
        if more > 0:
            preview += f"\n... and {more} more errors"
        raise CsvValidationError(f"CSV validation failed with {len(errors)} error(s):\n{preview}", row_errors=errors)
