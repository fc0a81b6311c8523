from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional, Tuple
import json


BASE_DIR = Path(__file__).resolve().parents[1]
OUT_DIR = BASE_DIR / "out"
DB_PATH = OUT_DIR / "certdesign.db"
DEFAULT_TEMPLATE_PATH = Path(__file__).resolve().parent / "assets" / "default_template.json"

# physical page sizes in mm, portrait order
PAGE_FORMATS: Dict[str, Tuple[float, float]] = {
    "a4": (210.0, 297.0),
    "letter": (215.9, 279.4),
}
DEFAULT_FORMAT = "a4"
DEFAULT_ORIENTATION = "landscape"
FORMAT_VERSION = 1

STAGE_WIDTH = 1000
STAGE_HEIGHT = 700

# canvas-only boosts, divided back out when a design is saved
FONT_SCALE = 1.5
STROKE_SCALE = 2.0
ROUND_DIGITS = 4

PIXEL_RATIO = 2
THUMBNAIL_MAX_SIDE = 300

DEFAULT_FILENAME_PATTERN = "certificate_{{name}}_{{index}}.pdf"
COMBINED_FILENAME = "certificates_batch.pdf"
FILENAME_MAX_LENGTH = 50

# None keeps every snapshot
HISTORY_LIMIT: Optional[int] = None

MISSING_FIELD_MARKER = "[{field} - missing]"

CREDIT_COSTS: Dict[str, int] = {
    "generatePDF": 2,
    "uploadToIPFS": 1,
    "uploadToBlockChain": 3,
    "validateCertificate": 1,
}


def load_default_template() -> dict:
    with DEFAULT_TEMPLATE_PATH.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def set_out_dir(path: Path) -> None:
    global OUT_DIR, DB_PATH
    OUT_DIR = path
    DB_PATH = OUT_DIR / "certdesign.db"
