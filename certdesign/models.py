from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from sqlalchemy import inspect, text
from sqlmodel import Field, Session, SQLModel, create_engine

from . import config


class RunStatus(str, Enum):
    PENDING = "PENDING"
    READY = "READY"
    FAILED = "FAILED"


class BatchRun(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    template_name: str
    slug: str = Field(index=True)
    mode: str = "per_record"
    record_count: int = 0
    artifact_count: int = 0
    credits_charged: int = 0
    status: RunStatus = Field(default=RunStatus.PENDING)
    fail_code: Optional[str] = None
    fail_detail: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Artifact(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    run_id: int = Field(foreign_key="batchrun.id")
    type: str
    path: str
    record_index: Optional[int] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


# columns added after the first ledger release
LATE_COLUMNS: Dict[str, Dict[str, str]] = {
    "batchrun": {
        "mode": "VARCHAR NOT NULL DEFAULT 'per_record'",
        "credits_charged": "INTEGER NOT NULL DEFAULT 0",
    },
    "artifact": {
        "record_index": "INTEGER",
    },
}


engine = create_engine(f"sqlite:///{config.DB_PATH}")


def reset_engine() -> None:
    global engine
    engine = create_engine(f"sqlite:///{config.DB_PATH}")


def init_db() -> None:
    config.OUT_DIR.mkdir(parents=True, exist_ok=True)
    SQLModel.metadata.create_all(engine)
    _migrate_db()


def _migrate_db() -> None:
    """Add columns that ledgers written by older releases lack."""
    inspector = inspect(engine)
    tables = set(inspector.get_table_names())
    for table, columns in LATE_COLUMNS.items():
        if table not in tables:
            continue
        existing = {col["name"] for col in inspector.get_columns(table)}
        for name, ddl in columns.items():
            if name not in existing:
                with engine.begin() as conn:
                    conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {name} {ddl}"))


def get_session() -> Session:
    return Session(engine, expire_on_commit=False)
