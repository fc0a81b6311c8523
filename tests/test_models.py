from __future__ import annotations

import tempfile
from pathlib import Path

from sqlalchemy import inspect, text

from certdesign import config
from certdesign import models
from certdesign.models import BatchRun, RunStatus, get_session, init_db, reset_engine


def test_init_db_adds_missing_columns() -> None:
    with tempfile.TemporaryDirectory() as temp_dir:
        config.set_out_dir(Path(temp_dir))
        reset_engine()
        with models.engine.begin() as conn:
            conn.execute(
                text(
                    "CREATE TABLE batchrun (id INTEGER PRIMARY KEY, template_name VARCHAR NOT NULL, "
                    "slug VARCHAR NOT NULL, record_count INTEGER NOT NULL, artifact_count INTEGER NOT NULL, "
                    "status VARCHAR NOT NULL, fail_code VARCHAR, fail_detail VARCHAR, created_at DATETIME NOT NULL)"
                )
            )
        init_db()
        columns = {col["name"] for col in inspect(models.engine).get_columns("batchrun")}
        assert {"mode", "credits_charged"} <= columns

        with get_session() as session:
            session.add(BatchRun(template_name="Award", slug="award-1"))
            session.commit()
        with get_session() as session:
            run = session.get(BatchRun, 1)
            assert run.status == RunStatus.PENDING
            assert run.credits_charged == 0
        models.engine.dispose()
