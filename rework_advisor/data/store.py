"""Local data store — SQLite at ~/.rework-advisor/data.db."""

from __future__ import annotations

import json
import os
import sqlite3
import uuid
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from rework_advisor.core.models import (
    HistoricalDefectRecord,
    InstructionStep,
    ReworkFeedback,
)
from rework_advisor.core.resolver import group_key
from rework_advisor.data.base import RecordStore, StoreUnavailableError
from rework_advisor.data.rows import (
    convert_rows,
    parse_timestamp,
    record_from_row,
    step_from_row,
)


_DEFAULT_DB_PATH = os.path.join(
    str(Path.home()), ".rework-advisor", "data.db"
)

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS process_logs_database (
    id TEXT PRIMARY KEY,
    pl_number TEXT NOT NULL,
    failure_code TEXT NOT NULL,
    failure_description TEXT,
    symptoms TEXT NOT NULL DEFAULT '[]',
    root_cause TEXT,
    corrective_mpi_id TEXT,
    occurrence_count INTEGER DEFAULT 0,
    success_rate REAL DEFAULT 0,
    last_occurrence_date TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_process_logs_failure_code
    ON process_logs_database (failure_code);

CREATE TABLE IF NOT EXISTS manufacturing_process_instructions (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    group_key TEXT NOT NULL,
    instruction_type TEXT NOT NULL DEFAULT 'rework',
    step_number INTEGER NOT NULL,
    instruction_text TEXT,
    parent_mpi_id TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_instructions_group_key
    ON manufacturing_process_instructions (group_key, step_number);

CREATE TABLE IF NOT EXISTS rework_feedback (
    id TEXT PRIMARY KEY,
    work_order_id TEXT,
    process_log_database_id TEXT NOT NULL
        REFERENCES process_logs_database(id),
    corrective_mpi_id TEXT,
    test_result_id TEXT,
    rating INTEGER NOT NULL,
    was_successful INTEGER NOT NULL,
    comments TEXT,
    technician_name TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

INSERT OR IGNORE INTO config (key, value) VALUES ('backend', 'sqlite');
"""

_RECORDS_QUERY = """\
SELECT p.*,
       AVG(f.rating) AS average_feedback_rating,
       COUNT(f.id) AS total_feedback_count
FROM process_logs_database p
LEFT JOIN rework_feedback f ON f.process_log_database_id = p.id
WHERE p.failure_code IN ({placeholders})
GROUP BY p.id
ORDER BY p.rowid"""


def _placeholders(values: list) -> str:
    return ", ".join("?" for _ in values)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class DataStore(RecordStore):
    """Local SQLite data store."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or _DEFAULT_DB_PATH
        os.makedirs(os.path.dirname(self.db_path) or ".", exist_ok=True)
        self._conn: Optional[sqlite3.Connection] = None
        with self._guard("open database"):
            self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _init_db(self) -> None:
        conn = self._get_conn()
        conn.executescript(_SCHEMA)
        conn.commit()

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as e:
            if self._conn is not None:
                self._conn.rollback()
            raise StoreUnavailableError(
                f"SQLite {operation} failed ({self.db_path}): {e}"
            ) from e
        except (KeyError, ValueError):
            if self._conn is not None:
                self._conn.rollback()
            raise

    # ── Config ───────────────────────────────────────────────────────

    def get_config(self, key: str) -> Optional[str]:
        conn = self._get_conn()
        row = conn.execute(
            "SELECT value FROM config WHERE key = ?", (key,)
        ).fetchone()
        return row["value"] if row else None

    def set_config(self, key: str, value: str) -> None:
        conn = self._get_conn()
        conn.execute(
            "INSERT OR REPLACE INTO config (key, value) VALUES (?, ?)",
            (key, value),
        )
        conn.commit()

    # ── Lookups ──────────────────────────────────────────────────────

    def fetch_records(
        self, failure_codes: Iterable[str]
    ) -> list[HistoricalDefectRecord]:
        codes = list(dict.fromkeys(failure_codes))
        if not codes:
            return []
        with self._guard("process log lookup"):
            rows = self._get_conn().execute(
                _RECORDS_QUERY.format(placeholders=_placeholders(codes)),
                codes,
            ).fetchall()
        return convert_rows(
            (dict(row) for row in rows), record_from_row, "process_logs_database"
        )

    def fetch_instructions(
        self, instruction_ids: Iterable[str]
    ) -> dict[str, InstructionStep]:
        ids = list(dict.fromkeys(instruction_ids))
        if not ids:
            return {}
        with self._guard("instruction lookup"):
            rows = self._get_conn().execute(
                f"""SELECT * FROM manufacturing_process_instructions
                    WHERE id IN ({_placeholders(ids)})""",
                ids,
            ).fetchall()
        steps = convert_rows(
            (dict(row) for row in rows),
            step_from_row,
            "manufacturing_process_instructions",
        )
        return {step.id: step for step in steps}

    def fetch_instruction_groups(
        self, group_keys: Iterable[str]
    ) -> dict[str, list[InstructionStep]]:
        keys = list(dict.fromkeys(group_keys))
        if not keys:
            return {}
        with self._guard("instruction group lookup"):
            rows = self._get_conn().execute(
                f"""SELECT * FROM manufacturing_process_instructions
                    WHERE group_key IN ({_placeholders(keys)})
                    ORDER BY group_key, step_number""",
                keys,
            ).fetchall()
        groups: dict[str, list[InstructionStep]] = {k: [] for k in keys}
        for step in convert_rows(
            (dict(row) for row in rows),
            step_from_row,
            "manufacturing_process_instructions",
        ):
            groups[step.group_key].append(step)
        return groups

    # ── Feedback ─────────────────────────────────────────────────────

    def record_feedback(
        self, feedback: ReworkFeedback, now: Optional[datetime] = None
    ) -> None:
        """Store operator feedback and fold the rework result into the
        record's track record (occurrences, success rate, last seen).
        """
        timestamp = (now or datetime.now(timezone.utc)).isoformat()
        with self._guard("feedback write"):
            conn = self._get_conn()
            existing = conn.execute(
                """SELECT occurrence_count, success_rate
                   FROM process_logs_database WHERE id = ?""",
                (feedback.process_log_id,),
            ).fetchone()
            if existing is None:
                raise ValueError(
                    f"Unknown process log: {feedback.process_log_id}"
                )

            conn.execute(
                """INSERT INTO rework_feedback
                   (id, work_order_id, process_log_database_id,
                    corrective_mpi_id, test_result_id, rating,
                    was_successful, comments, technician_name, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    str(uuid.uuid4()),
                    feedback.work_order_id,
                    feedback.process_log_id,
                    feedback.corrective_instruction_id,
                    feedback.test_result_id,
                    feedback.rating,
                    1 if feedback.was_successful else 0,
                    feedback.comments,
                    feedback.technician_name,
                    timestamp,
                ),
            )

            # success_rate is a percentage over occurrence_count reworks
            old_total = existing["occurrence_count"] or 0
            old_success = round((existing["success_rate"] or 0) / 100 * old_total)
            new_total = old_total + 1
            new_success = old_success + (1 if feedback.was_successful else 0)
            conn.execute(
                """UPDATE process_logs_database
                   SET occurrence_count = ?, success_rate = ?,
                       last_occurrence_date = ?, updated_at = ?
                   WHERE id = ?""",
                (
                    new_total,
                    new_success / new_total * 100,
                    timestamp,
                    timestamp,
                    feedback.process_log_id,
                ),
            )
            conn.commit()

    # ── Catalog import ───────────────────────────────────────────────

    def load_catalog(self, catalog: dict[str, Any]) -> dict[str, int]:
        """Upsert instructions, process logs and feedback from a catalog dict.

        Returns the number of rows written per section.
        """
        counts = {"instructions": 0, "process_logs": 0, "feedback": 0}
        now = _now()
        with self._guard("catalog import"):
            conn = self._get_conn()
            for mpi in catalog.get("instructions", []):
                conn.execute(
                    """INSERT INTO manufacturing_process_instructions
                       (id, title, group_key, instruction_type, step_number,
                        instruction_text, parent_mpi_id, created_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                       ON CONFLICT(id) DO UPDATE SET
                         title = excluded.title,
                         group_key = excluded.group_key,
                         instruction_type = excluded.instruction_type,
                         step_number = excluded.step_number,
                         instruction_text = excluded.instruction_text,
                         parent_mpi_id = excluded.parent_mpi_id""",
                    (
                        mpi.get("id", str(uuid.uuid4())),
                        mpi["title"],
                        group_key(mpi["title"]),
                        mpi.get("instruction_type", "rework"),
                        mpi["step_number"],
                        mpi.get("instruction_text", ""),
                        mpi.get("parent_mpi_id"),
                        mpi.get("created_at", now),
                    ),
                )
                counts["instructions"] += 1

            for pl in catalog.get("process_logs", []):
                last_seen = pl.get("last_occurrence_date") or pl.get(
                    "updated_at", now
                )
                conn.execute(
                    """INSERT INTO process_logs_database
                       (id, pl_number, failure_code, failure_description,
                        symptoms, root_cause, corrective_mpi_id,
                        occurrence_count, success_rate, last_occurrence_date,
                        created_at, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                       ON CONFLICT(id) DO UPDATE SET
                         pl_number = excluded.pl_number,
                         failure_code = excluded.failure_code,
                         failure_description = excluded.failure_description,
                         symptoms = excluded.symptoms,
                         root_cause = excluded.root_cause,
                         corrective_mpi_id = excluded.corrective_mpi_id,
                         occurrence_count = excluded.occurrence_count,
                         success_rate = excluded.success_rate,
                         last_occurrence_date = excluded.last_occurrence_date,
                         updated_at = excluded.updated_at""",
                    (
                        pl.get("id", str(uuid.uuid4())),
                        pl.get("pl_number") or pl.get("id", ""),
                        pl["failure_code"],
                        pl.get("failure_description", ""),
                        json.dumps(pl.get("symptoms", [])),
                        pl.get("root_cause", ""),
                        pl.get("corrective_mpi_id"),
                        pl.get("occurrence_count", 0),
                        pl.get("success_rate", 0.0),
                        parse_timestamp(last_seen).isoformat(),
                        pl.get("created_at", now),
                        now,
                    ),
                )
                counts["process_logs"] += 1

            for fb in catalog.get("feedback", []):
                feedback = ReworkFeedback(
                    process_log_id=fb["process_log_database_id"],
                    rating=fb["rating"],
                    was_successful=bool(fb.get("was_successful", True)),
                    work_order_id=fb.get("work_order_id"),
                    corrective_instruction_id=fb.get("corrective_mpi_id"),
                    test_result_id=fb.get("test_result_id"),
                    comments=fb.get("comments"),
                    technician_name=fb.get("technician_name"),
                )
                conn.execute(
                    """INSERT OR REPLACE INTO rework_feedback
                       (id, work_order_id, process_log_database_id,
                        corrective_mpi_id, test_result_id, rating,
                        was_successful, comments, technician_name, created_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        fb.get("id", str(uuid.uuid4())),
                        feedback.work_order_id,
                        feedback.process_log_id,
                        feedback.corrective_instruction_id,
                        feedback.test_result_id,
                        feedback.rating,
                        1 if feedback.was_successful else 0,
                        feedback.comments,
                        feedback.technician_name,
                        fb.get("created_at", now),
                    ),
                )
                counts["feedback"] += 1
            conn.commit()
        return counts
