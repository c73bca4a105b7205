"""Row conversion shared by the SQLite and Supabase backends.

Both backends use the same column names: process_logs_database,
manufacturing_process_instructions and rework_feedback.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any, Optional, TypeVar

from dateutil.parser import isoparse

from rework_advisor.core.models import (
    HistoricalDefectRecord,
    InstructionStep,
    InstructionType,
)
from rework_advisor.core.resolver import group_key
from rework_advisor.data.base import StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC.

    PostgREST trims trailing zeros from fractional seconds, so any
    fraction length is accepted.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = isoparse(str(value).strip())
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def convert_rows(
    rows: Iterable[dict[str, Any]],
    convert: Callable[[dict[str, Any]], T],
    table: str,
) -> list[T]:
    """Convert raw rows, reporting a malformed row as an unavailable store."""
    converted = []
    for row in rows:
        try:
            converted.append(convert(row))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Malformed row in %s (id=%s): %s", table, row.get("id"), e)
            raise StoreUnavailableError(
                f"Malformed row in {table} (id={row.get('id')}): {e}"
            ) from e
    return converted


def record_from_row(row: dict[str, Any]) -> HistoricalDefectRecord:
    symptoms = row.get("symptoms") or []
    if isinstance(symptoms, str):
        symptoms = json.loads(symptoms)

    last_seen = (
        row.get("last_occurrence_date")
        or row.get("updated_at")
        or row.get("created_at")
    )
    rating = row.get("average_feedback_rating")

    return HistoricalDefectRecord(
        id=str(row["id"]),
        pl_number=row.get("pl_number") or str(row["id"]),
        failure_code=row["failure_code"],
        failure_description=row.get("failure_description") or "",
        symptoms=list(symptoms),
        root_cause=row.get("root_cause") or "",
        corrective_instruction_id=str(row.get("corrective_mpi_id") or ""),
        occurrence_count=int(row.get("occurrence_count") or 0),
        success_rate=float(row.get("success_rate") or 0.0),
        last_occurrence_date=parse_timestamp(last_seen),
        average_feedback_rating=float(rating) if rating is not None else None,
        total_feedback_count=int(row.get("total_feedback_count") or 0),
    )


def step_from_row(row: dict[str, Any]) -> InstructionStep:
    title = row.get("title") or ""
    return InstructionStep(
        id=str(row["id"]),
        title=title,
        group_key=row.get("group_key") or group_key(title),
        step_number=int(row.get("step_number") or 0),
        text=row.get("instruction_text") or "",
        instruction_type=InstructionType(row.get("instruction_type") or "rework"),
        parent_id=_optional_str(row.get("parent_mpi_id")),
    )


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)
