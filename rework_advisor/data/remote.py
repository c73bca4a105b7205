"""Supabase record store — the shared plant database."""

from __future__ import annotations

import logging
import os
from collections import defaultdict
from collections.abc import Iterable
from typing import Any, Optional

from rework_advisor.core.models import (
    HistoricalDefectRecord,
    InstructionStep,
    ReworkFeedback,
)
from rework_advisor.core.resolver import GROUP_SEPARATOR
from rework_advisor.data.base import RecordStore, StoreUnavailableError
from rework_advisor.data.rows import convert_rows, record_from_row, step_from_row
from rework_advisor.data.store import DataStore

logger = logging.getLogger(__name__)

PROCESS_LOGS_TABLE = "process_logs_database"
INSTRUCTIONS_TABLE = "manufacturing_process_instructions"
FEEDBACK_TABLE = "rework_feedback"


def resolve_credentials(
    config: Optional[DataStore] = None,
) -> tuple[Optional[str], Optional[str]]:
    """Resolve Supabase credentials: env var → config DB."""
    url = os.environ.get("REWORK_ADVISOR_SUPABASE_URL") or (
        config.get_config("supabase-url") if config else None
    )
    key = os.environ.get("REWORK_ADVISOR_SUPABASE_KEY") or (
        config.get_config("supabase-key") if config else None
    )
    return url, key


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class SupabaseStore(RecordStore):
    """Record store backed by the Supabase tables the plant UI writes to."""

    def __init__(
        self,
        supabase_url: Optional[str] = None,
        supabase_key: Optional[str] = None,
        config: Optional[DataStore] = None,
    ):
        if supabase_url and supabase_key:
            self.supabase_url: Optional[str] = supabase_url
            self.supabase_key: Optional[str] = supabase_key
        else:
            self.supabase_url, self.supabase_key = resolve_credentials(config)
        self._client: Any = None

    @property
    def is_configured(self) -> bool:
        """True when both Supabase URL and key are available."""
        return self.supabase_url is not None and self.supabase_key is not None

    def _get_client(self) -> Any:
        """Lazy-initialize Supabase client."""
        if not self.is_configured:
            raise StoreUnavailableError(
                "Supabase is not configured. Set REWORK_ADVISOR_SUPABASE_URL "
                "and REWORK_ADVISOR_SUPABASE_KEY."
            )
        if self._client is None:
            try:
                from supabase import create_client

                self._client = create_client(
                    self.supabase_url, self.supabase_key
                )
            except Exception as e:
                logger.debug("Failed to create Supabase client: %s", e)
                raise StoreUnavailableError(
                    f"Could not connect to Supabase: {e}"
                ) from e
        return self._client

    def _select(self, table: str, build) -> list[dict]:
        client = self._get_client()
        try:
            resp = build(client.table(table).select("*")).execute()
        except Exception as e:
            logger.warning("Supabase query on %s failed: %s", table, e)
            raise StoreUnavailableError(
                f"Supabase query on {table} failed: {e}"
            ) from e
        return resp.data or []

    # ── Lookups ──────────────────────────────────────────────────────

    def fetch_records(
        self, failure_codes: Iterable[str]
    ) -> list[HistoricalDefectRecord]:
        codes = list(dict.fromkeys(failure_codes))
        if not codes:
            return []
        rows = self._select(
            PROCESS_LOGS_TABLE,
            lambda q: q.in_("failure_code", codes).order("created_at").order("id"),
        )
        if any("total_feedback_count" not in r for r in rows):
            self._attach_feedback_stats(rows)
        return convert_rows(rows, record_from_row, PROCESS_LOGS_TABLE)

    def _attach_feedback_stats(self, rows: list[dict]) -> None:
        """Aggregate ratings per process log in one extra query."""
        ids = [str(r["id"]) for r in rows]
        if not ids:
            return
        feedback = self._select(
            FEEDBACK_TABLE, lambda q: q.in_("process_log_database_id", ids)
        )
        ratings: dict[str, list[int]] = defaultdict(list)
        for fb in feedback:
            ratings[str(fb["process_log_database_id"])].append(fb["rating"])
        for r in rows:
            values = ratings.get(str(r["id"]), [])
            r["total_feedback_count"] = len(values)
            r["average_feedback_rating"] = (
                sum(values) / len(values) if values else None
            )

    def fetch_instructions(
        self, instruction_ids: Iterable[str]
    ) -> dict[str, InstructionStep]:
        ids = list(dict.fromkeys(instruction_ids))
        if not ids:
            return {}
        rows = self._select(INSTRUCTIONS_TABLE, lambda q: q.in_("id", ids))
        steps = convert_rows(rows, step_from_row, INSTRUCTIONS_TABLE)
        return {step.id: step for step in steps}

    def fetch_instruction_groups(
        self, group_keys: Iterable[str]
    ) -> dict[str, list[InstructionStep]]:
        keys = list(dict.fromkeys(group_keys))
        if not keys:
            return {}
        # A step belongs to a group when its title is the key itself or
        # starts with "<key> - ".
        filters = ",".join(
            f"title.eq.{_quote(k)},title.like.{_quote(k + GROUP_SEPARATOR + '*')}"
            for k in keys
        )
        rows = self._select(
            INSTRUCTIONS_TABLE,
            lambda q: q.or_(filters).order("step_number", desc=False),
        )
        groups: dict[str, list[InstructionStep]] = {k: [] for k in keys}
        for step in convert_rows(rows, step_from_row, INSTRUCTIONS_TABLE):
            if step.group_key in groups:
                groups[step.group_key].append(step)
        return groups

    # ── Feedback ─────────────────────────────────────────────────────

    def record_feedback(self, feedback: ReworkFeedback) -> None:
        client = self._get_client()
        try:
            client.table(FEEDBACK_TABLE).insert({
                "work_order_id": feedback.work_order_id,
                "process_log_database_id": feedback.process_log_id,
                "corrective_mpi_id": feedback.corrective_instruction_id,
                "test_result_id": feedback.test_result_id,
                "rating": feedback.rating,
                "was_successful": feedback.was_successful,
                "comments": feedback.comments,
                "technician_name": feedback.technician_name,
            }).execute()
        except Exception as e:
            logger.warning("Failed to submit feedback: %s", e)
            raise StoreUnavailableError(f"Failed to submit feedback: {e}") from e
