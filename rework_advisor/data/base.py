"""RecordStore — abstract base for historical record backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable

from rework_advisor.core.models import (
    HistoricalDefectRecord,
    InstructionStep,
    ReworkFeedback,
)


class StoreUnavailableError(Exception):
    """A record store lookup failed; the analysis cannot complete."""


class RecordStore(ABC):
    """Batched lookups over process logs and manufacturing instructions.

    Every fetch is a single round trip for the whole key set.
    """

    @abstractmethod
    def fetch_records(
        self, failure_codes: Iterable[str]
    ) -> list[HistoricalDefectRecord]:
        """Records whose failure code is in the set, in retrieval order.

        Retrieval order is insertion order: rowid on SQLite,
        created_at then id on Supabase.
        """

    @abstractmethod
    def fetch_instructions(
        self, instruction_ids: Iterable[str]
    ) -> dict[str, InstructionStep]:
        """Map each resolvable instruction id to its row."""

    @abstractmethod
    def fetch_instruction_groups(
        self, group_keys: Iterable[str]
    ) -> dict[str, list[InstructionStep]]:
        """Map each group key to its steps, ordered by step number."""

    @abstractmethod
    def record_feedback(self, feedback: ReworkFeedback) -> None: ...

    def close(self) -> None:
        pass
