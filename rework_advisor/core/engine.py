"""Recommendation engine — ranks corrective actions for a failed test."""

from __future__ import annotations

import logging
from datetime import datetime

from rework_advisor.core.models import (
    AnalysisResult,
    AnalysisStatus,
    HistoricalDefectRecord,
    RecommendationEntry,
    TestOutcome,
)
from rework_advisor.core.resolver import ResolvedInstruction, resolve_instructions
from rework_advisor.core.scoring import (
    combined_rank,
    feedback_weight,
    recency_score,
    similarity_score,
)
from rework_advisor.data.base import RecordStore, StoreUnavailableError

logger = logging.getLogger(__name__)


class RecommendationEngine:
    """Matches a test outcome against historical process logs.

    Holds no state between runs; one instance can serve any number of
    outcomes as long as the store handle allows it.
    """

    def __init__(self, store: RecordStore):
        self.store = store

    def analyze(self, outcome: TestOutcome, now: datetime) -> AnalysisResult:
        """Rank corrective actions for ``outcome`` as of ``now``.

        Raises StoreUnavailableError when any lookup fails.
        """
        if not outcome.failure_codes:
            logger.info("Outcome has no failure codes, nothing to analyze")
            return AnalysisResult(outcome=outcome, status=AnalysisStatus.NO_MATCH)

        try:
            records = self.store.fetch_records(sorted(outcome.failure_codes))
            candidates = [
                r for r in records if r.failure_code in outcome.failure_codes
            ]
            resolved = resolve_instructions(
                self.store,
                [r.corrective_instruction_id for r in candidates],
            )
        except StoreUnavailableError as e:
            logger.error("Failure analysis aborted: %s", e)
            raise

        entries = []
        for record in candidates:
            target = resolved.get(record.corrective_instruction_id)
            if target is None:
                logger.debug(
                    "Dropping %s: instruction %s does not resolve",
                    record.pl_number,
                    record.corrective_instruction_id,
                )
                continue
            entries.append(score_candidate(outcome, record, target, now))

        ranked = rank_entries(entries)
        logger.info(
            "Analyzed %s: %d candidate(s), %d recommendation(s)",
            ", ".join(sorted(outcome.failure_codes)),
            len(candidates),
            len(ranked),
        )
        status = (
            AnalysisStatus.RECOMMENDATIONS if ranked else AnalysisStatus.NO_MATCH
        )
        return AnalysisResult(outcome=outcome, status=status, entries=ranked)


def score_candidate(
    outcome: TestOutcome,
    record: HistoricalDefectRecord,
    target: ResolvedInstruction,
    now: datetime,
) -> RecommendationEntry:
    similarity = similarity_score(outcome, record)
    recency, days = recency_score(record.last_occurrence_date, now)
    weight = feedback_weight(
        record.average_feedback_rating, record.total_feedback_count
    )
    return RecommendationEntry(
        record=record,
        instruction=target.instruction,
        similarity_score=similarity,
        recency_score=recency,
        days_since=days,
        feedback_weight=weight,
        combined_rank=combined_rank(
            similarity, record.success_rate, recency, weight
        ),
        resolved_steps=target.steps,
    )


def rank_entries(
    entries: list[RecommendationEntry],
) -> list[RecommendationEntry]:
    # sorted() is stable: equal ranks keep retrieval order.
    return sorted(entries, key=lambda e: e.combined_rank, reverse=True)
