"""Scoring functions — similarity, recency, feedback weight and combined rank."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from rework_advisor.core.models import (
    HistoricalDefectRecord,
    RecencyLabel,
    TestOutcome,
)

FAILURE_CODE_POINTS = 40
SYMPTOM_POINTS = 20

VOLTAGE_LIMIT = 240.0
PRESSURE_LIMIT = 50.0
TEMPERATURE_LIMIT = 80.0

# (max days inclusive, score)
RECENCY_BUCKETS = [
    (7, 100),
    (30, 80),
    (90, 60),
    (180, 40),
    (365, 20),
]
RECENCY_FLOOR = 10

SIMILARITY_WEIGHT = 0.30
SUCCESS_RATE_WEIGHT = 0.40
RECENCY_WEIGHT = 0.15
FEEDBACK_WEIGHT = 0.15

MAX_FEEDBACK_RATING = 3

_SECONDS_PER_DAY = 86400


def similarity_score(outcome: TestOutcome, record: HistoricalDefectRecord) -> int:
    """Additive 0-100 match between a test outcome and a historical record."""
    score = 0

    if record.failure_code in outcome.failure_codes:
        score += FAILURE_CODE_POINTS

    if (
        outcome.voltage is not None
        and outcome.voltage > VOLTAGE_LIMIT
        and _has_symptom(record, "voltage")
    ):
        score += SYMPTOM_POINTS

    if (
        outcome.pressure is not None
        and outcome.pressure < PRESSURE_LIMIT
        and _has_symptom(record, "pressure")
    ):
        score += SYMPTOM_POINTS

    if (
        outcome.temperature is not None
        and outcome.temperature > TEMPERATURE_LIMIT
        and _has_symptom(record, "temperature")
    ):
        score += SYMPTOM_POINTS

    return min(score, 100)


def _has_symptom(record: HistoricalDefectRecord, keyword: str) -> bool:
    return any(keyword in s.lower() for s in record.symptoms)


def days_since(last_occurrence: datetime, now: datetime) -> int:
    """Whole days elapsed, truncated. Future dates count as 0."""
    elapsed = (_as_utc(now) - _as_utc(last_occurrence)).total_seconds()
    if elapsed <= 0:
        return 0
    return int(elapsed // _SECONDS_PER_DAY)


def recency_score(last_occurrence: datetime, now: datetime) -> tuple[int, int]:
    """Return (score, days_since) for a last occurrence date."""
    days = days_since(last_occurrence, now)
    return recency_score_for_days(days), days


def recency_score_for_days(days: int) -> int:
    for max_days, score in RECENCY_BUCKETS:
        if days <= max_days:
            return score
    return RECENCY_FLOOR


def recency_label(days: int) -> RecencyLabel:
    """Human label and urgency colour for a day count. Display only."""
    if days == 0:
        text = "Today"
    elif days == 1:
        text = "Yesterday"
    elif days < 7:
        text = f"{days} days ago"
    elif days < 30:
        text = _plural(days // 7, "week")
    elif days < 365:
        text = _plural(days // 30, "month")
    else:
        text = _plural(days // 365, "year")

    if days <= 7:
        color = "red"
    elif days <= 30:
        color = "orange"
    elif days <= 90:
        color = "yellow"
    else:
        color = "slate"
    return RecencyLabel(text=text, color=color)


def _plural(n: int, unit: str) -> str:
    return f"{n} {unit}{'' if n == 1 else 's'} ago"


def feedback_weight(
    average_rating: Optional[float], total_feedback_count: int
) -> float:
    """Bounded 0-1 weight from an average 1-3 operator rating.

    Records with no feedback contribute 0, whatever rating is stored.
    """
    if total_feedback_count <= 0 or not average_rating:
        return 0.0
    return min(average_rating / MAX_FEEDBACK_RATING, 1.0)


def combined_rank(
    similarity: float,
    success_rate: float,
    recency: float,
    weight: float,
) -> float:
    return (
        similarity * SIMILARITY_WEIGHT
        + success_rate * SUCCESS_RATE_WEIGHT
        + recency * RECENCY_WEIGHT
        + (weight * 100) * FEEDBACK_WEIGHT
    )


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
