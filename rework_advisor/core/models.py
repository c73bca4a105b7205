"""Core data models for rework-advisor."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class InstructionType(Enum):
    SETUP = "setup"
    TESTING = "testing"
    REWORK = "rework"


class AnalysisStatus(Enum):
    RECOMMENDATIONS = "recommendations"
    NO_MATCH = "no_match"


@dataclass(frozen=True)
class TestOutcome:
    failure_codes: frozenset[str] = frozenset()
    voltage: Optional[float] = None
    pressure: Optional[float] = None
    temperature: Optional[float] = None
    id: Optional[str] = None
    work_order_id: Optional[str] = None
    test_run_number: int = 1

    # Not a pytest test class despite the name.
    __test__ = False

    @property
    def passed(self) -> bool:
        return not self.failure_codes


@dataclass
class HistoricalDefectRecord:
    id: str
    pl_number: str
    failure_code: str
    failure_description: str
    symptoms: list[str]
    root_cause: str
    corrective_instruction_id: str
    occurrence_count: int
    success_rate: float  # 0-100
    last_occurrence_date: datetime
    average_feedback_rating: Optional[float] = None  # 1-3 scale
    total_feedback_count: int = 0


@dataclass
class InstructionStep:
    id: str
    title: str
    group_key: str
    step_number: int
    text: str
    instruction_type: InstructionType = InstructionType.REWORK
    parent_id: Optional[str] = None


@dataclass
class RecencyLabel:
    text: str
    color: str  # "red", "orange", "yellow", "slate"


@dataclass
class ReworkSelection:
    """What the instruction viewer receives when an operator picks a card."""

    corrective_instruction_id: str
    record: HistoricalDefectRecord
    steps: list[InstructionStep]


@dataclass
class RecommendationEntry:
    record: HistoricalDefectRecord
    instruction: InstructionStep
    similarity_score: int
    recency_score: int
    days_since: int
    feedback_weight: float
    combined_rank: float
    resolved_steps: list[InstructionStep] = field(default_factory=list)

    @property
    def step_count(self) -> int:
        return len(self.resolved_steps)

    @property
    def recency_label(self) -> RecencyLabel:
        from rework_advisor.core.scoring import recency_label

        return recency_label(self.days_since)

    def selection(self) -> ReworkSelection:
        return ReworkSelection(
            corrective_instruction_id=self.record.corrective_instruction_id,
            record=self.record,
            steps=list(self.resolved_steps),
        )

    def to_dict(self) -> dict:
        """Card payload for JSON output."""
        label = self.recency_label
        return {
            "process_log_id": self.record.id,
            "pl_number": self.record.pl_number,
            "failure_code": self.record.failure_code,
            "description": self.record.failure_description,
            "root_cause": self.record.root_cause,
            "occurrence_count": self.record.occurrence_count,
            "success_rate": self.record.success_rate,
            "similarity_score": self.similarity_score,
            "recency_score": self.recency_score,
            "days_since": self.days_since,
            "recency_label": label.text,
            "recency_color": label.color,
            "average_feedback_rating": self.record.average_feedback_rating,
            "total_feedback_count": self.record.total_feedback_count,
            "feedback_weight": self.feedback_weight,
            "combined_rank": self.combined_rank,
            "corrective_instruction_id": self.record.corrective_instruction_id,
            "step_count": self.step_count,
        }


@dataclass
class AnalysisResult:
    outcome: TestOutcome
    status: AnalysisStatus
    entries: list[RecommendationEntry] = field(default_factory=list)


@dataclass
class ReworkFeedback:
    process_log_id: str
    rating: int  # 1 = not helpful, 2 = somewhat helpful, 3 = very helpful
    was_successful: bool
    work_order_id: Optional[str] = None
    corrective_instruction_id: Optional[str] = None
    test_result_id: Optional[str] = None
    comments: Optional[str] = None
    technician_name: Optional[str] = None

    def __post_init__(self) -> None:
        if self.rating not in (1, 2, 3):
            raise ValueError(
                f"Feedback rating must be 1, 2 or 3, got {self.rating!r}"
            )
