"""Shared test fixtures for rework-advisor tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from rework_advisor.core.models import (
    HistoricalDefectRecord,
    InstructionStep,
    TestOutcome,
)
from rework_advisor.core.resolver import group_key
from rework_advisor.data.store import DataStore

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    """Fixed analysis timestamp."""
    return NOW


@pytest.fixture
def temp_db(tmp_path):
    """DataStore with a temporary SQLite database."""
    db_path = str(tmp_path / "test.db")
    store = DataStore(db_path=db_path)
    yield store
    store.close()


@pytest.fixture
def catalog() -> dict:
    """Two VOLT-HIGH logs, one PRESS-LOW log, one dangling reference."""
    return {
        "instructions": [
            make_instruction_row("mpi-vr-1", "VR Replacement - Isolate", 1),
            make_instruction_row("mpi-vr-3", "VR Replacement - Inspect", 3),
            make_instruction_row("mpi-vr-2", "VR Replacement - Swap U7", 2),
            make_instruction_row("mpi-seal-1", "Seal Reseat - Vent", 1),
            make_instruction_row("mpi-seal-2", "Seal Reseat - Replace O-ring", 2),
            make_instruction_row("mpi-other", "VR Replacement Kit", 1),
        ],
        "process_logs": [
            {
                "id": "pl-001",
                "pl_number": "PL-001",
                "failure_code": "VOLT-HIGH",
                "failure_description": "Output voltage high",
                "symptoms": ["Voltage spike on output"],
                "root_cause": "Bad regulator",
                "corrective_mpi_id": "mpi-vr-1",
                "occurrence_count": 10,
                "success_rate": 80,
                "last_occurrence_date": (NOW - timedelta(days=3)).isoformat(),
            },
            {
                "id": "pl-002",
                "pl_number": "PL-002",
                "failure_code": "PRESS-LOW",
                "failure_description": "Low inlet pressure",
                "symptoms": ["Low PRESSURE at inlet"],
                "root_cause": "Pinched O-ring",
                "corrective_mpi_id": "mpi-seal-2",
                "occurrence_count": 4,
                "success_rate": 50,
                "last_occurrence_date": (NOW - timedelta(days=200)).isoformat(),
            },
            {
                "id": "pl-003",
                "pl_number": "PL-003",
                "failure_code": "VOLT-HIGH",
                "failure_description": "Orphaned record",
                "symptoms": [],
                "root_cause": "Unknown",
                "corrective_mpi_id": "mpi-missing",
                "occurrence_count": 1,
                "success_rate": 100,
                "last_occurrence_date": (NOW - timedelta(days=1)).isoformat(),
            },
            {
                "id": "pl-004",
                "pl_number": "PL-004",
                "failure_code": "TEMP-HIGH",
                "failure_description": "Over temperature",
                "symptoms": ["Temperature high"],
                "root_cause": "Fan unplugged",
                "corrective_mpi_id": "mpi-vr-1",
                "occurrence_count": 2,
                "success_rate": 100,
                "last_occurrence_date": (NOW - timedelta(days=1)).isoformat(),
            },
        ],
        "feedback": [],
    }


@pytest.fixture
def seeded_db(temp_db: DataStore, catalog: dict) -> DataStore:
    temp_db.load_catalog(catalog)
    return temp_db


def make_instruction_row(
    mpi_id: str, title: str, step_number: int, text: str = ""
) -> dict:
    return {
        "id": mpi_id,
        "title": title,
        "instruction_type": "rework",
        "step_number": step_number,
        "instruction_text": text or f"Do step {step_number}",
    }


def make_step(
    mpi_id: str, title: str, step_number: int, text: str = ""
) -> InstructionStep:
    return InstructionStep(
        id=mpi_id,
        title=title,
        group_key=group_key(title),
        step_number=step_number,
        text=text or f"Do step {step_number}",
    )


def make_record(
    record_id: str = "pl-1",
    failure_code: str = "VOLT-HIGH",
    symptoms: Optional[list[str]] = None,
    success_rate: float = 80,
    days_ago: float = 3,
    average_feedback_rating: Optional[float] = None,
    total_feedback_count: int = 0,
    corrective_instruction_id: str = "mpi-1",
    occurrence_count: int = 5,
) -> HistoricalDefectRecord:
    return HistoricalDefectRecord(
        id=record_id,
        pl_number=record_id.upper(),
        failure_code=failure_code,
        failure_description=f"{failure_code} defect",
        symptoms=symptoms if symptoms is not None else [],
        root_cause="Root cause",
        corrective_instruction_id=corrective_instruction_id,
        occurrence_count=occurrence_count,
        success_rate=success_rate,
        last_occurrence_date=NOW - timedelta(days=days_ago),
        average_feedback_rating=average_feedback_rating,
        total_feedback_count=total_feedback_count,
    )


def make_outcome(
    codes: tuple[str, ...] = ("VOLT-HIGH",),
    voltage: Optional[float] = None,
    pressure: Optional[float] = None,
    temperature: Optional[float] = None,
) -> TestOutcome:
    return TestOutcome(
        failure_codes=frozenset(codes),
        voltage=voltage,
        pressure=pressure,
        temperature=temperature,
    )
