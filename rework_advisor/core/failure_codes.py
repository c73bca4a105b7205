"""Operator-facing descriptions for known failure codes."""

from __future__ import annotations

from typing import Optional

from rework_advisor.core.models import TestOutcome


def describe_failure_code(code: str, outcome: TestOutcome) -> Optional[str]:
    if code == "VOLT-HIGH":
        return f"Voltage exceeded acceptable range ({_fmt(outcome.voltage)}V)"
    if code == "PRESS-LOW":
        return (
            "Pressure below minimum threshold "
            f"({_fmt(outcome.pressure)} PSI)"
        )
    if code == "TEMP-HIGH":
        return (
            "Temperature exceeded operational limits "
            f"({_fmt(outcome.temperature)}°C)"
        )
    return None


def _fmt(value: Optional[float]) -> str:
    return "?" if value is None else f"{value:.1f}"
