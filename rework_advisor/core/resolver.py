"""Instruction resolver — corrective instruction id to its full step sequence."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Optional

from rework_advisor.core.models import InstructionStep
from rework_advisor.data.base import RecordStore

logger = logging.getLogger(__name__)

GROUP_SEPARATOR = " - "


def group_key(title: str) -> str:
    """Procedure name shared by every step: the title before the first " - "."""
    return title.split(GROUP_SEPARATOR, 1)[0]


@dataclass
class ResolvedInstruction:
    instruction: InstructionStep
    steps: list[InstructionStep] = field(default_factory=list)


def resolve_instructions(
    store: RecordStore, instruction_ids: Iterable[str]
) -> dict[str, ResolvedInstruction]:
    """Resolve instruction ids in two batched lookups.

    Ids that do not resolve are absent from the result.
    """
    ids = list(dict.fromkeys(i for i in instruction_ids if i))
    if not ids:
        return {}

    instructions = store.fetch_instructions(ids)
    missing = [i for i in ids if i not in instructions]
    if missing:
        logger.debug("Unresolved instruction ids: %s", ", ".join(missing))
    if not instructions:
        return {}

    keys = list(dict.fromkeys(
        group_key(instr.title) for instr in instructions.values()
    ))
    groups = store.fetch_instruction_groups(keys)

    resolved: dict[str, ResolvedInstruction] = {}
    for instr_id in ids:
        instr = instructions.get(instr_id)
        if instr is None:
            continue
        steps = groups.get(group_key(instr.title), [])
        resolved[instr_id] = ResolvedInstruction(
            instruction=instr,
            steps=sorted(steps, key=lambda s: s.step_number),
        )
    return resolved


def resolve_instruction(
    store: RecordStore, instruction_id: str
) -> Optional[ResolvedInstruction]:
    """Single-id convenience used by the instruction viewer."""
    return resolve_instructions(store, [instruction_id]).get(instruction_id)
