"""Sortable step identifiers.

Step ids look like ``step1``, ``step2`` for whole steps and ``step1_5``,
``step1_25``, ``step1_05`` for steps inserted in between (1.5, 1.25, 1.05).
"""

from __future__ import annotations

import math
import re
from collections.abc import Sequence

from flowengine.models import FlowStep

STEP_ID_RE = re.compile(r"^step(\d+)(?:_(\d+))?$")
_MAX_ATTEMPTS = 1000


def parse_step_id(step_id: str) -> tuple[int, str]:
    """Split a step id into its whole part and fractional digits."""
    match = STEP_ID_RE.match(step_id)
    if not match:
        raise ValueError(f"Invalid step ID format: {step_id}")
    return int(match.group(1)), match.group(2) or ""


def is_step_id(step_id: str) -> bool:
    return STEP_ID_RE.match(step_id) is not None


def step_id_to_decimal(step_id: str) -> float:
    whole, fraction = parse_step_id(step_id)
    if not fraction:
        return float(whole)
    return whole + int(fraction) / 10 ** len(fraction)


def decimal_to_step_id(decimal: float) -> str:
    whole = math.floor(decimal)
    fraction = round(decimal - whole, 5)
    if fraction < 0.0001:
        return f"step{whole}"
    digits = f"{fraction:.5f}".split(".")[1].rstrip("0")
    return f"step{whole}_{digits or '0'}"


def generate_step_id(
    existing_ids: Sequence[str],
    after_id: str | None,
    before_id: str | None,
) -> str:
    """A new id that sorts between ``after_id`` and ``before_id``.

    Whole numbers are preferred when inserting at either end.
    """
    existing = set(existing_ids)
    if not after_id and not before_id:
        return "step1"

    if not after_id:
        before = step_id_to_decimal(before_id)  # type: ignore[arg-type]
        target = int(before - 1) if before > 1 else 0
        if f"step{target}" not in existing:
            return f"step{target}"
        after = target - 0.5
    elif not before_id:
        after = step_id_to_decimal(after_id)
        candidate = math.floor(after) + 1
        while f"step{candidate}" in existing:
            candidate += 1
        return f"step{candidate}"
    else:
        after = step_id_to_decimal(after_id)
        before = step_id_to_decimal(before_id)

    midpoint = (after + before) / 2
    candidate_id = decimal_to_step_id(midpoint)
    attempt = 1
    while candidate_id in existing:
        if attempt > _MAX_ATTEMPTS:
            raise ValueError("Unable to generate unique step ID")
        candidate_id = decimal_to_step_id(midpoint + 0.001 * attempt)
        attempt += 1
    return candidate_id


def generate_step_id_between(
    steps: Sequence[FlowStep], after_index: int, before_index: int
) -> str:
    """A new id for a step inserted between two list positions."""
    ids = [s.step_id for s in steps]
    after_id = ids[after_index] if after_index >= 0 else None
    before_id = ids[before_index] if before_index < len(ids) else None
    return generate_step_id(ids, after_id, before_id)


def step_sort_key(step_id: str) -> float:
    return step_id_to_decimal(step_id)
