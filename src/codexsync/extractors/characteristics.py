"""Mapping from source characteristic codes to statline fields.

Datasheets label profile columns with short codes (``M``, ``SV``, ``OC``),
sometimes spelled out. Every known spelling maps to exactly one
``Statline`` field; codes outside the table are returned to the caller
instead of being dropped.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Literal

from codexsync.models.records import Statline

if TYPE_CHECKING:
    from collections.abc import Iterable

StatField = Literal[
    "movement",
    "toughness",
    "save",
    "invulnerable_save",
    "wounds",
    "leadership",
    "objective_control",
]

CHARACTERISTIC_FIELDS: dict[str, StatField] = {
    "M": "movement",
    "MOVE": "movement",
    "MOVEMENT": "movement",
    "T": "toughness",
    "TOUGHNESS": "toughness",
    "SV": "save",
    "SAVE": "save",
    "INV": "invulnerable_save",
    "INVUL": "invulnerable_save",
    "INVULNERABLE SAVE": "invulnerable_save",
    "W": "wounds",
    "WOUNDS": "wounds",
    "LD": "leadership",
    "LEADERSHIP": "leadership",
    "OC": "objective_control",
    "OBJECTIVE CONTROL": "objective_control",
}

_LEADING_INT_RE = re.compile(r"\d+")


def _leading_int(raw: str) -> int | None:
    match = _LEADING_INT_RE.search(raw)
    return int(match.group(0)) if match else None


def _coerce(field: StatField, raw: str) -> int | str | None:
    value = raw.strip()
    match field:
        case "toughness" | "wounds" | "leadership" | "objective_control":
            return _leading_int(value)
        case "movement" | "save" | "invulnerable_save":
            return value or None


def statline_from_characteristics(
    characteristics: Iterable[tuple[str, str]],
) -> tuple[Statline, list[str]]:
    """Build a statline from ``(code, value)`` pairs.

    Returns the statline and the codes that are not in the table, in input
    order. A later pair for the same field overrides an earlier one.
    """
    values: dict[str, int | str | None] = {}
    unknown: list[str] = []
    for code, raw in characteristics:
        normalized = " ".join(code.upper().split())
        field = CHARACTERISTIC_FIELDS.get(normalized)
        if field is None:
            unknown.append(code.strip())
            continue
        values[field] = _coerce(field, raw)
    return Statline(**values), unknown
