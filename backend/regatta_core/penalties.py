"""Penalty codes for non-finishing boats and their sort priority."""

from __future__ import annotations

from enum import Enum
from typing import Dict, List


class PenaltyCode(str, Enum):
    DNF = "DNF"  # Did Not Finish
    DNS = "DNS"  # Did Not Start
    DNC = "DNC"  # Did Not Compete
    DSQ = "DSQ"  # Disqualified
    OCS = "OCS"  # On Course Side
    BFD = "BFD"  # Black Flag Disqualification
    RET = "RET"  # Retired


# Lower value sorts first within the penalty block of a race.
PENALTY_ORDER: Dict[PenaltyCode, int] = {
    PenaltyCode.DNF: 0,
    PenaltyCode.DNS: 1,
    PenaltyCode.DNC: 2,
    PenaltyCode.DSQ: 3,
    PenaltyCode.OCS: 4,
    PenaltyCode.BFD: 5,
    PenaltyCode.RET: 6,
}

PENALTY_LABELS: Dict[PenaltyCode, str] = {
    PenaltyCode.DNF: "Did Not Finish",
    PenaltyCode.DNS: "Did Not Start",
    PenaltyCode.DNC: "Did Not Compete",
    PenaltyCode.DSQ: "Disqualified",
    PenaltyCode.OCS: "On Course Side",
    PenaltyCode.BFD: "Black Flag Disqualification",
    PenaltyCode.RET: "Retired",
}

# Applied to boats that never reached the finish when a race is force-completed.
DID_NOT_START = PenaltyCode.DNS


def priority(code: PenaltyCode) -> int:
    return PENALTY_ORDER[code]


def label(code: PenaltyCode) -> str:
    return PENALTY_LABELS[code]


def parse_penalty(value: str | PenaltyCode) -> PenaltyCode:
    """Return the :class:`PenaltyCode` for ``value`` (case-insensitive).

    Raises ``ValueError`` for anything outside the catalog.
    """
    if isinstance(value, PenaltyCode):
        return value
    normalised = str(value or "").strip().upper()
    try:
        return PenaltyCode(normalised)
    except ValueError as exc:
        raise ValueError(f"Unknown penalty code '{value}'") from exc


def catalog() -> List[Dict[str, object]]:
    """Penalty codes in priority order, as plain dictionaries."""
    return [
        {"code": code.value, "label": PENALTY_LABELS[code], "priority": PENALTY_ORDER[code]}
        for code in sorted(PenaltyCode, key=priority)
    ]
