from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .penalties import PenaltyCode, parse_penalty


class RegattaStatus(str, Enum):
    PREPARATION = "preparation"
    ACTIVE = "active"
    FINISHED = "finished"


@dataclass
class Regatta:
    """A regatta (event) grouping boats and a numbered series of races."""

    id: str
    name: str
    date: Optional[str] = None
    organizer: Optional[str] = None
    boat_class: Optional[str] = None
    status: RegattaStatus = RegattaStatus.PREPARATION
    discard_count: int = 0  # Worst scores per boat excluded from the series total
    created_at: str = ""

    def to_record(self) -> Dict[str, Any]:
        record = asdict(self)
        record["status"] = self.status.value
        return record

    @classmethod
    def from_record(cls, row: Dict[str, Any]) -> "Regatta":
        return cls(
            id=str(row["id"]),
            name=str(row.get("name") or ""),
            date=row.get("date"),
            organizer=row.get("organizer"),
            boat_class=row.get("boat_class"),
            status=RegattaStatus(row.get("status") or RegattaStatus.PREPARATION.value),
            discard_count=int(row.get("discard_count") or 0),
            created_at=str(row.get("created_at") or ""),
        )


@dataclass
class Boat:
    id: str
    regatta_id: str
    sail_number: str  # Unique within the regatta
    helm: Optional[str] = None
    club: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_record(cls, row: Dict[str, Any]) -> "Boat":
        return cls(
            id=str(row["id"]),
            regatta_id=str(row["regatta_id"]),
            sail_number=str(row.get("sail_number") or ""),
            helm=row.get("helm"),
            club=row.get("club"),
        )


@dataclass
class Race:
    """A single race of a regatta.

    ``number`` is assigned at creation and only ever grows within a regatta.
    ``incomplete`` is meaningful only once ``completed`` is set: it marks a
    race that was force-completed with boats backfilled as did-not-start.
    """

    id: str
    regatta_id: str
    number: int
    name: str
    completed: bool = False
    incomplete: bool = False
    start_time: Optional[str] = None
    finish_time: Optional[str] = None
    wind: Optional[str] = None
    course_length: Optional[str] = None
    created_at: str = ""

    def to_record(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_record(cls, row: Dict[str, Any]) -> "Race":
        return cls(
            id=str(row["id"]),
            regatta_id=str(row["regatta_id"]),
            number=int(row["number"]),
            name=str(row.get("name") or f"Race {row['number']}"),
            completed=bool(row.get("completed")),
            incomplete=bool(row.get("incomplete")),
            start_time=row.get("start_time"),
            finish_time=row.get("finish_time"),
            wind=row.get("wind"),
            course_length=row.get("course_length"),
            created_at=str(row.get("created_at") or ""),
        )


@dataclass(frozen=True)
class Result:
    """Outcome of one boat in one race: a placement or a penalty, never both."""

    race_id: str
    boat_id: str
    placement: Optional[int] = None
    penalty: Optional[PenaltyCode] = None

    def __post_init__(self) -> None:
        if (self.placement is None) == (self.penalty is None):
            raise ValueError("A result needs exactly one of placement or penalty")
        if self.placement is not None and self.placement < 1:
            raise ValueError("Placement must be a positive integer")

    @property
    def is_penalty(self) -> bool:
        return self.penalty is not None

    def to_record(self) -> Dict[str, Any]:
        return {
            "race_id": self.race_id,
            "boat_id": self.boat_id,
            "placement": self.placement,
            "penalty": self.penalty.value if self.penalty else None,
        }

    @classmethod
    def from_record(cls, row: Dict[str, Any]) -> "Result":
        penalty_raw = row.get("penalty")
        placement_raw = row.get("placement")
        return cls(
            race_id=str(row["race_id"]),
            boat_id=str(row["boat_id"]),
            placement=int(placement_raw) if placement_raw is not None and not penalty_raw else None,
            penalty=parse_penalty(penalty_raw) if penalty_raw else None,
        )


@dataclass
class MissingBoats:
    """Returned when a race cannot be completed because boats are unaccounted for."""

    count: int
    boats: List[Boat] = field(default_factory=list)
