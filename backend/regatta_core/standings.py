"""Series standings across the completed races of a regatta.

Low-point scoring: a finisher scores its placement, a penalised boat scores
one more than the number of finishers in that race. Each boat's worst
results are discarded according to the regatta's discard count (at least
one race always counts), and ties are broken by count-back, then by the
most recent race.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import cmp_to_key
from typing import Dict, Iterable, List, Optional

from .models import Boat, Race, Result
from .penalties import PenaltyCode

logger = logging.getLogger(__name__)

MIN_COMPLETED_RACES = 2


class IncompleteRaceForStandings(AssertionError):
    """A completed race lacks results for some boats of the regatta."""

    def __init__(self, race: Race, boat_ids: List[str]) -> None:
        super().__init__(f"Race {race.number} ({race.id}) has no result for boats: {', '.join(boat_ids)}")
        self.race = race
        self.boat_ids = boat_ids


@dataclass
class RaceScore:
    race_id: str
    race_index: int  # Position of the race among completed races, by number
    points: int
    placement: Optional[int] = None
    penalty: Optional[PenaltyCode] = None
    race_incomplete: bool = False
    discarded: bool = False


@dataclass
class StandingsRow:
    boat: Boat
    scores: List[RaceScore] = field(default_factory=list)
    total: int = 0
    rank: int = 0

    @property
    def counted_points(self) -> List[int]:
        return sorted(score.points for score in self.scores if not score.discarded)

    def score_for(self, race_id: str) -> Optional[RaceScore]:
        for score in self.scores:
            if score.race_id == race_id:
                return score
        return None


@dataclass
class StandingsTable:
    regatta_id: str
    races: List[Race]
    rows: List[StandingsRow]
    discard_count: int


def race_points(result: Result, finisher_count: int) -> int:
    if result.penalty is not None:
        return finisher_count + 1
    if result.placement is None:
        raise ValueError(f"Result for boat {result.boat_id} has neither placement nor penalty")
    return result.placement


def apply_discards(scores: List[RaceScore], discard_count: int) -> None:
    """Flag the worst ``discard_count`` scores, always keeping one.

    Among equal points the more recent race is discarded first.
    """
    if discard_count <= 0 or len(scores) <= 1:
        return
    worst_first = sorted(scores, key=lambda score: (score.points, score.race_index), reverse=True)
    for score in worst_first[: min(discard_count, len(scores) - 1)]:
        score.discarded = True


def compare_rows(a: StandingsRow, b: StandingsRow) -> int:
    if a.total != b.total:
        return -1 if a.total < b.total else 1

    # Count-back: best counted results first
    for a_points, b_points in zip(a.counted_points, b.counted_points):
        if a_points != b_points:
            return -1 if a_points < b_points else 1

    # Most recent race, discarded or not
    a_last = a.scores[-1].points
    b_last = b.scores[-1].points
    if a_last != b_last:
        return -1 if a_last < b_last else 1
    return 0


def compute_standings(
    regatta_id: str,
    boats: Iterable[Boat],
    races: Iterable[Race],
    results: Iterable[Result],
    discard_count: int,
    strict: bool = False,
) -> Optional[StandingsTable]:
    """Rank the boats of a regatta over its completed races.

    Returns ``None`` while fewer than two races are completed. A boat without
    a result in a completed race simply scores nothing for it; ``strict``
    turns that situation into :class:`IncompleteRaceForStandings`.
    """
    if discard_count < 0:
        raise ValueError("Discard count cannot be negative")

    completed = sorted(
        (race for race in races if race.regatta_id == regatta_id and race.completed),
        key=lambda race: race.number,
    )
    if len(completed) < MIN_COMPLETED_RACES:
        return None

    regatta_boats = [boat for boat in boats if boat.regatta_id == regatta_id]

    by_race: Dict[str, Dict[str, Result]] = {race.id: {} for race in completed}
    for result in results:
        if result.race_id in by_race:
            by_race[result.race_id][result.boat_id] = result

    rows: Dict[str, StandingsRow] = {boat.id: StandingsRow(boat=boat) for boat in regatta_boats}

    for race_index, race in enumerate(completed):
        race_results = by_race[race.id]
        finisher_count = sum(1 for result in race_results.values() if result.penalty is None)

        uncovered = [boat.id for boat in regatta_boats if boat.id not in race_results]
        if uncovered:
            if strict:
                raise IncompleteRaceForStandings(race, uncovered)
            logger.warning(
                "Completed race %s has no result for %d boats; they score nothing for it",
                race.id,
                len(uncovered),
            )

        for boat_id, result in race_results.items():
            row = rows.get(boat_id)
            if row is None:
                continue
            row.scores.append(
                RaceScore(
                    race_id=race.id,
                    race_index=race_index,
                    points=race_points(result, finisher_count),
                    placement=result.placement,
                    penalty=result.penalty,
                    race_incomplete=race.incomplete,
                )
            )

    scored = [row for row in rows.values() if row.scores]
    for row in scored:
        apply_discards(row.scores, discard_count)
        row.total = sum(score.points for score in row.scores if not score.discarded)

    ranked = sorted(scored, key=cmp_to_key(compare_rows))
    for rank, row in enumerate(ranked, start=1):
        row.rank = rank

    return StandingsTable(regatta_id=regatta_id, races=completed, rows=ranked, discard_count=discard_count)
