from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List

from .finish_order import FinishOrderSnapshot
from .models import Result

if TYPE_CHECKING:  # pragma: no cover - import only for annotations
    from .store import RegattaStore

logger = logging.getLogger(__name__)


def rows_for(race_id: str, snapshot: FinishOrderSnapshot) -> List[Result]:
    """Convert a finish order snapshot into result rows.

    Finishers get placements ``1..K`` in order; penalised boats get their
    code and no placement.
    """
    rows: List[Result] = []
    placement = 1
    for boat_id in snapshot.order:
        penalty = snapshot.penalty_of.get(boat_id)
        if penalty is not None:
            rows.append(Result(race_id=race_id, boat_id=boat_id, penalty=penalty))
        else:
            rows.append(Result(race_id=race_id, boat_id=boat_id, placement=placement))
            placement += 1
    return rows


class RaceResultStore:
    """Persists finish orders as the complete result set of a race.

    Each write replaces every row of the race, so it can run after every
    single edit and repeated writes of the same snapshot change nothing.
    """

    def __init__(self, store: "RegattaStore") -> None:
        self.store = store

    def write(self, race_id: str, snapshot: FinishOrderSnapshot) -> List[Result]:
        rows = rows_for(race_id, snapshot)
        self.store.replace_race_results(race_id, rows)
        logger.debug(
            "Saved %d results for race %s (%d finishers, %d penalties)",
            len(rows),
            race_id,
            len(snapshot.active),
            len(snapshot.penalised),
        )
        return rows

    def listener(self, race_id: str):
        """Return a change listener that writes snapshots of ``race_id``."""

        def _write(snapshot: FinishOrderSnapshot) -> None:
            self.write(race_id, snapshot)

        return _write
