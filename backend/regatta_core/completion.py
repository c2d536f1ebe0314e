"""Completion state of a race.

A race is ``OPEN`` while results are being captured. Completing it freezes
the results; if boats were missing and completion was forced they are
scored as did-not-start and the race is flagged incomplete. Reopening keeps
all results so the next capture session starts from them.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Iterable, Optional

from .finish_order import FinishOrder
from .models import Boat, MissingBoats, Race
from .penalties import DID_NOT_START
from .results import RaceResultStore

logger = logging.getLogger(__name__)


class RaceState(str, Enum):
    OPEN = "open"
    COMPLETED = "completed"
    COMPLETED_INCOMPLETE = "completed_incomplete"


def state(race: Race) -> RaceState:
    if not race.completed:
        return RaceState.OPEN
    return RaceState.COMPLETED_INCOMPLETE if race.incomplete else RaceState.COMPLETED


def missing_boats(boats: Iterable[Boat], finish_order: FinishOrder) -> list[Boat]:
    return [boat for boat in boats if boat.id not in finish_order]


class RaceCompletionGate:
    def __init__(self, results: RaceResultStore) -> None:
        self.results = results

    def complete(
        self,
        race: Race,
        boats: Iterable[Boat],
        finish_order: FinishOrder,
        force: bool = False,
    ) -> Optional[MissingBoats]:
        """Mark ``race`` completed after persisting ``finish_order``.

        Returns :class:`MissingBoats` (and changes nothing) when boats of the
        regatta are not in the finish order and ``force`` is false. With
        ``force`` those boats are added as did-not-start first.
        """
        if race.completed:
            raise ValueError(f"Race {race.number} is already completed")

        if len(finish_order) == 0:
            raise ValueError("Cannot complete a race without any boats in the finish order")

        missing = missing_boats(boats, finish_order)

        if missing and not force:
            logger.info("Race %s not completed: %d boats missing", race.id, len(missing))
            return MissingBoats(count=len(missing), boats=missing)

        snapshot = finish_order.snapshot()
        if missing:
            # Backfill without triggering the session's autosave; written once below.
            listener, finish_order.on_change = finish_order.on_change, None
            try:
                finish_order.add_penalised([boat.id for boat in missing], DID_NOT_START)
            finally:
                finish_order.on_change = listener
            snapshot = finish_order.snapshot()
        self.results.write(race.id, snapshot)

        race.completed = True
        race.incomplete = bool(missing)
        if missing:
            logger.warning(
                "Race %s completed incomplete: %d boats ranked, %d scored %s",
                race.id,
                len(snapshot.order) - len(missing),
                len(missing),
                DID_NOT_START.value,
            )
        else:
            logger.info("Race %s completed: %d boats ranked", race.id, len(snapshot.order))
        return None

    def reopen(self, race: Race) -> None:
        if not race.completed:
            raise ValueError(f"Race {race.number} is not completed")
        race.completed = False
        race.incomplete = False
        logger.info("Race %s reopened for corrections", race.id)
