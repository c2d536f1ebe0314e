"""Capture sessions and scoring operations on top of :class:`RegattaStore`."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from .completion import RaceCompletionGate
from .finish_order import FinishOrder
from .models import Boat, MissingBoats, Race
from .penalties import PenaltyCode
from .results import RaceResultStore
from .standings import StandingsTable, compute_standings
from .store import RegattaStore

logger = logging.getLogger(__name__)


class RaceLockedError(ValueError):
    """Raised when editing the results of a completed race."""


class RegattaService:
    """Keeps at most one open finish order per race and wires it to storage.

    Every edit made through the service is written straight through to the
    store, so closing a capture session never loses data.
    """

    def __init__(self, store: Optional[RegattaStore] = None) -> None:
        self.store = store or RegattaStore()
        self.results = RaceResultStore(self.store)
        self.gate = RaceCompletionGate(self.results)
        self._captures: Dict[str, FinishOrder] = {}

    # ------------------------------------------------------------------
    # Capture sessions

    def open_capture(self, race_id: str) -> FinishOrder:
        existing = self._captures.get(race_id)
        if existing is not None:
            return existing
        self.store.get_race(race_id)
        finish_order = FinishOrder.from_results(
            self.store.list_results(race_id),
            on_change=self.results.listener(race_id),
        )
        self._captures[race_id] = finish_order
        logger.info("Opened capture for race %s with %d boats", race_id, len(finish_order))
        return finish_order

    def get_capture(self, race_id: str) -> FinishOrder:
        finish_order = self._captures.get(race_id)
        if finish_order is None:
            raise ValueError("Capture session not found")
        return finish_order

    def close_capture(self, race_id: str) -> None:
        if self._captures.pop(race_id, None) is not None:
            logger.info("Closed capture for race %s", race_id)

    def insert_boat(self, race_id: str, boat_id: str) -> FinishOrder:
        race, finish_order = self._editable(race_id)
        self._race_boat(race, boat_id)
        finish_order.insert(boat_id)
        return finish_order

    def remove_boat(self, race_id: str, boat_id: str) -> FinishOrder:
        _, finish_order = self._editable(race_id)
        finish_order.remove(boat_id)
        return finish_order

    def reorder(self, race_id: str, from_index: int, to_index: int) -> FinishOrder:
        _, finish_order = self._editable(race_id)
        finish_order.reorder_free(from_index, to_index)
        return finish_order

    def set_manual_placement(self, race_id: str, boat_id: str, rank: int) -> FinishOrder:
        _, finish_order = self._editable(race_id)
        finish_order.set_manual_placement(boat_id, rank)
        return finish_order

    def set_penalty(self, race_id: str, boat_id: str, code: PenaltyCode | str) -> FinishOrder:
        race, finish_order = self._editable(race_id)
        self._race_boat(race, boat_id)
        finish_order.set_penalty(boat_id, code)
        return finish_order

    # ------------------------------------------------------------------
    # Completion

    def complete_race(self, race_id: str, force: bool = False) -> Optional[MissingBoats]:
        race = self.store.get_race(race_id)
        boats = self.store.list_boats(race.regatta_id)
        finish_order = self.open_capture(race_id)
        outcome = self.gate.complete(race, boats, finish_order, force=force)
        if outcome is None:
            self.store.save_race(race)
        return outcome

    def reopen_race(self, race_id: str) -> Race:
        race = self.store.get_race(race_id)
        self.gate.reopen(race)
        self.store.save_race(race)
        return race

    def delete_race(self, race_id: str) -> None:
        self.close_capture(race_id)
        self.store.delete_race(race_id)

    # ------------------------------------------------------------------
    # Boats

    def delete_boat(self, boat_id: str) -> None:
        """Delete a boat and drop it from the finish order of every open race.

        Completed races keep their stored rows; standings skip boats that no
        longer belong to the regatta.
        """
        boat = self.store.get_boat(boat_id)
        self.store.delete_boat(boat_id)
        for race in self.store.list_races(boat.regatta_id):
            if race.completed:
                continue
            finish_order = self.open_capture(race.id)
            if boat_id in finish_order:
                finish_order.remove(boat_id)
                logger.info("Removed deleted boat %s from race %s", boat_id, race.id)

    # ------------------------------------------------------------------
    # Standings

    def compute_standings(self, regatta_id: str, strict: bool = False) -> Optional[StandingsTable]:
        regatta = self.store.get_regatta(regatta_id)
        return compute_standings(
            regatta.id,
            self.store.list_boats(regatta.id),
            self.store.list_races(regatta.id),
            self.store.list_regatta_results(regatta.id),
            regatta.discard_count,
            strict=strict,
        )

    # ------------------------------------------------------------------

    def _editable(self, race_id: str) -> tuple[Race, FinishOrder]:
        race = self.store.get_race(race_id)
        if race.completed:
            raise RaceLockedError(f"Race {race.number} is completed; reopen it to edit results")
        return race, self.open_capture(race_id)

    def _race_boat(self, race: Race, boat_id: str) -> Boat:
        boat = self.store.get_boat(boat_id)
        if boat.regatta_id != race.regatta_id:
            raise ValueError("Boat does not belong to this regatta")
        return boat
