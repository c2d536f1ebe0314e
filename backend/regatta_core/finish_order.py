"""Working finish order of a single race during capture.

The order is split in two segments: boats that finished ("active") come
first, in finishing order, followed by boats holding a penalty code, sorted
by penalty priority. Every mutation keeps that shape and then hands a
snapshot to the change listener, which persists it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .models import Result
from .penalties import PenaltyCode, parse_penalty, priority


@dataclass(frozen=True)
class FinishOrderSnapshot:
    order: Tuple[str, ...] = ()
    penalty_of: Dict[str, PenaltyCode] = field(default_factory=dict)

    @property
    def active(self) -> Tuple[str, ...]:
        return tuple(boat_id for boat_id in self.order if boat_id not in self.penalty_of)

    @property
    def penalised(self) -> Tuple[str, ...]:
        return tuple(boat_id for boat_id in self.order if boat_id in self.penalty_of)


ChangeListener = Callable[[FinishOrderSnapshot], None]


class FinishOrder:
    def __init__(
        self,
        order: Optional[Sequence[str]] = None,
        penalty_of: Optional[Dict[str, PenaltyCode]] = None,
        on_change: Optional[ChangeListener] = None,
    ) -> None:
        self._order: List[str] = list(order or [])
        self._penalty_of: Dict[str, PenaltyCode] = {
            boat_id: parse_penalty(code) for boat_id, code in (penalty_of or {}).items()
        }
        self.on_change = on_change
        self._verify()

    @classmethod
    def from_results(cls, results: Iterable[Result], on_change: Optional[ChangeListener] = None) -> "FinishOrder":
        """Rebuild the order from persisted results of one race.

        Finishers are ordered by placement, penalised boats by priority; both
        sorts are stable so equal-priority penalties keep their stored order.
        """
        rows = list(results)
        active = sorted((row for row in rows if not row.is_penalty), key=lambda row: row.placement or 0)
        penalised = sorted((row for row in rows if row.is_penalty), key=lambda row: priority(row.penalty))
        order = [row.boat_id for row in active] + [row.boat_id for row in penalised]
        penalty_of = {row.boat_id: row.penalty for row in penalised if row.penalty is not None}
        return cls(order, penalty_of, on_change=on_change)

    # ------------------------------------------------------------------
    # Read access

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, boat_id: object) -> bool:
        return boat_id in self._order

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._order))

    @property
    def order(self) -> List[str]:
        return list(self._order)

    @property
    def penalty_of(self) -> Dict[str, PenaltyCode]:
        return dict(self._penalty_of)

    @property
    def first_penalty_index(self) -> int:
        for index, boat_id in enumerate(self._order):
            if boat_id in self._penalty_of:
                return index
        return len(self._order)

    @property
    def active_ids(self) -> List[str]:
        return self._order[: self.first_penalty_index]

    @property
    def penalty_ids(self) -> List[str]:
        return self._order[self.first_penalty_index :]

    def penalty(self, boat_id: str) -> Optional[PenaltyCode]:
        return self._penalty_of.get(boat_id)

    def snapshot(self) -> FinishOrderSnapshot:
        return FinishOrderSnapshot(order=tuple(self._order), penalty_of=dict(self._penalty_of))

    # ------------------------------------------------------------------
    # Mutations

    def insert(self, boat_id: str) -> None:
        """Append a finisher to the end of the active segment."""
        if boat_id in self._order:
            raise ValueError(f"Boat {boat_id} is already in the finish order")
        self._order.insert(self.first_penalty_index, boat_id)
        self._commit()

    def remove(self, boat_id: str) -> None:
        self._require(boat_id)
        self._order.remove(boat_id)
        self._penalty_of.pop(boat_id, None)
        self._commit()

    def reorder_free(self, from_index: int, to_index: int) -> None:
        """Drag a finisher to another slot; both ends must be in the active segment."""
        boundary = self.first_penalty_index
        if not (0 <= from_index < boundary and 0 <= to_index < boundary):
            raise ValueError(
                f"Cannot move from {from_index} to {to_index}: finishers occupy positions 0-{boundary - 1}"
            )
        boat_id = self._order.pop(from_index)
        self._order.insert(to_index, boat_id)
        self._commit()

    def set_manual_placement(self, boat_id: str, rank: int) -> None:
        """Place a boat at ``rank`` (1-based), clearing any penalty it held.

        The boat never lands behind the first penalised boat, so a rank past
        the finishers puts it last among them.
        """
        self._require(boat_id)
        if rank < 1:
            raise ValueError("Placement must be a positive integer")
        self._order.remove(boat_id)
        self._penalty_of.pop(boat_id, None)
        self._order.insert(min(rank - 1, self.first_penalty_index), boat_id)
        self._commit()

    def set_penalty(self, boat_id: str, code: PenaltyCode | str) -> None:
        """Give a boat a penalty code and move it into the penalty segment.

        The boat goes right after the last penalised boat with a strictly
        better (lower) priority and ahead of boats with equal or worse
        priority. A boat not yet in the order is added the same way.
        """
        penalty = parse_penalty(code)
        if boat_id in self._order:
            self._order.remove(boat_id)
            self._penalty_of.pop(boat_id, None)
        value = priority(penalty)
        insert_index = 0
        for index in range(len(self._order) - 1, -1, -1):
            other = self._penalty_of.get(self._order[index])
            if other is None or priority(other) < value:
                insert_index = index + 1
                break
        self._order.insert(insert_index, boat_id)
        self._penalty_of[boat_id] = penalty
        self._commit()

    def add_penalised(self, boat_ids: Sequence[str], code: PenaltyCode | str) -> None:
        """Append boats that are not yet in the order under one penalty code.

        The boats keep their given order and are placed after every boat
        already holding the same or a better penalty. Only one change
        notification is sent for the whole batch.
        """
        penalty = parse_penalty(code)
        duplicates = [boat_id for boat_id in boat_ids if boat_id in self._order]
        if duplicates:
            raise ValueError(f"Boats already in the finish order: {', '.join(duplicates)}")
        if len(set(boat_ids)) != len(boat_ids):
            raise ValueError("Boat ids must be unique")
        value = priority(penalty)
        insert_index = self.first_penalty_index
        while insert_index < len(self._order) and priority(self._penalty_of[self._order[insert_index]]) <= value:
            insert_index += 1
        self._order[insert_index:insert_index] = list(boat_ids)
        for boat_id in boat_ids:
            self._penalty_of[boat_id] = penalty
        self._commit()

    # ------------------------------------------------------------------
    # Internals

    def _require(self, boat_id: str) -> None:
        if boat_id not in self._order:
            raise ValueError(f"Boat {boat_id} is not in the finish order")

    def _commit(self) -> None:
        self._verify()
        if self.on_change is not None:
            self.on_change(self.snapshot())

    def _verify(self) -> None:
        if len(set(self._order)) != len(self._order):
            raise AssertionError("Finish order contains duplicate boats")
        stray = set(self._penalty_of) - set(self._order)
        if stray:
            raise AssertionError(f"Penalties assigned to boats outside the order: {sorted(stray)}")
        boundary = self.first_penalty_index
        tail = self._order[boundary:]
        if any(boat_id not in self._penalty_of for boat_id in tail):
            raise AssertionError("Finisher positioned after a penalised boat")
        priorities = [priority(self._penalty_of[boat_id]) for boat_id in tail]
        if priorities != sorted(priorities):
            raise AssertionError("Penalty segment is not sorted by priority")
