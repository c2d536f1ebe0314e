"""Core regatta scoring domain reused by the API."""

from .finish_order import FinishOrder, FinishOrderSnapshot
from .models import Boat, MissingBoats, Race, Regatta, RegattaStatus, Result
from .penalties import PenaltyCode
from .service import RaceLockedError, RegattaService
from .standings import StandingsTable, compute_standings
from .store import RegattaFinishedError, RegattaStore

__all__ = [
    "Boat",
    "FinishOrder",
    "FinishOrderSnapshot",
    "MissingBoats",
    "PenaltyCode",
    "Race",
    "RaceLockedError",
    "Regatta",
    "RegattaFinishedError",
    "RegattaService",
    "RegattaStatus",
    "RegattaStore",
    "Result",
    "StandingsTable",
    "compute_standings",
]
