from __future__ import annotations

import datetime as dt
import logging
from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator, List, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from regatta_core import Boat, FinishOrder, Race, Regatta, RaceLockedError, RegattaFinishedError, RegattaService
from regatta_core.completion import state as race_state
from regatta_core.penalties import PenaltyCode, catalog
from regatta_core.standings import StandingsTable
from regatta_core.validation import BoatValidationFailed

app = FastAPI(title="Regatta Scoring API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

logger = logging.getLogger(__name__)


class PenaltyOptionModel(BaseModel):
    code: str
    label: str
    priority: int


class ReferenceResponse(BaseModel):
    penalty_codes: List[PenaltyOptionModel] = Field(alias="penaltyCodes")

    model_config = ConfigDict(populate_by_name=True)


class RegattaCreatePayload(BaseModel):
    name: str
    date: dt.date
    organizer: Optional[str] = None
    boat_class: Optional[str] = Field(default=None, alias="boatClass")
    status: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class RegattaUpdatePayload(BaseModel):
    name: Optional[str] = None
    date: Optional[dt.date] = None
    organizer: Optional[str] = None
    boat_class: Optional[str] = Field(default=None, alias="boatClass")
    status: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class DiscardCountPayload(BaseModel):
    discard_count: int = Field(alias="discardCount", ge=0)

    model_config = ConfigDict(populate_by_name=True)


class RegattaResponseModel(BaseModel):
    id: str
    name: str
    date: Optional[str] = None
    organizer: Optional[str] = None
    boat_class: Optional[str] = Field(default=None, alias="boatClass")
    status: str
    discard_count: int = Field(alias="discardCount")
    created_at: str = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)


class RegattaListResponse(BaseModel):
    regattas: List[RegattaResponseModel]


class BoatPayload(BaseModel):
    # Optional so a missing sail number reaches the domain validator
    sail_number: Optional[str] = Field(default=None, alias="sailNumber")
    helm: Optional[str] = None
    club: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class BoatResponseModel(BaseModel):
    id: str
    regatta_id: str = Field(alias="regattaId")
    sail_number: str = Field(alias="sailNumber")
    helm: Optional[str] = None
    club: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class BoatListResponse(BaseModel):
    boats: List[BoatResponseModel]


class RacePayload(BaseModel):
    name: Optional[str] = None
    start_time: Optional[dt.time] = Field(default=None, alias="startTime")
    finish_time: Optional[dt.time] = Field(default=None, alias="finishTime")
    wind: Optional[str] = None
    course_length: Optional[str] = Field(default=None, alias="courseLength")

    model_config = ConfigDict(populate_by_name=True)


class RaceResponseModel(BaseModel):
    id: str
    regatta_id: str = Field(alias="regattaId")
    number: int
    name: str
    completed: bool
    incomplete: bool
    state: str
    start_time: Optional[str] = Field(default=None, alias="startTime")
    finish_time: Optional[str] = Field(default=None, alias="finishTime")
    wind: Optional[str] = None
    course_length: Optional[str] = Field(default=None, alias="courseLength")

    model_config = ConfigDict(populate_by_name=True)


class RaceListResponse(BaseModel):
    races: List[RaceResponseModel]


class ResultModel(BaseModel):
    boat_id: str = Field(alias="boatId")
    placement: Optional[int] = None
    penalty: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class RaceResultsResponse(BaseModel):
    race: RaceResponseModel
    results: List[ResultModel]


class CaptureEntryModel(BaseModel):
    boat_id: str = Field(alias="boatId")
    sail_number: Optional[str] = Field(default=None, alias="sailNumber")
    placement: Optional[int] = None
    penalty: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class CaptureResponse(BaseModel):
    race: RaceResponseModel
    entries: List[CaptureEntryModel]
    first_penalty_index: int = Field(alias="firstPenaltyIndex")
    available_boats: List[BoatResponseModel] = Field(alias="availableBoats")

    model_config = ConfigDict(populate_by_name=True)


class BoatIdPayload(BaseModel):
    boat_id: str = Field(alias="boatId")

    model_config = ConfigDict(populate_by_name=True)


class ReorderPayload(BaseModel):
    from_index: int = Field(alias="fromIndex")
    to_index: int = Field(alias="toIndex")

    model_config = ConfigDict(populate_by_name=True)


class PlacementPayload(BaseModel):
    boat_id: str = Field(alias="boatId")
    rank: int = Field(ge=1)

    model_config = ConfigDict(populate_by_name=True)


class PenaltyPayload(BaseModel):
    boat_id: str = Field(alias="boatId")
    code: PenaltyCode

    model_config = ConfigDict(populate_by_name=True)


class CompletePayload(BaseModel):
    force: bool = False


class RaceScoreModel(BaseModel):
    race_id: str = Field(alias="raceId")
    points: int
    placement: Optional[int] = None
    penalty: Optional[str] = None
    discarded: bool
    race_incomplete: bool = Field(alias="raceIncomplete")

    model_config = ConfigDict(populate_by_name=True)


class StandingsRowModel(BaseModel):
    rank: int
    boat: BoatResponseModel
    scores: List[RaceScoreModel]
    total: int


class StandingsRaceModel(BaseModel):
    id: str
    number: int
    name: str
    incomplete: bool


class StandingsModel(BaseModel):
    regatta_id: str = Field(alias="regattaId")
    discard_count: int = Field(alias="discardCount")
    races: List[StandingsRaceModel]
    rows: List[StandingsRowModel]

    model_config = ConfigDict(populate_by_name=True)


class StandingsResponse(BaseModel):
    standings: Optional[StandingsModel] = None


@lru_cache(maxsize=1)
def service() -> RegattaService:
    return RegattaService()


@contextmanager
def translate_errors() -> Iterator[None]:
    try:
        yield
    except BoatValidationFailed as exc:
        raise HTTPException(status_code=400, detail=exc.error.to_dict()) from exc
    except (RaceLockedError, RegattaFinishedError) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        if str(exc).endswith("not found"):
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except RuntimeError as exc:
        logger.exception("Storage failure")
        raise HTTPException(status_code=502, detail=str(exc)) from exc


def _regatta_model(regatta: Regatta) -> RegattaResponseModel:
    return RegattaResponseModel(
        id=regatta.id,
        name=regatta.name,
        date=regatta.date,
        organizer=regatta.organizer,
        boatClass=regatta.boat_class,
        status=regatta.status.value,
        discardCount=regatta.discard_count,
        createdAt=regatta.created_at,
    )


def _boat_model(boat: Boat) -> BoatResponseModel:
    return BoatResponseModel(
        id=boat.id,
        regattaId=boat.regatta_id,
        sailNumber=boat.sail_number,
        helm=boat.helm,
        club=boat.club,
    )


def _race_model(race: Race) -> RaceResponseModel:
    return RaceResponseModel(
        id=race.id,
        regattaId=race.regatta_id,
        number=race.number,
        name=race.name,
        completed=race.completed,
        incomplete=race.incomplete,
        state=race_state(race).value,
        startTime=race.start_time,
        finishTime=race.finish_time,
        wind=race.wind,
        courseLength=race.course_length,
    )


def _capture_response(race_id: str, finish_order: FinishOrder) -> CaptureResponse:
    store = service().store
    race = store.get_race(race_id)
    boats = {boat.id: boat for boat in store.list_boats(race.regatta_id)}

    entries: List[CaptureEntryModel] = []
    placement = 0
    for boat_id in finish_order:
        penalty = finish_order.penalty(boat_id)
        if penalty is None:
            placement += 1
        boat = boats.get(boat_id)
        entries.append(
            CaptureEntryModel(
                boatId=boat_id,
                sailNumber=boat.sail_number if boat else None,
                placement=None if penalty else placement,
                penalty=penalty.value if penalty else None,
            )
        )

    return CaptureResponse(
        race=_race_model(race),
        entries=entries,
        firstPenaltyIndex=finish_order.first_penalty_index,
        availableBoats=[_boat_model(boat) for boat in boats.values() if boat.id not in finish_order],
    )


def _standings_model(table: StandingsTable) -> StandingsModel:
    return StandingsModel(
        regattaId=table.regatta_id,
        discardCount=table.discard_count,
        races=[
            StandingsRaceModel(id=race.id, number=race.number, name=race.name, incomplete=race.incomplete)
            for race in table.races
        ],
        rows=[
            StandingsRowModel(
                rank=row.rank,
                boat=_boat_model(row.boat),
                total=row.total,
                scores=[
                    RaceScoreModel(
                        raceId=score.race_id,
                        points=score.points,
                        placement=score.placement,
                        penalty=score.penalty.value if score.penalty else None,
                        discarded=score.discarded,
                        raceIncomplete=score.race_incomplete,
                    )
                    for score in row.scores
                ],
            )
            for row in table.rows
        ],
    )


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/reference", response_model=ReferenceResponse)
def reference():
    return ReferenceResponse(penaltyCodes=[PenaltyOptionModel(**item) for item in catalog()])


# ---- regattas ------------------------------------------------------------------


@app.get("/regattas", response_model=RegattaListResponse)
def list_regattas():
    with translate_errors():
        regattas = service().store.list_regattas()
    return RegattaListResponse(regattas=[_regatta_model(regatta) for regatta in regattas])


@app.post("/regattas", response_model=RegattaResponseModel, status_code=201)
def create_regatta(payload: RegattaCreatePayload):
    with translate_errors():
        regatta = service().store.create_regatta(payload.model_dump(exclude_unset=True))
    return _regatta_model(regatta)


@app.get("/regattas/{regatta_id}", response_model=RegattaResponseModel)
def get_regatta(regatta_id: str):
    with translate_errors():
        regatta = service().store.get_regatta(regatta_id)
    return _regatta_model(regatta)


@app.patch("/regattas/{regatta_id}", response_model=RegattaResponseModel)
def update_regatta(regatta_id: str, payload: RegattaUpdatePayload):
    with translate_errors():
        regatta = service().store.update_regatta(regatta_id, payload.model_dump(exclude_unset=True))
    return _regatta_model(regatta)


@app.delete("/regattas/{regatta_id}", status_code=204)
def delete_regatta(regatta_id: str) -> None:
    with translate_errors():
        for race in service().store.list_races(regatta_id):
            service().close_capture(race.id)
        service().store.delete_regatta(regatta_id)


@app.put("/regattas/{regatta_id}/discards", response_model=RegattaResponseModel)
def set_discards(regatta_id: str, payload: DiscardCountPayload):
    with translate_errors():
        regatta = service().store.set_discard_count(regatta_id, payload.discard_count)
    return _regatta_model(regatta)


@app.get("/regattas/{regatta_id}/standings", response_model=StandingsResponse)
def regatta_standings(regatta_id: str):
    with translate_errors():
        table = service().compute_standings(regatta_id)
    return StandingsResponse(standings=_standings_model(table) if table else None)


# ---- boats ---------------------------------------------------------------------


@app.get("/regattas/{regatta_id}/boats", response_model=BoatListResponse)
def list_boats(regatta_id: str, q: Optional[str] = Query(default=None)):
    with translate_errors():
        service().store.get_regatta(regatta_id)
        boats = service().store.list_boats(regatta_id, query=q)
    return BoatListResponse(boats=[_boat_model(boat) for boat in boats])


@app.post("/regattas/{regatta_id}/boats", response_model=BoatResponseModel, status_code=201)
def add_boat(regatta_id: str, payload: BoatPayload):
    with translate_errors():
        boat = service().store.add_boat(regatta_id, payload.model_dump(exclude_unset=True))
    return _boat_model(boat)


@app.patch("/boats/{boat_id}", response_model=BoatResponseModel)
def update_boat(boat_id: str, payload: BoatPayload):
    with translate_errors():
        boat = service().store.update_boat(boat_id, payload.model_dump(exclude_unset=True))
    return _boat_model(boat)


@app.delete("/boats/{boat_id}", status_code=204)
def delete_boat(boat_id: str) -> None:
    with translate_errors():
        service().delete_boat(boat_id)


# ---- races ---------------------------------------------------------------------


@app.get("/regattas/{regatta_id}/races", response_model=RaceListResponse)
def list_races(regatta_id: str):
    with translate_errors():
        service().store.get_regatta(regatta_id)
        races = service().store.list_races(regatta_id)
    return RaceListResponse(races=[_race_model(race) for race in races])


@app.post("/regattas/{regatta_id}/races", response_model=RaceResponseModel, status_code=201)
def create_race(regatta_id: str, payload: Optional[RacePayload] = None):
    with translate_errors():
        fields = payload.model_dump(exclude_unset=True) if payload else {}
        race = service().store.create_race(regatta_id, fields)
    return _race_model(race)


@app.patch("/races/{race_id}", response_model=RaceResponseModel)
def update_race(race_id: str, payload: RacePayload):
    with translate_errors():
        race = service().store.update_race_metadata(race_id, payload.model_dump(exclude_unset=True))
    return _race_model(race)


@app.delete("/races/{race_id}", status_code=204)
def delete_race(race_id: str) -> None:
    with translate_errors():
        service().delete_race(race_id)


@app.get("/races/{race_id}/results", response_model=RaceResultsResponse)
def race_results(race_id: str):
    with translate_errors():
        race = service().store.get_race(race_id)
        results = service().store.list_results(race_id)
    # Stored rows carry no order of their own; present them the way capture rehydrates them.
    ordered = FinishOrder.from_results(results)
    by_boat = {result.boat_id: result for result in results}
    return RaceResultsResponse(
        race=_race_model(race),
        results=[
            ResultModel(
                boatId=boat_id,
                placement=by_boat[boat_id].placement,
                penalty=by_boat[boat_id].penalty.value if by_boat[boat_id].penalty else None,
            )
            for boat_id in ordered
        ],
    )


@app.post("/races/{race_id}/complete", response_model=RaceResponseModel)
def complete_race(race_id: str, payload: Optional[CompletePayload] = None):
    force = payload.force if payload else False
    with translate_errors():
        missing = service().complete_race(race_id, force=force)
    if missing is not None:
        raise HTTPException(
            status_code=409,
            detail={
                "code": "MISSING_BOATS",
                "message": "Race cannot be completed while boats are missing",
                "count": missing.count,
                "boats": [_boat_model(boat).model_dump(by_alias=True) for boat in missing.boats],
            },
        )
    with translate_errors():
        race = service().store.get_race(race_id)
    return _race_model(race)


@app.post("/races/{race_id}/reopen", response_model=RaceResponseModel)
def reopen_race(race_id: str):
    with translate_errors():
        race = service().reopen_race(race_id)
    return _race_model(race)


# ---- finish capture ------------------------------------------------------------


@app.post("/races/{race_id}/capture", response_model=CaptureResponse)
def open_capture(race_id: str):
    with translate_errors():
        finish_order = service().open_capture(race_id)
        return _capture_response(race_id, finish_order)


@app.get("/races/{race_id}/capture", response_model=CaptureResponse)
def get_capture(race_id: str):
    with translate_errors():
        finish_order = service().get_capture(race_id)
        return _capture_response(race_id, finish_order)


@app.delete("/races/{race_id}/capture", status_code=204)
def close_capture(race_id: str) -> None:
    service().close_capture(race_id)


@app.post("/races/{race_id}/capture/insert", response_model=CaptureResponse)
def capture_insert(race_id: str, payload: BoatIdPayload):
    with translate_errors():
        finish_order = service().insert_boat(race_id, payload.boat_id)
        return _capture_response(race_id, finish_order)


@app.post("/races/{race_id}/capture/remove", response_model=CaptureResponse)
def capture_remove(race_id: str, payload: BoatIdPayload):
    with translate_errors():
        finish_order = service().remove_boat(race_id, payload.boat_id)
        return _capture_response(race_id, finish_order)


@app.post("/races/{race_id}/capture/reorder", response_model=CaptureResponse)
def capture_reorder(race_id: str, payload: ReorderPayload):
    with translate_errors():
        finish_order = service().reorder(race_id, payload.from_index, payload.to_index)
        return _capture_response(race_id, finish_order)


@app.post("/races/{race_id}/capture/placement", response_model=CaptureResponse)
def capture_placement(race_id: str, payload: PlacementPayload):
    with translate_errors():
        finish_order = service().set_manual_placement(race_id, payload.boat_id, payload.rank)
        return _capture_response(race_id, finish_order)


@app.post("/races/{race_id}/capture/penalty", response_model=CaptureResponse)
def capture_penalty(race_id: str, payload: PenaltyPayload):
    with translate_errors():
        finish_order = service().set_penalty(race_id, payload.boat_id, payload.code)
        return _capture_response(race_id, finish_order)
