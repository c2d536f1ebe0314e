from __future__ import annotations

import datetime as dt
import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import httpx

from .models import Boat, Race, Regatta, RegattaStatus, Result
from .validation import BoatValidationFailed, validate_sail_number

logger = logging.getLogger(__name__)

COLLECTIONS = ("regattas", "boats", "races", "results")


class RegattaFinishedError(ValueError):
    """Raised when editing the details or boats of a finished regatta."""


def _env_float(name: str, default: float) -> float:
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return float(val)
    except ValueError:
        return default


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class RegattaStore:
    """Durable records for regattas, boats, races and results.

    Records live in Supabase when ``SUPABASE_URL`` and a key are configured,
    otherwise in one JSON file per collection under ``data_dir``.
    """

    def __init__(self, data_dir: Path | None = None) -> None:
        env_dir = os.getenv("REGATTA_DATA_DIR")
        self.data_dir = data_dir or (Path(env_dir) if env_dir else Path(__file__).parent.parent / "data")

        # Supabase configuration
        self.supabase_url = os.getenv("SUPABASE_URL", "")
        self.supabase_key = (
            os.getenv("SUPABASE_SERVICE_ROLE_KEY")
            or os.getenv("SUPABASE_SERVICE_KEY")
            or os.getenv("SUPABASE_ANON_KEY")
            or ""
        )
        self.supabase_schema = os.getenv("SUPABASE_SCHEMA", "public")
        self.supabase_tables = {
            "regattas": os.getenv("SUPABASE_REGATTAS_TABLE", "regattas"),
            "boats": os.getenv("SUPABASE_BOATS_TABLE", "boats"),
            "races": os.getenv("SUPABASE_RACES_TABLE", "races"),
            "results": os.getenv("SUPABASE_RESULTS_TABLE", "results"),
        }
        self.supabase_timeout = _env_float("SUPABASE_TIMEOUT", 10.0)

    @property
    def uses_supabase(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    # ------------------------------------------------------------------
    # Regattas

    def create_regatta(self, payload: Dict[str, Any]) -> Regatta:
        name = _clean(payload.get("name"))
        if not name:
            raise ValueError("Regatta name is required")
        date = self._coerce_date(payload.get("date"))
        if not date:
            raise ValueError("Regatta date is required")
        regatta = Regatta(
            id=str(uuid.uuid4()),
            name=name,
            date=date,
            organizer=_clean(payload.get("organizer")),
            boat_class=_clean(payload.get("boat_class")),
            status=self._coerce_status(payload.get("status")),
            discard_count=0,
            created_at=self._utc_now_iso(),
        )
        self._insert("regattas", [regatta.to_record()])
        return regatta

    def list_regattas(self) -> List[Regatta]:
        return [Regatta.from_record(row) for row in self._select("regattas")]

    def get_regatta(self, regatta_id: str) -> Regatta:
        rows = self._select("regattas", id=regatta_id)
        if not rows:
            raise ValueError("Regatta not found")
        return Regatta.from_record(rows[0])

    def update_regatta(self, regatta_id: str, payload: Dict[str, Any]) -> Regatta:
        regatta = self.get_regatta(regatta_id)
        # A finished regatta only accepts a status change
        if set(payload) - {"status"}:
            self._require_unfinished(regatta)
        fields: Dict[str, Any] = {}
        if "name" in payload:
            name = _clean(payload.get("name"))
            if not name:
                raise ValueError("Regatta name cannot be empty")
            fields["name"] = name
        if "date" in payload:
            date = self._coerce_date(payload.get("date"))
            if not date:
                raise ValueError("Regatta date cannot be empty")
            fields["date"] = date
        for key in ("organizer", "boat_class"):
            if key in payload:
                fields[key] = _clean(payload.get(key))
        if "status" in payload:
            fields["status"] = self._coerce_status(payload.get("status")).value
        if not fields:
            return regatta
        self._update("regattas", fields, id=regatta_id)
        return self.get_regatta(regatta_id)

    def delete_regatta(self, regatta_id: str) -> None:
        self.get_regatta(regatta_id)
        for race in self.list_races(regatta_id):
            self._delete("results", race_id=race.id)
        self._delete("races", regatta_id=regatta_id)
        self._delete("boats", regatta_id=regatta_id)
        self._delete("regattas", id=regatta_id)

    @staticmethod
    def _require_unfinished(regatta: Regatta) -> None:
        if regatta.status is RegattaStatus.FINISHED:
            raise RegattaFinishedError(f"Regatta '{regatta.name}' is finished; set it back to active to edit it")

    def get_discard_count(self, regatta_id: str) -> int:
        return self.get_regatta(regatta_id).discard_count

    def set_discard_count(self, regatta_id: str, discard_count: int) -> Regatta:
        if isinstance(discard_count, bool) or not isinstance(discard_count, int) or discard_count < 0:
            raise ValueError("Discard count must be a non-negative integer")
        self.get_regatta(regatta_id)
        self._update("regattas", {"discard_count": discard_count}, id=regatta_id)
        return self.get_regatta(regatta_id)

    # ------------------------------------------------------------------
    # Boats

    def add_boat(self, regatta_id: str, payload: Dict[str, Any]) -> Boat:
        self._require_unfinished(self.get_regatta(regatta_id))
        sail_number = _clean(payload.get("sail_number"))
        error = validate_sail_number(sail_number, regatta_id, self.list_boats(regatta_id))
        if error is not None:
            raise BoatValidationFailed(error)
        boat = Boat(
            id=str(uuid.uuid4()),
            regatta_id=regatta_id,
            sail_number=sail_number or "",
            helm=_clean(payload.get("helm")),
            club=_clean(payload.get("club")),
        )
        self._insert("boats", [boat.to_record()])
        return boat

    def update_boat(self, boat_id: str, payload: Dict[str, Any]) -> Boat:
        boat = self.get_boat(boat_id)
        self._require_unfinished(self.get_regatta(boat.regatta_id))
        fields: Dict[str, Any] = {}
        if "sail_number" in payload:
            sail_number = _clean(payload.get("sail_number"))
            error = validate_sail_number(sail_number, boat.regatta_id, self.list_boats(boat.regatta_id), boat.id)
            if error is not None:
                raise BoatValidationFailed(error)
            fields["sail_number"] = sail_number
        for key in ("helm", "club"):
            if key in payload:
                fields[key] = _clean(payload.get(key))
        if not fields:
            return boat
        self._update("boats", fields, id=boat_id)
        return self.get_boat(boat_id)

    def delete_boat(self, boat_id: str) -> None:
        boat = self.get_boat(boat_id)
        self._require_unfinished(self.get_regatta(boat.regatta_id))
        self._delete("boats", id=boat_id)

    def get_boat(self, boat_id: str) -> Boat:
        rows = self._select("boats", id=boat_id)
        if not rows:
            raise ValueError("Boat not found")
        return Boat.from_record(rows[0])

    def list_boats(self, regatta_id: str, query: Optional[str] = None) -> List[Boat]:
        boats = [Boat.from_record(row) for row in self._select("boats", regatta_id=regatta_id)]
        needle = (query or "").strip().lower()
        if not needle:
            return boats
        return [
            boat
            for boat in boats
            if any(needle in (value or "").lower() for value in (boat.sail_number, boat.helm, boat.club))
        ]

    # ------------------------------------------------------------------
    # Races

    def create_race(self, regatta_id: str, payload: Optional[Dict[str, Any]] = None) -> Race:
        self.get_regatta(regatta_id)
        payload = payload or {}
        number = max((race.number for race in self.list_races(regatta_id)), default=0) + 1
        race = Race(
            id=str(uuid.uuid4()),
            regatta_id=regatta_id,
            number=number,
            name=_clean(payload.get("name")) or f"Race {number}",
            created_at=self._utc_now_iso(),
        )
        self._insert("races", [race.to_record()])
        if any(key in payload for key in ("start_time", "finish_time", "wind", "course_length")):
            return self.update_race_metadata(race.id, payload)
        return race

    def get_race(self, race_id: str) -> Race:
        rows = self._select("races", id=race_id)
        if not rows:
            raise ValueError("Race not found")
        return Race.from_record(rows[0])

    def list_races(self, regatta_id: str) -> List[Race]:
        races = [Race.from_record(row) for row in self._select("races", regatta_id=regatta_id)]
        races.sort(key=lambda race: race.number)
        return races

    def save_race(self, race: Race) -> None:
        record = race.to_record()
        record.pop("id")
        self._update("races", record, id=race.id)

    def update_race_metadata(self, race_id: str, payload: Dict[str, Any]) -> Race:
        race = self.get_race(race_id)
        fields: Dict[str, Any] = {}
        if "name" in payload:
            name = _clean(payload.get("name"))
            if not name:
                raise ValueError("Race name cannot be empty")
            fields["name"] = name
        for key in ("start_time", "finish_time"):
            if key in payload:
                fields[key] = self._coerce_time(payload.get(key))
        for key in ("wind", "course_length"):
            if key in payload:
                fields[key] = _clean(payload.get(key))

        start = fields.get("start_time", race.start_time)
        finish = fields.get("finish_time", race.finish_time)
        if start and finish and finish < start:
            raise ValueError("Finish time cannot be before start time")

        if not fields:
            return race
        self._update("races", fields, id=race_id)
        return self.get_race(race_id)

    def delete_race(self, race_id: str) -> None:
        self.get_race(race_id)
        self._delete("results", race_id=race_id)
        self._delete("races", id=race_id)

    # ------------------------------------------------------------------
    # Results

    def list_results(self, race_id: str) -> List[Result]:
        return [Result.from_record(row) for row in self._select("results", race_id=race_id)]

    def list_regatta_results(self, regatta_id: str) -> List[Result]:
        results: List[Result] = []
        for race in self.list_races(regatta_id):
            results.extend(self.list_results(race.id))
        return results

    def replace_race_results(self, race_id: str, results: Iterable[Result]) -> None:
        """Delete every result row of ``race_id`` and insert ``results``."""
        records = [result.to_record() for result in results]
        if any(record["race_id"] != race_id for record in records):
            raise ValueError("All results must belong to the race being replaced")

        if self.uses_supabase:
            self._supabase_delete("results", {"race_id": race_id})
            if records:
                self._supabase_insert("results", records)
            return

        path = self._local_path("results")
        data = self._read_json_file(path, [])
        if not isinstance(data, list):
            data = []
        kept = [row for row in data if isinstance(row, dict) and row.get("race_id") != race_id]
        self._write_json_file(path, kept + records)

    # ------------------------------------------------------------------
    # Collection primitives

    def _select(self, collection: str, **filters: Any) -> List[Dict[str, Any]]:
        if self.uses_supabase:
            return self._supabase_select(collection, filters)
        data = self._read_json_file(self._local_path(collection), [])
        if not isinstance(data, list):
            return []
        return [row for row in data if isinstance(row, dict) and self._matches(row, filters)]

    def _insert(self, collection: str, records: List[Dict[str, Any]]) -> None:
        if self.uses_supabase:
            self._supabase_insert(collection, records)
            return
        path = self._local_path(collection)
        data = self._read_json_file(path, [])
        if not isinstance(data, list):
            data = []
        data.extend(records)
        self._write_json_file(path, data)

    def _update(self, collection: str, fields: Dict[str, Any], **filters: Any) -> None:
        if self.uses_supabase:
            self._supabase_update(collection, fields, filters)
            return
        path = self._local_path(collection)
        data = self._read_json_file(path, [])
        if not isinstance(data, list):
            return
        for row in data:
            if isinstance(row, dict) and self._matches(row, filters):
                row.update(fields)
        self._write_json_file(path, data)

    def _delete(self, collection: str, **filters: Any) -> None:
        if self.uses_supabase:
            self._supabase_delete(collection, filters)
            return
        path = self._local_path(collection)
        data = self._read_json_file(path, [])
        if not isinstance(data, list):
            return
        kept = [row for row in data if not (isinstance(row, dict) and self._matches(row, filters))]
        if len(kept) != len(data):
            self._write_json_file(path, kept)

    @staticmethod
    def _matches(row: Dict[str, Any], filters: Dict[str, Any]) -> bool:
        return all(str(row.get(key)) == str(value) for key, value in filters.items())

    # ---- local JSON helpers ----------------------------------------------------

    def _local_path(self, collection: str) -> Path:
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection '{collection}'")
        return self.data_dir / f"{collection}.json"

    def _read_json_file(self, path: Path, default: Any) -> Any:
        try:
            if not path.exists():
                return default
            with path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Falling back to default for %s due to read error: %s", path, exc)
            return default

    def _write_json_file(self, path: Path, data: Any) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, sort_keys=True)
        except OSError as exc:
            raise RuntimeError(f"Failed to write local data store {path}") from exc

    # ---- internal Supabase helpers -------------------------------------------------

    def _supabase_endpoint(self, table: str) -> str:
        return f"{self.supabase_url.rstrip('/')}/rest/v1/{table}"

    def _supabase_headers(self, prefer: str | None = None, include_content_profile: bool = True) -> Dict[str, str]:
        headers = {
            "apikey": self.supabase_key,
            "Authorization": f"Bearer {self.supabase_key}",
            "Accept": "application/json",
        }
        if include_content_profile and self.supabase_schema and self.supabase_schema != "public":
            headers["Content-Profile"] = self.supabase_schema
        if self.supabase_schema and self.supabase_schema != "public":
            headers["Accept-Profile"] = self.supabase_schema
        if prefer:
            headers["Prefer"] = prefer
        return headers

    @staticmethod
    def _supabase_filters(filters: Dict[str, Any]) -> Dict[str, str]:
        return {key: f"eq.{value}" for key, value in filters.items()}

    def _supabase_request(
        self,
        method: str,
        collection: str,
        params: Dict[str, Any],
        payload: Any = None,
        prefer: str | None = None,
    ) -> Any:
        table = self.supabase_tables[collection]
        endpoint = self._supabase_endpoint(table)
        headers = self._supabase_headers(prefer, include_content_profile=method != "GET")
        if payload is not None:
            headers["Content-Type"] = "application/json"

        try:
            with httpx.Client(timeout=self.supabase_timeout) as client:
                response = client.request(method, endpoint, params=params, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code if exc.response is not None else None
            detail = self._extract_supabase_detail(exc.response)
            if status_code is not None and 400 <= status_code < 500:
                raise ValueError(detail or f"Supabase rejected {method} on {table} ({status_code})") from exc
            raise RuntimeError(f"Supabase {method} on {table} failed: {detail or exc}") from exc
        except httpx.RequestError as exc:
            raise RuntimeError(f"Supabase unavailable for {method} on {table}: {exc}") from exc

        if method != "GET":
            return None
        rows = response.json()
        if isinstance(rows, list):
            return [row for row in rows if isinstance(row, dict)]
        if isinstance(rows, dict):
            return [rows]
        return []

    def _supabase_select(self, collection: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"select": "*", **self._supabase_filters(filters)}
        return self._supabase_request("GET", collection, params) or []

    def _supabase_insert(self, collection: str, records: List[Dict[str, Any]]) -> None:
        self._supabase_request("POST", collection, {}, payload=records, prefer="return=minimal")

    def _supabase_update(self, collection: str, fields: Dict[str, Any], filters: Dict[str, Any]) -> None:
        self._supabase_request("PATCH", collection, self._supabase_filters(filters), payload=fields, prefer="return=minimal")

    def _supabase_delete(self, collection: str, filters: Dict[str, Any]) -> None:
        if not filters:
            raise ValueError("Refusing to delete without filters")
        self._supabase_request("DELETE", collection, self._supabase_filters(filters))

    def _extract_supabase_detail(self, response: httpx.Response | None) -> str | None:
        if response is None:
            return None
        try:
            payload = response.json()
        except ValueError:
            text = (response.text or "").strip()
            return text or None

        if isinstance(payload, dict):
            for key in ("message", "detail", "error", "hint", "code"):
                value = payload.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip()
        return None

    # ---- coercion -----------------------------------------------------------------

    @staticmethod
    def _coerce_status(value: Any) -> RegattaStatus:
        if value is None or value == "":
            return RegattaStatus.PREPARATION
        try:
            return RegattaStatus(str(value).strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unknown regatta status '{value}'") from exc

    @staticmethod
    def _coerce_date(value: Any) -> str | None:
        if value in (None, ""):
            return None
        if isinstance(value, dt.date):
            return value.isoformat()
        if isinstance(value, str):
            try:
                return dt.date.fromisoformat(value.strip()).isoformat()
            except ValueError as exc:
                raise ValueError("Invalid date value") from exc
        raise ValueError("Invalid date value")

    @staticmethod
    def _coerce_time(value: Any) -> str | None:
        if value in (None, ""):
            return None
        if isinstance(value, dt.time):
            return value.strftime("%H:%M")
        if isinstance(value, str):
            try:
                return dt.time.fromisoformat(value.strip()).strftime("%H:%M")
            except ValueError as exc:
                raise ValueError("Invalid time value") from exc
        raise ValueError("Invalid time value")

    @staticmethod
    def _utc_now_iso() -> str:
        return dt.datetime.now(dt.timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")
