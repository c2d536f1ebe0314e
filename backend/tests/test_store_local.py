import json
from pathlib import Path

import pytest

from regatta_core import PenaltyCode, RegattaFinishedError, RegattaStatus, RegattaStore, Result
from regatta_core.validation import BoatValidationFailed, ValidationErrorKind


@pytest.fixture(autouse=True)
def reset_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_SERVICE_ROLE_KEY", raising=False)
    monkeypatch.delenv("SUPABASE_SERVICE_KEY", raising=False)
    monkeypatch.delenv("SUPABASE_ANON_KEY", raising=False)
    monkeypatch.delenv("REGATTA_DATA_DIR", raising=False)
    yield


@pytest.fixture
def store(tmp_path: Path) -> RegattaStore:
    return RegattaStore(data_dir=tmp_path)


def test_records_persist_across_instances(tmp_path: Path) -> None:
    first = RegattaStore(data_dir=tmp_path)
    regatta = first.create_regatta({"name": "Spring Cup", "date": "2024-04-20", "boat_class": "Laser"})
    boat = first.add_boat(regatta.id, {"sail_number": "GER 1", "helm": "Anna"})
    race = first.create_race(regatta.id)
    first.replace_race_results(race.id, [Result(race_id=race.id, boat_id=boat.id, placement=1)])

    second = RegattaStore(data_dir=tmp_path)

    loaded = second.get_regatta(regatta.id)
    assert loaded.name == "Spring Cup"
    assert loaded.date == "2024-04-20"
    assert loaded.boat_class == "Laser"
    assert loaded.status is RegattaStatus.PREPARATION
    assert [b.sail_number for b in second.list_boats(regatta.id)] == ["GER 1"]
    assert second.list_results(race.id) == [Result(race_id=race.id, boat_id=boat.id, placement=1)]
    assert sorted(path.name for path in tmp_path.iterdir()) == [
        "boats.json",
        "races.json",
        "regattas.json",
        "results.json",
    ]


def test_data_dir_comes_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("REGATTA_DATA_DIR", str(tmp_path / "env-data"))

    store = RegattaStore()
    store.create_regatta({"name": "Env", "date": "2024-05-04"})

    assert (tmp_path / "env-data" / "regattas.json").exists()
    assert store.uses_supabase is False


def test_create_regatta_requires_name(store: RegattaStore) -> None:
    with pytest.raises(ValueError, match="name is required"):
        store.create_regatta({"name": "   ", "date": "2024-05-04"})


def test_regatta_date_is_required_and_cannot_be_cleared(store: RegattaStore) -> None:
    with pytest.raises(ValueError, match="date is required"):
        store.create_regatta({"name": "Cup"})
    with pytest.raises(ValueError, match="date is required"):
        store.create_regatta({"name": "Cup", "date": ""})

    regatta = store.create_regatta({"name": "Cup", "date": "2024-05-04"})
    with pytest.raises(ValueError, match="date cannot be empty"):
        store.update_regatta(regatta.id, {"date": None})
    assert store.get_regatta(regatta.id).date == "2024-05-04"


def test_create_regatta_rejects_unknown_status_and_bad_date(store: RegattaStore) -> None:
    with pytest.raises(ValueError, match="Unknown regatta status"):
        store.create_regatta({"name": "X", "date": "2024-05-04", "status": "postponed"})
    with pytest.raises(ValueError, match="Invalid date"):
        store.create_regatta({"name": "X", "date": "20/04/2024"})


def test_update_regatta_changes_only_given_fields(store: RegattaStore) -> None:
    regatta = store.create_regatta({"name": "Cup", "date": "2024-05-04", "organizer": "YC"})

    updated = store.update_regatta(regatta.id, {"status": "ACTIVE"})

    assert updated.status is RegattaStatus.ACTIVE
    assert updated.organizer == "YC"
    assert updated.name == "Cup"


def test_finished_regatta_only_accepts_status_changes(store: RegattaStore) -> None:
    regatta = store.create_regatta({"name": "Cup", "date": "2024-05-04"})
    boat = store.add_boat(regatta.id, {"sail_number": "GER 1"})
    store.update_regatta(regatta.id, {"status": "finished"})

    with pytest.raises(RegattaFinishedError, match="is finished"):
        store.update_regatta(regatta.id, {"name": "Renamed"})
    with pytest.raises(RegattaFinishedError):
        store.update_regatta(regatta.id, {"status": "active", "organizer": "YC"})
    with pytest.raises(RegattaFinishedError):
        store.add_boat(regatta.id, {"sail_number": "GER 2"})
    with pytest.raises(RegattaFinishedError):
        store.update_boat(boat.id, {"helm": "Anna"})
    with pytest.raises(RegattaFinishedError):
        store.delete_boat(boat.id)
    assert [b.id for b in store.list_boats(regatta.id)] == [boat.id]

    reopened = store.update_regatta(regatta.id, {"status": "active"})
    assert reopened.status is RegattaStatus.ACTIVE
    assert store.update_boat(boat.id, {"helm": "Anna"}).helm == "Anna"


def test_missing_records_raise_not_found(store: RegattaStore) -> None:
    with pytest.raises(ValueError, match="Regatta not found"):
        store.get_regatta("nope")
    with pytest.raises(ValueError, match="Boat not found"):
        store.get_boat("nope")
    with pytest.raises(ValueError, match="Race not found"):
        store.get_race("nope")


def test_discard_count_must_be_non_negative_int(store: RegattaStore) -> None:
    regatta = store.create_regatta({"name": "Cup", "date": "2024-05-04"})

    assert store.set_discard_count(regatta.id, 2).discard_count == 2
    assert store.get_discard_count(regatta.id) == 2
    for bad in (-1, True, 1.5, "1"):
        with pytest.raises(ValueError):
            store.set_discard_count(regatta.id, bad)  # type: ignore[arg-type]
    assert store.get_discard_count(regatta.id) == 2


def test_add_boat_validates_sail_number(store: RegattaStore) -> None:
    regatta = store.create_regatta({"name": "Cup", "date": "2024-05-04"})
    existing = store.add_boat(regatta.id, {"sail_number": "NED 7"})

    with pytest.raises(BoatValidationFailed) as excinfo:
        store.add_boat(regatta.id, {"sail_number": "NED 7"})
    assert excinfo.value.error.kind is ValidationErrorKind.DUPLICATE_SAIL_NUMBER
    assert excinfo.value.error.data["existingBoatId"] == existing.id

    with pytest.raises(BoatValidationFailed) as excinfo:
        store.add_boat(regatta.id, {"helm": "Bo"})
    assert excinfo.value.error.kind is ValidationErrorKind.REQUIRED_SAIL_NUMBER

    other = store.create_regatta({"name": "Other", "date": "2024-05-04"})
    assert store.add_boat(other.id, {"sail_number": "NED 7"}).regatta_id == other.id


def test_update_boat_allows_keeping_own_sail_number(store: RegattaStore) -> None:
    regatta = store.create_regatta({"name": "Cup", "date": "2024-05-04"})
    boat = store.add_boat(regatta.id, {"sail_number": "NED 7"})
    store.add_boat(regatta.id, {"sail_number": "NED 8"})

    updated = store.update_boat(boat.id, {"sail_number": "NED 7", "club": "WV"})
    assert updated.club == "WV"

    with pytest.raises(BoatValidationFailed):
        store.update_boat(boat.id, {"sail_number": "NED 8"})


def test_list_boats_searches_sail_number_helm_and_club(store: RegattaStore) -> None:
    regatta = store.create_regatta({"name": "Cup", "date": "2024-05-04"})
    store.add_boat(regatta.id, {"sail_number": "GER 1", "helm": "Anna", "club": "KYC"})
    store.add_boat(regatta.id, {"sail_number": "DEN 2", "helm": "Bent", "club": "SSC"})

    assert [b.sail_number for b in store.list_boats(regatta.id, query="ger")] == ["GER 1"]
    assert [b.sail_number for b in store.list_boats(regatta.id, query="bent")] == ["DEN 2"]
    assert [b.sail_number for b in store.list_boats(regatta.id, query="kyc")] == ["GER 1"]
    assert len(store.list_boats(regatta.id, query="  ")) == 2


def test_race_numbers_are_monotonic_after_deletion(store: RegattaStore) -> None:
    regatta = store.create_regatta({"name": "Cup", "date": "2024-05-04"})
    first = store.create_race(regatta.id)
    second = store.create_race(regatta.id)
    store.delete_race(first.id)
    third = store.create_race(regatta.id)

    assert (first.number, second.number, third.number) == (1, 2, 3)
    assert third.name == "Race 3"
    assert [race.number for race in store.list_races(regatta.id)] == [2, 3]


def test_race_metadata_times_are_validated(store: RegattaStore) -> None:
    regatta = store.create_regatta({"name": "Cup", "date": "2024-05-04"})
    race = store.create_race(regatta.id, {"start_time": "13:05", "wind": "SW 3"})

    assert race.start_time == "13:05"
    assert race.wind == "SW 3"

    updated = store.update_race_metadata(race.id, {"finish_time": "14:10", "course_length": "4 nm"})
    assert updated.finish_time == "14:10"

    with pytest.raises(ValueError, match="before start"):
        store.update_race_metadata(race.id, {"finish_time": "12:00"})
    with pytest.raises(ValueError, match="Invalid time"):
        store.update_race_metadata(race.id, {"start_time": "noon"})


def test_save_race_persists_flags(store: RegattaStore) -> None:
    regatta = store.create_regatta({"name": "Cup", "date": "2024-05-04"})
    race = store.create_race(regatta.id)
    race.completed = True
    race.incomplete = True

    store.save_race(race)

    loaded = store.get_race(race.id)
    assert loaded.completed is True
    assert loaded.incomplete is True


def test_delete_regatta_cascades(store: RegattaStore, tmp_path: Path) -> None:
    keep = store.create_regatta({"name": "Keep", "date": "2024-05-04"})
    keep_race = store.create_race(keep.id)
    store.replace_race_results(keep_race.id, [Result(race_id=keep_race.id, boat_id="k", placement=1)])

    regatta = store.create_regatta({"name": "Drop", "date": "2024-05-04"})
    boat = store.add_boat(regatta.id, {"sail_number": "X 1"})
    race = store.create_race(regatta.id)
    store.replace_race_results(race.id, [Result(race_id=race.id, boat_id=boat.id, penalty=PenaltyCode.DNF)])

    store.delete_regatta(regatta.id)

    assert [r.id for r in store.list_regattas()] == [keep.id]
    assert store.list_boats(regatta.id) == []
    assert store.list_races(regatta.id) == []
    assert store.list_results(race.id) == []
    assert len(store.list_results(keep_race.id)) == 1


def test_replace_race_results_rejects_foreign_rows(store: RegattaStore) -> None:
    with pytest.raises(ValueError):
        store.replace_race_results("r1", [Result(race_id="r2", boat_id="a", placement=1)])


def test_corrupt_file_falls_back_to_empty(tmp_path: Path) -> None:
    (tmp_path / "regattas.json").write_text("{not json", encoding="utf-8")
    store = RegattaStore(data_dir=tmp_path)

    assert store.list_regattas() == []

    store.create_regatta({"name": "Fresh", "date": "2024-05-04"})
    data = json.loads((tmp_path / "regattas.json").read_text(encoding="utf-8"))
    assert [row["name"] for row in data] == ["Fresh"]
