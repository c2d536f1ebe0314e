from pathlib import Path

import pytest

from regatta_core import FinishOrder, PenaltyCode, RegattaStore, Result
from regatta_core.results import RaceResultStore, rows_for


@pytest.fixture(autouse=True)
def reset_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_SERVICE_ROLE_KEY", raising=False)
    yield


def test_rows_for_assigns_dense_placements() -> None:
    finish_order = FinishOrder(["x", "y", "z", "p"], {"p": PenaltyCode.DSQ})

    rows = rows_for("race-1", finish_order.snapshot())

    assert rows == [
        Result(race_id="race-1", boat_id="x", placement=1),
        Result(race_id="race-1", boat_id="y", placement=2),
        Result(race_id="race-1", boat_id="z", placement=3),
        Result(race_id="race-1", boat_id="p", penalty=PenaltyCode.DSQ),
    ]


def test_placements_stay_dense_after_removal() -> None:
    finish_order = FinishOrder(["a", "b", "c", "d"])
    finish_order.remove("b")

    placements = [row.placement for row in rows_for("r", finish_order.snapshot())]

    assert placements == [1, 2, 3]


def test_write_persists_finish_order_in_order(tmp_path: Path) -> None:
    store = RegattaStore(data_dir=tmp_path)
    results = RaceResultStore(store)

    finish_order = FinishOrder(on_change=results.listener("race-1"))
    for boat_id in ("x", "y", "z"):
        finish_order.insert(boat_id)

    stored = {row.boat_id: row for row in store.list_results("race-1")}
    assert {boat_id: row.placement for boat_id, row in stored.items()} == {"x": 1, "y": 2, "z": 3}
    assert all(row.penalty is None for row in stored.values())


def test_write_is_idempotent_and_replaces_only_its_race(tmp_path: Path) -> None:
    store = RegattaStore(data_dir=tmp_path)
    results = RaceResultStore(store)
    store.replace_race_results("other", [Result(race_id="other", boat_id="q", placement=1)])

    snapshot = FinishOrder(["a", "b", "p"], {"p": PenaltyCode.DNF}).snapshot()
    first = results.write("race-1", snapshot)
    once = sorted(store.list_results("race-1"), key=lambda row: row.boat_id)
    second = results.write("race-1", snapshot)
    twice = sorted(store.list_results("race-1"), key=lambda row: row.boat_id)

    assert first == second
    assert once == twice
    assert len(twice) == 3
    assert store.list_results("other") == [Result(race_id="other", boat_id="q", placement=1)]


def test_write_with_empty_snapshot_clears_race(tmp_path: Path) -> None:
    store = RegattaStore(data_dir=tmp_path)
    results = RaceResultStore(store)
    results.write("race-1", FinishOrder(["a"]).snapshot())

    results.write("race-1", FinishOrder().snapshot())

    assert store.list_results("race-1") == []


def test_write_failure_surfaces_runtime_error(tmp_path: Path) -> None:
    blocker = tmp_path / "blocked"
    blocker.write_text("not a directory", encoding="utf-8")
    store = RegattaStore(data_dir=blocker)
    results = RaceResultStore(store)

    finish_order = FinishOrder(on_change=results.listener("race-1"))
    with pytest.raises(RuntimeError, match="Failed to write local data store"):
        finish_order.insert("a")

    # The in-memory order keeps the edit; the next successful write resyncs.
    assert finish_order.order == ["a"]
