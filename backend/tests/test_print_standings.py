from pathlib import Path

import pytest

import print_standings
from regatta_core import RegattaService, RegattaStore


@pytest.fixture(autouse=True)
def reset_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_SERVICE_ROLE_KEY", raising=False)
    monkeypatch.setenv("REGATTA_DATA_DIR", str(tmp_path))
    yield


def _seed(race_count: int) -> str:
    service = RegattaService(RegattaStore())
    regatta = service.store.create_regatta({"name": "Cup", "date": "2024-05-04"})
    a = service.store.add_boat(regatta.id, {"sail_number": "GER 1", "helm": "Anna"})
    b = service.store.add_boat(regatta.id, {"sail_number": "DEN 2", "helm": "Bent"})
    for number in range(race_count):
        race = service.store.create_race(regatta.id)
        service.insert_boat(race.id, a.id)
        if number == 0:
            service.set_penalty(race.id, b.id, "dsq")
        else:
            service.insert_boat(race.id, b.id)
        service.complete_race(race.id)
    return regatta.id


def test_prints_table(capsys: pytest.CaptureFixture[str]) -> None:
    regatta_id = _seed(2)

    assert print_standings.main([regatta_id]) == 0

    lines = capsys.readouterr().out.splitlines()
    assert lines[0].split() == ["Rank", "Sail", "Helm", "R1", "R2", "Total"]
    assert lines[1].split() == ["1", "GER", "1", "Anna", "1", "1", "2"]
    assert lines[2].split() == ["2", "DEN", "2", "Bent", "2", "DSQ", "2", "4"]
    assert lines[-1] == "Discards: 0"


def test_reports_when_too_few_races(capsys: pytest.CaptureFixture[str]) -> None:
    regatta_id = _seed(1)

    assert print_standings.main([regatta_id]) == 0
    assert "at least two completed races" in capsys.readouterr().out


def test_unknown_regatta_fails(capsys: pytest.CaptureFixture[str]) -> None:
    assert print_standings.main(["missing"]) == 1
    assert "Regatta not found" in capsys.readouterr().err
