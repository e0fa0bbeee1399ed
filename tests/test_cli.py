"""End-to-end tests for the ``capex`` command line using Typer's CliRunner."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from capextracker.cli import app
from capextracker.store import open_store

runner = CliRunner()


@pytest.fixture()
def store_path(tmp_path: Path) -> Path:
    return tmp_path / "store.json"


def _run(store_path: Path, *args: str):
    return runner.invoke(app, ["--store", str(store_path), *args])


def _seed(store_path: Path) -> str:
    assert _run(store_path, "year", "2025").exit_code == 0
    r = _run(store_path, "resource", "add", "--id", "R1", "--name", "Ada", "--rate", "100", "--company", "Acme")
    assert r.exit_code == 0, r.output
    r = _run(store_path, "project", "add", "--pv", "P1", "--name", "Platform", "--oracle", "OA-1", "--budget", "40")
    assert r.exit_code == 0, r.output
    r = _run(store_path, "forecast", "add", "R1", "P1")
    assert r.exit_code == 0, r.output
    forecast_id = open_store(store_path).forecasts()[0].id
    r = _run(store_path, "forecast", "set", forecast_id, "2025-03", "50")
    assert r.exit_code == 0, r.output
    return forecast_id


def test_init_and_year(store_path: Path) -> None:
    result = _run(store_path, "init")
    assert result.exit_code == 0
    doc = json.loads(store_path.read_text(encoding="utf-8"))
    assert doc["resources"] == [] and doc["actuals"] == []

    result = _run(store_path, "year", "2026")
    assert result.exit_code == 0
    assert "2026" in result.output
    assert open_store(store_path).selected_year() == 2026


def test_full_workflow(store_path: Path) -> None:
    forecast_id = _seed(store_path)
    store = open_store(store_path)
    assert store.forecasts()[0].allocations == {"2025-03": 50.0}

    result = _run(store_path, "actual", "set", "R1", "P1", "2025-04", "45")
    assert result.exit_code == 0, result.output
    assert [a.capital_cost for a in open_store(store_path).actuals()] == [45.0]

    result = _run(store_path, "summary")
    assert result.exit_code == 0, result.output
    assert "over budget" in result.output
    assert "$50.00" in result.output

    result = _run(store_path, "forecast", "list", "--cost")
    assert result.exit_code == 0, result.output

    result = _run(store_path, "actual", "grid")
    assert result.exit_code == 0, result.output

    result = _run(store_path, "actual", "set", "R1", "P1", "2025-04", "")
    assert result.exit_code == 0, result.output
    assert open_store(store_path).actuals() == []

    assert _run(store_path, "forecast", "delete", forecast_id).exit_code == 0
    assert open_store(store_path).forecasts() == []


def test_actual_rejected_for_blocked_month(store_path: Path) -> None:
    _seed(store_path)
    result = _run(store_path, "actual", "set", "R1", "P1", "2025-05", "10")
    assert result.exit_code == 1
    assert open_store(store_path).actuals() == []


def test_negative_actual_rejected(store_path: Path) -> None:
    _seed(store_path)
    result = _run(store_path, "actual", "set", "--", "R1", "P1", "2025-04", "-10")
    assert result.exit_code == 1
    assert "non-negative" in result.output


def test_duplicate_resource_reports_error(store_path: Path) -> None:
    _seed(store_path)
    result = _run(store_path, "resource", "add", "--id", "R1", "--name", "Bob", "--rate", "5", "--company", "X")
    assert result.exit_code == 1
    assert "already exists" in result.output
    assert len(open_store(store_path).resources()) == 1


def test_inactive_resource_cannot_get_new_forecast(store_path: Path) -> None:
    _seed(store_path)
    r = _run(
        store_path, "resource", "add", "--id", "R2", "--name", "Old", "--rate", "5", "--company", "X", "--end", "2024-06-01"
    )
    assert r.exit_code == 0, r.output
    result = _run(store_path, "forecast", "add", "R2", "P1")
    assert result.exit_code == 1
    assert len(open_store(store_path).forecasts()) == 1

    listing = _run(store_path, "resource", "list")
    assert "Old" not in listing.output
    listing = _run(store_path, "resource", "list", "--all")
    assert "Old" in listing.output


def test_edit_commands(store_path: Path) -> None:
    _seed(store_path)
    assert _run(store_path, "resource", "edit", "R1", "--rate", "200").exit_code == 0
    assert open_store(store_path).resources()[0].rate == 200.0
    assert _run(store_path, "project", "edit", "P1", "--clear-budget").exit_code == 0
    assert open_store(store_path).projects()[0].budget is None
    result = _run(store_path, "project", "edit", "P9", "--name", "x")
    assert result.exit_code == 1


def test_exports(store_path: Path, tmp_path: Path) -> None:
    _seed(store_path)
    out = tmp_path / "out"

    assert _run(store_path, "export", "json", str(out / "all.json")).exit_code == 0
    data = json.loads((out / "all.json").read_text(encoding="utf-8"))
    assert set(data) == {"forecasts", "resources", "projects", "actuals"}

    assert _run(store_path, "export", "json", str(out / "res.json"), "--collection", "resources").exit_code == 0
    assert json.loads((out / "res.json").read_text(encoding="utf-8"))[0]["id"] == "R1"

    assert _run(store_path, "export", "xlsx", str(out / "summary.xlsx")).exit_code == 0
    assert (out / "summary.xlsx").exists()
    assert _run(store_path, "export", "chart", str(out / "budget.png")).exit_code == 0
    assert (out / "budget.png").exists()


def test_non_finite_amounts_rejected(store_path: Path) -> None:
    _seed(store_path)
    result = _run(store_path, "resource", "add", "--id", "R2", "--name", "Nan", "--rate", "nan", "--company", "X")
    assert result.exit_code == 1
    result = _run(store_path, "project", "add", "--pv", "P2", "--name", "Inf", "--oracle", "OA-2", "--budget", "inf")
    assert result.exit_code == 1

    text = store_path.read_text(encoding="utf-8")
    assert "NaN" not in text and "Infinity" not in text
    assert [r.id for r in open_store(store_path).resources()] == ["R1"]


def test_zero_budget_shown_as_no_budget(store_path: Path) -> None:
    _seed(store_path)
    assert _run(store_path, "project", "edit", "P1", "--budget", "0").exit_code == 0
    assert open_store(store_path).projects()[0].budget == 0

    result = _run(store_path, "summary")
    assert result.exit_code == 0, result.output
    assert "over budget" not in result.output


def test_new_actual_refused_for_inactive_resource(store_path: Path) -> None:
    _seed(store_path)
    assert _run(store_path, "actual", "set", "R1", "P1", "2025-04", "45").exit_code == 0
    assert _run(store_path, "resource", "edit", "R1", "--end", "2024-06-01").exit_code == 0

    result = _run(store_path, "actual", "set", "R1", "P1", "2025-04", "50")
    assert result.exit_code == 0, result.output
    assert [a.capital_cost for a in open_store(store_path).actuals()] == [50.0]

    store = open_store(store_path)
    forecast_id = store.forecasts()[0].id
    assert _run(store_path, "forecast", "set", forecast_id, "2025-06", "20").exit_code == 0
    result = _run(store_path, "actual", "set", "R1", "P1", "2025-07", "10")
    assert result.exit_code == 1
    assert "not active" in result.output
    assert len(open_store(store_path).actuals()) == 1
