from __future__ import annotations

import math

import pytest

from capextracker import services
from capextracker.aggregate import (
    active_resources,
    actual_totals,
    allocation_frame,
    forecast_grid,
    is_over_budget,
    overall_total,
    project_summary,
    resource_summary,
    total_by_project,
    total_by_resource,
)
from capextracker.reconcile import set_actual
from capextracker.store import EntityStore, MemoryStore
from capextracker.types import ProjectDraft, ResourceDraft


@pytest.fixture()
def store() -> EntityStore:
    return EntityStore(MemoryStore())


def _setup(store: EntityStore, *, budget: float | None = None, end_date: str | None = None) -> str:
    services.add_resource(
        store, ResourceDraft(id="R1", full_name="Ada", rate=100, company="Acme", end_date=end_date)
    )
    services.add_project(store, ProjectDraft(pv_number="P1", name="Platform", oracle_account="OA-1", budget=budget))
    f = services.add_forecast(store, "R1", "P1")
    services.set_allocation(store, f.id, "2025-03", 50)
    return f.id


def test_totals_for_single_forecast(store: EntityStore) -> None:
    _setup(store)
    assert total_by_resource(store, "R1", 2025) == pytest.approx(50.00)
    assert total_by_project(store, "P1", 2025) == pytest.approx(50.00)


def test_totals_filter_by_year(store: EntityStore) -> None:
    fid = _setup(store)
    services.set_allocation(store, fid, "2024-12", 100)
    services.set_allocation(store, fid, "2026-01", 100)
    assert total_by_resource(store, "R1", 2025) == pytest.approx(50.0)
    assert total_by_resource(store, "R1", 2024) == pytest.approx(100.0)
    assert total_by_project(store, "P1", 2026) == pytest.approx(100.0)
    assert total_by_project(store, "P1", 2023) == 0.0


def test_over_budget(store: EntityStore) -> None:
    _setup(store, budget=40)
    assert is_over_budget(store, "P1", 2025)
    assert not is_over_budget(store, "P1", 2024)


def test_budget_equal_to_total_is_not_over(store: EntityStore) -> None:
    _setup(store, budget=50)
    assert not is_over_budget(store, "P1", 2025)


def test_no_budget_is_never_over(store: EntityStore) -> None:
    _setup(store)
    assert not is_over_budget(store, "P1", 2025)
    assert not is_over_budget(store, "missing", 2025)


def test_zero_budget_means_no_budget(store: EntityStore) -> None:
    _setup(store, budget=0)
    assert store.projects()[0].budget == 0
    assert total_by_project(store, "P1", 2025) == pytest.approx(50.0)
    assert not is_over_budget(store, "P1", 2025)

    row = project_summary(store, 2025).set_index("Project").loc["P1"]
    assert math.isnan(row["Budget"])
    assert math.isnan(row["Remaining"])
    assert not bool(row["OverBudget"])


def test_project_total_uses_each_forecast_resource_rate(store: EntityStore) -> None:
    _setup(store)
    services.add_resource(store, ResourceDraft(id="R2", full_name="Bob", rate=300, company="Beta"))
    f2 = services.add_forecast(store, "R2", "P1")
    services.set_allocation(store, f2.id, "2025-06", 10)
    assert total_by_project(store, "P1", 2025) == pytest.approx(50.0 + 30.0)
    assert total_by_resource(store, "R2", 2025) == pytest.approx(30.0)


def test_inactive_resource_excluded_from_resource_summary_but_counted_for_project(store: EntityStore) -> None:
    _setup(store, end_date="2024-06-01")

    assert [r.id for r in active_resources(store, 2025)] == []
    assert [r.id for r in active_resources(store, 2024)] == ["R1"]
    assert resource_summary(store, 2025).empty
    assert overall_total(store, 2025) == 0.0
    assert total_by_project(store, "P1", 2025) == pytest.approx(50.0)
    assert project_summary(store, 2025).set_index("Project").loc["P1", "Total"] == pytest.approx(50.0)


def test_end_date_in_selected_year_is_still_active(store: EntityStore) -> None:
    _setup(store, end_date="2025-01-15")
    assert [r.id for r in active_resources(store, 2025)] == ["R1"]
    assert overall_total(store, 2025) == pytest.approx(50.0)


def test_deleted_resource_contributes_zero(store: EntityStore) -> None:
    _setup(store)
    services.delete_resource(store, "R1")
    assert total_by_project(store, "P1", 2025) == 0.0
    assert total_by_resource(store, "R1", 2025) == 0.0
    frame = allocation_frame(store)
    assert len(frame) == 1
    assert math.isnan(frame.iloc[0]["Rate"])


def test_empty_store(store: EntityStore) -> None:
    assert allocation_frame(store).empty
    assert total_by_resource(store, "R1", 2025) == 0.0
    assert total_by_project(store, "P1", 2025) == 0.0
    assert resource_summary(store, 2025).empty
    assert project_summary(store, 2025).empty
    assert forecast_grid(store, 2025).empty
    assert overall_total(store, 2025) == 0.0


def test_project_summary_columns(store: EntityStore) -> None:
    _setup(store, budget=40)
    set_actual(store, "R1", "P1", "2025-04", 45.0)
    set_actual(store, "R1", "P1", "2024-04", 999.0)

    row = project_summary(store, 2025).set_index("Project").loc["P1"]
    assert row["Budget"] == 40
    assert row["Total"] == pytest.approx(50.0)
    assert row["Actual"] == pytest.approx(45.0)
    assert row["Remaining"] == pytest.approx(-10.0)
    assert bool(row["OverBudget"])
    assert actual_totals(store, 2024).to_dict() == {"P1": 999.0}


def test_forecast_grid_covers_every_month(store: EntityStore) -> None:
    _setup(store)
    grid = forecast_grid(store, 2025)
    assert len(grid) == 12
    by_month = grid.set_index("Month")
    assert by_month.loc["2025-03", "Allocation"] == 50
    assert by_month.loc["2025-03", "Cost"] == pytest.approx(50.0)
    assert by_month.loc["2025-04", "Cost"] == 0.0
    assert set(grid["Resource"]) == {"Ada"}
