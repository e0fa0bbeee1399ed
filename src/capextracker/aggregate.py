"""Year-filtered roll-ups of forecast cost per resource and per project."""

from __future__ import annotations

from typing import Any

import numpy as np
import pandas as pd

from .calc import monthly_cost
from .months import key_in_year, months_of_year
from .services import find_project, find_resource, is_active, project_name, resource_name
from .store import EntityStore
from .types import Resource

_ALLOCATION_COLUMNS = ["ForecastId", "ResourceId", "Project", "Month", "Year", "Allocation", "Rate", "Cost"]


def allocation_frame(store: EntityStore) -> pd.DataFrame:
    """One row per stored (forecast, month) allocation.

    ``Rate`` is NaN and ``Cost`` is 0 when the forecast's resource no longer
    exists.
    """
    resources = {r.id: r for r in store.resources()}
    records: list[dict[str, Any]] = []
    for forecast in store.forecasts():
        resource = resources.get(forecast.resource_id)
        for month, allocation in forecast.allocations.items():
            records.append(
                {
                    "ForecastId": forecast.id,
                    "ResourceId": forecast.resource_id,
                    "Project": forecast.project_pv_number,
                    "Month": month,
                    "Year": int(month[:4]),
                    "Allocation": float(allocation),
                    "Rate": resource.rate if resource else np.nan,
                    "Cost": monthly_cost(resource.rate, allocation) if resource else 0.0,
                }
            )
    return pd.DataFrame(records, columns=_ALLOCATION_COLUMNS)


def _in_year(frame: pd.DataFrame, year: int) -> pd.DataFrame:
    if frame.empty:
        return frame
    return frame[frame["Month"].map(lambda k: key_in_year(k, year))]


def total_by_resource(store: EntityStore, resource_id: str, year: int) -> float:
    frame = _in_year(allocation_frame(store), year)
    return float(frame.loc[frame["ResourceId"] == resource_id, "Cost"].sum())


def total_by_project(store: EntityStore, pv_number: str, year: int) -> float:
    frame = _in_year(allocation_frame(store), year)
    return float(frame.loc[frame["Project"] == pv_number, "Cost"].sum())


def is_over_budget(store: EntityStore, pv_number: str, year: int) -> bool:
    project = find_project(store.projects(), pv_number)
    if project is None or not project.has_budget:
        return False
    return total_by_project(store, pv_number, year) > project.budget


def active_resources(store: EntityStore, year: int) -> list[Resource]:
    return [r for r in store.resources() if is_active(r, year)]


def _cost_by(frame: pd.DataFrame, column: str) -> pd.Series:
    if frame.empty:
        return pd.Series(dtype=float)
    return frame.groupby(column)["Cost"].sum()


def resource_summary(store: EntityStore, year: int) -> pd.DataFrame:
    """Forecast cost per active resource for ``year``, in store order."""
    totals = _cost_by(_in_year(allocation_frame(store), year), "ResourceId")
    rows = [
        {
            "ResourceId": r.id,
            "Name": r.full_name,
            "Company": r.company,
            "Location": r.location.value,
            "Rate": r.rate,
            "Total": float(totals.get(r.id, 0.0)),
        }
        for r in active_resources(store, year)
    ]
    return pd.DataFrame(rows, columns=["ResourceId", "Name", "Company", "Location", "Rate", "Total"])


def actual_totals(store: EntityStore, year: int) -> pd.Series:
    """Recorded capital cost per project for actual months within ``year``."""
    actuals = [a for a in store.actuals() if key_in_year(a.month, year)]
    if not actuals:
        return pd.Series(dtype=float)
    df = pd.DataFrame([{"Project": a.project_pv_number, "CapitalCost": a.capital_cost} for a in actuals])
    return df.groupby("Project")["CapitalCost"].sum()


def project_summary(store: EntityStore, year: int) -> pd.DataFrame:
    """Forecast cost, recorded actuals and budget status per project."""
    totals = _cost_by(_in_year(allocation_frame(store), year), "Project")
    actuals = actual_totals(store, year)
    rows = []
    for p in store.projects():
        total = float(totals.get(p.pv_number, 0.0))
        rows.append(
            {
                "Project": p.pv_number,
                "Name": p.name,
                "OracleAccount": p.oracle_account,
                "Budget": p.budget if p.has_budget else np.nan,
                "Total": total,
                "Actual": float(actuals.get(p.pv_number, 0.0)),
                "Remaining": (p.budget - total) if p.has_budget else np.nan,
                "OverBudget": p.has_budget and total > p.budget,
            }
        )
    columns = ["Project", "Name", "OracleAccount", "Budget", "Total", "Actual", "Remaining", "OverBudget"]
    return pd.DataFrame(rows, columns=columns)


def overall_total(store: EntityStore, year: int) -> float:
    return float(resource_summary(store, year)["Total"].sum())


def forecast_grid(store: EntityStore, year: int) -> pd.DataFrame:
    """Allocation and cost for every forecast and every month of ``year``.

    Months without a stored allocation show 0.
    """
    resources = store.resources()
    projects = store.projects()
    months = months_of_year(year)
    rows = []
    for forecast in store.forecasts():
        resource = find_resource(resources, forecast.resource_id)
        for month in months:
            allocation = forecast.allocations.get(month) or 0.0
            rows.append(
                {
                    "ForecastId": forecast.id,
                    "ResourceId": forecast.resource_id,
                    "Resource": resource_name(resources, forecast.resource_id),
                    "Project": forecast.project_pv_number,
                    "ProjectName": project_name(projects, forecast.project_pv_number),
                    "Month": month,
                    "Allocation": float(allocation),
                    "Cost": monthly_cost(resource.rate, allocation) if resource else 0.0,
                }
            )
    columns = ["ForecastId", "ResourceId", "Resource", "Project", "ProjectName", "Month", "Allocation", "Cost"]
    return pd.DataFrame(rows, columns=columns)
