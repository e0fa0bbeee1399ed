"""Forecast-to-actual reconciliation.

An actual recorded for month M fulfils the forecast allocation of month M-1
for the same resource/project pair. Cells whose prior month carries no
positive allocation are blocked.
"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, replace
from typing import Optional

import pandas as pd

from .months import months_of_year, previous_month
from .services import project_name, resource_name
from .store import EntityStore
from .types import Actual, Forecast, check_amount, parse_month_key

logger = logging.getLogger(__name__)


def find_forecast(forecasts: list[Forecast], resource_id: str, pv_number: str) -> Forecast | None:
    return next(
        (f for f in forecasts if f.resource_id == resource_id and f.project_pv_number == pv_number),
        None,
    )


def find_actual(actuals: list[Actual], resource_id: str, pv_number: str, month: str) -> Actual | None:
    return next((a for a in actuals if a.key == (resource_id, pv_number, month)), None)


def has_expected_allocation(store: EntityStore, resource_id: str, pv_number: str, forecast_month: str) -> bool:
    forecast = find_forecast(store.forecasts(), resource_id, pv_number)
    if forecast is None:
        return False
    allocation = forecast.allocation(forecast_month)
    return allocation is not None and allocation > 0


def reconciliation_rows(store: EntityStore) -> list[tuple[str, str]]:
    """Distinct (resource, project) pairs from forecasts, first-seen order."""
    return list(dict.fromkeys(f.pair for f in store.forecasts()))


def set_actual(
    store: EntityStore,
    resource_id: str,
    pv_number: str,
    actual_month: str,
    value: Optional[float],
) -> Actual | None:
    """Upsert (finite value >= 0) or delete (value is None) the actual for a cell.

    Returns the stored actual, or ``None`` after a delete / no-op.
    """
    month = parse_month_key(actual_month)
    if value is not None:
        value = check_amount("Capital cost", value)

    actuals = store.actuals()
    existing = find_actual(actuals, resource_id, pv_number, month)

    if value is None:
        if existing is not None:
            store.set_actuals([a for a in actuals if a.id != existing.id])
            logger.info("Deleted actual %s/%s/%s", resource_id, pv_number, month)
        return None

    if existing is not None:
        updated = replace(existing, capital_cost=value)
        store.set_actuals([updated if a.id == existing.id else a for a in actuals])
        logger.info("Updated actual %s/%s/%s -> %s", resource_id, pv_number, month, value)
        return updated

    created = Actual(
        id=str(uuid.uuid4()),
        resource_id=resource_id,
        project_pv_number=pv_number,
        month=month,
        capital_cost=value,
    )
    store.set_actuals([*actuals, created])
    logger.info("Created actual %s/%s/%s -> %s", resource_id, pv_number, month, value)
    return created


def set_actual_text(
    store: EntityStore,
    resource_id: str,
    pv_number: str,
    actual_month: str,
    text: Optional[str],
) -> Actual | None:
    """Form-input variant: blank deletes, unparseable text is ignored."""
    if text is None or not str(text).strip():
        return set_actual(store, resource_id, pv_number, actual_month, None)
    try:
        value = float(str(text).strip())
        if not math.isfinite(value):
            raise ValueError(text)
    except ValueError:
        logger.debug("Ignoring non-numeric actual input %r", text)
        return find_actual(store.actuals(), resource_id, pv_number, parse_month_key(actual_month))
    return set_actual(store, resource_id, pv_number, actual_month, value)


@dataclass(frozen=True)
class ActualCell:
    actual_month: str
    forecast_month: str
    expected: bool
    value: Optional[float]


def actual_cells(store: EntityStore, resource_id: str, pv_number: str, year: int) -> list[ActualCell]:
    forecast = find_forecast(store.forecasts(), resource_id, pv_number)
    actuals = store.actuals()
    cells: list[ActualCell] = []
    for month in months_of_year(year):
        fmonth = previous_month(month)
        allocation = forecast.allocation(fmonth) if forecast else None
        expected = allocation is not None and allocation > 0
        actual = find_actual(actuals, resource_id, pv_number, month) if expected else None
        cells.append(
            ActualCell(
                actual_month=month,
                forecast_month=fmonth,
                expected=expected,
                value=actual.capital_cost if actual else None,
            )
        )
    return cells


def actuals_grid(store: EntityStore, year: int) -> pd.DataFrame:
    """Long-form grid of actual-entry cells for every reconciliation row.

    Columns: ResourceId, Resource, Project, ProjectName, Month, ForecastMonth,
    Expected, CapitalCost. Blocked cells carry ``CapitalCost`` = NaN even when
    an orphan actual exists.
    """
    resources = store.resources()
    projects = store.projects()
    records = []
    for resource_id, pv_number in reconciliation_rows(store):
        for cell in actual_cells(store, resource_id, pv_number, year):
            records.append(
                {
                    "ResourceId": resource_id,
                    "Resource": resource_name(resources, resource_id),
                    "Project": pv_number,
                    "ProjectName": project_name(projects, pv_number),
                    "Month": cell.actual_month,
                    "ForecastMonth": cell.forecast_month,
                    "Expected": cell.expected,
                    "CapitalCost": cell.value,
                }
            )
    columns = ["ResourceId", "Resource", "Project", "ProjectName", "Month", "ForecastMonth", "Expected", "CapitalCost"]
    df = pd.DataFrame(records, columns=columns)
    df["CapitalCost"] = pd.to_numeric(df["CapitalCost"], errors="coerce")
    return df
