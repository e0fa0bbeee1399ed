from __future__ import annotations

from .types import Forecast, Resource


def monthly_cost(rate: float, allocation_percent: float) -> float:
    """Cost of committing ``allocation_percent`` of a resource for one month.

    No clamping: allocations are clamped once, when they are stored.
    """
    return rate * allocation_percent / 100


def forecast_month_cost(resource: Resource | None, forecast: Forecast, month: str) -> float:
    if resource is None:
        return 0.0
    return monthly_cost(resource.rate, forecast.allocations.get(month) or 0.0)


def clamp_percent(value: float) -> float:
    return min(100.0, max(0.0, float(value)))
