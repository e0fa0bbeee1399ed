"""Validated create/edit/delete for resources, projects and forecasts.

Every write reads the full collection, computes the new one, and writes it
back. Validation happens before the write, so a rejected call leaves the
store untouched.
"""

from __future__ import annotations

import logging
import math
import uuid
from typing import Optional

from .calc import clamp_percent
from .exceptions import DuplicateKeyError, NotFoundError, ValidationError
from .store import EntityStore
from .types import Forecast, Project, ProjectDraft, Resource, ResourceDraft, parse_month_key

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

def find_resource(resources: list[Resource], resource_id: str) -> Resource | None:
    return next((r for r in resources if r.id == resource_id), None)


def find_project(projects: list[Project], pv_number: str) -> Project | None:
    return next((p for p in projects if p.pv_number == pv_number), None)


def resource_name(resources: list[Resource], resource_id: str) -> str:
    r = find_resource(resources, resource_id)
    return r.full_name if r else UNKNOWN


def project_name(projects: list[Project], pv_number: str) -> str:
    p = find_project(projects, pv_number)
    return p.name if p else UNKNOWN


def is_active(resource: Resource, year: int) -> bool:
    """Active for ``year`` when it has no end date or ends in/after ``year``."""
    end_year = resource.end_year
    return end_year is None or end_year >= year


def get_resource(store: EntityStore, resource_id: str) -> Resource:
    r = find_resource(store.resources(), resource_id)
    if r is None:
        raise NotFoundError(f"Resource {resource_id!r} not found")
    return r


def get_project(store: EntityStore, pv_number: str) -> Project:
    p = find_project(store.projects(), pv_number)
    if p is None:
        raise NotFoundError(f"Project {pv_number!r} not found")
    return p


def list_resources(store: EntityStore, year: Optional[int] = None) -> list[Resource]:
    resources = store.resources()
    if year is None:
        return resources
    return [r for r in resources if is_active(r, year)]


def list_projects(store: EntityStore) -> list[Project]:
    return store.projects()


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------

def add_resource(store: EntityStore, draft: ResourceDraft) -> Resource:
    resource = draft.to_entity()
    resources = store.resources()
    if find_resource(resources, resource.id) is not None:
        raise DuplicateKeyError(f"Resource ID {resource.id!r} already exists. Please use a unique ID.")
    store.set_resources([*resources, resource])
    logger.info("Added resource %s", resource.id)
    return resource


def update_resource(store: EntityStore, resource_id: str, draft: ResourceDraft) -> Resource:
    resources = store.resources()
    if find_resource(resources, resource_id) is None:
        raise NotFoundError(f"Resource {resource_id!r} not found")
    if draft.id not in (None, "", resource_id):
        raise ValidationError(f"Resource ID is immutable ({resource_id!r} -> {draft.id!r})")
    resource = draft.model_copy(update={"id": resource_id}).to_entity()
    store.set_resources([resource if r.id == resource_id else r for r in resources])
    logger.info("Updated resource %s", resource_id)
    return resource


def delete_resource(store: EntityStore, resource_id: str) -> bool:
    resources = store.resources()
    kept = [r for r in resources if r.id != resource_id]
    if len(kept) == len(resources):
        return False
    store.set_resources(kept)
    logger.info("Deleted resource %s", resource_id)
    return True


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

def add_project(store: EntityStore, draft: ProjectDraft) -> Project:
    project = draft.to_entity()
    projects = store.projects()
    if find_project(projects, project.pv_number) is not None:
        raise DuplicateKeyError(f"A project with PV Number {project.pv_number!r} already exists")
    store.set_projects([*projects, project])
    logger.info("Added project %s", project.pv_number)
    return project


def update_project(store: EntityStore, pv_number: str, draft: ProjectDraft) -> Project:
    projects = store.projects()
    if find_project(projects, pv_number) is None:
        raise NotFoundError(f"Project {pv_number!r} not found")
    if draft.pv_number not in (None, "", pv_number):
        raise ValidationError(f"PV Number is immutable ({pv_number!r} -> {draft.pv_number!r})")
    project = draft.model_copy(update={"pv_number": pv_number}).to_entity()
    store.set_projects([project if p.pv_number == pv_number else p for p in projects])
    logger.info("Updated project %s", pv_number)
    return project


def delete_project(store: EntityStore, pv_number: str) -> bool:
    projects = store.projects()
    kept = [p for p in projects if p.pv_number != pv_number]
    if len(kept) == len(projects):
        return False
    store.set_projects(kept)
    logger.info("Deleted project %s", pv_number)
    return True


# ---------------------------------------------------------------------------
# Forecasts
# ---------------------------------------------------------------------------

def add_forecast(store: EntityStore, resource_id: str, pv_number: str) -> Forecast:
    if not resource_id or not pv_number:
        raise ValidationError("Please select a resource and project")
    forecasts = store.forecasts()
    if any(f.pair == (resource_id, pv_number) for f in forecasts):
        raise DuplicateKeyError("This resource is already assigned to this project")
    forecast = Forecast(id=str(uuid.uuid4()), resource_id=resource_id, project_pv_number=pv_number)
    store.set_forecasts([*forecasts, forecast])
    logger.info("Added forecast %s (%s x %s)", forecast.id, resource_id, pv_number)
    return forecast


def get_forecast(store: EntityStore, forecast_id: str) -> Forecast:
    f = next((f for f in store.forecasts() if f.id == forecast_id), None)
    if f is None:
        raise NotFoundError(f"Forecast {forecast_id!r} not found")
    return f


def delete_forecast(store: EntityStore, forecast_id: str) -> bool:
    forecasts = store.forecasts()
    kept = [f for f in forecasts if f.id != forecast_id]
    if len(kept) == len(forecasts):
        return False
    store.set_forecasts(kept)
    logger.info("Deleted forecast %s", forecast_id)
    return True


def set_allocation(store: EntityStore, forecast_id: str, month: str, percent: float) -> Forecast:
    """Store ``percent`` (clamped to [0, 100]) for one month of a forecast."""
    month = parse_month_key(month)
    forecasts = store.forecasts()
    target = next((f for f in forecasts if f.id == forecast_id), None)
    if target is None:
        raise NotFoundError(f"Forecast {forecast_id!r} not found")
    updated = target.with_allocation(month, clamp_percent(percent))
    store.set_forecasts([updated if f.id == forecast_id else f for f in forecasts])
    logger.info("Forecast %s %s -> %s%%", forecast_id, month, updated.allocations[month])
    return updated


def set_allocation_text(store: EntityStore, forecast_id: str, month: str, text: Optional[str]) -> Forecast:
    """Form-input variant: blank stores 0, unparseable text is ignored."""
    if text is None or not str(text).strip():
        return set_allocation(store, forecast_id, month, 0.0)
    try:
        percent = float(str(text).strip())
    except ValueError:
        logger.debug("Ignoring non-numeric allocation input %r", text)
        return get_forecast(store, forecast_id)
    if not math.isfinite(percent):
        logger.debug("Ignoring non-finite allocation input %r", text)
        return get_forecast(store, forecast_id)
    return set_allocation(store, forecast_id, month, percent)


def forecast_choices(store: EntityStore, year: int) -> tuple[list[Resource], list[Project]]:
    """Resources and projects offerable when creating a forecast for ``year``."""
    return list_resources(store, year), store.projects()
