from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Iterator, Optional

import pandas as pd
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import aggregate, reconcile, services
from .config import AppConfig, default_app_config
from .exceptions import CapexError, ValidationError
from .export import collection_snapshot, save_budget_chart, snapshot, write_excel_summary, write_json_export
from .months import months_of_year, previous_month
from .store import COLLECTION_KEYS, EntityStore, open_store
from .types import Location, ProjectDraft, ResourceDraft, parse_month_key

app = typer.Typer(add_completion=False, help="Capital-expenditure tracker: resources, projects, forecasts and actuals.")
resource_app = typer.Typer(help="Manage resources.")
project_app = typer.Typer(help="Manage projects.")
forecast_app = typer.Typer(help="Manage forecasts and monthly allocations.")
actual_app = typer.Typer(help="Record actual capital cost against prior-month forecasts.")
export_app = typer.Typer(help="Export data and reports.")
app.add_typer(resource_app, name="resource")
app.add_typer(project_app, name="project")
app.add_typer(forecast_app, name="forecast")
app.add_typer(actual_app, name="actual")
app.add_typer(export_app, name="export")

console = Console()
err_console = Console(stderr=True)
logger = logging.getLogger(__name__)


class _State:
    def __init__(self, config: AppConfig, store: EntityStore) -> None:
        self.config = config
        self.store = store


def _state(ctx: typer.Context) -> _State:
    return ctx.obj


@contextmanager
def _handle_errors() -> Iterator[None]:
    try:
        yield
    except CapexError as exc:
        err_console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1) from exc


def _year(ctx: typer.Context, year: Optional[int]) -> int:
    return year if year is not None else _state(ctx).store.selected_year()


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, exists=True, dir_okay=False, help="App config YAML (default uses packaged config)."),
    store: Optional[Path] = typer.Option(None, help="JSON store file (overrides config and CAPEX_STORE_PATH)."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every store mutation."),
):
    cfg = AppConfig.from_yaml(config) if config else default_app_config()
    cfg = cfg.with_env()
    if store is not None:
        cfg = replace(cfg, store_path=store)

    logging.basicConfig(
        level="INFO" if verbose else cfg.log_level,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )
    ctx.obj = _State(cfg, open_store(cfg.store_path))
    logger.debug("Using store %s", cfg.store_path)


@app.command()
def init(ctx: typer.Context):
    """Create the store file with empty collections (existing data is kept)."""
    state = _state(ctx)
    backend = state.store.backend
    for key in COLLECTION_KEYS:
        backend.set(key, backend.get(key, []) or [])
    state.store.set_selected_year(state.store.selected_year())
    console.print(f"Store initialized at {state.config.store_path}")


@app.command()
def year(ctx: typer.Context, value: Optional[int] = typer.Argument(None, help="Year to select.")):
    """Show or change the selected year."""
    store = _state(ctx).store
    if value is not None:
        if not 1900 <= value <= 9999:
            err_console.print(f"[red]Error:[/red] Year out of range: {value}")
            raise typer.Exit(code=1)
        store.set_selected_year(value)
    console.print(f"Selected year: {store.selected_year()}")


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------


@resource_app.command("add")
def resource_add(
    ctx: typer.Context,
    id: str = typer.Option(..., "--id", help="Unique resource ID."),
    full_name: str = typer.Option(..., "--name", help="Full name."),
    rate: float = typer.Option(..., help="Monthly rate."),
    company: str = typer.Option(..., help="Company."),
    location: Location = typer.Option(Location.ONSHORE, help="Onshore or Offshore."),
    start_date: Optional[str] = typer.Option(None, "--start", help="Start date (YYYY-MM-DD)."),
    end_date: Optional[str] = typer.Option(None, "--end", help="End date (YYYY-MM-DD)."),
):
    draft = ResourceDraft(
        id=id, full_name=full_name, rate=rate, company=company, location=location, start_date=start_date, end_date=end_date
    )
    with _handle_errors():
        resource = services.add_resource(_state(ctx).store, draft)
    console.print(f"Added resource {resource.id}")


@resource_app.command("edit")
def resource_edit(
    ctx: typer.Context,
    resource_id: str = typer.Argument(..., help="Resource ID (immutable)."),
    full_name: Optional[str] = typer.Option(None, "--name"),
    rate: Optional[float] = typer.Option(None),
    company: Optional[str] = typer.Option(None),
    location: Optional[Location] = typer.Option(None),
    start_date: Optional[str] = typer.Option(None, "--start"),
    end_date: Optional[str] = typer.Option(None, "--end", help="End date; pass an empty string to clear."),
):
    store = _state(ctx).store
    with _handle_errors():
        draft = ResourceDraft.from_resource(services.get_resource(store, resource_id))
        changes = {
            "full_name": full_name,
            "rate": rate,
            "company": company,
            "location": location,
            "start_date": start_date,
            "end_date": end_date,
        }
        draft = draft.model_copy(update={k: v for k, v in changes.items() if v is not None})
        services.update_resource(store, resource_id, draft)
    console.print(f"Updated resource {resource_id}")


@resource_app.command("list")
def resource_list(
    ctx: typer.Context,
    year: Optional[int] = typer.Option(None, help="Year for the active filter (default: selected year)."),
    show_all: bool = typer.Option(False, "--all", help="Include resources that ended before the year."),
):
    state = _state(ctx)
    y = _year(ctx, year)
    resources = services.list_resources(state.store, None if show_all else y)
    if not resources:
        console.print(f"No active resources found for {y}. Resources must have an end date in or after {y}.")
        return
    table = Table(title=f"Resources ({y})")
    for col in ["ID", "Name", "Rate", "Location", "Company", "Start", "End"]:
        table.add_column(col)
    for r in resources:
        table.add_row(
            r.id, r.full_name, state.config.money(r.rate), r.location.value, r.company, r.start_date or "-", r.end_date or "-"
        )
    console.print(table)


@resource_app.command("delete")
def resource_delete(ctx: typer.Context, resource_id: str = typer.Argument(...)):
    if not services.delete_resource(_state(ctx).store, resource_id):
        err_console.print(f"[red]Error:[/red] Resource {resource_id!r} not found")
        raise typer.Exit(code=1)
    console.print(f"Deleted resource {resource_id}")


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


@project_app.command("add")
def project_add(
    ctx: typer.Context,
    pv_number: str = typer.Option(..., "--pv", help="Unique PV number."),
    name: str = typer.Option(..., help="Project name."),
    oracle_account: str = typer.Option(..., "--oracle", help="Oracle account."),
    budget: Optional[float] = typer.Option(None, help="Budget ceiling."),
):
    draft = ProjectDraft(pv_number=pv_number, name=name, oracle_account=oracle_account, budget=budget)
    with _handle_errors():
        project = services.add_project(_state(ctx).store, draft)
    console.print(f"Added project {project.pv_number}")


@project_app.command("edit")
def project_edit(
    ctx: typer.Context,
    pv_number: str = typer.Argument(..., help="PV number (immutable)."),
    name: Optional[str] = typer.Option(None),
    oracle_account: Optional[str] = typer.Option(None, "--oracle"),
    budget: Optional[float] = typer.Option(None),
    clear_budget: bool = typer.Option(False, "--clear-budget", help="Remove the budget ceiling."),
):
    store = _state(ctx).store
    with _handle_errors():
        draft = ProjectDraft.from_project(services.get_project(store, pv_number))
        changes = {"name": name, "oracle_account": oracle_account, "budget": budget}
        update = {k: v for k, v in changes.items() if v is not None}
        if clear_budget:
            update["budget"] = None
        services.update_project(store, pv_number, draft.model_copy(update=update))
    console.print(f"Updated project {pv_number}")


@project_app.command("list")
def project_list(ctx: typer.Context):
    state = _state(ctx)
    projects = services.list_projects(state.store)
    if not projects:
        console.print("No projects found. Add your first project to get started.")
        return
    table = Table(title="Projects")
    for col in ["PV Number", "Name", "Oracle Account", "Budget"]:
        table.add_column(col)
    for p in projects:
        table.add_row(p.pv_number, p.name, p.oracle_account, state.config.money(p.budget) if p.has_budget else "-")
    console.print(table)


@project_app.command("delete")
def project_delete(ctx: typer.Context, pv_number: str = typer.Argument(...)):
    if not services.delete_project(_state(ctx).store, pv_number):
        err_console.print(f"[red]Error:[/red] Project {pv_number!r} not found")
        raise typer.Exit(code=1)
    console.print(f"Deleted project {pv_number}")


# ---------------------------------------------------------------------------
# Forecasts
# ---------------------------------------------------------------------------


@forecast_app.command("add")
def forecast_add(
    ctx: typer.Context,
    resource_id: str = typer.Argument(...),
    pv_number: str = typer.Argument(...),
    year: Optional[int] = typer.Option(None, help="Year for the active-resource filter."),
):
    store = _state(ctx).store
    y = _year(ctx, year)
    resources, projects = services.forecast_choices(store, y)
    with _handle_errors():
        if resource_id not in {r.id for r in resources}:
            raise ValidationError(f"Resource {resource_id!r} is not an active resource for {y}")
        if pv_number not in {p.pv_number for p in projects}:
            raise ValidationError(f"Project {pv_number!r} not found")
        forecast = services.add_forecast(store, resource_id, pv_number)
    console.print(f"Added forecast {forecast.id}")


@forecast_app.command("set")
def forecast_set(
    ctx: typer.Context,
    forecast_id: str = typer.Argument(...),
    month: str = typer.Argument(..., help="Month (YYYY-MM)."),
    percent: str = typer.Argument(..., help="Allocation percentage 0-100 (clamped)."),
):
    with _handle_errors():
        forecast = services.set_allocation_text(_state(ctx).store, forecast_id, month, percent)
    console.print(f"{forecast.id} {month}: {forecast.allocations.get(month, 0):g}%")


@forecast_app.command("delete")
def forecast_delete(ctx: typer.Context, forecast_id: str = typer.Argument(...)):
    if not services.delete_forecast(_state(ctx).store, forecast_id):
        err_console.print(f"[red]Error:[/red] Forecast {forecast_id!r} not found")
        raise typer.Exit(code=1)
    console.print(f"Deleted forecast {forecast_id}")


@forecast_app.command("list")
def forecast_list(
    ctx: typer.Context,
    year: Optional[int] = typer.Option(None),
    cost: bool = typer.Option(False, "--cost", help="Show monthly cost instead of allocation %."),
):
    state = _state(ctx)
    y = _year(ctx, year)
    grid = aggregate.forecast_grid(state.store, y)
    if grid.empty:
        console.print("No forecasts found. Add your first forecast to get started.")
        return
    table = Table(title=f"Forecasts {y} ({'cost' if cost else 'allocation %'})")
    table.add_column("ID")
    table.add_column("Resource")
    table.add_column("Project")
    for m in months_of_year(y):
        table.add_column(m[5:], justify="right")
    for forecast_id, rows in grid.groupby("ForecastId", sort=False):
        first = rows.iloc[0]
        values = rows["Cost"] if cost else rows["Allocation"]
        cells = [state.config.money(v) if cost else (f"{v:g}" if v else "") for v in values]
        table.add_row(str(forecast_id)[:8], first["Resource"], first["ProjectName"], *cells)
    console.print(table)


# ---------------------------------------------------------------------------
# Actuals
# ---------------------------------------------------------------------------


@actual_app.command("set")
def actual_set(
    ctx: typer.Context,
    resource_id: str = typer.Argument(...),
    pv_number: str = typer.Argument(...),
    month: str = typer.Argument(..., help="Actual month (YYYY-MM); fulfils the previous month's forecast."),
    value: str = typer.Argument(..., help="Capital cost; empty string deletes."),
):
    store = _state(ctx).store
    with _handle_errors():
        if (resource_id, pv_number) not in reconcile.reconciliation_rows(store):
            raise ValidationError(f"No forecast exists for {resource_id} x {pv_number}")
        month = parse_month_key(month)
        prior = previous_month(month)
        if not reconcile.has_expected_allocation(store, resource_id, pv_number, prior):
            raise ValidationError(f"No forecast allocation for {prior}; {month} is not open for actuals")
        resource = services.find_resource(store.resources(), resource_id)
        is_new = reconcile.find_actual(store.actuals(), resource_id, pv_number, month) is None
        if is_new and resource is not None and not services.is_active(resource, int(month[:4])):
            raise ValidationError(f"Resource {resource_id} is not active in {month[:4]}")
        actual = reconcile.set_actual_text(store, resource_id, pv_number, month, value)
    if actual is None:
        console.print(f"Cleared actual {resource_id}/{pv_number}/{month}")
    else:
        console.print(f"Actual {resource_id}/{pv_number}/{month}: {_state(ctx).config.money(actual.capital_cost)}")


@actual_app.command("clear")
def actual_clear(
    ctx: typer.Context,
    resource_id: str = typer.Argument(...),
    pv_number: str = typer.Argument(...),
    month: str = typer.Argument(...),
):
    with _handle_errors():
        reconcile.set_actual(_state(ctx).store, resource_id, pv_number, month, None)
    console.print(f"Cleared actual {resource_id}/{pv_number}/{month}")


@actual_app.command("grid")
def actual_grid(ctx: typer.Context, year: Optional[int] = typer.Option(None)):
    """Actuals per month; blocked cells (no prior-month forecast) show '·'."""
    state = _state(ctx)
    y = _year(ctx, year)
    if not state.store.forecasts():
        console.print("No forecasts available. Please create forecasts before entering actuals.")
        return
    grid = reconcile.actuals_grid(state.store, y)
    table = Table(title=f"Actuals {y} (each month fulfils the previous month's forecast)")
    table.add_column("Resource")
    table.add_column("Project")
    for m in months_of_year(y):
        table.add_column(m[5:], justify="right")
    for _, rows in grid.groupby(["ResourceId", "Project"], sort=False):
        first = rows.iloc[0]
        cells = [
            "·" if not expected else ("" if pd.isna(v) else state.config.money(v))
            for expected, v in zip(rows["Expected"], rows["CapitalCost"])
        ]
        table.add_row(first["Resource"], first["ProjectName"], *cells)
    console.print(table)


# ---------------------------------------------------------------------------
# Summary & export
# ---------------------------------------------------------------------------


@app.command()
def summary(ctx: typer.Context, year: Optional[int] = typer.Option(None)):
    """Forecast totals per active resource and per project against budget."""
    state = _state(ctx)
    y = _year(ctx, year)
    money = state.config.money

    by_resource = aggregate.resource_summary(state.store, y)
    rt = Table(title=f"Total by Resource ({y})")
    for col in ["Resource", "Company", "Total"]:
        rt.add_column(col)
    if by_resource.empty:
        rt.add_row("No resources available", "", "")
    for _, row in by_resource.iterrows():
        rt.add_row(row["Name"], row["Company"], money(row["Total"]))
    console.print(rt)

    by_project = aggregate.project_summary(state.store, y)
    pt = Table(title=f"Total by Project ({y})")
    for col in ["Project", "Name", "Forecast", "Budget", "Actual"]:
        pt.add_column(col)
    if by_project.empty:
        pt.add_row("No projects available", "", "", "", "")
    for _, row in by_project.iterrows():
        total = money(row["Total"])
        if row["OverBudget"]:
            total = f"[red]{total}[/red]"
        budget = "-" if pd.isna(row["Budget"]) else money(row["Budget"])
        pt.add_row(row["Project"], row["Name"], total, budget, money(row["Actual"]))
    console.print(pt)
    for _, row in by_project[by_project["OverBudget"].astype(bool)].iterrows():
        console.print(f"[red]{row['Project']} is over budget by {money(row['Total'] - row['Budget'])}[/red]")
    console.print(f"Overall total: {money(aggregate.overall_total(state.store, y))}")


@export_app.command("json")
def export_json(
    ctx: typer.Context,
    out: Path = typer.Argument(..., help="Output .json file."),
    collection: Optional[str] = typer.Option(None, help=f"Export one collection ({', '.join(COLLECTION_KEYS)})."),
):
    store = _state(ctx).store
    if collection is not None and collection not in COLLECTION_KEYS:
        raise typer.BadParameter(f"collection must be one of {', '.join(COLLECTION_KEYS)}")
    data = collection_snapshot(store, collection) if collection else snapshot(store)
    write_json_export(out, data)
    console.print(f"Wrote {out}")


@export_app.command("xlsx")
def export_xlsx(ctx: typer.Context, out: Path = typer.Argument(...), year: Optional[int] = typer.Option(None)):
    write_excel_summary(out, _state(ctx).store, _year(ctx, year))
    console.print(f"Wrote {out}")


@export_app.command("chart")
def export_chart(ctx: typer.Context, out: Path = typer.Argument(...), year: Optional[int] = typer.Option(None)):
    save_budget_chart(out, _state(ctx).store, _year(ctx, year))
    console.print(f"Wrote {out}")
