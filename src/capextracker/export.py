from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import pandas as pd
from openpyxl import Workbook
from openpyxl.utils.dataframe import dataframe_to_rows

from .aggregate import forecast_grid, project_summary, resource_summary
from .reconcile import actuals_grid
from .store import ACTUALS, COLLECTION_KEYS, FORECASTS, PROJECTS, RESOURCES, EntityStore


def snapshot(store: EntityStore) -> dict[str, Any]:
    """All four collections, exactly as stored."""
    return {
        FORECASTS: store.raw(FORECASTS),
        RESOURCES: store.raw(RESOURCES),
        PROJECTS: store.raw(PROJECTS),
        ACTUALS: store.raw(ACTUALS),
    }


def collection_snapshot(store: EntityStore, key: str) -> list[dict[str, Any]]:
    if key not in COLLECTION_KEYS:
        raise ValueError(f"Unknown collection {key!r}; expected one of {', '.join(COLLECTION_KEYS)}")
    return store.raw(key)


def write_json_export(path: str | Path, data: Any) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return path


def write_excel_summary(path: str | Path, store: EntityStore, year: int) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    wb = Workbook()
    wb.remove(wb.active)

    _add_df_sheet(wb, f"Resources {year}", resource_summary(store, year))
    _add_df_sheet(wb, f"Projects {year}", project_summary(store, year))
    _add_df_sheet(wb, f"Forecasts {year}", _pivot_months(forecast_grid(store, year), "Cost"))
    _add_df_sheet(wb, f"Actuals {year}", _pivot_months(actuals_grid(store, year), "CapitalCost"))

    wb.save(path)
    return path


def save_budget_chart(path: str | Path, store: EntityStore, year: int) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    summary = project_summary(store, year)

    plt.figure(figsize=(10, 4))
    if summary.empty:
        plt.text(0.5, 0.5, "No projects", ha="center", va="center", color="gray")
    else:
        x = range(len(summary.index))
        colors = ["tab:red" if over else "tab:blue" for over in summary["OverBudget"]]
        plt.bar(x, summary["Total"], color=colors, label="Forecast")
        budget = summary["Budget"]
        has_budget = budget.notna()
        plt.scatter(
            [i for i, ok in zip(x, has_budget) if ok],
            budget[has_budget],
            marker="_",
            s=600,
            color="black",
            label="Budget",
        )
        plt.xticks(list(x), summary["Project"], rotation=45, ha="right")
        plt.legend()
    plt.title(f"Forecast vs Budget by Project ({year})")
    plt.ylabel("Cost")
    plt.grid(True, axis="y", alpha=0.25)
    plt.tight_layout()
    plt.savefig(path, dpi=160)
    plt.close()
    return path


def _pivot_months(long_df: pd.DataFrame, value: str) -> pd.DataFrame:
    """Resource/project rows with one column per month."""
    keys = ["ResourceId", "Resource", "Project", "ProjectName"]
    if long_df.empty:
        return pd.DataFrame(columns=keys)
    wide = long_df.set_index(keys + ["Month"])[value].unstack("Month")
    wide.columns.name = None
    return wide.reset_index()


def _add_df_sheet(wb: Workbook, title: str, df: pd.DataFrame) -> None:
    ws = wb.create_sheet(title=title[:31])
    df = df.astype(object).where(df.notna(), None)
    for r in dataframe_to_rows(df, index=False, header=True):
        ws.append(r)
    ws.freeze_panes = "A2"
