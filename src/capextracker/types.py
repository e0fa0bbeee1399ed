from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import ValidationError
from .months import Month


class Location(str, Enum):
    ONSHORE = "Onshore"
    OFFSHORE = "Offshore"


# ---------------------------------------------------------------------------
# Committed entities (what the store holds)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Resource:
    id: str
    full_name: str
    rate: float
    company: str
    location: Location = Location.ONSHORE
    start_date: Optional[str] = None  # ISO date
    end_date: Optional[str] = None  # ISO date

    @property
    def end_year(self) -> int | None:
        if not self.end_date:
            return None
        return date.fromisoformat(self.end_date).year

    def to_record(self) -> dict[str, Any]:
        rec: dict[str, Any] = {
            "id": self.id,
            "fullName": self.full_name,
            "rate": self.rate,
            "location": self.location.value,
            "company": self.company,
        }
        if self.start_date:
            rec["startDate"] = self.start_date
        if self.end_date:
            rec["endDate"] = self.end_date
        return rec

    @staticmethod
    def from_record(raw: Mapping[str, Any]) -> "Resource":
        return Resource(
            id=str(raw["id"]),
            full_name=str(raw.get("fullName", "")),
            rate=float(raw.get("rate") or 0.0),
            company=str(raw.get("company", "")),
            location=Location(raw.get("location") or Location.ONSHORE.value),
            start_date=raw.get("startDate") or None,
            end_date=raw.get("endDate") or None,
        )


@dataclass(frozen=True)
class Project:
    pv_number: str
    name: str
    oracle_account: str
    budget: Optional[float] = None

    @property
    def has_budget(self) -> bool:
        """A missing or zero budget means no ceiling."""
        return bool(self.budget)

    def to_record(self) -> dict[str, Any]:
        rec: dict[str, Any] = {
            "pvNumber": self.pv_number,
            "name": self.name,
            "oracleAccount": self.oracle_account,
        }
        if self.budget is not None:
            rec["budget"] = self.budget
        return rec

    @staticmethod
    def from_record(raw: Mapping[str, Any]) -> "Project":
        budget = raw.get("budget")
        return Project(
            pv_number=str(raw["pvNumber"]),
            name=str(raw.get("name", "")),
            oracle_account=str(raw.get("oracleAccount", "")),
            budget=float(budget) if budget is not None else None,
        )


@dataclass(frozen=True)
class Forecast:
    id: str
    resource_id: str
    project_pv_number: str
    allocations: dict[str, float] = field(default_factory=dict)  # YYYY-MM -> percent

    @property
    def pair(self) -> tuple[str, str]:
        return (self.resource_id, self.project_pv_number)

    def allocation(self, month: str) -> float | None:
        return self.allocations.get(month)

    def with_allocation(self, month: str, percent: float) -> "Forecast":
        return replace(self, allocations={**self.allocations, month: percent})

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "resourceId": self.resource_id,
            "projectPvNumber": self.project_pv_number,
            "allocations": dict(self.allocations),
        }

    @staticmethod
    def from_record(raw: Mapping[str, Any]) -> "Forecast":
        return Forecast(
            id=str(raw["id"]),
            resource_id=str(raw["resourceId"]),
            project_pv_number=str(raw["projectPvNumber"]),
            allocations={str(k): float(v) for k, v in (raw.get("allocations") or {}).items()},
        )


@dataclass(frozen=True)
class Actual:
    id: str
    resource_id: str
    project_pv_number: str
    month: str  # YYYY-MM
    capital_cost: float

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.resource_id, self.project_pv_number, self.month)

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "resourceId": self.resource_id,
            "projectPvNumber": self.project_pv_number,
            "month": self.month,
            "capitalCost": self.capital_cost,
        }

    @staticmethod
    def from_record(raw: Mapping[str, Any]) -> "Actual":
        return Actual(
            id=str(raw["id"]),
            resource_id=str(raw["resourceId"]),
            project_pv_number=str(raw["projectPvNumber"]),
            month=str(raw["month"]),
            capital_cost=float(raw.get("capitalCost") or 0.0),
        )


# ---------------------------------------------------------------------------
# Drafts: partial form input, converted to entities only at submit time
# ---------------------------------------------------------------------------


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def check_amount(label: str, value: float) -> float:
    """Return ``value`` as a float or raise if it is negative, NaN or infinite."""
    amount = float(value)
    if not math.isfinite(amount) or amount < 0:
        raise ValidationError(f"{label} must be a finite non-negative number, got {value}")
    return amount


def _check_iso_date(label: str, value: Optional[str]) -> Optional[str]:
    if _blank(value):
        return None
    try:
        return date.fromisoformat(str(value).strip()).isoformat()
    except ValueError as exc:
        raise ValidationError(f"{label} must be an ISO date (YYYY-MM-DD), got {value!r}") from exc


class ResourceDraft(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    full_name: Optional[str] = Field(default=None, alias="fullName")
    rate: Optional[float] = None
    location: Location = Location.ONSHORE
    company: Optional[str] = None
    start_date: Optional[str] = Field(default=None, alias="startDate")
    end_date: Optional[str] = Field(default=None, alias="endDate")

    @staticmethod
    def from_resource(resource: Resource) -> "ResourceDraft":
        return ResourceDraft.model_validate(resource.to_record())

    def to_entity(self) -> Resource:
        if _blank(self.id) or _blank(self.full_name) or _blank(self.company) or not self.rate:
            raise ValidationError("Please fill in all required fields (id, full name, rate, company)")
        rate = check_amount("Rate", self.rate)
        start = _check_iso_date("Start date", self.start_date)
        end = _check_iso_date("End date", self.end_date)
        if start and end and end < start:
            raise ValidationError(f"End date {end} is before start date {start}")
        return Resource(
            id=str(self.id).strip(),
            full_name=str(self.full_name).strip(),
            rate=rate,
            company=str(self.company).strip(),
            location=self.location,
            start_date=start,
            end_date=end,
        )


class ProjectDraft(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pv_number: Optional[str] = Field(default=None, alias="pvNumber")
    name: Optional[str] = None
    oracle_account: Optional[str] = Field(default=None, alias="oracleAccount")
    budget: Optional[float] = None

    @staticmethod
    def from_project(project: Project) -> "ProjectDraft":
        return ProjectDraft.model_validate(project.to_record())

    def to_entity(self) -> Project:
        if _blank(self.pv_number) or _blank(self.name) or _blank(self.oracle_account):
            raise ValidationError("Please fill in all required fields (PV number, name, Oracle account)")
        budget = check_amount("Budget", self.budget) if self.budget is not None else None
        return Project(
            pv_number=str(self.pv_number).strip(),
            name=str(self.name).strip(),
            oracle_account=str(self.oracle_account).strip(),
            budget=budget,
        )


def parse_month_key(key: str) -> str:
    """Normalize a ``YYYY-MM`` key or raise :class:`ValidationError`."""
    try:
        return str(Month.parse(key))
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
