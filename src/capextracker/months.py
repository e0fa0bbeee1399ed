"""Calendar-month value type and ``YYYY-MM`` key helpers.

Only year/month granularity is ever needed, so months are plain
``(year, month)`` pairs rather than dates: no day, no timezone.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator

import pandas as pd

_KEY_RE = re.compile(r"^(\d{4})-(\d{2})$")


@dataclass(frozen=True, order=True)
class Month:
    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"Month out of range: {self.month}")

    @staticmethod
    def parse(key: str) -> "Month":
        m = _KEY_RE.match(str(key).strip())
        if not m:
            raise ValueError(f"Invalid month key {key!r}; expected YYYY-MM")
        return Month(int(m.group(1)), int(m.group(2)))

    @staticmethod
    def months_of(year: int) -> list["Month"]:
        return [Month(year, m) for m in range(1, 13)]

    @property
    def index(self) -> int:
        # months since year 0; makes shifting exact
        return self.year * 12 + (self.month - 1)

    @staticmethod
    def from_index(index: int) -> "Month":
        year, rem = divmod(index, 12)
        return Month(year, rem + 1)

    def __add__(self, months: int) -> "Month":
        if not isinstance(months, int):
            return NotImplemented
        return Month.from_index(self.index + months)

    def __sub__(self, other):
        if isinstance(other, Month):
            return self.index - other.index
        if isinstance(other, int):
            return Month.from_index(self.index - other)
        return NotImplemented

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    def label(self) -> str:
        """Short display label, e.g. ``Mar 2025``."""
        return self.to_period().strftime("%b %Y")

    def to_period(self) -> pd.Period:
        return pd.Period(year=self.year, month=self.month, freq="M")


def month_range(start: Month, end: Month) -> Iterator[Month]:
    for idx in range(start.index, end.index + 1):
        yield Month.from_index(idx)


def previous_month(key: str) -> str:
    return str(Month.parse(key) - 1)


def next_month(key: str) -> str:
    return str(Month.parse(key) + 1)


def months_of_year(year: int) -> list[str]:
    return [str(m) for m in Month.months_of(year)]


def key_in_year(key: str, year: int) -> bool:
    """True when the year component of a ``YYYY-MM`` key equals ``year``."""
    return str(key)[:4] == f"{int(year):04d}"
