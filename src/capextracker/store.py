"""Key-value persistence for the tracker.

Provides:
- the backend protocol (``get``/``set`` of whole values by key)
- an in-memory backend for tests and scratch work
- a JSON-document backend that survives process restarts
- ``EntityStore``, the typed view over the four collections and the
  selected-year scalar
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
from datetime import date
from pathlib import Path
from typing import Any, Callable, Protocol, TypeVar

from .types import Actual, Forecast, Project, Resource

logger = logging.getLogger(__name__)

RESOURCES = "resources"
PROJECTS = "projects"
FORECASTS = "forecasts"
ACTUALS = "actuals"
SELECTED_YEAR = "selectedYear"

COLLECTION_KEYS = (RESOURCES, PROJECTS, FORECASTS, ACTUALS)

T = TypeVar("T")


class KeyValueStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class MemoryStore:
    """Dict-backed store. Values are deep-copied in and out."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial) if initial else {}

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)


class JsonFileStore:
    """Whole-document JSON file. Every ``set`` rewrites the file atomically."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        text = self.path.read_text(encoding="utf-8")
        if not text.strip():
            return {}
        try:
            doc = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Store file {self.path} is not valid JSON: {exc}") from exc
        if not isinstance(doc, dict):
            raise ValueError(f"Store file {self.path} must hold a JSON object")
        return doc

    def get(self, key: str, default: Any = None) -> Any:
        return self._load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        doc = self._load()
        doc[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(doc, fh, indent=2)
            os.replace(tmp, self.path)
        except Exception:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        logger.debug("Wrote %s to %s", key, self.path)


# ---------------------------------------------------------------------------
# Typed collections
# ---------------------------------------------------------------------------


class EntityStore:
    """Typed, whole-collection access over a :class:`KeyValueStore`.

    Reads return fresh lists of frozen entities; writes replace the entire
    collection. There is no row-level update primitive.
    """

    def __init__(self, backend: KeyValueStore) -> None:
        self.backend = backend

    def _read(self, key: str, factory: Callable[[dict[str, Any]], T]) -> list[T]:
        raw = self.backend.get(key, []) or []
        return [factory(r) for r in raw]

    def _write(self, key: str, items: list[Any]) -> None:
        self.backend.set(key, [i.to_record() for i in items])

    def resources(self) -> list[Resource]:
        return self._read(RESOURCES, Resource.from_record)

    def set_resources(self, items: list[Resource]) -> None:
        self._write(RESOURCES, items)

    def projects(self) -> list[Project]:
        return self._read(PROJECTS, Project.from_record)

    def set_projects(self, items: list[Project]) -> None:
        self._write(PROJECTS, items)

    def forecasts(self) -> list[Forecast]:
        return self._read(FORECASTS, Forecast.from_record)

    def set_forecasts(self, items: list[Forecast]) -> None:
        self._write(FORECASTS, items)

    def actuals(self) -> list[Actual]:
        return self._read(ACTUALS, Actual.from_record)

    def set_actuals(self, items: list[Actual]) -> None:
        self._write(ACTUALS, items)

    def selected_year(self) -> int:
        return int(self.backend.get(SELECTED_YEAR, date.today().year))

    def set_selected_year(self, year: int) -> None:
        self.backend.set(SELECTED_YEAR, int(year))

    def raw(self, key: str) -> list[dict[str, Any]]:
        """Stored records for one collection, exactly as persisted."""
        if key not in COLLECTION_KEYS:
            raise KeyError(f"Unknown collection: {key}")
        return self.backend.get(key, []) or []


def open_store(path: str | Path | None = None) -> EntityStore:
    """Entity store on a JSON file, or in memory when no path is given."""
    if path is None:
        return EntityStore(MemoryStore())
    return EntityStore(JsonFileStore(path))
