from __future__ import annotations

import importlib.resources
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

STORE_PATH_ENV = "CAPEX_STORE_PATH"


@dataclass(frozen=True)
class AppConfig:
    store_path: Path
    log_level: str = "WARNING"
    currency_symbol: str = "$"
    decimals: int = 2

    @staticmethod
    def from_mapping(raw: Mapping[str, Any]) -> "AppConfig":
        raw = raw or {}
        return AppConfig(
            store_path=Path(str(raw.get("store_path", "~/.capextracker/store.json"))).expanduser(),
            log_level=str(raw.get("log_level", "WARNING")).upper(),
            currency_symbol=str(raw.get("currency_symbol", "$")),
            decimals=int(raw.get("decimals", 2)),
        )

    @staticmethod
    def from_yaml(path: str | Path) -> "AppConfig":
        path = Path(path)
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        return AppConfig.from_mapping(raw)

    def with_env(self, environ: Mapping[str, str] | None = None) -> "AppConfig":
        environ = os.environ if environ is None else environ
        override = environ.get(STORE_PATH_ENV)
        if override:
            return replace(self, store_path=Path(override).expanduser())
        return self

    def money(self, value: float) -> str:
        return f"{self.currency_symbol}{value:,.{self.decimals}f}"


def default_app_config() -> AppConfig:
    text = importlib.resources.files("capextracker.resources").joinpath("default_config.yaml").read_text(encoding="utf-8")
    return AppConfig.from_mapping(yaml.safe_load(text))
