"""Configuration loading helpers for yande-popular."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml

from .models import Settings

CONFIG_EXTENSIONS = (".yaml", ".yml", ".json")
DEFAULT_CONFIG_FILENAME = "config.yaml"


def _read_file(path: Path) -> dict:
    text = path.read_text(encoding="utf-8")
    if path.suffix in (".yaml", ".yml"):
        data = yaml.safe_load(text) or {}
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file must contain a mapping: {path}")
    return data


@dataclass(slots=True)
class ConfigLocator:
    """Resolve the on-disk layout below the data directory."""

    data_dir: Path
    db_dir: Path | None = None
    tmp_dir: Path | None = None
    logs_dir: Path | None = None

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir).expanduser().resolve()
        self.db_dir = self.data_dir / "db"
        self.tmp_dir = self.data_dir / "tmp"
        self.logs_dir = self.data_dir / "logs"

    def ensure_directories(self) -> None:
        for directory in (self.data_dir, self.db_dir, self.tmp_dir, self.logs_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def history_path(self) -> Path:
        return self.db_dir / "history.db"

    def session_path(self) -> Path:
        return self.data_dir / "session"

    def config_path(self) -> Path:
        return self.data_dir / DEFAULT_CONFIG_FILENAME


class ConfigRepository:
    """Merge the optional settings file with explicit overrides and validate."""

    def __init__(self, config_path: Path | None = None) -> None:
        self.config_path = config_path

    def load_settings(self, overrides: Mapping[str, Any] | None = None) -> Settings:
        cleaned = {key: value for key, value in (overrides or {}).items() if value is not None}
        payload: dict[str, Any] = {}
        path = self._resolve_path(cleaned.get("data_dir"))
        if path is not None:
            payload.update(_read_file(path))
        payload.update(cleaned)
        return Settings.model_validate(payload)

    def _resolve_path(self, data_dir: Any) -> Path | None:
        if self.config_path is not None:
            if not self.config_path.exists():
                raise FileNotFoundError(f"Configuration not found: {self.config_path}")
            if self.config_path.suffix not in CONFIG_EXTENSIONS:
                raise ValueError(f"Unsupported configuration format: {self.config_path}")
            return self.config_path
        candidate = ConfigLocator(Path(data_dir or "data")).config_path()
        return candidate if candidate.exists() else None


__all__ = ["ConfigLocator", "ConfigRepository", "CONFIG_EXTENSIONS"]
