"""Settings access helpers for JSON-based configuration."""

from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any

from loguru import logger

DEFAULTS: dict[str, Any] = {
    "scan": {"max_workers": 8, "progress_batch": 50},
    "cache": {
        "thumbnail_size": 150,
        "thumbnail_capacity": 500,
        "grid_size": 440,
        "grid_capacity": 200,
        "preview_size": 2000,
        "preview_capacity": 20,
        "zoom_max_side": 4000,
        "max_workers": 4,
    },
    "session": {"debounce_ms": 500},
    "undo": {"max_depth": 50},
    "logging": {"dir": None, "level": "INFO"},
}


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


class JsonSettings:
    """Lightweight JSON settings reader with dotted-key access.

    Values from the file override `DEFAULTS`. A missing file means
    defaults only; an unreadable one is logged and ignored.
    """

    def __init__(self, settings_path: str | Path | None = None) -> None:
        self._path = Path(settings_path) if settings_path else None
        self._data: dict[str, Any] = copy.deepcopy(DEFAULTS)
        if self._path is None or not self._path.exists():
            return
        try:
            with self._path.open("r", encoding="utf-8") as f:
                loaded = json.load(f)
        except (OSError, ValueError) as ex:
            logger.warning("Ignoring unreadable settings {}: {}", self._path, ex)
            return
        if isinstance(loaded, dict):
            _merge(self._data, loaded)
        else:
            logger.warning("Ignoring settings {}: top level is not an object", self._path)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JsonSettings:
        """Build settings from an in-memory mapping layered over the defaults."""
        settings = cls(None)
        _merge(settings._data, copy.deepcopy(data))
        return settings

    @property
    def path(self) -> Path | None:
        return self._path

    def get(self, key: str, default: Any | None = None) -> Any:
        """Return value for dotted `key`, or `default` if not present."""
        parts = key.split(".")
        node: Any = self._data
        for part in parts:
            if isinstance(node, dict) and part in node:
                node = node[part]
            else:
                return default
        return node
