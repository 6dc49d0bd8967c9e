from __future__ import annotations

import logging
from pathlib import Path

import yaml


logger = logging.getLogger(__name__)


DEFAULT_STATION_NAMES: dict[str, str] = {
    "technobase.fm": "Technobase.FM",
    "housetime.fm": "Housetime.FM",
    "hardbase.fm": "Hardbase.FM",
    "trancebase.fm": "Trancebase.FM",
    "coretime.fm": "Coretime.FM",
    "clubtime.fm": "Clubtime.FM",
    "teatime.fm": "Teatime.FM",
    "replay.fm": "Replay.FM",
}


def load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"stations yaml must be a mapping: {path}")
    return data


class StationCatalog:
    """Display names for station keys.

    The YAML file may hold either ``{domain: name}`` or
    ``{"stations": {domain: name}}``; entries override the built-in names.
    """

    def __init__(self, names: dict[str, str] | None = None) -> None:
        self._names = dict(DEFAULT_STATION_NAMES)
        for key, name in (names or {}).items():
            if key and name:
                self._names[str(key).strip().lower()] = str(name).strip()

    @classmethod
    def from_file(cls, path: Path) -> "StationCatalog":
        data = load_yaml(path)
        if isinstance(data.get("stations"), dict):
            data = data["stations"]
        if data:
            logger.info("loaded %s station names from %s", len(data), path)
        return cls(data)

    def name(self, domain: str) -> str:
        return self._names.get(domain, domain)
