"""Static catalog of the DMN decision tables known to the process engine."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

CATALOG_PATH = Path(__file__).with_name("catalog.yaml")


def load_catalog(path: str | Path = CATALOG_PATH) -> list[dict[str, Any]]:
    """Load decision table descriptions from YAML.

    ``numeroRegole`` is derived from the listed rules.
    """
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    decisions = data.get("decisions")
    if not isinstance(decisions, list):
        raise ValueError(f"{path}: 'decisions' must be a list")

    catalog: list[dict[str, Any]] = []
    for entry in decisions:
        if not isinstance(entry, dict) or not entry.get("id"):
            raise ValueError(f"{path}: every decision needs an 'id'")
        rules = entry.get("regole") or []
        catalog.append({**entry, "numeroRegole": len(rules), "regole": rules})
    return catalog


@lru_cache(maxsize=1)
def default_catalog() -> tuple[dict[str, Any], ...]:
    return tuple(load_catalog())
